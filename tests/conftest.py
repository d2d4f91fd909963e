"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fakes for the store's collaborators:
- Receipt files and validation configs
- Validation endpoint transports (httpx.MockTransport)
- Purchase queue, product catalog and delegates
- Transactions in every queue state
"""

import json
import os
from collections.abc import Callable
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

# Set environment BEFORE importing storelayer modules
os.environ.setdefault("BUNDLE_ID", "com.example.app")
os.environ.setdefault("LOG_FORMAT", "console")

from storelayer.config import StoreConfig
from storelayer.models.receipt import ValidationConfig
from storelayer.models.transaction import (
    Payment,
    PaymentTransaction,
    Product,
    StoreErrorCode,
    TransactionError,
    TransactionState,
)
from storelayer.services.dispatch import ImmediateDispatcher
from storelayer.services.notifications import NotificationCenter, StoreEvent, StoreNotification

BUNDLE_ID = "com.example.app"
VALIDATION_URL = "https://validation.example.com/verify"
RECEIPT_BYTES = b"\x30\x82\x01\x0a" * 64  # Long enough to wrap when base64 encoded

# ============================================================================
# Receipt Fixtures
# ============================================================================


@pytest.fixture
def receipt_file(tmp_path: Path) -> Path:
    """Local receipt file with binary content."""
    path = tmp_path / "receipt"
    path.write_bytes(RECEIPT_BYTES)
    return path


@pytest.fixture
def validation_config(receipt_file: Path) -> ValidationConfig:
    """Production validation config pointing at the receipt file."""
    return ValidationConfig(
        validation_url=VALIDATION_URL,
        sandbox=False,
        silent=False,
        receipt_path=receipt_file,
        bundle_id=BUNDLE_ID,
    )


@pytest.fixture
def store_config(receipt_file: Path) -> StoreConfig:
    """Store config with two subscription products."""
    return StoreConfig(
        product_identifiers=frozenset({"premium.monthly", "premium.yearly"}),
        validation_url=VALIDATION_URL,
        receipt_path=receipt_file,
        bundle_id=BUNDLE_ID,
        apple_app_id=123456789,
    )


# ============================================================================
# Validation Endpoint Fixtures
# ============================================================================


def json_transport(payload: object, requests: list[httpx.Request] | None = None) -> httpx.MockTransport:
    """Transport answering every request with a JSON payload."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(200, content=json.dumps(payload).encode())

    return httpx.MockTransport(handler)


def raw_transport(content: bytes, status_code: int = 200) -> httpx.MockTransport:
    """Transport answering every request with raw bytes."""
    return httpx.MockTransport(lambda request: httpx.Response(status_code, content=content))


def failing_transport(error: Exception) -> httpx.MockTransport:
    """Transport raising a transport error for every request."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    return httpx.MockTransport(handler)


def valid_response(bundle_id: str = BUNDLE_ID, in_app: list | None = None) -> dict:
    """Status 0 response body."""
    return {
        "status": 0,
        "receipt": {
            "bundle_id": bundle_id,
            "in_app": in_app if in_app is not None else [],
        },
    }


# ============================================================================
# Delegate and Collaborator Fixtures
# ============================================================================


@pytest.fixture
def validation_delegate() -> MagicMock:
    """Receipt validation delegate."""
    return MagicMock()


@pytest.fixture
def store_delegate() -> MagicMock:
    """Purchase flow delegate."""
    return MagicMock()


@pytest.fixture
def payment_queue() -> MagicMock:
    """Purchase queue that allows payments."""
    queue = MagicMock()
    queue.can_make_payments = MagicMock(return_value=True)
    return queue


@pytest.fixture
def notifications() -> NotificationCenter:
    """Fresh notification center."""
    return NotificationCenter()


@pytest.fixture
def dispatcher() -> ImmediateDispatcher:
    """Inline main-context dispatcher."""
    return ImmediateDispatcher()


@pytest.fixture
def recorded_events(notifications: NotificationCenter) -> list[StoreNotification]:
    """Every notification posted on the center, in order."""
    events: list[StoreNotification] = []
    for event in StoreEvent:
        notifications.subscribe(event, events.append)
    return events


@pytest.fixture
def products() -> list[Product]:
    """Catalog entries for the configured products."""
    return [
        Product(
            product_identifier="premium.monthly",
            localized_title="Premium Monthly",
            price=Decimal("4.99"),
        ),
        Product(
            product_identifier="premium.yearly",
            localized_title="Premium Yearly",
            price=Decimal("39.99"),
        ),
    ]


# ============================================================================
# Transaction Fixtures
# ============================================================================


@pytest.fixture
def make_transaction() -> Callable[..., PaymentTransaction]:
    """Factory for queue transactions."""

    def _make(
        state: TransactionState,
        product_identifier: str = "premium.monthly",
        error: TransactionError | None = None,
        original: PaymentTransaction | None = None,
        transaction_id: str = "1000000001",
    ) -> PaymentTransaction:
        return PaymentTransaction(
            transaction_id=transaction_id,
            payment=Payment(product_identifier=product_identifier),
            state=state,
            error=error,
            original=original,
        )

    return _make


@pytest.fixture
def cancelled_error() -> TransactionError:
    """Error of a purchase cancelled by the user."""
    return TransactionError(code=StoreErrorCode.PAYMENT_CANCELLED, description="Cancelled")


@pytest.fixture
def payment_invalid_error() -> TransactionError:
    """Error of an invalid payment."""
    return TransactionError(code=StoreErrorCode.PAYMENT_INVALID, description="Payment invalid")
