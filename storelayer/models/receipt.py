"""
Receipt validation models - Immutable dataclasses and enumerations.

NO DICTIONARIES - Server payloads are parsed into typed models before the
structural checks read them.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class ValidationOutcome(str, Enum):
    """Terminal result of one validation attempt."""

    RECEIPT_NOT_FOUND = "receipt_not_found"
    SERVER_ERROR = "server_error"
    RECEIPT_INVALID = "receipt_invalid"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    SUBSCRIPTION_VALID = "subscription_valid"
    CORRUPT_DATA = "corrupt_data"
    BUNDLE_ID_INVALID = "bundle_id_invalid"
    APPLE_SERVER_DOWN = "apple_server_down"
    CORRUPT_RECEIPT_DATA = "corrupt_receipt_data"
    NETWORK_ERROR = "network_error"
    WRONG_ENVIRONMENT = "wrong_environment"
    SECRET_KEY_MISMATCH = "secret_key_mismatch"
    STATUS_UNKNOWN = "status_unknown"


class FollowUpAction(str, Enum):
    """What the host application should do with a validation outcome."""

    TOLERATE = "tolerate"  # Keep previously known entitlement state
    TERMINATE = "terminate"  # Revoke/deny entitlement
    PASS = "pass"  # Entitlement confirmed
    RE_RUN = "re_run"  # Run the whole validation flow again


@dataclass(frozen=True)
class ValidationConfig:
    """Configuration of a receipt validator. Never mutated mid-flight."""

    validation_url: str = ""
    sandbox: bool = False
    silent: bool = False
    receipt_path: Path | None = None
    bundle_id: str = ""  # Bundle identifier of the running application

    @property
    def environment_flag(self) -> str:
        """Get the `env` value sent to the validation endpoint."""
        return "1" if self.sandbox else "0"


@dataclass(frozen=True)
class PresentationHint:
    """Optional message the host application may show for an outcome."""

    title: str
    message: str


@dataclass(frozen=True)
class InAppPurchase:
    """One entry of the receipt's `in_app` list."""

    product_id: str | None
    expires_date_ms: str | None  # Numeric string, kept raw
    transaction_id: str | None = None
    original_transaction_id: str | None = None

    @classmethod
    def from_json(cls, data: Mapping[str, object]) -> "InAppPurchase":
        """Parse an `in_app` entry, keeping only string fields."""

        def text(key: str) -> str | None:
            value = data.get(key)
            return value if isinstance(value, str) else None

        return cls(
            product_id=text("product_id"),
            expires_date_ms=text("expires_date_ms"),
            transaction_id=text("transaction_id"),
            original_transaction_id=text("original_transaction_id"),
        )


@dataclass(frozen=True)
class ReceiptPayload:
    """The `receipt` object of a status 0 response."""

    bundle_id: str | None
    in_app: tuple[InAppPurchase, ...] | None

    @classmethod
    def from_json(cls, data: Mapping[str, object]) -> "ReceiptPayload":
        """Parse the receipt object. Malformed fields become None."""
        bundle_id = data.get("bundle_id")
        raw_in_app = data.get("in_app")

        in_app: tuple[InAppPurchase, ...] | None = None
        if isinstance(raw_in_app, list):
            in_app = tuple(
                InAppPurchase.from_json(entry) for entry in raw_in_app if isinstance(entry, Mapping)
            )

        return cls(
            bundle_id=bundle_id if isinstance(bundle_id, str) else None,
            in_app=in_app,
        )


@dataclass(frozen=True)
class ServerResponse:
    """Parsed JSON object returned by the validation endpoint."""

    status: object  # Raw `status` value; None when absent
    receipt: ReceiptPayload | None

    @property
    def status_code(self) -> int | None:
        """Get the numeric status, or None when absent or not a whole number."""
        status = self.status
        # JSON booleans read as 1 and 0
        if isinstance(status, int):
            return int(status)
        if isinstance(status, float) and status.is_integer():
            return int(status)
        return None

    @classmethod
    def from_json(cls, data: Mapping[str, object]) -> "ServerResponse":
        """Parse the top-level response object."""
        raw_receipt = data.get("receipt")
        return cls(
            status=data.get("status"),
            receipt=ReceiptPayload.from_json(raw_receipt)
            if isinstance(raw_receipt, Mapping)
            else None,
        )


@dataclass(frozen=True)
class ValidationReport:
    """Everything reported for one validation attempt."""

    outcome: ValidationOutcome
    action: FollowUpAction
    should_refresh: bool
    presentation_hint: PresentationHint | None = None
    restore_in_progress: bool = False
