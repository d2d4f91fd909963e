"""
Purchase queue models - Immutable dataclasses for payments and transactions.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, IntEnum


class TransactionState(str, Enum):
    """State of a transaction in the platform purchase queue."""

    PURCHASING = "purchasing"
    PURCHASED = "purchased"
    FAILED = "failed"
    RESTORED = "restored"
    DEFERRED = "deferred"

    def is_terminal(self) -> bool:
        """Check if the transaction must be finalized with the queue."""
        return self in (
            TransactionState.PURCHASED,
            TransactionState.RESTORED,
            TransactionState.FAILED,
        )


class StoreErrorCode(IntEnum):
    """Platform purchase error codes."""

    UNKNOWN = 0
    CLIENT_INVALID = 1
    PAYMENT_CANCELLED = 2
    PAYMENT_INVALID = 3
    PAYMENT_NOT_ALLOWED = 4
    STORE_PRODUCT_NOT_AVAILABLE = 5
    CLOUD_SERVICE_PERMISSION_DENIED = 6
    CLOUD_SERVICE_NETWORK_CONNECTION_FAILED = 7
    CLOUD_SERVICE_REVOKED = 8


@dataclass(frozen=True)
class TransactionError:
    """Error attached to a failed transaction."""

    code: int
    description: str = ""
    domain: str = "SKErrorDomain"

    @property
    def code_name(self) -> str:
        """Get a readable name for the error code."""
        try:
            return StoreErrorCode(self.code).name.lower()
        except ValueError:
            return StoreErrorCode.UNKNOWN.name.lower()

    def is_cancellation(self) -> bool:
        """Check if the user cancelled the payment."""
        return self.code == StoreErrorCode.PAYMENT_CANCELLED


@dataclass(frozen=True)
class Payment:
    """Request to buy a product."""

    product_identifier: str
    quantity: int = 1

    def __post_init__(self) -> None:
        """Validate payment fields."""
        if not self.product_identifier:
            raise ValueError("Product identifier required")
        if self.quantity <= 0:
            raise ValueError(f"Quantity must be positive: {self.quantity}")


@dataclass(frozen=True)
class PaymentTransaction:
    """Transaction delivered by the platform purchase queue."""

    transaction_id: str | None
    payment: Payment
    state: TransactionState
    error: TransactionError | None = None
    original: "PaymentTransaction | None" = None  # Set for restores


@dataclass(frozen=True)
class TransactionRecord:
    """What the reconciler did with one queue event."""

    product_identifier: str
    state: TransactionState
    error: TransactionError | None
    original_product_identifier: str | None
    is_last: bool  # Last transaction of the delivered batch
    finalized: bool


@dataclass(frozen=True)
class Product:
    """Catalog entry returned by the platform product query."""

    product_identifier: str
    localized_title: str
    price: Decimal
    currency: str = "USD"

    def __post_init__(self) -> None:
        """Validate product fields."""
        if not self.product_identifier:
            raise ValueError("Product identifier required")
        if self.price < 0:
            raise ValueError(f"Price cannot be negative: {self.price}")
