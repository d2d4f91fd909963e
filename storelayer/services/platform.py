"""
Platform Protocols - Interfaces of the store's external collaborators.

The platform purchase queue, product catalog and rating prompt live outside
this package. Host applications implement these protocols over their
platform bindings.
"""

from collections.abc import Iterable
from typing import Protocol

from storelayer.models.receipt import FollowUpAction, PresentationHint
from storelayer.models.transaction import (
    Payment,
    PaymentTransaction,
    Product,
    TransactionError,
)


class TransactionObserver(Protocol):
    """Receives purchase queue updates."""

    def updated_transactions(self, transactions: list[PaymentTransaction]) -> object:
        """Handle a batch of transaction state changes."""
        ...

    def restore_completed_transactions_finished(self) -> None:
        """Handle the end of a restore request."""
        ...

    def restore_completed_transactions_failed(self, error: TransactionError) -> None:
        """Handle a failed restore request."""
        ...

    def should_add_store_payment(self, payment: Payment, product: Product) -> bool:
        """Decide whether to accept a purchase started from the storefront."""
        ...


class PaymentQueue(Protocol):
    """
    Platform purchase queue.

    Delivers transaction updates to registered observers, possibly from its
    own thread.
    """

    def add_payment(self, payment: Payment) -> None:
        """Enqueue a payment."""
        ...

    def finish_transaction(self, transaction: PaymentTransaction) -> None:
        """Finalize a transaction so it is not redelivered."""
        ...

    def restore_completed_transactions(self) -> None:
        """Ask for redelivery of completed transactions."""
        ...

    def can_make_payments(self) -> bool:
        """Check if the user is allowed to make payments."""
        ...

    def add_observer(self, observer: TransactionObserver) -> None:
        """Register a transaction observer."""
        ...

    def remove_observer(self, observer: TransactionObserver) -> None:
        """Unregister a transaction observer."""
        ...


class ProductCatalog(Protocol):
    """Platform product catalog query."""

    async def fetch_products(self, identifiers: Iterable[str]) -> list[Product]:
        """
        Get the catalog entries matching the identifiers.

        Raises:
            Exception: Any failure of the platform query
        """
        ...


class ReviewPrompter(Protocol):
    """Native rating prompt and URL opener."""

    def request_review(self) -> None:
        """Show the native rating prompt."""
        ...

    def open_url(self, url: str) -> bool:
        """Open a URL, returning whether it was opened."""
        ...


class ReceiptValidationDelegate(Protocol):
    """Receives the result of each receipt validation."""

    def on_validation_complete(
        self,
        action: FollowUpAction,
        should_refresh: bool,
        presentation_hint: PresentationHint | None,
    ) -> None:
        """Handle the follow-up action of a finished validation."""
        ...


class StoreDelegate(Protocol):
    """Receives purchase flow callbacks."""

    def on_transaction_list_drained(self) -> None:
        """Handle a delivered purchase."""
        ...

    def on_purchase_cancelled(self) -> None:
        """Handle a purchase cancelled by the user."""
        ...
