"""
Transaction Reconciler - Purchase queue observer.

Decides for each transaction update whether to complete, restore or fail it,
finalizes every terminal transaction with the queue and starts receipt
validation after purchases and restores.

The queue may call in from its own thread. Anything that touches store state
or host callbacks is handed to the main context through the dispatcher.
"""

from collections.abc import Callable

from structlog import get_logger

from storelayer.exceptions import NoEventLoopError
from storelayer.models.transaction import (
    Payment,
    PaymentTransaction,
    Product,
    TransactionError,
    TransactionRecord,
    TransactionState,
)
from storelayer.observability.metrics import metrics
from storelayer.services.dispatch import Dispatcher
from storelayer.services.notifications import NotificationCenter, StoreEvent, StoreNotification
from storelayer.services.platform import PaymentQueue, StoreDelegate
from storelayer.services.receipt_validator import ReceiptValidator

logger = get_logger(__name__)


class TransactionReconciler:
    """Observes the purchase queue on behalf of a store."""

    def __init__(
        self,
        queue: PaymentQueue,
        dispatcher: Dispatcher,
        notifications: NotificationCenter,
        purchased_identifiers: set[str],
        delegate: StoreDelegate | None = None,
        validator: Callable[[], ReceiptValidator] | None = None,
    ) -> None:
        """
        Initialize the reconciler.

        Args:
            queue: Platform purchase queue used to finalize transactions
            dispatcher: Hand-off to the main context
            notifications: Broadcast channel for purchase events
            purchased_identifiers: The store's set of purchased products
            delegate: Receives drained/cancelled callbacks
            validator: Returns the validator to run after purchases and restores
        """
        self.queue = queue
        self.dispatcher = dispatcher
        self.notifications = notifications
        self.purchased_identifiers = purchased_identifiers
        self.delegate = delegate
        self._validator = validator

    # ========================================================================
    # Queue observer callbacks
    # ========================================================================

    def updated_transactions(
        self, transactions: list[PaymentTransaction]
    ) -> list[TransactionRecord]:
        """
        Handle a batch of transaction state changes.

        Returns:
            One record per transaction, in delivery order
        """
        records: list[TransactionRecord] = []
        should_validate_receipt = False

        for index, transaction in enumerate(transactions):
            is_last = index == len(transactions) - 1
            state = transaction.state
            metrics.record_transaction(state.value)

            if state is TransactionState.PURCHASED:
                self._complete(transaction, is_last)
                should_validate_receipt = True
            elif state is TransactionState.RESTORED:
                self._restore(transaction, is_last)
            elif state is TransactionState.FAILED:
                self._fail(transaction)
            elif state is TransactionState.DEFERRED:
                logger.info(
                    "transaction_deferred",
                    product_id=transaction.payment.product_identifier,
                )

            records.append(
                TransactionRecord(
                    product_identifier=transaction.payment.product_identifier,
                    state=state,
                    error=transaction.error,
                    original_product_identifier=transaction.original.payment.product_identifier
                    if transaction.original is not None
                    else None,
                    is_last=is_last,
                    finalized=state.is_terminal(),
                )
            )

        if should_validate_receipt:
            self._start_validation(restore_in_progress=False)

        return records

    def restore_completed_transactions_finished(self) -> None:
        """Validate the receipt now that restored transactions are delivered."""
        logger.info("restore_completed_transactions_finished")
        if self._validator is None:
            self.dispatcher.dispatch(
                lambda: self.notifications.post(
                    StoreNotification(event=StoreEvent.RESTORE_FINISHED)
                )
            )
            return
        self._start_validation(restore_in_progress=True)

    def restore_completed_transactions_failed(self, error: TransactionError) -> None:
        """Surface a failed restore request and end the restore."""
        logger.warning(
            "restore_completed_transactions_failed",
            error_code=error.code_name,
            error=error.description,
        )

        def deliver() -> None:
            self._post_failure(error)
            self.notifications.post(StoreNotification(event=StoreEvent.RESTORE_FINISHED))

        self.dispatcher.dispatch(deliver)

    def should_add_store_payment(self, payment: Payment, product: Product) -> bool:
        """Accept storefront purchases only when payments are allowed."""
        return self.queue.can_make_payments()

    # ========================================================================
    # Transaction handling
    # ========================================================================

    def deliver_purchase_notification(self, product_identifier: str | None) -> None:
        """Record a purchased product and tell listeners, on the main context."""
        if not product_identifier:
            return

        def deliver() -> None:
            self.purchased_identifiers.add(product_identifier)
            self.notifications.post(
                StoreNotification(
                    event=StoreEvent.PURCHASE_COMPLETED,
                    product_identifier=product_identifier,
                )
            )
            if self.delegate is not None:
                self.delegate.on_transaction_list_drained()

        self.dispatcher.dispatch(deliver)

    def _complete(self, transaction: PaymentTransaction, is_last: bool) -> None:
        self.deliver_purchase_notification(transaction.payment.product_identifier)
        self.queue.finish_transaction(transaction)
        logger.info(
            "transaction_completed",
            product_id=transaction.payment.product_identifier,
            is_last=is_last,
        )

    def _restore(self, transaction: PaymentTransaction, is_last: bool) -> None:
        if transaction.original is not None:
            # The current payment's product is delivered, not the original's
            self.deliver_purchase_notification(transaction.payment.product_identifier)
        else:
            logger.warning(
                "restored_transaction_without_original",
                transaction_id=transaction.transaction_id,
            )
        self.queue.finish_transaction(transaction)
        logger.info(
            "transaction_restored",
            product_id=transaction.payment.product_identifier,
            is_last=is_last,
        )

    def _fail(self, transaction: PaymentTransaction) -> None:
        error = transaction.error
        if error is None:
            logger.warning(
                "transaction_failed_without_error",
                product_id=transaction.payment.product_identifier,
            )
        else:
            logger.error(
                "transaction_failed",
                product_id=transaction.payment.product_identifier,
                error_code=error.code_name,
                error_domain=error.domain,
                error=error.description,
            )
            self.dispatcher.dispatch(lambda: self._post_failure(error))

        self.queue.finish_transaction(transaction)

    def _post_failure(self, error: TransactionError) -> None:
        # No error surfaces for a cancellation, only the neutral event
        if error.is_cancellation():
            self.notifications.post(StoreNotification(event=StoreEvent.TRANSACTION_FAILED))
            if self.delegate is not None:
                self.delegate.on_purchase_cancelled()
        else:
            self.notifications.post(
                StoreNotification(event=StoreEvent.TRANSACTION_FAILED, error=error)
            )

    def _start_validation(self, restore_in_progress: bool) -> None:
        if self._validator is None:
            return
        validator_factory = self._validator

        def start() -> None:
            try:
                validator_factory().start(restore_in_progress)
            except NoEventLoopError as exc:
                logger.error(
                    "receipt_validation_not_started",
                    error=str(exc),
                    restore_in_progress=restore_in_progress,
                )
                if restore_in_progress:
                    self.notifications.post(StoreNotification(event=StoreEvent.RESTORE_FINISHED))

        self.dispatcher.dispatch(start)
