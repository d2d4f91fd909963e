"""
Store - Public surface of the in-app purchase layer.

Owns the purchased-product set, the cached product list, the notification
center, one lazily built receipt validator and the transaction reconciler.
All of it lives as long as the store instance.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from functools import cached_property

import httpx
from structlog import get_logger

from storelayer.config import StoreConfig, as_utc
from storelayer.exceptions import InvalidAppIdError, ProductRequestError
from storelayer.models.transaction import Payment, Product
from storelayer.observability.metrics import metrics
from storelayer.observability.tracing import add_span_attributes, get_tracer, set_span_error
from storelayer.services.dispatch import Dispatcher, ImmediateDispatcher, MainThreadDispatcher
from storelayer.services.notifications import NotificationCenter, StoreEvent, StoreNotification
from storelayer.services.platform import (
    PaymentQueue,
    ProductCatalog,
    ReceiptValidationDelegate,
    ReviewPrompter,
    StoreDelegate,
)
from storelayer.services.receipt_checks import ExpirationPolicy, always_expired
from storelayer.services.receipt_validator import ReceiptValidator, ValidationRun
from storelayer.services.transaction_reconciler import TransactionReconciler

logger = get_logger(__name__)
tracer = get_tracer(__name__)

REVIEW_URL_TEMPLATE = "itms-apps://itunes.apple.com/app/id{app_id}?action=write-review"


class Store:
    """
    In-app purchase store.

    Usage:
        store = Store(StoreConfig.from_settings(settings), queue, catalog)
        store.add_transaction_observer()  # at application launch
        products = await store.request_products()
        store.buy_product(products[0])
    """

    def __init__(
        self,
        config: StoreConfig,
        queue: PaymentQueue,
        catalog: ProductCatalog,
        dispatcher: Dispatcher | None = None,
        delegate: StoreDelegate | None = None,
        validation_delegate: ReceiptValidationDelegate | None = None,
        review_prompter: ReviewPrompter | None = None,
        expiration_policy: ExpirationPolicy = always_expired,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            config: Store configuration
            queue: Platform purchase queue
            catalog: Platform product catalog
            dispatcher: Hand-off to the main context (defaults to the loop
                running at construction, inline when there is none)
            delegate: Receives drained/cancelled callbacks
            validation_delegate: Receives receipt validation results
            review_prompter: Native rating prompt
            expiration_policy: Subscription validity rule for receipt validation
            transport: HTTP transport for the validation endpoint
        """
        self.config = config
        self.queue = queue
        self.catalog = catalog
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if dispatcher is None:
            dispatcher = MainThreadDispatcher(loop) if loop is not None else ImmediateDispatcher()
        elif loop is None and isinstance(dispatcher, MainThreadDispatcher):
            loop = dispatcher.loop
        # The store's main context; validations run on this loop
        self._loop = loop
        self.dispatcher = dispatcher
        self.validation_delegate = validation_delegate
        self.review_prompter = review_prompter
        self.expiration_policy = expiration_policy
        self._transport = transport

        self.notifications = NotificationCenter()
        self.purchased_product_identifiers: set[str] = set()
        self.products: list[Product] | None = None
        self.existing_product_identifiers: list[str] = []
        self._products_request: asyncio.Future[list[Product]] | None = None
        self._is_observing = False
        self.restore_in_progress = False
        self.notifications.subscribe(StoreEvent.RESTORE_FINISHED, self._on_restore_finished)

        self.reconciler = TransactionReconciler(
            queue=queue,
            dispatcher=self.dispatcher,
            notifications=self.notifications,
            purchased_identifiers=self.purchased_product_identifiers,
            delegate=delegate,
            validator=lambda: self.receipt_validator,
        )

        for product_identifier in sorted(config.product_identifiers):
            if self.is_product_purchased(product_identifier):
                self.purchased_product_identifiers.add(product_identifier)
                logger.debug("product_previously_purchased", product_id=product_identifier)
            else:
                logger.debug("product_not_purchased", product_id=product_identifier)

        logger.info("store_initialized", product_count=len(config.product_identifiers))

    @property
    def delegate(self) -> StoreDelegate | None:
        """Get the purchase flow delegate."""
        return self.reconciler.delegate

    @delegate.setter
    def delegate(self, delegate: StoreDelegate | None) -> None:
        self.reconciler.delegate = delegate

    @cached_property
    def receipt_validator(self) -> ReceiptValidator:
        """Receipt validator built from the store configuration on first use."""
        return ReceiptValidator(
            config=self.config.validation_config(),
            delegate=self.validation_delegate,
            notifications=self.notifications,
            expiration_policy=self.expiration_policy,
            transport=self._transport,
            loop=self._loop,
        )

    # ========================================================================
    # Transaction observer
    # ========================================================================

    def add_transaction_observer(self) -> None:
        """Start observing the purchase queue. Call at application launch."""
        if not self._is_observing:
            self.queue.add_observer(self.reconciler)
            self._is_observing = True
        logger.info("transaction_observer_added")

    def remove_transaction_observer(self) -> None:
        """Stop observing the purchase queue."""
        if self._is_observing:
            self.queue.remove_observer(self.reconciler)
            self._is_observing = False
        logger.info("transaction_observer_removed")

    # ========================================================================
    # Catalog and purchases
    # ========================================================================

    async def request_products(self) -> list[Product]:
        """
        Get the catalog entries of the configured products.

        The first successful result is cached for the lifetime of the store,
        even when empty. A newer request cancels a pending one; the older
        caller then sees asyncio.CancelledError.

        Raises:
            ProductRequestError: If the catalog query fails
        """
        if self._products_request is not None and not self._products_request.done():
            self._products_request.cancel()
            logger.info("product_request_cancelled")

        if self.products is not None:
            return self.products

        self.existing_product_identifiers = []
        request = asyncio.ensure_future(
            self.catalog.fetch_products(sorted(self.config.product_identifiers))
        )
        self._products_request = request

        with tracer.start_as_current_span("product_request") as span:
            try:
                products = await request
            except Exception as exc:
                set_span_error(span, exc)
                metrics.record_product_request(False)
                logger.error("product_request_failed", error=str(exc))
                raise ProductRequestError(str(exc)) from exc
            finally:
                if self._products_request is request:
                    self._products_request = None
            add_span_attributes(span, product_count=len(products))

        self.products = products
        for product in products:
            logger.debug(
                "product_found",
                product_id=product.product_identifier,
                title=product.localized_title,
                price=str(product.price),
            )
            self.existing_product_identifiers.append(product.product_identifier)

        metrics.record_product_request(True)
        logger.info("products_loaded", count=len(self.existing_product_identifiers))
        return products

    def buy_product(self, product: Product) -> None:
        """Enqueue a payment for a product."""
        self.queue.add_payment(Payment(product_identifier=product.product_identifier))
        logger.info("purchase_started", product_id=product.product_identifier)

    def restore_purchases(self) -> None:
        """Ask the queue to redeliver completed transactions."""
        self.restore_in_progress = True
        self.queue.restore_completed_transactions()
        logger.info("restore_started")

    def is_product_purchased(self, product_identifier: str) -> bool:
        """Check purchase history for a product.

        Not backed by any purchase history yet: always False.
        """
        return False

    def can_make_payments(self) -> bool:
        """Check if the user is allowed to make payments."""
        return self.queue.can_make_payments()

    def validate_receipt(self, restore_in_progress: bool = False) -> ValidationRun:
        """Start a receipt validation run on the store's event loop."""
        return self.receipt_validator.start(restore_in_progress)

    def _on_restore_finished(self, notification: StoreNotification) -> None:
        self.restore_in_progress = False
        logger.info("restore_finished")

    # ========================================================================
    # Rating prompt
    # ========================================================================

    def user_can_be_asked_to_rate(
        self,
        shown_at: datetime,
        score: float,
        now: datetime | None = None,
    ) -> bool:
        """
        Check if it's ok to show the rating prompt.

        Args:
            shown_at: When the user was last asked to rate (naive means UTC)
            score: Total active usage time in seconds
            now: Current time (defaults to now, UTC)

        Returns:
            True if enough usage and enough days passed since the last prompt
        """
        usage_since_last = score - self.config.user_usage_time_at_last_rating_seconds
        if usage_since_last < self.config.rate_ask_duration_threshold_minutes * 60:
            return False

        now = as_utc(now) if now is not None else datetime.now(UTC)
        allowed_at = as_utc(shown_at) + timedelta(days=self.config.rate_ask_time_threshold_days)
        return allowed_at < now

    def ask_for_rating(self) -> bool:
        """Show the native rating prompt if the user is eligible."""
        if self.review_prompter is None:
            return False
        if not self.user_can_be_asked_to_rate(
            self.config.last_time_rate_asked, self.config.user_usage_time_seconds
        ):
            return False
        self.review_prompter.request_review()
        logger.info("user_asked_for_rating")
        return True

    def review_url(self) -> str:
        """
        Get the App Store write-review URL.

        Raises:
            InvalidAppIdError: If no App Store app id is configured
        """
        if self.config.apple_app_id <= 0:
            raise InvalidAppIdError(self.config.apple_app_id)
        return REVIEW_URL_TEMPLATE.format(app_id=self.config.apple_app_id)

    def open_review_page(self) -> bool:
        """Open the App Store review page, returning whether it was opened."""
        if self.review_prompter is None:
            return False
        try:
            url = self.review_url()
        except InvalidAppIdError:
            logger.warning("review_page_unavailable", app_id=self.config.apple_app_id)
            return False
        return self.review_prompter.open_url(url)
