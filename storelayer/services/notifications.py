"""
Store notifications - Name-keyed broadcast of purchase events.

One center is owned by each store instance and shared with its validator
and reconciler.
"""

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from structlog import get_logger

from storelayer.models.transaction import TransactionError
from storelayer.observability.metrics import metrics

logger = get_logger(__name__)


class StoreEvent(str, Enum):
    """Broadcast event names."""

    PURCHASE_COMPLETED = "purchase_completed"
    RESTORE_FINISHED = "restore_finished"
    TRANSACTION_FAILED = "transaction_failed"


@dataclass(frozen=True)
class StoreNotification:
    """A broadcast event.

    TRANSACTION_FAILED without an error is the neutral event posted for a
    purchase the user cancelled.
    """

    event: StoreEvent
    product_identifier: str | None = None
    error: TransactionError | None = None


NotificationHandler = Callable[[StoreNotification], None]


class NotificationCenter:
    """Delivers notifications to the handlers subscribed to their event."""

    def __init__(self) -> None:
        self._handlers: defaultdict[StoreEvent, list[NotificationHandler]] = defaultdict(list)

    def subscribe(self, event: StoreEvent, handler: NotificationHandler) -> Callable[[], None]:
        """
        Subscribe a handler to an event.

        Returns:
            Callable that removes the subscription
        """
        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[event]:
                self._handlers[event].remove(handler)

        return unsubscribe

    def post(self, notification: StoreNotification) -> None:
        """Deliver a notification to every subscribed handler."""
        metrics.record_event(notification.event.value)
        for handler in list(self._handlers[notification.event]):
            try:
                handler(notification)
            except Exception:
                logger.exception(
                    "notification_handler_failed",
                    notification_event=notification.event.value,
                )
