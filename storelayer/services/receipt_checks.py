"""
Structural receipt checks.

Run in order after the server accepted a receipt (status 0). Each check
returns None to continue or a terminal outcome; the first terminal outcome
wins and later checks may assume all earlier ones passed.
"""

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from structlog import get_logger

from storelayer.models.receipt import InAppPurchase, ServerResponse, ValidationOutcome

logger = get_logger(__name__)

# Decides from the receipt's in-app purchases whether the subscription is valid
ExpirationPolicy = Callable[[Sequence[InAppPurchase]], bool]


def always_expired(purchases: Sequence[InAppPurchase]) -> bool:
    """Default expiration policy: no subscription is ever considered valid.

    Host applications supply the real entitlement rule.
    """
    return False


@dataclass(frozen=True)
class CheckContext:
    """What the checks know about the running application."""

    bundle_id: str
    expiration_policy: ExpirationPolicy = always_expired


ReceiptCheck = Callable[[ServerResponse, CheckContext], ValidationOutcome | None]


def check_signature(response: ServerResponse, context: CheckContext) -> ValidationOutcome | None:
    """Receipt signature check. Not implemented; always continues."""
    return None


def check_bundle_id(response: ServerResponse, context: CheckContext) -> ValidationOutcome | None:
    """Compare the receipt's bundle id with the running application's."""
    if response.receipt is None or response.receipt.bundle_id is None:
        return ValidationOutcome.CORRUPT_DATA
    if not context.bundle_id:
        logger.error("running_bundle_id_unknown")
        return ValidationOutcome.CORRUPT_DATA
    if response.receipt.bundle_id != context.bundle_id:
        logger.warning(
            "receipt_bundle_id_mismatch",
            receipt_bundle_id=response.receipt.bundle_id,
            expected_bundle_id=context.bundle_id,
        )
        return ValidationOutcome.BUNDLE_ID_INVALID
    return None


def check_app_version(response: ServerResponse, context: CheckContext) -> ValidationOutcome | None:
    """Application version check. Not implemented; always continues."""
    return None


def check_expiration(response: ServerResponse, context: CheckContext) -> ValidationOutcome:
    """Decide subscription validity from the in-app purchase list."""
    # check_bundle_id guarantees a receipt is present
    assert response.receipt is not None
    purchases = response.receipt.in_app
    if purchases is None:
        return ValidationOutcome.CORRUPT_DATA

    logger.debug(
        "checking_subscription_expiration",
        purchase_count=len(purchases),
        now_ms=time.time() * 1000,
    )
    if context.expiration_policy(purchases):
        return ValidationOutcome.SUBSCRIPTION_VALID
    return ValidationOutcome.SUBSCRIPTION_EXPIRED


RECEIPT_CHECKS: tuple[ReceiptCheck, ...] = (
    check_signature,
    check_bundle_id,
    check_app_version,
    check_expiration,
)


def run_checks(
    response: ServerResponse,
    context: CheckContext,
    checks: Iterable[ReceiptCheck] = RECEIPT_CHECKS,
) -> ValidationOutcome:
    """Run the checks in order and return the first terminal outcome."""
    for check in checks:
        outcome = check(response, context)
        if outcome is not None:
            return outcome
    # The chain must end in a terminal check
    return ValidationOutcome.CORRUPT_DATA


# ============================================================================
# Expiration helpers
# ============================================================================


def greatest_expiration(purchases: Iterable[InAppPurchase]) -> float:
    """
    Get the latest `expires_date_ms` across purchases.

    Entries without a parsable value are ignored.

    Returns:
        Greatest expiration in epoch milliseconds, 0 when none parse
    """
    greatest = 0.0
    for purchase in purchases:
        if purchase.expires_date_ms is None:
            continue
        try:
            expires = float(purchase.expires_date_ms)
        except ValueError:
            continue
        if expires > greatest:
            greatest = expires
    return greatest


def is_unexpired(purchases: Iterable[InAppPurchase], now_ms: float) -> bool:
    """Check if the latest expiration is not earlier than `now_ms`."""
    return greatest_expiration(purchases) >= now_ms


def purchases_for_product(
    purchases: Iterable[InAppPurchase],
    product_id: str,
) -> list[InAppPurchase] | None:
    """Get the purchases of one product, or None if there are none."""
    matching = [p for p in purchases if p.product_id == product_id]
    return matching or None


def latest_expiration_policy(
    product_ids: Iterable[str],
    clock: Callable[[], float] = time.time,
) -> ExpirationPolicy:
    """
    Build a policy that accepts any listed product expiring in the future.

    Args:
        product_ids: Subscription products that grant the entitlement
        clock: Returns the current time in epoch seconds
    """
    wanted = tuple(product_ids)

    def policy(purchases: Sequence[InAppPurchase]) -> bool:
        now_ms = clock() * 1000
        for product_id in wanted:
            matching = purchases_for_product(purchases, product_id)
            if matching is not None and is_unexpired(matching, now_ms):
                return True
        return False

    return policy
