"""
Receipt validation policy tables.

Maps server status codes to outcomes and outcomes to follow-up actions.
These tables are business policy: change them only together with the host
application's entitlement rules.
"""

from storelayer.models.receipt import FollowUpAction, PresentationHint, ValidationOutcome

# Outcome -> follow-up action
FOLLOW_UP_ACTIONS: dict[ValidationOutcome, FollowUpAction] = {
    ValidationOutcome.SUBSCRIPTION_VALID: FollowUpAction.PASS,
    ValidationOutcome.SERVER_ERROR: FollowUpAction.TOLERATE,
    ValidationOutcome.APPLE_SERVER_DOWN: FollowUpAction.TOLERATE,
    ValidationOutcome.NETWORK_ERROR: FollowUpAction.TOLERATE,
    ValidationOutcome.STATUS_UNKNOWN: FollowUpAction.TOLERATE,
    ValidationOutcome.SECRET_KEY_MISMATCH: FollowUpAction.TERMINATE,
    ValidationOutcome.RECEIPT_NOT_FOUND: FollowUpAction.TERMINATE,
    ValidationOutcome.RECEIPT_INVALID: FollowUpAction.TERMINATE,
    ValidationOutcome.SUBSCRIPTION_EXPIRED: FollowUpAction.TERMINATE,
    ValidationOutcome.CORRUPT_DATA: FollowUpAction.TERMINATE,
    ValidationOutcome.BUNDLE_ID_INVALID: FollowUpAction.TERMINATE,
    ValidationOutcome.CORRUPT_RECEIPT_DATA: FollowUpAction.TERMINATE,
    ValidationOutcome.WRONG_ENVIRONMENT: FollowUpAction.RE_RUN,
}

DEFAULT_ACTION = FollowUpAction.TOLERATE

# Server `status` -> outcome. Status 0 continues to the structural checks.
STATUS_OK = 0
STATUS_OUTCOMES: dict[int, ValidationOutcome] = {
    21000: ValidationOutcome.APPLE_SERVER_DOWN,
    21002: ValidationOutcome.CORRUPT_RECEIPT_DATA,
    21003: ValidationOutcome.RECEIPT_INVALID,
    21004: ValidationOutcome.SECRET_KEY_MISMATCH,  # iOS 6 style receipts only
    21005: ValidationOutcome.APPLE_SERVER_DOWN,
    21006: ValidationOutcome.SUBSCRIPTION_EXPIRED,
    21007: ValidationOutcome.WRONG_ENVIRONMENT,  # Sandbox receipt sent to production
}

RESTORE_EXPIRED_HINT = PresentationHint(title="⛔️", message="No valid purchase to restore")
RESTORE_VALID_HINT = PresentationHint(title="✅", message="Last purchase is restored")


def action_for(
    outcome: ValidationOutcome,
    table: dict[ValidationOutcome, FollowUpAction] = FOLLOW_UP_ACTIONS,
) -> FollowUpAction:
    """Get the follow-up action for an outcome, tolerating unmapped outcomes."""
    return table.get(outcome, DEFAULT_ACTION)


def should_refresh(outcome: ValidationOutcome) -> bool:
    """Check if the host should refresh the local receipt before re-validating."""
    return outcome is ValidationOutcome.CORRUPT_RECEIPT_DATA


def outcome_for_status(status: int) -> ValidationOutcome | None:
    """
    Classify a server status code.

    Returns:
        None for status 0 (receipt accepted, run the structural checks),
        otherwise the terminal outcome. Unlisted codes are STATUS_UNKNOWN.
    """
    if status == STATUS_OK:
        return None
    return STATUS_OUTCOMES.get(status, ValidationOutcome.STATUS_UNKNOWN)


def presentation_hint_for(
    outcome: ValidationOutcome,
    restore_in_progress: bool,
    silent: bool,
) -> PresentationHint | None:
    """Get the message to surface for an outcome, if any.

    Only restore flows produce a hint, and never in silent mode.
    """
    if not restore_in_progress or silent:
        return None
    if outcome is ValidationOutcome.SUBSCRIPTION_EXPIRED:
        return RESTORE_EXPIRED_HINT
    if outcome is ValidationOutcome.SUBSCRIPTION_VALID:
        return RESTORE_VALID_HINT
    return None
