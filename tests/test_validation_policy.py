"""
Tests for the receipt validation policy tables.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from storelayer.models.receipt import FollowUpAction, ValidationOutcome
from storelayer.services.validation_policy import (
    FOLLOW_UP_ACTIONS,
    RESTORE_EXPIRED_HINT,
    RESTORE_VALID_HINT,
    STATUS_OUTCOMES,
    action_for,
    outcome_for_status,
    presentation_hint_for,
    should_refresh,
)

EXPECTED_ACTIONS = {
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

KNOWN_STATUSES = {0, 21000, 21002, 21003, 21004, 21005, 21006, 21007}


class TestFollowUpActions:
    """Tests for the outcome -> action table."""

    def test_table_covers_every_outcome(self):
        """Every outcome has an explicit entry."""
        assert set(FOLLOW_UP_ACTIONS) == set(ValidationOutcome)

    @pytest.mark.parametrize("outcome,expected", list(EXPECTED_ACTIONS.items()))
    def test_action_for_outcome(self, outcome, expected):
        """Each outcome maps to its policy action."""
        assert action_for(outcome) is expected

    def test_unmapped_outcome_is_tolerated(self):
        """An outcome missing from the table falls back to tolerate."""
        table = dict(FOLLOW_UP_ACTIONS)
        del table[ValidationOutcome.RECEIPT_INVALID]

        assert action_for(ValidationOutcome.RECEIPT_INVALID, table) is FollowUpAction.TOLERATE

    def test_empty_table_tolerates_everything(self):
        """With no entries at all every outcome is tolerated."""
        for outcome in ValidationOutcome:
            assert action_for(outcome, {}) is FollowUpAction.TOLERATE


class TestShouldRefresh:
    """Tests for the receipt refresh rule."""

    def test_corrupt_receipt_data_refreshes(self):
        """Only corrupt receipt data asks for a refresh."""
        assert should_refresh(ValidationOutcome.CORRUPT_RECEIPT_DATA) is True

    @pytest.mark.parametrize(
        "outcome",
        [o for o in ValidationOutcome if o is not ValidationOutcome.CORRUPT_RECEIPT_DATA],
    )
    def test_other_outcomes_do_not_refresh(self, outcome):
        """The other twelve outcomes never refresh."""
        assert should_refresh(outcome) is False


class TestStatusOutcomes:
    """Tests for the server status -> outcome table."""

    def test_status_zero_continues(self):
        """Status 0 is not an outcome."""
        assert outcome_for_status(0) is None

    @pytest.mark.parametrize(
        "status,expected",
        [
            (21000, ValidationOutcome.APPLE_SERVER_DOWN),
            (21002, ValidationOutcome.CORRUPT_RECEIPT_DATA),
            (21003, ValidationOutcome.RECEIPT_INVALID),
            (21004, ValidationOutcome.SECRET_KEY_MISMATCH),
            (21005, ValidationOutcome.APPLE_SERVER_DOWN),
            (21006, ValidationOutcome.SUBSCRIPTION_EXPIRED),
            (21007, ValidationOutcome.WRONG_ENVIRONMENT),
        ],
    )
    def test_known_status(self, status, expected):
        """Listed codes map exactly."""
        assert outcome_for_status(status) is expected

    @pytest.mark.parametrize("status", [-1, 1, 21001, 21008, 21010, 999999])
    def test_edge_status_is_unknown(self, status):
        """Codes next to the listed ones are unknown."""
        assert outcome_for_status(status) is ValidationOutcome.STATUS_UNKNOWN

    @given(st.integers().filter(lambda s: s not in KNOWN_STATUSES))
    def test_any_other_status_is_unknown(self, status):
        """Every unlisted integer is unknown."""
        assert outcome_for_status(status) is ValidationOutcome.STATUS_UNKNOWN

    def test_table_has_seven_terminal_codes(self):
        """Status 0 is handled outside the table."""
        assert set(STATUS_OUTCOMES) == KNOWN_STATUSES - {0}


class TestPresentationHint:
    """Tests for restore presentation hints."""

    def test_restore_valid(self):
        """A restored valid subscription is announced."""
        hint = presentation_hint_for(ValidationOutcome.SUBSCRIPTION_VALID, True, False)
        assert hint == RESTORE_VALID_HINT
        assert hint.message == "Last purchase is restored"

    def test_restore_expired(self):
        """A restore with nothing valid is announced."""
        hint = presentation_hint_for(ValidationOutcome.SUBSCRIPTION_EXPIRED, True, False)
        assert hint == RESTORE_EXPIRED_HINT
        assert hint.message == "No valid purchase to restore"

    def test_silent_restore_has_no_hint(self):
        """Silent mode suppresses restore hints."""
        assert presentation_hint_for(ValidationOutcome.SUBSCRIPTION_VALID, True, True) is None
        assert presentation_hint_for(ValidationOutcome.SUBSCRIPTION_EXPIRED, True, True) is None

    @pytest.mark.parametrize("outcome", list(ValidationOutcome))
    def test_no_hint_outside_restore(self, outcome):
        """Regular validations never carry a hint."""
        assert presentation_hint_for(outcome, False, False) is None

    def test_restore_with_other_outcome(self):
        """Restore hints only cover valid and expired subscriptions."""
        assert presentation_hint_for(ValidationOutcome.NETWORK_ERROR, True, False) is None
