"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from storelayer.models.receipt import ValidationOutcome


class StoreError(Exception):
    """Base exception for all store errors."""

    pass


class ProductRequestError(StoreError):
    """Raised when the product catalog query fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Product request failed: {message}")


class InvalidAppIdError(StoreError):
    """Raised when the App Store app id is not usable."""

    def __init__(self, app_id: int) -> None:
        self.app_id = app_id
        super().__init__(f"Invalid App Store app id: {app_id}")


class ValidationAborted(StoreError):
    """Raised inside the validation pipeline when a stage ends the attempt.

    Never escapes the validator; it is converted to a report.
    """

    def __init__(self, outcome: ValidationOutcome) -> None:
        self.outcome = outcome
        super().__init__(f"Receipt validation ended: {outcome.value}")


class NoEventLoopError(StoreError):
    """Raised when a validation run has no event loop to run on."""

    def __init__(self) -> None:
        super().__init__("No event loop to run receipt validation on")
