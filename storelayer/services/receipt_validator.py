"""
Receipt Validator - Server-side validation of the local App Store receipt.

Pipeline for one attempt:
    locate -> load -> encode/transmit -> parse -> classify -> checks -> report

Every stage that fails ends the attempt with exactly one ValidationOutcome.
The outcome is mapped to a FollowUpAction and reported to the delegate once.
There are no retries.
"""

import asyncio
import base64
import concurrent.futures
import time
from pathlib import Path
from typing import ClassVar

import httpx
from structlog import get_logger

from storelayer.config import settings
from storelayer.exceptions import NoEventLoopError, ValidationAborted
from storelayer.models.receipt import (
    ServerResponse,
    ValidationConfig,
    ValidationOutcome,
    ValidationReport,
)
from storelayer.observability.metrics import metrics
from storelayer.observability.tracing import add_span_attributes, get_tracer
from storelayer.services.notifications import NotificationCenter, StoreEvent, StoreNotification
from storelayer.services.platform import ReceiptValidationDelegate
from storelayer.services.receipt_checks import (
    CheckContext,
    ExpirationPolicy,
    always_expired,
    run_checks,
)
from storelayer.services.validation_policy import (
    action_for,
    outcome_for_status,
    presentation_hint_for,
    should_refresh,
)

logger = get_logger(__name__)
tracer = get_tracer(__name__)


ValidationRun = asyncio.Future[ValidationReport] | concurrent.futures.Future[ValidationReport]


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def encode_receipt(data: bytes) -> str:
    """Base64-encode receipt bytes with no CR/LF characters."""
    encoded = base64.encodebytes(data).decode("ascii")
    return encoded.replace("\n", "").replace("\r", "")


def build_request_body(data: bytes, config: ValidationConfig) -> dict[str, str]:
    """Build the JSON body posted to the validation endpoint."""
    return {"data": encode_receipt(data), "env": config.environment_flag}


class ReceiptValidator:
    """
    Validates the local receipt against the validation endpoint.

    Concurrent runs are neither deduplicated nor serialized: every start()
    sends its own request and reports its own result.
    """

    # Running validations, kept alive until they report
    _running: ClassVar[set[asyncio.Task[ValidationReport]]] = set()
    # Runs submitted from other threads, kept alive until they report
    _submitted: ClassVar[set[concurrent.futures.Future[ValidationReport]]] = set()

    def __init__(
        self,
        config: ValidationConfig,
        delegate: ReceiptValidationDelegate | None = None,
        notifications: NotificationCenter | None = None,
        expiration_policy: ExpirationPolicy = always_expired,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """
        Initialize the receipt validator.

        Args:
            config: Validation endpoint and receipt location
            delegate: Receives the follow-up action of each run
            notifications: Receives RESTORE_FINISHED after restore runs
            expiration_policy: Decides subscription validity from in-app purchases
            transport: HTTP transport override (tests, proxies)
            timeout: Request timeout in seconds
            loop: Event loop that runs validations (defaults to the running loop)
        """
        self.config = config
        self.delegate = delegate
        self.notifications = notifications
        self.expiration_policy = expiration_policy
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.validation_timeout_seconds
        self._loop = loop if loop is not None else _running_loop()

    # ========================================================================
    # Public API
    # ========================================================================

    def start(self, restore_in_progress: bool = False) -> ValidationRun:
        """
        Schedule one validation run.

        On the validator's loop the run becomes a task of that loop. From any
        other thread it is submitted to the validator's loop, so the delegate
        is always called on that loop.

        Args:
            restore_in_progress: The run finishes a restore request

        Returns:
            Task (or, from another thread, concurrent future) resolving to the
            run's report

        Raises:
            NoEventLoopError: If no loop is running and none was captured
        """
        running = _running_loop()
        if running is not None and (self._loop is None or running is self._loop):
            task = running.create_task(self.validate(restore_in_progress))
            ReceiptValidator._running.add(task)
            task.add_done_callback(ReceiptValidator._running.discard)
            return task

        if self._loop is None or self._loop.is_closed():
            raise NoEventLoopError()

        logger.debug("receipt_validation_submitted", restore_in_progress=restore_in_progress)
        future = asyncio.run_coroutine_threadsafe(self.validate(restore_in_progress), self._loop)
        ReceiptValidator._submitted.add(future)
        future.add_done_callback(ReceiptValidator._submitted.discard)
        return future

    async def validate(self, restore_in_progress: bool = False) -> ValidationReport:
        """
        Run the validation pipeline to completion and report the result.

        Args:
            restore_in_progress: The run finishes a restore request

        Returns:
            The report passed to the delegate
        """
        started = time.monotonic()
        with tracer.start_as_current_span("receipt_validation") as span:
            add_span_attributes(
                span,
                sandbox=self.config.sandbox,
                restore_in_progress=restore_in_progress,
            )
            try:
                outcome = await self._run_pipeline()
            except ValidationAborted as exc:
                outcome = exc.outcome
            add_span_attributes(span, outcome=outcome.value)

        return self._end_validation(outcome, restore_in_progress, time.monotonic() - started)

    # ========================================================================
    # Pipeline stages
    # ========================================================================

    async def _run_pipeline(self) -> ValidationOutcome:
        path = self._locate_receipt()
        data = self._load_receipt(path)
        response = await self._send_receipt(data)
        return self._classify(response)

    def _locate_receipt(self) -> Path:
        """Check that the receipt path is configured and reachable."""
        path = self.config.receipt_path
        if path is None:
            logger.error("receipt_path_not_configured")
            raise ValidationAborted(ValidationOutcome.RECEIPT_NOT_FOUND)
        try:
            reachable = path.is_file()
        except OSError as exc:
            logger.error("receipt_not_reachable", receipt_path=str(path), error=str(exc))
            raise ValidationAborted(ValidationOutcome.RECEIPT_NOT_FOUND) from exc
        if not reachable:
            logger.error("receipt_not_found", receipt_path=str(path))
            raise ValidationAborted(ValidationOutcome.RECEIPT_NOT_FOUND)
        return path

    def _load_receipt(self, path: Path) -> bytes:
        """Read the receipt bytes. Read failures count as a missing receipt."""
        try:
            return path.read_bytes()
        except OSError as exc:
            logger.error("receipt_load_failed", receipt_path=str(path), error=str(exc))
            raise ValidationAborted(ValidationOutcome.RECEIPT_NOT_FOUND) from exc

    async def _send_receipt(self, data: bytes) -> ServerResponse:
        """Post the receipt and parse the response object."""
        body = build_request_body(data, self.config)

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.post(self.config.validation_url, json=body)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("receipt_validation_request_failed", error=str(exc))
            raise ValidationAborted(ValidationOutcome.NETWORK_ERROR) from exc

        if not response.content:
            logger.error("receipt_validation_empty_response", status_code=response.status_code)
            raise ValidationAborted(ValidationOutcome.NETWORK_ERROR)

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("receipt_validation_serialization_failure", error=str(exc))
            raise ValidationAborted(ValidationOutcome.SERVER_ERROR) from exc

        if not isinstance(payload, dict):
            logger.error(
                "receipt_validation_unexpected_payload",
                payload_type=type(payload).__name__,
            )
            raise ValidationAborted(ValidationOutcome.SERVER_ERROR)

        return ServerResponse.from_json(payload)

    def _classify(self, response: ServerResponse) -> ValidationOutcome:
        """Map the server status, then run the structural checks.

        A missing or non-numeric status is not an outcome of its own; the
        structural checks decide as they do on status 0.
        """
        status = response.status_code
        if status is not None:
            logger.info("receipt_status_received", status=status)
            outcome = outcome_for_status(status)
            if outcome is not None:
                return outcome
        elif response.status is not None:
            logger.warning("receipt_status_not_numeric", status=repr(response.status))

        context = CheckContext(
            bundle_id=self.config.bundle_id,
            expiration_policy=self.expiration_policy,
        )
        return run_checks(response, context)

    # ========================================================================
    # Report
    # ========================================================================

    def _end_validation(
        self,
        outcome: ValidationOutcome,
        restore_in_progress: bool,
        duration: float,
    ) -> ValidationReport:
        """Apply the policy and notify the delegate exactly once."""
        report = ValidationReport(
            outcome=outcome,
            action=action_for(outcome),
            should_refresh=should_refresh(outcome),
            presentation_hint=presentation_hint_for(
                outcome, restore_in_progress, self.config.silent
            ),
            restore_in_progress=restore_in_progress,
        )

        logger.info(
            "receipt_validation_finished",
            outcome=report.outcome.value,
            action=report.action.value,
            should_refresh=report.should_refresh,
            restore_in_progress=restore_in_progress,
        )
        metrics.record_validation(report.outcome.value, report.action.value, duration)

        if restore_in_progress and self.notifications is not None:
            self.notifications.post(StoreNotification(event=StoreEvent.RESTORE_FINISHED))

        if self.delegate is not None:
            self.delegate.on_validation_complete(
                report.action,
                report.should_refresh,
                report.presentation_hint,
            )

        return report
