"""Apply coordinator: executes a ChangeSet on one device.

Operations run strictly in order, one request each. Transient errors are
retried while the operation is in flight; a rejection halts the run. On
failure the coordinator aborts the native transaction, or issues
compensating operations most-recent-first, and reports what happened to
every operation.
"""
import asyncio
import logging
import time
from typing import TYPE_CHECKING, Optional

from tenacity import RetryCallState

from ..config.settings import ReconcileSettings
from ..errors import DeviceError, NotAuthenticated
from ..utils.connection import RETRYABLE_EXCEPTIONS, async_retrying
from ..utils.logging_config import timed_section
from . import events
from .events import EventSink, LoggingEventSink
from .schema import ApplyStatus, ChangeSet, DeviceResult, Operation, OperationResult

if TYPE_CHECKING:
    from ..devices.base import NetworkDevice

logger = logging.getLogger(__name__)


class TransactionCoordinator:
    """Apply change sets with retry, rollback and cancellation."""

    def __init__(
        self,
        settings: Optional[ReconcileSettings] = None,
        event_sink: Optional[EventSink] = None,
    ):
        self.settings = settings or ReconcileSettings()
        self.events = event_sink or LoggingEventSink()

    async def apply(
        self,
        device: "NetworkDevice",
        change_set: ChangeSet,
        cancel: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
        dry_run: bool = False,
        result: Optional[DeviceResult] = None,
    ) -> DeviceResult:
        """
        Apply a change set to a connected device.

        Args:
            device: Connected device handler
            change_set: Operations in execution order
            cancel: Event checked between operations
            deadline: time.monotonic() value after which no new operation starts
            dry_run: Report every operation as skipped without sending anything
            result: Result to fill in (lets the caller keep partial outcomes
                if this task is cancelled)

        Returns:
            DeviceResult with one OperationResult per operation
        """
        if result is None:
            result = DeviceResult(device_id=device.device_id)
        result.stage = "apply"
        result.change_set = change_set
        result.dry_run = dry_run

        if dry_run:
            result.results = [
                OperationResult(op, ApplyStatus.SKIPPED, reason="dry run") for op in change_set
            ]
            return result
        if change_set.empty:
            return result

        async with timed_section("apply", device_id=device.device_id, operations=len(change_set)):
            await self._run(device, change_set, cancel, deadline, result)
        return result

    async def _run(
        self,
        device: "NetworkDevice",
        change_set: ChangeSet,
        cancel: Optional[asyncio.Event],
        deadline: Optional[float],
        result: DeviceResult,
    ) -> None:
        device_id = device.device_id
        use_transaction = device.supports_transactions

        if use_transaction:
            try:
                await device.begin_transaction()
            except DeviceError as e:
                result.error = f"Could not open transaction: {e}"
                result.error_type = type(e).__name__
                result.results = [
                    OperationResult(op, ApplyStatus.SKIPPED, reason="transaction not opened")
                    for op in change_set
                ]
                return
            result.transaction = True
            self.events.emit(events.TRANSACTION_BEGIN, device_id, operations=len(change_set))

        operations = list(change_set)
        try:
            for index, op in enumerate(operations):
                if self._cancelled(cancel, deadline):
                    result.cancelled = True
                    result.error = f"Cancelled before {op.describe()}"
                    result.error_type = "Cancelled"
                    self._skip(result, operations[index:], "cancelled")
                    break

                op_result = await self._apply_in_flight(device, op, result)
                if op_result.status != ApplyStatus.APPLIED:
                    result.error = f"{op.describe()} failed: {op_result.reason}"
                    result.error_type = op_result.error_type
                    self._skip(result, operations[index + 1:], f"not attempted: {op.ref} failed")
                    break
        except asyncio.CancelledError:
            # The in-flight operation has settled; undo before propagating
            result.cancelled = True
            result.error = result.error or "Cancelled while applying"
            result.error_type = result.error_type or "Cancelled"
            done = {id(r.operation) for r in result.results}
            self._skip(result, [op for op in operations if id(op) not in done], "cancelled")
            await self._finish(device, result, use_transaction, failed=True)
            raise

        await self._finish(device, result, use_transaction, failed=result.error is not None)

    async def _finish(
        self,
        device: "NetworkDevice",
        result: DeviceResult,
        use_transaction: bool,
        failed: bool,
    ) -> None:
        if use_transaction:
            if failed:
                await self._abort(device, result)
            else:
                await self._commit(device, result)
            return

        if not failed or not result.applied:
            return
        if self.settings.rollback_on_error:
            await self._compensate(device, result)
        else:
            logger.warning(
                f"{device.device_id}: rollback disabled, {len(result.applied)} applied "
                f"operation(s) retained"
            )

    @staticmethod
    def _cancelled(cancel: Optional[asyncio.Event], deadline: Optional[float]) -> bool:
        if cancel is not None and cancel.is_set():
            return True
        return deadline is not None and time.monotonic() >= deadline

    @staticmethod
    def _skip(result: DeviceResult, operations: list[Operation], reason: str) -> None:
        result.results.extend(
            OperationResult(op, ApplyStatus.SKIPPED, reason=reason) for op in operations
        )

    async def _apply_in_flight(
        self,
        device: "NetworkDevice",
        op: Operation,
        result: DeviceResult,
    ) -> OperationResult:
        """Apply one operation; if this task is cancelled, wait for its outcome first."""
        task = asyncio.ensure_future(self._apply_one(device, op))
        try:
            op_result = await asyncio.shield(task)
        except asyncio.CancelledError:
            op_result = await task
            result.results.append(op_result)
            raise
        result.results.append(op_result)
        return op_result

    async def _apply_one(self, device: "NetworkDevice", op: Operation) -> OperationResult:
        device_id = device.device_id
        self.events.emit(events.OPERATION_STARTED, device_id, op=op.describe())

        ok, message, attempts, error_type = await self._send(device, op, emit_retries=True)
        if ok:
            self.events.emit(events.OPERATION_APPLIED, device_id, op=op.describe(), attempts=attempts)
            return OperationResult(op, ApplyStatus.APPLIED, reason=message, attempts=attempts)

        self.events.emit(
            events.OPERATION_FAILED, device_id, op=op.describe(), attempts=attempts, reason=message
        )
        return OperationResult(
            op, ApplyStatus.FAILED, reason=message, attempts=attempts, error_type=error_type
        )

    async def _send(
        self,
        device: "NetworkDevice",
        op: Operation,
        emit_retries: bool,
    ) -> tuple[bool, str, int, str]:
        """Submit one operation, retrying only recoverable errors.

        Returns:
            Tuple of (success, message, attempts, error type)
        """
        attempts = 0

        def on_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.warning(
                f"{device.device_id}: {op.describe()} attempt {state.attempt_number} failed: {error}"
            )
            if emit_retries:
                self.events.emit(
                    events.OPERATION_RETRY,
                    device.device_id,
                    op=op.describe(),
                    attempt=state.attempt_number,
                    reason=str(error),
                )

        try:
            async for attempt in async_retrying(self.settings, before_sleep=on_retry):
                with attempt:
                    attempts += 1
                    ok, message = await device.apply_operation(op)
        except NotAuthenticated as e:
            return False, f"not authenticated: {e}", attempts, "NotAuthenticated"
        except RETRYABLE_EXCEPTIONS as e:
            return False, f"gave up after {attempts} attempt(s): {e}", attempts, "RetryExhausted"
        except DeviceError as e:
            return False, str(e), attempts, type(e).__name__
        except Exception as e:
            logger.exception(f"{device.device_id}: {op.describe()} raised: {e}")
            return False, f"unexpected error: {e}", attempts, type(e).__name__

        return ok, message, attempts, "" if ok else "Rejected"

    async def _compensate(self, device: "NetworkDevice", result: DeviceResult) -> None:
        """Undo applied operations, most recent first."""
        device_id = device.device_id
        applied = result.applied
        result.rollback_performed = True
        self.events.emit(events.ROLLBACK_INITIATED, device_id, operations=len(applied))

        for op_result in reversed(applied):
            op = op_result.operation
            try:
                compensation = op.compensation()
            except ValueError as e:
                self._rollback_failed(device_id, op_result, str(e))
                continue

            ok, message, _, _ = await self._send(device, compensation, emit_retries=False)
            if ok:
                op_result.status = ApplyStatus.ROLLED_BACK
                self.events.emit(
                    events.OPERATION_ROLLED_BACK, device_id,
                    op=op.describe(), compensation=compensation.describe(),
                )
            else:
                self._rollback_failed(device_id, op_result, message)

    def _rollback_failed(self, device_id: str, op_result: OperationResult, reason: str) -> None:
        op_result.status = ApplyStatus.FAILED
        op_result.rollback_reason = reason
        self.events.emit(
            events.ROLLBACK_FAILED, device_id, op=op_result.operation.describe(), reason=reason
        )

    async def _abort(self, device: "NetworkDevice", result: DeviceResult) -> None:
        device_id = device.device_id
        try:
            ok, message = await device.abort()
        except DeviceError as e:
            ok, message = False, str(e)
        self.events.emit(events.TRANSACTION_ABORT, device_id, success=ok, reason=message)

        result.rollback_performed = True
        for op_result in result.applied:
            if ok:
                op_result.status = ApplyStatus.ROLLED_BACK
                self.events.emit(events.OPERATION_ROLLED_BACK, device_id, op=op_result.operation.describe())
            else:
                self._rollback_failed(device_id, op_result, f"abort failed: {message}")

    async def _commit(self, device: "NetworkDevice", result: DeviceResult) -> None:
        device_id = device.device_id
        try:
            ok, message = await device.commit()
        except DeviceError as e:
            ok, message = False, str(e)
        self.events.emit(events.TRANSACTION_COMMIT, device_id, success=ok, reason=message)
        if ok:
            return

        # Nothing staged took effect
        result.error = f"Commit failed: {message}"
        result.error_type = "CommitFailed"
        for op_result in result.applied:
            op_result.status = ApplyStatus.FAILED
            op_result.rollback_reason = f"commit failed: {message}"
