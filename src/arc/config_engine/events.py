"""Event emission for the apply coordinator.

The coordinator only needs somewhere to send structured events; what
happens to them (log lines, audit records) is up to the sink.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger("arc.events")

OPERATION_STARTED = "operation_started"
OPERATION_APPLIED = "operation_applied"
OPERATION_FAILED = "operation_failed"
OPERATION_RETRY = "operation_retry"
OPERATION_ROLLED_BACK = "operation_rolled_back"
ROLLBACK_INITIATED = "rollback_initiated"
ROLLBACK_FAILED = "rollback_failed"
TRANSACTION_BEGIN = "transaction_begin"
TRANSACTION_COMMIT = "transaction_commit"
TRANSACTION_ABORT = "transaction_abort"

_WARNING_EVENTS = {OPERATION_FAILED, OPERATION_RETRY, ROLLBACK_INITIATED, TRANSACTION_ABORT}
_ERROR_EVENTS = {ROLLBACK_FAILED}


class EventSink(ABC):
    """Receives structured reconciliation events."""

    @abstractmethod
    def emit(self, event: str, device_id: str, **fields: Any) -> None:
        """Record one event."""
        pass


class NullEventSink(EventSink):
    """Discards every event."""

    def emit(self, event: str, device_id: str, **fields: Any) -> None:
        pass


class LoggingEventSink(EventSink):
    """Writes events as key=value log lines on the arc.events logger."""

    def emit(self, event: str, device_id: str, **fields: Any) -> None:
        if event in _ERROR_EVENTS:
            level = logging.ERROR
        elif event in _WARNING_EVENTS:
            level = logging.WARNING
        else:
            level = logging.INFO
        extra = " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
        logger.log(level, f"{event:22s} | {device_id:15s} | {extra}")
