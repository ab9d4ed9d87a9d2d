"""Audit logging for reconciliation events.

Every event the coordinator emits is written as one JSON line to a
dedicated rotating audit log, separate from the diagnostic log.
"""
import json
import logging
import os
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from ..config_engine.events import EventSink, LoggingEventSink

# Create dedicated audit logger
audit_logger = logging.getLogger("arc.audit")


def default_audit_file() -> Path:
    return Path(os.path.expanduser("~/.arc")) / "audit.log"


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.arc/

    Returns:
        Path of the audit log file
    """
    audit_file = Path(log_dir) / "audit.log" if log_dir else default_audit_file()
    audit_file.parent.mkdir(parents=True, exist_ok=True)

    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
    )
    # JSON lines, no decoration
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)

    # Don't propagate to the arc console logger
    audit_logger.propagate = False
    return audit_file


@dataclass
class EventRecord:
    """One audited reconciliation event."""
    timestamp: str
    event: str
    device_id: str
    user: str
    fields: dict = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "EventRecord":
        return cls(**json.loads(json_str))


class AuditEventSink(EventSink):
    """Writes events to the audit log and forwards them to the console log."""

    def __init__(self, user: Optional[str] = None, forward: Optional[EventSink] = None):
        self.user = user or os.environ.get("USER", "system")
        self.forward = forward if forward is not None else LoggingEventSink()

    def emit(self, event: str, device_id: str, **fields: Any) -> None:
        record = EventRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            device_id=device_id,
            user=self.user,
            fields={k: v for k, v in fields.items() if v is not None},
        )
        audit_logger.info(record.to_json())
        self.forward.emit(event, device_id, **fields)


def get_recent_events(
    log_file: Optional[str] = None,
    device_id: Optional[str] = None,
    event: Optional[str] = None,
    limit: int = 100,
) -> list[EventRecord]:
    """Read recent events from the audit log, most recent first."""
    path = Path(log_file) if log_file else default_audit_file()
    if not path.exists():
        return []

    records = []
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = EventRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines
            if device_id and record.device_id != device_id:
                continue
            if event and record.event != event:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
