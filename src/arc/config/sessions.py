"""Persisted device sessions.

Aruba switches hand out a session cookie on login. Reusing it across
invocations avoids exhausting the switch's small pool of REST sessions.
Only cookies are stored; passwords stay in the inventory or environment.
"""
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def default_session_file() -> Path:
    """Session file path, overridable with ARC_SESSION_FILE."""
    default_path = Path.home() / ".arc" / "sessions.json"
    return Path(os.environ.get("ARC_SESSION_FILE", str(default_path)))


class SessionStore:
    """Per-device session cookies stored as JSON."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else default_session_file()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text()) or {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return {}

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, sort_keys=True))
        try:
            self.path.chmod(0o600)
        except OSError:
            pass

    def load(self, device_id: str) -> Optional[str]:
        """Get the stored cookie for a device, if any."""
        entry = self._read().get(device_id)
        return entry.get("cookie") if entry else None

    def save(self, device_id: str, cookie: str) -> None:
        """Store the cookie for a device."""
        data = self._read()
        data[device_id] = {
            "cookie": cookie,
            "saved_at": datetime.now(timezone.utc).isoformat(),
        }
        self._write(data)
        logger.debug(f"Saved session for {device_id} to {self.path}")

    def forget(self, device_id: str) -> None:
        """Remove the stored cookie for a device."""
        data = self._read()
        if data.pop(device_id, None) is not None:
            self._write(data)
