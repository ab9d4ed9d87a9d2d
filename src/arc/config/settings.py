"""Reconciliation settings: timeouts, retry budget, rollback policy.

Values come from the `reconcile` section of the inventory file and can be
overridden per process with environment variables:

    ARC_CONNECT_TIMEOUT    bounds the initial handshake (seconds)
    ARC_REQUEST_TIMEOUT    bounds each request round trip (seconds)
    ARC_RETRY_BUDGET       retries before a fetch or operation fails
    ARC_ROLLBACK           1/0, compensate applied operations on failure
    ARC_MAX_CONCURRENCY    devices reconciled at once (0 = unlimited)
"""
import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Optional

logger = logging.getLogger(__name__)

ENV_OVERRIDES = {
    "connect_timeout": "ARC_CONNECT_TIMEOUT",
    "request_timeout": "ARC_REQUEST_TIMEOUT",
    "retry_budget": "ARC_RETRY_BUDGET",
    "rollback_on_error": "ARC_ROLLBACK",
    "max_concurrency": "ARC_MAX_CONCURRENCY",
}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ReconcileSettings:
    """Options that bound every reconciliation run."""
    connect_timeout: float = 10.0
    request_timeout: float = 30.0
    retry_budget: int = 3
    backoff_min: float = 1.0
    backoff_max: float = 10.0
    rollback_on_error: bool = True
    max_concurrency: int = 8

    def __post_init__(self):
        if self.connect_timeout <= 0 or self.request_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if self.retry_budget < 0:
            raise ValueError("retry_budget must not be negative")
        if self.backoff_min < 0 or self.backoff_max < self.backoff_min:
            raise ValueError("backoff_max must be >= backoff_min >= 0")
        if self.max_concurrency < 0:
            raise ValueError("max_concurrency must not be negative")

    @property
    def max_attempts(self) -> int:
        """Total attempts per request: the first try plus the retry budget."""
        return self.retry_budget + 1

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ReconcileSettings":
        """Build settings from a config section, ignoring unknown keys."""
        data = data or {}
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown reconcile setting: {key}")
                continue
            kwargs[key] = value
        return cls(**kwargs)

    def with_env(self, environ: Optional[dict[str, str]] = None) -> "ReconcileSettings":
        """Apply ARC_* environment overrides."""
        environ = os.environ if environ is None else environ
        defaults = {f.name: f.default for f in fields(self)}
        overrides: dict[str, Any] = {}
        for name, var in ENV_OVERRIDES.items():
            raw = environ.get(var)
            if raw is None or raw == "":
                continue
            current = defaults[name]
            if isinstance(current, bool):
                overrides[name] = _parse_bool(raw)
            elif isinstance(current, int):
                overrides[name] = int(raw)
            else:
                overrides[name] = float(raw)
        return replace(self, **overrides) if overrides else self
