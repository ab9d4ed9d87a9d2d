"""Retry helpers for flaky device management channels."""
import asyncio
import logging
from typing import Callable

import httpx
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from ..config.settings import ReconcileSettings
from ..errors import TransientDeviceError

logger = logging.getLogger(__name__)

# Common network exceptions to retry on
RETRYABLE_EXCEPTIONS = (
    TransientDeviceError,
    httpx.TransportError,
    ConnectionRefusedError,
    ConnectionResetError,
    TimeoutError,
    asyncio.TimeoutError,
)


def async_retrying(
    settings: ReconcileSettings,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
    before_sleep: Callable | None = None,
) -> AsyncRetrying:
    """Retry controller sized by the run's retry budget.

    Usage:
        async for attempt in async_retrying(settings):
            with attempt:
                await device.fetch(kind)
    """
    return AsyncRetrying(
        stop=stop_after_attempt(settings.max_attempts),
        wait=wait_exponential(
            multiplier=settings.backoff_min or 1,
            min=settings.backoff_min,
            max=settings.backoff_max,
        ),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep or before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
