"""Logging configuration for arc.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing decorators for efficiency analysis

Environment Variables:
    ARC_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    ARC_LOG_FILE: Path to log file (default: ~/.arc/arc.log)
    ARC_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    ARC_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from arc.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("fetch")
    async def fetch(self, kind):
        ...

    # Or use context manager for sections:
    async with timed_section("apply", device_id="core-1", operations=12):
        ...
"""
import functools
import inspect
import logging
import os
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("arc.perf")


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("ARC_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".arc" / "arc.log"
    path_str = os.environ.get("ARC_LOG_FILE", str(default_path))
    return Path(path_str)


def setup_logging(level: Optional[int] = None, log_to_file: bool = True) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (INFO+ by default, respects ARC_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger for timing metrics (file only)
    """
    log_level = level if level is not None else get_log_level()

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-25s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    root_logger = logging.getLogger("arc")
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    perf_logger.setLevel(logging.DEBUG)
    perf_logger.handlers.clear()
    perf_logger.propagate = False

    if log_to_file:
        log_file = get_log_file()
        max_size_mb = int(os.environ.get("ARC_LOG_MAX_SIZE", "10"))
        backup_count = int(os.environ.get("ARC_LOG_BACKUPS", "5"))
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(main_format)
        root_logger.addHandler(file_handler)

        perf_handler = RotatingFileHandler(
            log_file.parent / "arc-perf.log",
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8"
        )
        perf_handler.setLevel(logging.DEBUG)
        perf_handler.setFormatter(perf_format)
        perf_logger.addHandler(perf_handler)

        root_logger.debug(f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}")


def _perf_line(operation: str, device_id: Optional[str], elapsed: float, outcome: str) -> str:
    return f"{operation:20s} | {device_id or 'N/A':15s} | {elapsed:8.2f}ms | {outcome}"


def timed(operation: str, device_id: Optional[str] = None):
    """Decorator to log execution time of async functions.

    Args:
        operation: Name of the operation (e.g., "login", "fetch", "apply")
        device_id: Optional device identifier (can also be inferred from self.device_id)
    """
    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError("timed() only wraps coroutine functions")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            dev_id = device_id
            if dev_id is None and args and hasattr(args[0], 'device_id'):
                dev_id = args[0].device_id

            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_perf_line(operation, dev_id, elapsed, f"FAIL: {e}"))
                raise
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.info(_perf_line(operation, dev_id, elapsed, "OK"))
            return result

        return wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, device_id: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Usage:
        async with timed_section("fetch", device_id="core-1", kinds=3):
            await fetcher.fetch(device, kinds)
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        msg = _perf_line(operation, device_id, elapsed, f"FAIL: {e}")
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.warning(msg)
        raise
    elapsed = (time.perf_counter() - start) * 1000
    msg = _perf_line(operation, device_id, elapsed, "OK")
    if extra_str:
        msg += f" | {extra_str}"
    perf_logger.info(msg)
