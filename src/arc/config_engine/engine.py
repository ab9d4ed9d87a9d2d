"""Main Config Engine - orchestrates reconciliation across devices.

Provides a single entry point for:
1. Parsing and validating the desired configuration
2. Fetching live state
3. Calculating and ordering the diff
4. Applying with retry and rollback

Each device runs in its own task. Errors confined to one device are
recorded on that device's result and never affect another device.
"""
import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx

from ..config.settings import ReconcileSettings
from ..errors import ArcError, ValidationError
from .diff import DiffEngine, scope_live, summarize_diff
from .events import EventSink
from .executor import TransactionCoordinator
from .fetcher import StateFetcher
from .orderer import DependencyOrderer
from .parser import ConfigParser
from .schema import DeviceResult, RunResult, ValidationResult

if TYPE_CHECKING:
    from ..config.inventory import DeviceInventory

logger = logging.getLogger(__name__)

# Errors recorded on the device result instead of aborting the run
DEVICE_ERRORS = (ArcError, httpx.HTTPError, OSError, KeyError, ValueError)


class ConfigEngine:
    """
    Main Config Engine for reconciling devices with a desired configuration.

    Usage:
        engine = ConfigEngine(inventory)
        result = await engine.reconcile(config, ["core-1", "edge-2"], dry_run=True)
    """

    def __init__(
        self,
        inventory: "DeviceInventory",
        settings: Optional[ReconcileSettings] = None,
        event_sink: Optional[EventSink] = None,
    ):
        """
        Initialize the Config Engine.

        Args:
            inventory: Device inventory for looking up devices
            settings: Run settings (defaults to the inventory's)
            event_sink: Receiver of apply events (defaults to the log)
        """
        self.inventory = inventory
        self.settings = settings or getattr(inventory, "settings", None) or ReconcileSettings()
        self.fetcher = StateFetcher(self.settings)
        self.diff_engine = DiffEngine()
        self.orderer = DependencyOrderer()
        self.coordinator = TransactionCoordinator(self.settings, event_sink)

    async def reconcile(
        self,
        config: dict[str, Any],
        device_ids: Optional[list[str]] = None,
        dry_run: bool = False,
        cancel: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
    ) -> RunResult:
        """
        Reconcile several devices concurrently.

        Args:
            config: Desired configuration dict
            device_ids: Target devices (default: the whole inventory)
            dry_run: Compute and report change sets without applying
            cancel: Set to stop starting new operations on every device
            deadline: time.monotonic() value after which no new operation starts

        Returns:
            RunResult with one DeviceResult per target
        """
        targets = device_ids if device_ids is not None else self.inventory.get_device_ids()
        limit = self.settings.max_concurrency
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        async def run_one(device_id: str) -> DeviceResult:
            if semaphore is None:
                return await self.reconcile_device(config, device_id, dry_run, cancel, deadline)
            async with semaphore:
                return await self.reconcile_device(config, device_id, dry_run, cancel, deadline)

        logger.info(
            f"{'DRY RUN: ' if dry_run else ''}Reconciling {len(targets)} device(s)"
        )
        results = await asyncio.gather(*(run_one(device_id) for device_id in targets))
        run = RunResult(devices=list(results))
        logger.info(
            f"Run finished: {sum(1 for d in run.devices if d.success)}/{len(run.devices)} "
            f"device(s) succeeded"
        )
        return run

    async def reconcile_device(
        self,
        config: dict[str, Any],
        device_id: str,
        dry_run: bool = False,
        cancel: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
    ) -> DeviceResult:
        """
        Reconcile one device: validate, connect, fetch, diff, order, apply.

        Never raises for device-level problems; they are recorded on the
        returned result together with the stage they happened in.
        """
        result = DeviceResult(device_id=device_id, stage="inventory", dry_run=dry_run)
        if cancel is not None and cancel.is_set():
            result.cancelled = True
            result.error = "Cancelled before start"
            result.error_type = "Cancelled"
            return result

        device = None
        try:
            device_type = self.inventory.get_device_type(device_id)
            device = self.inventory.get_device(device_id)

            result.stage = "validate"
            desired = ConfigParser(device_type).parse(config, device_id)
            result.warnings = list(desired.warnings)
            for warning in desired.warnings:
                logger.warning(f"{device_id}: {warning}")

            result.stage = "connect"
            await device.connect()

            result.stage = "fetch"
            live = await self.fetcher.fetch(device, desired.kinds)

            result.stage = "diff"
            scoped = scope_live(
                live, desired.snapshot, desired.mode, desired.kinds, desired.absent
            )
            operations = self.diff_engine.calculate(desired.snapshot, scoped)

            result.stage = "order"
            change_set = self.orderer.order(device_id, operations, live)
            result.change_set = change_set
            logger.info(f"{device_id}: {len(change_set)} operation(s) planned")
            logger.debug(f"{device_id}:\n{summarize_diff(list(change_set))}")

            await self.coordinator.apply(
                device, change_set, cancel=cancel, deadline=deadline,
                dry_run=dry_run, result=result,
            )
        except ValidationError as e:
            result.error = f"Validation failed: {e}"
            result.error_type = type(e).__name__
            result.warnings = e.warnings
        except DEVICE_ERRORS as e:
            if isinstance(e, KeyError) and e.args:
                result.error = str(e.args[0])
            else:
                result.error = str(e) or type(e).__name__
            result.error_type = type(e).__name__
            logger.error(f"{device_id}: {result.stage} failed: {result.error}")
        except Exception as e:
            logger.exception(f"{device_id}: unexpected error during {result.stage}: {e}")
            result.error = f"Unexpected error: {e}"
            result.error_type = type(e).__name__
        finally:
            # Also releases transports opened by a failed connect
            if device is not None:
                await device.disconnect()

        return result

    async def plan(
        self,
        config: dict[str, Any],
        device_ids: Optional[list[str]] = None,
    ) -> RunResult:
        """Compute per-device change sets without applying anything."""
        return await self.reconcile(config, device_ids, dry_run=True)

    def validate(self, config: dict[str, Any], device_id: str) -> ValidationResult:
        """Validate a config for one device without contacting it."""
        parser = ConfigParser(self.inventory.get_device_type(device_id))
        try:
            desired = parser.parse(config, device_id)
        except ValidationError as e:
            return ValidationResult(valid=False, errors=e.errors, warnings=e.warnings)
        return ValidationResult(valid=True, warnings=list(desired.warnings))
