"""Live state retrieval.

Fetches raw records per entity kind, retrying transient failures, and
normalizes them into an immutable live ConfigSnapshot.
"""
import logging
from typing import TYPE_CHECKING, Iterable, Optional

import httpx
from tenacity import RetryCallState

from ..config.schema import (
    ConfigEntity,
    ConfigSnapshot,
    EntityKind,
    EntityRef,
    dependent_kinds,
    kind_closure,
)
from ..config.settings import ReconcileSettings
from ..errors import DeviceError, FetchError, NotAuthenticated
from ..utils.connection import async_retrying
from ..utils.logging_config import timed_section

if TYPE_CHECKING:
    from ..devices.base import NetworkDevice

logger = logging.getLogger(__name__)


class StateFetcher:
    """Retrieve live configuration from a device."""

    def __init__(self, settings: Optional[ReconcileSettings] = None):
        self.settings = settings or ReconcileSettings()

    async def fetch(
        self,
        device: "NetworkDevice",
        kinds: Iterable[EntityKind],
    ) -> ConfigSnapshot:
        """
        Fetch live state for the given kinds, the kinds they refer to and
        the kinds that can refer to them.

        Args:
            device: Connected device handler
            kinds: Kinds under management

        Returns:
            Live ConfigSnapshot

        Raises:
            FetchError: When a kind cannot be retrieved after retries
            NotAuthenticated: When the device session is not valid
        """
        managed = frozenset(EntityKind(k) for k in kinds)
        # Dependents are needed to refuse deleting something still in use
        closure = kind_closure(managed | dependent_kinds(managed))
        wanted = sorted(closure, key=lambda k: list(EntityKind).index(k))
        entities: list[ConfigEntity] = []

        async with timed_section("fetch", device_id=device.device_id, kinds=len(wanted)):
            for kind in wanted:
                records = await self._fetch_kind(device, kind)
                try:
                    entities.extend(device.normalize(kind, records))
                except DeviceError as e:
                    raise FetchError(device.device_id, kind.value, e) from e

        try:
            snapshot = ConfigSnapshot.from_entities(device.device_id, "live", entities)
        except ValueError as e:
            raise FetchError(device.device_id, None, e) from e
        return self._drop_dangling(snapshot)

    async def _fetch_kind(self, device: "NetworkDevice", kind: EntityKind) -> list[dict]:
        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                f"Fetching {kind.value} from {device.device_id} failed "
                f"(attempt {state.attempt_number}): {state.outcome.exception()}"
            )

        try:
            async for attempt in async_retrying(self.settings, before_sleep=log_retry):
                with attempt:
                    return await device.fetch(kind)
        except NotAuthenticated:
            raise
        except (DeviceError, httpx.HTTPError, OSError) as e:
            raise FetchError(device.device_id, kind.value, e) from e
        return []

    @staticmethod
    def _drop_dangling(snapshot: ConfigSnapshot) -> ConfigSnapshot:
        """Remove references to entities the device never reported."""
        dangling = snapshot.dangling_references()
        if not dangling:
            return snapshot

        missing: dict[EntityRef, set[EntityRef]] = {}
        for ref, dep in dangling:
            logger.debug(f"{snapshot.device_id}: {ref} refers to unreported {dep}, dropping reference")
            missing.setdefault(ref, set()).add(dep)

        entities = []
        for entity in snapshot:
            if entity.ref in missing:
                entity = ConfigEntity(
                    kind=entity.kind,
                    identifier=entity.identifier,
                    properties=entity.properties,
                    depends_on=entity.depends_on - missing[entity.ref],
                )
            entities.append(entity)
        return ConfigSnapshot.from_entities(snapshot.device_id, "live", entities)
