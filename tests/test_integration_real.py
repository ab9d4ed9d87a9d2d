"""Real device integration tests.

These tests talk to an actual AOS-Switch and only read from it.
Skipped unless a device is configured:

    ARC_TEST_INVENTORY=configs/devices.yaml ARC_TEST_DEVICE=core-1 \
        pytest tests/test_integration_real.py -v -s -m integration
"""
import os

import pytest

from arc.config.inventory import DeviceInventory
from arc.config.schema import EntityKind
from arc.config_engine import ConfigEngine

INVENTORY = os.environ.get("ARC_TEST_INVENTORY")
DEVICE = os.environ.get("ARC_TEST_DEVICE")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not (INVENTORY and DEVICE), reason="No test switch configured"),
]


@pytest.fixture
def inventory():
    """Load device inventory."""
    return DeviceInventory(INVENTORY)


class TestArubaReal:
    """Read-only checks against a real switch."""

    @pytest.mark.asyncio
    async def test_fetch_every_kind(self, inventory):
        device = inventory.get_device(DEVICE)
        async with device:
            assert device.is_connected
            for kind in EntityKind:
                entities = device.normalize(kind, await device.fetch(kind))
                print(f"\n{kind.value}: {len(entities)} entities")

    @pytest.mark.asyncio
    async def test_plan_of_live_vlans_is_empty(self, inventory):
        """Declaring what the switch already has plans no operations."""
        device = inventory.get_device(DEVICE)
        async with device:
            live = device.normalize(EntityKind.VLAN, await device.fetch(EntityKind.VLAN))
        desired = {
            "mode": "patch",
            "vlans": {int(e.identifier): dict(e.properties) for e in live},
        }

        run = await ConfigEngine(inventory).plan(desired, [DEVICE])
        await inventory.close_all()

        result = run.devices[0]
        assert result.success, result.error
        assert result.change_set.empty
