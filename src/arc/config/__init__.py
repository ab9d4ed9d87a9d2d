"""Configuration: normalized entity schema, settings, sessions and loaders.

The inventory is imported from `arc.config.inventory` directly; it pulls in
the device handlers, which themselves depend on the schema defined here.
"""
from .schema import (
    EntityKind,
    EntityRef,
    ConfigEntity,
    ConfigSnapshot,
    KIND_SCHEMAS,
    KIND_DEPENDENCIES,
    DEFAULT_VLAN,
    make_entity,
    kind_closure,
)
from .settings import ReconcileSettings
from .sessions import SessionStore
from .loader import load_desired_config

__all__ = [
    "EntityKind",
    "EntityRef",
    "ConfigEntity",
    "ConfigSnapshot",
    "KIND_SCHEMAS",
    "KIND_DEPENDENCIES",
    "DEFAULT_VLAN",
    "make_entity",
    "kind_closure",
    "ReconcileSettings",
    "SessionStore",
    "load_desired_config",
]
