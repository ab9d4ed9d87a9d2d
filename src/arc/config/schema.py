"""Normalized configuration schema shared by desired and live state.

Every device family normalizes its wire format into these entities, so the
diff, orderer and coordinator never see device-specific quirks.
"""
import ipaddress
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional


class EntityKind(str, Enum):
    """Kind of configuration entity."""
    VLAN = "vlan"
    INTERFACE = "interface"
    VLAN_PORT = "vlan-port"
    POE = "poe"
    ACL = "acl"
    ACL_RULE = "acl-rule"
    STATIC_ROUTE = "static-route"


# Stable rank used to break ordering ties
KIND_RANK = {kind: rank for rank, kind in enumerate(EntityKind)}

# Kinds each kind may refer to through depends_on
KIND_DEPENDENCIES: dict[EntityKind, frozenset[EntityKind]] = {
    EntityKind.VLAN: frozenset(),
    EntityKind.INTERFACE: frozenset(),
    EntityKind.VLAN_PORT: frozenset({EntityKind.VLAN}),
    EntityKind.POE: frozenset(),
    EntityKind.ACL: frozenset(),
    EntityKind.ACL_RULE: frozenset({EntityKind.ACL}),
    EntityKind.STATIC_ROUTE: frozenset({EntityKind.VLAN}),
}

# The default VLAN always exists and is never managed as an entity
DEFAULT_VLAN = 1

# Physical resources: they cannot be removed, only reset to defaults
RESETTABLE_KINDS = frozenset({EntityKind.INTERFACE, EntityKind.POE})


def kind_closure(kinds: Iterable[EntityKind]) -> frozenset[EntityKind]:
    """Expand a set of kinds with every kind they can depend on."""
    result: set[EntityKind] = set()
    pending = [EntityKind(k) for k in kinds]
    while pending:
        kind = pending.pop()
        if kind in result:
            continue
        result.add(kind)
        pending.extend(KIND_DEPENDENCIES[kind])
    return frozenset(result)


def dependent_kinds(kinds: Iterable[EntityKind]) -> frozenset[EntityKind]:
    """Kinds whose entities can refer to any of the given kinds."""
    wanted = {EntityKind(k) for k in kinds}
    return frozenset(kind for kind, deps in KIND_DEPENDENCIES.items() if deps & wanted)


def natural_key(identifier: str) -> tuple:
    """Sort key treating digit runs as numbers ("2" < "10", "A2" < "A10")."""
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in re.split(r"(\d+)", identifier)
        if part
    )


@dataclass(frozen=True, order=True)
class EntityRef:
    """Stable identity of an entity: kind plus identifier."""
    kind: EntityKind
    identifier: str

    @classmethod
    def parse(cls, text: str) -> "EntityRef":
        """Parse "kind:identifier" (e.g. "vlan:10")."""
        kind, sep, identifier = str(text).partition(":")
        if not sep or not identifier:
            raise ValueError(f"Invalid entity reference '{text}': expected kind:identifier")
        try:
            return cls(EntityKind(kind.strip()), identifier.strip())
        except ValueError:
            raise ValueError(f"Invalid entity reference '{text}': unknown kind '{kind}'")

    def sort_key(self) -> tuple:
        return (KIND_RANK[self.kind], natural_key(self.identifier))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.identifier}"


def _freeze(value: Any) -> Any:
    """Make property values comparable regardless of declaration order."""
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_freeze(v) for v in value]
        try:
            return tuple(sorted(items))
        except TypeError:
            # Mixed types: any stable order will do
            return tuple(sorted(items, key=lambda v: (type(v).__name__, repr(v))))
    return value


@dataclass(frozen=True)
class ConfigEntity:
    """A named, typed configuration object on one device."""
    kind: EntityKind
    identifier: str
    properties: Mapping[str, Any] = field(default_factory=dict)
    depends_on: frozenset[EntityRef] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "kind", EntityKind(self.kind))
        object.__setattr__(self, "identifier", str(self.identifier))
        frozen = {key: _freeze(value) for key, value in dict(self.properties).items()}
        object.__setattr__(self, "properties", MappingProxyType(frozen))
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))

    def __hash__(self) -> int:
        return hash(self.ref)

    @property
    def ref(self) -> EntityRef:
        return EntityRef(self.kind, self.identifier)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "identifier": self.identifier,
            "properties": dict(self.properties),
            "depends_on": sorted(str(ref) for ref in self.depends_on),
        }


@dataclass(frozen=True)
class ConfigSnapshot:
    """All entities of one device at one point in time.

    Immutable: a new fetch produces a new snapshot.
    """
    device_id: str
    origin: str  # "desired" or "live"
    entities: Mapping[EntityRef, ConfigEntity] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "entities", MappingProxyType(dict(self.entities)))

    @classmethod
    def from_entities(
        cls,
        device_id: str,
        origin: str,
        entities: Iterable[ConfigEntity],
    ) -> "ConfigSnapshot":
        """Build a snapshot, rejecting duplicate kind+identifier pairs."""
        by_ref: dict[EntityRef, ConfigEntity] = {}
        for entity in entities:
            if entity.ref in by_ref:
                raise ValueError(f"Duplicate entity {entity.ref} in {origin} snapshot")
            by_ref[entity.ref] = entity
        return cls(device_id=device_id, origin=origin, entities=by_ref)

    def __len__(self) -> int:
        return len(self.entities)

    def __iter__(self) -> Iterator[ConfigEntity]:
        return iter(self.entities.values())

    def __contains__(self, ref: object) -> bool:
        return ref in self.entities

    def get(self, ref: EntityRef) -> Optional[ConfigEntity]:
        return self.entities.get(ref)

    def refs(self) -> frozenset[EntityRef]:
        return frozenset(self.entities)

    def of_kind(self, kind: EntityKind) -> list[ConfigEntity]:
        return [e for e in self.entities.values() if e.kind == kind]

    def restrict(self, kinds: Iterable[EntityKind]) -> "ConfigSnapshot":
        """Snapshot containing only entities of the given kinds."""
        wanted = {EntityKind(k) for k in kinds}
        return ConfigSnapshot(
            device_id=self.device_id,
            origin=self.origin,
            entities={r: e for r, e in self.entities.items() if r.kind in wanted},
        )

    def select(self, refs: Iterable[EntityRef]) -> "ConfigSnapshot":
        """Snapshot containing only the given refs (those that exist)."""
        wanted = set(refs)
        return ConfigSnapshot(
            device_id=self.device_id,
            origin=self.origin,
            entities={r: e for r, e in self.entities.items() if r in wanted},
        )

    def dependents_of(self, ref: EntityRef) -> list[ConfigEntity]:
        return [e for e in self.entities.values() if ref in e.depends_on]

    def dangling_references(self) -> list[tuple[EntityRef, EntityRef]]:
        """(entity, missing dependency) pairs that do not resolve."""
        return sorted(
            (entity.ref, dep)
            for entity in self.entities.values()
            for dep in entity.depends_on
            if dep not in self.entities
        )

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "origin": self.origin,
            "entities": [
                self.entities[ref].to_dict()
                for ref in sorted(self.entities, key=EntityRef.sort_key)
            ],
        }


# --- Per-kind property schemas ---

def canonical_prefix(value: str) -> str:
    """Normalize a prefix ("10.0.0.5/24" -> "10.0.0.0/24", "10.0.0.1" -> "10.0.0.1/32").

    A /0 prefix is spelled "any".
    """
    if value == "any":
        return value
    network = ipaddress.IPv4Network(value, strict=False)
    return "any" if network.prefixlen == 0 else str(network)


def _check_cidr_or_any(value: str) -> Optional[str]:
    if value == "any":
        return None
    try:
        ipaddress.IPv4Network(value, strict=False)
    except ValueError:
        return f"'{value}' is not an IPv4 prefix or 'any'"
    return None


def _check_ipv4(value: str) -> Optional[str]:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return f"'{value}' is not an IPv4 address"
    return None


@dataclass(frozen=True)
class PropertySpec:
    """Type, default and range of a single entity property."""
    name: str
    type: type
    default: Any = None
    nullable: bool = False
    choices: Optional[tuple] = None
    minimum: Optional[int] = None
    maximum: Optional[int] = None
    max_length: Optional[int] = None
    check: Optional[Callable[[Any], Optional[str]]] = None

    def validate(self, value: Any) -> Optional[str]:
        """Return an error message, or None if the value is acceptable."""
        if value is None:
            return None if self.nullable else f"{self.name} must not be empty"
        # bool is a subclass of int; don't accept True as a VLAN id
        if self.type is int and isinstance(value, bool):
            return f"{self.name} must be an integer, got {value!r}"
        if not isinstance(value, self.type):
            return f"{self.name} must be of type {self.type.__name__}, got {value!r}"
        if self.choices is not None and value not in self.choices:
            return f"{self.name} must be one of {', '.join(map(str, self.choices))}, got {value!r}"
        if self.minimum is not None and value < self.minimum:
            return f"{self.name} must be between {self.minimum} and {self.maximum}, got {value}"
        if self.maximum is not None and value > self.maximum:
            return f"{self.name} must be between {self.minimum} and {self.maximum}, got {value}"
        if self.max_length is not None and len(value) > self.max_length:
            return f"{self.name} must be at most {self.max_length} characters"
        if self.check is not None:
            return self.check(value)
        return None


KIND_SCHEMAS: dict[EntityKind, dict[str, PropertySpec]] = {
    EntityKind.VLAN: {
        "name": PropertySpec("name", str, default="", max_length=32),
        "voice": PropertySpec("voice", bool, default=False),
        "jumbo": PropertySpec("jumbo", bool, default=False),
    },
    EntityKind.INTERFACE: {
        "name": PropertySpec("name", str, default="", max_length=64),
        "enabled": PropertySpec("enabled", bool, default=True),
    },
    EntityKind.VLAN_PORT: {
        "mode": PropertySpec("mode", str, default="untagged", choices=("untagged", "tagged")),
    },
    EntityKind.POE: {
        "enabled": PropertySpec("enabled", bool, default=True),
        "priority": PropertySpec("priority", str, default="low", choices=("low", "high", "critical")),
        "allocation": PropertySpec("allocation", str, default="usage", choices=("usage", "class", "value")),
        "allocated_power": PropertySpec("allocated_power", int, nullable=True, minimum=1, maximum=33),
        "pre_standard_detect": PropertySpec("pre_standard_detect", bool, default=False),
    },
    EntityKind.ACL: {
        "type": PropertySpec("type", str, default="extended", choices=("standard", "extended")),
    },
    EntityKind.ACL_RULE: {
        "action": PropertySpec("action", str, default="permit", choices=("permit", "deny")),
        "protocol": PropertySpec("protocol", str, default="ip", choices=("ip", "tcp", "udp", "icmp")),
        "source": PropertySpec("source", str, default="any", check=_check_cidr_or_any),
        "destination": PropertySpec("destination", str, default="any", check=_check_cidr_or_any),
    },
    EntityKind.STATIC_ROUTE: {
        "gateway": PropertySpec("gateway", str, nullable=True, check=_check_ipv4),
        "vlan": PropertySpec("vlan", int, nullable=True, minimum=1, maximum=4094),
        "distance": PropertySpec("distance", int, default=1, minimum=1, maximum=255),
    },
}

ACL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


def split_vlan_port(identifier: str) -> tuple[int, str]:
    """Split a vlan-port identifier "10-A1" into (10, "A1")."""
    vlan, sep, port = identifier.partition("-")
    if not sep or not port:
        raise ValueError(f"Invalid vlan-port identifier '{identifier}': expected <vlan>-<port>")
    return int(vlan), port


def split_acl_rule(identifier: str) -> tuple[str, int]:
    """Split an acl-rule identifier "ops/10" into ("ops", 10)."""
    acl, sep, seq = identifier.rpartition("/")
    if not sep or not acl:
        raise ValueError(f"Invalid acl-rule identifier '{identifier}': expected <acl>/<sequence>")
    return acl, int(seq)


def check_identifier(kind: EntityKind, identifier: str) -> Optional[str]:
    """Kind-specific identifier rules (port names are device-specific)."""
    try:
        if kind == EntityKind.VLAN:
            vlan_id = int(identifier)
            if vlan_id == DEFAULT_VLAN:
                return f"VLAN {DEFAULT_VLAN} is the default VLAN and cannot be managed"
            if not 1 <= vlan_id <= 4094:
                return f"Invalid VLAN ID {identifier}: must be between 1 and 4094"
        elif kind == EntityKind.VLAN_PORT:
            vlan_id, _ = split_vlan_port(identifier)
            if vlan_id == DEFAULT_VLAN:
                return f"Membership in default VLAN {DEFAULT_VLAN} is implicit: {identifier}"
            if not 1 <= vlan_id <= 4094:
                return f"Invalid VLAN ID in vlan-port {identifier}"
        elif kind == EntityKind.ACL:
            if not ACL_NAME_PATTERN.match(identifier):
                return f"Invalid ACL name '{identifier}'"
        elif kind == EntityKind.ACL_RULE:
            acl, seq = split_acl_rule(identifier)
            if not ACL_NAME_PATTERN.match(acl):
                return f"Invalid ACL name in rule '{identifier}'"
            if not 1 <= seq <= 2147483647:
                return f"Invalid sequence number in rule '{identifier}'"
        elif kind == EntityKind.STATIC_ROUTE:
            ipaddress.IPv4Network(identifier, strict=True)
    except ValueError as e:
        return f"Invalid {kind.value} identifier '{identifier}': {e}"
    return None


def check_properties(kind: EntityKind, properties: Mapping[str, Any]) -> list[str]:
    """Validate a full property mapping against the kind schema."""
    errors = []
    schema = KIND_SCHEMAS[kind]
    for key in properties:
        if key not in schema:
            errors.append(f"unknown property '{key}'")
    for name, spec in schema.items():
        error = spec.validate(properties.get(name, spec.default))
        if error:
            errors.append(error)

    if kind == EntityKind.POE:
        allocation = properties.get("allocation")
        power = properties.get("allocated_power")
        if allocation == "value" and power is None:
            errors.append("allocated_power is required when allocation is 'value'")
        if allocation != "value" and power is not None:
            errors.append("allocated_power is only valid when allocation is 'value'")
    elif kind == EntityKind.STATIC_ROUTE:
        if (properties.get("gateway") is None) == (properties.get("vlan") is None):
            errors.append("exactly one of gateway or vlan must be set")
    return errors


def with_defaults(kind: EntityKind, properties: Mapping[str, Any]) -> dict[str, Any]:
    """Fill every schema property, keeping declaration order for known keys."""
    schema = KIND_SCHEMAS[kind]
    result = {name: spec.default for name, spec in schema.items()}
    result.update(properties)
    return result


def derive_dependencies(
    kind: EntityKind,
    identifier: str,
    properties: Mapping[str, Any],
) -> frozenset[EntityRef]:
    """Dependencies implied by an entity's identity and properties."""
    deps: set[EntityRef] = set()
    try:
        if kind == EntityKind.VLAN_PORT:
            vlan_id, _ = split_vlan_port(identifier)
            if vlan_id != DEFAULT_VLAN:
                deps.add(EntityRef(EntityKind.VLAN, str(vlan_id)))
        elif kind == EntityKind.ACL_RULE:
            acl, _ = split_acl_rule(identifier)
            deps.add(EntityRef(EntityKind.ACL, acl))
        elif kind == EntityKind.STATIC_ROUTE:
            vlan = properties.get("vlan")
            if isinstance(vlan, int) and vlan != DEFAULT_VLAN:
                deps.add(EntityRef(EntityKind.VLAN, str(vlan)))
    except ValueError:
        # Malformed identifiers are reported by check_identifier
        pass
    return frozenset(deps)


def make_entity(
    kind: EntityKind,
    identifier: str,
    properties: Optional[Mapping[str, Any]] = None,
    depends_on: Iterable[EntityRef] = (),
) -> ConfigEntity:
    """Build an entity with schema defaults and derived dependencies."""
    kind = EntityKind(kind)
    identifier = str(identifier)
    props = with_defaults(kind, properties or {})
    deps = derive_dependencies(kind, identifier, props) | frozenset(depends_on)
    return ConfigEntity(kind=kind, identifier=identifier, properties=props, depends_on=deps)
