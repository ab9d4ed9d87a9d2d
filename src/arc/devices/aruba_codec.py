"""Wire format of the AOS-Switch REST API (v1).

Two directions:
- normalize(): raw JSON records -> ConfigEntity, hiding device quirks
  (default VLAN, auto-generated VLAN names, enum prefixes)
- build_request(): Operation -> exactly one HTTP request
"""
import ipaddress
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..config.schema import (
    ConfigEntity,
    DEFAULT_VLAN,
    EntityKind,
    KIND_SCHEMAS,
    canonical_prefix,
    make_entity,
    split_acl_rule,
    split_vlan_port,
)
from ..config_engine.schema import Operation, OpType

# Collection keys of list responses, e.g. GET vlans -> {"vlan_element": [...]}
COLLECTION_KEYS = {
    "vlans": "vlan_element",
    "ports": "port_element",
    "vlans-ports": "vlan_port_element",
    "poe/ports": "port_poe",
    "acls": "acl_element",
    "rules": "acl_rule_element",
    "ip-route": "ip_route_element",
}

PORT_MODES = {"untagged": "POM_UNTAGGED", "tagged": "POM_TAGGED_STATIC"}
POE_PRIORITIES = {"low": "PPP_LOW", "high": "PPP_HIGH", "critical": "PPP_CRITICAL"}
POE_ALLOCATIONS = {"usage": "PPAM_USAGE", "class": "PPAM_CLASS", "value": "PPAM_VALUE"}
ACL_TYPES = {"standard": "AT_STANDARD_IPV4", "extended": "AT_EXTENDED_IPV4"}
ACL_ACTIONS = {"permit": "AA_PERMIT", "deny": "AA_DENY"}
ACL_PROTOCOLS = {"ip": "PT_IP", "tcp": "PT_TCP", "udp": "PT_UDP", "icmp": "PT_ICMP"}
ROUTE_TYPES = {"gateway": "RT_GATEWAY", "vlan": "RT_VLAN"}


def _reverse(mapping: dict[str, str]) -> dict[str, str]:
    return {wire: value for value, wire in mapping.items()}


class CodecError(ValueError):
    """A wire record or operation could not be translated."""
    pass


@dataclass(frozen=True)
class Request:
    """One HTTP request against the REST root."""
    method: str
    path: str
    body: Optional[dict] = None


# --- Addresses ---

def ip_value(octets: str) -> dict:
    return {"version": "IAV_IP_V4", "octets": octets}


def prefix_from_wire(address: Optional[dict], mask: Optional[dict]) -> str:
    if not address:
        return "any"
    octets = address.get("octets", "0.0.0.0")
    netmask = (mask or {}).get("octets", "255.255.255.255")
    return canonical_prefix(f"{octets}/{netmask}")


def prefix_to_wire(prefix: str) -> tuple[dict, dict]:
    network = ipaddress.IPv4Network("0.0.0.0/0" if prefix == "any" else prefix, strict=False)
    return ip_value(str(network.network_address)), ip_value(str(network.netmask))


def route_id(destination: str, properties: dict) -> str:
    """Device id of a static route: <dest>-<mask>-<gateway|vlan>."""
    network = ipaddress.IPv4Network(destination)
    via = properties.get("gateway") or f"vlan{properties.get('vlan')}"
    return f"{network.network_address}-{network.netmask}-{via}"


# --- Normalization (wire -> entity) ---

def _vlan(record: dict) -> Optional[ConfigEntity]:
    vlan_id = int(record["vlan_id"])
    if vlan_id == DEFAULT_VLAN:
        return None
    name = record.get("name") or ""
    # The switch names unnamed VLANs "VLAN<id>"
    if name == f"VLAN{vlan_id}":
        name = ""
    return make_entity(EntityKind.VLAN, str(vlan_id), {
        "name": name,
        "voice": bool(record.get("is_voice_enabled", False)),
        "jumbo": bool(record.get("is_jumbo_enabled", False)),
    })


def _interface(record: dict) -> Optional[ConfigEntity]:
    return make_entity(EntityKind.INTERFACE, str(record["id"]), {
        "name": record.get("name") or "",
        "enabled": bool(record.get("is_port_enabled", True)),
    })


def _vlan_port(record: dict) -> Optional[ConfigEntity]:
    vlan_id = int(record["vlan_id"])
    mode = _reverse(PORT_MODES).get(record.get("port_mode", ""))
    # Default VLAN membership is implicit; forbidden is not a membership
    if vlan_id == DEFAULT_VLAN or mode is None:
        return None
    return make_entity(EntityKind.VLAN_PORT, f"{vlan_id}-{record['port_id']}", {"mode": mode})


def _poe(record: dict) -> Optional[ConfigEntity]:
    allocation = _reverse(POE_ALLOCATIONS).get(record.get("poe_allocation_method", ""), "usage")
    power = record.get("allocated_power_in_watts")
    return make_entity(EntityKind.POE, str(record["port_id"]), {
        "enabled": bool(record.get("is_poe_enabled", True)),
        "priority": _reverse(POE_PRIORITIES).get(record.get("poe_priority", ""), "low"),
        "allocation": allocation,
        "allocated_power": int(power) if allocation == "value" and power is not None else None,
        "pre_standard_detect": bool(record.get("pre_standard_detect_enabled", False)),
    })


def _acl(record: dict) -> Optional[ConfigEntity]:
    acl_type = _reverse(ACL_TYPES).get(record.get("acl_type", ""))
    if acl_type is None:
        # IPv6 and MAC ACLs are not managed
        return None
    return make_entity(EntityKind.ACL, record["name"], {"type": acl_type})


def _acl_rule(record: dict) -> Optional[ConfigEntity]:
    acl_name = record.get("acl_name")
    if not acl_name:
        return None
    return make_entity(EntityKind.ACL_RULE, f"{acl_name}/{int(record['sequence_no'])}", {
        "action": _reverse(ACL_ACTIONS).get(record.get("action", ""), "permit"),
        "protocol": _reverse(ACL_PROTOCOLS).get(record.get("protocol_type", ""), "ip"),
        "source": prefix_from_wire(record.get("source_ip_address"), record.get("source_ip_mask")),
        "destination": prefix_from_wire(
            record.get("destination_ip_address"), record.get("destination_ip_mask")
        ),
    })


def _static_route(record: dict) -> Optional[ConfigEntity]:
    route_type = _reverse(ROUTE_TYPES).get(record.get("route_type", ""))
    if route_type is None:
        # Connected and reject routes are not configuration
        return None
    destination = prefix_from_wire(record.get("destination"), record.get("mask"))
    if destination == "any":
        destination = "0.0.0.0/0"
    gateway = (record.get("gateway") or {}).get("octets") if route_type == "gateway" else None
    vlan = record.get("vlan_id") if route_type == "vlan" else None
    return make_entity(EntityKind.STATIC_ROUTE, destination, {
        "gateway": gateway,
        "vlan": int(vlan) if vlan is not None else None,
        "distance": int(record.get("distance", 1)),
    })


NORMALIZERS: dict[EntityKind, Callable[[dict], Optional[ConfigEntity]]] = {
    EntityKind.VLAN: _vlan,
    EntityKind.INTERFACE: _interface,
    EntityKind.VLAN_PORT: _vlan_port,
    EntityKind.POE: _poe,
    EntityKind.ACL: _acl,
    EntityKind.ACL_RULE: _acl_rule,
    EntityKind.STATIC_ROUTE: _static_route,
}


def normalize(kind: EntityKind, records: list[dict]) -> list[ConfigEntity]:
    """Convert wire records of one kind into entities.

    Raises:
        CodecError: If a record is missing required fields
    """
    convert = NORMALIZERS[EntityKind(kind)]
    entities = []
    for record in records:
        try:
            entity = convert(record)
        except (KeyError, TypeError, ValueError) as e:
            raise CodecError(f"Malformed {kind.value} record {record!r}: {e}") from e
        if entity is not None:
            entities.append(entity)
    return entities


# --- Requests (operation -> wire) ---

def _target_properties(operation: Operation) -> dict[str, Any]:
    """Properties the request should write.

    Create writes everything, update only the changed keys, and delete of
    a physical resource (port, PoE) writes the schema defaults.
    """
    if operation.op_type == OpType.DELETE:
        return {name: spec.default for name, spec in KIND_SCHEMAS[operation.kind].items()}
    return dict(operation.changes)


def _vlan_body(props: dict, vlan_id: Optional[int] = None) -> dict:
    body: dict[str, Any] = {}
    if vlan_id is not None:
        body["vlan_id"] = vlan_id
    if props.get("name"):
        body["name"] = props["name"]
    elif "name" in props and vlan_id is None:
        # Clearing the name restores the switch default
        body["name"] = ""
    if "voice" in props:
        body["is_voice_enabled"] = props["voice"]
    if "jumbo" in props:
        body["is_jumbo_enabled"] = props["jumbo"]
    return body


def _interface_body(props: dict) -> dict:
    body: dict[str, Any] = {}
    if "name" in props:
        body["name"] = props["name"]
    if "enabled" in props:
        body["is_port_enabled"] = props["enabled"]
    return body


def _poe_body(props: dict) -> dict:
    body: dict[str, Any] = {}
    if "enabled" in props:
        body["is_poe_enabled"] = props["enabled"]
    if "priority" in props:
        body["poe_priority"] = POE_PRIORITIES[props["priority"]]
    if "allocation" in props:
        body["poe_allocation_method"] = POE_ALLOCATIONS[props["allocation"]]
    if props.get("allocated_power") is not None:
        body["allocated_power_in_watts"] = props["allocated_power"]
    if "pre_standard_detect" in props:
        body["pre_standard_detect_enabled"] = props["pre_standard_detect"]
    return body


def _acl_rule_body(props: dict, sequence: Optional[int] = None) -> dict:
    body: dict[str, Any] = {}
    if sequence is not None:
        body["sequence_no"] = sequence
    if "action" in props:
        body["action"] = ACL_ACTIONS[props["action"]]
    if "protocol" in props:
        body["protocol_type"] = ACL_PROTOCOLS[props["protocol"]]
    for side in ("source", "destination"):
        if side in props:
            address, mask = prefix_to_wire(props[side])
            body[f"{side}_ip_address"] = address
            body[f"{side}_ip_mask"] = mask
    return body


def _route_body(destination: str, props: dict) -> dict:
    address, mask = prefix_to_wire(destination)
    body: dict[str, Any] = {
        "destination": address,
        "mask": mask,
        "distance": props.get("distance", 1),
    }
    if props.get("gateway"):
        body["route_type"] = ROUTE_TYPES["gateway"]
        body["gateway"] = ip_value(props["gateway"])
    else:
        body["route_type"] = ROUTE_TYPES["vlan"]
        body["vlan_id"] = props.get("vlan")
    return body


def acl_id(name: str, acl_type: str) -> str:
    """Device id of an ACL: <name>~<type>."""
    return f"{name}~{ACL_TYPES[acl_type]}"


def build_request(operation: Operation, acl_ids: dict[str, str]) -> Request:
    """Translate one operation into one request.

    Args:
        operation: The operation to send
        acl_ids: ACL name -> device ACL id, needed for rule paths

    Raises:
        CodecError: If the operation cannot be expressed on this device
    """
    op = operation.op_type
    kind = operation.kind
    ident = operation.identifier
    props = _target_properties(operation)

    if kind == EntityKind.VLAN:
        if op == OpType.CREATE:
            return Request("POST", "vlans", _vlan_body(props, int(ident)))
        if op == OpType.UPDATE:
            return Request("PUT", f"vlans/{ident}", _vlan_body(props))
        return Request("DELETE", f"vlans/{ident}")

    if kind == EntityKind.INTERFACE:
        return Request("PUT", f"ports/{ident}", _interface_body(props))

    if kind == EntityKind.VLAN_PORT:
        vlan_id, port_id = split_vlan_port(ident)
        if op == OpType.CREATE:
            return Request("POST", "vlans-ports", {
                "vlan_id": vlan_id,
                "port_id": port_id,
                "port_mode": PORT_MODES[props["mode"]],
            })
        if op == OpType.UPDATE:
            return Request("PUT", f"vlans-ports/{ident}", {"port_mode": PORT_MODES[props["mode"]]})
        return Request("DELETE", f"vlans-ports/{ident}")

    if kind == EntityKind.POE:
        return Request("PUT", f"ports/{ident}/poe", _poe_body(props))

    if kind == EntityKind.ACL:
        if op == OpType.CREATE:
            return Request("POST", "acls", {"acl_name": ident, "acl_type": ACL_TYPES[props["type"]]})
        if op == OpType.UPDATE:
            raise CodecError(f"ACL {ident}: type cannot be changed in place, delete and recreate it")
        if ident not in acl_ids:
            raise CodecError(f"ACL {ident} is not known on the device")
        return Request("DELETE", f"acls/{acl_ids[ident]}")

    if kind == EntityKind.ACL_RULE:
        acl_name, sequence = split_acl_rule(ident)
        if acl_name not in acl_ids:
            raise CodecError(f"ACL {acl_name} is not known on the device")
        base = f"acls/{acl_ids[acl_name]}/rules"
        if op == OpType.CREATE:
            return Request("POST", base, _acl_rule_body(props, sequence))
        if op == OpType.UPDATE:
            return Request("PUT", f"{base}/{sequence}", _acl_rule_body(props))
        return Request("DELETE", f"{base}/{sequence}")

    if kind == EntityKind.STATIC_ROUTE:
        if op == OpType.CREATE:
            return Request("POST", "ip-route", _route_body(ident, props))
        if operation.previous is None:
            raise CodecError(f"Route {ident}: previous state required to address it")
        current_id = route_id(ident, dict(operation.previous.properties))
        if op == OpType.UPDATE:
            merged = dict(operation.previous.properties)
            merged.update(props)
            return Request("PUT", f"ip-route/{current_id}", _route_body(ident, merged))
        return Request("DELETE", f"ip-route/{current_id}")

    raise CodecError(f"Unsupported entity kind: {kind}")
