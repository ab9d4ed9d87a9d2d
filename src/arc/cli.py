#!/usr/bin/env python3
"""arc command line interface.

Usage:
    arc login DEVICE
    arc logout DEVICE
    arc plan CONFIG [-d DEVICE ...] [-g GROUP ...] [--json]
    arc apply CONFIG [-d DEVICE ...] [-g GROUP ...] [--no-rollback] [--timeout S] [--json]
    arc poe get DEVICE [PORT ... | all]
    arc poe set DEVICE PORT ... (--enabled | --disabled) [--priority P]
    arc history [-d DEVICE] [--event EVENT] [--limit N]

Exit codes:
    0    every device reached the desired configuration
    1    the run could not start (inventory, desired config)
    2    some devices succeeded, some failed
    3    no device succeeded
    130  interrupted
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from dataclasses import replace
from typing import Optional

import yaml

from .config.inventory import DeviceInventory
from .config.loader import load_desired_config
from .config.schema import EntityKind
from .config_engine import ConfigEngine, summarize_diff
from .config_engine.parser import expand_ports
from .config_engine.schema import DeviceResult, RunResult
from .errors import ArcError
from .utils.audit_log import AuditEventSink, get_recent_events, setup_audit_logging
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

EXIT_RUN_FATAL = 1
EXIT_INTERRUPTED = 130

POE_PRIORITIES = ("low", "high", "critical")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="arc",
        description="Reconcile Aruba switch configuration with a declared desired state",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Preview what would change on every device in group "edge"
    arc plan desired.yaml -g edge

    # Apply to one device, keep applied changes on failure
    arc apply desired.yaml -d core-1 --no-rollback

    # Disable PoE on ports 1-4
    arc poe set core-1 1 2 3 4 --disabled

    # Last 20 failed operations on core-1
    arc history -d core-1 --event operation_failed --limit 20

Environment:
    ARC_PASSWORD        Device credentials (default password_env)
    ARC_LOG_LEVEL       Console log level
    ARC_SESSION_FILE    Where session cookies are kept
""",
    )
    parser.add_argument(
        "--inventory",
        help="Device inventory file (default: search ./configs/devices.yaml, ...)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    login = commands.add_parser("login", help="Create and store a session for a device")
    login.add_argument("device")
    logout = commands.add_parser("logout", help="End and forget the session of a device")
    logout.add_argument("device")

    for name, help_text in (
        ("plan", "Show the operations needed, without applying them"),
        ("apply", "Apply the desired configuration"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("config", help="Desired configuration file (YAML or JSON)")
        sub.add_argument("-d", "--device", action="append", default=[], help="Target device")
        sub.add_argument("-g", "--group", action="append", default=[], help="Target group")
        sub.add_argument("--json", action="store_true", help="Print the result as JSON")
        if name == "apply":
            sub.add_argument(
                "--no-rollback",
                action="store_true",
                help="Leave applied operations in place when a later one fails",
            )
            sub.add_argument(
                "--timeout",
                type=float,
                help="Stop starting new operations after this many seconds",
            )

    poe = commands.add_parser("poe", help="Read or change PoE port settings")
    poe_commands = poe.add_subparsers(dest="poe_command", required=True)
    poe_get = poe_commands.add_parser("get", help="Print PoE settings as JSON lines")
    poe_get.add_argument("device")
    poe_get.add_argument("ports", nargs="*", help="Port ids, or 'all' (default)")
    poe_set = poe_commands.add_parser("set", help="Change PoE settings of ports")
    poe_set.add_argument("device")
    poe_set.add_argument("ports", nargs="+", help="Port ids, ranges like 1-4, or 'all'")
    state = poe_set.add_mutually_exclusive_group()
    state.add_argument("--enabled", dest="enabled", action="store_true", default=None)
    state.add_argument("--disabled", dest="enabled", action="store_false")
    poe_set.add_argument("--priority", choices=POE_PRIORITIES)

    history = commands.add_parser("history", help="Print recent audit events as JSON lines")
    history.add_argument("-d", "--device", help="Only events of this device")
    history.add_argument("--event", help="Only events of this type, e.g. operation_failed")
    history.add_argument("--limit", type=int, default=50, help="Maximum events (default: 50)")

    return parser


# --- Output ---

def format_device_result(result: DeviceResult) -> str:
    """Human-readable report of one device."""
    lines = []
    if result.success:
        if result.dry_run:
            status = "PLAN"
        else:
            status = "OK"
    else:
        status = "FAILED"
    header = f"{result.device_id}: {status}"
    if result.error:
        header += f" (stage {result.stage}): {result.error}"
    lines.append(header)

    for warning in result.warnings:
        lines.append(f"  warning: {warning}")

    if result.dry_run and result.change_set is not None:
        summary = summarize_diff(list(result.change_set))
        lines.extend(f"  {line}" if line else "" for line in summary.splitlines())
        return "\n".join(lines)

    for op_result in result.results:
        line = f"  {op_result.status.value:12s} {op_result.operation.describe()}"
        if op_result.reason and op_result.status.value != "applied":
            line += f" - {op_result.reason}"
        if op_result.rollback_reason:
            line += f" (rollback: {op_result.rollback_reason})"
        lines.append(line)
    return "\n".join(lines)


def print_run(result: RunResult, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return
    for device_result in result.devices:
        print(format_device_result(device_result))
    summary = result.to_dict()["summary"]
    print(f"\n{summary['succeeded']}/{summary['total_devices']} device(s) succeeded")


# --- Commands ---

def run_history(args: argparse.Namespace) -> int:
    """Print audit events, most recent first."""
    for record in get_recent_events(device_id=args.device, event=args.event, limit=args.limit):
        print(record.to_json())
    return 0


def _install_interrupt(cancel: asyncio.Event) -> None:
    """SIGINT stops new operations; in-flight ones finish and roll back."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except (NotImplementedError, RuntimeError):
        # Not supported on this platform/thread; KeyboardInterrupt still applies
        pass


async def run_reconcile(args: argparse.Namespace, inventory: DeviceInventory, dry_run: bool) -> int:
    try:
        config = load_desired_config(args.config)
        targets = inventory.resolve_targets(args.device, args.group)
    except ArcError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_RUN_FATAL
    except KeyError as e:
        print(f"Error: {e.args[0]}", file=sys.stderr)
        return EXIT_RUN_FATAL

    settings = inventory.settings
    if getattr(args, "no_rollback", False):
        settings = replace(settings, rollback_on_error=False)

    sink = None
    if not dry_run:
        setup_audit_logging()
        sink = AuditEventSink()

    cancel = asyncio.Event()
    _install_interrupt(cancel)
    timeout = getattr(args, "timeout", None)
    deadline = time.monotonic() + timeout if timeout else None

    engine = ConfigEngine(inventory, settings, sink)
    try:
        result = await engine.reconcile(config, targets, dry_run=dry_run, cancel=cancel, deadline=deadline)
    finally:
        await inventory.close_all()

    print_run(result, args.json)
    if cancel.is_set():
        return EXIT_INTERRUPTED
    return result.exit_code


async def run_login(args: argparse.Namespace, inventory: DeviceInventory) -> int:
    device = inventory.get_device(args.device)
    if not hasattr(device, "login"):
        print(f"Device {args.device} does not use sessions", file=sys.stderr)
        return EXIT_RUN_FATAL
    try:
        await device.login()
    finally:
        await device.disconnect()
    print(f"Logged in to {args.device}")
    return 0


async def run_logout(args: argparse.Namespace, inventory: DeviceInventory) -> int:
    device = inventory.get_device(args.device)
    if not hasattr(device, "logout"):
        print(f"Device {args.device} does not use sessions", file=sys.stderr)
        return EXIT_RUN_FATAL
    try:
        await device.logout()
    finally:
        await device.disconnect()
    print(f"Logged out of {args.device}")
    return 0


async def _poe_records(device, ports: list[str]) -> list[dict]:
    """PoE records for the requested ports (all when empty or 'all')."""
    if not ports or ports == ["all"]:
        return await device.get_poe_ports()
    if len(ports) == 1:
        return [await device.get_poe_port(ports[0])]
    wanted = set(ports)
    return [r for r in await device.get_poe_ports() if str(r.get("port_id")) in wanted]


async def run_poe_get(args: argparse.Namespace, inventory: DeviceInventory) -> int:
    device = inventory.get_device(args.device)
    if not hasattr(device, "get_poe_ports"):
        print(f"Device {args.device} does not expose PoE settings", file=sys.stderr)
        return EXIT_RUN_FATAL
    try:
        await device.connect()
        for record in await _poe_records(device, args.ports):
            print(json.dumps(record))
    finally:
        await device.disconnect()
    return 0


async def run_poe_set(args: argparse.Namespace, inventory: DeviceInventory) -> int:
    """Reconcile the requested PoE changes in patch mode.

    Unspecified settings keep their live values.
    """
    if args.enabled is None and args.priority is None:
        print("Nothing to change: give --enabled/--disabled and/or --priority", file=sys.stderr)
        return EXIT_RUN_FATAL

    device = inventory.get_device(args.device)
    try:
        await device.connect()
        live = device.normalize(EntityKind.POE, await device.fetch(EntityKind.POE))
    finally:
        await device.disconnect()

    live_by_port = {entity.identifier: entity for entity in live}
    if args.ports == ["all"]:
        ports = list(live_by_port)
    else:
        ports = expand_ports(args.ports)
    unknown = [p for p in ports if p not in live_by_port]
    if unknown:
        print(f"Unknown PoE port(s) on {args.device}: {', '.join(unknown)}", file=sys.stderr)
        return EXIT_RUN_FATAL

    section = {}
    for port in ports:
        properties = dict(live_by_port[port].properties)
        if args.enabled is not None:
            properties["enabled"] = args.enabled
        if args.priority is not None:
            properties["priority"] = args.priority
        section[port] = properties

    engine = ConfigEngine(inventory, inventory.settings)
    try:
        result = await engine.reconcile(
            {"mode": "patch", "kinds": ["poe"], "poe": section}, [args.device]
        )
    finally:
        await inventory.close_all()
    print_run(result, as_json=False)
    return result.exit_code


async def dispatch(args: argparse.Namespace, inventory: DeviceInventory) -> int:
    if args.command == "login":
        return await run_login(args, inventory)
    if args.command == "logout":
        return await run_logout(args, inventory)
    if args.command == "plan":
        return await run_reconcile(args, inventory, dry_run=True)
    if args.command == "apply":
        return await run_reconcile(args, inventory, dry_run=False)
    if args.poe_command == "get":
        return await run_poe_get(args, inventory)
    return await run_poe_set(args, inventory)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the arc CLI."""
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else None)

    if args.command == "history":
        return run_history(args)

    try:
        inventory = DeviceInventory(args.inventory)
    except (OSError, yaml.YAMLError) as e:
        print(f"Error: cannot load inventory: {e}", file=sys.stderr)
        return EXIT_RUN_FATAL

    try:
        return asyncio.run(dispatch(args, inventory))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return EXIT_INTERRUPTED
    except (ArcError, KeyError, ValueError) as e:
        message = e.args[0] if isinstance(e, KeyError) and e.args else e
        print(f"Error: {message}", file=sys.stderr)
        return EXIT_RUN_FATAL


if __name__ == "__main__":
    sys.exit(main())
