"""Config Engine - declarative reconciliation of switch configuration.

The Config Engine turns a declared desired configuration into the ordered
operations that bring each device in line with it:
- Parse and validate the desired configuration
- Fetch and normalize live state
- Diff, order by dependency
- Apply with retry, rollback and per-device isolation

Usage:
    from arc.config_engine import ConfigEngine

    engine = ConfigEngine(inventory)
    result = await engine.reconcile({
        "vlans": {
            100: {
                "name": "Production",
                "untagged_ports": ["1-4"]
            }
        }
    }, ["core-1"], dry_run=True)
"""

from .engine import ConfigEngine
from .schema import (
    ApplyStatus,
    ChangeSet,
    DesiredConfig,
    DeviceResult,
    Operation,
    OperationResult,
    OpType,
    RunResult,
    ValidationResult,
)
from .parser import ConfigParser, compute_checksum, expand_ports
from .validator import ConfigValidator
from .diff import DiffEngine, scope_live, summarize_diff
from .orderer import DependencyOrderer
from .fetcher import StateFetcher
from .executor import TransactionCoordinator
from .events import EventSink, LoggingEventSink, NullEventSink

__all__ = [
    # Main engine
    "ConfigEngine",
    # Schema classes
    "ApplyStatus",
    "ChangeSet",
    "DesiredConfig",
    "DeviceResult",
    "Operation",
    "OperationResult",
    "OpType",
    "RunResult",
    "ValidationResult",
    # Parser
    "ConfigParser",
    "compute_checksum",
    "expand_ports",
    # Components (for advanced use)
    "ConfigValidator",
    "DiffEngine",
    "scope_live",
    "summarize_diff",
    "DependencyOrderer",
    "StateFetcher",
    "TransactionCoordinator",
    "EventSink",
    "LoggingEventSink",
    "NullEventSink",
]
