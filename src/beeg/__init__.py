"""beeg: read-only diagnostics for BeeGFS clusters."""

from .aggregator import Aggregator, ResultMatrix, RunState
from .config import Config, Defaults, NodeConfig, load_config, select_nodes
from .executor import Executor, NodeWorker
from .probes import CLIENT_MOUNT_PROBES, ProbeParams, ProbeStep
from .progress import DoneEvent, Outcome, OutcomeStatus, ProgressChannel, SetEvent
from .transport import ExecOutput, Transport, TransportError

__all__ = [
    "Aggregator",
    "ResultMatrix",
    "RunState",
    "Config",
    "Defaults",
    "NodeConfig",
    "load_config",
    "select_nodes",
    "Executor",
    "NodeWorker",
    "CLIENT_MOUNT_PROBES",
    "ProbeParams",
    "ProbeStep",
    "DoneEvent",
    "Outcome",
    "OutcomeStatus",
    "ProgressChannel",
    "SetEvent",
    "ExecOutput",
    "Transport",
    "TransportError",
]
