"""Remote command execution and file delivery over PowerShell remoting."""

__version__ = "0.1.0"

from .checksum import digest
from .errors import (
    InvalidArgument,
    RemoteExecutionFailed,
    RemoteMachineError,
    TransferVerificationFailed,
    TrustedHostMissing,
)
from .manager import MachineManager, add_trusted_host, list_trusted_hosts, remove_trusted_host
from .types import LOCAL_SESSION, OutputKind, OutputValue, SessionOptions, TargetEndpoint, TransferRequest

__all__ = [
    "InvalidArgument",
    "LOCAL_SESSION",
    "MachineManager",
    "OutputKind",
    "OutputValue",
    "RemoteExecutionFailed",
    "RemoteMachineError",
    "SessionOptions",
    "TargetEndpoint",
    "TransferRequest",
    "TransferVerificationFailed",
    "TrustedHostMissing",
    "__version__",
    "add_trusted_host",
    "digest",
    "list_trusted_hosts",
    "remove_trusted_host",
]
