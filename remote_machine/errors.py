"""Exception types raised by remote_machine."""

from __future__ import annotations

from typing import Sequence

NO_ERROR_MESSAGE = "remote_machine: No error message available"


class RemoteMachineError(RuntimeError):
    """Base class for every error raised by remote_machine."""


class TrustedHostMissing(RemoteMachineError):
    """Raised when the target address is absent from the local trusted hosts."""

    def __init__(self, address: str) -> None:
        super().__init__(
            "Cannot execute a remote command without the address being in the trusted hosts list. "
            f"Enable automatic trusted host management or add the address manually: {address}"
        )
        self.address = address


class InvalidArgument(RemoteMachineError, ValueError):
    """Raised for contradictory or malformed arguments before any remote work."""


class RemoteExecutionFailed(RemoteMachineError):
    """Raised when a script reported anything on its error stream."""

    def __init__(self, script: str, address: str, errors: Sequence[str]) -> None:
        self.script = script
        self.address = address
        self.errors = list(errors)
        super().__init__(
            f"Failed to run script ({script}) on {address} got errors: " + "\n".join(self.errors)
        )


class TransferVerificationFailed(RemoteExecutionFailed):
    """Raised when the post-transfer checksum step reports an error."""


__all__ = [
    "InvalidArgument",
    "NO_ERROR_MESSAGE",
    "RemoteExecutionFailed",
    "RemoteMachineError",
    "TransferVerificationFailed",
    "TrustedHostMissing",
]
