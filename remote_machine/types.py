"""Core remote_machine data types."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from .checksum import digest
from .errors import NO_ERROR_MESSAGE, InvalidArgument

LOCALHOST = "localhost"
DEFAULT_CHUNK_THRESHOLD = 150000
DEFAULT_CHUNK_SIZE = 100000
DEFAULT_IDLE_TIMEOUT = 20 * 60.0


@dataclass(frozen=True)
class TargetEndpoint:
    """Connection settings for the single host a manager talks to."""

    address: str
    username: str
    credential: str = field(repr=False)
    auto_manage_trusted_hosts: bool = False
    chunk_threshold: int = DEFAULT_CHUNK_THRESHOLD
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        address = (self.address or "").strip()
        if not address:
            raise InvalidArgument("Target endpoints must include an address.")
        object.__setattr__(self, "address", address)
        _validate_chunking(self.chunk_threshold, self.chunk_size)


@dataclass(frozen=True)
class SessionOptions:
    """Options negotiated when a remote session opens.

    An ``operation_timeout`` of ``None`` means operations never time out on the
    remote side; ``idle_timeout`` is also the local deadline for each call.
    """

    operation_timeout: Optional[float] = None
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT

    def __post_init__(self) -> None:
        if self.idle_timeout <= 0:
            raise InvalidArgument("idle_timeout must be positive.")
        if self.operation_timeout is not None and self.operation_timeout < 0:
            raise InvalidArgument("operation_timeout must not be negative.")


class _LocalSession:
    address = LOCALHOST

    def __repr__(self) -> str:
        return "LOCAL_SESSION"


# Sentinel handle: scripts run on the calling host without a remote session.
LOCAL_SESSION: Any = _LocalSession()


def is_local(session: Any) -> bool:
    return session is LOCAL_SESSION


class OutputKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    BYTES = "bytes"
    RECORD = "record"
    NULL = "null"


@dataclass(frozen=True)
class OutputValue:
    """One object emitted by a script, tagged with its kind."""

    kind: OutputKind
    value: Any = None

    @classmethod
    def from_wire(cls, item: Any) -> "OutputValue":
        if not isinstance(item, Mapping):
            return cls.from_python(item)
        kind = OutputKind(item.get("kind", OutputKind.NULL.value))
        value = item.get("value")
        if kind == OutputKind.BYTES:
            value = base64.b64decode(value or "")
        elif kind == OutputKind.RECORD:
            value = dict(value or {})
        return cls(kind=kind, value=value)

    @classmethod
    def from_python(cls, value: Any) -> "OutputValue":
        if value is None:
            return cls(OutputKind.NULL)
        if isinstance(value, bool):
            return cls(OutputKind.BOOL, value)
        if isinstance(value, (int, float)):
            return cls(OutputKind.NUMBER, value)
        if isinstance(value, (bytes, bytearray)):
            return cls(OutputKind.BYTES, bytes(value))
        if isinstance(value, Mapping):
            return cls(OutputKind.RECORD, dict(value))
        return cls(OutputKind.STRING, str(value))

    def __str__(self) -> str:
        if self.kind == OutputKind.NULL:
            return ""
        if self.kind == OutputKind.BYTES:
            return self.value.decode("utf-8", errors="replace")
        if self.kind == OutputKind.RECORD:
            return "; ".join(f"{key}={value}" for key, value in self.value.items())
        return str(self.value)


@dataclass(frozen=True)
class Diagnostic:
    """One entry from a script's error stream."""

    details: Optional[str] = None
    exception: Optional[str] = None

    @property
    def message(self) -> str:
        if self.details:
            return self.details
        if self.exception:
            return self.exception
        return NO_ERROR_MESSAGE


@dataclass
class InvocationResult:
    outputs: List[OutputValue] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


@dataclass(frozen=True)
class ScriptInvocation:
    """A script body, its positional arguments, and the session to run it in."""

    script: str
    arguments: Tuple[Any, ...] = ()
    session: Any = LOCAL_SESSION

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", tuple(self.arguments or ()))


@dataclass(frozen=True)
class TransferRequest:
    """A file payload bound for one path on the target."""

    path: str
    contents: bytes = field(repr=False)
    appended: bool = False
    overwrite: bool = False
    chunk_threshold: int = DEFAULT_CHUNK_THRESHOLD
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        if self.appended and self.overwrite:
            raise InvalidArgument("Cannot run with overwrite AND appended.")
        if not self.path:
            raise InvalidArgument("A destination path is required.")
        if not isinstance(self.contents, (bytes, bytearray)):
            raise InvalidArgument("File contents must be bytes.")
        object.__setattr__(self, "contents", bytes(self.contents))
        _validate_chunking(self.chunk_threshold, self.chunk_size)

    @property
    def chunked(self) -> bool:
        return len(self.contents) > self.chunk_threshold

    def chunks(self) -> List[bytes]:
        return split_chunks(self.contents, self.chunk_size)

    @property
    def expected_checksum(self) -> str:
        return digest(self.contents)


def split_chunks(payload: bytes, chunk_size: int) -> List[bytes]:
    """Split ``payload`` into consecutive ``chunk_size`` slices; the last holds the remainder."""
    if chunk_size <= 0:
        raise InvalidArgument("chunk_size must be positive.")
    return [payload[offset : offset + chunk_size] for offset in range(0, len(payload), chunk_size)]


def _validate_chunking(chunk_threshold: int, chunk_size: int) -> None:
    if not isinstance(chunk_threshold, int) or chunk_threshold < 0:
        raise InvalidArgument("chunk_threshold must be a non-negative integer.")
    if not isinstance(chunk_size, int) or chunk_size <= 0:
        raise InvalidArgument("chunk_size must be a positive integer.")


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_CHUNK_THRESHOLD",
    "DEFAULT_IDLE_TIMEOUT",
    "Diagnostic",
    "InvocationResult",
    "LOCALHOST",
    "LOCAL_SESSION",
    "OutputKind",
    "OutputValue",
    "ScriptInvocation",
    "SessionOptions",
    "TargetEndpoint",
    "TransferRequest",
    "is_local",
    "split_chunks",
]
