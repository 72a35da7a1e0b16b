"""The capability every remote session provider offers."""

from __future__ import annotations

from typing import Any, Protocol, Sequence

from .types import InvocationResult, SessionOptions


class SessionProvider(Protocol):
    """Opens sessions, runs scripts in them, and closes them.

    ``invoke`` also accepts :data:`remote_machine.types.LOCAL_SESSION`, which
    runs the script on the calling host. Implementations report script errors
    as diagnostics and raise :class:`remote_machine.errors.RemoteExecutionFailed`
    only when the provider itself cannot complete the call.
    """

    def open(self, address: str, username: str, credential: str, options: SessionOptions) -> Any:
        ...

    def invoke(
        self,
        session: Any,
        script: str,
        arguments: Sequence[Any] = (),
        *,
        timeout: float | None = None,
    ) -> InvocationResult:
        ...

    def close(self, session: Any) -> None:
        ...


__all__ = ["SessionProvider"]
