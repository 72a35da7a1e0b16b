"""Runs script invocations against a session or the local host."""

from __future__ import annotations

import logging
from typing import Any, List, Sequence, Type

from . import types
from .errors import RemoteExecutionFailed
from .provider import SessionProvider
from .script_blocks import rewrite_interactive_output

logger = logging.getLogger(__name__)


class ScriptExecutor:
    """Submits scripts through a provider and turns diagnostics into errors.

    ``timeout`` is the per-call deadline; ``None`` blocks until the provider
    returns.
    """

    def __init__(self, provider: SessionProvider, address: str = types.LOCALHOST, *, timeout: float | None = None) -> None:
        self.provider = provider
        self.address = address
        self.timeout = timeout

    def execute(
        self,
        invocation: types.ScriptInvocation,
        *,
        error_type: Type[RemoteExecutionFailed] = RemoteExecutionFailed,
    ) -> List[types.OutputValue]:
        """Run ``invocation`` and return its output objects in emission order."""
        attempted = rewrite_interactive_output(invocation.script)
        target = types.LOCALHOST if types.is_local(invocation.session) else self.address
        logger.debug("Running script on %s with %d argument(s)", target, len(invocation.arguments))
        result = self.provider.invoke(
            invocation.session,
            attempted,
            invocation.arguments,
            timeout=self.timeout,
        )
        raise_for_diagnostics(attempted, target, result.diagnostics, error_type=error_type)
        return list(result.outputs)

    def run(
        self,
        script: str,
        arguments: Sequence[Any] | None = None,
        *,
        session: Any = types.LOCAL_SESSION,
        error_type: Type[RemoteExecutionFailed] = RemoteExecutionFailed,
    ) -> List[types.OutputValue]:
        invocation = types.ScriptInvocation(script=script, arguments=tuple(arguments or ()), session=session)
        return self.execute(invocation, error_type=error_type)


def raise_for_diagnostics(
    script: str,
    address: str,
    diagnostics: Sequence[types.Diagnostic],
    *,
    error_type: Type[RemoteExecutionFailed] = RemoteExecutionFailed,
) -> None:
    """Raise ``error_type`` if the error stream carried anything at all."""
    if not diagnostics:
        return
    raise error_type(script, address, [diagnostic.message for diagnostic in diagnostics])


__all__ = ["ScriptExecutor", "raise_for_diagnostics"]
