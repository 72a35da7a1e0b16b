"""Session provider backed by PowerShell remoting (New-PSSession/Invoke-Command)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from remote_machine import types
from remote_machine.errors import RemoteExecutionFailed
from remote_machine.execution import raise_for_diagnostics

from . import envelope
from .transport import DEFAULT_POWERSHELL_COMMAND, PowerShellHost, PowerShellHostError

logger = logging.getLogger(__name__)

STARTUP_TIMEOUT_SECONDS = 60.0


@dataclass
class PowerShellSession:
    """An open PSSession living inside its own PowerShell host."""

    address: str
    host: PowerShellHost = field(repr=False)


class PowerShellProvider:
    """Runs scripts through a local ``pwsh`` that holds the remote session."""

    def __init__(
        self,
        powershell_command: Sequence[str] | str = DEFAULT_POWERSHELL_COMMAND,
        *,
        env: Mapping[str, str] | None = None,
        startup_timeout: float = STARTUP_TIMEOUT_SECONDS,
    ) -> None:
        self.powershell_command = powershell_command
        self.env = env
        self.startup_timeout = startup_timeout

    def open(self, address: str, username: str, credential: str, options: types.SessionOptions) -> PowerShellSession:
        host = self._start_host(address)
        try:
            arguments = [
                address,
                username,
                credential,
                int(options.idle_timeout * 1000),
                int((options.operation_timeout or 0) * 1000),
            ]
            result = self._run(
                host,
                envelope.OPEN_SESSION,
                arguments,
                use_session=False,
                timeout=options.idle_timeout,
                address=address,
            )
            raise_for_diagnostics(f"New-PSSession -ComputerName {address}", address, result.diagnostics)
        except BaseException:
            host.close()
            raise
        logger.debug("Opened PowerShell session to %s", address)
        return PowerShellSession(address=address, host=host)

    def invoke(
        self,
        session: Any,
        script: str,
        arguments: Sequence[Any] = (),
        *,
        timeout: float | None = None,
    ) -> types.InvocationResult:
        if types.is_local(session):
            host = self._start_host(types.LOCALHOST)
            try:
                return self._run(
                    host, script, arguments, use_session=False, timeout=timeout, address=types.LOCALHOST
                )
            finally:
                host.close()
        return self._run(
            session.host, script, arguments, use_session=True, timeout=timeout, address=session.address
        )

    def close(self, session: Any) -> None:
        if types.is_local(session):
            return
        if not session.host.running:
            # Stopped after a timeout; the remote end expires on its idle timeout.
            logger.warning("PowerShell host for %s is gone; not removing its session", session.address)
            session.host.close()
            return
        try:
            result = self._run(
                session.host,
                envelope.CLOSE_SESSION,
                (),
                use_session=False,
                timeout=self.startup_timeout,
                address=session.address,
            )
        finally:
            session.host.close()
        logger.debug("Closed PowerShell session to %s", session.address)
        raise_for_diagnostics("Remove-PSSession", session.address, result.diagnostics)

    def _start_host(self, address: str) -> PowerShellHost:
        host = PowerShellHost(self.powershell_command, env=self.env)
        try:
            host.start()
            host.run(envelope.BOOTSTRAP, timeout=self.startup_timeout)
        except PowerShellHostError as exc:
            host.close()
            raise RemoteExecutionFailed("PowerShell host startup", address, [str(exc)]) from exc
        return host

    def _run(
        self,
        host: PowerShellHost,
        script: str,
        arguments: Sequence[Any],
        *,
        use_session: bool,
        timeout: float | None,
        address: str,
    ) -> types.InvocationResult:
        request = envelope.build_request(script, arguments, use_session=use_session)
        try:
            body = host.run(request, timeout=timeout)
            return envelope.parse_envelope(body)
        except (PowerShellHostError, envelope.EnvelopeError) as exc:
            raise RemoteExecutionFailed(script, address, [str(exc)]) from exc


__all__ = ["PowerShellProvider", "PowerShellSession", "STARTUP_TIMEOUT_SECONDS"]
