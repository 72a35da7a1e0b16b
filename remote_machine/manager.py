"""Public operations against a single managed machine."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, List, Optional, Sequence

from . import script_blocks, types
from .execution import ScriptExecutor
from .powershell import PowerShellProvider
from .provider import SessionProvider
from .session import SessionLifecycle
from .transfer import FileTransfer
from .trusted_hosts import TrustedHostRegistry, wsman_registry

logger = logging.getLogger(__name__)

_default_registry: Optional[TrustedHostRegistry] = None
_default_registry_lock = threading.Lock()


def default_registry() -> TrustedHostRegistry:
    """Return the process-wide registry over this host's WSMan trusted hosts."""
    global _default_registry
    with _default_registry_lock:
        if _default_registry is None:
            _default_registry = wsman_registry(PowerShellProvider())
        return _default_registry


def add_trusted_host(address: str, *, registry: TrustedHostRegistry | None = None) -> None:
    (registry or default_registry()).add(address)


def remove_trusted_host(address: str, *, registry: TrustedHostRegistry | None = None) -> None:
    (registry or default_registry()).remove(address)


def list_trusted_hosts(*, registry: TrustedHostRegistry | None = None) -> List[str]:
    return (registry or default_registry()).list()


class MachineManager:
    """Runs scripts, commands, file transfers and reboots on one target.

    Every public call opens a fresh session and closes it before returning,
    including when the call fails.
    """

    def __init__(
        self,
        endpoint: types.TargetEndpoint,
        *,
        provider: SessionProvider | None = None,
        registry: TrustedHostRegistry | None = None,
        options: types.SessionOptions | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.options = options or types.SessionOptions()
        self.provider = provider or PowerShellProvider()
        self.registry = registry or default_registry()
        self.lifecycle = SessionLifecycle(endpoint, self.provider, self.registry, self.options)
        self.executor = ScriptExecutor(self.provider, endpoint.address, timeout=self.options.idle_timeout)
        self.transfer = FileTransfer(self.executor)

    @property
    def address(self) -> str:
        return self.endpoint.address

    def reboot(self, force: bool = True) -> None:
        """Restart the target; ``force`` logs off interactive users."""
        logger.info("Rebooting %s%s", self.address, " (forced)" if force else "")
        self.run_script(script_blocks.build_restart_script(force=force))

    def send_file(self, remote_path: str, contents: bytes, appended: bool = False, overwrite: bool = False) -> None:
        """Write ``contents`` to ``remote_path`` on the target.

        ``appended`` and ``overwrite`` are mutually exclusive; without either
        the call fails if the file already exists.
        """
        request = types.TransferRequest(
            path=remote_path,
            contents=contents,
            appended=appended,
            overwrite=overwrite,
            chunk_threshold=self.endpoint.chunk_threshold,
            chunk_size=self.endpoint.chunk_size,
        )
        with self.lifecycle.session() as session:
            self.transfer.send(request, session)

    def run_command(self, command: str, parameters: Sequence[str] | None = None) -> str:
        """Run ``command`` through ``cmd.exe /c`` on the target and return its console output."""
        return _join_lines(self.run_script(script_blocks.RUN_CMD, [command, list(parameters or [])]))

    def run_command_on_localhost(self, command: str, parameters: Sequence[str] | None = None) -> str:
        return _join_lines(self.run_script_on_localhost(script_blocks.RUN_CMD, [command, list(parameters or [])]))

    def run_script(self, script: str, parameters: Sequence[Any] | None = None) -> List[types.OutputValue]:
        """Run a script block on the target and return its output objects."""
        with self.lifecycle.session() as session:
            return self.executor.run(script, parameters, session=session)

    def run_script_on_localhost(self, script: str, parameters: Sequence[Any] | None = None) -> List[types.OutputValue]:
        return self.executor.run(script, parameters, session=types.LOCAL_SESSION)


def _join_lines(outputs: Sequence[types.OutputValue]) -> str:
    return os.linesep.join(str(output) for output in outputs)


__all__ = [
    "MachineManager",
    "add_trusted_host",
    "default_registry",
    "list_trusted_hosts",
    "remove_trusted_host",
]
