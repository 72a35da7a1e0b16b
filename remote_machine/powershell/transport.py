"""Long-lived PowerShell interpreter driven over stdin/stdout."""

from __future__ import annotations

import base64
import logging
import queue
import subprocess
import threading
import time
from collections import deque
from typing import IO, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

BEGIN_MARKER = "__RM_BEGIN__"
END_MARKER = "__RM_END__"
DEFAULT_POWERSHELL_COMMAND = "pwsh"
HOST_ARGS = ("-NoLogo", "-NoProfile", "-NonInteractive", "-Command", "-")
EXIT_GRACE_SECONDS = 5.0
UNFRAMED_TAIL_LINES = 20


class PowerShellHostError(RuntimeError):
    """Raised when the interpreter cannot be started or stops answering."""


class PowerShellTimeout(PowerShellHostError):
    """Raised when a request does not complete before its deadline."""


class PowerShellHost:
    """One ``pwsh -Command -`` process answering marker-delimited requests.

    Every request is sent as a single dot-sourced line so state (functions,
    the open session) persists between requests on the same host.
    """

    def __init__(
        self,
        powershell_command: Sequence[str] | str = DEFAULT_POWERSHELL_COMMAND,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if isinstance(powershell_command, str):
            self._base_cmd: List[str] = [powershell_command]
        else:
            self._base_cmd = list(powershell_command)
        if not self._base_cmd:
            raise PowerShellHostError("powershell_command must not be empty.")
        self._env = dict(env) if env is not None else None
        self._process: Optional[subprocess.Popen] = None
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._reader: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        if self._process is not None:
            return
        cmd = self._base_cmd + list(HOST_ARGS)
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=self._env,
            )
        except OSError as exc:
            raise PowerShellHostError(f"Failed to start PowerShell ({cmd[0]}): {exc}") from exc
        self._reader = threading.Thread(
            target=_pump_lines,
            args=(self._process.stdout, self._lines),
            name="powershell-host-reader",
            daemon=True,
        )
        self._reader.start()
        logger.debug("Started PowerShell host pid=%s", self._process.pid)

    def run(self, script: str, *, timeout: float | None = None) -> str:
        """Run ``script`` and return what it printed between the markers."""
        if self._process is None or self._process.stdin is None:
            raise PowerShellHostError("PowerShell host is not running.")
        try:
            self._process.stdin.write(encode_request(script) + "\n")
            self._process.stdin.flush()
        except (BrokenPipeError, OSError) as exc:
            raise PowerShellHostError(f"PowerShell host stopped accepting input: {exc}") from exc
        try:
            return self._read_body(timeout)
        except PowerShellTimeout:
            # A late reply would otherwise be read as the answer to the next request.
            self._kill()
            raise

    def close(self) -> None:
        process = self._process
        if process is None:
            return
        self._process = None
        try:
            if process.stdin is not None and not process.stdin.closed:
                process.stdin.write("exit\n")
                process.stdin.flush()
                process.stdin.close()
        except (BrokenPipeError, OSError):
            pass
        try:
            process.wait(timeout=EXIT_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("PowerShell host pid=%s did not exit; killing it.", process.pid)
            process.kill()
            process.wait()
        logger.debug("PowerShell host pid=%s exited with %s", process.pid, process.returncode)

    def _kill(self) -> None:
        process = self._process
        if process is None:
            return
        self._process = None
        logger.warning("Stopping unresponsive PowerShell host pid=%s", process.pid)
        process.kill()
        process.wait()

    def _read_body(self, timeout: float | None) -> str:
        deadline = None if timeout is None else time.monotonic() + timeout
        capturing = False
        body_lines: List[str] = []
        unframed: "deque[str]" = deque(maxlen=UNFRAMED_TAIL_LINES)
        while True:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                line = self._lines.get(timeout=remaining)
            except queue.Empty:
                raise PowerShellTimeout(
                    _with_output(f"No response from PowerShell within {timeout} seconds.", unframed)
                ) from None
            if line is None:
                raise PowerShellHostError(
                    _with_output("PowerShell host exited before completing the request.", unframed)
                )
            stripped = line.strip()
            if not capturing:
                if stripped == BEGIN_MARKER:
                    capturing = True
                elif stripped:
                    unframed.append(stripped)
                    logger.debug("powershell: %s", stripped)
                continue
            if stripped == END_MARKER:
                return "\n".join(body_lines).strip()
            body_lines.append(line.rstrip("\r\n"))


def _with_output(message: str, unframed: Sequence[str]) -> str:
    if not unframed:
        return message
    return message + " Host output:\n" + "\n".join(unframed)


def encode_request(script: str) -> str:
    """Render ``script`` as one line the interpreter dot-sources."""
    payload = base64.b64encode(script.encode("utf-8")).decode("ascii")
    return (
        ". ([scriptblock]::Create([System.Text.Encoding]::UTF8.GetString("
        f"[System.Convert]::FromBase64String('{payload}'))))"
    )


def _pump_lines(stream: IO[str], sink: "queue.Queue[Optional[str]]") -> None:
    try:
        for line in stream:
            sink.put(line)
    finally:
        sink.put(None)


__all__ = [
    "BEGIN_MARKER",
    "DEFAULT_POWERSHELL_COMMAND",
    "END_MARKER",
    "PowerShellHost",
    "PowerShellHostError",
    "PowerShellTimeout",
    "encode_request",
]
