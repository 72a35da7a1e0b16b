"""Local trusted hosts list consulted before any remote session opens."""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Dict, List, Optional, Protocol, Tuple

from . import script_blocks
from .errors import RemoteExecutionFailed, TrustedHostMissing
from .execution import ScriptExecutor
from .provider import SessionProvider

logger = logging.getLogger(__name__)

_MEMORY_STORE_IDS = itertools.count(1)
WSMAN_TIMEOUT_SECONDS = 60.0


class TrustedHostPathMissing(LookupError):
    """Raised by a store whose backing setting does not exist yet."""


class TrustedHostStore(Protocol):
    """Persists the trusted hosts list as one comma-joined string.

    ``location`` names the underlying setting; registries over stores with the
    same location share auto-trust leases.
    """

    location: str

    def read(self) -> str:
        ...

    def write(self, value: str) -> None:
        ...


class WSManTrustedHostStore:
    """Reads and writes ``WSMan:\\localhost\\Client\\TrustedHosts`` on this host."""

    def __init__(self, executor: ScriptExecutor) -> None:
        self.executor = executor
        self.location = script_blocks.TRUSTED_HOSTS_PATH

    def read(self) -> str:
        try:
            outputs = self.executor.run(script_blocks.GET_TRUSTED_HOSTS)
        except RemoteExecutionFailed as exc:
            if any(script_blocks.MISSING_PATH_MARKER in message for message in exc.errors):
                raise TrustedHostPathMissing(script_blocks.TRUSTED_HOSTS_PATH) from exc
            raise
        return ",".join(str(output) for output in outputs if str(output))

    def write(self, value: str) -> None:
        self.executor.run(script_blocks.SET_TRUSTED_HOSTS, [value])


class MemoryTrustedHostStore:
    """In-process store; ``value=None`` behaves like a missing setting."""

    def __init__(self, value: Optional[str] = "") -> None:
        self.value = value
        self.writes: List[str] = []
        self.location = f"memory:{next(_MEMORY_STORE_IDS)}"

    def read(self) -> str:
        if self.value is None:
            raise TrustedHostPathMissing("memory")
        return self.value

    def write(self, value: str) -> None:
        if value is None:
            raise ValueError("Trusted hosts must be written as a string, not None.")
        self.value = value
        self.writes.append(value)


# One lock for every registry in the process; the WSMan setting is host-wide.
_PROCESS_LOCK = threading.RLock()
# Auto-trust lease counts per (store location, address), guarded by _PROCESS_LOCK.
_LEASES: Dict[Tuple[str, str], int] = {}


class TrustedHostRegistry:
    """Thread-safe add/remove/list over a :class:`TrustedHostStore`.

    Every operation holds the process-wide lock for its whole
    read-modify-write sequence, so registries built separately over the same
    setting do not lose each other's updates. Other processes may still
    change the setting.

    Automatic trust is reference counted: :meth:`lease` adds the address (or
    joins an existing lease) and :meth:`release` removes it once the last
    lease ends. Addresses that were trusted without a lease are never removed
    by :meth:`release`.
    """

    def __init__(self, store: TrustedHostStore) -> None:
        self.store = store
        self._lock = _PROCESS_LOCK

    def list(self) -> List[str]:
        with self._lock:
            try:
                raw = self.store.read()
            except TrustedHostPathMissing:
                return []
            return _parse(raw)

    def add(self, address: str) -> None:
        with self._lock:
            hosts = self.list()
            if address in hosts:
                return
            hosts.append(address)
            self.store.write(",".join(hosts))
            logger.debug("Added %s to trusted hosts", address)

    def remove(self, address: str) -> None:
        with self._lock:
            hosts = self.list()
            if address not in hosts:
                return
            hosts = [host for host in hosts if host != address]
            # Some providers treat a missing value differently from an empty one.
            self.store.write(",".join(hosts) if hosts else "")
            logger.debug("Removed %s from trusted hosts", address)

    def require(self, address: str, *, lease: bool = False) -> bool:
        """Check ``address`` is trusted, taking an auto-trust lease first if asked.

        The lease and the membership check happen under one lock hold.
        Returns True when a lease was taken and must be passed to
        :meth:`release`. Raises :class:`~remote_machine.errors.TrustedHostMissing`
        when the address is not trusted.
        """
        with self._lock:
            leased = self.lease(address) if lease else False
            if address not in self.list():
                if leased:
                    self.release(address)
                raise TrustedHostMissing(address)
            return leased

    def lease(self, address: str) -> bool:
        """Trust ``address`` for the caller; False when it was already trusted without a lease."""
        with self._lock:
            key = (self.store.location, address)
            count = _LEASES.get(key, 0)
            if count == 0:
                if address in self.list():
                    return False
                self.add(address)
            _LEASES[key] = count + 1
            return True

    def release(self, address: str) -> None:
        with self._lock:
            key = (self.store.location, address)
            count = _LEASES.get(key, 0)
            if count <= 1:
                _LEASES.pop(key, None)
                self.remove(address)
            else:
                _LEASES[key] = count - 1
                logger.debug("Keeping %s trusted for %d other operation(s)", address, count - 1)

    def __contains__(self, address: object) -> bool:
        return address in self.list()


def wsman_registry(provider: SessionProvider) -> TrustedHostRegistry:
    """Registry over this host's WSMan setting, read and written through ``provider``."""
    executor = ScriptExecutor(provider, timeout=WSMAN_TIMEOUT_SECONDS)
    return TrustedHostRegistry(WSManTrustedHostStore(executor))


def _parse(raw: Optional[str]) -> List[str]:
    hosts: List[str] = []
    for part in (raw or "").split(","):
        host = part.strip()
        if host and host not in hosts:
            hosts.append(host)
    return hosts


__all__ = [
    "MemoryTrustedHostStore",
    "TrustedHostPathMissing",
    "TrustedHostRegistry",
    "TrustedHostStore",
    "WSManTrustedHostStore",
    "WSMAN_TIMEOUT_SECONDS",
    "wsman_registry",
]
