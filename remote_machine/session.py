"""Opening and closing the per-operation remote session."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Set

from . import types
from .errors import RemoteMachineError
from .provider import SessionProvider
from .trusted_hosts import TrustedHostRegistry

logger = logging.getLogger(__name__)


class SessionLifecycle:
    """Begins and ends sessions for one target.

    With ``auto_manage_trusted_hosts`` each session holds a trust lease on the
    target address; the address leaves the trusted hosts once the last
    lease taken for it ends. An address that was already trusted is left
    alone.
    """

    def __init__(
        self,
        endpoint: types.TargetEndpoint,
        provider: SessionProvider,
        registry: TrustedHostRegistry,
        options: types.SessionOptions | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.provider = provider
        self.registry = registry
        self.options = options or types.SessionOptions()
        # ids of open handles holding a trust lease
        self._leased: Set[int] = set()
        self._leased_lock = threading.Lock()

    def begin(self) -> Any:
        address = self.endpoint.address
        leased = self.registry.require(address, lease=self.endpoint.auto_manage_trusted_hosts)
        try:
            handle = self.provider.open(address, self.endpoint.username, self.endpoint.credential, self.options)
        except BaseException:
            if leased:
                self.registry.release(address)
            raise
        if leased:
            with self._leased_lock:
                self._leased.add(id(handle))
        logger.debug("Session to %s is open", address)
        return handle

    def end(self, handle: Any) -> None:
        with self._leased_lock:
            leased = id(handle) in self._leased
            self._leased.discard(id(handle))
        try:
            self.provider.close(handle)
        finally:
            if leased:
                self.registry.release(self.endpoint.address)
        logger.debug("Session to %s is closed", self.endpoint.address)

    @contextmanager
    def session(self) -> Iterator[Any]:
        """Yield an open session handle and always end it afterwards."""
        handle = self.begin()
        try:
            yield handle
        except BaseException:
            try:
                self.end(handle)
            except RemoteMachineError as exc:
                logger.warning("Failed to close session to %s: %s", self.endpoint.address, exc)
            raise
        self.end(handle)


__all__ = ["SessionLifecycle"]
