"""Chunked file delivery with end-to-end checksum verification."""

from __future__ import annotations

import logging
from typing import Any

from . import script_blocks, types
from .errors import TransferVerificationFailed
from .execution import ScriptExecutor

logger = logging.getLogger(__name__)


class FileTransfer:
    """Writes a :class:`~remote_machine.types.TransferRequest` through an open session."""

    def __init__(self, executor: ScriptExecutor) -> None:
        self.executor = executor

    def send(self, request: types.TransferRequest, session: Any) -> None:
        """Deliver ``request`` and verify the remote file's digest.

        A fresh send (neither appended nor overwrite) fails if the destination
        exists. Payloads above the chunk threshold go out as ordered appends;
        only the first append honours ``overwrite``, truncating the file.
        """
        if not request.appended and not request.overwrite:
            self.executor.run(script_blocks.ASSERT_PATH_ABSENT, [request.path], session=session)

        if not request.chunked:
            self._write(request.path, request.contents, request.appended, request.overwrite, session)
        else:
            chunks = request.chunks()
            for index, chunk in enumerate(chunks):
                logger.debug(
                    "Sending chunk %d/%d (%d bytes) to %s", index + 1, len(chunks), len(chunk), request.path
                )
                self._write(request.path, chunk, True, request.overwrite and index == 0, session)

        self.verify(request, session)
        logger.info("Sent %d bytes to %s on %s", len(request.contents), request.path, self._target(session))

    def verify(self, request: types.TransferRequest, session: Any) -> None:
        """Compare the remote file's SHA-256 with the whole payload's digest."""
        self.executor.run(
            script_blocks.VERIFY_CHECKSUM,
            [request.path, request.expected_checksum],
            session=session,
            error_type=TransferVerificationFailed,
        )

    def _write(self, path: str, contents: bytes, appended: bool, overwrite: bool, session: Any) -> None:
        script = script_blocks.build_write_script(appended=appended, overwrite=overwrite)
        self.executor.run(script, [path, contents], session=session)

    def _target(self, session: Any) -> str:
        return types.LOCALHOST if types.is_local(session) else self.executor.address


__all__ = ["FileTransfer"]
