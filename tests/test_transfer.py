"""Tests for chunked file transfer."""

from __future__ import annotations

import os
import unittest

from remote_machine import script_blocks, types
from remote_machine.checksum import digest
from remote_machine.errors import RemoteExecutionFailed, TransferVerificationFailed
from remote_machine.execution import ScriptExecutor
from remote_machine.transfer import FileTransfer

from fakes import FakeProvider

PATH = "C:\\drop\\payload.bin"


class TestFileTransfer(unittest.TestCase):
    def setUp(self) -> None:
        self.provider = FakeProvider()
        self.session = self.provider.open("10.0.0.5", "admin", "pw", types.SessionOptions())
        self.transfer = FileTransfer(ScriptExecutor(self.provider, "10.0.0.5"))

    def _request(self, payload: bytes, **kwargs) -> types.TransferRequest:
        kwargs.setdefault("chunk_threshold", 150000)
        kwargs.setdefault("chunk_size", 100000)
        return types.TransferRequest(path=PATH, contents=payload, **kwargs)

    def test_large_fresh_send_is_chunked_and_verified(self):
        payload = os.urandom(180000)
        self.transfer.send(self._request(payload), self.session)

        scripts = [call.script for call in self.provider.invocations]
        self.assertEqual(scripts[0], script_blocks.ASSERT_PATH_ABSENT)
        self.assertEqual(scripts[-1], script_blocks.VERIFY_CHECKSUM)
        writes = self.provider.writes()
        self.assertEqual(len(writes), 2)
        self.assertEqual(writes[0].script, script_blocks.build_write_script(appended=True, overwrite=False))
        self.assertEqual(writes[1].script, script_blocks.build_write_script(appended=True, overwrite=False))
        self.assertEqual([len(call.arguments[1]) for call in writes], [100000, 80000])
        self.assertEqual(bytes(self.provider.files[PATH]), payload)
        self.assertEqual(self.provider.invocations[-1].arguments, (PATH, digest(payload)))

    def test_small_send_is_single_replace_write(self):
        payload = b"hello"
        self.transfer.send(self._request(payload), self.session)
        writes = self.provider.writes()
        self.assertEqual(len(writes), 1)
        self.assertEqual(writes[0].script, script_blocks.build_write_script(appended=False, overwrite=False))
        self.assertEqual(writes[0].arguments, (PATH, payload))
        self.assertEqual(bytes(self.provider.files[PATH]), payload)

    def test_payload_at_threshold_is_not_chunked(self):
        payload = b"x" * 150000
        self.transfer.send(self._request(payload), self.session)
        self.assertEqual(len(self.provider.writes()), 1)

    def test_fresh_send_refuses_existing_file(self):
        self.provider.files[PATH] = bytearray(b"old")
        with self.assertRaises(RemoteExecutionFailed) as err:
            self.transfer.send(self._request(b"new"), self.session)
        self.assertIn("File already exists at", str(err.exception))
        self.assertEqual(self.provider.writes(), [])
        self.assertEqual(bytes(self.provider.files[PATH]), b"old")

    def test_small_append_skips_precheck(self):
        self.transfer.send(self._request(b"tail", appended=True), self.session)
        scripts = [call.script for call in self.provider.invocations]
        self.assertNotIn(script_blocks.ASSERT_PATH_ABSENT, scripts)
        self.assertEqual(self.provider.writes()[0].script, script_blocks.build_write_script(appended=True, overwrite=False))
        self.assertEqual(bytes(self.provider.files[PATH]), b"tail")

    def test_append_to_existing_content_fails_verification(self):
        # The digest covers the payload, not the resulting file.
        self.provider.files[PATH] = bytearray(b"head-")
        with self.assertRaises(TransferVerificationFailed):
            self.transfer.send(self._request(b"tail", appended=True), self.session)
        self.assertEqual(bytes(self.provider.files[PATH]), b"head-tail")

    def test_small_overwrite_replaces_file(self):
        self.provider.files[PATH] = bytearray(b"stale contents")
        self.transfer.send(self._request(b"fresh", overwrite=True), self.session)
        self.assertEqual(self.provider.writes()[0].script, script_blocks.build_write_script(appended=False, overwrite=True))
        self.assertEqual(bytes(self.provider.files[PATH]), b"fresh")

    def test_chunked_overwrite_truncates_on_first_chunk_only(self):
        self.provider.files[PATH] = bytearray(b"stale" * 1000)
        payload = os.urandom(25)
        self.transfer.send(self._request(payload, overwrite=True, chunk_threshold=10, chunk_size=10), self.session)
        writes = self.provider.writes()
        self.assertEqual(len(writes), 3)
        self.assertEqual(writes[0].script, script_blocks.build_write_script(appended=True, overwrite=True))
        for call in writes[1:]:
            self.assertEqual(call.script, script_blocks.build_write_script(appended=True, overwrite=False))
        self.assertEqual(bytes(self.provider.files[PATH]), payload)

    def test_chunked_append_forces_append_on_every_chunk(self):
        payload = os.urandom(45)
        self.transfer.send(self._request(payload, appended=True, chunk_threshold=20, chunk_size=20), self.session)
        writes = self.provider.writes()
        self.assertEqual([len(call.arguments[1]) for call in writes], [20, 20, 5])
        self.assertTrue(all("Add-Content" in call.script for call in writes))
        self.assertTrue(all("Clear-Content" not in call.script for call in writes))

    def test_chunks_sent_in_order(self):
        payload = bytes(range(256)) * 4
        self.transfer.send(self._request(payload, chunk_threshold=100, chunk_size=100), self.session)
        sent = b"".join(call.arguments[1] for call in self.provider.writes())
        self.assertEqual(sent, payload)

    def test_checksum_mismatch_raises_remote_execution_failure(self):
        self.provider.corrupt_writes = True
        with self.assertRaises(TransferVerificationFailed) as err:
            self.transfer.send(self._request(b"abcdef"), self.session)
        self.assertIsInstance(err.exception, RemoteExecutionFailed)
        self.assertIn("Checksums don't match", str(err.exception))
        # Bytes were still written.
        self.assertIn(PATH, self.provider.files)

    def test_verify_reports_missing_file(self):
        with self.assertRaises(TransferVerificationFailed) as err:
            self.transfer.verify(self._request(b"abc"), self.session)
        self.assertIn("Can't find the file", str(err.exception))


if __name__ == "__main__":
    unittest.main()
