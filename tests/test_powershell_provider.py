"""Tests for the PowerShell-backed session provider."""

from __future__ import annotations

import base64
import json
import re
import unittest
from unittest import mock

from remote_machine import types
from remote_machine.errors import RemoteExecutionFailed
from remote_machine.powershell import envelope, provider
from remote_machine.powershell.transport import PowerShellHostError, PowerShellTimeout

EMPTY = json.dumps({"output": [], "errors": []})


def _block_source(request: str) -> str:
    encoded = re.search(r"-BlockBase64 '([A-Za-z0-9+/=]*)'", request).group(1)
    return base64.b64decode(encoded).decode("utf-8")


class _ScriptedHost:
    """Answers requests with canned envelope bodies, recording what was sent."""

    instances: list = []
    queued: list = []

    def __init__(self, command, env=None) -> None:
        self.command = command
        self.env = env
        self.started = False
        self.closed = False
        self.dead = False
        self.requests = []
        self.replies = list(_ScriptedHost.queued)
        _ScriptedHost.instances.append(self)

    def start(self) -> None:
        self.started = True

    @property
    def running(self) -> bool:
        return self.started and not (self.closed or self.dead)

    def run(self, script, *, timeout=None):
        self.requests.append((script, timeout))
        if script == envelope.BOOTSTRAP:
            return EMPTY
        reply = self.replies.pop(0) if self.replies else EMPTY
        if isinstance(reply, PowerShellTimeout):
            self.dead = True
        if isinstance(reply, Exception):
            raise reply
        return reply

    def close(self) -> None:
        self.closed = True


class TestPowerShellProvider(unittest.TestCase):
    def setUp(self) -> None:
        _ScriptedHost.instances = []
        _ScriptedHost.queued = []
        patcher = mock.patch.object(provider, "PowerShellHost", _ScriptedHost)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.provider = provider.PowerShellProvider("pwsh", startup_timeout=10)

    def _open(self):
        return self.provider.open("10.0.0.5", "admin", "hunter2", types.SessionOptions(idle_timeout=90, operation_timeout=30))

    def test_open_bootstraps_and_starts_session(self):
        session = self._open()
        host = _ScriptedHost.instances[0]
        self.assertTrue(host.started)
        self.assertEqual(host.requests[0], (envelope.BOOTSTRAP, 10))
        request, timeout = host.requests[1]
        self.assertIn("New-PSSession", _block_source(request))
        self.assertNotIn("-UseSession", request)
        self.assertIn('["10.0.0.5","admin","hunter2",90000,30000]', request)
        self.assertEqual(timeout, 90)
        self.assertEqual(session.address, "10.0.0.5")
        self.assertIs(session.host, host)
        self.assertNotIn("hunter2", repr(session))

    def test_open_failure_closes_host(self):
        _ScriptedHost.queued = [json.dumps({"output": [], "errors": [{"details": None, "exception": "Access is denied."}]})]
        with self.assertRaises(RemoteExecutionFailed) as err:
            self._open()
        self.assertEqual(err.exception.errors, ["Access is denied."])
        self.assertEqual(err.exception.address, "10.0.0.5")
        self.assertTrue(_ScriptedHost.instances[0].closed)

    def test_invoke_runs_inside_session(self):
        session = self._open()
        session.host.replies.append(json.dumps({"output": [{"kind": "string", "value": "ok"}], "errors": []}))
        result = self.provider.invoke(session, "Get-Service WinRM", ["a"], timeout=12)
        request, timeout = session.host.requests[-1]
        self.assertIn("-UseSession", request)
        self.assertEqual(timeout, 12)
        self.assertEqual([str(value) for value in result.outputs], ["ok"])

    def test_invoke_local_uses_transient_host(self):
        result = self.provider.invoke(types.LOCAL_SESSION, "Get-Date")
        self.assertEqual(result.outputs, [])
        host = _ScriptedHost.instances[0]
        self.assertNotIn("-UseSession", host.requests[-1][0])
        self.assertTrue(host.closed)

    def test_host_timeout_becomes_execution_failure(self):
        session = self._open()
        session.host.replies.append(PowerShellTimeout("No response from PowerShell within 5 seconds."))
        with self.assertRaises(RemoteExecutionFailed) as err:
            self.provider.invoke(session, "Start-Sleep 60", timeout=5)
        self.assertIn("No response", str(err.exception))

    def test_close_after_timeout_does_not_reuse_the_host(self):
        session = self._open()
        session.host.replies.append(PowerShellTimeout("No response from PowerShell within 5 seconds."))
        session.host.replies.append(json.dumps({"output": [{"kind": "string", "value": "late"}], "errors": []}))
        with self.assertRaises(RemoteExecutionFailed):
            self.provider.invoke(session, "Start-Sleep 60", timeout=5)
        sent = len(session.host.requests)
        self.provider.close(session)
        self.assertEqual(len(session.host.requests), sent)
        self.assertTrue(session.host.closed)

    def test_malformed_envelope_becomes_execution_failure(self):
        session = self._open()
        session.host.replies.append("not json")
        with self.assertRaises(RemoteExecutionFailed):
            self.provider.invoke(session, "Get-Date")

    def test_close_removes_session_and_stops_host(self):
        session = self._open()
        self.provider.close(session)
        self.assertIn("Remove-PSSession", _block_source(session.host.requests[-1][0]))
        self.assertTrue(session.host.closed)

    def test_close_reports_errors_after_stopping_host(self):
        session = self._open()
        session.host.replies.append(json.dumps({"output": [], "errors": [{"details": "gone", "exception": None}]}))
        with self.assertRaises(RemoteExecutionFailed):
            self.provider.close(session)
        self.assertTrue(session.host.closed)

    def test_close_local_session_is_noop(self):
        self.provider.close(types.LOCAL_SESSION)
        self.assertEqual(_ScriptedHost.instances, [])

    def test_startup_failure_is_reported_for_address(self):
        def fail_start(host):
            raise PowerShellHostError("Failed to start PowerShell (pwsh): not found")

        with mock.patch.object(_ScriptedHost, "start", fail_start):
            with self.assertRaises(RemoteExecutionFailed) as err:
                self._open()
        self.assertEqual(err.exception.address, "10.0.0.5")
        self.assertTrue(_ScriptedHost.instances[0].closed)


if __name__ == "__main__":
    unittest.main()
