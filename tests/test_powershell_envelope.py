"""Tests for request building and envelope parsing."""

from __future__ import annotations

import base64
import json
import re
import unittest

from remote_machine import types
from remote_machine.errors import NO_ERROR_MESSAGE
from remote_machine.powershell import envelope
from remote_machine.powershell.transport import BEGIN_MARKER, END_MARKER


def _arguments_json(request: str):
    literal = re.search(r"-ArgumentsJson '((?:[^']|'')*)'", request).group(1)
    return json.loads(literal.replace("''", "'"))


def _block_source(request: str) -> str:
    encoded = re.search(r"-BlockBase64 '([A-Za-z0-9+/=]*)'", request).group(1)
    return base64.b64decode(encoded).decode("utf-8")


class TestBuildRequest(unittest.TestCase):
    def test_wraps_bare_script_and_targets_session(self):
        request = envelope.build_request("Get-Date", [], use_session=True)
        self.assertTrue(request.startswith("Invoke-RmScript -BlockBase64 "))
        self.assertEqual(_block_source(request), "{\nGet-Date\n}")
        self.assertTrue(request.rstrip().endswith("-UseSession"))
        self.assertEqual(_arguments_json(request), {"args": []})

    def test_local_request_has_no_session_switch(self):
        request = envelope.build_request("{ Get-Date }", [], use_session=False)
        self.assertNotIn("-UseSession", request)
        self.assertEqual(_block_source(request), "{ Get-Date }")

    def test_unparseable_script_stays_out_of_the_request_line(self):
        script = "if ($true) { Write-Output 'unbalanced'"
        request = envelope.build_request(script, [], use_session=True)
        self.assertNotIn("unbalanced", request)
        self.assertEqual(request.count("\n"), 1)
        self.assertEqual(_block_source(request), "{\n" + script + "\n}")

    def test_bytes_are_tagged_and_quotes_escaped(self):
        request = envelope.build_request("param($a, $b, $c)", ["it's", b"\x00\xff", ["/all", 3]], use_session=True)
        args = _arguments_json(request)["args"]
        self.assertEqual(args[0], "it's")
        self.assertEqual(base64.b64decode(args[1]["__bytes__"]), b"\x00\xff")
        self.assertEqual(args[2], ["/all", 3])

    def test_quote_literal_doubles_single_quotes(self):
        self.assertEqual(envelope.quote_literal("a'b"), "'a''b'")


class TestParseEnvelope(unittest.TestCase):
    def test_outputs_keep_order_and_kind(self):
        body = json.dumps(
            {
                "output": [
                    {"kind": "string", "value": "first"},
                    {"kind": "number", "value": 7},
                    {"kind": "bytes", "value": base64.b64encode(b"raw").decode("ascii")},
                    {"kind": "record", "value": {"Name": "WinRM", "Status": "Running"}},
                    {"kind": "null", "value": None},
                ],
                "errors": [],
            }
        )
        result = envelope.parse_envelope(body)
        self.assertEqual(
            [value.kind for value in result.outputs],
            [types.OutputKind.STRING, types.OutputKind.NUMBER, types.OutputKind.BYTES, types.OutputKind.RECORD, types.OutputKind.NULL],
        )
        self.assertEqual(result.outputs[2].value, b"raw")
        self.assertEqual(str(result.outputs[3]), "Name=WinRM; Status=Running")
        self.assertEqual(result.diagnostics, [])

    def test_single_items_are_not_collapsed(self):
        body = '{"output":{"kind":"string","value":"only"},"errors":{"details":null,"exception":"boom"}}'
        result = envelope.parse_envelope(body)
        self.assertEqual([str(value) for value in result.outputs], ["only"])
        self.assertEqual([diagnostic.message for diagnostic in result.diagnostics], ["boom"])

    def test_diagnostic_prefers_details(self):
        body = '{"output":[],"errors":[{"details":"nice","exception":"raw"},{"details":null,"exception":null}]}'
        messages = [diagnostic.message for diagnostic in envelope.parse_envelope(body).diagnostics]
        self.assertEqual(messages, ["nice", NO_ERROR_MESSAGE])

    def test_missing_sections_mean_empty(self):
        result = envelope.parse_envelope("{}")
        self.assertEqual(result.outputs, [])
        self.assertEqual(result.diagnostics, [])

    def test_malformed_body(self):
        with self.assertRaises(envelope.EnvelopeError):
            envelope.parse_envelope("Get-Date : not recognized")
        with self.assertRaises(envelope.EnvelopeError):
            envelope.parse_envelope("[1, 2]")


class TestBootstrap(unittest.TestCase):
    def test_markers_substituted(self):
        self.assertIn(BEGIN_MARKER, envelope.BOOTSTRAP)
        self.assertIn(END_MARKER, envelope.BOOTSTRAP)
        self.assertNotIn("@BEGIN@", envelope.BOOTSTRAP)
        self.assertNotIn("@END@", envelope.BOOTSTRAP)

    def test_block_is_compiled_inside_the_error_handler(self):
        body = envelope.BOOTSTRAP.split("function global:Invoke-RmScript", 1)[1]
        self.assertLess(body.index("try"), body.index("[scriptblock]::Create"))
        self.assertLess(body.index("[scriptblock]::Create"), body.index("catch"))

    def test_open_session_takes_credentials_as_parameters(self):
        self.assertIn("param($computerName, $username, $password, $idleTimeoutMs, $operationTimeoutMs)", envelope.OPEN_SESSION)
        self.assertIn("New-PSSession", envelope.OPEN_SESSION)


if __name__ == "__main__":
    unittest.main()
