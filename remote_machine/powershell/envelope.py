"""Request and response envelopes exchanged with the PowerShell host."""

from __future__ import annotations

import base64
import json
from typing import Any, List, Mapping, Sequence

from remote_machine import types
from remote_machine.script_blocks import as_script_block

from .transport import BEGIN_MARKER, END_MARKER


class EnvelopeError(ValueError):
    """Raised when the host printed something that is not a valid envelope."""


# Loaded once per host. Invoke-RmScript compiles a block literal sent as
# base64, runs it (optionally inside the host's session) and prints a single
# JSON envelope between the markers.
_BOOTSTRAP_TEMPLATE = """
$global:rmSession = $null

function global:ConvertFrom-RmArgument($item)
{
    if ($item -is [System.Management.Automation.PSCustomObject] -and $item.PSObject.Properties['__bytes__'])
    {
        return ,[System.Convert]::FromBase64String($item.__bytes__)
    }
    if ($item -is [System.Array])
    {
        $converted = @(foreach ($inner in $item) { ConvertFrom-RmArgument $inner })
        return ,$converted
    }
    return $item
}

function global:ConvertTo-RmOutput($item)
{
    if ($null -eq $item) { return @{ kind = 'null'; value = $null } }
    if ($item -is [System.Management.Automation.PSObject]) { $item = $item.PSObject.BaseObject }
    if ($item -is [byte[]]) { return @{ kind = 'bytes'; value = [System.Convert]::ToBase64String($item) } }
    if ($item -is [string] -or $item -is [char]) { return @{ kind = 'string'; value = [string]$item } }
    if ($item -is [bool]) { return @{ kind = 'bool'; value = $item } }
    if ($item.GetType().IsPrimitive -or $item -is [decimal]) { return @{ kind = 'number'; value = $item } }
    $record = [ordered]@{}
    foreach ($property in $item.PSObject.Properties)
    {
        $record[$property.Name] = if ($null -eq $property.Value) { $null } else { [string]$property.Value }
    }
    return @{ kind = 'record'; value = $record }
}

function global:ConvertTo-RmDiagnostic($record)
{
    $details = $null
    $exception = $null
    if ($record.ErrorDetails) { $details = $record.ErrorDetails.ToString() }
    if ($record.Exception) { $exception = $record.Exception.ToString() }
    return @{ details = $details; exception = $exception }
}

function global:Write-RmEnvelope($envelope)
{
    [Console]::Out.WriteLine('@BEGIN@')
    [Console]::Out.WriteLine(($envelope | ConvertTo-Json -Depth 6 -Compress))
    [Console]::Out.WriteLine('@END@')
    [Console]::Out.Flush()
}

function global:Invoke-RmScript($BlockBase64, $ArgumentsJson, [switch]$UseSession)
{
    $rmErrors = @()
    $rmOutput = @()
    try
    {
        # Parse errors in the caller's text surface as diagnostics from here.
        $rmSource = [System.Text.Encoding]::UTF8.GetString([System.Convert]::FromBase64String($BlockBase64))
        $Block = & ([scriptblock]::Create($rmSource))
        $rmArgs = New-Object System.Collections.Generic.List[object]
        foreach ($item in (ConvertFrom-Json $ArgumentsJson).args) { $rmArgs.Add((ConvertFrom-RmArgument $item)) }
        $invokeParams = @{ ScriptBlock = $Block; ErrorVariable = 'rmStreamErrors'; ErrorAction = 'SilentlyContinue' }
        if ($UseSession) { $invokeParams.Session = $global:rmSession }
        if ($rmArgs.Count -gt 0) { $invokeParams.ArgumentList = $rmArgs.ToArray() }
        $rmOutput = @(Invoke-Command @invokeParams)
        $rmErrors += @($rmStreamErrors)
    }
    catch
    {
        $rmErrors += $_
    }
    $envelope = @{
        output = @(foreach ($item in $rmOutput) { ConvertTo-RmOutput $item })
        errors = @(foreach ($record in $rmErrors) { if ($null -ne $record) { ConvertTo-RmDiagnostic $record } })
    }
    Write-RmEnvelope $envelope
}

Write-RmEnvelope @{ output = @(); errors = @() }
"""

BOOTSTRAP = _BOOTSTRAP_TEMPLATE.replace("@BEGIN@", BEGIN_MARKER).replace("@END@", END_MARKER)

OPEN_SESSION = """
param($computerName, $username, $password, $idleTimeoutMs, $operationTimeoutMs)

$secret = ConvertTo-SecureString -String $password -AsPlainText -Force
$credential = New-Object System.Management.Automation.PSCredential($username, $secret)
$option = New-PSSessionOption -OperationTimeout $operationTimeoutMs -IdleTimeout $idleTimeoutMs
$global:rmSession = New-PSSession -ComputerName $computerName -Credential $credential -SessionOption $option -ErrorAction Stop
"""

CLOSE_SESSION = """
if ($global:rmSession)
{
    Remove-PSSession -Session $global:rmSession
    $global:rmSession = $null
}
"""


def quote_literal(value: str) -> str:
    """Render ``value`` as a single-quoted PowerShell string literal."""
    return "'" + value.replace("'", "''") + "'"


def build_request(script: str, arguments: Sequence[Any], *, use_session: bool) -> str:
    """Wrap ``script`` so the host runs it and prints an envelope.

    The script only ever reaches the host as base64, so the request line
    always parses and a broken script is reported in the envelope.
    """
    block = base64.b64encode(as_script_block(script).encode("utf-8")).decode("ascii")
    arguments_json = json.dumps({"args": wire_arguments(arguments)}, separators=(",", ":"))
    session_switch = " -UseSession" if use_session else ""
    return (
        f"Invoke-RmScript -BlockBase64 '{block}'"
        f" -ArgumentsJson {quote_literal(arguments_json)}{session_switch}\n"
    )


def wire_arguments(arguments: Sequence[Any]) -> List[Any]:
    """Tag byte payloads so they survive the JSON hop intact."""
    return [_wire_argument(argument) for argument in arguments]


def parse_envelope(body: str) -> types.InvocationResult:
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise EnvelopeError(f"PowerShell host returned malformed output: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise EnvelopeError("PowerShell host returned a non-object envelope.")
    return types.InvocationResult(
        outputs=[types.OutputValue.from_wire(item) for item in _as_list(payload.get("output"))],
        diagnostics=[_diagnostic(item) for item in _as_list(payload.get("errors"))],
    )


def _wire_argument(argument: Any) -> Any:
    if isinstance(argument, (bytes, bytearray)):
        return {"__bytes__": base64.b64encode(bytes(argument)).decode("ascii")}
    if isinstance(argument, (list, tuple)):
        return [_wire_argument(item) for item in argument]
    return argument


def _diagnostic(item: Any) -> types.Diagnostic:
    if isinstance(item, Mapping):
        return types.Diagnostic(details=item.get("details"), exception=item.get("exception"))
    return types.Diagnostic(exception=None if item is None else str(item))


def _as_list(items: Any) -> List[Any]:
    # Windows PowerShell collapses single-element arrays when serializing.
    if items is None:
        return []
    if isinstance(items, list):
        return items
    return [items]


__all__ = [
    "BOOTSTRAP",
    "CLOSE_SESSION",
    "EnvelopeError",
    "OPEN_SESSION",
    "build_request",
    "parse_envelope",
    "quote_literal",
    "wire_arguments",
]
