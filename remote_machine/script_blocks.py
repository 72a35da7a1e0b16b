"""PowerShell script blocks run against the target or the local host."""

from __future__ import annotations

import re

TRUSTED_HOSTS_PATH = "WSMan:\\localhost\\Client\\TrustedHosts"
MISSING_PATH_MARKER = "because it does not exist"

_INTERACTIVE_OUTPUT = re.compile(re.escape("Write-Host"), re.IGNORECASE)

ASSERT_PATH_ABSENT = """
param($filePath)

if (Test-Path $filePath)
{
    throw "File already exists at: $filePath"
}
"""

# $fileContents arrives as byte[]; PowerShell 6+ dropped "-Encoding Byte".
_WRITE_FILE_TEMPLATE = """
param($filePath, $fileContents)

$parentDir = Split-Path $filePath
if ($parentDir -and -not (Test-Path $parentDir))
{
    md $parentDir | Out-Null
}

if ($PSVersionTable.PSVersion.Major -ge 6) { $byteMode = @{ AsByteStream = $true } } else { $byteMode = @{ Encoding = 'Byte' } }
{truncate}{command} -Path $filePath -Value $fileContents @byteMode{force}
"""

_TRUNCATE = """if (Test-Path $filePath)
{
    Clear-Content -Path $filePath -Force
}
"""

VERIFY_CHECKSUM = """
param($filePath, $expectedChecksum)

if (-not (Test-Path -LiteralPath $filePath -PathType Leaf))
{
    throw "Can't find the file specified to calculate a checksum on: $filePath"
}

$calculatedChecksum = (Get-FileHash -LiteralPath $filePath -Algorithm SHA256).Hash
if ($calculatedChecksum -ne $expectedChecksum)
{
    Write-Error "Checksums don't match on File: $filePath - Expected: $expectedChecksum - Actual: $calculatedChecksum"
}
"""

RUN_CMD = """
param($command, $commandParameters)

$line = ' "' + $command + '"'
foreach ($commandParameter in @($commandParameters))
{
    $line += ' "' + $commandParameter + '"'
}

& cmd.exe /c $line 2>&1 | ForEach-Object { "$_" }
"""

GET_TRUSTED_HOSTS = f"""
(Get-Item -Path '{TRUSTED_HOSTS_PATH}').Value
"""

SET_TRUSTED_HOSTS = f"""
param($value)

Set-Item -Path '{TRUSTED_HOSTS_PATH}' -Value $value -Force
"""


def rewrite_interactive_output(script: str) -> str:
    """Swap the first ``Write-Host`` (any case) for ``Write-Output``.

    Non-interactive hosts cannot service Write-Host, so its text is routed to
    the output stream instead. Only the first occurrence is rewritten.
    """
    return _INTERACTIVE_OUTPUT.sub("Write-Output", script, count=1)


def as_script_block(script: str) -> str:
    """Return ``script`` wrapped in braces unless it already is a block literal."""
    stripped = script.strip()
    if stripped.startswith("{") and stripped.endswith("}"):
        return stripped
    return "{\n" + script.strip("\n") + "\n}"


def build_write_script(*, appended: bool, overwrite: bool) -> str:
    """Script writing ``$fileContents`` to ``$filePath``.

    Appended writes use Add-Content, others Set-Content. When both flags are
    set the file is truncated first so the appends rebuild it from scratch.
    """
    return (
        _WRITE_FILE_TEMPLATE.replace("{truncate}", _TRUNCATE if appended and overwrite else "")
        .replace("{command}", "Add-Content" if appended else "Set-Content")
        .replace("{force}", " -Force" if overwrite else "")
    )


def build_restart_script(*, force: bool = True) -> str:
    return "{ Restart-Computer" + (" -Force" if force else "") + " }"


__all__ = [
    "ASSERT_PATH_ABSENT",
    "GET_TRUSTED_HOSTS",
    "MISSING_PATH_MARKER",
    "RUN_CMD",
    "SET_TRUSTED_HOSTS",
    "TRUSTED_HOSTS_PATH",
    "VERIFY_CHECKSUM",
    "as_script_block",
    "build_restart_script",
    "build_write_script",
    "rewrite_interactive_output",
]
