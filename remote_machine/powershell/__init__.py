"""PowerShell remoting helpers for remote_machine."""

from .envelope import EnvelopeError, build_request, parse_envelope, quote_literal
from .provider import PowerShellProvider, PowerShellSession
from .transport import BEGIN_MARKER, END_MARKER, PowerShellHost, PowerShellHostError, PowerShellTimeout

__all__ = [
    "BEGIN_MARKER",
    "END_MARKER",
    "EnvelopeError",
    "PowerShellHost",
    "PowerShellHostError",
    "PowerShellProvider",
    "PowerShellSession",
    "PowerShellTimeout",
    "build_request",
    "parse_envelope",
    "quote_literal",
]
