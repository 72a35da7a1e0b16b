"""Target configuration files."""

from __future__ import annotations

import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

from . import types
from .errors import RemoteMachineError
from .powershell.transport import DEFAULT_POWERSHELL_COMMAND

CONFIG_DIR_NAME = "remote_machine"
SUBDIRECTORIES: tuple[str, ...] = ("targets",)


def is_windows() -> bool:
    """Return True if running on Windows."""
    return os.name == "nt" or sys.platform.startswith("win")


def get_base_config_dir() -> Path:
    """Resolve the platform-specific configuration directory."""
    if is_windows():
        appdata = os.environ.get("APPDATA")
        base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
        return base / CONFIG_DIR_NAME
    return Path.home() / ".config" / CONFIG_DIR_NAME


def ensure_config_structure(base_dir: Path | None = None, *, subdirs: Iterable[str] = SUBDIRECTORIES) -> Path:
    """Ensure that the config directory and expected subdirectories exist."""
    base = base_dir or get_base_config_dir()
    base.mkdir(parents=True, exist_ok=True)
    for name in subdirs:
        (base / name).mkdir(parents=True, exist_ok=True)
    return base


class ConfigError(RuntimeError):
    """Raised when a configuration file is invalid."""


@dataclass
class TargetBlock:
    """The ``[target]`` table; the credential itself lives in an env var."""

    address: str
    username: str
    credential_env: str
    auto_manage_trusted_hosts: bool = False
    chunk_threshold: int = types.DEFAULT_CHUNK_THRESHOLD
    chunk_size: int = types.DEFAULT_CHUNK_SIZE


@dataclass
class SessionBlock:
    idle_timeout_seconds: int = int(types.DEFAULT_IDLE_TIMEOUT)
    powershell_command: str = DEFAULT_POWERSHELL_COMMAND


@dataclass
class TargetConfig:
    """Complete target document representation."""

    name: str
    target: TargetBlock
    session: SessionBlock = field(default_factory=SessionBlock)

    def session_options(self) -> types.SessionOptions:
        return types.SessionOptions(idle_timeout=float(self.session.idle_timeout_seconds))

    def to_endpoint(self, environ: Mapping[str, str] | None = None) -> types.TargetEndpoint:
        """Build the endpoint, reading the credential from the environment."""
        env = os.environ if environ is None else environ
        credential = env.get(self.target.credential_env)
        if credential is None:
            raise ConfigError(
                f"Target '{self.name}' expects its credential in the {self.target.credential_env} environment variable."
            )
        try:
            return types.TargetEndpoint(
                address=self.target.address,
                username=self.target.username,
                credential=credential,
                auto_manage_trusted_hosts=self.target.auto_manage_trusted_hosts,
                chunk_threshold=self.target.chunk_threshold,
                chunk_size=self.target.chunk_size,
            )
        except RemoteMachineError as exc:
            raise ConfigError(f"Target '{self.name}' is invalid: {exc}") from exc


def target_to_toml(config: TargetConfig) -> str:
    """Serialize a TargetConfig back to TOML text."""
    lines: List[str] = []

    def add_section(header: str, fields: Dict[str, Any]) -> None:
        lines.append(header)
        for key, value in fields.items():
            lines.append(f"{key} = {_format_value(value)}")
        lines.append("")

    add_section(
        "[target]",
        {
            "address": config.target.address,
            "username": config.target.username,
            "credential_env": config.target.credential_env,
            "auto_manage_trusted_hosts": config.target.auto_manage_trusted_hosts,
            "chunk_threshold": config.target.chunk_threshold,
            "chunk_size": config.target.chunk_size,
        },
    )
    add_section(
        "[session]",
        {
            "idle_timeout_seconds": config.session.idle_timeout_seconds,
            "powershell_command": config.session.powershell_command,
        },
    )
    return "\n".join(lines).strip() + "\n"


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return '"' + escaped + '"'
    raise TypeError(f"Unsupported TOML value: {value!r}")


def list_targets(base_dir: Path | None = None) -> List[str]:
    base = ensure_config_structure(base_dir)
    return sorted(path.stem for path in (base / "targets").glob("*.toml"))


def load_target(target_name: str, base_dir: Path | None = None) -> TargetConfig:
    """Load and validate a target file from the config directory."""
    base = ensure_config_structure(base_dir)
    target_path = base / "targets" / f"{target_name}.toml"
    if not target_path.exists():
        raise ConfigError(f"Target '{target_name}' not found at {target_path}.")
    return load_target_from_path(target_path)


def load_target_from_path(target_path: Path) -> TargetConfig:
    """Load a target from an explicit path."""
    try:
        raw_data = target_path.read_bytes()
    except OSError as exc:  # pragma: no cover - filesystem errors
        raise ConfigError(f"Unable to read target file {target_path}: {exc}") from exc
    try:
        mapping = tomllib.loads(raw_data.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Failed to parse {target_path.name}: {exc}") from exc
    return _build_target_config(target_path.stem, mapping, target_path)


def _build_target_config(name: str, data: Mapping[str, Any], target_path: Path) -> TargetConfig:
    target = _load_target_block(_require_table(data, "target", target_path), target_path)
    session = _load_session_block(data.get("session"), target_path)
    return TargetConfig(name=name, target=target, session=session)


def _load_target_block(block: Mapping[str, Any], target_path: Path) -> TargetBlock:
    chunk_threshold = block.get("chunk_threshold", types.DEFAULT_CHUNK_THRESHOLD)
    chunk_size = block.get("chunk_size", types.DEFAULT_CHUNK_SIZE)
    if not _is_int(chunk_threshold) or chunk_threshold < 0:
        raise ConfigError(f"target.chunk_threshold must be a non-negative integer in {target_path}.")
    if not _is_int(chunk_size) or chunk_size <= 0:
        raise ConfigError(f"target.chunk_size must be a positive integer in {target_path}.")
    auto_manage = block.get("auto_manage_trusted_hosts", False)
    if not isinstance(auto_manage, bool):
        raise ConfigError(f"target.auto_manage_trusted_hosts must be true or false in {target_path}.")
    return TargetBlock(
        address=_require_str(block, "address", "[target]", target_path),
        username=_require_str(block, "username", "[target]", target_path),
        credential_env=_require_str(block, "credential_env", "[target]", target_path),
        auto_manage_trusted_hosts=auto_manage,
        chunk_threshold=chunk_threshold,
        chunk_size=chunk_size,
    )


def _load_session_block(block: Any, target_path: Path) -> SessionBlock:
    if not block:
        return SessionBlock()
    if not isinstance(block, Mapping):
        raise ConfigError(f"[session] must be a table in {target_path}.")
    idle_timeout = block.get("idle_timeout_seconds", int(types.DEFAULT_IDLE_TIMEOUT))
    if not _is_int(idle_timeout) or idle_timeout <= 0:
        raise ConfigError(f"session.idle_timeout_seconds must be a positive integer in {target_path}.")
    powershell_command = block.get("powershell_command", DEFAULT_POWERSHELL_COMMAND)
    if not isinstance(powershell_command, str) or not powershell_command.strip():
        raise ConfigError(f"session.powershell_command must be a non-empty string in {target_path}.")
    return SessionBlock(idle_timeout_seconds=idle_timeout, powershell_command=powershell_command)


def _require_table(mapping: Mapping[str, Any], key: str, target_path: Path) -> Mapping[str, Any]:
    value = mapping.get(key)
    if not isinstance(value, Mapping):
        raise ConfigError(f"Section [{key}] is required in {target_path}.")
    return value


def _require_str(block: Mapping[str, Any], key: str, section: str, target_path: Path) -> str:
    value = block.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{section} must define string '{key}' in {target_path}.")
    return value


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


__all__ = [
    "CONFIG_DIR_NAME",
    "ConfigError",
    "SUBDIRECTORIES",
    "SessionBlock",
    "TargetBlock",
    "TargetConfig",
    "ensure_config_structure",
    "get_base_config_dir",
    "is_windows",
    "list_targets",
    "load_target",
    "load_target_from_path",
    "target_to_toml",
]
