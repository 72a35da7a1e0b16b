"""Tab completion support for the remote-machine CLI."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable

from . import config


def target_completer(prefix: str, parsed_args: argparse.Namespace, **kwargs) -> Iterable[str]:
    """
    Complete target names from the user's configuration directory.

    Args:
        prefix: The current partial target name being typed
        parsed_args: Parsed arguments so far
        **kwargs: Additional context from argcomplete

    Returns:
        Sorted list of matching target names
    """
    config_dir_arg = getattr(parsed_args, "config_dir", None)
    base = Path(config_dir_arg).expanduser() if config_dir_arg else config.get_base_config_dir()
    targets_dir = base / "targets"
    if not targets_dir.is_dir():
        return []
    return sorted(path.stem for path in targets_dir.glob("*.toml") if path.stem.startswith(prefix))


__all__ = ["target_completer"]
