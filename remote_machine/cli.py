"""Command-line interface for remote_machine."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Callable, Optional, Sequence

import argcomplete

from . import __version__, completion, config
from .errors import RemoteMachineError
from .logging import configure_logging
from .manager import MachineManager
from .powershell import PowerShellProvider
from .powershell.transport import DEFAULT_POWERSHELL_COMMAND
from .trusted_hosts import TrustedHostRegistry, wsman_registry

Handler = Callable[[argparse.Namespace], int]
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI parser with all supported subcommands."""
    parser = argparse.ArgumentParser(
        prog="remote-machine",
        description="Run scripts and deliver files to a machine over PowerShell remoting.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config-dir",
        help="Override the configuration directory (defaults to ~/.config/remote_machine).",
    )
    parser.add_argument(
        "--powershell",
        help="PowerShell executable to drive (defaults to the target's setting, then 'pwsh').",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (can be repeated).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Decrease logging verbosity (can be repeated).",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    targets_parser = subparsers.add_parser("targets", help="List configured targets.")
    targets_parser.set_defaults(func=_handle_targets)

    run_cmd_parser = subparsers.add_parser("run-cmd", help="Run a command through cmd.exe /c.")
    _add_target_argument(run_cmd_parser)
    run_cmd_parser.add_argument("cmd", metavar="COMMAND", help="Command to run.")
    run_cmd_parser.add_argument("cmd_args", metavar="ARG", nargs="*", help="Parameters passed to the command.")
    run_cmd_parser.add_argument("--local", action="store_true", help="Run on this machine instead of the target.")
    run_cmd_parser.set_defaults(func=_handle_run_cmd)

    run_script_parser = subparsers.add_parser("run-script", help="Run a PowerShell script block.")
    _add_target_argument(run_script_parser)
    source = run_script_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("script", nargs="?", help="Script block text.")
    source.add_argument("--file", help="Read the script block from a file.")
    run_script_parser.add_argument(
        "--arg",
        dest="script_args",
        action="append",
        default=[],
        help="Positional argument for the script block (can be repeated).",
    )
    run_script_parser.add_argument("--local", action="store_true", help="Run on this machine instead of the target.")
    run_script_parser.set_defaults(func=_handle_run_script)

    send_parser = subparsers.add_parser("send-file", help="Copy a local file to the target.")
    _add_target_argument(send_parser)
    send_parser.add_argument("local_path", help="File to send.")
    send_parser.add_argument("remote_path", help="Destination path on the target.")
    mode = send_parser.add_mutually_exclusive_group()
    mode.add_argument("--append", action="store_true", help="Append to the remote file.")
    mode.add_argument("--overwrite", action="store_true", help="Replace an existing remote file.")
    send_parser.set_defaults(func=_handle_send_file)

    reboot_parser = subparsers.add_parser("reboot", help="Restart the target.")
    _add_target_argument(reboot_parser)
    reboot_parser.add_argument(
        "--no-force",
        dest="force",
        action="store_false",
        help="Do not force logged-on users off.",
    )
    reboot_parser.set_defaults(func=_handle_reboot)

    trusted_parser = subparsers.add_parser("trusted-hosts", help="Inspect or change this machine's trusted hosts.")
    trusted_parser.add_argument("action", choices=("list", "add", "remove"), help="Operation to perform.")
    trusted_parser.add_argument("address", nargs="?", help="Address to add or remove.")
    trusted_parser.set_defaults(func=_handle_trusted_hosts)

    return parser


def _add_target_argument(subparser: argparse.ArgumentParser) -> None:
    target_arg = subparser.add_argument("target", help="Name of the configured target.")
    target_arg.completer = completion.target_completer


def _handle_targets(args: argparse.Namespace) -> int:
    try:
        names = config.list_targets(_config_dir(args))
    except OSError as exc:
        logger.error("%s", exc)
        return 1
    if not names:
        print("No targets found.")
        return 0
    for name in names:
        print(name)
    return 0


def _handle_run_cmd(args: argparse.Namespace) -> int:
    def action(manager: MachineManager) -> None:
        if args.local:
            output = manager.run_command_on_localhost(args.cmd, args.cmd_args)
        else:
            output = manager.run_command(args.cmd, args.cmd_args)
        if output:
            print(output)

    return _with_manager(args, action)


def _handle_run_script(args: argparse.Namespace) -> int:
    if args.file:
        try:
            script = Path(args.file).expanduser().read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Unable to read script file %s: %s", args.file, exc)
            return 1
    else:
        script = args.script

    def action(manager: MachineManager) -> None:
        if args.local:
            outputs = manager.run_script_on_localhost(script, args.script_args)
        else:
            outputs = manager.run_script(script, args.script_args)
        for output in outputs:
            print(output)

    return _with_manager(args, action)


def _handle_send_file(args: argparse.Namespace) -> int:
    try:
        contents = Path(args.local_path).expanduser().read_bytes()
    except OSError as exc:
        logger.error("Unable to read %s: %s", args.local_path, exc)
        return 1

    def action(manager: MachineManager) -> None:
        manager.send_file(args.remote_path, contents, appended=args.append, overwrite=args.overwrite)

    return _with_manager(args, action)


def _handle_reboot(args: argparse.Namespace) -> int:
    return _with_manager(args, lambda manager: manager.reboot(force=args.force))


def _handle_trusted_hosts(args: argparse.Namespace) -> int:
    if args.action in {"add", "remove"} and not args.address:
        logger.error("An address is required to %s a trusted host.", args.action)
        return 1
    registry = _build_registry(PowerShellProvider(args.powershell or DEFAULT_POWERSHELL_COMMAND))
    try:
        if args.action == "add":
            registry.add(args.address)
        elif args.action == "remove":
            registry.remove(args.address)
        else:
            for host in registry.list():
                print(host)
    except RemoteMachineError as exc:
        logger.error("%s", exc)
        return 1
    return 0


def _with_manager(args: argparse.Namespace, action: Callable[[MachineManager], None]) -> int:
    try:
        target = config.load_target(args.target, _config_dir(args))
        endpoint = target.to_endpoint()
    except config.ConfigError as exc:
        logger.error("%s", exc)
        return 1
    provider = PowerShellProvider(args.powershell or target.session.powershell_command)
    manager = MachineManager(
        endpoint,
        provider=provider,
        registry=_build_registry(provider),
        options=target.session_options(),
    )
    try:
        action(manager)
    except RemoteMachineError as exc:
        logger.error("%s", exc)
        return 1
    return 0


def _build_registry(provider: PowerShellProvider) -> TrustedHostRegistry:
    return wsman_registry(provider)


def _config_dir(args: argparse.Namespace) -> Optional[Path]:
    return Path(args.config_dir).expanduser() if args.config_dir else None


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for console_scripts."""
    parser = build_parser()
    argcomplete.autocomplete(parser)
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(verbose=args.verbose, quiet=args.quiet)
    handler: Handler = getattr(args, "func")
    return handler(args)


if __name__ == "__main__":  # pragma: no cover - manual execution guard
    raise SystemExit(main())
