"""CLI for argdecrypt - decrypt command arguments before running them."""

import argparse
import logging
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import (
    AUTH_TOKEN_ENV,
    CLOUD_RUNNER_ENV,
    EXECUTOR_ID_ENV,
    REAPER_URL_ENV,
    DecryptorConfig,
    get_settings_file,
)
from .decryptor import NoopDecryptor, select_decryptor
from .errors import DecryptionError
from .markers import encrypted_positions, extract_secret_token

console = Console()
err_console = Console(stderr=True)


def mask_value(value: str, peek_chars: int = 4) -> str:
    """
    Mask a value, showing only first and last N characters.

    Tokens and the auth secret are only ever printed through this.
    """
    if not value:
        return "(empty)"

    if len(value) <= peek_chars * 2:
        return "*" * len(value)

    first = value[:peek_chars]
    last = value[-peek_chars:]
    hidden_len = len(value) - (peek_chars * 2)
    return f"{first}{'*' * min(hidden_len, 8)}{last}"


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def cmd_status(args):
    """Show which decryptor is active and the configuration behind it."""
    try:
        config = DecryptorConfig.from_env(args.config)
    except DecryptionError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1

    console.print("[bold]argdecrypt status[/bold]\n")

    table = Table(show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Status")
    table.add_column("Value", style="dim")

    def row(name, value, shown):
        table.add_row(
            name,
            "[green]set[/green]" if value else "[yellow]not set[/yellow]",
            shown if value else "",
        )

    row(CLOUD_RUNNER_ENV, config.cloud_runner, "yes")
    row(REAPER_URL_ENV, config.base_url, config.base_url)
    row(AUTH_TOKEN_ENV, config.secret, mask_value(config.secret))
    row(EXECUTOR_ID_ENV, config.executor_id, config.executor_id)

    console.print(table)

    if config.is_complete:
        console.print("\n[green]Decryptor:[/green] reaper")
    else:
        console.print("\n[yellow]Decryptor:[/yellow] no-op (arguments pass through unchanged)")

    retry = config.retry
    deadline = f"{retry.deadline:g}s" if retry.deadline is not None else "none"
    console.print(
        f"[dim]Retry: wait {retry.wait_min:g}s-{retry.wait_max:g}s, "
        f"{retry.max_retries} retries, timeout {retry.request_timeout:g}s, deadline {deadline}[/dim]"
    )
    console.print(f"[dim]Settings file: {args.config or get_settings_file()}[/dim]")
    return 0


def cmd_scan(args):
    """
    Report which arguments carry encrypted spans (local only).

    Exit status is 0 when at least one is found, 1 otherwise, so it can
    be used in scripts.
    """
    positions = encrypted_positions(args.arguments)

    if not positions:
        console.print("[dim]No encrypted arguments found.[/dim]")
        return 1

    table = Table(title="Encrypted Arguments", show_header=True)
    table.add_column("Position", style="cyan", justify="right")
    table.add_column("Token")

    for i in positions:
        table.add_row(str(i), mask_value(extract_secret_token(args.arguments[i])))

    console.print(table)
    console.print(f"\n[dim]Total: {len(positions)} of {len(args.arguments)} arguments[/dim]")
    return 0


def cmd_exec(args):
    """
    Run a command with its arguments decrypted.

    Any decryption failure aborts before the command is started; a command
    is never run with encrypted arguments left in place.

    Example:
        argdecrypt exec -- ./deploy.sh --token=OC_ENCRYPTED...DETPYRCNE_CO
    """
    # Strip leading '--' separator if present (argparse.REMAINDER includes it)
    command = args.exec_command
    if command and command[0] == "--":
        command = command[1:]

    if not command:
        err_console.print("[red]Error:[/red] No command specified")
        return 1

    try:
        decryptor = select_decryptor(DecryptorConfig.from_env(args.config))
    except DecryptionError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1

    try:
        arguments = decryptor.decrypt_arguments(command[1:], deadline=args.timeout)
    except DecryptionError as e:
        err_console.print(f"[red]Decryption failed:[/red] {e}")
        return 1
    finally:
        decryptor.close()

    if isinstance(decryptor, NoopDecryptor) and encrypted_positions(command[1:]):
        err_console.print("[yellow]Warning:[/yellow] encrypted arguments passed through (remote decryption not configured)")

    try:
        result = subprocess.run([command[0], *arguments], shell=False)
    except FileNotFoundError:
        err_console.print(f"[red]Error:[/red] Command not found: {command[0]}")
        return 127
    return result.returncode


def build_parser():
    parser = argparse.ArgumentParser(
        prog="argdecrypt",
        description="Decrypt OC_ENCRYPTED arguments through the reaper service before running a command",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  argdecrypt status                                  # Show active decryptor
  argdecrypt scan -- --key=OC_ENCRYPTEDabcDETPYRCNE_CO
  argdecrypt exec -- ./script.sh --key=OC_ENCRYPTEDabcDETPYRCNE_CO

Environment:
  OC_CLOUDRUNNER_CONFIG    Set when running inside a cloud runner
  REAPER_URL               Base URL of the decryption service
  BIZ_APP_AUTH_TOKEN       Shared secret used to sign requests
  OC_COMMAND_EXECUTOR_ID   Command executor to decrypt for
  ARGDECRYPT_CONFIG        Override settings file (retry tuning)
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", type=Path, help="Settings file (default: ~/.config/argdecrypt/config.yaml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # status
    subparsers.add_parser("status", help="Show active decryptor and configuration")

    # scan
    scan_parser = subparsers.add_parser("scan", help="Find encrypted arguments (no network)")
    scan_parser.add_argument("arguments", nargs=argparse.REMAINDER, help="Arguments to scan")

    # exec
    exec_parser = subparsers.add_parser("exec", help="Run command with arguments decrypted")
    exec_parser.add_argument("--timeout", type=float, default=None, metavar="SECONDS",
                             help="Time budget for decryption, retries included")
    exec_parser.add_argument("exec_command", nargs=argparse.REMAINDER, help="Command to run")

    return parser


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Handle file path
    if args.config:
        args.config = Path(args.config).expanduser()

    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "status":
        return cmd_status(args)
    elif args.command == "scan":
        if args.arguments and args.arguments[0] == "--":
            args.arguments = args.arguments[1:]
        return cmd_scan(args)
    elif args.command == "exec":
        return cmd_exec(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
