import argparse
import datetime
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.status import Status
from rich.table import Table

from .commands import (
    AllocateCommand,
    Command,
    CommandEvent,
    CommandFinished,
    CommandProgress,
    CommandStarted,
    MaintainCommand,
    SyncCommand,
    dispatch,
    setup_logging,
)
from .config import Config, parse_time
from .constants import APP_NAME, CONFIG_FILE, STATE_DIR
from .status import (
    StatusLog,
    command_log_path,
    list_command_logs,
    prune_command_logs,
)
from .system import UnsupportedPlatformError

logger = logging.getLogger(APP_NAME)
console = Console()

COMMAND_NAMES = ["sync", "maintain", "allocate"]


def resolve_repos(paths: list[str] | None, config: Config) -> list[Path]:
    """Returns the repositories to process: CLI paths first, else configured ones.

    Args:
        paths (list[str] | None): Paths given with `-r/--repo-paths`.
        config (Config): The loaded configuration.

    Returns:
        list[Path]: Resolved repository paths, duplicates removed, order kept.
    """
    raw = paths or config.core.repos
    resolved = [Path(p).expanduser().resolve() for p in raw]
    return list(dict.fromkeys(resolved))


def parse_since(value: str) -> datetime.datetime:
    """Parses an ISO timestamp or a relative age such as '2h' or '1d'."""
    try:
        since = datetime.datetime.fromisoformat(value)
    except ValueError:
        try:
            seconds = parse_time(value)
        except ValueError as e:
            raise argparse.ArgumentTypeError(str(e)) from e
        return datetime.datetime.now().astimezone() - datetime.timedelta(
            seconds=seconds
        )
    return since if since.tzinfo else since.astimezone()


class _EventPresenter:
    """Renders command events on a rich status spinner."""

    def __init__(self, status: Status):
        self.status = status

    def __call__(self, event: CommandEvent) -> None:
        match event:
            case CommandStarted(name=name):
                self.status.update(f"[bold blue]Running {name}...[/bold blue]")
            case CommandProgress(name=name, progress=progress):
                self.status.update(f"[bold blue]Running {name} ({progress})[/bold blue]")
            case CommandFinished():
                pass


def run_command(command: Command, config: Config, echo: bool) -> bool:
    """Runs a command with its own status log file and a console spinner.

    Args:
        command (Command): The command to run.
        config (Config): The loaded configuration.
        echo (bool): Whether to also print status lines to stdout.

    Returns:
        bool: The command's outcome.
    """
    started_at = datetime.datetime.now()
    suffix = command.repo_paths[0].name if len(command.repo_paths) == 1 else None
    log_path = command_log_path(STATE_DIR, command.name, started_at, suffix)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    with open(log_path, "w") as logfile:
        streams = [logfile, sys.stdout] if echo else [logfile]
        log = StatusLog(*streams)
        if echo:
            is_ok = dispatch(command, log, config=config)
        else:
            with console.status(
                f"[bold blue]Starting {command.name}...[/bold blue]", spinner="dots"
            ) as status:
                is_ok = dispatch(command, log, _EventPresenter(status), config=config)

    prune_command_logs(STATE_DIR, command.name, config.limits.log_retention)

    if is_ok:
        console.print(f"[bold green]SUCCESS:[/bold green] {command.name} ok.")
    else:
        console.print(
            f"[bold red]FAILED:[/bold red] {command.name} not ok. "
            f"See [cyan]{log_path}[/cyan]"
        )
    return is_ok


def show_history() -> None:
    """Lists recorded invocations of every command."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Command", style="cyan")
    table.add_column("Started", style="dim")
    table.add_column("Repository")
    table.add_column("Outcome")

    count = 0
    for name in COMMAND_NAMES:
        for log in list_command_logs(STATE_DIR, name):
            if log.is_ok is None:
                outcome = "[yellow]Unfinished[/yellow]"
            elif log.is_ok:
                outcome = "[green]ok[/green]"
            else:
                outcome = "[bold red]not ok[/bold red]"
            table.add_row(
                name,
                log.started_at.strftime("%Y-%m-%d %H:%M"),
                log.suffix or "-",
                outcome,
            )
            count += 1

    if not count:
        console.print("[dim]No recorded runs yet.[/dim]")
        return
    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser for the `annex-archiver` command."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Keeps git-annex repositories synced, maintained and allocated.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Print status lines to stdout instead of a spinner",
    )
    subparsers = parser.add_subparsers(dest="command")

    def add_repo_paths(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "-r",
            "--repo-paths",
            nargs="+",
            metavar="PATH",
            help=f"Repositories to process (default: [core].repos in {CONFIG_FILE})",
        )

    sync_parser = subparsers.add_parser(
        "sync", help="Sync repositories with their remotes, including files"
    )
    add_repo_paths(sync_parser)
    sync_parser.add_argument(
        "--all", action="store_true", help="Include files marked unchanged"
    )

    maintain_parser = subparsers.add_parser(
        "maintain", help="Check repository integrity and drop unused content"
    )
    add_repo_paths(maintain_parser)
    maintain_parser.add_argument(
        "-t",
        "--timeout",
        help="Budget for the whole pass, e.g. '90m' or '3h' (default: config)",
    )

    allocate_parser = subparsers.add_parser(
        "allocate", help="Fetch or drop file content to match drop markers"
    )
    add_repo_paths(allocate_parser)
    allocate_parser.add_argument(
        "--since",
        type=parse_since,
        help="Only reconcile files received since (ISO time or age, e.g. '1d')",
    )

    subparsers.add_parser("history", help="List recent runs and their outcome")
    return parser


def main() -> None:
    """Main entry point for the Annex Archiver CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    config = Config.load()
    # Scheduled runs (no terminal) also log to the rotating diagnostics file.
    setup_logging(
        interactive=sys.stdout.isatty(), max_log_size=config.limits.max_log_size
    )

    if args.command == "history":
        show_history()
        return

    repo_paths = resolve_repos(args.repo_paths, config)
    if not repo_paths:
        console.print(
            "[bold red]ERROR:[/bold red] No repositories given. "
            f"Use -r or set [core].repos in {CONFIG_FILE}."
        )
        sys.exit(2)

    command: Command
    if args.command == "sync":
        command = SyncCommand(repo_paths, includes_all=args.all)
    elif args.command == "maintain":
        try:
            timeout = (
                parse_time(args.timeout) if args.timeout else config.maintain.timeout
            )
        except ValueError as e:
            parser.error(str(e))
        command = MaintainCommand(repo_paths, timeout=timeout)
    else:
        command = AllocateCommand(repo_paths, received_since=args.since)

    try:
        is_ok = run_command(command, config, echo=args.verbose)
    except UnsupportedPlatformError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(2)
    except (RuntimeError, ValueError, OSError) as e:
        logger.critical(f"CRITICAL {command.name}: {e}")
        console.print(f"[bold red]ABORTED:[/bold red] {e}")
        sys.exit(1)

    sys.exit(0 if is_ok else 1)


if __name__ == "__main__":
    main()
