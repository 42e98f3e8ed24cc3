"""Command dispatch shared by the CLI and any other front end.

Front ends build a `Command`, hand it to `dispatch` with a status log and an
`emit` callback, and render the `CommandEvent`s they receive. The passes
themselves only ever see a plain progress callback.
"""

import datetime
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import assert_never

from . import ops
from .allocate import allocate
from .config import Config
from .constants import APP_NAME, LOG_FILE
from .status import StatusLog
from .system import MarkerStrategy, UnsupportedPlatformError, get_markers

logger = logging.getLogger(APP_NAME)


@dataclass
class SyncCommand:
    """Synchronize repositories with their remotes and refresh metadata mirrors."""

    repo_paths: list[Path]
    includes_all: bool = False
    name: str = field(default="sync", init=False)


@dataclass
class MaintainCommand:
    """Run integrity checks and cleanup under an overall timeout (seconds)."""

    repo_paths: list[Path]
    timeout: int
    name: str = field(default="maintain", init=False)


@dataclass
class AllocateCommand:
    """Reconcile drop markers with local content, optionally since a watermark."""

    repo_paths: list[Path]
    received_since: datetime.datetime | None = None
    name: str = field(default="allocate", init=False)


Command = SyncCommand | MaintainCommand | AllocateCommand


@dataclass
class CommandStarted:
    name: str
    started_at: datetime.datetime


@dataclass
class CommandProgress:
    name: str
    progress: str


@dataclass
class CommandFinished:
    name: str
    is_ok: bool


CommandEvent = CommandStarted | CommandProgress | CommandFinished


def dispatch(
    command: Command,
    log: StatusLog,
    emit: Callable[[CommandEvent], None] = lambda _: None,
    config: Config | None = None,
    markers: MarkerStrategy | None = None,
) -> bool:
    """Runs a command to completion and reports its overall outcome.

    Args:
        command (Command): The command to run.
        log (StatusLog): The invocation's status log.
        emit (Callable[[CommandEvent], None]): Receives lifecycle and progress events.
        config (Config | None): Configuration; loaded from disk if omitted.
        markers (MarkerStrategy | None): Drop-marker capability for allocation;
                                         the platform default if omitted.

    Returns:
        bool: True if the command succeeded.

    Raises:
        UnsupportedPlatformError: If allocation is requested on a platform
                                  without file tags.
    """
    config = config or Config.load()

    def progress(text: str) -> None:
        emit(CommandProgress(command.name, text))

    match command:
        case SyncCommand(repo_paths=repo_paths, includes_all=includes_all):
            emit(CommandStarted(command.name, datetime.datetime.now()))
            is_ok = all(
                ops.sync_repos(
                    repo_paths,
                    includes_all,
                    log,
                    progress,
                    copies_dir=config.core.copies_dir,
                )
            )
        case MaintainCommand(repo_paths=repo_paths, timeout=timeout):
            emit(CommandStarted(command.name, datetime.datetime.now()))
            is_ok = ops.maintain_repos(
                repo_paths,
                timeout,
                log,
                progress,
                fsck_schedule=config.maintain.fsck_schedule,
                fsck_time_limit=config.maintain.fsck_time_limit,
            )
        case AllocateCommand(repo_paths=repo_paths, received_since=received_since):
            markers = markers or get_markers()
            if not markers.supported:
                raise UnsupportedPlatformError(
                    f"File allocation needs file tags, unavailable on {sys.platform}"
                )
            emit(CommandStarted(command.name, datetime.datetime.now()))
            is_ok = allocate(
                repo_paths,
                received_since,
                log,
                markers,
                progress,
                fetch_attempts=config.allocate.fetch_attempts,
            )
        case _:
            assert_never(command)

    logger.info(f"{command.name.upper()} {'OK' if is_ok else 'NOT OK'}")
    emit(CommandFinished(command.name, is_ok))
    return is_ok


def setup_logging(interactive: bool, max_log_size: int) -> None:
    """Configures the diagnostics logger.

    Args:
        interactive (bool): If True, logs warnings to stderr only. If False, also
                            logs to the rotating diagnostics file.
        max_log_size (int): Bytes before the diagnostics file rotates.
    """
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    if interactive:
        stream_handler.setLevel(logging.WARNING)
    logger.addHandler(stream_handler)

    if not interactive:
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
