"""Line-oriented status logs written by every command invocation.

Each invocation appends one line per event to its own log file; logical units
(a probe, a repository pass, the whole pass) end with an explicit `ok` or
`not ok` line, so the last line of a file is the outcome of the invocation.
"""

import datetime
import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)

LOG_DT_FORMAT = "%Y-%m-%d-%H%M%S"


class StatusLog:
    """Appends status lines to one or more text streams.

    Attributes:
        streams (list[TextIO]): The sinks every line is written to.
    """

    def __init__(self, *streams: TextIO):
        self.streams = list(streams)

    def line(self, message: str) -> None:
        """Writes a single status line to every sink."""
        for stream in self.streams:
            stream.write(f"{message}\n")
            stream.flush()
        logger.debug(message)

    def outcome(self, label: str, ok: bool) -> None:
        """Writes the terminal marker line of a logical unit.

        Args:
            label (str): The unit's label; an empty label writes the bare marker.
            ok (bool): Whether the unit succeeded.
        """
        marker = "ok" if ok else "not ok"
        self.line(f"{label} {marker}" if label else marker)


@dataclass
class CommandLog:
    """A status log file recovered from disk.

    Attributes:
        command_name (str): 'sync', 'maintain' or 'allocate'.
        started_at (datetime.datetime): When the invocation started.
        suffix (str | None): Optional free-form suffix (e.g. a repository id).
        is_ok (bool | None): The final outcome, or None if the run never finished.
        path (Path): The log file.
    """

    command_name: str
    started_at: datetime.datetime
    suffix: str | None
    is_ok: bool | None
    path: Path


def command_log_path(
    state_dir: Path,
    command_name: str,
    started_at: datetime.datetime,
    suffix: str | None = None,
) -> Path:
    """Builds `<state>/<name>/<name>-YYYY-mm-dd-HHMMSS[-suffix].log`."""
    stem = f"{command_name}-{started_at.strftime(LOG_DT_FORMAT)}"
    if suffix:
        stem = f"{stem}-{suffix}"
    return state_dir / command_name / f"{stem}.log"


def _read_outcome(path: Path) -> bool | None:
    """Returns the outcome recorded on the last line of a log file."""
    try:
        with open(path) as f:
            tail = deque(f, maxlen=1)
    except OSError as e:
        logger.warning(f"Could not read command log {path}: {e}")
        return None

    if not tail:
        return None
    last = tail[0].strip()
    if last == "ok":
        return True
    if last == "not ok":
        return False
    return None


def parse_command_log_path(path: Path) -> CommandLog:
    """Recovers the metadata encoded in a command log filename.

    Raises:
        ValueError: If the filename does not follow the command log layout.
    """
    if path.suffix != ".log":
        raise ValueError(f"Not a command log: {path}")

    segments = path.stem.split("-")
    if len(segments) < 5:
        raise ValueError(f"Not a command log: {path}")

    started_at = datetime.datetime.strptime("-".join(segments[1:5]), LOG_DT_FORMAT)
    suffix = "-".join(segments[5:]) or None

    return CommandLog(
        command_name=segments[0],
        started_at=started_at,
        suffix=suffix,
        is_ok=_read_outcome(path),
        path=path,
    )


def list_command_logs(state_dir: Path, command_name: str) -> list[CommandLog]:
    """Lists the recorded invocations of a command, newest first."""
    logs = []
    for path in (state_dir / command_name).glob(f"{command_name}-*.log"):
        try:
            logs.append(parse_command_log_path(path))
        except ValueError as e:
            logger.debug(f"Skipping foreign file in log directory: {e}")
    return sorted(logs, key=lambda log: log.started_at, reverse=True)


def prune_command_logs(state_dir: Path, command_name: str, keep: int) -> int:
    """Deletes all but the newest `keep` logs of a command.

    Returns:
        int: The number of files removed.
    """
    removed = 0
    for log in list_command_logs(state_dir, command_name)[keep:]:
        try:
            log.path.unlink()
            removed += 1
        except OSError as e:
            logger.warning(f"Could not remove old command log {log.path}: {e}")
    return removed
