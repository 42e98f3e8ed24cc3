"""Content allocation: reconciles drop markers with actual git-annex content.

A user (or another machine) expresses "evict this" by setting the drop marker
on a file and "bring this back" by clearing it. A pass compares each marker
with what git-annex reports, fetches or drops content where the two disagree,
and otherwise only rewrites markers so they describe reality again.
"""

import datetime
import logging
from collections.abc import Callable
from pathlib import Path

from .constants import APP_NAME, FETCH_MAX_ATTEMPTS
from .git_wrapper import GitRepo
from .remotes import probe_remotes
from .status import StatusLog
from .system import MarkerStrategy

logger = logging.getLogger(APP_NAME)


class _LazyProbe:
    """Probes a repository's remotes on first demand, at most once."""

    def __init__(self, repo: GitRepo, log: StatusLog):
        self.repo = repo
        self.log = log
        self.remotes: list[str] | None = None

    def ensure(self) -> list[str]:
        if self.remotes is None:
            self.remotes = probe_remotes(self.repo, self.log)
        return self.remotes


def _received_paths(
    repo: GitRepo,
    tracked: set[str],
    received_since: datetime.datetime | None,
) -> set[str]:
    """Computes the set of paths that should stay local.

    Without a watermark every tracked path is retained (a full pass). With one,
    only paths modified after it are candidates, narrowed by git-annex's
    location log to those actually received here since then.
    """
    if received_since is None:
        return set(tracked)

    threshold = received_since.timestamp()
    modified = sorted(p for p in tracked if (repo.path / p).stat().st_mtime > threshold)
    if not modified:
        return set()
    return repo.received_files(received_since, modified)


def _fetch(repo: GitRepo, path: str, log: StatusLog, attempts: int) -> bool:
    """Runs `git annex get` up to `attempts` times, without delay between tries."""
    for attempt in range(1, attempts + 1):
        if repo.annex_get(path, log):
            return True
        logger.debug(f"annex get {path} failed (attempt {attempt}/{attempts})")
    logger.warning(f"FETCH FAILED {repo.path.name}: {path} after {attempts} attempts.")
    return False


def allocate_repo(
    repo: GitRepo,
    received_since: datetime.datetime | None,
    log: StatusLog,
    markers: MarkerStrategy,
    fetch_attempts: int = FETCH_MAX_ATTEMPTS,
) -> bool:
    """Reconciles one repository. Returns True if every fetch/drop succeeded."""
    is_repo_ok = True
    log.line(f"allocate-repo-files {repo.path}")

    tracked = repo.tracked_files()
    log.line("tracked paths ok")
    dropped = repo.absent_files() & tracked
    log.line("tracked dropped paths ok")
    received = _received_paths(repo, tracked, received_since)
    log.line("received paths ok")
    log.line(f"moved files ({len(received)})")

    # Bookkeeping only: content is left untouched.
    for path in sorted(received & dropped):
        markers.set_marker(repo.path / path, log)
    for path in sorted(received - dropped):
        markers.clear_marker(repo.path / path, log)
    if received_since is None:
        for path in sorted(repo.untracked_files()):
            markers.clear_marker(repo.path / path, log)

    send = tracked - received
    log.line(f"files to move ({len(send)})")

    if send:
        probe = _LazyProbe(repo, log)
        commit_ts = repo.last_commit_time().timestamp()

        for path in sorted(send):
            file_path = repo.path / path
            is_marked = markers.has_marker(file_path)
            is_present = path not in dropped

            if is_marked == (not is_present):
                continue

            is_uncommitted = file_path.stat().st_mtime > commit_ts

            if is_marked:
                # Marked for eviction, content still here.
                if is_uncommitted:
                    markers.clear_marker(file_path, log)
                    log.line(f"revert-drop-marker, uncommitted {path}")
                    continue
                probe.ensure()
                if repo.annex_drop(path, log):
                    markers.set_marker(file_path, log)
                else:
                    is_repo_ok = False
            else:
                # Marker cleared, content absent.
                if is_uncommitted:
                    markers.set_marker(file_path, log)
                    log.line(f"revert-drop-marker, uncommitted {path}")
                    continue
                probe.ensure()
                if _fetch(repo, path, log, fetch_attempts):
                    markers.clear_marker(file_path, log)
                else:
                    is_repo_ok = False

    log.outcome(f"allocate-repo-files {repo.path}", is_repo_ok)
    return is_repo_ok


def allocate(
    repo_paths: list[Path],
    received_since: datetime.datetime | None,
    log: StatusLog,
    markers: MarkerStrategy,
    notify_progress: Callable[[str], None] = lambda _: None,
    fetch_attempts: int = FETCH_MAX_ATTEMPTS,
) -> bool:
    """Runs an allocation pass over repositories, strictly one after another.

    Args:
        repo_paths (list[Path]): Repositories to reconcile.
        received_since (datetime.datetime | None): Watermark; None for a full pass.
        log (StatusLog): The status log.
        markers (MarkerStrategy): The platform's drop-marker capability.
        notify_progress (Callable[[str], None]): Receives "<i>/<n>" per repository.
        fetch_attempts (int): Immediate `git annex get` attempts per file.

    Returns:
        bool: True if every repository reconciled without a failed fetch/drop.
    """
    is_ok = True
    for index, repo_path in enumerate(repo_paths):
        notify_progress(f"{index + 1}/{len(repo_paths)}")
        repo = GitRepo(repo_path)
        if not allocate_repo(repo, received_since, log, markers, fetch_attempts):
            is_ok = False

    log.outcome("", is_ok)
    return is_ok
