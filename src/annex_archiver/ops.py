import logging
import random
import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType

from .constants import (
    APP_NAME,
    COPIES_DIR,
    FSCK_INCREMENTAL_SCHEDULE,
    FSCK_TIME_LIMIT,
    UNCHANGED_ATTR,
)
from .git_wrapper import GitRepo
from .mirror import find_embedded_git_dirs, sync_mirrors
from .remotes import probe_remotes
from .status import StatusLog

logger = logging.getLogger(APP_NAME)


@contextmanager
def deadline(seconds: int) -> Iterator[None]:
    """Raises TimeoutError in the main thread once `seconds` have elapsed.

    Args:
        seconds (int): The budget for the whole block. 0 disables the alarm.
    """

    def timeout_handler(_signum: int, _frame: FrameType | None) -> None:
        raise TimeoutError(f"Pass exceeded its {seconds}s budget")

    previous = signal.signal(signal.SIGALRM, timeout_handler)
    signal.alarm(seconds)
    try:
        yield
    finally:
        signal.alarm(0)  # Disable alarm.
        signal.signal(signal.SIGALRM, previous)


def sync_repos(
    repo_paths: list[Path],
    includes_all: bool,
    log: StatusLog,
    notify_progress: Callable[[str], None] = lambda _: None,
    copies_dir: str = COPIES_DIR,
) -> list[bool]:
    """Synchronizes repositories with their reachable remotes.

    Steps, per repository:
    1. Probes remotes (updating annex costs).
    2. Refreshes the mirrors of embedded `.git` directories.
    3. Hides files marked `annex.archiver.unchanged` from git (unless `includes_all`).
    4. Runs `git annex assist` against the usable remotes.
    5. Restores the hidden files' index state.

    Args:
        repo_paths (list[Path]): Repositories to synchronize.
        includes_all (bool): Whether to include unchanged-marked files and pass `--all`.
        log (StatusLog): The status log.
        notify_progress (Callable[[str], None]): Receives "<i> of <n>" per repository.
        copies_dir (str): Name of the directory holding mirrors.

    Returns:
        list[bool]: The per-repository assist outcome.
    """
    repo_ok = []
    for index, repo_path in enumerate(repo_paths):
        notify_progress(f"{index + 1} of {len(repo_paths)}")
        repo = GitRepo(repo_path)

        available_remotes = probe_remotes(repo, log)
        sync_mirrors(repo.path, log, copies_dir)

        unchanged_paths = repo.attribute_files(UNCHANGED_ATTR)

        if not includes_all:
            repo.stream(
                ["update-index", "--assume-unchanged", *unchanged_paths],
                f"git-update-index-assume-unchanged {repo.path}",
                log,
            )

        if not available_remotes:
            log.outcome(f"git-annex-assist {repo.path}", False)
            logger.warning(f"OFFLINE {repo.path.name}: No usable remote. Assist skipped.")
            repo_ok.append(False)
        else:
            args = ["annex", "assist"]
            if includes_all:
                args.append("--all")
            repo_ok.append(
                repo.stream(
                    [*args, *available_remotes], f"git-annex-assist {repo.path}", log
                )
            )

        repo.stream(
            ["update-index", "--no-assume-unchanged", *unchanged_paths],
            f"git-update-index-no-assume-unchanged {repo.path}",
            log,
        )

    log.outcome("", all(repo_ok))
    return repo_ok


def untrack_embedded_git(repo: GitRepo, log: StatusLog) -> None:
    """Removes embedded repositories from the parent's index (keeping files on disk).

    Their content is archived through their `Copies/` mirror instead.
    """
    log.line(f"untrack-embedded-git {repo.path}")
    for git_dir in find_embedded_git_dirs(repo.path):
        sub_repo = git_dir.parent.relative_to(repo.path).as_posix()
        try:
            repo._run(["rm", "-r", "--cached", "--ignore-unmatch", f"{sub_repo}/"])
            log.outcome(f"git-rm-cached {sub_repo}", True)
        except RuntimeError as e:
            logger.warning(f"Failed to untrack {sub_repo} in {repo.path.name}: {e}")
            log.outcome(f"git-rm-cached {sub_repo}", False)
    log.outcome(f"untrack-embedded-git {repo.path}", True)


def _maintain_pass(
    repo_paths: list[Path],
    log: StatusLog,
    notify_progress: Callable[[str], None],
    fsck_schedule: str,
    fsck_time_limit: str,
) -> None:
    # 1. Preparation: integrity checks on every repository first.
    for index, repo_path in enumerate(repo_paths):
        notify_progress(f"Preparation, {index + 1} of {len(repo_paths)}")
        repo = GitRepo(repo_path)
        untrack_embedded_git(repo, log)
        repo.stream(["fsck"], f"git-fsck {repo.path}", log)
        repo.stream(["annex", "unused"], f"git-annex-unused {repo.path}", log)
        repo.stream(["annex", "restage"], f"git-annex-restage {repo.path}", log)

    # 2. Content checks against every usable location, in random order.
    for index, repo_path in enumerate(repo_paths):
        notify_progress(f"{index + 1}/{len(repo_paths)}")
        repo = GitRepo(repo_path)
        available_remotes = probe_remotes(repo, log)

        repo.stream(
            ["annex", "satisfy", "--all", *available_remotes],
            f"git-annex-satisfy {repo.path}",
            log,
        )

        locations: list[str | None] = [*available_remotes, None]
        random.shuffle(locations)

        for remote in locations:
            from_args = [f"--from={remote}"] if remote else []
            label = remote or "here"
            repo.stream(
                [
                    "annex",
                    "fsck",
                    f"--incremental-schedule={fsck_schedule}",
                    f"--time-limit={fsck_time_limit}",
                    "--all",
                    *from_args,
                ],
                f"git-annex-fsck {repo.path} {label}",
                log,
            )
            repo.stream(
                ["annex", "dropunused", "all", *from_args],
                f"git-annex-dropunused {repo.path} {label}",
                log,
            )


def maintain_repos(
    repo_paths: list[Path],
    timeout: int,
    log: StatusLog,
    notify_progress: Callable[[str], None] = lambda _: None,
    fsck_schedule: str = FSCK_INCREMENTAL_SCHEDULE,
    fsck_time_limit: str = FSCK_TIME_LIMIT,
) -> bool:
    """Runs integrity and cleanup tasks on repositories under one overall timeout.

    Individual command failures are only logged. On expiry the running command
    is killed and the remaining work is abandoned.

    Args:
        repo_paths (list[Path]): Repositories to maintain.
        timeout (int): Seconds allowed for the whole pass.
        log (StatusLog): The status log.
        notify_progress (Callable[[str], None]): Receives progress labels.
        fsck_schedule (str): `git annex fsck --incremental-schedule` value.
        fsck_time_limit (str): `git annex fsck --time-limit` value.

    Returns:
        bool: True if the pass completed within its budget.
    """
    try:
        with deadline(timeout):
            _maintain_pass(
                repo_paths, log, notify_progress, fsck_schedule, fsck_time_limit
            )
    except TimeoutError as e:
        logger.warning(f"TIMEOUT maintenance: {e}")
        log.outcome("", False)
        return False

    log.outcome("", True)
    return True
