"""Keeps plain-directory mirrors of embedded `.git` directories.

A repository may contain other repositories (e.g. tools or datasets checked out
inside its tree). Their `.git` directories are invisible to the parent
repository, so each one is mirrored to `<parent>/Copies/<name>.git`, a regular
directory the parent can track and archive.

Change detection uses a single watermark per mirror: the mirror root's own
modification time, stamped at the end of every pass. A source file is copied
again only if it was modified after that watermark.
"""

import logging
import os
import shutil
import stat
import time
from pathlib import Path

from .constants import APP_NAME, COPIES_DIR
from .status import StatusLog

logger = logging.getLogger(APP_NAME)


def _raise(error: OSError) -> None:
    raise error


def find_embedded_git_dirs(root: Path) -> list[Path]:
    """Lists nested `.git` directories below `root`, excluding `root/.git`.

    The search never descends into a `.git` directory.

    Raises:
        OSError: If a directory cannot be read.
    """
    found = []
    for dirpath, dirnames, _ in os.walk(root, onerror=_raise):
        if ".git" in dirnames:
            dirnames.remove(".git")
            git_dir = Path(dirpath) / ".git"
            if git_dir != root / ".git":
                found.append(git_dir)
        dirnames.sort()
    return sorted(found)


def mirror_path_for(git_dir: Path, copies_dir: str = COPIES_DIR) -> Path:
    """Returns `<sub-repo parent>/<copies_dir>/<sub-repo name>.git`."""
    repo_dir = git_dir.parent
    return repo_dir.parent / copies_dir / f"{repo_dir.name}.git"


def _relative_entries(root: Path) -> set[Path]:
    """Returns the relative paths of everything below `root`."""
    entries = set()
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        base = Path(dirpath).relative_to(root)
        for name in [*dirnames, *filenames]:
            entries.add(base / name)
    return entries


def _make_writable(path: Path) -> None:
    mode = path.stat().st_mode
    if not mode & stat.S_IWUSR:
        path.chmod(mode | stat.S_IWUSR)


def _copy(source: Path, target: Path, display: str, log: StatusLog, note: str = "") -> None:
    try:
        shutil.copy(source, target)
        _make_writable(target)
        log.line(f"cp {display}{note}")
    except OSError as e:
        log.line(f"error {display} (cp, {e})")


def sync_mirror(git_dir: Path, mirror: Path, log: StatusLog) -> None:
    """Brings one mirror in line with its source `.git` directory.

    Args:
        git_dir (Path): The embedded `.git` directory.
        mirror (Path): Its mirror directory.
        log (StatusLog): The status log.

    Raises:
        OSError: If the source or mirror tree cannot be traversed.
    """
    name = mirror.name

    watermark: float | None = None
    if mirror.exists():
        watermark = mirror.stat().st_mtime
        log.line(f"ok {name}/ (mtime: {int(watermark)})")
    else:
        try:
            mirror.mkdir(parents=True)
            log.line(f"mkdir {name}/")
        except OSError as e:
            log.line(f"error {name} (mkdir, {e})")
            return

    unprocessed = _relative_entries(mirror)

    for dirpath, dirnames, filenames in os.walk(git_dir, onerror=_raise):
        dirnames.sort()
        base = Path(dirpath).relative_to(git_dir)

        for dirname in dirnames:
            rel = base / dirname
            target = mirror / rel
            display = f"{name}/{rel.as_posix()}"
            unprocessed.discard(rel)
            if target.is_dir():
                continue
            try:
                if target.exists() or target.is_symlink():
                    # Was a file at the previous pass.
                    target.unlink()
                    log.line(f"rm {display}")
                target.mkdir(parents=True)
                log.line(f"mkdir {display}/")
            except OSError as e:
                log.line(f"error {display} (mkdir, {e})")

        for filename in sorted(filenames):
            rel = base / filename
            source = git_dir / rel
            display = f"{name}/{rel.as_posix()}"
            target = mirror / rel

            if target.is_dir() and not target.is_symlink():
                # Was a directory at the previous pass.
                try:
                    shutil.rmtree(target)
                    log.line(f"rmdir {display}")
                except OSError as e:
                    log.line(f"error {display} (rm, {e})")
                    continue
                unprocessed = {
                    p for p in unprocessed if p != rel and rel not in p.parents
                }

            if rel in unprocessed:
                unprocessed.discard(rel)
                try:
                    source_mtime = source.stat().st_mtime
                except OSError as e:
                    log.line(f"error {display} (stat, {e})")
                    continue
                if watermark is None or source_mtime > watermark:
                    age = int(source_mtime - (watermark or 0))
                    _copy(source, mirror / rel, display, log, note=f" (+{age})")
            else:
                _copy(source, mirror / rel, display, log)

    # Deepest first, so directories are empty by the time they are removed.
    for rel in sorted(unprocessed, key=lambda p: (len(p.parts), p.as_posix()), reverse=True):
        target = mirror / rel
        display = f"{name}/{rel.as_posix()}"
        try:
            if target.is_dir() and not target.is_symlink():
                target.rmdir()
                log.line(f"rmdir {display}")
            else:
                target.unlink()
                log.line(f"rm {display}")
        except OSError as e:
            log.line(f"error {display} (rm, {e})")

    now = time.time()
    os.utime(mirror, (now, now))


def sync_mirrors(repo_root: Path, log: StatusLog, copies_dir: str = COPIES_DIR) -> None:
    """Synchronizes the mirrors of every embedded `.git` directory in a repository.

    Copy, mkdir and remove failures are logged and skipped. Not safe to run
    concurrently against the same mirrors.

    Args:
        repo_root (Path): The repository root.
        log (StatusLog): The status log.
        copies_dir (str): Name of the directory holding mirrors.

    Raises:
        OSError: If a directory cannot be traversed.
    """
    log.line(f"make-embedded-git-copies {repo_root}")

    for git_dir in find_embedded_git_dirs(repo_root):
        sync_mirror(git_dir, mirror_path_for(git_dir, copies_dir), log)

    log.outcome(f"make-embedded-git-copies {repo_root}", True)
