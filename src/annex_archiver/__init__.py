"""Annex Archiver: automated upkeep for a fleet of git-annex repositories.

This package provides the command-line interface and the passes it runs:
remote probing, content allocation against per-file drop markers, metadata
mirroring of embedded repositories, syncing and periodic maintenance.
"""

from . import (
    allocate,
    cli,
    commands,
    config,
    constants,
    git_wrapper,
    mirror,
    ops,
    remotes,
    status,
    system,
)

__all__ = [
    "allocate",
    "cli",
    "commands",
    "config",
    "constants",
    "git_wrapper",
    "mirror",
    "ops",
    "remotes",
    "status",
    "system",
]
