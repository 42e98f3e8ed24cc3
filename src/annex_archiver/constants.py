import os
from pathlib import Path

"""Global constants and path definitions for Annex Archiver.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the git / git-annex conventions shared by the
allocation, probing and mirroring passes.
"""

# --- Identity ---
APP_NAME = "annex-archiver"
"""str: The human-readable application name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "annex-archiver"
"""Path: The directory for runtime state data (application log, command logs)."""

# Ensure state directory exists immediately upon module import.
STATE_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = STATE_DIR / "archiver.log"
"""Path: The file path for the application diagnostics log."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/annex-archiver"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Git / Annex Constants ---
GCRYPT_RSYNC_PREFIX = "gcrypt::rsync://"
"""str: URL prefix of encrypted rsync remotes, the only ones that get probed."""

REMOTE_BASE_COST = 200
"""int: Annex cost assigned to a reachable probed remote before latency is added."""

FETCH_MAX_ATTEMPTS = 4
"""int: Number of immediate `git annex get` attempts before giving up on a file."""

COPIES_DIR = "Copies"
"""str: Directory (beside an embedded repository) holding its metadata mirror."""

UNCHANGED_ATTR = "annex.archiver.unchanged"
"""str: Git attribute marking files that `sync` keeps assume-unchanged."""

FSCK_INCREMENTAL_SCHEDULE = "15d"
FSCK_TIME_LIMIT = "2h"

# --- File Tags ---
MACOS_TAG_XATTR = "com.apple.metadata:_kMDItemUserTags"
"""str: Extended attribute holding Finder tags as a binary plist."""

MACOS_DROP_TAG = "Dropped\n1"
"""str: Finder tag (name + color index) used as the drop marker on macOS."""

LINUX_TAG_XATTR = "user.xdg.tags"
"""str: Freedesktop extended attribute holding comma-separated tags."""

LINUX_DROP_TAG = "Dropped"
"""str: Tag used as the drop marker on Linux."""
