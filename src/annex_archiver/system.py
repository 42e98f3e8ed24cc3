import errno
import logging
import os
import plistlib
import subprocess
import sys
from pathlib import Path

from .constants import (
    APP_NAME,
    LINUX_DROP_TAG,
    LINUX_TAG_XATTR,
    MACOS_DROP_TAG,
    MACOS_TAG_XATTR,
)
from .status import StatusLog

logger = logging.getLogger(APP_NAME)


class UnsupportedPlatformError(RuntimeError):
    """Raised when the platform offers no per-file tag to use as a drop marker."""


class MarkerStrategy:
    """Base class defining the drop-marker interface.

    The drop marker is a user-visible file tag recording the allocator's last
    decision that a file's content is evictable. Subclasses only provide tag
    storage; the base class implements the marker logic on top of it. The base
    class itself stands for a platform without tag support.
    """

    supported = False
    drop_tag = ""

    def read_tags(self, path: Path) -> list[str]:
        """Returns the tags currently set on a file."""
        raise UnsupportedPlatformError(f"File tags are not supported on {sys.platform}")

    def write_tags(self, path: Path, tags: list[str]) -> None:
        """Replaces the tags set on a file."""
        raise UnsupportedPlatformError(f"File tags are not supported on {sys.platform}")

    def has_marker(self, path: Path) -> bool:
        """Determines whether the drop marker is set on a file."""
        return self.drop_tag in self.read_tags(path)

    def set_marker(self, path: Path, log: StatusLog) -> None:
        """Sets the drop marker, logging only when the state actually changes.

        Args:
            path (Path): The file.
            log (StatusLog): The status log receiving `set-drop <path> ok|not ok`.
        """
        tags = self.read_tags(path)
        if self.drop_tag in tags:
            return
        try:
            self.write_tags(path, [*tags, self.drop_tag])
            log.outcome(f"set-drop {path}", True)
        except OSError as e:
            log.line(f"set-drop {path} not ok ({e})")

    def clear_marker(self, path: Path, log: StatusLog) -> None:
        """Clears the drop marker, leaving any other tag in place.

        Args:
            path (Path): The file.
            log (StatusLog): The status log receiving `unset-drop <path> ok|not ok`.
        """
        tags = self.read_tags(path)
        if self.drop_tag not in tags:
            return
        try:
            self.write_tags(path, [t for t in tags if t != self.drop_tag])
            log.outcome(f"unset-drop {path}", True)
        except OSError as e:
            log.line(f"unset-drop {path} not ok ({e})")


class MacOSMarkers(MarkerStrategy):
    """Finder tags, stored as a binary plist in an extended attribute.

    Python exposes no xattr API on macOS, so the system `xattr` tool is used.
    """

    supported = True
    drop_tag = MACOS_DROP_TAG

    def read_tags(self, path: Path) -> list[str]:
        """Reads Finder tags via `xattr -px`."""
        res = subprocess.run(
            ["xattr", "-px", MACOS_TAG_XATTR, str(path)],
            capture_output=True,
            text=True,
        )
        if res.returncode != 0:
            # Missing attribute, i.e. no tags.
            return []
        data = bytes.fromhex("".join(res.stdout.split()))
        if not data:
            return []
        return list(plistlib.loads(data))

    def write_tags(self, path: Path, tags: list[str]) -> None:
        """Writes Finder tags via `xattr -wx`."""
        data = plistlib.dumps(tags, fmt=plistlib.FMT_BINARY)
        res = subprocess.run(
            ["xattr", "-wx", MACOS_TAG_XATTR, data.hex(), str(path)],
            capture_output=True,
            text=True,
        )
        if res.returncode != 0:
            raise OSError(res.stderr.strip() or f"xattr exited with {res.returncode}")


class LinuxMarkers(MarkerStrategy):
    """Freedesktop tags in the `user.xdg.tags` extended attribute."""

    supported = True
    drop_tag = LINUX_DROP_TAG

    def read_tags(self, path: Path) -> list[str]:
        """Reads comma-separated tags via `os.getxattr`."""
        try:
            raw = os.getxattr(path, LINUX_TAG_XATTR)
        except OSError as e:
            if e.errno == errno.ENODATA:
                return []
            raise
        return [t for t in raw.decode().split(",") if t]

    def write_tags(self, path: Path, tags: list[str]) -> None:
        """Writes tags via `os.setxattr`, removing the attribute when empty."""
        if tags:
            os.setxattr(path, LINUX_TAG_XATTR, ",".join(tags).encode())
            return
        try:
            os.removexattr(path, LINUX_TAG_XATTR)
        except OSError as e:
            if e.errno != errno.ENODATA:
                raise


def get_markers() -> MarkerStrategy:
    """Factory function to retrieve the platform-specific marker strategy.

    Returns:
        MarkerStrategy: An instance of MacOSMarkers, LinuxMarkers, or the
        unsupported base strategy depending on the operating system.
    """
    if sys.platform == "darwin":
        return MacOSMarkers()
    elif sys.platform.startswith("linux") and hasattr(os, "getxattr"):
        return LinuxMarkers()
    else:
        return MarkerStrategy()
