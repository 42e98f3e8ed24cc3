import io
from pathlib import Path

import pytest

from annex_archiver.status import StatusLog
from annex_archiver.system import MarkerStrategy


class FakeMarkers(MarkerStrategy):
    """Keeps file tags in memory instead of extended attributes."""

    supported = True
    drop_tag = "Dropped"

    def __init__(self) -> None:
        self.tags: dict[Path, list[str]] = {}

    def read_tags(self, path: Path) -> list[str]:
        return list(self.tags.get(path, []))

    def write_tags(self, path: Path, tags: list[str]) -> None:
        self.tags[path] = list(tags)

    def marked(self, root: Path) -> set[str]:
        """Returns the root-relative paths currently carrying the drop marker."""
        return {
            p.relative_to(root).as_posix()
            for p, tags in self.tags.items()
            if self.drop_tag in tags
        }


class RecordingLog(StatusLog):
    """A status log whose lines can be inspected."""

    def __init__(self) -> None:
        self.buffer = io.StringIO()
        super().__init__(self.buffer)

    @property
    def lines(self) -> list[str]:
        return self.buffer.getvalue().splitlines()


@pytest.fixture
def status_log() -> RecordingLog:
    """Provides an in-memory status log."""
    return RecordingLog()


@pytest.fixture
def fake_markers() -> FakeMarkers:
    """Provides an in-memory drop-marker strategy."""
    return FakeMarkers()
