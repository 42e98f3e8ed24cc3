from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import FakeMarkers, RecordingLog

from annex_archiver.commands import (
    AllocateCommand,
    CommandFinished,
    CommandProgress,
    CommandStarted,
    MaintainCommand,
    SyncCommand,
    dispatch,
)
from annex_archiver.config import Config
from annex_archiver.system import MarkerStrategy, UnsupportedPlatformError


def test_command_names() -> None:
    """Verifies the name each command carries into logs and events."""
    assert SyncCommand([]).name == "sync"
    assert MaintainCommand([], timeout=60).name == "maintain"
    assert AllocateCommand([]).name == "allocate"


def test_allocate_refused_without_tag_support() -> None:
    """Verifies that allocation fails fast on a platform without file tags."""
    events: list = []

    with pytest.raises(UnsupportedPlatformError):
        dispatch(
            AllocateCommand([Path("/archive/photos")]),
            RecordingLog(),
            events.append,
            config=Config(),
            markers=MarkerStrategy(),
        )

    assert events == []


def test_dispatch_emits_lifecycle_events(mocker: MagicMock) -> None:
    """Verifies that progress is wrapped in events between start and finish.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
    """

    def fake_allocate(repo_paths, received_since, log, markers, notify, **kwargs):
        notify("1/1")
        return True

    mock_allocate = mocker.patch(
        "annex_archiver.commands.allocate", side_effect=fake_allocate
    )
    events: list = []
    config = Config()
    config.allocate.fetch_attempts = 2

    ok = dispatch(
        AllocateCommand([Path("/archive/photos")]),
        RecordingLog(),
        events.append,
        config=config,
        markers=FakeMarkers(),
    )

    assert ok is True
    assert isinstance(events[0], CommandStarted)
    assert events[1:] == [
        CommandProgress("allocate", "1/1"),
        CommandFinished("allocate", True),
    ]
    assert mock_allocate.call_args.kwargs["fetch_attempts"] == 2


def test_dispatch_sync_aggregates_repository_outcomes(mocker: MagicMock) -> None:
    """Verifies that a sync is ok only if every repository synced."""
    mocker.patch("annex_archiver.commands.ops.sync_repos", return_value=[True, False])
    events: list = []

    ok = dispatch(
        SyncCommand([Path("/a"), Path("/b")]),
        RecordingLog(),
        events.append,
        config=Config(),
    )

    assert ok is False
    assert events[-1] == CommandFinished("sync", False)


def test_dispatch_maintain_passes_configured_schedule(mocker: MagicMock) -> None:
    """Verifies that maintenance receives its timeout and fsck settings."""
    mock_maintain = mocker.patch(
        "annex_archiver.commands.ops.maintain_repos", return_value=True
    )
    config = Config()
    config.maintain.fsck_schedule = "30d"
    log = RecordingLog()

    assert dispatch(MaintainCommand([Path("/a")], timeout=90), log, config=config)

    args, kwargs = mock_maintain.call_args
    assert args[:3] == ([Path("/a")], 90, log)
    assert kwargs["fsck_schedule"] == "30d"
    assert kwargs["fsck_time_limit"] == "2h"
