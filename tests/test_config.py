"""Tests for the configuration management subsystem."""

from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from annex_archiver.config import Config


@pytest.fixture(autouse=True)
def clear_config_cache() -> Any:
    """Ensures every test starts with a clean config cache."""
    Config._global_cache = None
    yield
    Config._global_cache = None


def test_config_defaults() -> None:
    """Verifies that the configuration initializes with sensible defaults."""
    conf = Config()
    assert conf.core.repos == []
    assert conf.core.copies_dir == "Copies"
    assert conf.allocate.fetch_attempts == 4
    assert conf.maintain.fsck_schedule == "15d"
    assert conf.maintain.fsck_time_limit == "2h"
    assert conf.limits.log_retention == 10


def test_config_load_global_file(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that the global config file is merged over the defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    global_config_path = tmp_path / "config.toml"
    global_config_path.write_text(
        '[core]\nrepos = ["~/Archive/01 Photos", "~/Archive/02 Papers"]\n'
        '[maintain]\ntimeout = "90m"\n'
        "[allocate]\nfetch_attempts = 2\n"
        '[limits]\nmax_log_size = "1MB"\n'
    )
    mocker.patch("annex_archiver.config.CONFIG_FILE", global_config_path)

    conf = Config.load()

    assert conf.core.repos == ["~/Archive/01 Photos", "~/Archive/02 Papers"]
    assert conf.maintain.timeout == 5400
    assert conf.allocate.fetch_attempts == 2
    assert conf.limits.max_log_size == 1024 * 1024


def test_config_load_is_cached(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that the global file is parsed once and copies are handed out."""
    global_config_path = tmp_path / "config.toml"
    global_config_path.write_text("[allocate]\nfetch_attempts = 3\n")
    mocker.patch("annex_archiver.config.CONFIG_FILE", global_config_path)

    first = Config.load()
    global_config_path.write_text("[allocate]\nfetch_attempts = 9\n")
    second = Config.load()

    assert first.allocate.fetch_attempts == 3
    assert second.allocate.fetch_attempts == 3
    assert first is not second


def test_config_repos_are_deduplicated(tmp_path: Path) -> None:
    """Verifies that repeated repository entries collapse, keeping order."""
    path = tmp_path / "config.toml"
    path.write_text('[core]\nrepos = ["/a", "/b", "/a"]\n')

    conf = Config.load(path)

    assert conf.core.repos == ["/a", "/b"]


def test_parse_size() -> None:
    """Verifies that human-readable sizes are correctly converted to bytes."""
    from annex_archiver.config import parse_size

    assert parse_size(100) == 100
    assert parse_size("100kb") == 102400
    assert parse_size("10 MB") == 10485760
    assert parse_size("1.5gb") == int(1.5 * 1024**3)

    with pytest.raises(ValueError, match=r"Invalid size format '100 bits'"):
        parse_size("100 bits")


def test_parse_time() -> None:
    """Verifies that human-readable times are correctly converted to seconds."""
    from annex_archiver.config import parse_time

    assert parse_time(50) == 50
    assert parse_time("30s") == 30
    assert parse_time("10 min") == 600
    assert parse_time("2 hrs") == 7200
    assert parse_time("1.5h") == 5400
    assert parse_time("1d") == 86400

    with pytest.raises(ValueError, match=r"Invalid time format '10 lightyears'"):
        parse_time("10 lightyears")


def test_config_invalid_keys_and_values(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that unknown keys are ignored and invalid values fallback to defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        caplog (pytest.LogCaptureFixture): Pytest fixture for capturing logs.
    """
    import logging

    caplog.set_level(logging.WARNING)

    path = tmp_path / "config.toml"
    path.write_text(
        "[maintain]\n"
        'timeout = "forever"\n'
        'fake_setting = "ignored"\n'
        "[allocate]\n"
        "fetch_attempts = 0\n"
        "[limits]\n"
        'max_log_size = "10 gallons"\n'
    )

    conf = Config.load(path)

    assert conf.maintain.timeout == 3 * 3600
    assert conf.allocate.fetch_attempts == 4
    assert conf.limits.max_log_size == 5242880

    assert "Unknown config keys in [maintain]: fake_setting" in caplog.text
    assert "Config error in [maintain].timeout: Invalid time format" in caplog.text
    assert "Config error in [allocate].fetch_attempts" in caplog.text
    assert "Config error in [limits].max_log_size: Invalid size format" in caplog.text


def test_config_syntax_error_keeps_defaults(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that a malformed file is reported and ignored."""
    path = tmp_path / "config.toml"
    path.write_text("[core\nrepos = ")

    conf = Config.load(path)

    assert conf.core.repos == []
    assert "Config syntax error" in caplog.text
