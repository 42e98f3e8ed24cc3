import datetime
import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import RecordingLog

from annex_archiver.git_wrapper import GitRepo, run_streamed


@pytest.fixture
def repo(tmp_path: Path) -> GitRepo:
    """Provides a GitRepo over a directory with a fake .git directory."""
    (tmp_path / ".git").mkdir()
    return GitRepo(tmp_path)


def test_init_rejects_non_repository(tmp_path: Path) -> None:
    """Verifies that a directory without .git is refused."""
    with pytest.raises(ValueError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_run_raises_runtime_error_with_stderr(
    mocker: MagicMock, repo: GitRepo
) -> None:
    """Verifies that git failures surface as RuntimeError carrying git's stderr."""
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(
            128, ["git", "remote"], stderr="fatal: not a git repository"
        ),
    )

    with pytest.raises(RuntimeError, match="Git error: fatal: not a git repository"):
        repo.remotes()


def test_tracked_files_parses_nul_output_and_skips_missing(
    mocker: MagicMock, repo: GitRepo
) -> None:
    """Verifies NUL-separated parsing, keeping only paths that exist on disk.

    Paths containing spaces or newlines must survive intact.
    """
    (repo.path / "a b.txt").write_text("a")
    (repo.path / "odd\nname").write_text("b")
    mock_run = mocker.patch.object(repo, "_run")
    mock_run.return_value = "a b.txt\0odd\nname\0broken-link\0"

    assert repo.tracked_files() == {"a b.txt", "odd\nname"}
    mock_run.assert_called_once_with(["ls-files", "-z"], strip=False)


def test_absent_files_query(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies the git-annex query for locally absent content."""
    mock_run = mocker.patch.object(repo, "_run", return_value="x\0y\0")

    assert repo.absent_files() == {"x", "y"}
    mock_run.assert_called_once_with(
        ["annex", "find", "--not", "--in=here", "--print0"], strip=False
    )


def test_attribute_files_uses_attr_pathspec(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that attribute lookups go through an `attr:` pathspec."""
    mock_run = mocker.patch.object(repo, "_run", return_value="big.iso\0")

    assert repo.attribute_files("annex.archiver.unchanged") == ["big.iso"]
    mock_run.assert_called_once_with(
        ["ls-files", "-z", ":(attr:annex.archiver.unchanged)*"], strip=False
    )


def test_received_files_reads_json_lines(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies the `annex log` arguments and the extraction of file names."""
    since = datetime.datetime(2024, 3, 1, 12, 30, 5).astimezone()
    lines = [
        json.dumps({"file": "a.txt", "status": "present"}),
        json.dumps({"file": "a.txt", "status": "present"}),
        json.dumps({"file": "c.txt", "status": "present"}),
    ]
    mock_run = mocker.patch.object(repo, "_run", return_value="\n".join(lines))

    assert repo.received_files(since, ["a.txt", "c.txt"]) == {"a.txt", "c.txt"}
    mock_run.assert_called_once_with(
        [
            "annex",
            "log",
            "--json",
            "--since",
            "2024-03-01 12:30:05",
            "--in=here",
            "--or",
            "--in",
            "here@2024-03-01 12:30:05",
            "a.txt",
            "c.txt",
        ]
    )


def test_last_commit_time_parses_iso_date(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that the strict ISO author date is parsed into an aware datetime."""
    mocker.patch.object(repo, "_run", return_value="2024-03-01T12:00:00+01:00")

    ts = repo.last_commit_time()

    assert ts.tzinfo is not None
    assert ts == datetime.datetime(2024, 3, 1, 11, 0, tzinfo=datetime.timezone.utc)


def test_ls_remote_heads_reports_failure_as_false(
    mocker: MagicMock, repo: GitRepo
) -> None:
    """Verifies that an unreachable remote is reported, not raised."""
    mocker.patch.object(repo, "_run", side_effect=RuntimeError("Git error: timeout"))

    assert repo.ls_remote_heads("gcrypt::rsync://host/repo") is False


def test_set_config_replaces_all_values(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that config writes replace every existing value."""
    mock_run = mocker.patch.object(repo, "_run", return_value="")

    repo.set_config("remote.nas.annex-cost", "205")

    mock_run.assert_called_once_with(
        ["config", "--replace-all", "remote.nas.annex-cost", "205"]
    )


def test_annex_get_streams_with_prefix(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that content fetches are streamed under their own label."""
    mock_stream = mocker.patch("annex_archiver.git_wrapper.run_streamed", return_value=True)
    log = RecordingLog()

    assert repo.annex_get("photos/a.jpg", log) is True
    mock_stream.assert_called_once_with(
        ["git", "annex", "get", "photos/a.jpg"],
        repo.path,
        "git-annex-get photos/a.jpg",
        log,
    )


def test_run_streamed_interleaves_output_and_reports_exit(tmp_path: Path) -> None:
    """Verifies that stdout and stderr lines reach the log, followed by the outcome."""
    log = RecordingLog()

    ok = run_streamed(
        ["sh", "-c", "echo out; echo err 1>&2; exit 3"], tmp_path, "job", log
    )

    assert ok is False
    assert log.lines[0] == "job"
    assert "out" in log.lines
    assert "err" in log.lines
    assert log.lines[-1] == "job not ok"


def test_run_streamed_success(tmp_path: Path) -> None:
    """Verifies that a zero exit status is reported as ok."""
    log = RecordingLog()

    assert run_streamed(["sh", "-c", "echo done"], tmp_path, "job", log) is True
    assert log.lines == ["job", "done", "job ok"]


def test_run_streamed_kills_process_when_interrupted(
    mocker: MagicMock, tmp_path: Path
) -> None:
    """Verifies that an exception while streaming kills the child process."""
    log = RecordingLog()
    proc = MagicMock()
    proc.__enter__.return_value = proc
    proc.__exit__.return_value = False
    proc.stdout = iter(["first line\n"])
    proc.wait.side_effect = [TimeoutError("budget exceeded"), -9]
    proc.poll.return_value = None
    mocker.patch("subprocess.Popen", return_value=proc)

    with pytest.raises(TimeoutError):
        run_streamed(["git", "annex", "fsck"], tmp_path, "fsck", log)

    proc.kill.assert_called_once()
    assert log.lines == ["fsck", "first line"]
