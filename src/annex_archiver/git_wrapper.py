import datetime
import json
import logging
import subprocess
from pathlib import Path

from .constants import APP_NAME
from .status import StatusLog

logger = logging.getLogger(APP_NAME)

ANNEX_LOG_DT_FORMAT = "%Y-%m-%d %H:%M:%S"


def run_streamed(
    args: list[str], cwd: Path, status_prefix: str, log: StatusLog
) -> bool:
    """Runs an external command, streaming its output into a status log.

    stderr is merged into stdout so lines are logged in arrival order. If the
    caller is interrupted while the command runs (e.g. by a pass timeout), the
    process is killed before the exception propagates.

    Args:
        args (list[str]): The command and its arguments.
        cwd (Path): The working directory for the command.
        status_prefix (str): Label written before and, with the outcome, after.
        log (StatusLog): The sink receiving every line.

    Returns:
        bool: True if the command exited with status 0.

    Raises:
        FileNotFoundError: If the executable does not exist.
    """
    log.line(status_prefix)

    with subprocess.Popen(
        args,
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
    ) as proc:
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                log.line(line.rstrip("\n"))
            returncode = proc.wait()
        finally:
            if proc.poll() is None:
                logger.warning(f"Killing unfinished process: {' '.join(args)}")
                proc.kill()
                proc.wait()

    ok = returncode == 0
    log.outcome(status_prefix, ok)
    return ok


class GitRepo:
    """A wrapper around the git and git-annex command-line interfaces.

    Queries (`ls-files`, `annex find`, `remote`, `config`) go through `_run`,
    which captures output and raises on failure. Long-running content
    operations (`annex get`, `annex drop`, ...) go through `stream`, which
    writes their output to a status log and reports success as a boolean.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git directory.
        """
        self.path = path
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    def _run(self, args: list[str], strip: bool = True) -> str:
        """Executes a git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            strip (bool, optional): Whether to strip surrounding whitespace from
                                    stdout. NUL-separated output must not be
                                    stripped. Defaults to True.

        Returns:
            str: The stdout of the command.

        Raises:
            RuntimeError: If the git command returns a non-zero exit code.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=True,
                text=True,
                check=True,
            )
            return res.stdout.strip() if strip else res.stdout
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"Git error: {e.stderr or e}") from e

    def _run_z(self, args: list[str]) -> list[str]:
        """Executes a git command whose output is NUL-separated paths."""
        return [p for p in self._run(args, strip=False).split("\0") if p]

    def stream(self, args: list[str], status_prefix: str, log: StatusLog) -> bool:
        """Runs a git command, streaming its output to a status log.

        Args:
            args (list[str]): Arguments to pass to git.
            status_prefix (str): Label for the start and outcome lines.
            log (StatusLog): The status log.

        Returns:
            bool: True if git exited successfully.
        """
        return run_streamed(["git", *args], self.path, status_prefix, log)

    # --- File sets ---

    def tracked_files(self) -> set[str]:
        """Returns paths under version control that exist on disk."""
        return {
            p for p in self._run_z(["ls-files", "-z"]) if (self.path / p).exists()
        }

    def untracked_files(self) -> set[str]:
        """Returns existing paths in the worktree that git does not track."""
        return {
            p
            for p in self._run_z(["ls-files", "-z", "-o"])
            if (self.path / p).exists()
        }

    def absent_files(self) -> set[str]:
        """Returns tracked paths whose content git-annex reports absent locally."""
        return set(
            self._run_z(["annex", "find", "--not", "--in=here", "--print0"])
        )

    def attribute_files(self, attribute: str) -> list[str]:
        """Returns tracked paths carrying the given git attribute."""
        return self._run_z(["ls-files", "-z", f":(attr:{attribute})*"])

    def received_files(self, since: datetime.datetime, paths: list[str]) -> set[str]:
        """Resolves which paths had their content received here since a timestamp.

        Args:
            since (datetime.datetime): The watermark.
            paths (list[str]): Candidate paths (already known to be modified).

        Returns:
            set[str]: The paths git-annex's location log reports received.

        Raises:
            json.JSONDecodeError: If git-annex output is not line-delimited JSON.
            KeyError: If a log entry carries no `file` field.
        """
        since_arg = since.astimezone().strftime(ANNEX_LOG_DT_FORMAT)
        output = self._run(
            [
                "annex",
                "log",
                "--json",
                "--since",
                since_arg,
                "--in=here",
                "--or",
                "--in",
                f"here@{since_arg}",
                *paths,
            ]
        )
        return {json.loads(line)["file"] for line in output.splitlines() if line}

    def last_commit_time(self) -> datetime.datetime:
        """Returns the author date of HEAD as an aware datetime.

        Raises:
            RuntimeError: If the repository has no commits.
            ValueError: If git's date output cannot be parsed.
        """
        return datetime.datetime.fromisoformat(
            self._run(["log", "-1", "--format=%aI"])
        )

    # --- Remotes ---

    def remotes(self) -> list[str]:
        """Lists configured remotes in git's native order."""
        return self._run(["remote"]).split()

    def remote_url(self, name: str) -> str:
        """Returns the URL of a configured remote."""
        return self._run(["remote", "get-url", name])

    def ls_remote_heads(self, url: str) -> bool:
        """Checks that a remote answers and has at least one branch head.

        Args:
            url (str): The remote URL.

        Returns:
            bool: True if `git ls-remote --heads --exit-code` succeeded.
        """
        try:
            self._run(["ls-remote", "--heads", "--exit-code", url])
            return True
        except RuntimeError as e:
            logger.debug(f"ls-remote failed for {url}: {e}")
            return False

    def set_config(self, key: str, value: str) -> None:
        """Replaces every value of a git configuration key."""
        self._run(["config", "--replace-all", key, value])

    # --- Content operations ---

    def annex_get(self, path: str, log: StatusLog) -> bool:
        """Fetches the content of a file from any available remote."""
        return self.stream(["annex", "get", path], f"git-annex-get {path}", log)

    def annex_drop(self, path: str, log: StatusLog) -> bool:
        """Drops the local content of a file."""
        return self.stream(["annex", "drop", path], f"git-annex-drop {path}", log)
