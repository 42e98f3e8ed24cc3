import logging
import time
from dataclasses import dataclass

from .constants import APP_NAME, GCRYPT_RSYNC_PREFIX, REMOTE_BASE_COST
from .git_wrapper import GitRepo
from .status import StatusLog

logger = logging.getLogger(APP_NAME)


@dataclass
class RemoteDescriptor:
    """The outcome of probing a single remote.

    Attributes:
        name (str): The remote identifier.
        url (str): The remote URL.
        reachable (bool | None): The probe outcome, None if the remote is not probed.
        cost (int | None): The annex cost assigned by a successful probe.
        ignore (bool): Whether git-annex was told to ignore the remote.
    """

    name: str
    url: str
    reachable: bool | None = None
    cost: int | None = None
    ignore: bool = False

    @property
    def usable(self) -> bool:
        return self.reachable is not False


def remote_cost(duration_ms: int) -> int:
    """Converts a probe round-trip into an annex cost (100 ms per cost unit)."""
    return REMOTE_BASE_COST + duration_ms // 100


def describe_remotes(repo: GitRepo, log: StatusLog) -> list[RemoteDescriptor]:
    """Probes every remote of a repository and records the result in git config.

    Only encrypted rsync remotes are probed; each gets a single reachability
    check (no retry). Reachable ones receive a latency-based `annex-cost` and
    `annex-ignore=false`, unreachable ones `annex-ignore=true`.

    Args:
        repo (GitRepo): The repository.
        log (StatusLog): The status log.

    Returns:
        list[RemoteDescriptor]: One descriptor per remote, in git's order.
    """
    log.line(f"probe-remotes {repo.path}")

    descriptors = []
    for name in repo.remotes():
        remote = RemoteDescriptor(name=name, url=repo.remote_url(name))

        if not remote.url.startswith(GCRYPT_RSYNC_PREFIX):
            log.outcome(name, True)
            descriptors.append(remote)
            continue

        start = time.monotonic()
        remote.reachable = repo.ls_remote_heads(remote.url)
        duration_ms = int((time.monotonic() - start) * 1000)

        if remote.reachable:
            remote.cost = remote_cost(duration_ms)
            repo.set_config(f"remote.{name}.annex-cost", str(remote.cost))
            repo.set_config(f"remote.{name}.annex-ignore", "false")
            log.outcome(f"{name} ({remote.cost})", True)
        else:
            remote.ignore = True
            repo.set_config(f"remote.{name}.annex-ignore", "true")
            logger.info(f"UNREACHABLE {repo.path.name}: remote '{name}' ignored.")
            log.outcome(name, False)

        descriptors.append(remote)

    log.outcome(f"probe-remotes {repo.path}", True)
    return descriptors


def probe_remotes(repo: GitRepo, log: StatusLog) -> list[str]:
    """Returns the names of the remotes usable right now, in git's order."""
    return [r.name for r in describe_remotes(repo, log) if r.usable]
