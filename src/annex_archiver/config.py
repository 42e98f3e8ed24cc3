import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, ClassVar

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    COPIES_DIR,
    FETCH_MAX_ATTEMPTS,
    FSCK_INCREMENTAL_SCHEDULE,
    FSCK_TIME_LIMIT,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '1hr', '30m', '2d') to seconds."""
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr|d|day)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
        "d": 86400,
        "day": 86400,
    }
    return int(num * multiplier[unit])


@dataclass
class CoreConfig:
    """Core application settings.

    Attributes:
        repos (list[str]): Repositories processed when none are given on the CLI.
        copies_dir (str): Name of the directory holding embedded metadata mirrors.
    """

    repos: list[str] = field(default_factory=list)
    copies_dir: str = COPIES_DIR


@dataclass
class AllocateConfig:
    """Content allocation settings.

    Attributes:
        fetch_attempts (int): Immediate `git annex get` attempts per file.
    """

    fetch_attempts: int = FETCH_MAX_ATTEMPTS


@dataclass
class MaintainConfig:
    """Maintenance pass settings.

    Attributes:
        timeout (int): Seconds allowed for one whole maintenance pass.
        fsck_schedule (str): Value passed to `--incremental-schedule`.
        fsck_time_limit (str): Value passed to `--time-limit`.
    """

    timeout: int = 3 * 3600
    fsck_schedule: str = FSCK_INCREMENTAL_SCHEDULE
    fsck_time_limit: str = FSCK_TIME_LIMIT


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for the diagnostics log before rotation.
        log_retention (int): Command status logs kept per command.
    """

    max_log_size: int = 5 * 1024 * 1024
    log_retention: int = 10


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Core settings.
        allocate (AllocateConfig): Content allocation settings.
        maintain (MaintainConfig): Maintenance settings.
        limits (LimitsConfig): Resource limits.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    allocate: AllocateConfig = field(default_factory=AllocateConfig)
    maintain: MaintainConfig = field(default_factory=MaintainConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    # Cache for the loaded global configuration
    _global_cache: ClassVar["Config | None"] = None

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from defaults and the global config file.

        Args:
            path (Path | None): An explicit config file to read instead of the
                                global one. Explicit files are never cached.

        Returns:
            Config: The fully merged configuration object.
        """
        if path is not None:
            instance = cls()
            if path.exists():
                instance._merge_from_file(path)
            return instance

        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        return replace(cls._global_cache)

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            if "core" in data:
                # Repository lists extend rather than replace.
                new_repos = data["core"].pop("repos", [])
                self.core = self._update_dataclass("core", self.core, data["core"])
                if new_repos:
                    self.core.repos = list(dict.fromkeys([*self.core.repos, *new_repos]))
            if "allocate" in data:
                self.allocate = self._update_dataclass(
                    "allocate", self.allocate, data["allocate"]
                )
            if "maintain" in data:
                self.maintain = self._update_dataclass(
                    "maintain", self.maintain, data["maintain"]
                )
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "timeout":
                    filtered_updates[k] = parse_time(v)
                elif k in ["fetch_attempts", "log_retention"]:
                    if not isinstance(v, int) or v < 1:
                        raise ValueError(f"expected a positive integer, got {v!r}")
                    filtered_updates[k] = v
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
