"""Runtime settings, read from PROJGRAPH_* environment variables."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .constants import (
    LOCK_MAX_BACKOFF,
    LOCK_MIN_BACKOFF,
    LOCK_RETRIES,
    MAX_TRACKED_PROJECTS,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "PROJGRAPH_"
_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Service and server configuration."""

    max_projects: int = MAX_TRACKED_PROJECTS
    lock_retries: int = LOCK_RETRIES
    lock_min_backoff: float = LOCK_MIN_BACKOFF
    lock_max_backoff: float = LOCK_MAX_BACKOFF
    strict_reads: bool = False  # raise on corrupt files instead of serving empty state
    log_level: str = "INFO"
    log_file: Path | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from the environment, falling back to defaults.

        Unparseable numbers are logged and replaced by the default.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        log_file = env.get(f"{ENV_PREFIX}LOG_FILE")
        return cls(
            max_projects=_positive(env, "MAX_PROJECTS", int, defaults.max_projects),
            lock_retries=_positive(env, "LOCK_RETRIES", int, defaults.lock_retries, allow_zero=True),
            lock_min_backoff=_positive(env, "LOCK_MIN_BACKOFF", float, defaults.lock_min_backoff),
            lock_max_backoff=_positive(env, "LOCK_MAX_BACKOFF", float, defaults.lock_max_backoff),
            strict_reads=env.get(f"{ENV_PREFIX}STRICT_READS", "").strip().lower() in _TRUE_VALUES,
            log_level=env.get(f"{ENV_PREFIX}LOG_LEVEL", defaults.log_level).upper(),
            log_file=Path(log_file) if log_file else None,
        )

    def lock_options(self) -> dict:
        """Keyword arguments for locking.acquire_lease and hold_lease."""
        return {
            "retries": self.lock_retries,
            "min_backoff": self.lock_min_backoff,
            "max_backoff": self.lock_max_backoff,
        }


def _positive(env: Mapping[str, str], name: str, cast, default, allow_zero: bool = False):
    raw = env.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Ignoring {ENV_PREFIX}{name}={raw!r}: not a number")
        return default
    if value < 0 or (value == 0 and not allow_zero):
        logger.warning(f"Ignoring {ENV_PREFIX}{name}={raw!r}: out of range")
        return default
    return value
