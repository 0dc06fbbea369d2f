"""Runtime settings read from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError

ENV_LOG_LEVEL = "WMGR_LOG_LEVEL"
ENV_CONFIG = "WMGR_CONFIG"
ENV_JOBS = "WMGR_JOBS"
ENV_TIMEOUT = "WMGR_TIMEOUT"


@dataclass(frozen=True)
class RuntimeSettings:
    """Process-level knobs. Passed explicitly into engines, never global."""

    log_level: str | None = None
    config_path: Path | None = None
    jobs: int | None = None
    timeout: float | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RuntimeSettings:
        env = os.environ if environ is None else environ

        jobs = None
        raw_jobs = env.get(ENV_JOBS, "").strip()
        if raw_jobs:
            try:
                jobs = int(raw_jobs)
            except ValueError:
                raise ConfigError(f"{ENV_JOBS} must be an integer, got {raw_jobs!r}") from None
            if jobs < 1:
                raise ConfigError(f"{ENV_JOBS} must be at least 1, got {jobs}")

        timeout = None
        raw_timeout = env.get(ENV_TIMEOUT, "").strip()
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                raise ConfigError(f"{ENV_TIMEOUT} must be a number, got {raw_timeout!r}") from None
            if timeout <= 0:
                timeout = None

        raw_config = env.get(ENV_CONFIG, "").strip()
        return cls(
            log_level=env.get(ENV_LOG_LEVEL, "").strip() or None,
            config_path=Path(raw_config).expanduser() if raw_config else None,
            jobs=jobs,
            timeout=timeout,
        )


def default_jobs(count: int, requested: int | None = None) -> int:
    """Worker pool size: ``requested`` or CPU count, clamped to ``count``."""
    jobs = requested or os.cpu_count() or 1
    return max(1, min(jobs, max(count, 1)))
