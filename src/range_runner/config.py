"""Runtime configuration for the task engine, sweeper and CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path


@dataclass(slots=True)
class EngineSettings:
    """Worker pool, tick and flush tunables."""

    tick_seconds: float = 1.0
    max_workers: int = 4
    queue_limit: int = 16
    flush_every_ticks: int = 10
    flush_interval_seconds: float = 5.0
    max_span: int = 1_000_000


@dataclass(slots=True)
class SweeperSettings:
    """Staleness sweep thresholds."""

    period_seconds: float = 60.0
    created_max_age_seconds: int = 3_600
    terminal_retention_seconds: int = 86_400
    tombstone_retention_seconds: int = 604_800

    @property
    def created_max_age(self) -> timedelta:
        return timedelta(seconds=self.created_max_age_seconds)

    @property
    def terminal_retention(self) -> timedelta:
        return timedelta(seconds=self.terminal_retention_seconds)

    @property
    def tombstone_retention(self) -> timedelta:
        return timedelta(seconds=self.tombstone_retention_seconds)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".range_runner.db")
    artifacts_root: Path = Path(".range_runner_artifacts")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "INFO"
    engine: EngineSettings = field(default_factory=EngineSettings)
    sweeper: SweeperSettings = field(default_factory=SweeperSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("RANGE_RUNNER_DB_PATH", ".range_runner.db")),
            artifacts_root=Path(
                os.getenv("RANGE_RUNNER_ARTIFACTS_ROOT", ".range_runner_artifacts"),
            ),
            sqlite_busy_timeout_ms=int(os.getenv("RANGE_RUNNER_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("RANGE_RUNNER_LOG_LEVEL", "INFO").strip().upper(),
            engine=EngineSettings(
                tick_seconds=float(os.getenv("RANGE_RUNNER_TICK_SECONDS", "1.0")),
                max_workers=int(os.getenv("RANGE_RUNNER_MAX_WORKERS", "4")),
                queue_limit=int(os.getenv("RANGE_RUNNER_QUEUE_LIMIT", "16")),
                flush_every_ticks=int(os.getenv("RANGE_RUNNER_FLUSH_EVERY_TICKS", "10")),
                flush_interval_seconds=float(
                    os.getenv("RANGE_RUNNER_FLUSH_INTERVAL_SECONDS", "5.0"),
                ),
                max_span=int(os.getenv("RANGE_RUNNER_MAX_SPAN", "1000000")),
            ),
            sweeper=SweeperSettings(
                period_seconds=float(os.getenv("RANGE_RUNNER_SWEEP_PERIOD_SECONDS", "60")),
                created_max_age_seconds=int(
                    os.getenv("RANGE_RUNNER_SWEEP_CREATED_MAX_AGE_SECONDS", "3600"),
                ),
                terminal_retention_seconds=int(
                    os.getenv("RANGE_RUNNER_SWEEP_TERMINAL_RETENTION_SECONDS", "86400"),
                ),
                tombstone_retention_seconds=int(
                    os.getenv("RANGE_RUNNER_SWEEP_TOMBSTONE_RETENTION_SECONDS", "604800"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any tunable is out of range."""

        engine = self.engine
        if engine.tick_seconds <= 0:
            raise ValueError("RANGE_RUNNER_TICK_SECONDS must be > 0.")
        if engine.max_workers <= 0:
            raise ValueError("RANGE_RUNNER_MAX_WORKERS must be > 0.")
        if engine.queue_limit < 0:
            raise ValueError("RANGE_RUNNER_QUEUE_LIMIT must be >= 0.")
        if engine.flush_every_ticks <= 0:
            raise ValueError("RANGE_RUNNER_FLUSH_EVERY_TICKS must be > 0.")
        if engine.flush_interval_seconds <= 0:
            raise ValueError("RANGE_RUNNER_FLUSH_INTERVAL_SECONDS must be > 0.")
        if engine.max_span < 0:
            raise ValueError("RANGE_RUNNER_MAX_SPAN must be >= 0.")

        sweeper = self.sweeper
        if sweeper.period_seconds <= 0:
            raise ValueError("RANGE_RUNNER_SWEEP_PERIOD_SECONDS must be > 0.")
        if sweeper.created_max_age_seconds <= 0:
            raise ValueError("RANGE_RUNNER_SWEEP_CREATED_MAX_AGE_SECONDS must be > 0.")
        if sweeper.terminal_retention_seconds < 0:
            raise ValueError("RANGE_RUNNER_SWEEP_TERMINAL_RETENTION_SECONDS must be >= 0.")
        if sweeper.tombstone_retention_seconds < 0:
            raise ValueError("RANGE_RUNNER_SWEEP_TOMBSTONE_RETENTION_SECONDS must be >= 0.")

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("RANGE_RUNNER_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid RANGE_RUNNER_LOG_LEVEL: {self.log_level!r}")
