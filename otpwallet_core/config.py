"""
TOML configuration for the tree builder.

Settings come from a TOML file and/or environment variables; environment
variables win.

Usage:
    from otpwallet_core.config import load_config
    cfg = load_config("otpwallet.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from otpwallet_core.errors import InvalidConfigurationError
from otpwallet_core.otp import DEFAULT_INTERVAL

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class BuilderConfig:
    """Default tree schedule for new builds (all times in ms)."""
    interval: int = DEFAULT_INTERVAL
    duration: int = 364 * 24 * 3600 * 1000
    slot_size: int = 1
    multi_code: int = 0
    report_interval: int = 1000   # progress callback every N steps (0 = off)

    def validate(self) -> None:
        if self.interval <= 0 or self.duration <= 0:
            raise InvalidConfigurationError("interval and duration must be positive")
        if self.duration % self.interval:
            raise InvalidConfigurationError(
                f"duration {self.duration} is not a multiple of interval {self.interval}"
            )
        if self.slot_size < 1:
            raise InvalidConfigurationError(f"slot_size must be >= 1, got {self.slot_size}")
        if self.report_interval < 0:
            raise InvalidConfigurationError("report_interval must be >= 0")


@dataclass
class WorkerConfig:
    max_workers: int = 1


@dataclass
class StorageConfig:
    """Tree persistence."""
    enabled: bool = False
    path: str = "data/otpwallet.db"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class OTPWalletConfig:
    builder: BuilderConfig = field(default_factory=BuilderConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Copy known keys of ``raw`` onto a section dataclass; unknown keys are ignored."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _env_int(name: str) -> int | None:
    v = os.environ.get(name)
    if not v:
        return None
    try:
        return int(v)
    except ValueError as exc:
        raise InvalidConfigurationError(f"{name} must be an integer, got {v!r}") from exc


def load_config(path: str | None = None) -> OTPWalletConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        OTPWALLET_INTERVAL   -> builder.interval
        OTPWALLET_DURATION   -> builder.duration
        OTPWALLET_SLOT_SIZE  -> builder.slot_size
        OTPWALLET_WORKERS    -> worker.max_workers
        OTPWALLET_DB_PATH    -> storage.path (and enables storage)
        OTPWALLET_LOG_LEVEL  -> logging.level
        OTPWALLET_LOG_FMT    -> logging.format

    Raises ``InvalidConfigurationError`` if the resulting builder schedule is
    inconsistent.
    """
    cfg = OTPWalletConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("builder", cfg.builder),
                ("worker", cfg.worker),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if (v := _env_int("OTPWALLET_INTERVAL")) is not None:
        cfg.builder.interval = v
    if (v := _env_int("OTPWALLET_DURATION")) is not None:
        cfg.builder.duration = v
    if (v := _env_int("OTPWALLET_SLOT_SIZE")) is not None:
        cfg.builder.slot_size = v
    if (v := _env_int("OTPWALLET_WORKERS")) is not None:
        cfg.worker.max_workers = v
    if db := os.environ.get("OTPWALLET_DB_PATH"):
        cfg.storage.path = db
        cfg.storage.enabled = True
    if level := os.environ.get("OTPWALLET_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    if fmt := os.environ.get("OTPWALLET_LOG_FMT"):
        cfg.logging.format = fmt

    cfg.builder.validate()
    return cfg
