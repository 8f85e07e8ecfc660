"""TOML config loading and profiles."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"
_CWD_CONFIG = Path.cwd() / "config"


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return config_dir
    if _CWD_CONFIG.exists():
        return _CWD_CONFIG
    return _CONFIG_DIR


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml and optional profile overlay."""
    directory = _find_config_dir(config_dir)
    default_path = directory / "default.toml"
    if not default_path.exists():
        return {}
    base = _load_toml(default_path)
    if profile:
        profile_path = directory / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return base


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        engine: dict[str, Any] | None = None,
        storage: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.engine = engine or {}
        self.storage = storage or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            engine=raw.get("engine"),
            storage=raw.get("storage"),
            logging=raw.get("logging"),
        )

    def _section(self, name: str) -> dict[str, Any]:
        return self.engine.get(name) or {}

    # Convenience accessors with defaults
    @property
    def db_path(self) -> str:
        return self.storage.get("db_path", "data/predcon.duckdb")

    @property
    def aggregate_workers(self) -> int:
        return int(self.engine.get("aggregate_workers", 8))

    # [engine.weights]
    @property
    def min_resolved(self) -> int:
        return int(self._section("weights").get("min_resolved", 30))

    @property
    def prior_weight(self) -> float:
        return float(self._section("weights").get("prior_weight", 1.0))

    @property
    def weight_epsilon(self) -> float:
        return float(self._section("weights").get("epsilon", 0.01))

    @property
    def min_weight(self) -> float:
        return float(self._section("weights").get("min_weight", 0.1))

    @property
    def max_weight(self) -> float:
        return float(self._section("weights").get("max_weight", 100.0))

    # [engine.consensus]
    @property
    def outlier_threshold(self) -> float:
        return float(self._section("consensus").get("outlier_threshold", 0.25))

    @property
    def confidence_full_n(self) -> int:
        return int(self._section("consensus").get("confidence_full_n", 5))

    @property
    def all_outlier_fallback(self) -> str:
        return str(self._section("consensus").get("all_outlier_fallback", "simple_mean")).lower()

    # [engine.movement]
    @property
    def movement_threshold(self) -> float:
        return float(self._section("movement").get("threshold", 0.05))

    @property
    def movement_window_hours(self) -> float:
        return float(self._section("movement").get("window_hours", 24))

    # [engine.resolution]
    @property
    def outcome_policy(self) -> str:
        return str(self._section("resolution").get("outcome_policy", "literal")).lower()

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
