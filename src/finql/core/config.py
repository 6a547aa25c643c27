"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from finql.core.exceptions import ConfigError
from finql.core.models import StorageBackend


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    model_config = ConfigDict(frozen=True)

    backend: StorageBackend = StorageBackend.SQLITE
    sqlite_path: str = "./data/finql.db"
    postgresql_url: str | None = None
    pool_min_size: int = 1
    pool_max_size: int = 10

    @model_validator(mode="after")
    def pg_url_required_for_pg(self) -> StorageConfig:
        if self.backend == StorageBackend.POSTGRESQL and not self.postgresql_url:
            raise ValueError("postgresql_url is required when backend is 'postgresql'")
        return self

    @model_validator(mode="after")
    def pool_bounds(self) -> StorageConfig:
        if self.pool_min_size < 1 or self.pool_max_size < self.pool_min_size:
            raise ValueError("pool sizes must satisfy 1 <= pool_min_size <= pool_max_size")
        return self


class AggregatorConfig(BaseModel):
    """Quote aggregation settings.

    ``source_priority`` ranks market-data sources, highest priority first.
    """

    model_config = ConfigDict(frozen=True)

    source_priority: list[str] = []
    fetch_timeout: float = 30.0
    poll_interval: float = 3600.0
    staleness_days: int = 7

    @field_validator("source_priority", mode="before")
    @classmethod
    def split_single_string(cls, v: object) -> object:
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("source_priority")
    @classmethod
    def no_duplicate_sources(cls, v: list[str]) -> list[str]:
        if len(set(v)) != len(v):
            raise ValueError("source_priority must not list a source twice")
        return v

    @field_validator("fetch_timeout", "poll_interval")
    @classmethod
    def positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts and intervals must be > 0")
        return v

    @field_validator("staleness_days")
    @classmethod
    def staleness_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("staleness_days must be >= 0")
        return v


class PricingConfig(BaseModel):
    """Root-finding settings for yield and IRR solves."""

    model_config = ConfigDict(frozen=True)

    tolerance: float = 1e-9
    max_iterations: int = 100
    initial_guess: float = 0.05
    lower_bound: float = -0.99
    upper_bound: float = 10.0

    @field_validator("tolerance")
    @classmethod
    def tolerance_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("tolerance must be > 0")
        return v

    @field_validator("max_iterations")
    @classmethod
    def iterations_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_iterations must be >= 1")
        return v

    @model_validator(mode="after")
    def bracket_ordered(self) -> PricingConfig:
        if not self.lower_bound < self.initial_guess < self.upper_bound:
            raise ValueError("need lower_bound < initial_guess < upper_bound")
        if self.lower_bound <= -1.0:
            raise ValueError("lower_bound must be > -1")
        return self


class FinqlConfig(BaseModel):
    """Root configuration for the finql toolbox."""

    model_config = ConfigDict(frozen=True)

    storage: StorageConfig = StorageConfig()
    aggregator: AggregatorConfig = AggregatorConfig()
    pricing: PricingConfig = PricingConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "FINQL_",
) -> FinqlConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (FINQL_STORAGE__BACKEND, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        FINQL_PRICING__MAX_ITERATIONS=50  ->  pricing.max_iterations = 50
    Comma-separated values become lists:
        FINQL_AGGREGATOR__SOURCE_PRIORITY=yahoo,manual
    """
    try:
        yaml_path = _resolve_config_path(config_path, env_prefix)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return FinqlConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None, env_prefix: str) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_var = f"{env_prefix}CONFIG"
    env_path = os.environ.get(env_var)
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from {env_var} not found: {env_path}",
                context={"field": env_var, "value": env_path},
            )
        return p

    default = Path("finql.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float,
    comma-separated strings -> list.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = dict(target.get(part) or {})
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool | list[str]:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if "," in value:
        return [v.strip() for v in value.split(",") if v.strip()]
    return value
