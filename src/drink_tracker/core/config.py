"""Tracker settings.

Sources, lowest precedence first: field defaults, ``TRACKER_*`` environment
variables (``__`` separates sections, e.g.
``TRACKER_SNAPSHOT__INTERVAL_SECONDS=60``), the TOML file, then
command-line overrides.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import tomli
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=5000, ge=1, le=65535)


class SnapshotConfig(BaseModel):
    """Periodic snapshot artifacts and startup restore."""

    enabled: bool = True
    interval_seconds: float = Field(default=120.0, gt=0)
    directory: str = "./snapshots"
    max_files: int = Field(default=30, ge=1)
    restore_on_start: bool = True
    save_on_shutdown: bool = True


class AggregationConfig(BaseModel):
    window_minutes: int = Field(default=60, ge=1)
    bucket_seconds: int = Field(default=60, ge=1)
    baseline_refresh_seconds: float = Field(default=60.0, gt=0)
    # full stats push to every dashboard, independent of writes
    resync_interval_seconds: float = Field(default=30.0, gt=0)


class BroadcastConfig(BaseModel):
    heartbeat_interval_seconds: float = Field(default=15.0, gt=0)
    # frames buffered per subscriber before it is dropped as too slow
    queue_size: int = Field(default=256, ge=1)


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TRACKER_", env_nested_delimiter="__")

    seed_default_items: bool = True

    server: ServerConfig = Field(default_factory=ServerConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Build ``Settings`` from an optional TOML file plus overrides.

    A missing file is not an error; the tracker then runs on defaults and
    environment variables.  Override sections are merged key by key into
    the file's sections.
    """
    data: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if path.is_file():
            with path.open("rb") as fh:
                data = tomli.load(fh)
            # An all-commented section parses as {}; leave it to env and defaults.
            data = {k: v for k, v in data.items() if v != {}}
    if overrides:
        data = _merge(data, overrides)
    return Settings(**data)
