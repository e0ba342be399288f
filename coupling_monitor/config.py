from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from coupling_monitor.errors import ConfigError

STORE_BACKENDS = ("mongo", "parquet")


@dataclass(frozen=True, slots=True)
class Settings:
    """Central configuration driven by environment variables."""

    graph_api_url_template: str
    store_backend: str = "mongo"
    mongo_uri: Optional[str] = None
    mongo_db: str = "coupling_monitor"
    metrics_collection: str = "metrics"
    update_log_collection: str = "update_log"
    data_dir: Path = field(default_factory=lambda: Path("./data"))

    tick_interval_seconds: float = 60.0
    default_lookback_minutes: float = 15.0
    max_gap_hours: float = 168.0
    request_timeout_seconds: float = 15.0
    store_timeout_ms: int = 5000
    shutdown_timeout_seconds: float = 30.0

    api_host: str = "0.0.0.0"
    api_port: int = 8001
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.graph_api_url_template:
            raise ConfigError("GET_WEIGHT_GRAPH_API is required")
        if self.store_backend not in STORE_BACKENDS:
            raise ConfigError(f"STORE_BACKEND must be one of {STORE_BACKENDS}, got {self.store_backend!r}")
        if self.store_backend == "mongo" and not self.mongo_uri:
            raise ConfigError("MONGO_URI is required when STORE_BACKEND=mongo")
        if self.tick_interval_seconds <= 0:
            raise ConfigError("TICK_INTERVAL_SECONDS must be positive")
        if self.default_lookback_minutes <= 0 or self.max_gap_hours <= 0:
            raise ConfigError("DEFAULT_LOOKBACK_MINUTES and MAX_GAP_HOURS must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "Settings":
        """Build settings from the process environment (and `.env` when present)."""
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ
        env = environ.get

        try:
            return cls(
                graph_api_url_template=env("GET_WEIGHT_GRAPH_API", ""),
                store_backend=env("STORE_BACKEND", "mongo").lower(),
                mongo_uri=env("MONGO_URI") or None,
                mongo_db=env("MONGO_DB", "coupling_monitor"),
                metrics_collection=env("MetricsCollection", "metrics"),
                update_log_collection=env("UpdateLogCollection", "update_log"),
                data_dir=Path(env("DATA_DIR", "./data")),
                tick_interval_seconds=float(env("TICK_INTERVAL_SECONDS", "60")),
                default_lookback_minutes=float(env("DEFAULT_LOOKBACK_MINUTES", "15")),
                max_gap_hours=float(env("MAX_GAP_HOURS", "168")),
                request_timeout_seconds=float(env("REQUEST_TIMEOUT_SECONDS", "15")),
                store_timeout_ms=int(env("STORE_TIMEOUT_MS", "5000")),
                shutdown_timeout_seconds=float(env("SHUTDOWN_TIMEOUT_SECONDS", "30")),
                api_host=env("API_HOST", "0.0.0.0"),
                api_port=int(env("API_PORT", "8001")),
                log_level=env("LOG_LEVEL", "INFO").upper(),
            )
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric setting: {exc}") from exc

    @property
    def default_lookback(self) -> timedelta:
        return timedelta(minutes=self.default_lookback_minutes)

    @property
    def max_gap(self) -> timedelta:
        return timedelta(hours=self.max_gap_hours)

    @property
    def snapshots_path(self) -> Path:
        return self.data_dir / f"{self.metrics_collection}.parquet"

    @property
    def watermarks_path(self) -> Path:
        return self.data_dir / f"{self.update_log_collection}.parquet"
