"""
chainwatch -- Centralised configuration via pydantic-settings.

Watcher, chain, store and logging options.  Environment variables override
defaults using the ``CHAINWATCH_`` prefix (e.g. ``CHAINWATCH_FINALITY_DEPTH=20``).

Usage:
    from chainwatch.config.settings import get_settings
    settings = get_settings()
    print(settings.rpc_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WatcherSettings(BaseSettings):
    """Top-level configuration for the contract event watcher."""

    # ------------------------------------------------------------------
    # General
    # ------------------------------------------------------------------
    instance_id: str = "chainwatch-1"
    environment: str = "production"  # production | staging | development

    # ------------------------------------------------------------------
    # Chain
    # ------------------------------------------------------------------
    rpc_url: str = "http://localhost:8545"
    rpc_timeout_seconds: float = 10.0
    contract_address: str = ""  # empty -> resolved later
    contract_abi_path: str = "./abi/contract.json"
    watched_events: list[str] = Field(default_factory=list)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    finality_depth: int = Field(default=12, ge=0)
    event_poll_interval: int = Field(default=15000, gt=0)  # milliseconds

    # ------------------------------------------------------------------
    # Sync store
    # ------------------------------------------------------------------
    store_backend: Literal["memory", "file", "rocksdb", "redis"] = "file"
    store_data_dir: str = "./data/sync"
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = "chainwatch:"

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------
    metrics_enabled: bool = True
    prometheus_port: int = 8000
    log_level: str = "INFO"
    log_format: str = "json"  # json | text

    # ------------------------------------------------------------------
    # Pydantic-settings config
    # ------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_prefix="CHAINWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> WatcherSettings:
    """Process-wide settings, built once from the environment.

    Tests that change env vars must call ``get_settings.cache_clear()``.
    """
    return WatcherSettings()
