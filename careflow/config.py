from __future__ import annotations

import os
from typing import Optional, Literal

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_STEP_TIMEOUT,
    DEFAULT_SWEEP_BATCH_SIZE,
    DEFAULT_SWEEP_INTERVAL,
)


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class EngineConfig(BaseModel):
    """Runtime limits for the execution runner and resume sweep."""

    step_timeout: float = Field(default=DEFAULT_STEP_TIMEOUT, gt=0)
    webhook_timeout: float = Field(default=10.0, gt=0)
    sweep_batch_size: int = Field(default=DEFAULT_SWEEP_BATCH_SIZE, gt=0)
    sweep_interval: float = Field(default=DEFAULT_SWEEP_INTERVAL, gt=0)


class CareflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    engine: EngineConfig = EngineConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> CareflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CAREFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("CAREFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = CareflowConfig(**data)
    else:
        config = CareflowConfig()

    env_db_url = os.getenv("CAREFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
