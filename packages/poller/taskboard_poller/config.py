"""
Configuration loading and validation.

The poller reads a YAML file; tokens are resolved from environment variables
named in the file and are never stored in it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field


class BoardConfig(BaseModel):
    url: str = "http://localhost:8000"
    api_token_env: str = "MC_API_TOKEN"
    verify_tls: bool = True
    request_timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_base_seconds: float = 1.0

    @property
    def api_token(self) -> str | None:
        return os.environ.get(self.api_token_env)


class GatewayConfig(BaseModel):
    url: str = "http://localhost:8080"
    api_key_env: str = "OPENCLAW_GATEWAY_KEY"
    cron_timeout_seconds: int = 60

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env)


class PollingConfig(BaseModel):
    batch_size: int = Field(default=5, ge=1, le=100)
    interval_seconds: float = 30.0
    process_webhook_retries: bool = False


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "json"


class MetricsConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9091


class PollerConfig(BaseModel):
    board: BoardConfig = Field(default_factory=BoardConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def load_config(path: str | Path) -> PollerConfig:
    """Load and validate poller configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return PollerConfig.model_validate(raw)
