"""
Configuration loading and validation.

Loads realtime client configuration from a YAML file. Secrets (API keys) and
the daemon's identity can be resolved from environment variables so they are
never stored in config files.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class ServerConfig(BaseModel):
    url: str = "http://localhost:8000"
    api_key_env: str = "MEDSYNC_REALTIME_KEY"
    verify_tls: bool = True
    request_timeout_seconds: float = 30.0
    subscribe_timeout_seconds: float = 10.0
    heartbeat_timeout_seconds: float = 90.0

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env)


class ChannelConfig(BaseModel):
    prefix: str = "medsync-staff"
    reconnect_on_close: bool = False

    def name_for(self, identity: str) -> str:
        """Channel names are unique per identity to avoid cross-identity collisions."""
        return f"{self.prefix}-{identity}"


class RetryConfig(BaseModel):
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0

    @field_validator("initial_delay_seconds", "max_delay_seconds")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("retry delays must be positive")
        return value

    @model_validator(mode="after")
    def _max_not_below_initial(self) -> RetryConfig:
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        return self


class LifecycleConfig(BaseModel):
    reset_subscriptions_on_logout: bool = True


class IdentityConfig(BaseModel):
    value: str | None = None
    env: str = "MEDSYNC_STAFF_ID"

    def resolve(self) -> str | None:
        return self.value or os.environ.get(self.env) or None


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "json"


class MetricsConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9090


class RealtimeConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def load_config(path: str | Path) -> RealtimeConfig:
    """Load and validate realtime configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return RealtimeConfig.model_validate(raw)
