"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation.
A config.yaml, when found, provides defaults that environment variables override.
"""

import json
import os
from functools import lru_cache
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .core.dispatcher import RetryPolicy


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        possible_paths = [
            "config.yaml",
            "../../config.yaml",
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class PulsarSettings(BaseSettings):
    """Apache Pulsar connection and topic configuration."""

    service_url: str = Field(default="pulsar://localhost:6650", description="Pulsar broker URL")
    input_topic: str = Field(default="", description="Topic carrying tracking updates")
    output_topic: str = Field(default="", description="Topic receiving republished updates")
    subscription_name: str = Field(default="trackrelay", description="Shared subscription name")
    receive_timeout_ms: int = Field(default=1000, description="Consumer receive poll timeout")
    operation_timeout_seconds: int = Field(default=30, description="Client operation timeout")
    send_timeout_ms: int = Field(default=30000, description="Producer send timeout")

    class Config:
        env_prefix = "TRACKRELAY_PULSAR_"


class GatewaySettings(BaseSettings):
    """HTTP gateway dispatch configuration."""

    timeout_seconds: int = Field(default=30, description="Per-request timeout")
    max_attempts: int = Field(default=3, ge=1, description="Total attempts including the first")
    backoff_seconds: float = Field(default=3.0, ge=0, description="Fixed delay between attempts")

    @property
    def retry_policy(self) -> RetryPolicy:
        """Retry policy built from these settings."""
        return RetryPolicy(max_attempts=self.max_attempts, backoff_seconds=self.backoff_seconds)

    class Config:
        env_prefix = "TRACKRELAY_GATEWAY_"


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Function user config (event_codes, api_gateway_url)
    user_config: Dict[str, Any] = Field(default_factory=dict, description="Function user config")

    # Component settings
    pulsar: PulsarSettings = Field(default_factory=PulsarSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)

    @field_validator("user_config", mode="before")
    def parse_user_config(cls, v: Any) -> Dict[str, Any]:
        """Parse user config from JSON string if needed."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, dict):
                    return parsed
                return {}
            except json.JSONDecodeError:
                return {}
        if isinstance(v, dict):
            return v
        return {}

    class Config:
        env_prefix = "TRACKRELAY_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "TRACKRELAY_HOST",
        ("server", "port"): "TRACKRELAY_PORT",
        ("server", "debug"): "TRACKRELAY_DEBUG",
        ("server", "log_level"): "TRACKRELAY_LOG_LEVEL",
        ("pulsar", "service_url"): "TRACKRELAY_PULSAR_SERVICE_URL",
        ("pulsar", "input_topic"): "TRACKRELAY_PULSAR_INPUT_TOPIC",
        ("pulsar", "output_topic"): "TRACKRELAY_PULSAR_OUTPUT_TOPIC",
        ("pulsar", "subscription_name"): "TRACKRELAY_PULSAR_SUBSCRIPTION_NAME",
        ("pulsar", "receive_timeout_ms"): "TRACKRELAY_PULSAR_RECEIVE_TIMEOUT_MS",
        ("gateway", "timeout_seconds"): "TRACKRELAY_GATEWAY_TIMEOUT_SECONDS",
        ("gateway", "max_attempts"): "TRACKRELAY_GATEWAY_MAX_ATTEMPTS",
        ("gateway", "backoff_seconds"): "TRACKRELAY_GATEWAY_BACKOFF_SECONDS",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value)

    # User config is a free-form mapping, passed through as JSON
    if "TRACKRELAY_USER_CONFIG" not in os.environ:
        user_config = config_data.get("user_config")
        if user_config:
            os.environ["TRACKRELAY_USER_CONFIG"] = json.dumps(user_config)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
