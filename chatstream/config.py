"""Configuration models and loaders for chatstream.

This module defines the client configuration schema and how values are loaded
from YAML plus environment variable overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_CONFIG_PATH = "chatstream/config.yaml"


class LoggingConfig(BaseModel):
    """Logging-related configuration."""

    model_config = ConfigDict(populate_by_name=True)

    level: str = "INFO"
    json_logs: bool = Field(default=False, alias="json")


class ClientConfig(BaseModel):
    """Top-level chat backend client configuration."""

    model_config = ConfigDict(extra="forbid")

    api_base_url: str
    api_key: str | None = None
    auth_token: str | None = None

    connect_timeout_seconds: float | None = None
    request_timeout_seconds: float | None = None
    # None keeps a stalled stream read waiting until the server sends more data.
    stream_read_timeout_seconds: float | None = None

    clear_correlation_id_when_absent: bool = True
    logging: LoggingConfig | None = None

    @field_validator("api_base_url")
    @classmethod
    def _validate_api_base_url(cls, value: str) -> str:
        """Require an absolute http(s) URL and strip trailing slashes."""
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise ValueError("api_base_url must be an absolute http(s) URL, e.g. https://api.example.com")
        return value.rstrip("/")

    @field_validator(
        "connect_timeout_seconds",
        "request_timeout_seconds",
        "stream_read_timeout_seconds",
    )
    @classmethod
    def _validate_positive_timeouts(cls, value: float | None) -> float | None:
        """Timeouts must be positive when set."""
        if value is None:
            return None
        if value <= 0:
            raise ValueError("timeouts must be > 0")
        return value

    @model_validator(mode="after")
    def _apply_defaults(self) -> "ClientConfig":
        """Fill optional values that were left unset."""
        if self.connect_timeout_seconds is None:
            self.connect_timeout_seconds = 10.0
        if self.request_timeout_seconds is None:
            self.request_timeout_seconds = 30.0
        if self.logging is None:
            self.logging = LoggingConfig()
        return self


def _load_yaml(path: str | None) -> dict[str, Any]:
    """Load a YAML file into a dictionary.

    Missing files are treated as empty config for environment-only deployments.
    """
    if not path:
        return {}
    cfg_path = Path(path)
    if not cfg_path.exists():
        return {}
    with cfg_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be object: {path}")
    return data


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _override_from_env(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides on top of file configuration."""
    env_map = {
        "api_base_url": "CHATSTREAM_API_BASE_URL",
        "api_key": "CHATSTREAM_API_KEY",
        "auth_token": "CHATSTREAM_AUTH_TOKEN",
        "connect_timeout_seconds": "CHATSTREAM_CONNECT_TIMEOUT_SECONDS",
        "request_timeout_seconds": "CHATSTREAM_REQUEST_TIMEOUT_SECONDS",
        "stream_read_timeout_seconds": "CHATSTREAM_STREAM_READ_TIMEOUT_SECONDS",
        "clear_correlation_id_when_absent": "CHATSTREAM_CLEAR_CORRELATION_ID_WHEN_ABSENT",
        "logging.level": "CHATSTREAM_LOG_LEVEL",
        "logging.json_logs": "CHATSTREAM_LOG_JSON",
    }

    out = dict(data)
    out["logging"] = dict(out.get("logging") or {})

    for key, env_name in env_map.items():
        value = os.getenv(env_name)
        if value is None:
            continue

        if key in {
            "connect_timeout_seconds",
            "request_timeout_seconds",
            "stream_read_timeout_seconds",
        }:
            out[key] = float(value)
        elif key == "clear_correlation_id_when_absent":
            out[key] = _parse_bool(value)
        elif key == "logging.json_logs":
            out["logging"]["json"] = _parse_bool(value)
        elif key == "logging.level":
            out["logging"]["level"] = value
        else:
            out[key] = value

    return out


def load_config(path: str | None = None) -> ClientConfig:
    """Load, merge, and validate client configuration."""
    final_path = path or os.getenv("CHATSTREAM_CONFIG") or DEFAULT_CONFIG_PATH
    raw = _load_yaml(final_path)
    raw = _override_from_env(raw)
    return ClientConfig.model_validate(raw)
