"""Exporter configuration loaded from environment variables.

Environment Variables:
    SUREHUB_EMAIL: Account email address (required)
    SUREHUB_PASSWORD: Account password (required)
    SUREHUB_API_URL: API base URL (optional, default https://app.api.surehub.io)
    SUREHUB_POLL_INTERVAL_S: Seconds between poll cycles (optional, default 60, must be > 1)
    SUREHUB_REQUEST_TIMEOUT_S: Per-request timeout in seconds (optional, default 30)
    EXPORTER_LISTEN_ADDRESS: ``[host]:port`` for the metrics server (optional, default :8080)
    EXPORTER_LOG_LEVEL: Root log level (optional, default INFO)
    EXPORTER_LOG_FORMAT: ``text`` or ``json`` (optional, default text)
    EXPORTER_LOG_DIR: Directory for JSON log files (optional)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from surehub_exporter.client import DEFAULT_API_URL, DEFAULT_REQUEST_TIMEOUT_S
from surehub_exporter.scheduler import MIN_POLL_INTERVAL_S

DEFAULT_LISTEN_ADDRESS = ":8080"
DEFAULT_POLL_INTERVAL_S = 60.0
_ANY_HOST = "0.0.0.0"

_ENV_BY_FIELD = {
    "email": "SUREHUB_EMAIL",
    "password": "SUREHUB_PASSWORD",
    "api_url": "SUREHUB_API_URL",
    "poll_interval_s": "SUREHUB_POLL_INTERVAL_S",
    "request_timeout_s": "SUREHUB_REQUEST_TIMEOUT_S",
    "listen_host": "EXPORTER_LISTEN_ADDRESS",
    "listen_port": "EXPORTER_LISTEN_ADDRESS",
    "log_level": "EXPORTER_LOG_LEVEL",
    "log_format": "EXPORTER_LOG_FORMAT",
    "log_dir": "EXPORTER_LOG_DIR",
}


class ConfigError(Exception):
    """Raised when exporter configuration is missing or invalid."""


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``:port``) into a host and an integer port."""
    host, sep, port_str = address.strip().rpartition(":")
    if not sep:
        raise ConfigError(f"EXPORTER_LISTEN_ADDRESS must look like [host]:port, got: {address!r}")
    try:
        port = int(port_str)
    except ValueError as exc:
        raise ConfigError(
            f"EXPORTER_LISTEN_ADDRESS port must be an integer, got: {port_str!r}"
        ) from exc
    if not 0 < port < 65536:
        raise ConfigError(f"EXPORTER_LISTEN_ADDRESS port out of range: {port}")
    return host.strip("[]") or _ANY_HOST, port


class ExporterConfig(BaseModel):
    """Configuration for the SureHub exporter runtime."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    # SureHub account
    email: str
    password: str = Field(repr=False)

    # SureHub API
    api_url: str = DEFAULT_API_URL
    request_timeout_s: float = Field(default=DEFAULT_REQUEST_TIMEOUT_S, gt=0)

    # Polling
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S

    # Metrics server
    listen_host: str = _ANY_HOST
    listen_port: int = Field(default=8080, gt=0, lt=65536)

    # Logging
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    log_dir: Path | None = None

    @field_validator("email", "password")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be a non-empty string")
        return value

    @field_validator("poll_interval_s")
    @classmethod
    def _minimum_interval(cls, value: float) -> float:
        if value <= MIN_POLL_INTERVAL_S:
            raise ValueError(f"must be greater than {MIN_POLL_INTERVAL_S} seconds")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def listen_address(self) -> str:
        return f"{self.listen_host}:{self.listen_port}"

    @classmethod
    def from_env(cls, **overrides: Any) -> ExporterConfig:
        """Load configuration from the environment; non-``None`` overrides win."""
        values: dict[str, Any] = {}

        email = os.environ.get("SUREHUB_EMAIL", "")
        if not email.strip():
            raise ConfigError("SUREHUB_EMAIL is not set")
        values["email"] = email

        password = os.environ.get("SUREHUB_PASSWORD", "")
        if not password:
            raise ConfigError("SUREHUB_PASSWORD is not set")
        values["password"] = password

        values["api_url"] = os.environ.get("SUREHUB_API_URL", DEFAULT_API_URL)

        values["poll_interval_s"] = _float_env("SUREHUB_POLL_INTERVAL_S", DEFAULT_POLL_INTERVAL_S)
        values["request_timeout_s"] = _float_env(
            "SUREHUB_REQUEST_TIMEOUT_S", DEFAULT_REQUEST_TIMEOUT_S
        )

        listen_address = overrides.pop("listen_address", None) or os.environ.get(
            "EXPORTER_LISTEN_ADDRESS", DEFAULT_LISTEN_ADDRESS
        )
        values["listen_host"], values["listen_port"] = parse_listen_address(listen_address)

        values["log_level"] = os.environ.get("EXPORTER_LOG_LEVEL", "INFO")
        values["log_format"] = os.environ.get("EXPORTER_LOG_FORMAT", "text")
        log_dir = os.environ.get("EXPORTER_LOG_DIR")
        values["log_dir"] = Path(log_dir) if log_dir else None

        values.update({key: value for key, value in overrides.items() if value is not None})

        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigError(_describe_validation_error(exc)) from exc


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got: {raw}") from exc


def _describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        field_name = str(error["loc"][0]) if error["loc"] else "config"
        source = _ENV_BY_FIELD.get(field_name, field_name)
        problems.append(f"{source}: {error['msg']}")
    return "invalid configuration: " + "; ".join(problems)
