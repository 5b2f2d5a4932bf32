"""Daemon configuration: monitored apps and notification receivers."""

from __future__ import annotations

import json
import logging
import tomllib
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from core.utils.durations import parse_duration

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_PATHS = (Path("/etc/notdeadyet"), Path("."))
CONFIG_SUFFIXES = (".yaml", ".yml", ".json", ".toml")


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded or is inconsistent."""


class ReceiverConfig(BaseModel):
    """Fields shared by every receiver type."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)


class PushoverReceiverConfig(ReceiverConfig):
    """Pushover credentials; priority 2 (emergency) also uses retry/expire."""

    user_key: str = Field(min_length=1)
    token: str = Field(min_length=1)
    priority: int = Field(default=0, ge=-2, le=2)
    retry: timedelta = timedelta(minutes=1)
    expire: timedelta = timedelta(hours=1)

    @field_validator("retry", "expire", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @model_validator(mode="after")
    def _check_emergency_settings(self) -> PushoverReceiverConfig:
        # Limits enforced by the Pushover API for emergency messages
        if self.retry < timedelta(seconds=30):
            raise ValueError("pushover retry must be at least 30s")
        if not timedelta(0) < self.expire <= timedelta(hours=3):
            raise ValueError("pushover expire must be between 0s and 3h")
        return self


class WebhookReceiverConfig(ReceiverConfig):
    url: str = Field(min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=10.0, gt=0.0)


class EmailReceiverConfig(ReceiverConfig):
    smtp_host: str = Field(min_length=1)
    smtp_port: int = 25
    sender: str = Field(min_length=1)
    recipients: list[str] = Field(min_length=1)


class ReceiversConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    pushover: list[PushoverReceiverConfig] = Field(default_factory=list)
    webhook: list[WebhookReceiverConfig] = Field(default_factory=list)
    email: list[EmailReceiverConfig] = Field(default_factory=list)

    def all(self) -> list[ReceiverConfig]:
        return [*self.pushover, *self.webhook, *self.email]


class AppConfig(BaseModel):
    """Identity of one monitored application."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    token: str = Field(min_length=1)
    timeout: timedelta
    repeat_interval: timedelta
    notify: tuple[str, ...] = ()

    @field_validator("timeout", "repeat_interval", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @field_validator("timeout", "repeat_interval")
    @classmethod
    def _positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("duration must be positive")
        return value


class Config(BaseModel):
    model_config = ConfigDict(frozen=True)

    listen: str = ":80"
    expose_status: bool = False
    apps: list[AppConfig] = Field(default_factory=list)
    receivers: ReceiversConfig = Field(default_factory=ReceiversConfig)

    @model_validator(mode="after")
    def _check_references(self) -> Config:
        receiver_names: set[str] = set()
        for receiver in self.receivers.all():
            if receiver.name in receiver_names:
                raise ValueError(f'receiver "{receiver.name}" is defined twice')
            receiver_names.add(receiver.name)

        app_names: set[str] = set()
        tokens: set[str] = set()
        for app in self.apps:
            if app.name in app_names:
                raise ValueError(f'app "{app.name}" is defined twice')
            app_names.add(app.name)
            if app.token in tokens:
                raise ValueError(f'app "{app.name}" reuses the token of another app')
            tokens.add(app.token)
            for receiver_name in app.notify:
                if receiver_name not in receiver_names:
                    raise ValueError(
                        f'app "{app.name}": receiver "{receiver_name}" does not exist'
                    )
        return self

    def listen_address(self) -> tuple[str, int]:
        host, sep, port = self.listen.rpartition(":")
        if not sep or not port.isdigit():
            raise ConfigError(f"invalid listen address: {self.listen!r}")
        return host.strip("[]") or "0.0.0.0", int(port)  # nosec


def _read_file(path: Path) -> dict[str, Any]:
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        with path.open(encoding="utf-8") as fh:
            return yaml.safe_load(fh) or {}
    if suffix == ".json":
        with path.open(encoding="utf-8") as fh:
            return json.load(fh)
    if suffix == ".toml":
        with path.open("rb") as fh:
            return tomllib.load(fh)
    raise ConfigError(f"unsupported config file type: {path}")


def find_config_file(search_paths: tuple[Path, ...] = DEFAULT_SEARCH_PATHS) -> Path:
    for directory in search_paths:
        for suffix in CONFIG_SUFFIXES:
            candidate = directory / f"config{suffix}"
            if candidate.is_file():
                return candidate
    raise ConfigError(
        "no config file found in " + ", ".join(str(p) for p in search_paths)
    )


def load_config(path: str | Path | None = None) -> Config:
    """Read and validate the config file, searching default paths if needed."""
    config_path = Path(path) if path else find_config_file()
    if not config_path.is_file():
        raise ConfigError(f"cannot read config file: {config_path}")

    try:
        data = _read_file(config_path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot parse config file {config_path}: {exc}") from exc

    try:
        config = Config.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid config file {config_path}: {exc}") from exc

    logger.debug(f"Configuration parsed from {config_path}")
    return config
