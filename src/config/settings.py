"""Process settings for the mediator: environment variables plus the bundled descriptor."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path

from pydantic import ValidationError

from src.models import MediatorConfig

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigError(Exception):
    """Raised when startup configuration cannot be loaded or fetched."""


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_float(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class MediatorSettings:
    register: bool = True
    api_url: str = "https://localhost:8080"
    username: str = "root@openhim.org"
    password: str = "openhim-password"
    trust_self_signed: bool = True
    heartbeat_interval: float = 10.0
    mediator_config_path: str = "config/mediator.json"
    tls_key_path: str = "tls/key.pem"
    tls_cert_path: str = "tls/cert.pem"
    tls_ca_path: str = "tls/ca.pem"
    http_timeout: float | None = None
    # Seconds uvicorn waits for open connections (including callers held after
    # a failed forward) before cancelling them on shutdown.
    shutdown_timeout: float = 5.0
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000

    @classmethod
    def from_env(cls) -> MediatorSettings:
        """Create settings from environment variables, falling back to defaults."""
        defaults = cls()
        try:
            port = int(os.environ.get("MEDIATOR_PORT", str(defaults.port)))
        except ValueError as exc:
            raise ConfigError("MEDIATOR_PORT must be an integer") from exc
        heartbeat = _env_float("MEDIATOR_HEARTBEAT_INTERVAL")
        shutdown_timeout = _env_float("MEDIATOR_SHUTDOWN_TIMEOUT")
        return cls(
            register=_env_bool("MEDIATOR_REGISTER", defaults.register),
            api_url=os.environ.get("OPENHIM_API_URL", defaults.api_url),
            username=os.environ.get("OPENHIM_USERNAME", defaults.username),
            password=os.environ.get("OPENHIM_PASSWORD", defaults.password),
            trust_self_signed=_env_bool(
                "OPENHIM_TRUST_SELF_SIGNED", defaults.trust_self_signed,
            ),
            heartbeat_interval=heartbeat if heartbeat is not None else defaults.heartbeat_interval,
            mediator_config_path=os.environ.get(
                "MEDIATOR_CONFIG_PATH", defaults.mediator_config_path,
            ),
            tls_key_path=os.environ.get("TLS_KEY_PATH", defaults.tls_key_path),
            tls_cert_path=os.environ.get("TLS_CERT_PATH", defaults.tls_cert_path),
            tls_ca_path=os.environ.get("TLS_CA_PATH", defaults.tls_ca_path),
            http_timeout=_env_float("MEDIATOR_HTTP_TIMEOUT"),
            shutdown_timeout=(
                shutdown_timeout if shutdown_timeout is not None else defaults.shutdown_timeout
            ),
            host=os.environ.get("MEDIATOR_HOST", defaults.host),
            port=port,
        )

    def with_overrides(self, **changes: object) -> MediatorSettings:
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def load_mediator_config(path: str | Path) -> MediatorConfig:
    """Load and validate the mediator descriptor JSON file."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read mediator config {path}: {exc}") from exc
    try:
        return MediatorConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid mediator config {path}: {exc}") from exc
