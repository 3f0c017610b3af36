"""
config/settings.py — throttle-bridge Runtime Settings

Merges config.yaml (structure/defaults) with environment variables and .env.
Pydantic-powered — all fields are validated and typed.

  - Field validators reject bad ports, capacities, paths and addresses at
    parse time
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a numbered list of every problem found
  - load_settings() respects BRIDGE_CONFIG as a fallback when no explicit
    config_path argument is given
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

_KNOWN_SECTIONS = {"upstream", "gateway", "throttle", "bus", "logging", "client_id"}


def _check_port(v: int, name: str, *, allow_zero: bool = False) -> int:
    lo = 0 if allow_zero else 1
    if not (lo <= v <= 65535):
        raise ValueError(f"{name} must be between {lo} and 65535, got {v}")
    return v


def _check_path(v: str, name: str) -> str:
    if not v.startswith("/"):
        raise ValueError(f"{name} must start with '/', got '{v}'")
    return v


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class UpstreamConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 12090
    client_name: str = "ThrottleBridge"

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        return _check_port(v, "upstream.port")


class GatewayConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080
    ws_path: str = "/ws"
    health_path: str = "/health"
    max_message_bytes: int = 2**20

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        # 0 binds an ephemeral port
        return _check_port(v, "gateway.port", allow_zero=True)

    @field_validator("ws_path")
    @classmethod
    def _valid_ws_path(cls, v: str) -> str:
        return _check_path(v, "gateway.ws_path")

    @field_validator("health_path")
    @classmethod
    def _valid_health_path(cls, v: str) -> str:
        return _check_path(v, "gateway.health_path")

    @field_validator("max_message_bytes")
    @classmethod
    def _positive_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("gateway.max_message_bytes must be >= 1")
        return v


class ThrottleConfig(BaseModel):
    address: str = "S67"

    @field_validator("address")
    @classmethod
    def _valid_address(cls, v: str) -> str:
        if not v or v != v.strip() or any(ch.isspace() for ch in v):
            raise ValueError("throttle.address must be non-empty and contain no whitespace")
        if "<;>" in v:
            raise ValueError("throttle.address may not contain the '<;>' separator")
        return v


class BusConfig(BaseModel):
    upstream_capacity: int = 32
    gateway_capacity: int = 10

    @field_validator("upstream_capacity", "gateway_capacity")
    @classmethod
    def _positive_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("bus capacities must be >= 1")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_output: bool = True
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    throttle-bridge runtime settings.

    Priority (highest to lowest):
      1. Environment variables  (UPSTREAM__HOST, GATEWAY__PORT, ...)
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # Sent upstream in the HU line; unique per process unless pinned
    client_id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    throttle: ThrottleConfig = Field(default_factory=ThrottleConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; the environment must win over them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @field_validator("upstream", mode="before")
    @classmethod
    def _coerce_upstream(cls, v: Any) -> Any:
        return UpstreamConfig(**v) if isinstance(v, dict) else v

    @field_validator("gateway", mode="before")
    @classmethod
    def _coerce_gateway(cls, v: Any) -> Any:
        return GatewayConfig(**v) if isinstance(v, dict) else v

    @field_validator("throttle", mode="before")
    @classmethod
    def _coerce_throttle(cls, v: Any) -> Any:
        return ThrottleConfig(**v) if isinstance(v, dict) else v

    @field_validator("bus", mode="before")
    @classmethod
    def _coerce_bus(cls, v: Any) -> Any:
        return BusConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def log_max_bytes(self) -> int:
        return self.logging.max_file_size_mb * 1024 * 1024

    @property
    def throttle_address(self) -> str:
        return self.throttle.address

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Field validators catch type/value errors at parse time; this method
        catches cross-field problems they can't see.
        """
        errors: list[str] = []

        if not self.upstream.host.strip():
            errors.append("upstream.host must not be empty.")

        if not self.upstream.client_name.strip():
            errors.append("upstream.client_name must not be empty.")

        if self.gateway.ws_path == self.gateway.health_path:
            errors.append(
                f"gateway.ws_path and gateway.health_path are both "
                f"'{self.gateway.ws_path}'. Give them different paths."
            )

        if not self.client_id.strip():
            errors.append("client_id must not be empty. Remove it to get a random id.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nthrottle-bridge startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your environment "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader
# ─────────────────────────────────────────────────────────────────────────────

def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. BRIDGE_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("BRIDGE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings by merging config.yaml with environment variables.

    A missing config file is not an error — defaults apply.
    """
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    if not isinstance(yaml_data, dict):
        raise ValueError("Config file must contain a mapping at the top level")
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
    return Settings(**init_kwargs)
