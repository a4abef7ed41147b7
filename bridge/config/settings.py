"""Bridge configuration loading and validation."""

from __future__ import annotations

import json
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal

import yaml
from pydantic import AnyUrl, Field, PositiveInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("./config/bridge.yaml"),
    Path("./config/bridge.yml"),
    Path("~/.openclaw/bridge.yaml"),
)


class BridgeSettings(BaseSettings):
    """Validated settings for the gateway bridge."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="OPENCLAW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Connection + identity
    gateway_url: AnyUrl = Field(
        default="ws://127.0.0.1:18789",
        description="Gateway WebSocket endpoint.",
    )
    gateway_token: str | None = Field(
        default=None,
        description="Bearer token presented in the connect request.",
        repr=False,
    )
    transport: Literal["dummy", "websocket"] = Field(
        default="websocket",
        description="Socket implementation to use.",
    )
    protocol_min: PositiveInt = Field(default=3, description="Lowest protocol version offered.")
    protocol_max: PositiveInt = Field(default=3, description="Highest protocol version offered.")
    client_id: str = Field(default="cli", description="Client identifier sent in the connect request.")
    client_version: str = Field(default="0.1.0", description="Client version sent in the connect request.")
    client_platform: str = Field(
        default_factory=lambda: sys.platform,
        description="Platform reported in the connect request.",
    )
    client_mode: str = Field(default="cli", description="Client mode reported in the connect request.")
    role: str = Field(default="operator", description="Role requested from the gateway.")
    scopes: list[str] = Field(
        default_factory=lambda: ["operator.read", "operator.write", "operator.admin"],
        description="Scopes requested from the gateway.",
    )
    caps: list[str] = Field(default_factory=list, description="Capabilities advertised to the gateway.")
    locale: str = Field(default="en-US", description="Locale reported in the connect request.")
    user_agent: str = Field(default="openclaw-bridge/0.1.0", description="User agent reported in the connect request.")

    # Timers & reliability
    auto_reconnect: bool = Field(
        default=True,
        description="Reconnect automatically after an unexpected close.",
    )
    reconnect_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Flat delay before a reconnection attempt.",
    )
    connect_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Seconds allowed from socket open to a successful handshake.",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Default deadline for outbound requests.",
    )
    invoke_timeout_seconds: float = Field(
        default=0,
        ge=0,
        description="Deadline for server-initiated invocations (0 disables).",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the bridge process.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("gateway_url")
    @classmethod
    def _require_ws_scheme(cls, value: AnyUrl) -> AnyUrl:
        if value.scheme not in {"ws", "wss"}:
            raise ValueError(f"gateway_url must use ws:// or wss://, got {value.scheme}://")
        return value

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BridgeSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._yaml_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_settings_source(settings_cls: type[BridgeSettings] | None = None) -> Dict[str, Any]:
        for path in BridgeSettings._resolve_candidate_paths():
            data = BridgeSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("OPENCLAW_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        for path in DEFAULT_CONFIG_LOCATIONS:
            yield path.expanduser()

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file():
            return None
        suffix = path.suffix.lower()
        try:
            with path.open("r", encoding="utf-8") as handle:
                if suffix in {".yaml", ".yml"}:
                    raw = yaml.safe_load(handle)
                elif suffix == ".json":
                    raw = json.load(handle)
                else:
                    return None
        except OSError as exc:
            raise RuntimeError(f"Failed to read bridge config file {path}") from exc
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid bridge config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Bridge config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> BridgeSettings:
    """Return memoized bridge settings."""

    return BridgeSettings()
