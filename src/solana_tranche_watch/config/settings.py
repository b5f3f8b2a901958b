"""Configuration management for the tranche watcher."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, cast

from dotenv import dotenv_values
from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..utils.constants import FIXED_TOKEN_SUPPLY, TOKEN_PROGRAM_ID

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
PROFILE_ENV_VAR = "WATCH_PROFILE"
DEFAULT_PROFILE = "default"

# Flat `.env` names from earlier deployments.
LEGACY_ENV_ALIASES: Dict[str, Tuple[str, str]] = {
    "TELEGRAM_TOKEN": ("telegram", "bot_token"),
    "CHAT_ID": ("telegram", "chat_id"),
    "SOLANA_PUBLIC_KEY": ("wallet", "public_key"),
}


class PartialFetchPolicy(str, Enum):
    """How the snapshot is written when some price batches failed.

    ``CARRY_FORWARD`` keeps the previous cap of every mint whose batch failed,
    so the next complete run compares against what was last seen. ``PERSIST``
    overwrites with the priced mints only.
    """

    CARRY_FORWARD = "carry_forward"
    PERSIST = "persist"


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _select_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    if not data:
        return {}
    base_section = cast(Dict[str, Any], data.get(DEFAULT_PROFILE, {}))
    requested = (os.getenv(PROFILE_ENV_VAR) or DEFAULT_PROFILE).lower()
    if requested != DEFAULT_PROFILE and requested in data:
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested]))
    if base_section:
        return base_section
    # Flat files without profile tables are used as-is.
    return {key: value for key, value in data.items() if isinstance(value, dict)}


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    return _select_profile(payload), path


def _legacy_env_overrides() -> Dict[str, Any]:
    dotenv_file = env_path()
    values: Dict[str, Optional[str]] = dict(dotenv_values(dotenv_file)) if dotenv_file.is_file() else {}
    values.update(os.environ)
    overrides: Dict[str, Any] = {}
    for env_name, (section, key) in LEGACY_ENV_ALIASES.items():
        value = values.get(env_name)
        if value:
            overrides.setdefault(section, {})[key] = value
    return overrides


class RPCConfig(BaseModel):
    """RPC configuration for Solana endpoints."""

    primary_url: AnyHttpUrl = Field(default="https://api.mainnet-beta.solana.com")
    fallback_urls: List[AnyHttpUrl] = Field(default_factory=list)
    request_timeout: float = Field(default=12.0, ge=1.0, le=60.0)
    max_retry_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=1.0, ge=0.0)
    commitment: str = Field(default="confirmed")
    token_program_id: str = Field(default=TOKEN_PROGRAM_ID)

    @field_validator("fallback_urls", mode="before")
    @classmethod
    def _unique_urls(cls, value: Iterable[AnyHttpUrl]) -> List[AnyHttpUrl]:
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]
        seen: set[str] = set()
        unique: List[AnyHttpUrl] = []
        for url in value:
            if str(url) not in seen:
                unique.append(url)
                seen.add(str(url))
        return unique


class WalletConfig(BaseModel):
    """Wallet whose holdings are watched."""

    public_key: Optional[str] = None


class PricingConfig(BaseModel):
    """Raydium mint price API settings."""

    base_url: AnyHttpUrl = Field(default="https://api-v3.raydium.io")
    price_endpoint: str = Field(default="/mint/price")
    # Raydium rejects mint lists longer than this.
    batch_size: int = Field(default=99, ge=1, le=500)
    max_concurrent_batches: int = Field(default=4, ge=1, le=32)
    http_timeout: float = Field(default=10.0, ge=1.0, le=45.0)
    max_retry_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=1.0, ge=0.0)
    supply_constant: float = Field(default=float(FIXED_TOKEN_SUPPLY), gt=0.0)
    cache_ttl_seconds: int = Field(default=30, ge=0)


class TelegramConfig(BaseModel):
    """Telegram Bot API delivery settings."""

    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    api_base_url: AnyHttpUrl = Field(default="https://api.telegram.org")
    timeout: float = Field(default=6.0, ge=1.0, le=30.0)
    disable_notification: bool = False

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class StorageConfig(BaseModel):
    """Comparison snapshot and export artifact locations."""

    snapshot_path: Path = Field(default=Path("./tmp_data_previous.json"))
    export_dir: Path = Field(default=Path("."))
    bonded_csv_name: str = Field(default="tmp_data_bonded.csv")
    unbonded_csv_name: str = Field(default="tmp_data_unbonded.csv")
    export_enabled: bool = True


class SchedulerConfig(BaseModel):
    """Cadence of the watch loop."""

    interval_seconds: float = Field(default=3_600.0, gt=0.0)
    run_on_start: bool = True
    align_to_interval: bool = True


class OrchestratorConfig(BaseModel):
    """Behaviour of a single run."""

    partial_fetch_policy: PartialFetchPolicy = Field(default=PartialFetchPolicy.CARRY_FORWARD)


class MonitoringConfig(BaseModel):
    """Logging and metrics export."""

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", pattern="^(json|text)$")
    log_priced_tokens: bool = True
    # Prometheus textfile written after every cycle when set.
    metrics_textfile: Optional[Path] = None


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    rpc: RPCConfig = Field(default_factory=RPCConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    config_file: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, path = _load_toml_config()
            if path is not None:
                payload = {**payload, "config_file": path}
            return payload

        def legacy_env_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            return _legacy_env_overrides()

        # Runtime environment variables win over the static config file.
        return (
            init_settings,
            env_settings,
            legacy_env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _apply_helius_rpc(self) -> "AppConfig":
        helius_url = os.getenv("HELIUS_RPC_URL")
        if not helius_url:
            helius_key = os.getenv("HELIUS_API_KEY")
            if helius_key:
                helius_url = f"https://mainnet.helius-rpc.com/?api-key={helius_key.strip()}"
        if helius_url:
            previous_primary = str(self.rpc.primary_url)
            self.rpc.primary_url = helius_url
            fallbacks = [str(url) for url in self.rpc.fallback_urls]
            if previous_primary not in fallbacks:
                self.rpc.fallback_urls = [previous_primary, *fallbacks]
        return self


def env_path() -> Path:
    """Return the default path for the `.env` file."""

    return Path.cwd() / ".env"


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "MonitoringConfig",
    "OrchestratorConfig",
    "PartialFetchPolicy",
    "PricingConfig",
    "RPCConfig",
    "SchedulerConfig",
    "StorageConfig",
    "TelegramConfig",
    "WalletConfig",
    "env_path",
    "get_app_config",
]
