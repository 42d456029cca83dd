"""Configuration management for the trading bot."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import ConfigurationError
from ..utils.constants import BASE_CHAIN_ID, BASE_RPC_URL, FACTORY_ADDRESS

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
MODE_ENV_VAR = "BOT_MODE"

# Flat variable names from the legacy .env layout, mapped onto nested fields.
LEGACY_ENV_ALIASES: Dict[str, Tuple[str, str]] = {
    "BASE_RPC_URL": ("chain", "rpc_url"),
    "PRIVATE_KEY": ("wallet", "private_key"),
    "OPENAI_API_KEY": ("reasoning", "api_key"),
    "MAX_SLIPPAGE": ("execution", "max_slippage"),
}


class AppMode(str, Enum):
    """Supported runtime modes."""

    DRY_RUN = "dry_run"
    LIVE = "live"


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
    base_section = cast(Dict[str, Any], data.get("default", {}))
    requested_mode = os.getenv(MODE_ENV_VAR)
    if not requested_mode:
        mode_section = base_section.get("mode")
        if isinstance(mode_section, dict):
            requested_mode = cast(str, mode_section.get("active", AppMode.DRY_RUN.value))
        elif isinstance(mode_section, str):
            requested_mode = mode_section
    requested_mode = (requested_mode or AppMode.DRY_RUN.value).lower()

    if requested_mode in data and requested_mode != "default":
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested_mode]))
    if base_section:
        return base_section
    return data


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    merged = dict(_select_profile(payload))
    mode_section = merged.get("mode")
    if isinstance(mode_section, dict):
        mode_section = dict(mode_section)
        mode_section.setdefault("config_file", str(path))
        merged["mode"] = mode_section
    else:
        merged["mode"] = {"config_file": str(path)}
    return merged, path


def _legacy_env_payload() -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for env_name, (section, key) in LEGACY_ENV_ALIASES.items():
        raw_value = os.getenv(env_name)
        if raw_value is None or raw_value == "":
            continue
        payload.setdefault(section, {})[key] = raw_value
    dry_run = os.getenv("DRY_RUN")
    if dry_run is not None and dry_run != "":
        enabled = dry_run.strip().lower() in {"1", "true", "yes", "on"}
        payload.setdefault("execution", {})["dry_run"] = enabled
        payload.setdefault("mode", {})["active"] = (
            AppMode.DRY_RUN.value if enabled else AppMode.LIVE.value
        )
    return payload


class ModeConfig(BaseModel):
    """Runtime mode and operational toggles."""

    active: AppMode = Field(default=AppMode.DRY_RUN)
    config_file: Optional[Path] = None


class ChainConfig(BaseModel):
    """RPC endpoint and issuance contract coordinates."""

    rpc_url: AnyHttpUrl = Field(default=BASE_RPC_URL)
    chain_id: int = Field(default=BASE_CHAIN_ID, ge=1)
    factory_address: str = Field(default=FACTORY_ADDRESS)
    request_timeout: float = Field(default=12.0, ge=1.0, le=60.0)
    poll_interval_seconds: float = Field(default=4.0, gt=0.0, le=120.0)
    start_block: Optional[int] = Field(default=None, ge=0)
    log_chunk_size: int = Field(default=500, ge=1, le=10_000)
    gas_limit_multiplier: float = Field(default=1.2, ge=1.0, le=3.0)

    @field_validator("factory_address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith("0x") or len(value) != 42:
            raise ValueError(f"Invalid contract address: {value}")
        return value


class WalletConfig(BaseModel):
    """Signing credential for trade submission."""

    private_key: Optional[str] = None


class ReasoningConfig(BaseModel):
    """External reasoning service (LLM) settings."""

    api_key: Optional[str] = None
    model: str = Field(default="gpt-4-turbo-preview")
    base_url: Optional[AnyHttpUrl] = None
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=64)
    portfolio_max_tokens: int = Field(default=3000, ge=64)
    timeout_seconds: float = Field(default=30.0, gt=0.0, le=600.0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff_max_seconds: float = Field(default=10.0, ge=0.0)


class MetadataConfig(BaseModel):
    """Off-chain metadata resolution."""

    ipfs_gateway: AnyHttpUrl = Field(default="https://ipfs.io/ipfs/")
    timeout_seconds: float = Field(default=5.0, gt=0.0, le=60.0)
    cache_ttl_seconds: int = Field(default=900, ge=0)
    cache_size: int = Field(default=1024, ge=1)


class ExecutionConfig(BaseModel):
    """Trade submission behaviour."""

    dry_run: Optional[bool] = None
    max_slippage: float = Field(default=0.05, ge=0.0, lt=1.0)
    default_buy_amount: str = Field(default="0.01")
    inter_trade_delay_seconds: float = Field(default=1.0, ge=0.0)

    @field_validator("max_slippage", mode="before")
    @classmethod
    def _parse_slippage(cls, value: Any) -> Any:
        if isinstance(value, str):
            return float(value)
        return value


class StorageConfig(BaseModel):
    """State persistence configuration."""

    database_path: Path = Field(default=Path("./valuestor.sqlite3"))
    execution_retention_days: int = Field(default=30, ge=1)


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field(default="INFO")


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    mode: ModeConfig = Field(default_factory=ModeConfig)
    chain: ChainConfig = Field(default_factory=ChainConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    reasoning: ReasoningConfig = Field(default_factory=ReasoningConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

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
            payload, _ = _load_toml_config()
            return payload

        def legacy_env_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            return _legacy_env_payload()

        # Nested environment variables win over the flat aliases and the config file.
        return (
            init_settings,
            env_settings,
            legacy_env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _sync_mode_defaults(self) -> "AppConfig":
        # Live trading needs both the live mode and an explicit or implied dry_run=False.
        if self.mode.active == AppMode.DRY_RUN or self.execution.dry_run is None:
            self.execution.dry_run = self.mode.active == AppMode.DRY_RUN
        return self

    @property
    def dry_run(self) -> bool:
        return bool(self.execution.dry_run)


def validate_runtime(config: AppConfig) -> None:
    """Refuse to start without the credentials the selected mode needs."""

    if not config.reasoning.api_key:
        raise ConfigurationError("OPENAI_API_KEY (reasoning.api_key) is required")
    if not config.dry_run and not config.wallet.private_key:
        raise ConfigurationError("PRIVATE_KEY (wallet.private_key) is required when not in dry run mode")


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "AppMode",
    "ChainConfig",
    "ExecutionConfig",
    "MetadataConfig",
    "ModeConfig",
    "MonitoringConfig",
    "ReasoningConfig",
    "StorageConfig",
    "WalletConfig",
    "get_app_config",
    "validate_runtime",
]
