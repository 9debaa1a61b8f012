"""
Configuration Management for Ledger Sync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: Process-level configuration is centralized here.
The remote endpoint URL is deliberately NOT one of these settings: it is
user data kept in the local store and re-read on every sync attempt, so a
change takes effect on the next operation without a restart.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StatusPolicy(str, Enum):
    """How reconciliation treats a remote status that differs from the local one."""
    REMOTE_WINS = "remote_wins"  # Remote overwrites (unless a local change is unconfirmed)
    MONOTONIC = "monotonic"      # Remote may only move the status forward


class LocalStoreSettings(BaseSettings):
    """Local persisted store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGERSYNC_STORE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path.home() / ".ledgersync",
        description="Directory holding one JSON file per store partition"
    )
    audit_log_limit: int = Field(
        default=500,
        ge=0,
        description="Maximum audit events retained in the local store"
    )


class RemoteSettings(BaseSettings):
    """Remote spreadsheet endpoint behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGERSYNC_REMOTE_",
        extra="ignore"
    )

    default_endpoint_url: Optional[str] = Field(
        default=None,
        description="Endpoint seeded into a fresh store; users can change it later"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout (script endpoints are slow to cold start)"
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a request that fails at the transport level"
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base of the exponential wait between attempts"
    )
    status_policy: StatusPolicy = Field(
        default=StatusPolicy.REMOTE_WINS,
        description="Reconciliation policy for conflicting statuses"
    )

    @field_validator('default_endpoint_url')
    @classmethod
    def blank_url_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class GeminiSettings(BaseSettings):
    """Gemini receipt reader configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Gemini API key; receipt reading is disabled without one"
    )
    model_name: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=512,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def store(self) -> LocalStoreSettings:
        return LocalStoreSettings()

    @property
    def remote(self) -> RemoteSettings:
        return RemoteSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings sections load.

    Returns a dict of {section_name: is_valid} plus "<section>_error" keys.
    """
    results = {}
    settings = get_settings()

    for name in ("store", "remote", "gemini"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
