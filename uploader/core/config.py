from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"


class AuthSettings(BaseModel):
    """Bearer token validation for inbound requests."""

    jwks_url: str = Field(
        default="http://uaa.local/token_keys",
        description="JWKS endpoint publishing the identity provider's signing keys.",
    )
    audience: str | None = Field(
        default=None,
        description="Expected audience claim. Audience is not checked when unset.",
    )
    required: bool = Field(
        default=True,
        description="Reject requests without a valid bearer token with 401.",
    )
    jwks_cache_ttl_seconds: int = Field(
        default=600,
        ge=0,
        le=86_400,
        description="How long fetched signing keys are reused before refreshing.",
    )


class StorageSettings(BaseModel):
    """Where uploaded files are streamed to."""

    bucket: str = Field(
        default="uploader-files",
        description="Cloud Storage bucket receiving uploaded files.",
    )
    chunk_size: int = Field(
        default=8 * 1024 * 1024,
        ge=256 * 1024,
        description="Resumable upload chunk size; must be a multiple of 256 KiB.",
    )
    progress_log_interval_bytes: int = Field(
        default=50 * 1024 * 1024,
        ge=1,
        description="Emit an upload progress log line every time this many bytes are read.",
    )


class Settings(BaseSettings):
    """Service configuration loaded from YAML with environment overrides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="UPLOADER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    project_name: str = "uploader"
    api_prefix: str = ""
    das_url: str = Field(
        default="http://das.local",
        description="Base URL of the data acquisition service receiving upload callbacks.",
    )
    user_management_url: str = Field(
        default="http://user-management.local",
        description="Base URL of the service listing the organizations a user belongs to.",
    )
    callback_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for outbound calls to the data acquisition and user management services.",
    )
    auth: AuthSettings = Field(default_factory=AuthSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Merge config sources so env/.env override YAML values."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._yaml_config_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_config_settings() -> dict[str, Any]:
        try:
            with CONFIG_PATH.open("r", encoding="utf-8") as file:
                data = yaml.safe_load(file) or {}
        except FileNotFoundError as exc:
            raise RuntimeError(f"Config file not found at {CONFIG_PATH}") from exc
        except yaml.YAMLError as exc:
            raise RuntimeError(f"Failed to parse configuration file {CONFIG_PATH}") from exc

        if not isinstance(data, dict):
            raise RuntimeError(
                f"Invalid configuration format in {CONFIG_PATH}: expected a mapping."
            )

        return data


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
