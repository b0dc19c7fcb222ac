"""
Application configuration with environment-based settings.
All configuration is explicit, validated, and logged at startup.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AlternateBehaviorMode(str, Enum):
    """
    How a failed alternate schedule affects the primary requirement.

    FLEXIBLE: fall back to the primary schedule (default, more forgiving).
    STRICT: an attempted-but-failed alternate makes the requirement unmet.
    """
    FLEXIBLE = "FLEXIBLE"
    STRICT = "STRICT"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development but require
    explicit configuration in production environments.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    # Application
    app_name: str = Field(default="Immunization Validator", description="Application name")
    app_version: str = Field(default="3.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    # Validation
    alternate_behavior_mode: AlternateBehaviorMode = Field(
        default=AlternateBehaviorMode.FLEXIBLE,
        description="FLEXIBLE checks the primary schedule when an alternate fails; STRICT does not"
    )
    requirements_file: Path | None = Field(
        default=None,
        description="YAML requirements catalogue (defaults to the bundled Massachusetts rules)"
    )
    validator_version: str = Field(default="3.0.0", description="Reported in validation metadata")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format"
    )

    @field_validator("alternate_behavior_mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        """Accept 'strict' / 'flexible' in any case."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    def get_safe_config_dict(self) -> dict:
        """Return configuration dict suitable for the startup log."""
        config = self.model_dump(mode="json")
        if config.get("requirements_file") is None:
            config["requirements_file"] = "<bundled>"
        return config


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for the application lifetime.
    Use dependency injection in FastAPI routes for testability.
    """
    return Settings()
