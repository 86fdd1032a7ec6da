"""
Configuration Models

Pydantic models for application configuration validation.
"""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from resonext.utils.errors import ConfigurationError


class StorageBackend(str, Enum):
    """Where account documents and sign-ins live."""

    SUPABASE = "supabase"
    LOCAL = "local"


class SupabaseConfig(BaseModel):
    """Supabase project credentials."""

    url: str = ""
    anon_key: str = ""
    table: str = Field(default="user_data")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Strip whitespace and trailing slash; require http(s) when set."""
        v = v.strip().rstrip("/")
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("Supabase URL must start with http:// or https://")
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.anon_key)


class GatewayConfig(BaseModel):
    """Generative Assist Gateway settings."""

    model: Optional[str] = None
    max_attempts: int = Field(default=1, ge=1, le=5)
    search_max_turns: int = Field(default=12, gt=0, le=50)
    timeout_seconds: int = Field(default=300, gt=0)


class StorageConfig(BaseModel):
    """Storage backend selection."""

    backend: StorageBackend = StorageBackend.SUPABASE
    local_dir: str = ".resonext"
    request_timeout_seconds: float = Field(default=30.0, gt=0)


class AppConfig(BaseModel):
    """Application configuration model."""

    supabase: SupabaseConfig = Field(default_factory=SupabaseConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = "logs/resonext.log"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    def validate_credentials(self) -> None:
        """Check that the selected backend can be reached.

        Raises:
            ConfigurationError: If the Supabase backend is selected without
                both a URL and an anon key
        """
        if self.storage.backend is StorageBackend.SUPABASE and not self.supabase.is_configured:
            raise ConfigurationError(
                "Supabase is not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY "
                "or run `resonext setup`."
            )

    @classmethod
    def from_env(cls, base: Optional[dict[str, Any]] = None) -> "AppConfig":
        """Build configuration from environment variables.

        Args:
            base: Optional config dict that environment values override

        Returns:
            AppConfig: Validated configuration

        Environment:
            SUPABASE_URL, SUPABASE_ANON_KEY, RESONEXT_STORAGE_BACKEND,
            RESONEXT_LOCAL_DIR, RESONEXT_GATEWAY_MODEL, RESONEXT_LOG_LEVEL
        """
        data: dict[str, Any] = json.loads(json.dumps(base or {}))
        overrides = {
            ("supabase", "url"): os.getenv("SUPABASE_URL"),
            ("supabase", "anon_key"): os.getenv("SUPABASE_ANON_KEY"),
            ("storage", "backend"): os.getenv("RESONEXT_STORAGE_BACKEND"),
            ("storage", "local_dir"): os.getenv("RESONEXT_LOCAL_DIR"),
            ("gateway", "model"): os.getenv("RESONEXT_GATEWAY_MODEL"),
        }
        for (section, key), value in overrides.items():
            if value:
                data.setdefault(section, {})[key] = value

        log_level = os.getenv("RESONEXT_LOG_LEVEL")
        if log_level:
            data["log_level"] = log_level

        return cls(**data)

    @classmethod
    def load(cls, config_path: Path | str | None = None) -> "AppConfig":
        """Load configuration from a JSON file, then apply environment overrides.

        Args:
            config_path: Path to config JSON (defaults to config/resonext.json;
                a missing default file is not an error)

        Returns:
            AppConfig: Validated configuration

        Raises:
            FileNotFoundError: If an explicit config file doesn't exist
            ValueError: If config validation fails
        """
        if config_path is None:
            config_path = Path("config/resonext.json")
            if not config_path.exists():
                return cls.from_env()
        else:
            config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}. "
                f"Copy {config_path.stem}.example.json to {config_path.name}"
            )

        with open(config_path, "r", encoding="utf-8") as f:
            config_data = json.load(f)

        return cls.from_env(config_data)
