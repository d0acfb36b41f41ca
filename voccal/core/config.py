"""
Configuration management for the Voccal voice filter engine.
Loads settings from environment variables.
"""

from typing import List, Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "voccal"
    app_version: str = "0.1.0"
    env: Literal["development", "staging", "production"] = "development"
    debug: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1
    cors_allow_origins: List[str] = ["http://localhost:3000"]
    cors_allow_credentials: bool = True

    # Audio output device (preview path)
    audio_output_device: Optional[str] = None  # None = system default
    audio_block_size: int = 1024  # frames per device callback
    default_sample_rate: int = 44100  # Hz

    # Import limits
    max_import_bytes: int = 50 * 1024 * 1024  # 50 MB

    # Rendering
    impulse_seed: Optional[int] = None  # fixed seed for reverb impulses

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="VOCCAL_",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env == "production"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get settings instance.
    Useful for dependency injection in FastAPI.
    """
    return settings
