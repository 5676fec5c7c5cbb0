"""
Configuration Management

Centralized configuration using Pydantic Settings.
All settings loaded from environment variables (prefix FIELDCRYPT_) with sensible defaults.
"""
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field, ConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Ignore extra environment variables that aren't defined in the model
    model_config = ConfigDict(
        env_prefix="FIELDCRYPT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ============================================================
    # Database Configuration
    # ============================================================
    database_url: str = Field("", description="Database connection URL (PostgreSQL in production)")
    database_pool_size: int = Field(5, description="Database connection pool size")
    database_max_overflow: int = Field(10, description="Max overflow connections")

    # ============================================================
    # Migration Configuration
    # ============================================================
    page_size: int = Field(15, ge=1, description="Users processed per batch step")
    inline_threshold: int = Field(
        15,
        ge=0,
        description="Largest user count migrated inline instead of as a batch job"
    )

    # ============================================================
    # Key Configuration
    # ============================================================
    current_profile: str = Field("default", description="Encryption profile used for new encryptions")
    previous_profile: Optional[str] = Field(
        None,
        description="Encryption profile being retired (set during a key change)"
    )
    key_env_prefix: str = Field(
        "FIELDCRYPT_KEY_",
        description="Prefix of environment variables holding key material"
    )

    # ============================================================
    # Uninstall Schema Restore
    # ============================================================
    restored_field_length: int = Field(254, description="Column length for mail/init once plaintext again")
    mail_index_name: str = Field("user__mail", description="Index created on users.mail after uninstall")

    # ============================================================
    # Logging Configuration
    # ============================================================
    log_level: str = Field("INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)")
    log_format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string"
    )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings (singleton).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings():
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
