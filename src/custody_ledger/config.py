"""
Configuration management using Pydantic Settings.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CUSTODY_",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Custody Ledger"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./custody.db"

    # Storage paths
    data_dir: Path = Path("./data")
    blob_dir: Path = Path("./data/blobs")

    # Ledger transaction recording (audit trail only)
    ledger_enabled: bool = True

    # Default actor recorded on automatic checkpoints
    system_actor: str = "system"

    # Upload limits
    max_upload_bytes: int = 100 * 1024 * 1024

    def model_post_init(self, __context) -> None:
        """Ensure directories exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.blob_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
