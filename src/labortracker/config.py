"""Configuration management for Labor Tracker."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Labor Tracker data directory
TRACKER_DIR = Path.home() / ".labor-tracker"
TRACKER_ENV_FILE = TRACKER_DIR / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LABOR_TRACKER_",
        # Load from multiple locations (later files override earlier)
        # 1. ~/.labor-tracker/.env (user config)
        # 2. .env in current directory (project-specific override)
        env_file=(str(TRACKER_ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    data_dir: Path | None = Field(
        default=None,
        description="Directory holding the contraction log and notes (default: ~/.labor-tracker)",
    )

    # Sharing
    share_base_url: str = Field(
        default="http://localhost/labor-tracker/",
        description="Base URL that share links and QR codes point to",
    )
    max_payload_chars: int = Field(
        default=2000,
        description="Maximum length of a share URL or QR payload",
    )
    qr_scale: int = Field(
        default=8,
        description="Pixels per QR module when rendering QR images",
    )

    # Camera scanning
    camera_index: int = Field(
        default=0,
        description="OpenCV camera index used for QR scanning",
    )
    scan_timeout_seconds: float = Field(
        default=60.0,
        description="How long to wait for a QR code before giving up",
    )

    # Display
    history_limit: int = Field(
        default=10,
        description="Number of recent contractions shown in the history list",
    )

    def get_data_dir(self) -> Path:
        """Get the data directory, using default if not set."""
        if self.data_dir:
            return self.data_dir.expanduser()
        return TRACKER_DIR


# Global settings instance
settings = Settings()
