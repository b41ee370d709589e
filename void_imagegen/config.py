"""Configuration settings for void_imagegen.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_work_dir() -> Path:
    """Return the default scratch workspace for the bootstrap toolchain."""
    return Path.home() / ".cache" / "void-imagegen" / "bootstrap"


def _default_log_dir() -> Path:
    """Return the default directory for per-build command logs."""
    return Path.home() / ".local" / "state" / "void-imagegen" / "logs"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the VOID_IMG_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="VOID_IMG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        description="Scratch workspace for the static xbps toolchain",
    )
    log_dir: Path = Field(
        default_factory=_default_log_dir,
        description="Directory for external command logs",
    )
    guest_installer: Path = Field(
        default=Path("/usr/local/lib/guest-tooling/install"),
        description="External guest-tooling installer program",
    )

    # Downloads
    verify_checksum: bool = Field(
        default=True,
        description="Verify the toolchain archive against sha256sums.txt",
    )
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for the toolchain download (seconds)",
    )

    # Archive
    extra_excludes: list[str] = Field(
        default_factory=list,
        description="Additional root-relative glob patterns to leave out of the archive",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
