"""Environment-based configuration for imageproc."""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from IMAGEPROC_* environment variables.

    The listening port is also read from a bare ``PORT`` variable.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMAGEPROC_",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(default=3000, ge=1, le=65535, validation_alias=AliasChoices("PORT", "IMAGEPROC_PORT", "port"))
    public_host: str = "localhost"

    # Storage layout
    media_root: Path = Path("images")
    upload_subdir: str = "uploads"
    output_subdir: str = "processed"

    # Encoding
    default_format: str = "webp"

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_file_size: int = Field(default=20_971_520, ge=1)

    log_level: str = "INFO"

    @property
    def upload_dir(self) -> Path:
        """Directory holding staged uploads and canonical originals."""
        return self.media_root / self.upload_subdir

    @property
    def output_dir(self) -> Path:
        """Directory holding variants and cropped outputs."""
        return self.media_root / self.output_subdir

    @property
    def public_base_url(self) -> str:
        return f"http://{self.public_host}:{self.port}"


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
