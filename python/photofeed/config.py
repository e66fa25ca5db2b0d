"""Application settings loaded from environment variables.

Environment Configuration:
    PHOTOFEED_ENV: Deployment environment (local | test | staging | prod)
    CACHE_DIR: Root directory for all persisted cache state
    TOKEN_ENCRYPTION_KEY: Base64 32-byte key for "e-" album tokens (required in staging/prod)

Cache lifetimes (seconds):
    ALBUM_CACHE_TTL_S, IMAGE_CACHE_TTL_S, MAPPING_TTL_S, IMAGE_RETENTION_TTL_S

Background jobs:
    SWEEP_INTERVAL_S, REFRESH_INTERVAL_S, REFRESH_BATCH_SIZE, REFRESH_BATCH_DELAY_S,
    MAX_TRACKED_TOKENS, TRACKED_TOKEN_TTL_S

Augmentation pipeline:
    MAX_CONCURRENT_AUGMENTATIONS, MIN_MEDIA_DURATION_S, MIN_TRANSCRIPT_CHARS,
    QUALITY_MAX_MARKER_DENSITY, QUALITY_MIN_MEANINGFUL_WORDS, plus tool paths and timeouts.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - TTLs, intervals, batch size and concurrency must be >= 1
    - IMAGE_QUALITY must be within 1..100
    - QUALITY_MAX_MARKER_DENSITY must be within (0, 1]
    - TOKEN_ENCRYPTION_KEY is required in staging and prod only
    """

    photofeed_env: Environment = Field(default=Environment.LOCAL, alias="PHOTOFEED_ENV")
    cache_dir: Path = Field(default=Path("cache"), alias="CACHE_DIR")
    token_encryption_key: str | None = Field(default=None, alias="TOKEN_ENCRYPTION_KEY")

    # Cache lifetimes
    album_cache_ttl_s: int = Field(default=2 * 60 * 60, alias="ALBUM_CACHE_TTL_S")
    image_cache_ttl_s: int = Field(default=2 * 60 * 60, alias="IMAGE_CACHE_TTL_S")
    mapping_ttl_s: int = Field(default=24 * 60 * 60, alias="MAPPING_TTL_S")
    image_retention_ttl_s: int = Field(default=30 * 24 * 60 * 60, alias="IMAGE_RETENTION_TTL_S")
    sweep_interval_s: int = Field(default=60 * 60, alias="SWEEP_INTERVAL_S")

    # Recently-used tokens and periodic refresh
    max_tracked_tokens: int = Field(default=100, alias="MAX_TRACKED_TOKENS")
    tracked_token_ttl_s: int = Field(default=24 * 60 * 60, alias="TRACKED_TOKEN_TTL_S")
    refresh_interval_s: int = Field(default=30 * 60, alias="REFRESH_INTERVAL_S")
    refresh_batch_size: int = Field(default=5, alias="REFRESH_BATCH_SIZE")
    refresh_batch_delay_s: float = Field(default=2.0, alias="REFRESH_BATCH_DELAY_S")

    # Image derivatives
    max_image_width: int = Field(default=1920, alias="MAX_IMAGE_WIDTH")
    max_image_height: int = Field(default=1920, alias="MAX_IMAGE_HEIGHT")
    image_quality: int = Field(default=85, alias="IMAGE_QUALITY")
    max_source_image_bytes: int = Field(
        default=25 * 1024 * 1024, alias="MAX_SOURCE_IMAGE_BYTES"
    )  # 25 MB
    image_fetch_timeout_s: float = Field(default=20.0, alias="IMAGE_FETCH_TIMEOUT_S")
    album_fetch_timeout_s: float = Field(default=30.0, alias="ALBUM_FETCH_TIMEOUT_S")

    # Augmentation pipeline
    augmentation_enabled: bool = Field(default=True, alias="AUGMENTATION_ENABLED")
    max_concurrent_augmentations: int = Field(default=1, alias="MAX_CONCURRENT_AUGMENTATIONS")
    min_media_duration_s: float = Field(default=10.0, alias="MIN_MEDIA_DURATION_S")
    min_transcript_chars: int = Field(default=20, alias="MIN_TRANSCRIPT_CHARS")
    quality_max_marker_density: float = Field(default=0.8, alias="QUALITY_MAX_MARKER_DENSITY")
    quality_min_meaningful_words: int = Field(default=20, alias="QUALITY_MIN_MEANINGFUL_WORDS")
    conservative_summary_words: int = Field(default=60, alias="CONSERVATIVE_SUMMARY_WORDS")
    media_download_timeout_s: float = Field(default=60.0, alias="MEDIA_DOWNLOAD_TIMEOUT_S")
    audio_extract_timeout_s: float = Field(default=300.0, alias="AUDIO_EXTRACT_TIMEOUT_S")
    probe_timeout_s: float = Field(default=30.0, alias="PROBE_TIMEOUT_S")
    transcribe_timeout_s: float = Field(default=900.0, alias="TRANSCRIBE_TIMEOUT_S")

    # External tools
    ffmpeg_binary: str = Field(default="ffmpeg", alias="FFMPEG_BINARY")
    ffprobe_binary: str = Field(default="ffprobe", alias="FFPROBE_BINARY")
    whisper_binary: str = Field(default="whisper-cli", alias="WHISPER_BINARY")
    whisper_model_path: str = Field(
        default="models/ggml-base.en.bin", alias="WHISPER_MODEL_PATH"
    )

    # Summarization provider
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    summary_model: str = Field(default="gpt-4o-mini", alias="SUMMARY_MODEL")
    summary_timeout_s: int = Field(default=60, alias="SUMMARY_TIMEOUT_S")
    summary_max_tokens: int = Field(default=600, alias="SUMMARY_MAX_TOKENS")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure numeric settings are sane and secrets exist where required."""
        positive_fields = {
            "ALBUM_CACHE_TTL_S": self.album_cache_ttl_s,
            "IMAGE_CACHE_TTL_S": self.image_cache_ttl_s,
            "MAPPING_TTL_S": self.mapping_ttl_s,
            "IMAGE_RETENTION_TTL_S": self.image_retention_ttl_s,
            "SWEEP_INTERVAL_S": self.sweep_interval_s,
            "MAX_TRACKED_TOKENS": self.max_tracked_tokens,
            "TRACKED_TOKEN_TTL_S": self.tracked_token_ttl_s,
            "REFRESH_INTERVAL_S": self.refresh_interval_s,
            "REFRESH_BATCH_SIZE": self.refresh_batch_size,
            "MAX_CONCURRENT_AUGMENTATIONS": self.max_concurrent_augmentations,
            "MAX_IMAGE_WIDTH": self.max_image_width,
            "MAX_IMAGE_HEIGHT": self.max_image_height,
        }
        for name, value in positive_fields.items():
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")

        if not 1 <= self.image_quality <= 100:
            raise ValueError(f"IMAGE_QUALITY must be within 1..100, got {self.image_quality}")

        if not 0 < self.quality_max_marker_density <= 1:
            raise ValueError(
                "QUALITY_MAX_MARKER_DENSITY must be within (0, 1], "
                f"got {self.quality_max_marker_density}"
            )

        if self.refresh_batch_delay_s < 0:
            raise ValueError("REFRESH_BATCH_DELAY_S must be >= 0")

        if self.photofeed_env in (Environment.STAGING, Environment.PROD):
            if not self.token_encryption_key:
                raise ValueError(
                    f"TOKEN_ENCRYPTION_KEY is required for PHOTOFEED_ENV={self.photofeed_env.value}"
                )

        return self

    @property
    def albums_dir(self) -> Path:
        """Directory holding one JSON record per album token."""
        return self.cache_dir / "albums"

    @property
    def images_dir(self) -> Path:
        """Directory holding one derivative blob per secure ID."""
        return self.cache_dir / "images"

    @property
    def mappings_dir(self) -> Path:
        """Directory holding forward and lookup mapping records."""
        return self.cache_dir / "mappings"

    @property
    def augmentations_dir(self) -> Path:
        """Directory holding one JSON record per augmented item."""
        return self.cache_dir / "augmentations"

    @property
    def scratch_dir(self) -> Path:
        """Directory for temporary media and audio files."""
        return self.cache_dir / "scratch"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
