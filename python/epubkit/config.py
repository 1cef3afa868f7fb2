"""Library settings loaded from environment variables.

Archive Safety Configuration:
    EPUBKIT_MAX_ARCHIVE_ENTRIES: Maximum number of entries in a container
    EPUBKIT_MAX_ARCHIVE_TOTAL_UNCOMPRESSED_BYTES: Maximum summed entry size
    EPUBKIT_MAX_ARCHIVE_SINGLE_ENTRY_UNCOMPRESSED_BYTES: Maximum size of one entry
    EPUBKIT_MAX_ARCHIVE_COMPRESSION_RATIO: Maximum uncompressed/compressed ratio

Logging Configuration:
    EPUBKIT_LOG_JSON: Render logs as JSON (true) or console lines (false)
    EPUBKIT_LOG_LEVEL: Root log level name

Safety limits may be tightened but never loosened past the defaults.
"""

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

DEFAULT_MAX_ARCHIVE_ENTRIES = 10_000
DEFAULT_MAX_ARCHIVE_TOTAL_UNCOMPRESSED_BYTES = 512 * 1024 * 1024  # 512 MB
DEFAULT_MAX_ARCHIVE_SINGLE_ENTRY_UNCOMPRESSED_BYTES = 64 * 1024 * 1024  # 64 MB
DEFAULT_MAX_ARCHIVE_COMPRESSION_RATIO = 100

_LIMIT_CEILINGS = {
    "max_archive_entries": ("EPUBKIT_MAX_ARCHIVE_ENTRIES", DEFAULT_MAX_ARCHIVE_ENTRIES),
    "max_archive_total_uncompressed_bytes": (
        "EPUBKIT_MAX_ARCHIVE_TOTAL_UNCOMPRESSED_BYTES",
        DEFAULT_MAX_ARCHIVE_TOTAL_UNCOMPRESSED_BYTES,
    ),
    "max_archive_single_entry_uncompressed_bytes": (
        "EPUBKIT_MAX_ARCHIVE_SINGLE_ENTRY_UNCOMPRESSED_BYTES",
        DEFAULT_MAX_ARCHIVE_SINGLE_ENTRY_UNCOMPRESSED_BYTES,
    ),
    "max_archive_compression_ratio": (
        "EPUBKIT_MAX_ARCHIVE_COMPRESSION_RATIO",
        DEFAULT_MAX_ARCHIVE_COMPRESSION_RATIO,
    ),
}


class Settings(BaseSettings):
    """Library configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - every archive limit must be >= 1
    - no archive limit may exceed its default
    """

    # Archive safety limits
    max_archive_entries: int = Field(
        default=DEFAULT_MAX_ARCHIVE_ENTRIES, alias="EPUBKIT_MAX_ARCHIVE_ENTRIES"
    )
    max_archive_total_uncompressed_bytes: int = Field(
        default=DEFAULT_MAX_ARCHIVE_TOTAL_UNCOMPRESSED_BYTES,
        alias="EPUBKIT_MAX_ARCHIVE_TOTAL_UNCOMPRESSED_BYTES",
    )
    max_archive_single_entry_uncompressed_bytes: int = Field(
        default=DEFAULT_MAX_ARCHIVE_SINGLE_ENTRY_UNCOMPRESSED_BYTES,
        alias="EPUBKIT_MAX_ARCHIVE_SINGLE_ENTRY_UNCOMPRESSED_BYTES",
    )
    max_archive_compression_ratio: int = Field(
        default=DEFAULT_MAX_ARCHIVE_COMPRESSION_RATIO,
        alias="EPUBKIT_MAX_ARCHIVE_COMPRESSION_RATIO",
    )

    # Logging
    log_json: bool = Field(default=True, alias="EPUBKIT_LOG_JSON")
    log_level: str = Field(default="INFO", alias="EPUBKIT_LOG_LEVEL")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @field_validator(
        "max_archive_entries",
        "max_archive_total_uncompressed_bytes",
        "max_archive_single_entry_uncompressed_bytes",
        "max_archive_compression_ratio",
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def validate_limit_ceilings(self) -> "Settings":
        """Reject limits weaker than the defaults."""
        for field_name, (env_name, ceiling) in _LIMIT_CEILINGS.items():
            value = getattr(self, field_name)
            if value > ceiling:
                raise ValueError(f"{env_name}={value} exceeds the maximum of {ceiling}")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached library settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
