"""Application settings loaded from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./tracksync.db"
    echo: bool = False
    pool_pre_ping: bool = True
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


# Hey future me, the service_* fields are the SHARED service account (one Spotify account that
# owns every exported playlist). Per-user credentials live in the platform_credentials table, not
# here. rate_limit_retries is how often _api_request sleeps through a 429 itself - anything with a
# Retry-After above max_inline_retry_after is surfaced as RateLimitExceededError immediately so a
# caller can degrade to cached data instead of hanging for 5 minutes.
class SpotifySettings(BaseModel):
    """Spotify Web API settings."""

    client_id: str = ""
    client_secret: str = ""
    api_base_url: str = "https://api.spotify.com/v1"
    token_url: str = "https://accounts.spotify.com/api/token"  # nosec B105
    service_refresh_token: str = ""
    service_access_token: str = ""
    request_timeout: float = 30.0
    rate_limit_retries: int = Field(default=2, ge=0)
    max_inline_retry_after: float = Field(default=10.0, ge=0)

    @property
    def has_client_credentials(self) -> bool:
        """Check if client id and secret are both configured."""
        return bool(self.client_id and self.client_secret)


class SyncSettings(BaseModel):
    """Playlist synchronization tuning."""

    batch_size: int = Field(default=100, ge=1, le=100)
    batch_delay_seconds: float = Field(default=0.5, ge=0)
    remove_concurrency: int = Field(default=2, ge=1)
    playlist_cache_ttl_seconds: int = Field(default=600, ge=0)
    playlist_cache_max_entries: int = Field(default=1000, ge=1)
    cover_upload_delay_seconds: float = Field(default=2.0, ge=0)
    mosaic_grace_seconds: float = Field(default=3.0, ge=0)
    title_max_length: int = Field(default=100, ge=1)
    description_max_length: int = Field(default=300, ge=4)
    default_title: str = "My Tracksync Playlist"
    verify_reorder: bool = True
    max_move_operations: int = Field(default=5, ge=0)
    token_refresh_margin_seconds: int = Field(default=60, ge=0)
    default_limit: int = Field(default=24, ge=0)


class CoverStorageSettings(BaseModel):
    """Durable cover image storage settings."""

    backend: Literal["local", "supabase"] = "local"
    local_dir: Path = Path("./covers")
    public_base_url: str = "/covers"
    supabase_url: str = ""
    supabase_key: str = ""
    bucket: str = "playlist-covers"
    fallback_to_local: bool = True
    min_bytes: int = Field(default=1024, ge=1)
    max_retries: int = Field(default=5, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    db_max_attempts: int = Field(default=3, ge=1)
    db_retry_delay: float = Field(default=1.0, ge=0)
    user_agent: str = "Tracksync-CoverBot/1.0"
    download_timeout: float = 30.0
    max_platform_upload_bytes: int = 256 * 1024
    warn_platform_upload_bytes: int = 80 * 1024

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """Normalize base URL so filenames can be joined with a single slash."""
        return value.rstrip("/")


class Settings(BaseSettings):
    """Root settings object.

    Nested sections are read from prefixed env vars using a double underscore,
    e.g. DATABASE__URL, SPOTIFY__CLIENT_ID or COVER__BACKEND=supabase.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "tracksync"
    log_level: str = "INFO"
    log_json_format: bool = False

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    cover: CoverStorageSettings = Field(default_factory=CoverStorageSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Reject log levels the logging module does not know."""
        upper = value.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return upper

    def get_sqlite_db_path(self) -> Path | None:
        """Return the on-disk SQLite file path, or None for other backends/in-memory."""
        url = self.database.url
        if not url.startswith("sqlite") or ":memory:" in url:
            return None
        _, _, raw_path = url.partition(":///")
        return Path(raw_path) if raw_path else None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
