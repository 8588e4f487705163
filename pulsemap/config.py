"""
Runtime settings for pulsemap.

Usage:
    from pulsemap.config import settings
    print(settings.redis_url)

Every field can be overridden with a ``PULSEMAP_`` prefixed environment variable
(e.g. ``PULSEMAP_BATCH_SIZE=25``) or a ``.env`` file in the working directory.
"""
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PULSEMAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Collection backend ---
    api_base_url: str = "http://127.0.0.1:8123"
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "events"
    data_dir: Path = Path("data")

    # --- Client delivery ---
    flush_interval_seconds: float = 30.0
    batch_size: int = 10
    max_buffered_events: int = 500
    http_timeout_seconds: float = 5.0
    spool_path: Path = Path("data") / "spool" / "unload.jsonl"

    # --- Heatmap ---
    heatmap_grid_size: int = 100
    heatmap_radius: int = 3
    heatmap_visibility_threshold: float = 0.01
    heatmap_default_opacity: float = 0.7

    # --- Enrichment ---
    geoip_url_template: str = "https://ipapi.co/{ip}/json/"
    geoip_timeout_seconds: float = 3.0

    # --- Workers ---
    writer_batch_size: int = 100    # write every 100 envelopes
    writer_flush_seconds: float = 10.0  # or every 10s, whichever first

    # --- Application ---
    cors_origins: str = "*"
    debug: bool = False

    @property
    def parquet_dir(self) -> Path:
        return self.data_dir / "parquet"

    @property
    def cors_origins_list(self):
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
