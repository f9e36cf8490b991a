"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

from media_ingest.services.analysis import ReferenceMode
from media_ingest.services.playback import PlaybackMode

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    storage_bucket: str = "videos"
    redis_url: str | None = None
    analysis_base_url: str = "http://localhost:8000"
    analysis_batch_path: str = "/api/v1/batch/analyze-batch"
    analysis_reference_mode: ReferenceMode = ReferenceMode.SIGNED_URL
    analysis_max_attempts: int = 1
    analysis_retry_backoff_seconds: float = 5.0
    auto_analyze: bool = True
    session_ttl_seconds: int = 7200
    upload_url_ttl_seconds: int = 7200
    max_chunk_count: int = 10_000
    playback_url_ttl_seconds: int = 86400
    playback_mode: PlaybackMode = PlaybackMode.ALL_SEGMENTS
    max_segment_seconds: float = 120.0
    max_concurrent_segmentations: int = 2
    segment_upload_concurrency: int = 4
    segmentation_work_dir: str | None = None
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    transcoder_timeout_seconds: float | None = 3600
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
