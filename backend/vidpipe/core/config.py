"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    ENVIRONMENT: str = "development"

    # Database (catalog records and in-app notifications)
    DATABASE_URL: str = "sqlite+aiosqlite:///./vidpipe.db"

    # Redis (job queue, progress keys, Celery broker)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Job queue
    PROCESSING_QUEUE_NAME: str = "video-processing-queue"
    QUEUE_POLL_TIMEOUT_SECONDS: int = 5

    # Worker pool
    WORKER_CONCURRENCY: int = 2
    RENDITION_CONCURRENCY: int = 2
    SHUTDOWN_GRACE_SECONDS: float = 30.0

    # FFmpeg
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    ENCODER_PRESET: str = "fast"
    HLS_SEGMENT_SECONDS: int = 10
    ENCODE_TIMEOUT_SECONDS: float = 3600.0
    PROBE_TIMEOUT_SECONDS: float = 30.0
    THUMBNAIL_TIMEOUT_SECONDS: float = 120.0
    THUMBNAIL_OFFSET_FRACTION: float = 0.10
    THUMBNAIL_WIDTH: int = 1280

    # Scratch space for per-job working directories
    WORK_DIR: str = "/tmp/vidpipe"

    # Prometheus metrics endpoint (0 disables)
    METRICS_PORT: int = 0

    # Progress reporting
    PROGRESS_TTL_SECONDS: int = 3600

    # Storage Configuration
    # STORAGE_BACKEND: local, s3, minio
    STORAGE_BACKEND: str = "local"

    # Local Storage (when STORAGE_BACKEND=local)
    LOCAL_STORAGE_PATH: str = "./storage"

    # S3/MinIO/Compatible Storage (when STORAGE_BACKEND=s3 or minio)
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = ""
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True

    # CDN Configuration (optional, for any backend)
    CDN_DOMAIN: Optional[str] = None
    CDN_ENABLED: bool = False

    # Artifact upload retry
    UPLOAD_MAX_ATTEMPTS: int = 3
    UPLOAD_INITIAL_DELAY_SECONDS: float = 1.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Tracing
    OTLP_ENDPOINT: Optional[str] = None
    TRACING_CONSOLE_EXPORT: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
