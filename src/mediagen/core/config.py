"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Vertex AI
    vertex_ai_location: str = Field(default="us-central1", alias="VERTEX_AI_LOCATION")
    vertex_ai_project_id: str = Field(default="", alias="VERTEX_AI_PROJECT_ID")
    vertex_ai_imagen_model_id: str = Field(
        default="imagen-3.0-generate-002", alias="VERTEX_AI_IMAGEN_MODEL_ID"
    )
    vertex_ai_upscale_model_id: str = Field(
        default="imagegeneration@002", alias="VERTEX_AI_UPSCALE_MODEL_ID"
    )
    vertex_ai_veo_model_id: str = Field(
        default="veo-2.0-generate-001", alias="VERTEX_AI_VEO_MODEL_ID"
    )
    vertex_ai_lyria_model_id: str = Field(
        default="lyria-1.0-generate", alias="VERTEX_AI_LYRIA_MODEL_ID"
    )
    vertex_ai_storage_uri: str = Field(default="", alias="VERTEX_AI_STORAGE_URI")
    vertex_ai_timeout_seconds: float = Field(default=60.0, alias="VERTEX_AI_TIMEOUT_SECONDS")

    # Cloud Storage
    storage_bucket_name: str = Field(default="media-assets", alias="STORAGE_BUCKET_NAME")
    gcs_signed_url_expiration_hours: int = Field(
        default=24, alias="GCS_SIGNED_URL_EXPIRATION_HOURS"
    )

    # Text-to-Speech
    tts_default_voice: str = Field(default="en-US-Standard-A", alias="TTS_DEFAULT_VOICE")
    tts_language_code: str = Field(default="en-US", alias="TTS_LANGUAGE_CODE")

    # Video job chain
    video_poll_interval_ms: int = Field(default=5000, alias="VIDEO_POLL_INTERVAL_MS")
    video_max_polling_attempts: int = Field(default=20, alias="VIDEO_MAX_POLLING_ATTEMPTS")

    # Job worker
    job_worker_poll_interval_seconds: float = Field(
        default=1.0, alias="JOB_WORKER_POLL_INTERVAL_SECONDS"
    )
    job_worker_batch_size: int = Field(default=10, alias="JOB_WORKER_BATCH_SIZE")
    job_orphan_timeout_seconds: float = Field(
        default=600.0, alias="JOB_ORPHAN_TIMEOUT_SECONDS"
    )

    # Stale generation sweep
    stale_generation_minutes: int = Field(default=30, alias="STALE_GENERATION_MINUTES")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with every missing variable listed. Skipped in test
        environments so unit tests can build Settings without credentials.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.vertex_ai_project_id:
            missing.append("VERTEX_AI_PROJECT_ID: Google Cloud project hosting Vertex AI")

        if not self.vertex_ai_storage_uri:
            missing.append(
                "VERTEX_AI_STORAGE_URI: gs:// prefix where generated media is written"
            )
        elif not self.vertex_ai_storage_uri.startswith("gs://"):
            missing.append("VERTEX_AI_STORAGE_URI: must start with gs://")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        renderer_chain = [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer_chain = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderer_chain,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
