"""
Application Configuration - Environment Variable Management.
Loads and validates configuration from .env file.
"""
import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from project root
PROJECT_ROOT = Path(__file__).parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

if ENV_FILE.exists():
    load_dotenv(ENV_FILE)
    logger.info(f"Loaded environment from {ENV_FILE}")
else:
    logger.warning(f".env file not found at {ENV_FILE}")


def _is_configured(value: Optional[str]) -> bool:
    return bool(value and not value.startswith("PASTE_"))


@dataclass
class AIConfig:
    """Generative model configuration (Gemini image/text, Veo video)."""
    google_api_key: Optional[str] = None
    image_model: str = "gemini-3-pro-image-preview"
    director_model: str = "gemini-3-pro"
    analysis_model: str = "gemini-2.5-flash"
    video_model: str = "veo-3.1-generate-preview"

    @property
    def has_google(self) -> bool:
        return _is_configured(self.google_api_key)


@dataclass
class PathsConfig:
    """File system paths configuration."""
    data_dir: Path
    media_dir: Path
    work_dir: Path

    @classmethod
    def detect(cls) -> "PathsConfig":
        """Resolve paths from environment, creating directories as needed."""
        data_dir = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
        data_dir.mkdir(parents=True, exist_ok=True)

        media_dir = Path(os.getenv("MEDIA_DIR", str(data_dir / "media")))
        media_dir.mkdir(parents=True, exist_ok=True)

        # Scratch space for assembly renders
        work_dir = Path(os.getenv("WORK_DIR", str(data_dir / "work")))
        work_dir.mkdir(parents=True, exist_ok=True)

        return cls(data_dir=data_dir, media_dir=media_dir, work_dir=work_dir)


@dataclass
class StorageConfig:
    """Object storage configuration."""
    backend: str = "local"  # local | s3
    public_media_url: str = "/media"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "us-east-1"
    bucket_name: Optional[str] = None
    aws_public_url: Optional[str] = None

    @property
    def has_s3(self) -> bool:
        return bool(
            _is_configured(self.aws_access_key_id)
            and _is_configured(self.aws_secret_access_key)
            and self.bucket_name
        )


@dataclass
class PipelineConfig:
    """Video generation pipeline tuning."""
    # Veo accepts roughly 2 requests per minute
    veo_min_request_interval: float = 30.0
    veo_poll_interval: float = 10.0
    veo_max_wait_seconds: float = 600.0
    clip_length_seconds: int = 8
    existing_clip_limit: int = 10

    # Per-stage task ceilings (seconds)
    planning_time_limit: int = 300
    composites_time_limit: int = 600
    clips_time_limit: int = 1800
    assembly_time_limit: int = 900
    demo_analysis_time_limit: int = 600

    # Retry policy shared by stage tasks
    max_retries: int = 2
    retry_backoff: int = 1
    retry_backoff_max: int = 10


@dataclass
class AppConfig:
    """Main Application Configuration."""
    ai: AIConfig
    paths: PathsConfig
    storage: StorageConfig
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    database_path: str = "data/app.db"
    broker_url: str = "redis://localhost:6379/0"
    result_backend: str = "redis://localhost:6379/1"
    debug: bool = False

    def __post_init__(self):
        """Validate critical configuration."""
        if self.storage.backend == "s3" and not self.storage.has_s3:
            logger.warning("STORAGE_BACKEND=s3 but AWS credentials or bucket are missing")

    def validate(self) -> dict:
        """Validate configuration and return status."""
        return {
            "ai": {
                "google_configured": self.ai.has_google,
                "image_model": self.ai.image_model,
                "video_model": self.ai.video_model,
            },
            "storage": {
                "backend": self.storage.backend,
                "s3_configured": self.storage.has_s3,
            },
            "database": {
                "path": self.database_path,
            },
            "ready_for_generation": self.ai.has_google,
        }

    def log_status(self):
        """Log configuration status (without exposing keys)."""
        status = self.validate()

        logger.info("=" * 50)
        logger.info("Configuration Status:")
        logger.info(f"  Google AI API: {'OK' if status['ai']['google_configured'] else 'NOT CONFIGURED'}")
        logger.info(f"  Image model: {self.ai.image_model}")
        logger.info(f"  Video model: {self.ai.video_model}")
        logger.info(f"  Storage: {status['storage']['backend']}")
        logger.info(f"  Database: {self.database_path}")
        logger.info(f"  Data Dir: {self.paths.data_dir}")
        logger.info(f"  Veo spacing: {self.pipeline.veo_min_request_interval}s")
        logger.info("=" * 50)

        if not status["ready_for_generation"]:
            logger.warning("GOOGLE_API_KEY not configured - generation stages will fail")


def load_config() -> AppConfig:
    """Load configuration from environment variables."""
    ai_config = AIConfig(
        google_api_key=os.getenv("GOOGLE_API_KEY"),
        image_model=os.getenv("IMAGE_MODEL", "gemini-3-pro-image-preview"),
        director_model=os.getenv("DIRECTOR_MODEL", "gemini-3-pro"),
        analysis_model=os.getenv("ANALYSIS_MODEL", "gemini-2.5-flash"),
        video_model=os.getenv("VIDEO_MODEL", "veo-3.1-generate-preview"),
    )

    storage_config = StorageConfig(
        backend=os.getenv("STORAGE_BACKEND", "local").lower(),
        public_media_url=os.getenv("PUBLIC_MEDIA_URL", "/media"),
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        aws_region=os.getenv("AWS_REGION", "us-east-1"),
        bucket_name=os.getenv("AWS_BUCKET_NAME"),
        aws_public_url=os.getenv("AWS_PUBLIC_URL"),
    )

    pipeline_config = PipelineConfig(
        veo_min_request_interval=float(os.getenv("VEO_MIN_REQUEST_INTERVAL", "30")),
        veo_poll_interval=float(os.getenv("VEO_POLL_INTERVAL", "10")),
        veo_max_wait_seconds=float(os.getenv("VEO_MAX_WAIT_SECONDS", "600")),
        max_retries=int(os.getenv("TASK_MAX_RETRIES", "2")),
    )

    return AppConfig(
        ai=ai_config,
        paths=PathsConfig.detect(),
        storage=storage_config,
        pipeline=pipeline_config,
        database_path=os.getenv("DATABASE_PATH", "data/app.db"),
        broker_url=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
        result_backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1"),
        debug=os.getenv("DEBUG", "false").lower() == "true",
    )


# Global config instance
config = load_config()
