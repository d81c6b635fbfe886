import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash-thinking-exp-01-21"
DEFAULT_PORT = 3000
DEFAULT_BUCKET = "attendance-files"


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str = ""
    gemini_model: str = DEFAULT_MODEL
    gemini_timeout: Optional[float] = None
    port: int = DEFAULT_PORT
    output_dir: str = "downloads"
    temp_dir: Optional[str] = None
    retention_days: int = 30
    max_image_mb: int = 10
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_bucket: str = DEFAULT_BUCKET
    log_level: str = "INFO"

    @property
    def max_content_length(self):
        return self.max_image_mb * 1024 * 1024

    @property
    def supabase_enabled(self):
        return bool(self.supabase_url and self.supabase_key)


def _optional_float(raw):
    raw = (raw or "").strip()
    return float(raw) if raw else None


def load_settings():
    """Read settings from the environment, loading a .env file first if one exists."""
    load_dotenv()
    settings = Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip(),
        gemini_model=os.getenv("GEMINI_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL,
        gemini_timeout=_optional_float(os.getenv("GEMINI_TIMEOUT_SECONDS")),
        port=int(os.getenv("PORT") or DEFAULT_PORT),
        output_dir=os.getenv("OUTPUT_DIR", "downloads"),
        temp_dir=os.getenv("TEMP_DIR") or None,
        retention_days=int(os.getenv("OUTPUT_RETENTION_DAYS") or 30),
        max_image_mb=int(os.getenv("MAX_IMAGE_MB") or 10),
        supabase_url=os.getenv("SUPABASE_URL", "").strip(),
        supabase_key=os.getenv("SUPABASE_KEY", "").strip(),
        supabase_bucket=os.getenv("SUPABASE_BUCKET", DEFAULT_BUCKET),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set, transcription requests will fail")
    return settings
