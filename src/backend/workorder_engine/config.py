from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Work Order Sign-off Engine"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_SERVICE_KEY: str = ""

    # OCR
    TESSERACT_CMD: str = "/usr/local/bin/tesseract"  # macOS default
    CROP_DPI: int = 200
    OCR_RETRY_CONFIDENCE: float = 0.55
    OCR_RETRY_PAD_PCT: float = 0.015

    # Confidence labels (raw OCR confidence in 0..1)
    HIGH_CONFIDENCE_THRESHOLD: float = 0.9
    MEDIUM_CONFIDENCE_THRESHOLD: float = 0.6

    # Rendering
    MAX_PDF_SIZE_BYTES: int = 10 * 1024 * 1024
    MAX_RENDERED_WIDTH: int = 1400
    DEFAULT_RENDER_SCALE: float = 2.0
    RENDER_TOLERANCE_PX: int = 8

    # Work-order store
    STORE_LOOKUP_ATTEMPTS: int = 3
    STORE_LOOKUP_BACKOFF_SECONDS: float = 0.25

    # Storage
    SIGNED_BUCKET: str = "signed-work-orders"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
