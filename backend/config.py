"""
Runtime configuration.

All settings come from the environment (or a local .env file) and are read
once into a single Settings object.  Services take that object in their
constructor instead of reading os.environ on every call, so a missing API
key shows up as an explicit check at the seam that needs it.
"""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    db_path: str = "/data/smartreceipts.db"
    cors_origins: str = ""

    # Structuring (Anthropic Messages API)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5"
    ai_timeout_seconds: float = 60.0

    # Field validation; falls back to the Anthropic key when unset
    validation_api_key: Optional[str] = None
    validation_model: str = "claude-haiku-4-5"

    # Primary OCR engine (Google Cloud Vision REST)
    google_vision_api_key: str = ""
    google_vision_endpoint: str = "https://vision.googleapis.com/v1/images:annotate"
    ocr_timeout_seconds: float = 30.0

    # Local fallback OCR engine
    tesseract_config: str = "--psm 6"

    max_upload_bytes: int = 10 * 1024 * 1024

    @property
    def effective_validation_key(self) -> str:
        if self.validation_api_key is not None:
            return self.validation_api_key
        return self.anthropic_api_key


settings = Settings()
