from pydantic import field_validator
from pydantic_settings import BaseSettings
from typing import List, Any
import os

class Settings(BaseSettings):
    PROJECT_NAME: str = "Bulk Deals Studio"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    # Gemini
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GEMINI_BASE_URL: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    GEMINI_IMAGE_MODEL: str = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image")
    GEMINI_TEXT_MODEL: str = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.5-flash")
    REQUEST_TIMEOUT_SECONDS: float = 120.0

    # Pipeline
    RETRY_DELAYS: Any = [1.0, 2.0, 4.0]
    MAX_CONCURRENT_IMAGES: int = 3
    GROUPING_CHUNK_SIZE: int = 10
    MAX_REFERENCE_IMAGE_SIZE: int = 4096
    DAILY_BATCH_LIMIT: int = 5
    BRAND_NAME: str = "Brova"

    # Storage
    EXPORT_DIR: str = "exports"
    PUBLIC_BASE_URL: str = "http://localhost:8080"

    @field_validator("RETRY_DELAYS", mode="before")
    @classmethod
    def assemble_retry_delays(cls, v: Any) -> List[float]:
        if isinstance(v, str):
            return [float(i.strip()) for i in v.split(",") if i.strip()]
        return [float(i) for i in v]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()
