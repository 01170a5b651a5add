# contract_ocr/core/config.py

from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """
    Runtime configuration, read from CONTRACT_OCR_* environment variables
    (and a local .env file).
    """

    model_config = SettingsConfigDict(
        env_prefix="CONTRACT_OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ---- Model endpoint (OpenAI-compatible chat completions) ----
    MODEL_URL: str = "https://api.openai.com/v1"
    MODEL_API_KEY: str = ""
    MODEL_NAME: str = "gpt-4o-mini"
    MODEL_TEMPERATURE: float = 0.1
    MODEL_MAX_TOKENS: int = 2048
    MODEL_IMAGE_DETAIL: Literal["auto", "low", "high"] = "high"

    # Hard deadline for a single model call, in seconds
    REQUEST_TIMEOUT_S: float = Field(90.0, gt=0)

    # ---- Image preprocessing ----
    IMAGE_MAX_SIDE: int = Field(1280, gt=0)
    JPEG_QUALITY: int = Field(80, ge=1, le=95)

    # ---- Correction feedback loop ----
    SAMPLE_HISTORY_LIMIT: int = Field(100, gt=0)
    PROMPT_SAMPLE_COUNT: int = Field(3, ge=2, le=5)

    # None = every submitted image starts immediately
    MAX_CONCURRENT_TASKS: Optional[int] = Field(None, gt=0)

    # ---- Storage ----
    MONGO_URI: Optional[str] = None
    MONGO_DB: str = "contract_ocr"
    MEDIA_ROOT: str = "media"
    PUBLIC_MEDIA_URL: str = "/media"

    LOG_LEVEL: str = "INFO"

    def media_root(self) -> Path:
        path = Path(self.MEDIA_ROOT)
        path.mkdir(parents=True, exist_ok=True)
        return path


CONFIG = Settings()
