# fileconverter/config.py
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent

class Settings(BaseSettings):
    # DB
    DATABASE_URL: str = "sqlite:///./app.db"

    # CORS
    ALLOWED_ORIGINS: str = "*"

    # Artifact areas (raw uploads and converter outputs)
    UPLOAD_DIR: str = str(BASE_DIR / "uploads")
    CONVERTED_DIR: str = str(BASE_DIR / "converted")

    # LibreOffice (local office-document converter)
    LIBREOFFICE_PATH: str = "soffice"
    LIBREOFFICE_TIMEOUT: int = 180

    # ConvertAPI (remote PDF -> DOCX)
    CONVERTAPI_SECRET: str | None = None
    CONVERTAPI_ENDPOINT: str = "https://v2.convertapi.com"
    CONVERTAPI_TIMEOUT: int = 120
    POLL_INTERVAL: float = 1.5
    POLL_MAX_WAIT: int = 120

    # ffmpeg (synchronous audio/video transcoding)
    FFMPEG_PATH: str = "ffmpeg"
    FFMPEG_TIMEOUT: int = 600

    # Background conversions
    MAX_WORKERS: int = 4

    # Listing page cap for polling clients
    LIST_LIMIT: int = 200

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

settings = Settings()
