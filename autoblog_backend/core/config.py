"""
Application configuration settings.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings."""

    # Database - SQLite by default, any SQLAlchemy URL works
    DATABASE_URL: str = "sqlite:///./autoblog.db"

    # OpenAI
    OPENAI_API_KEY: str = ""
    OPENAI_TEXT_MODEL: str = "gpt-4o"
    OPENAI_IMAGE_MODEL: str = "dall-e-3"
    OPENAI_MAX_TOKENS_TEXT: int = 4000
    OPENAI_TEMPERATURE: float = 0.7
    OPENAI_TIMEOUT_S: int = 60

    # Stock photo fallback for image rendering (optional)
    PEXELS_API_KEY: str = ""

    # Upper bound for a single generation call (topic, article or image)
    GENERATION_TIMEOUT_S: int = 120

    # Autopilot pacing
    AUTOPILOT_INITIAL_DELAY_S: int = 2
    AUTOPILOT_FIRE_SOON_S: int = 5
    AUTOPILOT_MIDNIGHT_MARGIN_S: int = 1
    AUTOPILOT_SEQUENCE_PAUSE_S: int = 5
    AUTOPILOT_COOLDOWN_S: int = 8
    AUTOPILOT_MAX_LOG_ENTRIES: int = 200
    AUTOPILOT_AUTHOR: str = "automated"
    # IANA zone for the daily quota (e.g. "Asia/Riyadh"); empty uses the system zone
    AUTOPILOT_TIMEZONE: str = ""

    # {seed} is replaced with a value derived from the image prompt
    PLACEHOLDER_IMAGE_URL: str = "https://picsum.photos/seed/{seed}/800/450"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # App settings
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = True

    class Config:
        env_file = ".env"


settings = Settings()
