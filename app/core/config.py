from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dashboard.db"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # API server the client core talks to
    API_BASE_URL: str = "http://localhost:8000"
    REQUEST_TIMEOUT_SECONDS: float = 10.0
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Ticket views
    SEARCH_DEBOUNCE_MS: int = 300
    DEFAULT_VIEW_MODE: str = "kanban"  # kanban|list

    # Dashboard aggregation
    TRAILING_MONTHS: int = 6
    URGENT_RENEWAL_DAYS: int = 90
    RENEWAL_HORIZON_DAYS: int = 365

    # AI triage
    AI_TRIAGE_ENABLED: bool = True

    # Push channel
    EVENT_KEEPALIVE_SECONDS: float = 15.0

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
