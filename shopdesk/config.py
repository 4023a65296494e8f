from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Environment: "development" exposes error details in API responses
    ENVIRONMENT: str = "production"

    # PostgreSQL
    POSTGRES_USER: str = "shopdesk"
    POSTGRES_PASSWORD: str = "shopdesk"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "shopdesk"
    DATABASE_URL: Optional[str] = None

    # Auth
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Frontend (CORS and links in emails)
    FRONTEND_URL: str = "http://localhost:3000"

    # Email delivery (HTTP API)
    EMAIL_API_URL: Optional[str] = None
    EMAIL_API_TOKEN: Optional[str] = None
    EMAIL_FROM: str = "support@shopdesk.local"
    EMAIL_TIMEOUT: float = 10.0

    # Real-time push
    PUSH_SEND_TIMEOUT: float = 5.0

    # Ticket flood control
    MAX_TICKETS_PER_DAY: int = 5
    MAX_MESSAGES_PER_WINDOW: int = 10
    MESSAGE_WINDOW_SECONDS: int = 300

    # Escalation
    ESCALATION_AGE_HOURS: int = 24
    ESCALATION_SWEEP_INTERVAL: int = 900  # seconds, 0 disables the sweep
    AUTO_ASSIGN_ON_CREATE: bool = False

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
