"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    APP_NAME: str = "TicketFlow Helpdesk AI"
    ENV: str = "development"

    DATABASE_URL: str = "postgresql+psycopg://postgres@localhost:5432/ticketflow"
    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: str = "http://localhost:3000"

    # inference backend: "ollama" or "bedrock"
    AI_BACKEND: str = "ollama"
    AI_INFERENCE_TIMEOUT_SECONDS: int = 30
    #ollama credentials
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.1"
    # bedrock credentials
    BEDROCK_REGION: str = "us-east-1"
    BEDROCK_ACCESS_KEY_ID: str = ""
    BEDROCK_SECRET_ACCESS_KEY: str = ""
    BEDROCK_MODEL_ID: str = "amazon.titan-text-express-v1"

    AI_LEARNING_WORKER_ENABLED: bool = True
    AI_LEARNING_QUEUE_MAX_SIZE: int = 256
    AI_LEARNING_SWEEP_ENABLED: bool = True
    AI_LEARNING_SWEEP_INTERVAL_SECONDS: int = 6 * 60 * 60
    AI_LEARNING_SWEEP_STARTUP_DELAY_SECONDS: int = 60
    AI_LEARNING_SWEEP_BATCH_SIZE: int = 25
    AI_LEARNING_PROCESSING_LEASE_MINUTES: int = 30
    AI_LEARNING_MAX_ATTEMPTS: int = 3

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_MAX_REQUESTS: int = 120
    RATE_LIMIT_AI_MAX_REQUESTS: int = 30

    model_config = SettingsConfigDict(env_file=str(BASE_DIR / ".env"), env_file_encoding="utf-8")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def default_model_id(self) -> str:
        if self.AI_BACKEND.strip().lower() == "bedrock":
            return self.BEDROCK_MODEL_ID
        return self.OLLAMA_MODEL

    @property
    def bedrock_ready(self) -> bool:
        return bool(self.BEDROCK_ACCESS_KEY_ID.strip() and self.BEDROCK_SECRET_ACCESS_KEY.strip())


settings = Settings()
