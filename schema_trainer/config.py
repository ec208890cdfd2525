"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (job queue, schema cache, connection records)
    DATABASE_URL: str = "sqlite:///./schema_trainer.db"

    LOG_LEVEL: str = "INFO"

    # Worker
    START_WORKERS: bool = True
    WORKER_POLL_INTERVAL: float = 2.0
    WORKER_CONCURRENCY: int = 3  # teamSize per job type
    WORKER_SHUTDOWN_TIMEOUT: float = 30.0

    # Schema training
    TRAINING_FRESHNESS_SECONDS: int = 3600  # Re-training refused inside this window unless forced
    TRAINING_STALE_AFTER_SECONDS: int = 7200  # A 'training' status older than this is considered abandoned
    STALE_SCHEMA_MAX_AGE_SECONDS: int = 7 * 24 * 3600

    # Target databases
    TARGET_CONNECT_TIMEOUT: int = 10
    TARGET_CONNECT_ATTEMPTS: int = 3

    # Notifications
    SUBSCRIBER_QUEUE_SIZE: int = 1000
    SSE_HEARTBEAT_SECONDS: float = 15.0

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# Global settings instance
settings = Settings()
