# Pydantic settings

from pydantic_settings import BaseSettings, SettingsConfigDict
import os

PUBLISH_GRACE_SECONDS = 5.0


class Settings(BaseSettings):
    """Application settings"""

    # App
    app_name: str = "Portfolio Analytics API"
    app_version: str = "1.0.0"
    debug: bool = False
    port: int = 8080

    # Database
    database_url: str = "postgresql+psycopg://localhost/portfolio_analytics"

    # Kafka
    kafka_broker: str = "localhost:9093"
    kafka_user: str | None = None
    kafka_password: str | None = None
    kafka_topic: str = "portfolio-analytics-events"
    kafka_partition: int = 0
    kafka_send_retries: int = 5
    kafka_request_timeout_ms: int = 30000
    kafka_delivery_timeout_ms: int = 120000  # caps all send retries
    consumer_poll_timeout_ms: int = 1000

    # Startup connectivity
    startup_attempts: int = 10
    startup_delay_seconds: float = 2.0  # seconds

    # Subscriber writes
    write_attempts: int = 3
    write_retry_delay_seconds: float = 0.5

    model_config = SettingsConfigDict(
        # Use .env.local if it exists (for local dev), otherwise .env (for Docker)
        env_file=".env.local" if os.path.exists(".env.local") else ".env",
        case_sensitive=False
    )

    @property
    def publish_timeout_seconds(self) -> float:
        """Outlasts the delivery timeout so a pending send always resolves before the caller gives up"""
        return self.kafka_delivery_timeout_ms / 1000 + PUBLISH_GRACE_SECONDS


settings = Settings()
