"""Application configuration with environment variables."""

from datetime import timedelta

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str = "sqlite:///./incident_engine.db"

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Frontend (used to build absolute action links for out-of-app channels)
    FRONTEND_URL: str = "http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Alert semaphore thresholds, in minutes since the escalation clock started
    ALERT_GREEN_MAX_MINUTES: int = 1
    ALERT_YELLOW_MAX_MINUTES: int = 3
    ALERT_ORANGE_MAX_MINUTES: int = 5

    # Periodic alert re-scan
    ALERT_SCAN_ENABLED: bool = True
    ALERT_SCAN_INTERVAL_SECONDS: float = 60.0
    ALERT_SCAN_SHUTDOWN_GRACE_SECONDS: float = 10.0

    # Reopen workflow
    REOPEN_DEADLINE_DAYS: int = 10
    REOPEN_REASON_MIN_LENGTH: int = 10
    REOPEN_REJECTION_NOTES_MIN_LENGTH: int = 10
    REOPEN_TEXT_MAX_LENGTH: int = 500

    # Notification delivery
    CHANNEL_DELIVERY_TIMEOUT_SECONDS: float = 10.0
    RESEND_API_KEY: str = ""  # Empty = dry run (log only)
    EMAIL_FROM: str = "noreply@example.com"
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    WHATSAPP_RELAY_URL: str = ""  # Base URL of the messaging relay service
    WHATSAPP_RELAY_TOKEN: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def reopen_deadline(self) -> timedelta:
        return timedelta(days=self.REOPEN_DEADLINE_DAYS)


settings = Settings()
