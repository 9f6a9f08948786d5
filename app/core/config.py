from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Trek Bookings API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_TIMEZONE: str = "Asia/Kolkata"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "bookings@treks.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    CLIENT_BASE_URL: str = ""  # e.g. https://treks.example.com, used in email links

    # Payment gateway (Razorpay REST, amounts in paise)
    PAYMENT_CURRENCY: str = "INR"
    RAZORPAY_HOST: str = "api.razorpay.com"
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""
    PAYMENT_SANDBOX: bool = False  # If True, use the in-process sandbox gateway (no network)
    GATEWAY_TIMEOUT_SECONDS: int = 20
    GATEWAY_MAX_RETRIES: int = 3
    GATEWAY_BACKOFF_SECONDS: float = 0.5

    # Booking lifecycle
    BOOKING_SESSION_MINUTES: int = 30
    MAX_PAYMENT_ATTEMPTS: int = 3
    LEDGER_RETRY_ATTEMPTS: int = 3
    LEDGER_RETRY_BACKOFF_SECONDS: float = 0.05
    EXPIRY_SWEEP_SECONDS: float = 900.0


settings = Settings()
