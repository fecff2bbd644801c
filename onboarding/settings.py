import os
from typing import List

from dotenv import load_dotenv

load_dotenv()

class Settings:
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development").lower()
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:5173")

    # Owner-facing API key (empty disables the check)
    API_KEY: str = os.getenv("API_KEY", "")
    ADMIN_RBAC_ENABLED: bool = os.getenv("ADMIN_RBAC_ENABLED", "true").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "onboarding")

    # Bank partner
    BANK_API_URL: str = os.getenv("BANK_API_URL", "https://bank-api.example.com")
    BANK_API_KEY: str = os.getenv("BANK_API_KEY", "")
    BANK_API_TIMEOUT_SEC: float = float(os.getenv("BANK_API_TIMEOUT_SEC", "30"))
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:8000")
    BANK_WEBHOOK_PATH: str = os.getenv("BANK_WEBHOOK_PATH", "/webhooks/bank")
    UPI_PSP_HANDLE: str = os.getenv("UPI_PSP_HANDLE", "ybl")

    # Inbound decision webhooks
    WEBHOOK_SECRET: str = os.getenv("WEBHOOK_SECRET", "")
    WEBHOOK_TOLERANCE_SEC: int = int(os.getenv("WEBHOOK_TOLERANCE_SEC", "300"))

    # Per-merchant lock; TTL has to outlive a full bank call
    MERCHANT_LOCK_TTL_MS: int = int(os.getenv("MERCHANT_LOCK_TTL_MS", "45000"))
    LOCK_RETRY_ATTEMPTS: int = int(os.getenv("LOCK_RETRY_ATTEMPTS", "5"))
    LOCK_RETRY_DELAY_MS: int = int(os.getenv("LOCK_RETRY_DELAY_MS", "100"))

    # Notifications (email relay)
    NOTIFICATIONS_ENABLED: bool = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true"
    NOTIFICATION_URL: str = os.getenv("NOTIFICATION_URL", "")
    NOTIFICATION_TIMEOUT_SEC: float = float(os.getenv("NOTIFICATION_TIMEOUT_SEC", "5"))
    NOTIFICATION_MAX_RETRIES: int = int(os.getenv("NOTIFICATION_MAX_RETRIES", "3"))
    # Seconds between relay attempts; the last value repeats for any further retries
    NOTIFICATION_RETRY_INTERVALS: str = os.getenv("NOTIFICATION_RETRY_INTERVALS", "10,30,60")
    ADMIN_EMAIL: str = os.getenv("ADMIN_EMAIL", "admin@example.com")

    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def bank_callback_url(self) -> str:
        return self.API_BASE_URL.rstrip("/") + self.BANK_WEBHOOK_PATH

    @property
    def notification_retry_intervals(self) -> List[int]:
        return [int(s) for s in self.NOTIFICATION_RETRY_INTERVALS.split(",") if s.strip()]

settings = Settings()
