# slotbook/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ===== App =====
    APP_NAME: str = "slotbook"
    ENV: str = "dev"
    # Clinic timezone: only defines the server "today" for calendar editability.
    # All deadline arithmetic is done in UTC.
    TIMEZONE: str = "Asia/Kolkata"

    # ===== DB =====
    DATABASE_URL: str = "sqlite:///./slotbook.db"

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 min

    # ===== Reservation protocol =====
    HOLD_TTL_MINUTES: int = 10
    # Doctor approval window; UI copy says "48 hours" but it is a tunable
    APPROVAL_WINDOW_HOURS: int = 48
    PAYMENT_WINDOW_MINUTES: int = 15

    # ===== Calendar =====
    DEFAULT_SLOT_MINUTES: int = 30
    MAX_LEAVE_DAYS: int = 90
    MAX_SUNDAY_WEEKS: int = 52

    # ===== Deadline sweep =====
    SCHEDULER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: int = 30
    # 0 = three sweep intervals
    SWEEP_STALE_AFTER_SECONDS: int = 0

    # ===== Badges =====
    NOTIFICATION_RECENT_HOURS: int = 168
    NOTIFICATION_FUTURE_TOLERANCE_HOURS: int = 1
    NOTIFICATION_SEEN_TTL_MINUTES: int = 12 * 60

    # ===== Twilio =====
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_WHATSAPP_FROM: Optional[str] = None

    # Dry run (True = log messages instead of sending them)
    DRY_RUN: bool = False

    # ===== Admin =====
    ADMIN_TOKEN: Optional[str] = None

    # ===== Payment collaborator =====
    # Shared secret the payment service sends as X-Payment-Token
    PAYMENT_WEBHOOK_TOKEN: Optional[str] = None

    def model_post_init(self, __context) -> None:
        """Backfill derived values."""
        if self.SWEEP_STALE_AFTER_SECONDS <= 0:
            self.SWEEP_STALE_AFTER_SECONDS = self.SWEEP_INTERVAL_SECONDS * 3


settings = Settings()
