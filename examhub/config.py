"""Application settings loaded from the environment (prefix ``EXAMHUB_``)."""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="EXAMHUB_", env_file=".env", case_sensitive=True, extra="ignore"
    )

    # Application
    APP_NAME: str = "examhub"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./examhub.db"
    DATABASE_ECHO: bool = False
    SQLITE_BUSY_TIMEOUT_SECONDS: int = 30

    # OTP
    OTP_LENGTH: int = 6
    OTP_TTL_SECONDS: int = 300  # code validity
    OTP_RESEND_COOLDOWN_SECONDS: int = 60
    OTP_MAX_SENDS_PER_WINDOW: int = 5
    OTP_SEND_WINDOW_SECONDS: int = 3600
    OTP_MAX_VERIFY_ATTEMPTS: int = 5
    OTP_VERIFICATION_TTL_SECONDS: int = 1800  # how long a verified phone may register
    OTP_HASH_ROUNDS: int = 29000
    OTP_MESSAGE_TEMPLATE: str = "Your public exam verification code is {code}"

    # SMS gateway (BulkSMS style GET API); empty key logs messages instead
    SMS_API_URL: str = "http://bulksmsbd.net/api/smsapi"
    SMS_API_KEY: str = ""
    SMS_SENDER_ID: str = ""
    SMS_TIMEOUT_SECONDS: float = 10.0

    # Attempts
    TAB_SWITCH_LIMIT: int = 0  # switches allowed before auto-submit
    CLOCK_SKEW_TOLERANCE_SECONDS: int = 5
    SWEEP_GRACE_SECONDS: int = 30
    MAINTENANCE_INTERVAL_SECONDS: int = 60  # 0 disables the scheduled jobs
    SNAPSHOT_INTERVAL_SECONDS: int = 3600

    # Results & rankings
    PASS_PERCENTAGE: float = 40.0
    LEADERBOARD_DEFAULT_LIMIT: int = 50
    LEADERBOARD_WEEK_DAYS: int = 7
    XP_PER_POINT: int = 10
    CLASS_OPTIONS: List[str] = Field(
        default_factory=lambda: ["SSC", "HSC", "Admission", "Medical Admission"]
    )


settings = Settings()
