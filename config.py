"""
Configuration module for the clinic booking service.
Loads environment variables and provides typed configuration.
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file
env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    environment: str = "development"  # development, staging, production, test
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Calendar (one fixed local calendar for the whole clinic)
    timezone: str = "America/Sao_Paulo"
    slot_step_minutes: int = 30
    planning_horizon_days: int = 30
    weekday_open: str = "08:00"
    weekday_close: str = "20:00"
    saturday_open: str = "08:00"
    saturday_close: str = "14:00"
    break_start: Optional[str] = "12:00"  # Applies Monday-Friday
    break_end: Optional[str] = "13:30"
    cancellation_notice_hours: int = 24
    payment_expiry_minutes: int = 15

    # Store
    store_backend: str = "supabase"  # supabase, memory
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    store_timeout_seconds: float = 10.0

    # Stripe
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = (
        None  # Required in production for webhook verification
    )
    currency: str = "brl"
    payment_timeout_seconds: float = 15.0

    # Email (Resend)
    resend_api_key: Optional[str] = None
    email_from: str = "Clinic Booking <agendamento@example.com>"
    public_base_url: str = "http://localhost:3000"
    clinic_phone: str = "(11) 96831-1914"

    # Admin
    admin_api_token: Optional[str] = None

    # Scheduler
    expiry_sweep_interval_minutes: int = 5
    redis_url: Optional[str] = (
        None  # Redis connection URL for the APScheduler job store
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate_all_required(self) -> None:
        """
        Validate that all settings needed by the selected backends are present.

        Raises:
            ValueError: If required fields are missing or invalid
        """
        required_fields = ["stripe_secret_key"]
        if self.store_backend == "supabase":
            required_fields += ["supabase_url", "supabase_key"]
        elif self.store_backend != "memory":
            raise ValueError(f"Unknown store backend: {self.store_backend}")
        if self.is_production:
            required_fields += [
                "stripe_webhook_secret",
                "resend_api_key",
                "admin_api_token",
            ]

        missing = []
        for field in required_fields:
            value = getattr(self, field, None)

            if not value:
                missing.append(field)
                continue

            # Check for placeholder values
            value_str = str(value).lower()
            if value_str.startswith("your_"):
                missing.append(field)
                continue

        if self.is_production and self.store_backend == "memory":
            raise ValueError(
                "The memory store is single-process only and cannot run in production"
            )

        if missing:
            raise ValueError(
                f"Missing or invalid required configuration: "
                f"{', '.join(missing)}. "
                f"Please check your .env file and ensure all required "
                f"values are set."
            )


# Global settings instance
settings = Settings()
