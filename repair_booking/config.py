import logging
import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application configuration from environment variables"""

    # App
    app_name: str = "Appliance Repair Booking"
    debug: bool = os.getenv("DEBUG", "False").lower() == "true"
    log_level: str = "INFO"
    public_origin: str = "http://localhost:8000"
    business_name: str = "Dryer Repair Co."

    # Database
    database_url: str = "sqlite:///./repair_booking.db"

    # Offer tokens
    token_signing_secret: str = "dev-only-signing-secret"
    offer_ttl_hours: int = 72
    request_token_ttl_hours: int = 72

    # Scheduling
    schedule_timezone: str = "America/Los_Angeles"
    booking_horizon_days: int = 28
    max_zones_per_block: int = 2

    # Geocoding / zone lookup
    google_geocoding_key: str = ""
    geocoding_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    zone_lookup_url: str = ""
    zone_lookup_key: str = ""
    http_timeout_seconds: float = 8.0

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    booking_fee_cents: int = 8000
    booking_currency: str = "usd"
    booking_product_name: str = "Dryer Repair Appointment"

    # Resend
    resend_api_key: str = ""
    email_from_address: str = "Dryer Repair Co. <no-reply@example.com>"

    # Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""

    # Google Calendar
    google_calendar_credentials: str = ""
    google_calendar_id: str = ""

    # Admin / technician API
    admin_api_key: str = ""

    # Background reminders
    enable_scheduler: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False


def validate_settings(config: Settings) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.offer_ttl_hours < 1:
        raise ValueError(f"OFFER_TTL_HOURS must be >= 1, got {config.offer_ttl_hours}")
    if config.request_token_ttl_hours < 1:
        raise ValueError(
            f"REQUEST_TOKEN_TTL_HOURS must be >= 1, got {config.request_token_ttl_hours}"
        )
    if config.booking_horizon_days < 1:
        raise ValueError(
            f"BOOKING_HORIZON_DAYS must be >= 1, got {config.booking_horizon_days}"
        )
    if config.max_zones_per_block < 1:
        raise ValueError(
            f"MAX_ZONES_PER_BLOCK must be >= 1, got {config.max_zones_per_block}"
        )
    if config.booking_fee_cents < 0:
        raise ValueError(f"BOOKING_FEE_CENTS must be >= 0, got {config.booking_fee_cents}")
    if config.http_timeout_seconds <= 0:
        raise ValueError(
            f"HTTP_TIMEOUT_SECONDS must be > 0, got {config.http_timeout_seconds}"
        )


def configure_logging(config: Settings) -> None:
    """Set up root logging from LOG_LEVEL."""
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


settings = Settings()
validate_settings(settings)
