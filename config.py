import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as bookings.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "bookings.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Admin console and payment adapters authenticate with shared keys
    ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")
    GATEWAY_SHARED_SECRET = os.getenv("GATEWAY_SHARED_SECRET")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    # Cancellation policy (single authoritative window, in hours)
    LATE_CANCELLATION_THRESHOLD_HOURS = int(os.getenv("LATE_CANCELLATION_THRESHOLD_HOURS", "72"))

    # Returning-client discount tiers
    RETURNING_DISCOUNT_ENABLED = _env_bool("RETURNING_DISCOUNT_ENABLED")
    TIER_30_MAX_DAYS = int(os.getenv("TIER_30_MAX_DAYS", "30"))
    TIER_45_MAX_DAYS = int(os.getenv("TIER_45_MAX_DAYS", "45"))
    TIER_30_PERCENT = int(os.getenv("TIER_30_PERCENT", "7"))
    TIER_45_PERCENT = int(os.getenv("TIER_45_PERCENT", "4"))

    # Fine for ignoring pre-appointment guidelines
    DEFAULT_FINE_AMOUNT = int(os.getenv("DEFAULT_FINE_AMOUNT", "500"))

    # Time slots without an offset are read in this zone
    BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "Africa/Nairobi")

    # Redeemable codes
    REFERRAL_DISCOUNT_PERCENT = int(os.getenv("REFERRAL_DISCOUNT_PERCENT", "10"))
    PRIZE_CODE_TTL_DAYS = int(os.getenv("PRIZE_CODE_TTL_DAYS", "30"))
    CODE_GENERATION_ATTEMPTS = int(os.getenv("CODE_GENERATION_ATTEMPTS", "10"))
    SPIN_WHEEL_ENABLED = _env_bool("SPIN_WHEEL_ENABLED")
    SPIN_WHEEL_PRIZES = [
        {"label": "10% off", "effect": "discount_percentage", "value": 10, "weight": 50},
        {"label": "15% off", "effect": "discount_percentage", "value": 15, "weight": 25},
        {"label": "Free lash bath", "effect": "free_item", "item": "Lash bath", "weight": 20},
        {"label": "Free consultation", "effect": "free_consultation", "weight": 5},
    ]

    # Optimistic concurrency retry budget per booking update
    BOOKING_UPDATE_ATTEMPTS = int(os.getenv("BOOKING_UPDATE_ATTEMPTS", "10"))

    # Basic app settings
    DEBUG = False
