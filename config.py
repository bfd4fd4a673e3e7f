import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to app.py as debriefslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "debriefslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Session cookie name for staff auth token
    AUTH_COOKIE_NAME = "debriefslot_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 30 minutes
    IDLE_TIMEOUT_SECONDS = 30 * 60

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", "false")

    # Fixed-window rate limits, per client IP
    LOGIN_RATE_WINDOW_SECONDS = 60
    LOGIN_RATE_MAX_REQUESTS = 10
    RESERVE_RATE_WINDOW_SECONDS = 60 * 60
    RESERVE_RATE_MAX_REQUESTS = 20
    CONTACT_RATE_WINDOW_SECONDS = 60 * 60
    CONTACT_RATE_MAX_REQUESTS = 5

    # Reservation policy
    HOLD_TTL_MINUTES = int(os.getenv("HOLD_TTL_MINUTES", "15"))
    MIN_LEAD_TIME_HOURS = int(os.getenv("MIN_LEAD_TIME_HOURS", "2"))
    MAX_LISTING_RANGE_DAYS = 30
    BOOKING_AMOUNT = int(os.getenv("BOOKING_AMOUNT", "10000"))  # pence
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "gbp")
    PAYMENT_DESCRIPTION = os.getenv("PAYMENT_DESCRIPTION", "Birth Debrief Consultation")

    # Expiry sweeper
    SWEEPER_ENABLED = _env_bool("SWEEPER_ENABLED", "false")
    SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))
    ABANDONED_RETENTION_DAYS = int(os.getenv("ABANDONED_RETENTION_DAYS", "120"))
    CRON_JOB_SECRET = os.getenv("CRON_JOB_SECRET")

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", "true")
    TEAM_EMAIL_ADDRESS = os.getenv("TEAM_EMAIL_ADDRESS")

    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SWEEPER_ENABLED = False
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    CRON_JOB_SECRET = "cron-test-secret"
    SMTP_HOST = None
    TEAM_EMAIL_ADDRESS = "team@example.com"
    BCRYPT_ROUNDS = 4
