import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_list(name, default):
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as console.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "console.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # create_all() on startup (dev + tests); use `flask db upgrade` otherwise
    AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true"

    # Cookie naming the storage namespace ("browser profile") of a client
    CONSOLE_PROFILE_COOKIE = "console_profile"
    CONSOLE_PROFILE_MAX_AGE_SECONDS = 365 * 24 * 60 * 60
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False  # set True when using HTTPS

    # In-memory login gates kept per profile and overall
    CONSOLE_MAX_TABS_PER_PROFILE = 8
    CONSOLE_MAX_GATES = 1000

    # Brute-force protection
    ADMIN_MAX_FAILED_ATTEMPTS = 3
    ADMIN_LOCKOUT_MINUTES = 15
    # Lookup failures (db down) count as bad credentials
    ADMIN_COUNT_BACKEND_ERRORS = os.getenv("ADMIN_COUNT_BACKEND_ERRORS", "true").lower() == "true"

    # Sliding window over the in-memory attempt history
    ADMIN_RATE_WINDOW_SECONDS = 5 * 60
    ADMIN_RATE_MAX_ATTEMPTS = 5
    ADMIN_ATTEMPT_HISTORY = 20

    # Absolute session lifetime: 30 minutes
    ADMIN_SESSION_TIMEOUT_SECONDS = 30 * 60

    # Idle timeout: 10 minutes
    ADMIN_IDLE_TIMEOUT_SECONDS = 10 * 60

    # Timer cadence
    ADMIN_COUNTDOWN_INTERVAL_SECONDS = 1
    ADMIN_SYNC_INTERVAL_SECONDS = 5

    # Geolocation (best effort, display only)
    GEO_IP_TIMEOUT_SECONDS = 3
    GEO_LOOKUP_TIMEOUT_SECONDS = 4
    GEO_IP_PROVIDERS = _env_list("GEO_IP_PROVIDERS", ["ipify", "ipapi_ip", "icanhazip"])
    GEO_LOOKUP_PROVIDERS = _env_list("GEO_LOOKUP_PROVIDERS", ["ipapi", "ip_api", "ipwhois"])

    # Basic app settings
    DEBUG = False
