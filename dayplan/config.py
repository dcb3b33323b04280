"""Runtime configuration for the dayplan service.

Values are read from environment variables once at import so the process
runs with a fixed configuration. Optional local overrides can be placed in
dayplan/local_config.py (not versioned).
"""
import os


def _trueish(v: str | None) -> bool:
    if not v:
        return False
    return v.lower() in ('1', 'true', 'yes', 'on')


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


# Signing secret for access tokens. The fallback only exists so tests and
# scripts can import the package; the app lifespan refuses to start with it.
INSECURE_SECRET_KEY = "CHANGE_ME_IN_ENV_FOR_TESTS"
SECRET_KEY = os.getenv("SECRET_KEY", INSECURE_SECRET_KEY)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./dayplan.db")

# Token and one-time code lifetimes
ACCESS_TOKEN_EXPIRE_MINUTES = _int_env('ACCESS_TOKEN_EXPIRE_MINUTES', 60 * 24)
VERIFICATION_CODE_TTL_MINUTES = _int_env('VERIFICATION_CODE_TTL_MINUTES', 10)
RESET_CODE_TTL_MINUTES = _int_env('RESET_CODE_TTL_MINUTES', 30)

# IANA timezone used to decide where "tomorrow" starts and which weekday a
# completion falls on.
PLANNER_TIMEZONE = os.getenv('PLANNER_TIMEZONE', 'UTC')

# Midnight planning run. Disable with SCHEDULER_ENABLED=0 (tests do).
SCHEDULER_ENABLED = _trueish(os.getenv('SCHEDULER_ENABLED', '1'))

# Unverified signups that never registered are removed this long after
# their verification code expired.
ABANDONED_SIGNUP_TTL_HOURS = _int_env('ABANDONED_SIGNUP_TTL_HOURS', 24)
SIGNUP_PRUNE_INTERVAL_SECONDS = _int_env('SIGNUP_PRUNE_INTERVAL_SECONDS', 3600)

# Mail delivery: 'console' logs messages instead of sending them, 'smtp'
# uses the SMTP_* settings and 'api' posts to MAIL_API_URL.
MAIL_BACKEND = os.getenv('MAIL_BACKEND', 'console').lower()
MAIL_FROM = os.getenv('MAIL_FROM', 'Dayplan <no-reply@localhost>')
SMTP_HOST = os.getenv('SMTP_HOST', 'localhost')
SMTP_PORT = _int_env('SMTP_PORT', 587)
SMTP_USERNAME = os.getenv('SMTP_USERNAME')
SMTP_PASSWORD = os.getenv('SMTP_PASSWORD')
SMTP_USE_TLS = _trueish(os.getenv('SMTP_USE_TLS', '1'))
SMTP_TIMEOUT_SECONDS = _int_env('SMTP_TIMEOUT_SECONDS', 30)
MAIL_API_URL = os.getenv('MAIL_API_URL', 'https://api.resend.com/emails')
MAIL_API_KEY = os.getenv('MAIL_API_KEY')
MAIL_API_TIMEOUT_SECONDS = _int_env('MAIL_API_TIMEOUT_SECONDS', 10)

CORS_ORIGINS = [o.strip() for o in os.getenv('CORS_ORIGINS', '*').split(',') if o.strip()]

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Optional local overrides: define variables in dayplan/local_config.py to
# override the defaults above without changing versioned config.
try:
    from .local_config import *  # type: ignore  # noqa: F401,F403
except ImportError:
    pass
