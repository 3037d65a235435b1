import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./multiclean.db")

# Connection pool for server databases; sweeps and API requests share it
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
# Seconds a SQLite writer waits on a lock held by an overlapping sweep
SQLITE_BUSY_TIMEOUT = int(os.getenv("SQLITE_BUSY_TIMEOUT", "15"))

# Security - session tokens are issued by the auth service, we only verify them
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Frontend base URL for links in emails
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Cleanings <noreply@example.com>")

# Expo push notifications
EXPO_PUSH_URL = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
EXPO_PUSH_TIMEOUT = float(os.getenv("EXPO_PUSH_TIMEOUT", "10"))

# Large home classification (beds/baths at or above threshold)
LARGE_HOME_BEDS_THRESHOLD = float(os.getenv("LARGE_HOME_BEDS_THRESHOLD", "3"))
LARGE_HOME_BATHS_THRESHOLD = float(os.getenv("LARGE_HOME_BATHS_THRESHOLD", "3"))

# Time boxes (hours)
OFFER_EXPIRATION_HOURS = int(os.getenv("OFFER_EXPIRATION_HOURS", "48"))
JOIN_REQUEST_EXPIRATION_HOURS = int(os.getenv("JOIN_REQUEST_EXPIRATION_HOURS", "48"))
EDGE_CASE_DECISION_HOURS = int(os.getenv("EDGE_CASE_DECISION_HOURS", "24"))
SOLO_OFFER_HOURS = int(os.getenv("SOLO_OFFER_HOURS", "12"))
EXTRA_WORK_OFFER_HOURS = int(os.getenv("EXTRA_WORK_OFFER_HOURS", "12"))
URGENT_NOTIFICATION_INTERVAL_HOURS = int(os.getenv("URGENT_NOTIFICATION_INTERVAL_HOURS", "6"))
DROPOUT_NOTICE_HOURS = int(os.getenv("DROPOUT_NOTICE_HOURS", "24"))

# Escalation windows (days before the appointment)
EDGE_CASE_DECISION_DAYS = int(os.getenv("EDGE_CASE_DECISION_DAYS", "3"))
URGENT_FILL_DAYS = int(os.getenv("URGENT_FILL_DAYS", "7"))
FINAL_WARNING_DAYS = int(os.getenv("FINAL_WARNING_DAYS", "3"))
SOLO_OFFER_DAYS = int(os.getenv("SOLO_OFFER_DAYS", "1"))

# Max cleaners pinged per job on each urgent fill pass
URGENT_FILL_CLEANER_LIMIT = int(os.getenv("URGENT_FILL_CLEANER_LIMIT", "50"))

# Pricing (cents unless noted)
PLATFORM_FEE_PERCENT = float(os.getenv("PLATFORM_FEE_PERCENT", "0.13"))
SOLO_PLATFORM_FEE_PERCENT = float(os.getenv("SOLO_PLATFORM_FEE_PERCENT", "0.10"))
SOLO_LARGE_HOME_BONUS_CENTS = int(os.getenv("SOLO_LARGE_HOME_BONUS_CENTS", "0"))
BASE_PRICE_CENTS = int(os.getenv("BASE_PRICE_CENTS", "15000"))
PRICE_PER_EXTRA_BED_CENTS = int(os.getenv("PRICE_PER_EXTRA_BED_CENTS", "5000"))
PRICE_PER_EXTRA_BATH_CENTS = int(os.getenv("PRICE_PER_EXTRA_BATH_CENTS", "5000"))
HALF_BATH_PRICE_CENTS = int(os.getenv("HALF_BATH_PRICE_CENTS", "2500"))
