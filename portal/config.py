import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
IS_PRODUCTION = ENVIRONMENT == "production"

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./portal.db")

# Cache TTLs (seconds)
CACHE_TTL_SHORT = int(os.getenv("CACHE_TTL_SHORT", "300"))
CACHE_TTL_LONG = int(os.getenv("CACHE_TTL_LONG", "3600"))

# Acuity Scheduling
ACUITY_USER_ID = os.getenv("ACUITY_USER_ID", "")
ACUITY_API_KEY = os.getenv("ACUITY_API_KEY", "")
ACUITY_BASE_URL = os.getenv("ACUITY_BASE_URL", "https://acuityscheduling.com/api/v1")
ACUITY_WEBHOOK_SECRET = os.getenv("ACUITY_WEBHOOK_SECRET")
ACUITY_RATE_LIMIT_PER_SECOND = int(os.getenv("ACUITY_RATE_LIMIT_PER_SECOND", "10"))
ACUITY_RATE_LIMIT_PER_HOUR = int(os.getenv("ACUITY_RATE_LIMIT_PER_HOUR", "10000"))

# S3-compatible document storage
STORAGE_REGION = os.getenv("STORAGE_REGION", "ap-southeast-2")
STORAGE_ENDPOINT = os.getenv("STORAGE_ENDPOINT")
STORAGE_ACCESS_KEY = os.getenv("STORAGE_ACCESS_KEY")
STORAGE_SECRET_KEY = os.getenv("STORAGE_SECRET_KEY")
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET")
S3_UPLOAD_MAX_SIZE = int(os.getenv("S3_UPLOAD_MAX_SIZE", str(512 * 1024 * 1024)))

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Medibytes <noreply@medibytes.com.au>")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY") or SECRET_KEY
if not ENCRYPTION_KEY:
    import warnings

    warnings.warn(
        "ENCRYPTION_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    ENCRYPTION_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Records created by the scheduling automation are attributed to these
SYSTEM_USER_ID = os.getenv("SYSTEM_USER_ID", "system")
DEFAULT_ORGANIZATION_ID = os.getenv("DEFAULT_ORGANIZATION_ID", "default")

# Frontend base URL for links in emails
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]
