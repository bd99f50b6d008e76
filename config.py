from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root; real environment variables win.
env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=env_path)

APP_NAME = os.getenv("APP_NAME", "CourtBook")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
TZ = os.getenv("TZ", "UTC")

# Comma separated; "*" allows everything (local dev).
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "change_me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
JWT_EXP_MIN = int(os.getenv("JWT_EXP_MIN", str(7 * 24 * 60)))
RESET_TOKEN_EXP_MIN = int(os.getenv("RESET_TOKEN_EXP_MIN", "15"))

# One-time codes
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
OTP_VERIFY_EXP_MINUTES = int(os.getenv("OTP_VERIFY_EXP_MINUTES", "10"))
OTP_RESET_EXP_MINUTES = int(os.getenv("OTP_RESET_EXP_MINUTES", "15"))
# How long Redis keeps a spent/expired record around so it can still be reported.
OTP_RETENTION_HOURS = int(os.getenv("OTP_RETENTION_HOURS", "24"))
OTP_PURGE_INTERVAL_MIN = int(os.getenv("OTP_PURGE_INTERVAL_MIN", "30"))
REDIS_URL = os.getenv("REDIS_URL")

# Email (Brevo transactional API)
BREVO_API_KEY = os.getenv("BREVO_API_KEY")
BREVO_FROM = os.getenv("BREVO_FROM") or os.getenv("EMAIL_FROM")
BREVO_SENDER_NAME = os.getenv("BREVO_SENDER_NAME", APP_NAME)

# Payments (Stripe REST API)
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_API_BASE = os.getenv("STRIPE_API_BASE", "https://api.stripe.com/v1")
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "inr")

# Uploads
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads"))
UPLOAD_MAX_BYTES = int(os.getenv("UPLOAD_MAX_BYTES", str(5 * 1024 * 1024)))
