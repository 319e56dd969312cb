"""
Application settings loaded from the environment
"""

import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./labfulfil.db")

# Security
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-in-production")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# Report uploads
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
MAX_REPORT_SIZE_MB = int(os.getenv("MAX_REPORT_SIZE_MB", "10"))

# Pricing
HOME_COLLECTION_CHARGE = float(os.getenv("HOME_COLLECTION_CHARGE", "100"))

# Sample collection windows offered per day and service area
TIME_WINDOWS = [
    w.strip()
    for w in os.getenv(
        "TIME_WINDOWS",
        "07:00-08:00,08:00-09:00,09:00-10:00,10:00-11:00,11:00-12:00,16:00-17:00,17:00-18:00",
    ).split(",")
    if w.strip()
]

# Outbound email (notifications are skipped when SMTP_HOST is empty)
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "LabFulfil <noreply@labfulfil.local>")

# HTTP boundary
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if o.strip()
]
