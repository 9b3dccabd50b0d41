"""
Application Configuration

All settings come from environment variables (optionally from a .env file).
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# JWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))  # 7 days

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
UPLOAD_URL_PREFIX = "/uploads"

# WhatsApp number used for the checkout deep link, digits only
CHECKOUT_PHONE = os.getenv("CHECKOUT_PHONE", "573242785517")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

MIGRATE_LEGACY_FIELDS = os.getenv("MIGRATE_LEGACY_FIELDS", "").lower() in ("1", "true", "yes")

PORT = int(os.getenv("PORT", 8000))
