"""
Application configuration, loaded once at startup.
"""

import os

from dotenv import load_dotenv

load_dotenv()

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

DEFAULT_SESSION_SECRET = "storefront-session-secret-change-in-production"
DEFAULT_JWT_SECRET = "storefront-jwt-secret-change-in-production"

SESSION_SECRET = os.getenv("SESSION_SECRET", DEFAULT_SESSION_SECRET)
JWT_SECRET = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_DAYS = int(os.getenv("JWT_EXPIRY_DAYS", "7"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

MAX_FAILED_LOGINS = 5
LOCKOUT_MINUTES = 15
RESET_TOKEN_TTL_MINUTES = 60

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:8000/api/auth/google/callback")

PUBLIC_URL = os.getenv("PUBLIC_URL", "http://localhost:8000")
FRONTEND_ORIGINS = [o.strip() for o in os.getenv("FRONTEND_ORIGINS", "*").split(",") if o.strip()]

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "1") == "1"
RATE_LIMIT_WINDOW_SECONDS = 15 * 60
AUTH_RATE_LIMIT = 5
GENERAL_RATE_LIMIT = 100

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))


def check_production_secrets():
    """Refuse to boot a production deployment on the shipped default secrets."""
    if ENVIRONMENT != "production":
        return
    if JWT_SECRET == DEFAULT_JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set in production environment")
    if SESSION_SECRET == DEFAULT_SESSION_SECRET:
        raise RuntimeError("SESSION_SECRET must be set in production environment")
