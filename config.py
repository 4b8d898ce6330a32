import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "pharmatch")

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")  # change for production
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

DEBUG = os.getenv("DEBUG", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Pharmacy opening hours are evaluated in this zone
TIMEZONE = os.getenv("TIMEZONE", "UTC")

DONATION_RECOVERY_DAYS = int(os.getenv("DONATION_RECOVERY_DAYS", "56"))

PORT = int(os.getenv("PORT", "8000"))
