import os

from dotenv import load_dotenv

load_dotenv()

# ==================== DATABASE ====================
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "coursehub_db")

# ==================== AUTH ====================
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "coursehub-dev-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# ==================== APP ====================
VERSION = os.getenv("VERSION", "1.0.0")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# ==================== LIMITS ====================
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
REVIEW_REPORT_THRESHOLD = int(os.getenv("REVIEW_REPORT_THRESHOLD", "5"))
