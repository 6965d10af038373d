import os

APP_NAME = os.getenv("APP_NAME", "Mangrove Watch API")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
JWT_ALG = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", str(60 * 24 * 7)))  # 7 days

# Pass-phrase gating authority signup
ADMIN_SECRET_KEY = os.getenv("ADMIN_SECRET_KEY", "TIDE_GUARD_2024")

# When on, the fallback store hands every identity the authority profile
FALLBACK_ADMIN_PROFILE = os.getenv("FALLBACK_ADMIN_PROFILE", "1").lower() in ("1", "true", "yes")

PUBLIC_URL = os.getenv("PUBLIC_URL", "").rstrip("/")
PHOTO_BUCKET = "incident-photos"
MAX_PHOTO_BYTES = 5 * 1024 * 1024

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "8000"))
