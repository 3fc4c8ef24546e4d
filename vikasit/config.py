# Shared configuration for the portal, the importer and the seed modules

import os
import logging
from pathlib import Path

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent
# Try multiple .env locations: next to the package, the project root, then cwd
_env_candidates = [
    BASE_DIR / ".env",
    BASE_DIR.parent / ".env",
    Path.cwd() / ".env",
]
for _env_path in _env_candidates:
    if _env_path.is_file():
        load_dotenv(_env_path, override=True)
        break
else:
    load_dotenv(override=True)

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

# ---------------------------------------------------------------------------
# Connection strings
# ---------------------------------------------------------------------------
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "vikasit_jharkhand")
MONGODB_TIMEOUT_MS = int(os.getenv("MONGODB_TIMEOUT_MS", "5000"))

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
JWT_SECRET = os.getenv("JWT_SECRET", "")
if not JWT_SECRET or len(JWT_SECRET) < 32:
    raise RuntimeError(
        "FATAL: JWT_SECRET must be set in the environment and be at least 32 characters. "
        "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
    )
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "12"))

# The built-in administrator account (seeded by the importer) cannot be edited
# or deleted through the self-service profile endpoints.
BUILTIN_ADMIN_EMAIL = os.getenv("BUILTIN_ADMIN_EMAIL", "admin@vikasitjharkhand.gov.in")

# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------
MAX_ISSUE_IMAGE_BYTES = 5 * 1024 * 1024
MAX_PROFILE_IMAGE_BYTES = 2 * 1024 * 1024
IMAGE_UPLOAD_TIMEOUT_SECONDS = float(os.getenv("IMAGE_UPLOAD_TIMEOUT_SECONDS", "15"))
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
