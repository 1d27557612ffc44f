"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Roles ────────────────────────────────────────────────────────────
ROLE_PATIENT = "patient"
ROLE_DOCTOR = "doctor"
ROLES = (ROLE_PATIENT, ROLE_DOCTOR)

# ── Identity / sessions ──────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = int(os.getenv("TOKEN_EXPIRY_HOURS", "24"))
MIN_PASSWORD_LENGTH = 6
# bcrypt only hashes the first 72 bytes and refuses longer input.
MAX_PASSWORD_BYTES = 72

# Profile rows can land shortly after sign-up; poll this many times.
PROFILE_WAIT_ATTEMPTS = int(os.getenv("PROFILE_WAIT_ATTEMPTS", "3"))
PROFILE_WAIT_DELAY = float(os.getenv("PROFILE_WAIT_DELAY", "0.2"))

# ── Uploads ──────────────────────────────────────────────────────────
ALLOWED_EXTENSIONS = {"pdf", "doc", "docx", "jpg", "jpeg", "png"}
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

# ── Object storage ───────────────────────────────────────────────────
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")   # "s3" or "local"
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "medical-files")
LOCAL_STORAGE_DIR = os.getenv("LOCAL_STORAGE_DIR", "./storage")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
