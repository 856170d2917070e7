# backend/partnerbooks/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///partnerbooks.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Lock wait bound for the store; a timed-out unit surfaces as AtomicityFailure.
    DB_LOCK_TIMEOUT_SECONDS = _env_int("DB_LOCK_TIMEOUT_SECONDS", 15)
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")

    # Ledger behaviour
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "BDT")
    FAST_UNDO_WINDOW_SECONDS = _env_int("FAST_UNDO_WINDOW_SECONDS", 5)
    LEDGER_RETRY_ATTEMPTS = _env_int("LEDGER_RETRY_ATTEMPTS", 3)
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.1"))
    SYNC_MAX_ITEMS = _env_int("SYNC_MAX_ITEMS", 100)

    # Blob storage (receipts, avatars)
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", os.path.join(os.getcwd(), "uploads"))
    UPLOAD_BASE_URL = os.environ.get("UPLOAD_BASE_URL", "/uploads")
    MAX_CONTENT_LENGTH = 8 * 1024 * 1024
    ALLOWED_UPLOAD_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "pdf"}

    CORS_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    }
