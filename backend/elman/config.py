# backend/elman/config.py
from __future__ import annotations
import os


def _csv(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    # SQLite DB stored next to the app unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///elman.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Required for /api/auth/bootstrap and /api/auth/reset-password
    BOOTSTRAP_SECRET = os.environ.get("BOOTSTRAP_SECRET")

    # Sessions last 30 days unless idle for a day
    SESSION_ABSOLUTE_HOURS = int(os.environ.get("SESSION_ABSOLUTE_HOURS", str(24 * 30)))
    SESSION_IDLE_HOURS = int(os.environ.get("SESSION_IDLE_HOURS", "24"))

    CORS_ALLOWED_ORIGINS = _csv(
        os.environ.get("CORS_ALLOWED_ORIGINS"),
        [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        ],
    )

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    SALES_HISTORY_LIMIT = 200
    AUDIT_MAX_LIMIT = 500
