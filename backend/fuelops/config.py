# backend/fuelops/config.py
from __future__ import annotations
import os


def _csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fuelops.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fuelops.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # The auth gateway in front of the console forwards the authenticated user id here
    ACTOR_HEADER = os.environ.get("FUELOPS_ACTOR_HEADER", "X-User-Id")

    CORS_ALLOWED_ORIGINS = _csv_env(
        "FUELOPS_CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )

    # Orders
    ORDER_REFERENCE_PREFIX = os.environ.get("FUELOPS_ORDER_REFERENCE_PREFIX", "ORD")
    ORDER_AUTO_CANCEL_HOURS = int(os.environ.get("FUELOPS_ORDER_AUTO_CANCEL_HOURS", "12"))

    # List endpoints
    DEFAULT_PAGE_SIZE = int(os.environ.get("FUELOPS_DEFAULT_PAGE_SIZE", "20"))
    MAX_PAGE_SIZE = int(os.environ.get("FUELOPS_MAX_PAGE_SIZE", "100"))

    LOG_LEVEL = os.environ.get("FUELOPS_LOG_LEVEL", "INFO").upper()
