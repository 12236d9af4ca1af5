# backend/retailops/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailops.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailops.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Defaults for ledger entries created lazily on first stock event
    LEDGER_DEFAULT_REORDER_LEVEL = _env_int("LEDGER_DEFAULT_REORDER_LEVEL", 10)
    LEDGER_DEFAULT_MAX_STOCK = _env_int("LEDGER_DEFAULT_MAX_STOCK", 100)

    # Post-commit event fan-out (stock updated, low stock, order status changed)
    NOTIFICATIONS_ENABLED = os.environ.get("NOTIFICATIONS_ENABLED", "true").lower() == "true"

    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)
