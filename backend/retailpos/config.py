# backend/retailpos/config.py
from __future__ import annotations
import os
from decimal import Decimal


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound on how long a transaction waits for a row/database lock
    LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))

    # Bounded retry for lock timeouts, deadlocks and version conflicts
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE = float(os.environ.get("RETRY_BACKOFF_BASE", "0.1"))

    # Loyalty points earned per whole currency unit of a sale total
    LOYALTY_POINTS_PER_UNIT = Decimal(os.environ.get("LOYALTY_POINTS_PER_UNIT", "1"))

    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")

    # Thresholds for lazily created location stock rows
    DEFAULT_LOCATION_MIN_STOCK = 5
    DEFAULT_LOCATION_MAX_STOCK = 100

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


def engine_options_for(uri: str, lock_timeout: float) -> dict:
    """Bound lock waits: SQLite busy timeout, or a pre-ping pool elsewhere."""
    if uri.startswith("sqlite"):
        return {"connect_args": {"timeout": lock_timeout}}
    return {"pool_pre_ping": True}


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    RETRY_BACKOFF_BASE = 0.0
