# backend/retailops/config.py
from __future__ import annotations
import os


def _timeout_seconds() -> float:
    return float(os.environ.get("STORE_TIMEOUT_SECONDS", "5"))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailops.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailops.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Every round trip to the entity store is bounded. SQLite honours the
    # busy timeout, Postgres gets statement_timeout on connect (see create_app).
    STORE_TIMEOUT_SECONDS = _timeout_seconds()
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    STORE_RETRY_ATTEMPTS = int(os.environ.get("STORE_RETRY_ATTEMPTS", "3"))
    STORE_RETRY_BACKOFF = float(os.environ.get("STORE_RETRY_BACKOFF", "0.1"))

    RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "RCP")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STORE_RETRY_BACKOFF = 0.0
    LOG_LEVEL = "DEBUG"
