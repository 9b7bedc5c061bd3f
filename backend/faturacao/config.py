# backend/faturacao/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/faturacao.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///faturacao.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Document fingerprints are HMAC-SHA256 keyed with this value
    HASH_SECRET = os.environ.get("HASH_SECRET", "dev-hash-secret-change-me")

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "AOA")

    # Retries for sequence compare-and-swap conflicts and SQLite lock errors
    SEQUENCE_RETRY_ATTEMPTS = int(os.environ.get("SEQUENCE_RETRY_ATTEMPTS", "8"))
    SEQUENCE_RETRY_BACKOFF = float(os.environ.get("SEQUENCE_RETRY_BACKOFF", "0.05"))
