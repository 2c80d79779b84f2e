# backend/lustre/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///lustre.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Commission defaults; a store_settings row with the same key wins.
    COMMISSION_ENABLED = _env_bool("COMMISSION_ENABLED", True)
    COMMISSION_DEFAULT_RATE = os.environ.get("COMMISSION_DEFAULT_RATE", "5")
    COMMISSION_BASIS = os.environ.get("COMMISSION_BASIS", "revenue")
