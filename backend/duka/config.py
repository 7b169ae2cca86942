# backend/duka/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the instance folder unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///duka.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Sale unit of work: wall-clock budget and write-conflict retries
    SALE_TIMEOUT_SECONDS = float(os.environ.get("SALE_TIMEOUT_SECONDS", "10"))
    SALE_RETRY_ATTEMPTS = int(os.environ.get("SALE_RETRY_ATTEMPTS", "3"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
