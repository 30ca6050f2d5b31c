# backend/branch_pos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Head-office registry of branches (connection settings, tax rate, locale)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///headoffice.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # SQLite branch databases live in <BRANCH_DATA_DIR>/<CODE>/Database/<CODE>.db
    BRANCH_DATA_DIR = os.environ.get("BRANCH_DATA_DIR", os.path.join("instance", "branches"))

    # Seconds; driver connect timeout and SQLite busy timeout
    BRANCH_CONNECT_TIMEOUT = int(os.environ.get("BRANCH_CONNECT_TIMEOUT", "10"))

    # Seconds; client-server engines recycle pooled connections after this age
    BRANCH_POOL_RECYCLE = int(os.environ.get("BRANCH_POOL_RECYCLE", "1800"))

    # Regenerate a colliding transaction id at most this many times
    TRANSACTION_ID_MAX_ATTEMPTS = int(os.environ.get("TRANSACTION_ID_MAX_ATTEMPTS", "5"))
