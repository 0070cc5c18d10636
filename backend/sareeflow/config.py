# backend/sareeflow/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/sareeflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///sareeflow.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # A low-stock product is "critical" at or below this share of its
    # min_stock_level (and always when it is out of stock).
    LOW_STOCK_CRITICAL_RATIO = float(os.environ.get("LOW_STOCK_CRITICAL_RATIO", "0.5"))

    # Deadline for composite writes (order placement, PO receiving, cancel)
    ORDER_TIMEOUT_SECONDS = float(os.environ.get("ORDER_TIMEOUT_SECONDS", "10"))

    # Bounded retries on lock/optimistic-version conflicts
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))

    RECENT_ORDERS_LIMIT = int(os.environ.get("RECENT_ORDERS_LIMIT", "5"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    DEMO_SEED_ENABLED = False
