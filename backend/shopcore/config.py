# backend/shopcore/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopcore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Public base URL providers post webhooks to (e.g. https://shop.example.com)
    PAYMENT_CALLBACK_BASE_URL = os.environ.get("PAYMENT_CALLBACK_BASE_URL", "http://localhost:5000")
    PAYMENT_HTTP_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_HTTP_TIMEOUT_SECONDS", "15"))
    # Tests inject an httpx.MockTransport here; None means real network
    PAYMENT_HTTP_TRANSPORT = None

    TENANT_CACHE_TTL_SECONDS = int(os.environ.get("TENANT_CACHE_TTL_SECONDS", "300"))

    CART_TTL_HOURS = int(os.environ.get("CART_TTL_HOURS", str(24 * 7)))
    CART_MAX_LINE_QUANTITY = int(os.environ.get("CART_MAX_LINE_QUANTITY", "99"))

    # PENDING orders older than this are eligible for the expiry sweep
    PENDING_ORDER_TIMEOUT_MINUTES = int(os.environ.get("PENDING_ORDER_TIMEOUT_MINUTES", "60"))

    DEFAULT_LOW_STOCK_THRESHOLD = int(os.environ.get("DEFAULT_LOW_STOCK_THRESHOLD", "5"))

    # Units of work that lose a lock race are retried this many times
    TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Optional HTTP hook that receives outbound customer notifications
    NOTIFIER_WEBHOOK_URL = os.environ.get("NOTIFIER_WEBHOOK_URL") or None
    NOTIFIER_HTTP_TIMEOUT_SECONDS = float(os.environ.get("NOTIFIER_HTTP_TIMEOUT_SECONDS", "5"))
    NOTIFIER_HTTP_TRANSPORT = None

    # Comma-separated browser origins allowed to call the API (admin UI, storefront)
    CORS_ALLOWED_ORIGINS = [
        o.strip() for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",") if o.strip()
    ]
