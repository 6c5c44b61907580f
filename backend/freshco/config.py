# backend/freshco/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Local SQLite by default; production points DATABASE_URL at Postgres
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///freshco.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Tenant resolution: <slug>.<TENANT_BASE_DOMAIN> or X-Tenant-Subdomain header
    TENANT_BASE_DOMAIN = os.environ.get("TENANT_BASE_DOMAIN", "gofreshco.com")
    DEFAULT_COMPANY_SLUG = os.environ.get("DEFAULT_COMPANY_SLUG", "default")

    # Self-service cancellation window after an order is placed
    ORDER_CANCEL_GRACE_MINUTES = _env_int("ORDER_CANCEL_GRACE_MINUTES", 5)

    SESSION_ABSOLUTE_TIMEOUT_HOURS = _env_int("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)
    SESSION_IDLE_TIMEOUT_HOURS = _env_int("SESSION_IDLE_TIMEOUT_HOURS", 2)
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    # Stripe-compatible payment processor
    PAYMENT_PROCESSOR_URL = os.environ.get("PAYMENT_PROCESSOR_URL", "https://api.stripe.com")
    PAYMENT_PROCESSOR_API_KEY = os.environ.get("PAYMENT_PROCESSOR_API_KEY", "")
    PAYMENT_PROCESSOR_TIMEOUT = float(os.environ.get("PAYMENT_PROCESSOR_TIMEOUT", "10"))
    PAYMENT_WEBHOOK_SECRET = os.environ.get("PAYMENT_WEBHOOK_SECRET", "")
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "usd")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    BCRYPT_ROUNDS = 4
    PAYMENT_WEBHOOK_SECRET = "whsec_test"
    PAYMENT_PROCESSOR_API_KEY = "sk_test"
    LOG_LEVEL = "DEBUG"
