# backend/retail_pos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///retail_pos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Upper bound for lock waits inside the sale transaction
    SALE_TRANSACTION_TIMEOUT_SECONDS = float(os.environ.get("SALE_TRANSACTION_TIMEOUT_SECONDS", "5"))

    # Order numbers look like POS202610170001
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "POS")

    # Legacy clients send assembly offers as offer_id + offset in productOrOfferId
    ASSEMBLY_OFFER_ID_OFFSET = int(os.environ.get("ASSEMBLY_OFFER_ID_OFFSET", "10000"))

    # Revenue ledger notification runs on a background thread unless disabled
    REVENUE_LEDGER_ASYNC = _env_bool("REVENUE_LEDGER_ASYNC", True)

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]
