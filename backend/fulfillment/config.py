# backend/fulfillment/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fulfillment.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fulfillment.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Percent, applied when a product carries no VAT rate of its own
    DEFAULT_VAT_RATE = os.environ.get("DEFAULT_VAT_RATE", "7.00")

    # Bank slip verification service
    SLIP_VERIFY_API_URL = os.environ.get("SLIP_VERIFY_API_URL", "https://api.slipok.com/api/v1")
    SLIP_VERIFY_API_KEY = os.environ.get("SLIP_VERIFY_API_KEY")
    SLIP_VERIFY_TIMEOUT_SECONDS = float(os.environ.get("SLIP_VERIFY_TIMEOUT_SECONDS", "30"))

    # Receipt rendering (runs after payment confirmation commits)
    RECEIPT_OUTPUT_DIR = os.environ.get("RECEIPT_OUTPUT_DIR", "receipts")
    RECEIPT_MAX_ATTEMPTS = int(os.environ.get("RECEIPT_MAX_ATTEMPTS", "5"))

    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
