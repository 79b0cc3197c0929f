# backend/scoopdesk/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/scoopdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///scoopdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Settlement: payments must add up to the order total (within tolerance)
    SETTLEMENT_REQUIRE_PAYMENT_MATCH = _env_flag("SETTLEMENT_REQUIRE_PAYMENT_MATCH", True)
    SETTLEMENT_PAYMENT_TOLERANCE_CENTS = int(os.environ.get("SETTLEMENT_PAYMENT_TOLERANCE_CENTS", "1"))

    # Post card-fee expenses right after each settlement commits
    CARD_FEE_AUTO_POST = _env_flag("CARD_FEE_AUTO_POST", False)

    # Manager close must be performed by someone other than the cashier
    CASH_SESSION_REQUIRE_DISTINCT_MANAGER = _env_flag("CASH_SESSION_REQUIRE_DISTINCT_MANAGER", False)
