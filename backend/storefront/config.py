# Overview: Application configuration loaded from environment variables with development defaults.

# backend/storefront/config.py
from __future__ import annotations
import os


def _csv(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///storefront.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    CURRENCY = os.environ.get("CURRENCY", "SGD")

    # Password hashing cost; tests lower this to keep bcrypt fast
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    SESSION_ABSOLUTE_HOURS = int(os.environ.get("SESSION_ABSOLUTE_HOURS", "24"))
    SESSION_IDLE_HOURS = int(os.environ.get("SESSION_IDLE_HOURS", "2"))

    # Lifetime of a staged checkout or top-up before it is discarded
    CHECKOUT_TTL_SECONDS = int(os.environ.get("CHECKOUT_TTL_SECONDS", "7200"))
    CHECKOUT_SWEEP_SECONDS = int(os.environ.get("CHECKOUT_SWEEP_SECONDS", "60"))

    # Hosted checkout (card / PayNow / GrabPay)
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_SUCCESS_URL = os.environ.get(
        "STRIPE_SUCCESS_URL",
        "http://localhost:3000/checkout/card/return?session_id={CHECKOUT_SESSION_ID}",
    )
    STRIPE_CANCEL_URL = os.environ.get("STRIPE_CANCEL_URL", "http://localhost:3000/checkout")

    # Peer-payment app (create order / capture)
    PAYPAL_CLIENT_ID = os.environ.get("PAYPAL_CLIENT_ID")
    PAYPAL_CLIENT_SECRET = os.environ.get("PAYPAL_CLIENT_SECRET")
    PAYPAL_API_BASE = os.environ.get("PAYPAL_API_BASE", "https://api.sandbox.paypal.com")

    # QR rail
    NETS_API_KEY = os.environ.get("NETS_API_KEY")
    NETS_PROJECT_ID = os.environ.get("NETS_PROJECT_ID")
    NETS_API_BASE = os.environ.get(
        "NETS_API_BASE",
        "https://sandbox.nets.openapipaas.com/api/v1/common/payments/nets-qr",
    )
    NETS_TXN_ID = os.environ.get("NETS_TXN_ID", "sandbox_nets|m|8ff8e5b6-d43e-4786-8ac5-7accf8c5bd9b")
    QR_POLL_INTERVAL_SECONDS = float(os.environ.get("QR_POLL_INTERVAL_SECONDS", "5"))
    QR_POLL_MAX_ATTEMPTS = int(os.environ.get("QR_POLL_MAX_ATTEMPTS", "60"))

    PROVIDER_TIMEOUT_SECONDS = float(os.environ.get("PROVIDER_TIMEOUT_SECONDS", "25"))
    # Optional httpx transport shared by all provider clients (tests inject a MockTransport)
    PROVIDER_TRANSPORT = None

    CHECKOUT_METHODS = _csv("CHECKOUT_METHODS", "card,paynow,grabpay,paypal,nets,store_credit")
    TOPUP_METHODS = _csv("TOPUP_METHODS", "card,paynow,grabpay,paypal,nets")
    REFUND_ORIGINAL_METHODS = _csv("REFUND_ORIGINAL_METHODS", "card,paynow,grabpay,paypal")

    FRAUD_HIGH_VALUE_CENTS = int(os.environ.get("FRAUD_HIGH_VALUE_CENTS", "50000"))
