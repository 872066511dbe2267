import logging
import os

from .errors import ConfigError


# ----------------------------
# Config & Constants
# ----------------------------
COUPON_PRICE = int(os.environ.get("COUPON_PRICE", "50"))  # INR
UPI_MERCHANT_ID = os.environ.get("UPI_MERCHANT_ID", "")
EVENT_NAME = os.environ.get("EVENT_NAME", "Waffle Fiesta")
EVENT_TAGLINE = os.environ.get("EVENT_TAGLINE", "College Fest 2026 • Stall #7")

ADMIN_SESSION_TTL_SECONDS = int(
    os.environ.get("ADMIN_SESSION_TTL_SECONDS", str(12 * 3600))
)
GATEWAY_COUPON_ATTEMPTS = 10


def require_env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"{name} is not configured")
    return value


def database_url() -> str:
    return require_env("DATABASE_URL")


def session_secret() -> str:
    return require_env("SESSION_SECRET")


def razorpay_credentials() -> tuple[str, str]:
    key_id = os.environ.get("RAZORPAY_KEY_ID", "").strip()
    secret = os.environ.get("RAZORPAY_KEY_SECRET", "").strip()
    if not key_id or not secret:
        raise ConfigError("Razorpay not configured")
    return key_id, secret


def configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
