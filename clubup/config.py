import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clubup.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Shared secret for the scheduled payout trigger (Authorization: Bearer <CRON_SECRET>)
CRON_SECRET = os.getenv("CRON_SECRET")
if not CRON_SECRET:
    import warnings

    warnings.warn("CRON_SECRET not set! Using 'dev-secret'", RuntimeWarning, stacklevel=2)
    CRON_SECRET = "dev-secret"  # noqa: S105 - Dev fallback only

# Frontend base URL for checkout redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Single marketplace currency (ISO 4217)
MARKETPLACE_CURRENCY = os.getenv("MARKETPLACE_CURRENCY", "GBP").upper()

# Stripe Configuration
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_CONNECT_COUNTRY = os.getenv("STRIPE_CONNECT_COUNTRY", "GB")

# PayPal Configuration
PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID")
PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET")
PAYPAL_ENVIRONMENT = os.getenv("PAYPAL_ENVIRONMENT", "sandbox")  # sandbox or live

# Carrier APIs - mock rate tables are used when keys are missing
ROYAL_MAIL_API_URL = os.getenv("ROYAL_MAIL_API_URL", "https://api.royalmail.net/shipping/v2")
ROYAL_MAIL_API_KEY = os.getenv("ROYAL_MAIL_API_KEY")
DPD_API_KEY = os.getenv("DPD_API_KEY")

# Outbound HTTP calls (carriers, PayPal) use one timeout per call
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

# Payouts
PAYOUT_DELAY_HOURS = int(os.getenv("PAYOUT_DELAY_HOURS", "2"))  # after buyer confirms delivery
MAX_PAYOUT_ATTEMPTS = int(os.getenv("MAX_PAYOUT_ATTEMPTS", "5"))

# Seller release requests
RELEASE_REQUEST_WAIT_DAYS = int(os.getenv("RELEASE_REQUEST_WAIT_DAYS", "7"))  # after the item is shipped
AUTO_RELEASE_GRACE_HOURS = int(os.getenv("AUTO_RELEASE_GRACE_HOURS", "24"))  # for the buyer to respond

# CORS
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
