"""
Payment and shipping provider wiring.

Providers are built once at startup from configuration and kept on
``app.state``; route dependencies read them from there.
"""

import logging
from dataclasses import dataclass

from fastapi import FastAPI, Request

from .config import (
    DPD_API_KEY,
    FRONTEND_URL,
    HTTP_TIMEOUT_SECONDS,
    PAYPAL_CLIENT_ID,
    PAYPAL_CLIENT_SECRET,
    PAYPAL_ENVIRONMENT,
    ROYAL_MAIL_API_KEY,
    ROYAL_MAIL_API_URL,
    STRIPE_CONNECT_COUNTRY,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
)
from .services.paypal_service import PayPalService
from .services.shipping_service import ShippingService
from .services.stripe_service import StripeService

logger = logging.getLogger(__name__)


@dataclass
class Providers:
    stripe: StripeService
    paypal: PayPalService
    shipping: ShippingService


def build_providers() -> Providers:
    return Providers(
        stripe=StripeService(
            STRIPE_SECRET_KEY,
            webhook_secret=STRIPE_WEBHOOK_SECRET,
            frontend_url=FRONTEND_URL,
            connect_country=STRIPE_CONNECT_COUNTRY,
        ),
        paypal=PayPalService(
            PAYPAL_CLIENT_ID,
            PAYPAL_CLIENT_SECRET,
            environment=PAYPAL_ENVIRONMENT,
            frontend_url=FRONTEND_URL,
            timeout=HTTP_TIMEOUT_SECONDS,
        ),
        shipping=ShippingService(
            royal_mail_api_key=ROYAL_MAIL_API_KEY,
            royal_mail_api_url=ROYAL_MAIL_API_URL,
            dpd_api_key=DPD_API_KEY,
            timeout=HTTP_TIMEOUT_SECONDS,
        ),
    )


def install_providers(app: FastAPI, providers: Providers) -> None:
    app.state.stripe_service = providers.stripe
    app.state.paypal_service = providers.paypal
    app.state.shipping_service = providers.shipping
    logger.info(
        f"Providers ready: stripe={providers.stripe.is_available()} paypal={providers.paypal.is_available()}"
    )


def get_stripe_service(request: Request) -> StripeService:
    return request.app.state.stripe_service


def get_paypal_service(request: Request) -> PayPalService:
    return request.app.state.paypal_service


def get_shipping_service(request: Request) -> ShippingService:
    return request.app.state.shipping_service
