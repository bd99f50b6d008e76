"""
Minimal Stripe PaymentIntents client over the REST API.

Amounts are sent in minor units (paise/cents); callers pass major units to
`to_minor_units` first.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

import config

logger = logging.getLogger(__name__)


class PaymentGatewayError(RuntimeError):
    """Stripe rejected the call or could not be reached."""


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def from_minor_units(amount: int) -> float:
    return int(amount) / 100


def _request(method: str, path: str, data: Optional[dict] = None) -> dict:
    if not config.STRIPE_SECRET_KEY:
        raise PaymentGatewayError("STRIPE_SECRET_KEY is not set")
    try:
        resp = requests.request(
            method,
            f"{config.STRIPE_API_BASE}{path}",
            auth=(config.STRIPE_SECRET_KEY, ""),
            data=data,
            timeout=20,
        )
    except requests.RequestException as exc:
        raise PaymentGatewayError(f"Stripe unreachable: {exc}") from exc

    try:
        body = resp.json()
    except ValueError:
        body = {}
    if resp.status_code >= 300:
        message = (body.get("error") or {}).get("message") or resp.text
        logger.warning("Stripe %s %s failed (%s): %s", method, path, resp.status_code, message)
        raise PaymentGatewayError(f"Stripe request failed ({resp.status_code}): {message}")
    return body


def create_payment_intent(*, amount: int, currency: str, metadata: Optional[dict] = None) -> dict:
    """Create a PaymentIntent for `amount` minor units."""
    data = {
        "amount": int(amount),
        "currency": currency.lower(),
        "automatic_payment_methods[enabled]": "true",
    }
    # Stripe metadata values must be strings.
    for key, value in (metadata or {}).items():
        if value is not None:
            data[f"metadata[{key}]"] = str(value)
    intent = _request("POST", "/payment_intents", data)
    logger.info("Created payment intent %s (%s %s)", intent.get("id"), amount, currency)
    return intent


def retrieve_payment_intent(intent_id: str) -> dict:
    return _request("GET", f"/payment_intents/{intent_id}")
