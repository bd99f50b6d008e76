from __future__ import annotations

import logging
from typing import Optional

import requests

import config

logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"


def is_configured() -> bool:
    return bool(config.BREVO_API_KEY and config.BREVO_FROM)


def send_email(*, to_email: str, subject: str, html: str, text: Optional[str] = None) -> str:
    """
    Sends email using Brevo Transactional Email API and returns the message id.
    Requires:
      - BREVO_API_KEY
      - BREVO_FROM (email) OR EMAIL_FROM
    """
    if not config.BREVO_API_KEY:
        raise RuntimeError("BREVO_API_KEY is not set")
    if not config.BREVO_FROM:
        raise RuntimeError("BREVO_FROM (or EMAIL_FROM) is not set")

    payload = {
        "sender": {"email": config.BREVO_FROM, "name": config.BREVO_SENDER_NAME},
        "to": [{"email": to_email}],
        "subject": subject,
        "htmlContent": html,
    }
    if text:
        payload["textContent"] = text

    resp = requests.post(
        BREVO_SEND_URL,
        headers={
            "accept": "application/json",
            "api-key": config.BREVO_API_KEY,
            "content-type": "application/json",
        },
        json=payload,
        timeout=15,
    )
    if resp.status_code >= 300:
        raise RuntimeError(f"Brevo send failed ({resp.status_code}): {resp.text}")

    message_id = ""
    try:
        message_id = str(resp.json().get("messageId") or "")
    except ValueError:
        pass
    logger.info("Email %r sent to %s (%s)", subject, to_email, message_id or "no id")
    return message_id
