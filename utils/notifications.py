"""
Out-of-band delivery: one-time codes and booking emails.

Without Brevo credentials codes go to the operational log ("console" channel)
so local setups keep working. Codes are never returned to HTTP callers.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import requests

from models import utcnow
from utils import brevo_email
from utils.email_templates import (
    booking_confirmation_email,
    password_changed_email,
    password_reset_email,
    verification_email,
)
from utils.otp_store import OtpPurpose

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    channel: str  # "email" | "console" | "console-fallback" | "failed"


class EmailOtpNotifier:
    def __init__(self, *, full_name: str = "", clock: Callable[[], datetime] = utcnow):
        self.full_name = full_name or "there"
        self.clock = clock

    def _render(self, purpose, code: str, minutes: int) -> tuple[str, str, str]:
        if OtpPurpose(purpose) is OtpPurpose.PASSWORD_RESET:
            return password_reset_email(self.full_name, code, minutes)
        return verification_email(self.full_name, code, minutes)

    @staticmethod
    def _log_code(recipient: str, purpose, code: str, minutes: int) -> None:
        logger.warning(
            "OTP (%s) for %s: %s (valid for %d minutes)", OtpPurpose(purpose).value, recipient, code, minutes
        )

    def send(self, recipient: str, purpose, code: str, expires_at: datetime) -> DeliveryResult:
        minutes = max(1, math.ceil((expires_at - self.clock()).total_seconds() / 60))
        if not brevo_email.is_configured():
            self._log_code(recipient, purpose, code, minutes)
            return DeliveryResult(ok=True, channel="console")

        subject, html, text = self._render(purpose, code, minutes)
        try:
            brevo_email.send_email(to_email=recipient, subject=subject, html=html, text=text)
        except (requests.RequestException, RuntimeError) as exc:
            logger.warning("OTP email to %s failed: %s", recipient, exc)
            self._log_code(recipient, purpose, code, minutes)
            return DeliveryResult(ok=False, channel="console-fallback")
        return DeliveryResult(ok=True, channel="email")


def _send_best_effort(to_email: str, subject: str, html: str, text: str) -> bool:
    if not brevo_email.is_configured():
        logger.info("Email %r to %s skipped (Brevo not configured)", subject, to_email)
        return False
    try:
        brevo_email.send_email(to_email=to_email, subject=subject, html=html, text=text)
    except (requests.RequestException, RuntimeError) as exc:
        logger.warning("Email %r to %s failed: %s", subject, to_email, exc)
        return False
    return True


def send_booking_confirmation(*, user, venue, booking) -> bool:
    subject, html, text = booking_confirmation_email(
        full_name=user.full_name, venue_name=venue.name, venue_city=venue.city, booking=booking
    )
    return _send_best_effort(user.email, subject, html, text)


def send_password_changed(user) -> bool:
    subject, html, text = password_changed_email(user.full_name)
    return _send_best_effort(user.email, subject, html, text)
