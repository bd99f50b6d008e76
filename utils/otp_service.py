"""
Issuing and verifying one-time codes.

Expected rejections (rate limit, wrong/expired/spent code, attempt cap) come
back as values; only `StorageError` from the store is raised.
"""

from __future__ import annotations

import enum
import hmac
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session

import config
from models import utcnow
from utils.notifications import DeliveryResult, EmailOtpNotifier
from utils.otp_store import OtpPurpose, build_otp_store, normalize_recipient

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = {
    OtpPurpose.EMAIL_VERIFICATION: config.OTP_VERIFY_EXP_MINUTES,
    OtpPurpose.PASSWORD_RESET: config.OTP_RESET_EXP_MINUTES,
}


class VerifyOutcome(str, enum.Enum):
    SUCCESS = "success"
    INVALID = "invalid"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    TOO_MANY_ATTEMPTS = "too_many_attempts"


_MESSAGES = {
    VerifyOutcome.SUCCESS: "OTP verified successfully",
    VerifyOutcome.INVALID: "Invalid OTP",
    VerifyOutcome.EXPIRED: "OTP has expired. Please request a new one.",
    VerifyOutcome.ALREADY_USED: "OTP has already been used",
    VerifyOutcome.TOO_MANY_ATTEMPTS: "Too many invalid attempts. Please request a new OTP.",
}


@dataclass(frozen=True)
class VerifyResult:
    outcome: VerifyOutcome

    @property
    def ok(self) -> bool:
        return self.outcome is VerifyOutcome.SUCCESS

    @property
    def message(self) -> str:
        return _MESSAGES[self.outcome]


@dataclass(frozen=True)
class Issued:
    code: str
    expires_at: datetime
    delivery: DeliveryResult


@dataclass(frozen=True)
class RateLimited:
    time_left: int  # seconds, always > 0

    @property
    def message(self) -> str:
        minutes = math.ceil(self.time_left / 60)
        return f"Please wait {minutes} minutes before requesting a new OTP"


IssueResult = Union[Issued, RateLimited]


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


class OtpService:
    def __init__(
        self,
        store,
        notifier=None,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = config.OTP_MAX_ATTEMPTS,
    ):
        self.store = store
        self.notifier = notifier or EmailOtpNotifier(clock=clock)
        self.clock = clock
        self.max_attempts = max_attempts

    def _seconds_left(self, expires_at: datetime, now: datetime) -> int:
        return max(0, math.ceil((expires_at - now).total_seconds()))

    def issue(self, recipient: str, purpose, ttl_minutes: Optional[int] = None) -> IssueResult:
        recipient = normalize_recipient(recipient)
        purpose = OtpPurpose(purpose)
        now = self.clock()

        active = self.store.find_active(recipient, purpose)
        if active and not active.is_expired(now) and active.attempt_count < self.max_attempts:
            return RateLimited(time_left=max(1, self._seconds_left(active.expires_at, now)))

        minutes = DEFAULT_TTL_MINUTES[purpose] if ttl_minutes is None else ttl_minutes
        if minutes <= 0:
            raise ValueError("ttl_minutes must be positive")
        ttl = timedelta(minutes=minutes)
        code = generate_code()
        record_id = self.store.put(recipient, purpose, code, ttl)
        # Report the expiry the store saved, which is what verify() will enforce.
        stored = self.store.find_active(recipient, purpose)
        expires_at = stored.expires_at if stored and stored.id == record_id else now + ttl
        logger.info("OTP issued for %s (%s), expires %s", recipient, purpose.value, expires_at.isoformat())

        try:
            delivery = self.notifier.send(recipient, purpose, code, expires_at)
        except Exception:
            # The stored code stays valid; delivery is best-effort.
            logger.exception("OTP delivery to %s raised", recipient)
            delivery = DeliveryResult(ok=False, channel="failed")
        return Issued(code=code, expires_at=expires_at, delivery=delivery)

    def verify(self, recipient: str, purpose, submitted: str) -> VerifyResult:
        recipient = normalize_recipient(recipient)
        purpose = OtpPurpose(purpose)
        submitted = (submitted or "").strip()
        now = self.clock()

        record = self.store.find_active(recipient, purpose)
        if record is None:
            latest = self.store.find_latest(recipient, purpose)
            if latest and latest.consumed and hmac.compare_digest(latest.code, submitted):
                return VerifyResult(VerifyOutcome.ALREADY_USED)
            return VerifyResult(VerifyOutcome.INVALID)
        if record.consumed:
            return VerifyResult(VerifyOutcome.ALREADY_USED)
        if record.is_expired(now):
            return VerifyResult(VerifyOutcome.EXPIRED)
        if record.attempt_count >= self.max_attempts:
            return VerifyResult(VerifyOutcome.TOO_MANY_ATTEMPTS)
        if not hmac.compare_digest(record.code, submitted):
            self.store.record_attempt(record.id)
            logger.info("Wrong OTP for %s (%s), attempt %d", recipient, purpose.value, record.attempt_count + 1)
            return VerifyResult(VerifyOutcome.INVALID)

        self.store.consume(record.id)
        logger.info("OTP verified for %s (%s)", recipient, purpose.value)
        return VerifyResult(VerifyOutcome.SUCCESS)

    def status(self, recipient: str, purpose) -> dict:
        now = self.clock()
        record = self.store.find_active(normalize_recipient(recipient), OtpPurpose(purpose))
        if record is None:
            return {"exists": False}
        expired = record.is_expired(now)
        return {
            "exists": True,
            "is_expired": expired,
            "time_left": 0 if expired else self._seconds_left(record.expires_at, now),
            "attempts": record.attempt_count,
            "max_attempts": self.max_attempts,
            "can_resend": expired or record.attempt_count >= self.max_attempts,
            "created_at": record.created_at.isoformat(),
            "expires_at": record.expires_at.isoformat(),
        }

    def statistics(self) -> dict:
        return self.store.statistics(since=self.clock() - timedelta(hours=24))

    def purge_expired(self) -> int:
        deleted = self.store.purge_expired()
        if deleted:
            logger.info("Purged %d expired OTP records", deleted)
        return deleted


def build_otp_service(db: Session, *, full_name: str = "") -> OtpService:
    return OtpService(build_otp_store(db), EmailOtpNotifier(full_name=full_name))
