"""
Persistent store for one-time codes.

Two backends share one contract: `SqlOtpStore` (the `otp_codes` table) and
`RedisOtpStore` (one hash per recipient/purpose, picked when REDIS_URL is
set). Policy decisions (rate limiting, expiry, attempt caps) live in
`utils/otp_service.py`; the store only reads and writes records.
"""

from __future__ import annotations

import enum
import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Callable, Iterator, Optional

import redis
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import config
from models import OtpCode, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class OtpPurpose(str, enum.Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class StorageError(Exception):
    """The backing store could not be read or written."""


@dataclass(frozen=True)
class OtpRecord:
    id: str
    recipient: str
    purpose: str
    code: str
    attempt_count: int
    consumed: bool
    expires_at: datetime
    created_at: datetime
    last_attempt_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


def normalize_recipient(recipient: str) -> str:
    return (recipient or "").strip().lower()


def _purpose_value(purpose) -> str:
    return OtpPurpose(purpose).value


class SqlOtpStore:
    def __init__(self, db: Session, *, clock: Clock = utcnow, max_attempts: int = config.OTP_MAX_ATTEMPTS):
        self.db = db
        self.clock = clock
        self.max_attempts = max_attempts

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("OTP store %s failed", action)
            raise StorageError(f"OTP store {action} failed") from exc

    @staticmethod
    def _to_record(row: OtpCode) -> OtpRecord:
        return OtpRecord(
            id=str(row.id),
            recipient=row.recipient,
            purpose=row.purpose,
            code=row.code,
            attempt_count=int(row.attempt_count or 0),
            consumed=bool(row.consumed),
            expires_at=row.expires_at,
            created_at=row.created_at,
            last_attempt_at=row.last_attempt_at,
        )

    def _key_query(self, recipient: str, purpose):
        return self.db.query(OtpCode).filter(
            OtpCode.recipient == normalize_recipient(recipient),
            OtpCode.purpose == _purpose_value(purpose),
        )

    def put(self, recipient: str, purpose, code: str, ttl: timedelta) -> str:
        now = self.clock()
        with self._guard("put"):
            # Supersede: at most one unconsumed record per key.
            self._key_query(recipient, purpose).filter(OtpCode.consumed.is_(False)).delete(
                synchronize_session=False
            )
            row = OtpCode(
                recipient=normalize_recipient(recipient),
                purpose=_purpose_value(purpose),
                code=code,
                attempt_count=0,
                consumed=False,
                expires_at=now + ttl,
                created_at=now,
            )
            self.db.add(row)
            self.db.commit()
            return str(row.id)

    def find_active(self, recipient: str, purpose) -> Optional[OtpRecord]:
        with self._guard("find_active"):
            row = (
                self._key_query(recipient, purpose)
                .filter(OtpCode.consumed.is_(False))
                .order_by(OtpCode.created_at.desc(), OtpCode.id.desc())
                .first()
            )
        return self._to_record(row) if row else None

    def find_latest(self, recipient: str, purpose) -> Optional[OtpRecord]:
        with self._guard("find_latest"):
            row = self._key_query(recipient, purpose).order_by(OtpCode.created_at.desc(), OtpCode.id.desc()).first()
        return self._to_record(row) if row else None

    def record_attempt(self, record_id: str) -> None:
        with self._guard("record_attempt"):
            self.db.query(OtpCode).filter(
                OtpCode.id == int(record_id),
                OtpCode.consumed.is_(False),
                OtpCode.attempt_count < self.max_attempts,
            ).update(
                {OtpCode.attempt_count: OtpCode.attempt_count + 1, OtpCode.last_attempt_at: self.clock()},
                synchronize_session=False,
            )
            self.db.commit()

    def consume(self, record_id: str) -> None:
        with self._guard("consume"):
            self.db.query(OtpCode).filter(
                OtpCode.id == int(record_id),
                OtpCode.consumed.is_(False),
            ).update({OtpCode.consumed: True, OtpCode.last_attempt_at: self.clock()}, synchronize_session=False)
            self.db.commit()

    def purge_expired(self) -> int:
        with self._guard("purge_expired"):
            deleted = (
                self.db.query(OtpCode)
                .filter(OtpCode.consumed.is_(False), OtpCode.expires_at < self.clock())
                .delete(synchronize_session=False)
            )
            self.db.commit()
        return int(deleted or 0)

    def statistics(self, since: datetime) -> dict:
        now = self.clock()
        with self._guard("statistics"):
            recent = self.db.query(OtpCode.purpose, func.count(OtpCode.id)).filter(OtpCode.created_at >= since)
            per_purpose = dict(recent.group_by(OtpCode.purpose).all())
            consumed = (
                self.db.query(func.count(OtpCode.id))
                .filter(OtpCode.created_at >= since, OtpCode.consumed.is_(True))
                .scalar()
            )
            expired_unused = (
                self.db.query(func.count(OtpCode.id))
                .filter(OtpCode.consumed.is_(False), OtpCode.expires_at < now)
                .scalar()
            )
        return {
            "email_verification_sent": int(per_purpose.get(OtpPurpose.EMAIL_VERIFICATION.value, 0)),
            "password_reset_sent": int(per_purpose.get(OtpPurpose.PASSWORD_RESET.value, 0)),
            "successful_verifications": int(consumed or 0),
            "expired_unused": int(expired_unused or 0),
        }


class RedisOtpStore:
    """
    Redis keeps only the newest record per key, which is all the policies ever
    read. Keys expire `retention` after the code itself so that spent and
    expired codes can still be reported as such for a while.
    """

    KEY_PREFIX = "otp"

    def __init__(
        self,
        client: "redis.Redis",
        *,
        clock: Clock = utcnow,
        max_attempts: int = config.OTP_MAX_ATTEMPTS,
        retention: timedelta = timedelta(hours=config.OTP_RETENTION_HOURS),
    ):
        self.r = client
        self.clock = clock
        self.max_attempts = max_attempts
        self.retention = retention

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as exc:
            logger.exception("OTP redis %s failed", action)
            raise StorageError(f"OTP store {action} failed") from exc

    def _key(self, recipient: str, purpose) -> str:
        return f"{self.KEY_PREFIX}:{_purpose_value(purpose)}:{normalize_recipient(recipient)}"

    @staticmethod
    def _split_id(record_id: str) -> tuple[str, str]:
        key, _, nonce = record_id.rpartition("#")
        return key, nonce

    @staticmethod
    def _to_record(data: dict) -> Optional[OtpRecord]:
        if not data or "id" not in data:
            return None
        last = data.get("last_attempt_at") or None
        return OtpRecord(
            id=data["id"],
            recipient=data["recipient"],
            purpose=data["purpose"],
            code=data["code"],
            attempt_count=int(data.get("attempt_count") or 0),
            consumed=data.get("consumed") == "1",
            expires_at=datetime.fromisoformat(data["expires_at"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_attempt_at=datetime.fromisoformat(last) if last else None,
        )

    def _load(self, key: str) -> Optional[OtpRecord]:
        return self._to_record(self.r.hgetall(key))

    def put(self, recipient: str, purpose, code: str, ttl: timedelta) -> str:
        now = self.clock()
        key = self._key(recipient, purpose)
        record_id = f"{key}#{secrets.token_hex(8)}"
        # One MULTI/EXEC so the hash never exists without its expiry.
        with self._guard("put"), self.r.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            pipe.hset(
                key,
                mapping={
                    "id": record_id,
                    "recipient": normalize_recipient(recipient),
                    "purpose": _purpose_value(purpose),
                    "code": code,
                    "attempt_count": 0,
                    "consumed": "0",
                    "expires_at": (now + ttl).isoformat(),
                    "created_at": now.isoformat(),
                    "last_attempt_at": "",
                },
            )
            pipe.expire(key, int((ttl + self.retention).total_seconds()))
            pipe.execute()
        return record_id

    def find_latest(self, recipient: str, purpose) -> Optional[OtpRecord]:
        with self._guard("find_latest"):
            return self._load(self._key(recipient, purpose))

    def find_active(self, recipient: str, purpose) -> Optional[OtpRecord]:
        record = self.find_latest(recipient, purpose)
        if record is None or record.consumed:
            return None
        return record

    def record_attempt(self, record_id: str) -> None:
        key, _ = self._split_id(record_id)
        with self._guard("record_attempt"):
            record = self._load(key)
            # Superseded, purged or consumed records are left alone.
            if record is None or record.id != record_id or record.consumed:
                return
            if record.attempt_count >= self.max_attempts:
                return
            self.r.hincrby(key, "attempt_count", 1)
            self.r.hset(key, "last_attempt_at", self.clock().isoformat())

    def consume(self, record_id: str) -> None:
        key, _ = self._split_id(record_id)
        with self._guard("consume"):
            record = self._load(key)
            if record is None or record.id != record_id or record.consumed:
                return
            self.r.hset(key, mapping={"consumed": "1", "last_attempt_at": self.clock().isoformat()})

    def _records(self) -> Iterator[tuple[str, OtpRecord]]:
        for key in self.r.scan_iter(match=f"{self.KEY_PREFIX}:*"):
            record = self._load(key)
            if record is not None:
                yield key, record

    def purge_expired(self) -> int:
        now = self.clock()
        deleted = 0
        with self._guard("purge_expired"):
            for key, record in list(self._records()):
                if not record.consumed and record.expires_at < now:
                    deleted += int(self.r.delete(key) or 0)
        return deleted

    def statistics(self, since: datetime) -> dict:
        now = self.clock()
        stats = {
            "email_verification_sent": 0,
            "password_reset_sent": 0,
            "successful_verifications": 0,
            "expired_unused": 0,
        }
        with self._guard("statistics"):
            for _, record in self._records():
                if record.created_at >= since:
                    if record.purpose == OtpPurpose.EMAIL_VERIFICATION.value:
                        stats["email_verification_sent"] += 1
                    else:
                        stats["password_reset_sent"] += 1
                    if record.consumed:
                        stats["successful_verifications"] += 1
                if not record.consumed and record.expires_at < now:
                    stats["expired_unused"] += 1
        return stats


@lru_cache(maxsize=1)
def _redis_client(url: str) -> "redis.Redis":
    return redis.Redis.from_url(url, decode_responses=True, socket_timeout=5)


def build_otp_store(db: Session):
    """Redis when REDIS_URL is configured, otherwise the SQL table."""
    if config.REDIS_URL:
        return RedisOtpStore(_redis_client(config.REDIS_URL))
    return SqlOtpStore(db)
