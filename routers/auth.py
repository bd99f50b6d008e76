from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Callable, Optional

import bcrypt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

import config
from database import get_db
from models import User, utcnow
from utils.notifications import send_password_changed
from utils.otp_service import Issued, OtpService, RateLimited, VerifyResult, build_otp_service
from utils.otp_store import OtpPurpose, normalize_recipient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])
bearer = HTTPBearer(auto_error=False)

RESET_PURPOSE = "password-reset"
ROLES = ("user", "facility_owner")

_NAME_RE = re.compile(r"^[A-Za-z\s]{2,50}$")
_PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,20}$")
_PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")
_OTP_RE = re.compile(r"^\d{6}$")


def _now() -> datetime:
    return datetime.now(timezone.utc)


# Passwords


def _bcrypt_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes; truncate multi-byte safely.
    return password.encode("utf-8")[:72].decode("utf-8", errors="ignore").encode("utf-8")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_bcrypt_bytes(password), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_bcrypt_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


def validate_password(password: str, confirm: Optional[str] = None) -> None:
    if not _PASSWORD_RE.match(password or ""):
        raise HTTPException(
            400,
            "Password must be 8-20 characters with an uppercase letter, a lowercase letter, "
            "a number and one of @$!%*?&",
        )
    if confirm is not None and confirm != password:
        raise HTTPException(400, "Passwords do not match")


def validate_phone(phone: str) -> str:
    phone = (phone or "").strip()
    clean = re.sub(r"[\s\-()]", "", phone)
    if len(clean) < 10:
        raise HTTPException(400, "Phone number must be at least 10 digits")
    if not _PHONE_RE.match(clean):
        raise HTTPException(400, "Please enter a valid phone number (digits only)")
    return phone


def validate_full_name(full_name: str) -> str:
    full_name = (full_name or "").strip()
    if not _NAME_RE.match(full_name):
        raise HTTPException(400, "Full name must be 2-50 letters and spaces")
    return full_name


# Tokens


def _password_version(user: User) -> int:
    changed = user.password_changed_at
    return int(changed.replace(tzinfo=timezone.utc).timestamp() * 1_000_000) if changed else 0


def _create_token(*, user_id: int, minutes: int = config.JWT_EXP_MIN, extra: Optional[dict] = None) -> str:
    now = _now()
    payload = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    payload.update(extra or {})
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def _create_reset_token(user: User) -> str:
    return _create_token(
        user_id=user.id,
        minutes=config.RESET_TOKEN_EXP_MIN,
        extra={"purpose": RESET_PURPOSE, "pwv": _password_version(user)},
    )


def _decode(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except JWTError:
        raise HTTPException(401, "Invalid token")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds or not creds.credentials:
        raise HTTPException(401, "Missing Authorization token")
    payload = _decode(creds.credentials)
    sub = payload.get("sub")
    # Reset tokens are not session tokens.
    if not sub or payload.get("purpose"):
        raise HTTPException(401, "Invalid token")
    user = db.get(User, int(sub))
    if not user:
        raise HTTPException(401, "User not found")
    if not user.is_active:
        raise HTTPException(401, "Account has been deactivated")
    return user


def require_role(*roles: str) -> Callable[..., User]:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(403, "You do not have permission to perform this action")
        return current_user

    return dependency


def user_out(user: User) -> dict:
    return {
        "id": user.id,
        "full_name": user.full_name,
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
        "profile_picture": user.profile_picture or "",
        "is_email_verified": bool(user.is_email_verified),
        "is_active": bool(user.is_active),
        "last_login": user.last_login.isoformat() if user.last_login else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


# One-time codes


def get_otp_service_factory(db: Session = Depends(get_db)) -> Callable[..., OtpService]:
    """`make(full_name="") -> OtpService` bound to the request's session."""
    return partial(build_otp_service, db)


def _issue(service: OtpService, email: str, purpose: OtpPurpose) -> Issued:
    result = service.issue(email, purpose)
    if isinstance(result, RateLimited):
        raise HTTPException(
            429,
            detail={"message": result.message, "time_left": result.time_left},
            headers={"Retry-After": str(result.time_left)},
        )
    return result


def _verify(service: OtpService, email: str, purpose: OtpPurpose, otp: str) -> VerifyResult:
    otp = (otp or "").strip()
    if not _OTP_RE.match(otp):
        raise HTTPException(400, detail={"message": "OTP must be 6 digits", "reason": "invalid"})
    result = service.verify(email, purpose, otp)
    if not result.ok:
        raise HTTPException(400, detail={"message": result.message, "reason": result.outcome.value})
    return result


def _find_user(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == normalize_recipient(email)).first()


class SignupIn(BaseModel):
    full_name: str
    email: EmailStr
    password: str
    confirm_password: str
    phone: str
    role: str = "user"


@router.post("/signup", status_code=201)
def signup(
    payload: SignupIn,
    db: Session = Depends(get_db),
    otp_factory: Callable[..., OtpService] = Depends(get_otp_service_factory),
):
    full_name = validate_full_name(payload.full_name)
    validate_password(payload.password, payload.confirm_password)
    phone = validate_phone(payload.phone)
    if payload.role not in ROLES:
        raise HTTPException(400, "Role must be either user or facility_owner")

    email = normalize_recipient(str(payload.email))
    if _find_user(db, email):
        raise HTTPException(400, "User with this email already exists")

    user = User(
        full_name=full_name,
        email=email,
        phone=phone,
        password_hash=hash_password(payload.password),
        role=payload.role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("User %s signed up as %s", user.id, user.role)

    result = otp_factory(full_name=user.full_name).issue(email, OtpPurpose.EMAIL_VERIFICATION)
    otp_sent = isinstance(result, Issued) and result.delivery.ok
    message = (
        "User registered successfully. Please check your email for verification code."
        if otp_sent
        else "User registered successfully, but the verification email failed. Please request a new code."
    )
    return {"ok": True, "message": message, "user": user_out(user), "otp_sent": otp_sent}


class LoginIn(BaseModel):
    email: EmailStr
    password: str


@router.post("/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = _find_user(db, str(payload.email))
    if not user or not check_password(payload.password, user.password_hash):
        raise HTTPException(401, "Invalid email or password")
    if not user.is_active:
        raise HTTPException(401, "Account has been deactivated. Please contact support.")
    if not user.is_email_verified:
        raise HTTPException(
            401,
            detail={"message": "Please verify your email before logging in", "requires_verification": True},
        )

    user.last_login = utcnow()
    db.commit()
    db.refresh(user)
    return {
        "ok": True,
        "message": "Login successful",
        "access_token": _create_token(user_id=user.id),
        "token_type": "bearer",
        "user": user_out(user),
    }


class VerifyEmailIn(BaseModel):
    email: EmailStr
    otp: str


@router.post("/verify-email")
def verify_email(
    payload: VerifyEmailIn,
    db: Session = Depends(get_db),
    otp_factory: Callable[..., OtpService] = Depends(get_otp_service_factory),
):
    user = _find_user(db, str(payload.email))
    if not user:
        raise HTTPException(404, "User not found")

    _verify(otp_factory(), user.email, OtpPurpose.EMAIL_VERIFICATION, payload.otp)

    user.is_email_verified = True
    user.last_login = utcnow()
    db.commit()
    db.refresh(user)
    logger.info("User %s verified their email", user.id)
    return {
        "ok": True,
        "message": "Email verified successfully",
        "access_token": _create_token(user_id=user.id),
        "token_type": "bearer",
        "user": user_out(user),
    }


class ResendOtpIn(BaseModel):
    email: EmailStr
    type: OtpPurpose = OtpPurpose.EMAIL_VERIFICATION


@router.post("/resend-otp")
def resend_otp(
    payload: ResendOtpIn,
    db: Session = Depends(get_db),
    otp_factory: Callable[..., OtpService] = Depends(get_otp_service_factory),
):
    user = _find_user(db, str(payload.email))
    if not user:
        raise HTTPException(404, "User not found")
    if payload.type is OtpPurpose.EMAIL_VERIFICATION and user.is_email_verified:
        raise HTTPException(400, "Email is already verified")

    issued = _issue(otp_factory(full_name=user.full_name), user.email, payload.type)
    return {
        "ok": True,
        "message": "Verification code sent successfully",
        "otp_sent": issued.delivery.ok,
        "expires_at": issued.expires_at.isoformat(),
    }


@router.get("/otp-status")
def otp_status(
    email: EmailStr,
    type: OtpPurpose,
    otp_factory: Callable[..., OtpService] = Depends(get_otp_service_factory),
):
    return {"ok": True, **otp_factory().status(str(email), type)}


@router.get("/otp-stats")
def otp_stats(
    _admin: User = Depends(require_role("admin")),
    otp_factory: Callable[..., OtpService] = Depends(get_otp_service_factory),
):
    return {"ok": True, "stats": otp_factory().statistics()}


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return {"ok": True, "user": user_out(current_user)}


@router.post("/logout")
def logout(current_user: User = Depends(get_current_user)):
    # Tokens are stateless; the client drops it.
    logger.info("User %s logged out", current_user.id)
    return {"ok": True, "message": "Logged out successfully"}


class ForgotPasswordIn(BaseModel):
    email: EmailStr


@router.post("/forgot-password")
def forgot_password(
    payload: ForgotPasswordIn,
    db: Session = Depends(get_db),
    otp_factory: Callable[..., OtpService] = Depends(get_otp_service_factory),
):
    user = _find_user(db, str(payload.email))
    if not user or not user.is_active:
        return {"ok": True, "message": "If an account with this email exists, a password reset code has been sent."}

    issued = _issue(otp_factory(full_name=user.full_name), user.email, OtpPurpose.PASSWORD_RESET)
    return {
        "ok": True,
        "message": "Password reset code has been sent to your email.",
        "otp_sent": issued.delivery.ok,
        "expires_at": issued.expires_at.isoformat(),
    }


class VerifyResetOtpIn(BaseModel):
    email: EmailStr
    otp: str


@router.post("/verify-reset-otp")
def verify_reset_otp(
    payload: VerifyResetOtpIn,
    db: Session = Depends(get_db),
    otp_factory: Callable[..., OtpService] = Depends(get_otp_service_factory),
):
    user = _find_user(db, str(payload.email))
    if not user or not user.is_active:
        raise HTTPException(400, detail={"message": "Invalid or expired reset code.", "reason": "invalid"})

    _verify(otp_factory(), user.email, OtpPurpose.PASSWORD_RESET, payload.otp)
    return {
        "ok": True,
        "message": "Reset code verified successfully.",
        "reset_token": _create_reset_token(user),
        "expires_in": config.RESET_TOKEN_EXP_MIN * 60,
    }


class ResetPasswordIn(BaseModel):
    reset_token: str
    new_password: str
    confirm_password: str


@router.post("/reset-password")
def reset_password(payload: ResetPasswordIn, db: Session = Depends(get_db)):
    try:
        claims = jwt.decode(payload.reset_token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except JWTError:
        raise HTTPException(400, "Invalid or expired reset token.")
    if claims.get("purpose") != RESET_PURPOSE or not claims.get("sub"):
        raise HTTPException(400, "Invalid reset token.")

    user = db.get(User, int(claims["sub"]))
    if not user or not user.is_active:
        raise HTTPException(400, "Invalid reset token.")
    # A token outlives neither its own use nor any later password change.
    if claims.get("pwv") != _password_version(user):
        raise HTTPException(400, "Reset session has expired. Please request a new password reset.")

    validate_password(payload.new_password, payload.confirm_password)
    user.password_hash = hash_password(payload.new_password)
    user.password_changed_at = utcnow()
    db.commit()
    logger.info("User %s reset their password", user.id)

    send_password_changed(user)
    return {
        "ok": True,
        "message": "Password has been reset successfully. You can now log in with your new password.",
    }
