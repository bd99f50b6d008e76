from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    full_name = Column(String(50), nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=False)

    # Store password hash (bcrypt). Never store plaintext.
    password_hash = Column(String, nullable=False)
    # Reset tokens issued before this instant are rejected.
    password_changed_at = Column(DateTime, nullable=True)

    role = Column(String, default="user", nullable=False)  # "user" | "facility_owner" | "admin"
    profile_picture = Column(String, default="", nullable=False)

    is_email_verified = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    venues = relationship("Venue", back_populates="owner")


class OtpCode(Base):
    __tablename__ = "otp_codes"

    id = Column(Integer, primary_key=True)
    recipient = Column(String, nullable=False)  # lower-cased email
    purpose = Column(String, nullable=False)  # "email_verification" | "password_reset"
    code = Column(String(6), nullable=False)
    attempt_count = Column(Integer, default=0, nullable=False)
    consumed = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_attempt_at = Column(DateTime, nullable=True)

    # Ids are never reused, so a superseded record id cannot address its replacement.
    __table_args__ = (
        Index("ix_otp_codes_recipient_purpose", "recipient", "purpose"),
        {"sqlite_autoincrement": True},
    )


class Venue(Base):
    __tablename__ = "venues"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False)

    street = Column(String, nullable=False)
    city = Column(String, nullable=False, index=True)
    state = Column(String, nullable=False)
    zip_code = Column(String, nullable=False)
    country = Column(String, nullable=False, default="India")
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    amenities = Column(JSON, default=list, nullable=False)
    photos = Column(JSON, default=list, nullable=False)  # served URLs
    # {"monday": {"open": "06:00", "close": "22:00", "is_closed": false}, ...}
    operating_hours = Column(JSON, default=dict, nullable=False)
    facilities = Column(JSON, default=list, nullable=False)
    rules = Column(JSON, default=list, nullable=False)
    cancellation_policy = Column(
        String, default="Cancellation allowed up to 24 hours before booking time", nullable=False
    )

    contact_phone = Column(String, nullable=False)
    contact_email = Column(String, nullable=False)
    website = Column(String, nullable=True)

    price_min = Column(Float, nullable=False)
    price_max = Column(Float, nullable=False)

    status = Column(String, default="approved", nullable=False)  # pending | approved | rejected | suspended
    is_active = Column(Boolean, default=True, nullable=False)

    # Denormalized from reviews; recomputed on every review write.
    rating_average = Column(Float, default=0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("User", back_populates="venues")
    sports = relationship("VenueSport", cascade="all, delete-orphan", lazy="selectin")

    @property
    def sports_supported(self) -> list[str]:
        return [s.sport for s in self.sports]


class VenueSport(Base):
    __tablename__ = "venue_sports"

    id = Column(Integer, primary_key=True)
    venue_id = Column(Integer, ForeignKey("venues.id", ondelete="CASCADE"), nullable=False, index=True)
    sport = Column(String, nullable=False, index=True)

    __table_args__ = (UniqueConstraint("venue_id", "sport"),)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=False, index=True)

    sport = Column(String, nullable=False)
    booking_date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    duration = Column(Integer, nullable=False)  # hours, 1..8
    # [{"id", "name", "type", "sport", "price_per_hour", "features", "is_available"}]
    selected_components = Column(JSON, default=list, nullable=False)
    total_amount = Column(Float, nullable=False)

    status = Column(String, default="pending", nullable=False, index=True)

    transaction_id = Column(String, nullable=True, index=True)
    payment_method = Column(String, default="stripe", nullable=False)  # stripe | razorpay | cash | upi
    payment_status = Column(String, default="pending", nullable=False)  # pending | completed | failed | refunded
    paid_amount = Column(Float, nullable=True)

    booking_notes = Column(String(500), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User")
    venue = relationship("Venue")


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=False, index=True)
    # One review per booking.
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)

    rating = Column(Integer, nullable=False, index=True)
    title = Column(String(100), nullable=False)
    comment = Column(Text, nullable=False)

    cleanliness = Column(Integer, nullable=False)
    facilities = Column(Integer, nullable=False)
    staff = Column(Integer, nullable=False)
    value = Column(Integer, nullable=False)

    photos = Column(JSON, default=list, nullable=False)  # [{"url", "caption"}]
    is_verified = Column(Boolean, default=False, nullable=False)
    helpful = Column(Integer, default=0, nullable=False)

    response_comment = Column(Text, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    responded_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", foreign_keys=[user_id])
    venue = relationship("Venue")
    booking = relationship("Booking")
    votes = relationship("ReviewVote", cascade="all, delete-orphan", back_populates="review")


class ReviewVote(Base):
    __tablename__ = "review_votes"

    id = Column(Integer, primary_key=True)
    review_id = Column(Integer, ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_helpful = Column(Boolean, nullable=False)

    review = relationship("Review", back_populates="votes")

    __table_args__ = (UniqueConstraint("review_id", "user_id"),)
