from __future__ import annotations

import logging
import re
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

import config
from database import get_db
from models import Booking, User, Venue
from routers.auth import get_current_user
from routers.bookings import booking_out
from utils import stripe_client
from utils.notifications import send_booking_confirmation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class ComponentIn(BaseModel):
    id: str
    name: str
    type: str
    sport: str
    price_per_hour: float = Field(ge=0)
    features: list[str] = Field(default_factory=list)
    is_available: bool = True


class BookingDetailsIn(BaseModel):
    venue_id: Optional[int] = None
    sport: str
    booking_date: date
    start_time: str
    duration: int = Field(ge=1, le=8)
    selected_components: list[ComponentIn] = Field(default_factory=list)
    booking_notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("start_time")
    @classmethod
    def check_start_time(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError("start_time must be HH:MM")
        return value


def _bookable_venue(db: Session, venue_id: Optional[int], sport: str) -> Venue:
    venue = db.get(Venue, venue_id) if venue_id else None
    if not venue or not venue.is_active:
        raise HTTPException(404, "Venue not found")
    if venue.sports_supported and sport not in venue.sports_supported:
        raise HTTPException(400, f"{venue.name} does not offer {sport}")
    return venue


class PaymentIntentIn(BaseModel):
    amount: float = Field(gt=0)
    currency: str = config.DEFAULT_CURRENCY
    venue_id: int
    booking_details: BookingDetailsIn


@router.post("/create-payment-intent")
def create_payment_intent(
    payload: PaymentIntentIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    details = payload.booking_details
    venue = _bookable_venue(db, payload.venue_id, details.sport)

    intent = stripe_client.create_payment_intent(
        amount=stripe_client.to_minor_units(payload.amount),
        currency=payload.currency,
        # Flat metadata only; the full booking comes back with confirm-payment.
        metadata={
            "user_id": current_user.id,
            "venue_id": venue.id,
            "sport": details.sport,
            "date": details.booking_date.isoformat(),
            "start_time": details.start_time,
            "duration": details.duration,
        },
    )
    return {"ok": True, "client_secret": intent.get("client_secret"), "payment_intent_id": intent.get("id")}


class ConfirmPaymentIn(BaseModel):
    payment_intent_id: str = Field(min_length=1)
    booking_details: BookingDetailsIn


@router.post("/confirm-payment", status_code=201)
def confirm_payment(
    payload: ConfirmPaymentIn,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    existing = db.query(Booking).filter(Booking.transaction_id == payload.payment_intent_id).first()
    if existing:
        if existing.user_id != current_user.id:
            raise HTTPException(400, "Payment intent does not belong to this account")
        response.status_code = 200
        return {"ok": True, "message": "Booking already confirmed", "booking": booking_out(existing)}

    intent = stripe_client.retrieve_payment_intent(payload.payment_intent_id)
    if intent.get("status") != "succeeded":
        raise HTTPException(400, "Payment not completed")
    owner = (intent.get("metadata") or {}).get("user_id")
    if owner and owner != str(current_user.id):
        raise HTTPException(400, "Payment intent does not belong to this account")

    details = payload.booking_details
    venue = _bookable_venue(db, details.venue_id, details.sport)
    paid = stripe_client.from_minor_units(intent.get("amount") or 0)

    booking = Booking(
        user_id=current_user.id,
        venue_id=venue.id,
        sport=details.sport,
        booking_date=details.booking_date,
        start_time=details.start_time,
        duration=details.duration,
        selected_components=[c.model_dump() for c in details.selected_components],
        total_amount=paid,
        status="confirmed",
        transaction_id=intent.get("id") or payload.payment_intent_id,
        payment_method="stripe",
        payment_status="completed",
        paid_amount=paid,
        booking_notes=details.booking_notes,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    logger.info("Booking %s confirmed for user %s via %s", booking.id, current_user.id, booking.transaction_id)

    send_booking_confirmation(user=current_user, venue=venue, booking=booking)
    return {
        "ok": True,
        "message": "Booking confirmed successfully",
        "booking": booking_out(booking),
        "payment_intent": {"id": intent.get("id"), "status": intent.get("status"), "amount": paid},
    }


@router.get("/test-connection")
def test_connection(current_user: User = Depends(get_current_user)):
    intent = stripe_client.create_payment_intent(
        amount=100,
        currency=config.DEFAULT_CURRENCY,
        metadata={"test": "true", "user_id": current_user.id},
    )
    return {
        "ok": True,
        "message": "Stripe connection successful",
        "test_intent_id": intent.get("id"),
        "status": intent.get("status"),
    }
