from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import get_db
from models import Booking, User, Venue, utcnow
from routers.auth import get_current_user, require_role
from routers.venues import page_info, venue_summary
from utils import analytics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])

owner_only = require_role("facility_owner")
owner_or_admin = require_role("facility_owner", "admin")

OWNER_STATUSES = ("confirmed", "cancelled", "completed", "no_show")


def booking_out(booking: Booking, *, with_user: bool = False) -> dict:
    out = {
        "id": booking.id,
        "user_id": booking.user_id,
        "venue_id": booking.venue_id,
        "venue": venue_summary(booking.venue) if booking.venue else None,
        "sport": booking.sport,
        "booking_date": booking.booking_date.isoformat(),
        "start_time": booking.start_time,
        "duration": booking.duration,
        "selected_components": list(booking.selected_components or []),
        "total_amount": booking.total_amount,
        "status": booking.status,
        "payment_details": {
            "transaction_id": booking.transaction_id,
            "payment_method": booking.payment_method,
            "payment_status": booking.payment_status,
            "paid_amount": booking.paid_amount,
        },
        "booking_notes": booking.booking_notes,
        "cancellation_reason": booking.cancellation_reason,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
    }
    if with_user and booking.user:
        out["user"] = {
            "id": booking.user.id,
            "full_name": booking.user.full_name,
            "email": booking.user.email,
            "phone": booking.user.phone,
        }
    return out


def _owned_venue_ids(db: Session, user: User) -> list[int]:
    return [vid for (vid,) in db.query(Venue.id).filter(Venue.owner_id == user.id).all()]


def _get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(404, "Booking not found")
    return booking


def _is_venue_owner(booking: Booking, user: User) -> bool:
    return user.role == "admin" or (booking.venue is not None and booking.venue.owner_id == user.id)


@router.get("/my-bookings")
def my_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = db.query(Booking).filter(Booking.user_id == current_user.id)
    total = q.count()
    rows = q.order_by(Booking.created_at.desc(), Booking.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "ok": True,
        "bookings": [booking_out(b) for b in rows],
        "pagination": page_info(page=page, limit=limit, total=total, count=len(rows), label="bookings"),
    }


@router.get("/venue-bookings")
def venue_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(owner_only),
    db: Session = Depends(get_db),
):
    venue_ids = _owned_venue_ids(db, current_user)
    if not venue_ids:
        empty = page_info(page=1, limit=limit, total=0, count=0, label="bookings")
        return {"ok": True, "bookings": [], "pagination": empty}

    q = db.query(Booking).filter(Booking.venue_id.in_(venue_ids))
    total = q.count()
    rows = q.order_by(Booking.created_at.desc(), Booking.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "ok": True,
        "bookings": [booking_out(b, with_user=True) for b in rows],
        "pagination": page_info(page=page, limit=limit, total=total, count=len(rows), label="bookings"),
    }


@router.get("/venue-stats")
def venue_stats(current_user: User = Depends(owner_only), db: Session = Depends(get_db)):
    venue_ids = _owned_venue_ids(db, current_user)
    if not venue_ids:
        return {
            "ok": True,
            "stats": {
                "total_bookings": 0,
                "today_bookings": 0,
                "pending_bookings": 0,
                "total_revenue": 0,
                "monthly_revenue": 0,
            },
        }

    now = utcnow()
    month_start, month_end = analytics.month_bounds(now)
    base = db.query(Booking).filter(Booking.venue_id.in_(venue_ids))
    earning = base.filter(Booking.status.in_(analytics.EARNING_STATUSES))
    revenue = func.coalesce(func.sum(Booking.total_amount), 0)

    return {
        "ok": True,
        "stats": {
            "total_bookings": base.count(),
            "today_bookings": base.filter(Booking.booking_date == now.date()).count(),
            "pending_bookings": base.filter(Booking.status == "pending").count(),
            "total_revenue": float(earning.with_entities(revenue).scalar() or 0),
            "monthly_revenue": float(
                earning.filter(Booking.created_at >= month_start, Booking.created_at < month_end)
                .with_entities(revenue)
                .scalar()
                or 0
            ),
        },
    }


@router.get("/stats")
def user_stats(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    base = db.query(Booking).filter(Booking.user_id == current_user.id)
    today = utcnow().date()
    return {
        "ok": True,
        "stats": {
            "total_bookings": base.count(),
            "upcoming_bookings": base.filter(
                Booking.booking_date >= today, Booking.status.in_(("confirmed", "pending"))
            ).count(),
            "completed_bookings": base.filter(Booking.status == "completed").count(),
        },
    }


# Analytics (facility owners)


def _aggregates(db: Session, user: User, start, *, by_booked_slot: bool = False, statuses=None):
    """Window bookings grouped in SQL by day, status, venue and (optionally) start hour."""
    venue_ids = _owned_venue_ids(db, user)
    if not venue_ids:
        return []
    if by_booked_slot:
        keys = [Booking.booking_date, Booking.status, Booking.venue_id, func.substr(Booking.start_time, 1, 2)]
    else:
        keys = [func.date(Booking.created_at), Booking.status, Booking.venue_id]
    labels = ("day", "status", "venue_id", "hour")
    query = db.query(
        *[key.label(name) for key, name in zip(keys, labels)],
        func.count(Booking.id).label("count"),
        func.coalesce(func.sum(Booking.total_amount), 0).label("revenue"),
        func.max(Booking.total_amount).label("max_value"),
        func.min(Booking.total_amount).label("min_value"),
    ).filter(Booking.venue_id.in_(venue_ids), Booking.created_at >= start)
    if statuses:
        query = query.filter(Booking.status.in_(statuses))
    return [analytics.Aggregate.from_row(row._asdict()) for row in query.group_by(*keys).all()]


@router.get("/analytics/trends")
def booking_trends(
    period: str = Query("daily", pattern="^(daily|weekly|monthly)$"),
    range_: int = Query(30, alias="range", ge=1, le=365),
    current_user: User = Depends(owner_or_admin),
    db: Session = Depends(get_db),
):
    start = analytics.start_date_for(period, range_, utcnow())
    trends, summary = analytics.booking_trends(_aggregates(db, current_user, start), period)
    return {"ok": True, "trends": trends, "summary": summary, "period": period, "range": range_}


@router.get("/analytics/earnings")
def earnings(
    period: str = Query("monthly", pattern="^(daily|weekly|monthly)$"),
    range_: int = Query(12, alias="range", ge=1, le=365),
    current_user: User = Depends(owner_or_admin),
    db: Session = Depends(get_db),
):
    start = analytics.start_date_for(period, range_, utcnow())
    names = dict(db.query(Venue.id, Venue.name).filter(Venue.owner_id == current_user.id).all())
    earning = _aggregates(db, current_user, start, statuses=analytics.EARNING_STATUSES)
    rows, venues, summary = analytics.earnings_breakdown(earning, period, names)
    return {
        "ok": True,
        "earnings": rows,
        "venue_breakdown": venues,
        "summary": summary,
        "period": period,
        "range": range_,
    }


@router.get("/analytics/peak-hours")
def peak_hours(
    range_: int = Query(30, alias="range", ge=1, le=365),
    current_user: User = Depends(owner_or_admin),
    db: Session = Depends(get_db),
):
    start = analytics.start_date_for("daily", range_, utcnow())
    heatmap, peak_times, insights = analytics.peak_hours(
        _aggregates(db, current_user, start, by_booked_slot=True, statuses=analytics.EARNING_STATUSES)
    )
    return {"ok": True, "heatmap_data": heatmap, "peak_times": peak_times, "insights": insights, "range": range_}


# Single booking


class CancelIn(BaseModel):
    cancellation_reason: Optional[str] = Field(default=None, max_length=500)


@router.put("/{booking_id:int}/cancel")
def cancel_booking(
    booking_id: int,
    payload: Optional[CancelIn] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    booking = _get_booking(db, booking_id)
    if booking.user_id != current_user.id:
        raise HTTPException(403, "Not authorized to cancel this booking")
    if booking.status == "cancelled":
        raise HTTPException(400, "Booking is already cancelled")
    if booking.booking_date < utcnow().date():
        raise HTTPException(400, "Cannot cancel past bookings")

    booking.status = "cancelled"
    booking.cancellation_reason = (payload.cancellation_reason if payload else None) or "Cancelled by user"
    db.commit()
    db.refresh(booking)
    logger.info("Booking %s cancelled by user %s", booking.id, current_user.id)
    return {"ok": True, "message": "Booking cancelled successfully", "booking": booking_out(booking)}


@router.get("/{booking_id:int}")
def get_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    booking = _get_booking(db, booking_id)
    if booking.user_id != current_user.id and not _is_venue_owner(booking, current_user):
        raise HTTPException(403, "Not authorized to view this booking")
    return {"ok": True, "booking": booking_out(booking, with_user=True)}


class StatusIn(BaseModel):
    status: str


@router.put("/{booking_id:int}/status")
def update_status(
    booking_id: int,
    payload: StatusIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if payload.status not in OWNER_STATUSES:
        raise HTTPException(400, "Invalid status value")
    booking = _get_booking(db, booking_id)
    if not _is_venue_owner(booking, current_user):
        raise HTTPException(403, "Access denied. You can only update bookings for your own venues.")

    booking.status = payload.status
    db.commit()
    db.refresh(booking)
    logger.info("Booking %s set to %s by user %s", booking.id, booking.status, current_user.id)
    return {"ok": True, "message": f"Booking {payload.status} successfully", "booking": booking_out(booking)}

