from __future__ import annotations

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import ValidationError
from sqlalchemy.orm import Session

from database import get_db
from models import Booking, User, Venue, VenueSport
from routers.auth import get_current_user, require_role
from utils.uploads import delete_upload, delete_uploads, save_images
from utils.venue_forms import VenueCreate, VenueUpdate, validation_messages

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/venues", tags=["venues"])

owner_or_admin = require_role("facility_owner", "admin")


def page_info(*, page: int, limit: int, total: int, count: int, label: str) -> dict:
    return {
        "current": page,
        "total": math.ceil(total / limit) if limit else 0,
        "count": count,
        f"total_{label}": total,
    }


def venue_summary(venue: Venue) -> dict:
    return {
        "id": venue.id,
        "name": venue.name,
        "city": venue.city,
        "address": {"street": venue.street, "city": venue.city, "state": venue.state},
        "photos": list(venue.photos or []),
        "rating": {"average": venue.rating_average, "count": venue.rating_count},
    }


def venue_out(venue: Venue) -> dict:
    coordinates = None
    if venue.latitude is not None and venue.longitude is not None:
        coordinates = {"latitude": venue.latitude, "longitude": venue.longitude}
    owner = venue.owner
    return {
        "id": venue.id,
        "name": venue.name,
        "description": venue.description,
        "owner": (
            {"id": owner.id, "full_name": owner.full_name, "email": owner.email, "phone": owner.phone}
            if owner
            else None
        ),
        "address": {
            "street": venue.street,
            "city": venue.city,
            "state": venue.state,
            "zip_code": venue.zip_code,
            "country": venue.country,
            "coordinates": coordinates,
        },
        "sports_supported": venue.sports_supported,
        "amenities": list(venue.amenities or []),
        "photos": list(venue.photos or []),
        "operating_hours": dict(venue.operating_hours or {}),
        "status": venue.status,
        "contact_info": {"phone": venue.contact_phone, "email": venue.contact_email, "website": venue.website},
        "is_active": bool(venue.is_active),
        "price_range": {"min": venue.price_min, "max": venue.price_max},
        "facilities": list(venue.facilities or []),
        "rules": list(venue.rules or []),
        "cancellation_policy": venue.cancellation_policy,
        "rating": {"average": venue.rating_average, "count": venue.rating_count},
        "created_at": venue.created_at.isoformat() if venue.created_at else None,
        "updated_at": venue.updated_at.isoformat() if venue.updated_at else None,
    }


def _set_sports(venue: Venue, sports: list[str]) -> None:
    # Keep matching rows so the (venue_id, sport) unique constraint never sees a duplicate insert.
    keep = [s for s in venue.sports if s.sport in sports]
    have = {s.sport for s in keep}
    venue.sports = keep + [VenueSport(sport=s) for s in sports if s not in have]


def apply_venue_fields(venue: Venue, fields: dict) -> None:
    """Copy validated form fields (VenueCreate/VenueUpdate dumps) onto the row."""
    for key in ("name", "description", "amenities", "operating_hours", "facilities", "rules",
                "cancellation_policy", "is_active"):
        if key in fields and fields[key] is not None:
            setattr(venue, key, fields[key])

    address = fields.get("address")
    if address:
        venue.street = address["street"]
        venue.city = address["city"]
        venue.state = address["state"]
        venue.zip_code = address["zip_code"]
        venue.country = address.get("country") or "India"
        coords = address.get("coordinates") or {}
        venue.latitude = coords.get("latitude")
        venue.longitude = coords.get("longitude")

    contact = fields.get("contact_info")
    if contact:
        venue.contact_phone = contact["phone"]
        venue.contact_email = contact["email"]
        venue.website = contact.get("website")

    prices = fields.get("price_range")
    if prices:
        venue.price_min = prices["min"]
        venue.price_max = prices["max"]

    if fields.get("sports_supported"):
        _set_sports(venue, fields["sports_supported"])


def create_venue_record(db: Session, owner: User, form: VenueCreate, photos: Optional[list[str]] = None) -> Venue:
    venue = Venue(owner_id=owner.id, photos=list(photos or []), status="approved", is_active=True)
    apply_venue_fields(venue, form.model_dump())
    db.add(venue)
    db.commit()
    db.refresh(venue)
    logger.info("Venue %s created by user %s", venue.id, owner.id)
    return venue


def _parse(model, data: str):
    try:
        return model.model_validate_json(data)
    except ValidationError as exc:
        raise HTTPException(400, detail={"message": "Validation error", "errors": validation_messages(exc)})


def _get_venue(db: Session, venue_id: int) -> Venue:
    venue = db.get(Venue, venue_id)
    if not venue:
        raise HTTPException(404, "Venue not found")
    return venue


def _owned_venue(db: Session, venue_id: int, user: User) -> Venue:
    venue = _get_venue(db, venue_id)
    if venue.owner_id != user.id and user.role != "admin":
        raise HTTPException(403, "Access denied. You can only manage your own venues.")
    return venue


@router.get("")
def list_venues(
    sport: Optional[str] = None,
    city: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    q = db.query(Venue).filter(Venue.status == "approved", Venue.is_active.is_(True))
    if sport:
        q = q.filter(Venue.sports.any(VenueSport.sport == sport))
    if city:
        q = q.filter(Venue.city.ilike(f"%{city.strip()}%"))
    if min_price is not None:
        q = q.filter(Venue.price_min >= min_price)
    if max_price is not None:
        q = q.filter(Venue.price_max <= max_price)

    total = q.count()
    venues = (
        q.order_by(Venue.rating_average.desc(), Venue.created_at.desc(), Venue.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "ok": True,
        "venues": [venue_out(v) for v in venues],
        "pagination": page_info(page=page, limit=limit, total=total, count=len(venues), label="venues"),
    }


@router.get("/my-venues")
def my_venues(current_user: User = Depends(owner_or_admin), db: Session = Depends(get_db)):
    venues = (
        db.query(Venue)
        .filter(Venue.owner_id == current_user.id)
        .order_by(Venue.created_at.desc(), Venue.id.desc())
        .all()
    )
    return {"ok": True, "venues": [venue_out(v) for v in venues]}


@router.get("/{venue_id:int}")
def get_venue(venue_id: int, db: Session = Depends(get_db)):
    return {"ok": True, "venue": venue_out(_get_venue(db, venue_id))}


@router.post("", status_code=201)
async def create_venue(
    data: str = Form(...),
    photos: Optional[list[UploadFile]] = File(None),
    current_user: User = Depends(owner_or_admin),
    db: Session = Depends(get_db),
):
    form = _parse(VenueCreate, data)
    urls = await save_images(photos or [], subdir="venues", prefix="venue")
    try:
        venue = create_venue_record(db, current_user, form, urls)
    except Exception:
        db.rollback()
        delete_uploads(urls)
        raise
    return {"ok": True, "message": "Venue created and approved successfully!", "venue": venue_out(venue)}


@router.put("/{venue_id:int}")
async def update_venue(
    venue_id: int,
    data: str = Form("{}"),
    photos: Optional[list[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    venue = _owned_venue(db, venue_id, current_user)
    form = _parse(VenueUpdate, data)
    fields = form.model_dump(exclude_unset=True)

    current = list(venue.photos or [])
    kept = current
    if form.existing_photos is not None:
        # Only photos the venue already has can be kept.
        kept = [p for p in form.existing_photos if p in current]
    new_urls = await save_images(photos or [], subdir="venues", prefix="venue")

    apply_venue_fields(venue, fields)
    venue.photos = kept + new_urls
    try:
        db.commit()
    except Exception:
        db.rollback()
        delete_uploads(new_urls)
        raise
    delete_uploads([p for p in current if p not in kept])
    db.refresh(venue)
    logger.info("Venue %s updated by user %s", venue.id, current_user.id)
    return {"ok": True, "message": "Venue updated successfully", "venue": venue_out(venue)}


@router.delete("/{venue_id:int}")
def delete_venue(
    venue_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    venue = _owned_venue(db, venue_id, current_user)
    if db.query(Booking.id).filter(Booking.venue_id == venue.id).first():
        raise HTTPException(409, "Venue has bookings; deactivate it instead of deleting.")

    photos = list(venue.photos or [])
    db.delete(venue)
    db.commit()
    delete_uploads(photos)
    logger.info("Venue %s deleted by user %s", venue_id, current_user.id)
    return {"ok": True, "message": "Venue deleted successfully"}


@router.post("/{venue_id:int}/photos")
async def add_photos(
    venue_id: int,
    photos: Optional[list[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    venue = _owned_venue(db, venue_id, current_user)
    if not photos:
        raise HTTPException(400, "No photos uploaded")

    urls = await save_images(photos, subdir="venues", prefix="venue")
    venue.photos = list(venue.photos or []) + urls
    db.commit()
    return {"ok": True, "message": "Photos added successfully", "photos": urls}


@router.delete("/{venue_id:int}/photos/{photo_index:int}")
def remove_photo(
    venue_id: int,
    photo_index: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    venue = _owned_venue(db, venue_id, current_user)
    photos = list(venue.photos or [])
    if photo_index < 0 or photo_index >= len(photos):
        raise HTTPException(400, "Invalid photo index")

    removed = photos.pop(photo_index)
    venue.photos = photos
    db.commit()
    delete_upload(removed)
    return {"ok": True, "message": "Photo removed successfully"}
