from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import get_db
from models import Booking, Review, ReviewVote, User, Venue, utcnow
from routers.auth import get_current_user
from routers.bookings import booking_out
from routers.venues import page_info, venue_summary
from utils.uploads import delete_uploads, save_images
from utils.venue_forms import validation_messages

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"])

REVIEWABLE_STATUSES = ("confirmed", "completed")
SORT_FIELDS = {"created_at": Review.created_at, "rating": Review.rating, "helpful": Review.helpful}


class AspectsIn(BaseModel):
    cleanliness: int = Field(ge=1, le=5)
    facilities: int = Field(ge=1, le=5)
    staff: int = Field(ge=1, le=5)
    value: int = Field(ge=1, le=5)


class ReviewIn(BaseModel):
    booking_id: int
    venue_id: int
    rating: int = Field(ge=1, le=5)
    title: str = Field(min_length=1, max_length=100)
    comment: str = Field(min_length=1, max_length=1000)
    aspects: AspectsIn
    photo_caption: str = Field(default="", max_length=200)


class ReviewUpdateIn(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    comment: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    aspects: Optional[AspectsIn] = None
    photo_caption: str = Field(default="", max_length=200)


def _parse(model, data: str):
    try:
        return model.model_validate_json(data)
    except ValidationError as exc:
        raise HTTPException(400, detail={"message": "Validation error", "errors": validation_messages(exc)})


def review_out(review: Review, *, user_id: Optional[int] = None) -> dict:
    out = {
        "id": review.id,
        "user": {"id": review.user.id, "full_name": review.user.full_name} if review.user else None,
        "venue_id": review.venue_id,
        "venue": venue_summary(review.venue) if review.venue else None,
        "booking_id": review.booking_id,
        "booking": (
            {"booking_date": review.booking.booking_date.isoformat(), "start_time": review.booking.start_time}
            if review.booking
            else None
        ),
        "rating": review.rating,
        "title": review.title,
        "comment": review.comment,
        "aspects": {
            "cleanliness": review.cleanliness,
            "facilities": review.facilities,
            "staff": review.staff,
            "value": review.value,
        },
        "photos": list(review.photos or []),
        "is_verified": bool(review.is_verified),
        "helpful": review.helpful,
        "response": (
            {"comment": review.response_comment, "responded_at": review.responded_at.isoformat()}
            if review.response_comment and review.responded_at
            else None
        ),
        "created_at": review.created_at.isoformat() if review.created_at else None,
        "updated_at": review.updated_at.isoformat() if review.updated_at else None,
    }
    if user_id is not None:
        vote = next((v for v in review.votes if v.user_id == user_id), None)
        out["user_vote"] = vote.is_helpful if vote else None
    return out


def refresh_venue_rating(db: Session, venue_id: int) -> None:
    """Recompute the venue's denormalized rating from all of its reviews."""
    average, count = (
        db.query(func.avg(Review.rating), func.count(Review.id)).filter(Review.venue_id == venue_id).one()
    )
    venue = db.get(Venue, venue_id)
    if venue is None:
        return
    venue.rating_average = round(float(average), 1) if count else 0
    venue.rating_count = int(count or 0)
    db.commit()
    logger.info("Venue %s rating now %.1f over %d reviews", venue_id, venue.rating_average, venue.rating_count)


def _own_review(db: Session, review_id: int, user: User) -> Review:
    review = db.get(Review, review_id)
    if not review or review.user_id != user.id:
        raise HTTPException(404, "Review not found or unauthorized")
    return review


def _photo_entries(urls: list[str], caption: str) -> list[dict]:
    return [{"url": url, "caption": caption} for url in urls]


@router.post("", status_code=201)
async def create_review(
    data: str = Form(...),
    photos: Optional[list[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    form = _parse(ReviewIn, data)
    booking = (
        db.query(Booking)
        .filter(
            Booking.id == form.booking_id,
            Booking.user_id == current_user.id,
            Booking.venue_id == form.venue_id,
            Booking.status.in_(REVIEWABLE_STATUSES),
            Booking.payment_status == "completed",
        )
        .first()
    )
    if not booking:
        raise HTTPException(400, "Booking not found or not eligible for review")
    if db.query(Review.id).filter(Review.booking_id == booking.id).first():
        raise HTTPException(400, "Review already exists for this booking")

    urls = await save_images(photos or [], subdir="reviews", prefix="review")
    review = Review(
        user_id=current_user.id,
        venue_id=booking.venue_id,
        booking_id=booking.id,
        rating=form.rating,
        title=form.title.strip(),
        comment=form.comment.strip(),
        cleanliness=form.aspects.cleanliness,
        facilities=form.aspects.facilities,
        staff=form.aspects.staff,
        value=form.aspects.value,
        photos=_photo_entries(urls, form.photo_caption),
        # Backed by a real, paid booking.
        is_verified=True,
    )
    db.add(review)
    try:
        db.commit()
    except Exception:
        db.rollback()
        delete_uploads(urls)
        raise
    db.refresh(review)
    refresh_venue_rating(db, review.venue_id)
    return {"ok": True, "message": "Review created successfully", "review": review_out(review)}


@router.get("/user/bookings")
def eligible_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Paid bookings of the caller that have no review yet."""
    q = db.query(Booking).filter(
        Booking.user_id == current_user.id,
        Booking.status.in_(REVIEWABLE_STATUSES),
        Booking.payment_status == "completed",
        ~Booking.id.in_(select(Review.booking_id)),
    )
    total = q.count()
    rows = q.order_by(Booking.updated_at.desc(), Booking.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "ok": True,
        "bookings": [booking_out(b) for b in rows],
        "pagination": page_info(page=page, limit=limit, total=total, count=len(rows), label="bookings"),
    }


@router.get("/user")
def user_reviews(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = db.query(Review).filter(Review.user_id == current_user.id)
    total = q.count()
    rows = q.order_by(Review.created_at.desc(), Review.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "ok": True,
        "reviews": [review_out(r) for r in rows],
        "pagination": page_info(page=page, limit=limit, total=total, count=len(rows), label="reviews"),
    }


@router.get("/venue/{venue_id:int}")
def venue_reviews(
    venue_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("created_at", pattern="^(created_at|rating|helpful)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    if not db.get(Venue, venue_id):
        raise HTTPException(404, "Venue not found")

    q = db.query(Review).filter(Review.venue_id == venue_id, Review.is_verified.is_(True))
    column = SORT_FIELDS[sort_by]
    order = column.asc() if sort_order == "asc" else column.desc()
    total = q.count()
    rows = q.order_by(order, Review.id.desc()).offset((page - 1) * limit).limit(limit).all()

    statistics = None
    if total:
        distribution = {star: 0 for star in (5, 4, 3, 2, 1)}
        counts = (
            db.query(Review.rating, func.count(Review.id))
            .filter(Review.venue_id == venue_id, Review.is_verified.is_(True))
            .group_by(Review.rating)
            .all()
        )
        for rating, count in counts:
            distribution[int(rating)] = int(count)
        average = sum(star * n for star, n in distribution.items()) / total
        statistics = {"average_rating": round(average, 2), "total_reviews": total, "rating_distribution": distribution}

    return {
        "ok": True,
        "reviews": [review_out(r) for r in rows],
        "pagination": page_info(page=page, limit=limit, total=total, count=len(rows), label="reviews"),
        "statistics": statistics,
    }


@router.put("/{review_id:int}")
async def update_review(
    review_id: int,
    data: str = Form("{}"),
    photos: Optional[list[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    review = _own_review(db, review_id, current_user)
    form = _parse(ReviewUpdateIn, data)

    if form.rating is not None:
        review.rating = form.rating
    if form.title is not None:
        review.title = form.title.strip()
    if form.comment is not None:
        review.comment = form.comment.strip()
    if form.aspects is not None:
        review.cleanliness = form.aspects.cleanliness
        review.facilities = form.aspects.facilities
        review.staff = form.aspects.staff
        review.value = form.aspects.value

    urls = await save_images(photos or [], subdir="reviews", prefix="review")
    if urls:
        review.photos = list(review.photos or []) + _photo_entries(urls, form.photo_caption)
    try:
        db.commit()
    except Exception:
        db.rollback()
        delete_uploads(urls)
        raise
    refresh_venue_rating(db, review.venue_id)
    db.refresh(review)
    return {"ok": True, "message": "Review updated successfully", "review": review_out(review)}


@router.delete("/{review_id:int}")
def delete_review(
    review_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    review = _own_review(db, review_id, current_user)
    venue_id = review.venue_id
    photos = [p.get("url") for p in (review.photos or [])]
    db.delete(review)
    db.commit()
    delete_uploads(photos)
    refresh_venue_rating(db, venue_id)
    return {"ok": True, "message": "Review deleted successfully"}


class HelpfulIn(BaseModel):
    is_helpful: bool


@router.post("/{review_id:int}/helpful")
def vote_helpful(
    review_id: int,
    payload: HelpfulIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    review = db.get(Review, review_id)
    if not review:
        raise HTTPException(404, "Review not found")

    vote = next((v for v in review.votes if v.user_id == current_user.id), None)
    if vote:
        vote.is_helpful = payload.is_helpful
    else:
        review.votes.append(ReviewVote(user_id=current_user.id, is_helpful=payload.is_helpful))
    db.flush()
    review.helpful = sum(1 for v in review.votes if v.is_helpful)
    db.commit()
    return {
        "ok": True,
        "message": "Vote recorded successfully",
        "helpful": review.helpful,
        "user_vote": payload.is_helpful,
    }


class ResponseIn(BaseModel):
    comment: str = Field(min_length=1, max_length=500)


@router.post("/{review_id:int}/response")
def respond_to_review(
    review_id: int,
    payload: ResponseIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    review = db.get(Review, review_id)
    if not review:
        raise HTTPException(404, "Review not found")
    if current_user.role != "admin" and (review.venue is None or review.venue.owner_id != current_user.id):
        raise HTTPException(403, "Only the venue owner can respond to this review")

    review.response_comment = payload.comment.strip()
    review.responded_at = utcnow()
    review.responded_by_id = current_user.id
    db.commit()
    db.refresh(review)
    return {"ok": True, "message": "Response saved", "review": review_out(review)}
