import os
import tempfile
from datetime import date, timedelta

# Settings are read at import time; pin them before the app modules load.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="courtbook-uploads-")
os.environ["BREVO_API_KEY"] = ""
os.environ["REDIS_URL"] = ""
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["JWT_SECRET"] = "test-secret"

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from database import Base, SessionLocal, engine, get_db
from main import app
from models import Booking, User, utcnow
from routers.auth import _create_token, get_otp_service_factory, hash_password
from routers.venues import create_venue_record
from utils.notifications import DeliveryResult
from utils.otp_service import OtpService
from utils.otp_store import SqlOtpStore
from utils.venue_forms import VenueRegistrationBuilder

PASSWORD = "Passw0rd!"


class FakeClock:
    def __init__(self, start=None):
        self.now = start or utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, recipient, purpose, code, expires_at):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append({"recipient": recipient, "purpose": getattr(purpose, "value", purpose), "code": code})
        return DeliveryResult(ok=True, channel="fake")

    def last_code(self, recipient=None):
        for item in reversed(self.sent):
            if recipient is None or item["recipient"] == recipient:
                return item["code"]
        raise AssertionError("no code sent")


@pytest.fixture()
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def notifier():
    return FakeNotifier()


@pytest.fixture()
def client(db, clock, notifier):
    def _factory(session: Session = Depends(get_db)):
        return lambda full_name="": OtpService(SqlOtpStore(session, clock=clock), notifier, clock=clock)

    app.dependency_overrides[get_otp_service_factory] = _factory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(email=None, *, role="user", verified=True, full_name="Test Player", active=True):
        counter["n"] += 1
        user = User(
            full_name=full_name,
            email=email or f"user{counter['n']}@example.com",
            phone="9876543210",
            password_hash=hash_password(PASSWORD),
            role=role,
            is_email_verified=verified,
            is_active=active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {_create_token(user_id=user.id)}"}


def venue_form(**overrides):
    builder = (
        VenueRegistrationBuilder()
        .basic_info(name=overrides.get("name", "Smash Arena"), description="Indoor badminton courts")
        .location_contact(
            address={
                "street": "12 SG Highway",
                "city": overrides.get("city", "Ahmedabad"),
                "state": "Gujarat",
                "zip_code": "380054",
            },
            contact_info={"phone": "+91 98765 43210", "email": "hello@smash.example.com"},
        )
        .sports_amenities(sports_supported=overrides.get("sports", ["Badminton"]), amenities=["Parking"])
        .hours_pricing(price_range=overrides.get("price_range", {"min": 300, "max": 600}))
    )
    return builder.build()


@pytest.fixture()
def make_venue(db):
    def _make(owner, **overrides):
        return create_venue_record(db, owner, venue_form(**overrides), overrides.get("photos"))

    return _make


@pytest.fixture()
def make_booking(db):
    def _make(user, venue, **overrides):
        fields = {
            "sport": venue.sports_supported[0],
            "booking_date": date.today() + timedelta(days=3),
            "start_time": "18:00",
            "duration": 2,
            "total_amount": 1200.0,
            "status": "confirmed",
            "payment_status": "completed",
        }
        fields.update(overrides)
        booking = Booking(user_id=user.id, venue_id=venue.id, **fields)
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _make
