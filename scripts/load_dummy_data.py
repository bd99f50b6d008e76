import os
import sys

import yaml
from pydantic import ValidationError
from sqlalchemy.orm import Session

# Add repository root to path so we can import models/db
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from database import SessionLocal, engine, Base
from models import User, Venue
from routers.auth import hash_password
from routers.venues import create_venue_record
from utils.venue_forms import VenueRegistrationBuilder


def load_users(db: Session, users: list) -> dict:
    by_email = {}
    for u_data in users:
        email = u_data["email"].strip().lower()
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            print(f"User {email} already exists. Skipping.")
            by_email[email] = existing
            continue

        user = User(
            full_name=u_data["full_name"],
            email=email,
            phone=u_data["phone"],
            role=u_data.get("role", "user"),
            password_hash=hash_password(u_data["password"]),
            # Seeded accounts skip the email OTP step.
            is_email_verified=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        by_email[email] = user
        print(f"Adding user {email}...")
    return by_email


def load_venues(db: Session, venues: list, owners: dict) -> None:
    for v_data in venues:
        owner = owners.get(v_data["owner"].strip().lower())
        if owner is None:
            print(f"Owner {v_data['owner']} not found. Skipping venue.")
            continue
        name = v_data["basic_info"]["name"]
        if db.query(Venue).filter(Venue.owner_id == owner.id, Venue.name == name).first():
            print(f"Venue {name} already exists. Skipping.")
            continue

        try:
            form = VenueRegistrationBuilder.from_mapping(v_data).build()
        except (ValidationError, ValueError) as exc:
            print(f"Venue {name} is invalid: {exc}")
            continue
        create_venue_record(db, owner, form, v_data.get("photos") or [])
        print(f"Adding venue {name}...")


def load_data(path=None):
    Base.metadata.create_all(bind=engine)
    db: Session = SessionLocal()

    with open(path or os.path.join(os.path.dirname(__file__), "dummy_data.yml"), "r") as f:
        data = yaml.safe_load(f) or {}

    try:
        users = load_users(db, data.get("users", []))
        load_venues(db, data.get("venues", []), users)
    finally:
        db.close()
    print("Dummy data loaded.")


if __name__ == "__main__":
    load_data(sys.argv[1] if len(sys.argv) > 1 else None)
