import os
import sys

# Add repository root to path so we can import models/db
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from database import SessionLocal, engine, Base
from utils.otp_service import build_otp_service


def purge() -> int:
    """One-off purge of expired, unused one-time codes (the API also runs this on a schedule)."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        deleted = build_otp_service(db).purge_expired()
    finally:
        db.close()
    print(f"Purged {deleted} expired OTP record(s).")
    return deleted


if __name__ == "__main__":
    purge()
