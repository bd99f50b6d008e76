from pathlib import Path

from models import User, Venue
from routers.auth import check_password
from scripts.load_dummy_data import load_data
from scripts.purge_expired_otps import purge

SEED = Path(__file__).resolve().parents[1] / "scripts" / "dummy_data.yml"


def test_seed_data_loads_once(db):
    load_data(str(SEED))
    load_data(str(SEED))

    db.expire_all()
    assert db.query(User).count() == 3
    owner = db.query(User).filter(User.email == "owner@courtbook.example.com").one()
    assert owner.role == "facility_owner" and owner.is_email_verified
    assert check_password("Owner@1234", owner.password_hash)

    venues = {v.name: v for v in db.query(Venue).all()}
    assert set(venues) == {"Smash Arena", "Greenfield Turf"}
    assert venues["Smash Arena"].sports_supported == ["Badminton", "Table Tennis"]
    assert venues["Greenfield Turf"].operating_hours["sunday"]["close"] == "23:00"
    assert venues["Greenfield Turf"].status == "approved"


def test_purge_script_runs_on_empty_table(db):
    assert purge() == 0
