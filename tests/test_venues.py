import json
from pathlib import Path

import config
from conftest import auth_headers, venue_form
from models import Venue

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _png(name="court.png"):
    return ("photos", (name, PNG, "image/png"))


def _stored(url):
    return Path(config.UPLOAD_DIR) / url[len("/uploads/"):]


def test_owner_creates_venue_with_photos(client, make_user):
    owner = make_user(role="facility_owner")
    data = venue_form(name="Net Zone").model_dump_json()

    r = client.post(
        "/api/venues",
        data={"data": data},
        files=[_png("a.png"), _png("b.png")],
        headers=auth_headers(owner),
    )
    assert r.status_code == 201, r.text
    venue = r.json()["venue"]
    assert venue["name"] == "Net Zone"
    assert venue["status"] == "approved"
    assert venue["owner"]["id"] == owner.id
    assert venue["sports_supported"] == ["Badminton"]
    assert venue["operating_hours"]["sunday"]["open"] == "07:00"
    assert len(venue["photos"]) == 2

    served = client.get(venue["photos"][0])
    assert served.status_code == 200
    assert served.content == PNG


def test_players_cannot_create_venues(client, make_user):
    player = make_user()
    r = client.post("/api/venues", data={"data": venue_form().model_dump_json()}, headers=auth_headers(player))
    assert r.status_code == 403


def test_create_rejects_invalid_payloads(client, make_user):
    owner = make_user(role="facility_owner")
    payload = json.loads(venue_form().model_dump_json())
    payload["sports_supported"] = ["Quidditch"]
    r = client.post("/api/venues", data={"data": json.dumps(payload)}, headers=auth_headers(owner))
    assert r.status_code == 400
    assert any("Quidditch" in e for e in r.json()["detail"]["errors"])

    payload = json.loads(venue_form().model_dump_json())
    payload["price_range"] = {"min": 900, "max": 100}
    r = client.post("/api/venues", data={"data": json.dumps(payload)}, headers=auth_headers(owner))
    assert r.status_code == 400


def test_create_rejects_non_images(client, make_user):
    owner = make_user(role="facility_owner")
    r = client.post(
        "/api/venues",
        data={"data": venue_form().model_dump_json()},
        files=[("photos", ("notes.txt", b"hello", "text/plain"))],
        headers=auth_headers(owner),
    )
    assert r.status_code == 400
    assert "Unsupported image type" in r.json()["detail"]


def test_list_filters_and_pagination(client, make_user, make_venue, db):
    owner = make_user(role="facility_owner")
    make_venue(owner, name="Smash Arena", city="Ahmedabad", sports=["Badminton"], price_range={"min": 300, "max": 600})
    make_venue(owner, name="Greenfield", city="Surat", sports=["Football"], price_range={"min": 800, "max": 1500})
    hidden = make_venue(owner, name="Closed Court", city="Ahmedabad")
    hidden.is_active = False
    db.commit()

    r = client.get("/api/venues")
    assert r.status_code == 200
    names = {v["name"] for v in r.json()["venues"]}
    assert names == {"Smash Arena", "Greenfield"}
    assert r.json()["pagination"]["total_venues"] == 2

    assert [v["name"] for v in client.get("/api/venues", params={"sport": "Football"}).json()["venues"]] == ["Greenfield"]
    assert [v["name"] for v in client.get("/api/venues", params={"city": "ahmed"}).json()["venues"]] == ["Smash Arena"]
    assert [v["name"] for v in client.get("/api/venues", params={"max_price": 700}).json()["venues"]] == ["Smash Arena"]
    assert [v["name"] for v in client.get("/api/venues", params={"min_price": 500}).json()["venues"]] == ["Greenfield"]

    page = client.get("/api/venues", params={"limit": 1, "page": 2}).json()
    assert page["pagination"] == {"current": 2, "total": 2, "count": 1, "total_venues": 2}


def test_get_venue_and_missing(client, make_user, make_venue):
    venue = make_venue(make_user(role="facility_owner"))
    assert client.get(f"/api/venues/{venue.id}").json()["venue"]["name"] == "Smash Arena"
    assert client.get("/api/venues/9999").status_code == 404


def test_my_venues_only_lists_own(client, make_user, make_venue):
    mine = make_user(role="facility_owner")
    other = make_user(role="facility_owner")
    make_venue(mine, name="Mine")
    make_venue(other, name="Theirs")
    r = client.get("/api/venues/my-venues", headers=auth_headers(mine))
    assert [v["name"] for v in r.json()["venues"]] == ["Mine"]


def test_update_replaces_photos_and_fields(client, make_user):
    owner = make_user(role="facility_owner")
    created = client.post(
        "/api/venues",
        data={"data": venue_form().model_dump_json()},
        files=[_png("a.png"), _png("b.png")],
        headers=auth_headers(owner),
    ).json()["venue"]
    keep, drop = created["photos"]

    update = {
        "name": "Smash Arena Deluxe",
        "sports_supported": ["Badminton", "Squash"],
        "existing_photos": [keep, "/uploads/venues/someone-elses.png"],
    }
    r = client.put(
        f"/api/venues/{created['id']}",
        data={"data": json.dumps(update)},
        files=[_png("c.png")],
        headers=auth_headers(owner),
    )
    assert r.status_code == 200, r.text
    venue = r.json()["venue"]
    assert venue["name"] == "Smash Arena Deluxe"
    assert venue["sports_supported"] == ["Badminton", "Squash"]
    assert venue["photos"][0] == keep and len(venue["photos"]) == 2
    assert not _stored(drop).exists()
    assert _stored(keep).exists()


def test_update_can_deactivate(client, make_user, make_venue):
    owner = make_user(role="facility_owner")
    venue = make_venue(owner)
    r = client.put(f"/api/venues/{venue.id}", data={"data": '{"is_active": false}'}, headers=auth_headers(owner))
    assert r.json()["venue"]["is_active"] is False
    assert client.get("/api/venues").json()["venues"] == []


def test_only_owner_or_admin_may_modify(client, make_user, make_venue):
    owner = make_user(role="facility_owner")
    venue = make_venue(owner)
    stranger = make_user(role="facility_owner")
    admin = make_user(role="admin")

    r = client.put(f"/api/venues/{venue.id}", data={"data": '{"name": "Mine now"}'}, headers=auth_headers(stranger))
    assert r.status_code == 403
    r = client.put(f"/api/venues/{venue.id}", data={"data": '{"name": "Audited"}'}, headers=auth_headers(admin))
    assert r.status_code == 200


def test_delete_blocked_by_bookings(client, make_user, make_venue, make_booking, db):
    owner = make_user(role="facility_owner")
    booked = make_venue(owner, name="Booked")
    empty = make_venue(owner, name="Empty")
    make_booking(make_user(), booked)
    booked_id, empty_id = booked.id, empty.id

    assert client.delete(f"/api/venues/{booked_id}", headers=auth_headers(owner)).status_code == 409
    assert client.delete(f"/api/venues/{empty_id}", headers=auth_headers(owner)).status_code == 200
    db.expire_all()
    assert db.get(Venue, empty_id) is None
    assert db.get(Venue, booked_id) is not None


def test_add_and_remove_photos(client, make_user, make_venue):
    owner = make_user(role="facility_owner")
    venue = make_venue(owner)

    r = client.post(f"/api/venues/{venue.id}/photos", files=[_png()], headers=auth_headers(owner))
    assert r.status_code == 200
    url = r.json()["photos"][0]
    assert _stored(url).exists()

    assert client.delete(f"/api/venues/{venue.id}/photos/5", headers=auth_headers(owner)).status_code == 400
    assert client.delete(f"/api/venues/{venue.id}/photos/0", headers=auth_headers(owner)).status_code == 200
    assert not _stored(url).exists()
    assert client.get(f"/api/venues/{venue.id}").json()["venue"]["photos"] == []
