import json

import pytest

from conftest import auth_headers
from models import Venue

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture()
def court(make_user, make_venue):
    owner = make_user(role="facility_owner")
    return owner, make_user(), make_venue(owner)


def _review(booking, **overrides):
    body = {
        "booking_id": booking.id,
        "venue_id": booking.venue_id,
        "rating": 4,
        "title": "Great courts",
        "comment": "Good lighting, clean floors.",
        "aspects": {"cleanliness": 5, "facilities": 4, "staff": 4, "value": 3},
    }
    body.update(overrides)
    return {"data": json.dumps(body)}


def _post(client, user, booking, files=None, **overrides):
    return client.post("/api/reviews", data=_review(booking, **overrides), files=files, headers=auth_headers(user))


def test_create_review_updates_venue_rating(client, court, make_booking, db):
    owner, player, venue = court
    booking = make_booking(player, venue)

    r = _post(client, player, booking, files=[("photos", ("court.png", PNG, "image/png"))], photo_caption="Court 2")
    assert r.status_code == 201, r.text
    review = r.json()["review"]
    assert review["is_verified"] is True
    assert review["aspects"]["value"] == 3
    assert review["photos"][0]["caption"] == "Court 2"
    assert review["photos"][0]["url"].startswith("/uploads/reviews/")

    db.expire_all()
    stored = db.get(Venue, venue.id)
    assert stored.rating_average == 4.0 and stored.rating_count == 1


def test_one_review_per_booking(client, court, make_booking):
    owner, player, venue = court
    booking = make_booking(player, venue)
    assert _post(client, player, booking).status_code == 201
    r = _post(client, player, booking)
    assert r.status_code == 400
    assert "already exists" in r.json()["detail"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"status": "pending"},
        {"status": "cancelled"},
        {"payment_status": "pending"},
    ],
)
def test_only_paid_bookings_are_reviewable(client, court, make_booking, overrides):
    owner, player, venue = court
    booking = make_booking(player, venue, **overrides)
    assert _post(client, player, booking).status_code == 400


def test_cannot_review_someone_elses_booking(client, court, make_user, make_booking):
    owner, player, venue = court
    booking = make_booking(player, venue)
    assert _post(client, make_user(), booking).status_code == 400


def test_invalid_review_payload(client, court, make_booking):
    owner, player, venue = court
    booking = make_booking(player, venue)
    r = _post(client, player, booking, rating=6)
    assert r.status_code == 400
    assert r.json()["detail"]["message"] == "Validation error"


def test_eligible_bookings_exclude_reviewed(client, court, make_booking):
    owner, player, venue = court
    reviewed = make_booking(player, venue)
    open_one = make_booking(player, venue)
    make_booking(player, venue, status="cancelled")
    _post(client, player, reviewed)

    r = client.get("/api/reviews/user/bookings", headers=auth_headers(player))
    assert [b["id"] for b in r.json()["bookings"]] == [open_one.id]


def test_user_reviews(client, court, make_booking):
    owner, player, venue = court
    _post(client, player, make_booking(player, venue))
    r = client.get("/api/reviews/user", headers=auth_headers(player))
    assert r.json()["pagination"]["total_reviews"] == 1
    assert r.json()["reviews"][0]["venue"]["name"] == "Smash Arena"


def test_venue_reviews_sorting_and_statistics(client, court, make_user, make_booking):
    owner, player, venue = court
    other = make_user()
    _post(client, player, make_booking(player, venue), rating=5)
    _post(client, other, make_booking(other, venue), rating=2)

    r = client.get(f"/api/reviews/venue/{venue.id}", params={"sort_by": "rating", "sort_order": "asc"})
    body = r.json()
    assert [rv["rating"] for rv in body["reviews"]] == [2, 5]
    assert body["statistics"] == {
        "average_rating": 3.5,
        "total_reviews": 2,
        "rating_distribution": {"5": 1, "4": 0, "3": 0, "2": 1, "1": 0},
    }

    assert client.get("/api/reviews/venue/9999").status_code == 404
    empty = client.get(f"/api/reviews/venue/{venue.id}", params={"sort_by": "oldest"})
    assert empty.status_code == 422


def test_venue_without_reviews_has_no_statistics(client, court):
    owner, player, venue = court
    body = client.get(f"/api/reviews/venue/{venue.id}").json()
    assert body["reviews"] == [] and body["statistics"] is None


def test_update_and_delete_recompute_rating(client, court, make_user, make_booking, db):
    owner, player, venue = court
    review_id = _post(client, player, make_booking(player, venue), rating=4).json()["review"]["id"]

    r = client.put(
        f"/api/reviews/{review_id}",
        data={"data": json.dumps({"rating": 2, "title": "Changed my mind"})},
        headers=auth_headers(player),
    )
    assert r.status_code == 200
    assert r.json()["review"]["title"] == "Changed my mind"
    db.expire_all()
    assert db.get(Venue, venue.id).rating_average == 2.0

    stranger = make_user()
    assert client.put(f"/api/reviews/{review_id}", data={"data": "{}"}, headers=auth_headers(stranger)).status_code == 404
    assert client.delete(f"/api/reviews/{review_id}", headers=auth_headers(stranger)).status_code == 404

    assert client.delete(f"/api/reviews/{review_id}", headers=auth_headers(player)).status_code == 200
    db.expire_all()
    stored = db.get(Venue, venue.id)
    assert stored.rating_average == 0 and stored.rating_count == 0


def test_helpful_votes_are_per_user(client, court, make_user, make_booking):
    owner, player, venue = court
    review_id = _post(client, player, make_booking(player, venue)).json()["review"]["id"]
    a, b = make_user(), make_user()

    assert client.post(f"/api/reviews/{review_id}/helpful", json={"is_helpful": True}, headers=auth_headers(a)).json()["helpful"] == 1
    assert client.post(f"/api/reviews/{review_id}/helpful", json={"is_helpful": True}, headers=auth_headers(a)).json()["helpful"] == 1
    assert client.post(f"/api/reviews/{review_id}/helpful", json={"is_helpful": True}, headers=auth_headers(b)).json()["helpful"] == 2
    r = client.post(f"/api/reviews/{review_id}/helpful", json={"is_helpful": False}, headers=auth_headers(a))
    assert r.json() == {"ok": True, "message": "Vote recorded successfully", "helpful": 1, "user_vote": False}

    assert client.post("/api/reviews/9999/helpful", json={"is_helpful": True}, headers=auth_headers(a)).status_code == 404


def test_owner_responds_to_review(client, court, make_user, make_booking):
    owner, player, venue = court
    review_id = _post(client, player, make_booking(player, venue)).json()["review"]["id"]
    url = f"/api/reviews/{review_id}/response"

    assert client.post(url, json={"comment": "Thanks!"}, headers=auth_headers(player)).status_code == 403
    assert client.post(url, json={"comment": "Thanks!"}, headers=auth_headers(make_user(role="facility_owner"))).status_code == 403

    r = client.post(url, json={"comment": "Thanks for playing!"}, headers=auth_headers(owner))
    assert r.status_code == 200
    assert r.json()["review"]["response"]["comment"] == "Thanks for playing!"
