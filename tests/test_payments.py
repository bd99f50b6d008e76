from datetime import timedelta

import pytest
import requests

from conftest import auth_headers
from models import Booking, utcnow
from utils import stripe_client


class FakeStripe:
    def __init__(self):
        self.created = []
        self.intents = {}

    def create_payment_intent(self, *, amount, currency, metadata=None):
        intent_id = f"pi_{len(self.created) + 1}"
        meta = {k: str(v) for k, v in (metadata or {}).items()}
        intent = {"id": intent_id, "client_secret": f"{intent_id}_secret", "amount": amount,
                  "currency": currency, "status": "requires_payment_method", "metadata": meta}
        self.created.append(intent)
        self.intents[intent_id] = intent
        return intent

    def retrieve_payment_intent(self, intent_id):
        if intent_id not in self.intents:
            raise stripe_client.PaymentGatewayError("No such payment_intent")
        return self.intents[intent_id]

    def succeed(self, intent_id):
        self.intents[intent_id]["status"] = "succeeded"


@pytest.fixture()
def stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(stripe_client, "create_payment_intent", fake.create_payment_intent)
    monkeypatch.setattr(stripe_client, "retrieve_payment_intent", fake.retrieve_payment_intent)
    return fake


@pytest.fixture()
def court(make_user, make_venue):
    owner = make_user(role="facility_owner")
    return make_user(), make_venue(owner)


def _details(venue, **overrides):
    details = {
        "venue_id": venue.id,
        "sport": "Badminton",
        "booking_date": (utcnow().date() + timedelta(days=2)).isoformat(),
        "start_time": "19:00",
        "duration": 2,
        "selected_components": [
            {"id": "c1", "name": "Court 1", "type": "court", "sport": "Badminton", "price_per_hour": 300}
        ],
        "booking_notes": "Bring shuttles",
    }
    details.update(overrides)
    return details


def _intent(client, player, venue, amount=600, **overrides):
    body = {"amount": amount, "venue_id": venue.id, "booking_details": _details(venue, **overrides)}
    return client.post("/api/payments/create-payment-intent", json=body, headers=auth_headers(player))


def test_create_payment_intent(client, stripe, court):
    player, venue = court
    r = _intent(client, player, venue, amount=600.5)
    assert r.status_code == 200, r.text
    assert r.json()["client_secret"] == "pi_1_secret"

    sent = stripe.created[0]
    assert sent["amount"] == 60050
    assert sent["currency"] == "inr"
    assert sent["metadata"]["user_id"] == str(player.id)
    assert sent["metadata"]["sport"] == "Badminton"


def test_create_payment_intent_validates_venue_and_sport(client, stripe, court, db):
    player, venue = court
    assert _intent(client, player, venue, sport="Football").status_code == 400
    assert _intent(client, player, venue, start_time="7pm").status_code == 422
    assert _intent(client, player, venue, duration=9).status_code == 422

    venue.is_active = False
    db.commit()
    assert _intent(client, player, venue).status_code == 404
    assert stripe.created == []


def test_confirm_payment_creates_booking(client, stripe, court, db):
    player, venue = court
    intent_id = _intent(client, player, venue).json()["payment_intent_id"]
    stripe.succeed(intent_id)

    r = client.post(
        "/api/payments/confirm-payment",
        json={"payment_intent_id": intent_id, "booking_details": _details(venue)},
        headers=auth_headers(player),
    )
    assert r.status_code == 201, r.text
    booking = r.json()["booking"]
    assert booking["status"] == "confirmed"
    assert booking["total_amount"] == 600
    assert booking["payment_details"] == {
        "transaction_id": intent_id,
        "payment_method": "stripe",
        "payment_status": "completed",
        "paid_amount": 600,
    }
    assert booking["selected_components"][0]["name"] == "Court 1"

    # Retrying the same confirmation does not book twice.
    again = client.post(
        "/api/payments/confirm-payment",
        json={"payment_intent_id": intent_id, "booking_details": _details(venue)},
        headers=auth_headers(player),
    )
    assert again.status_code == 200
    assert again.json()["booking"]["id"] == booking["id"]
    assert db.query(Booking).count() == 1


def test_confirm_requires_succeeded_intent(client, stripe, court, db):
    player, venue = court
    intent_id = _intent(client, player, venue).json()["payment_intent_id"]
    r = client.post(
        "/api/payments/confirm-payment",
        json={"payment_intent_id": intent_id, "booking_details": _details(venue)},
        headers=auth_headers(player),
    )
    assert r.status_code == 400
    assert db.query(Booking).count() == 0


def test_confirm_rejects_someone_elses_intent(client, stripe, court, make_user):
    player, venue = court
    intent_id = _intent(client, player, venue).json()["payment_intent_id"]
    stripe.succeed(intent_id)
    other = make_user()
    r = client.post(
        "/api/payments/confirm-payment",
        json={"payment_intent_id": intent_id, "booking_details": _details(venue)},
        headers=auth_headers(other),
    )
    assert r.status_code == 400


def test_unknown_intent_maps_to_bad_gateway(client, stripe, court):
    player, venue = court
    r = client.post(
        "/api/payments/confirm-payment",
        json={"payment_intent_id": "pi_missing", "booking_details": _details(venue)},
        headers=auth_headers(player),
    )
    assert r.status_code == 502


def test_payments_require_login(client, stripe, court):
    player, venue = court
    body = {"amount": 600, "venue_id": venue.id, "booking_details": _details(venue)}
    assert client.post("/api/payments/create-payment-intent", json=body).status_code == 401


class _Response:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def json(self):
        return self._body


def test_stripe_client_sends_form_encoded_metadata(monkeypatch):
    calls = []

    def fake_request(method, url, auth=None, data=None, timeout=None):
        calls.append({"method": method, "url": url, "auth": auth, "data": data})
        return _Response(200, {"id": "pi_9", "status": "requires_payment_method"})

    monkeypatch.setattr(requests, "request", fake_request)
    intent = stripe_client.create_payment_intent(amount=1500, currency="INR", metadata={"user_id": 7, "skip": None})

    assert intent["id"] == "pi_9"
    call = calls[0]
    assert call["method"] == "POST" and call["url"].endswith("/payment_intents")
    assert call["auth"] == ("sk_test_dummy", "")
    assert call["data"]["currency"] == "inr"
    assert call["data"]["metadata[user_id]"] == "7"
    assert "metadata[skip]" not in call["data"]


def test_stripe_client_errors(monkeypatch):
    monkeypatch.setattr(
        requests, "request", lambda *a, **kw: _Response(402, {"error": {"message": "Your card was declined."}})
    )
    with pytest.raises(stripe_client.PaymentGatewayError, match="declined"):
        stripe_client.retrieve_payment_intent("pi_1")

    def unreachable(*a, **kw):
        raise requests.ConnectionError("dns")

    monkeypatch.setattr(requests, "request", unreachable)
    with pytest.raises(stripe_client.PaymentGatewayError, match="unreachable"):
        stripe_client.retrieve_payment_intent("pi_1")


def test_minor_units():
    assert stripe_client.to_minor_units(499.99) == 49999
    assert stripe_client.from_minor_units(49999) == 499.99
