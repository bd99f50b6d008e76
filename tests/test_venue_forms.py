import pytest
from pydantic import ValidationError

from utils.venue_forms import (
    DEFAULT_CANCELLATION_POLICY,
    DayHours,
    VenueRegistrationBuilder,
    VenueUpdate,
    validation_messages,
)

ADDRESS = {"street": "12 SG Highway", "city": "Ahmedabad", "state": "Gujarat", "zip_code": "380054"}
CONTACT = {"phone": "+91 98765 43210", "email": "Hello@Smash.Example.com"}


def _builder():
    return (
        VenueRegistrationBuilder()
        .basic_info(name="  Smash Arena ", description="Indoor courts")
        .location_contact(address=ADDRESS, contact_info=CONTACT)
        .sports_amenities(sports_supported=["Badminton", "Squash", "Badminton"])
        .hours_pricing(price_range={"min": 300, "max": 600}, operating_hours={"monday": {"is_closed": True}})
    )


def test_build_merges_steps_with_defaults():
    venue = _builder().build()
    assert venue.name == "Smash Arena"
    assert venue.sports_supported == ["Badminton", "Squash"]
    assert venue.contact_info.email == "hello@smash.example.com"
    assert venue.address.country == "India"
    assert venue.operating_hours["monday"].is_closed
    assert venue.operating_hours["sunday"].open == "07:00"
    assert venue.operating_hours["tuesday"].close == "22:00"
    assert venue.cancellation_policy == DEFAULT_CANCELLATION_POLICY
    assert venue.facilities == [] and venue.rules == []


def test_policies_step_is_optional_but_applied():
    venue = _builder().policies(rules=["No smoking"], facilities=[{"name": "Court 1"}]).build()
    assert venue.rules == ["No smoking"]
    assert venue.facilities[0].available is True


def test_missing_steps_block_build():
    builder = VenueRegistrationBuilder().basic_info(name="Smash Arena", description="Indoor courts")
    assert builder.missing_steps() == ["LocationContactStep", "SportsAmenitiesStep", "HoursPricingStep"]
    with pytest.raises(ValueError, match="missing"):
        builder.build()


def test_from_mapping():
    data = {
        "basic_info": {"name": "Greenfield", "description": "Turf"},
        "location_contact": {"address": ADDRESS, "contact_info": CONTACT},
        "sports_amenities": {"sports_supported": ["Football"]},
        "hours_pricing": {"price_range": {"min": 800, "max": 1500}},
    }
    venue = VenueRegistrationBuilder.from_mapping(data).build()
    assert venue.name == "Greenfield" and venue.price_range.max == 1500


@pytest.mark.parametrize(
    "step, kwargs",
    [
        ("sports_amenities", {"sports_supported": ["Quidditch"]}),
        ("sports_amenities", {"sports_supported": []}),
        ("hours_pricing", {"price_range": {"min": 500, "max": 100}}),
        ("hours_pricing", {"price_range": {"min": 1, "max": 2}, "operating_hours": {"funday": {}}}),
        ("location_contact", {"address": ADDRESS, "contact_info": {"phone": "12345", "email": "a@b.com"}}),
        ("basic_info", {"name": "X", "description": "Too short a name"}),
    ],
)
def test_steps_reject_invalid_input(step, kwargs):
    with pytest.raises(ValidationError):
        getattr(VenueRegistrationBuilder(), step)(**kwargs)


def test_day_hours():
    with pytest.raises(ValidationError):
        DayHours(open="22:00", close="06:00")
    with pytest.raises(ValidationError):
        DayHours(open="25:00", close="26:00")
    assert DayHours(open="22:00", close="06:00", is_closed=True).is_closed


def test_update_is_partial_and_strict():
    update = VenueUpdate.model_validate_json('{"name": "New name"}')
    assert update.model_dump(exclude_unset=True) == {"name": "New name"}

    with pytest.raises(ValidationError) as excinfo:
        VenueUpdate.model_validate_json('{"owner_id": 3}')
    assert any(msg.startswith("owner_id") for msg in validation_messages(excinfo.value))
