"""
Typed venue registration form.

Facility registration is a multi-step form (basic info, location & contact,
sports & amenities, hours & pricing, policies). Each step is its own
pydantic model; `VenueRegistrationBuilder` collects validated steps and
assembles the `VenueCreate` payload the API stores.
"""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator, model_validator

SUPPORTED_SPORTS = (
    "Cricket", "Football", "Basketball", "Tennis", "Badminton",
    "Swimming", "Volleyball", "Table Tennis", "Squash", "Hockey",
    "Athletics", "Gymnastics", "Boxing", "Wrestling", "Weightlifting",
    "Cycling", "Running", "Yoga", "Fitness", "Water Polo", "Diving",
)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_CANCELLATION_POLICY = "Cancellation allowed up to 24 hours before booking time"

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class _Form(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class Coordinates(_Form):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class AddressIn(_Form):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(min_length=1)
    country: str = "India"
    coordinates: Optional[Coordinates] = None


class ContactIn(_Form):
    phone: str
    email: EmailStr
    website: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def check_phone(cls, value: str) -> str:
        digits = re.sub(r"\D", "", value)
        if len(digits) < 10:
            raise ValueError("Contact phone must have at least 10 digits")
        return value

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return str(value).lower()


class DayHours(_Form):
    open: str = "06:00"
    close: str = "22:00"
    is_closed: bool = False

    @field_validator("open", "close")
    @classmethod
    def check_time(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError("Time must be HH:MM (24h)")
        return value

    @model_validator(mode="after")
    def check_order(self) -> "DayHours":
        if not self.is_closed and self.close <= self.open:
            raise ValueError("Closing time must be after opening time")
        return self


def default_operating_hours() -> dict[str, DayHours]:
    hours = {day: DayHours() for day in WEEKDAYS}
    hours["sunday"] = DayHours(open="07:00", close="21:00")
    return hours


class PriceRangeIn(_Form):
    min: float = Field(ge=0)
    max: float = Field(ge=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "PriceRangeIn":
        if self.max < self.min:
            raise ValueError("Maximum price cannot be below minimum price")
        return self


class FacilityIn(_Form):
    name: str = Field(min_length=1)
    description: str = ""
    available: bool = True


def _check_sports(value: list[str]) -> list[str]:
    seen: list[str] = []
    for sport in value:
        sport = sport.strip()
        if sport not in SUPPORTED_SPORTS:
            raise ValueError(f"Unsupported sport: {sport}")
        if sport not in seen:
            seen.append(sport)
    return seen


def _fill_hours(value: dict[str, DayHours]) -> dict[str, DayHours]:
    unknown = set(value) - set(WEEKDAYS)
    if unknown:
        raise ValueError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")
    hours = default_operating_hours()
    hours.update(value)
    return hours


# Registration steps


class BasicInfoStep(_Form):
    name: str = Field(min_length=2, max_length=100)
    description: str = Field(min_length=1, max_length=500)


class LocationContactStep(_Form):
    address: AddressIn
    contact_info: ContactIn


class SportsAmenitiesStep(_Form):
    sports_supported: list[str] = Field(min_length=1)
    amenities: list[str] = Field(default_factory=list)

    @field_validator("sports_supported")
    @classmethod
    def check_sports(cls, value: list[str]) -> list[str]:
        return _check_sports(value)


class HoursPricingStep(_Form):
    operating_hours: dict[str, DayHours] = Field(default_factory=default_operating_hours)
    price_range: PriceRangeIn

    @field_validator("operating_hours")
    @classmethod
    def check_hours(cls, value: dict[str, DayHours]) -> dict[str, DayHours]:
        return _fill_hours(value)


class PoliciesStep(_Form):
    facilities: list[FacilityIn] = Field(default_factory=list)
    rules: list[str] = Field(default_factory=list)
    cancellation_policy: str = DEFAULT_CANCELLATION_POLICY


class VenueCreate(BasicInfoStep, LocationContactStep, SportsAmenitiesStep, HoursPricingStep, PoliciesStep):
    """Complete venue payload: the union of every registration step."""


class VenueUpdate(_Form):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    address: Optional[AddressIn] = None
    contact_info: Optional[ContactIn] = None
    sports_supported: Optional[list[str]] = Field(default=None, min_length=1)
    amenities: Optional[list[str]] = None
    operating_hours: Optional[dict[str, DayHours]] = None
    price_range: Optional[PriceRangeIn] = None
    facilities: Optional[list[FacilityIn]] = None
    rules: Optional[list[str]] = None
    cancellation_policy: Optional[str] = None
    is_active: Optional[bool] = None
    # Photos to keep, in order; anything else currently stored is removed.
    existing_photos: Optional[list[str]] = None

    @field_validator("sports_supported")
    @classmethod
    def check_sports(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return None if value is None else _check_sports(value)

    @field_validator("operating_hours")
    @classmethod
    def check_hours(cls, value: Optional[dict[str, DayHours]]) -> Optional[dict[str, DayHours]]:
        return None if value is None else _fill_hours(value)


class VenueRegistrationBuilder:
    REQUIRED_STEPS = (BasicInfoStep, LocationContactStep, SportsAmenitiesStep, HoursPricingStep)

    def __init__(self) -> None:
        self._steps: dict[type, BaseModel] = {}

    def _set(self, step: BaseModel) -> "VenueRegistrationBuilder":
        self._steps[type(step)] = step
        return self

    def basic_info(self, *, name: str, description: str) -> "VenueRegistrationBuilder":
        return self._set(BasicInfoStep(name=name, description=description))

    def location_contact(self, *, address: dict, contact_info: dict) -> "VenueRegistrationBuilder":
        return self._set(LocationContactStep(address=address, contact_info=contact_info))

    def sports_amenities(self, *, sports_supported: list[str], amenities: Optional[list[str]] = None):
        return self._set(SportsAmenitiesStep(sports_supported=sports_supported, amenities=amenities or []))

    def hours_pricing(self, *, price_range: dict, operating_hours: Optional[dict] = None):
        if operating_hours is None:
            return self._set(HoursPricingStep(price_range=price_range))
        return self._set(HoursPricingStep(price_range=price_range, operating_hours=operating_hours))

    def policies(
        self,
        *,
        facilities: Optional[list[dict]] = None,
        rules: Optional[list[str]] = None,
        cancellation_policy: Optional[str] = None,
    ) -> "VenueRegistrationBuilder":
        return self._set(
            PoliciesStep(
                facilities=facilities or [],
                rules=rules or [],
                cancellation_policy=cancellation_policy or DEFAULT_CANCELLATION_POLICY,
            )
        )

    def missing_steps(self) -> list[str]:
        return [step.__name__ for step in self.REQUIRED_STEPS if step not in self._steps]

    def build(self) -> VenueCreate:
        missing = self.missing_steps()
        if missing:
            raise ValueError(f"Venue registration incomplete, missing: {', '.join(missing)}")
        merged: dict = {}
        for step in (*self.REQUIRED_STEPS, PoliciesStep):
            model = self._steps.get(step) or PoliciesStep()
            merged.update(model.model_dump())
        return VenueCreate.model_validate(merged)

    @classmethod
    def from_mapping(cls, data: dict) -> "VenueRegistrationBuilder":
        """Builder pre-filled from {"basic_info": {...}, "location_contact": {...}, ...}."""
        builder = cls()
        for name in ("basic_info", "location_contact", "sports_amenities", "hours_pricing", "policies"):
            if data.get(name) is not None:
                getattr(builder, name)(**data[name])
        return builder


def validation_messages(exc: ValidationError) -> list[str]:
    return [f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in exc.errors()]
