"""
Domain models (Pydantic).

These types are the stable "contract" between layers:
- catalog entities (`BusinessLocation`, `OwnedCoupon`)
- per-coupon reminder preferences (`CouponReminderConfig`)
- tracking state (`TrackedSubject`) and matching output (`NotificationEvent`)

Reminder configs serialize with camelCase keys (`couponId`, `locationRadiusMiles`, ...)
because that is the shape the preference UI and the stored records use.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PermissionState = Literal["requesting", "granted", "denied"]
TriggerKind = Literal["location", "time", "expiration", "custom"]
PassReason = Literal["location", "timer", "preferences"]

TRIGGER_KINDS: tuple[TriggerKind, ...] = ("location", "time", "expiration", "custom")

_TIME_OF_DAY_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class Coordinate(BaseModel):
    """A latitude/longitude pair in decimal degrees."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    latitude: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(
        ..., ge=-180, le=180, validation_alias=AliasChoices("longitude", "lng", "lon")
    )


class BusinessLocation(BaseModel):
    """A merchant location coupons can be redeemed at."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    address: str = ""
    coordinates: Coordinate


class OwnedCoupon(BaseModel):
    """A coupon the user holds, tied to one business and an expiry date."""

    model_config = ConfigDict(frozen=True)

    coupon_id: str
    business_id: str
    title: str = ""
    expires_on: date | None = None


class Catalog(BaseModel):
    """Reference data the engine reads: businesses plus the user's coupons."""

    businesses: list[BusinessLocation] = Field(default_factory=list)
    coupons: list[OwnedCoupon] = Field(default_factory=list)


class _CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class ReminderTypes(_CamelModel):
    location: bool = False
    time: bool = False
    expiration: bool = False
    custom: bool = False


class CustomReminderSettings(_CamelModel):
    days_before_expiry: int = Field(7, gt=0)
    time_of_day: str = "18:00"
    location_radius_miles: float = Field(5.0, gt=0)

    @field_validator("time_of_day")
    @classmethod
    def _validate_time_of_day(cls, value: str) -> str:
        value = value.strip()
        if not _TIME_OF_DAY_RE.match(value):
            raise ValueError("timeOfDay must be HH:MM (24h)")
        return value

    def time_of_day_tuple(self) -> tuple[int, int]:
        hh, mm = self.time_of_day.split(":", 1)
        return int(hh), int(mm)


class CouponReminderConfig(_CamelModel):
    """Reminder preferences for one coupon.

    Instances are immutable; the preference store swaps whole objects on update so
    readers never observe a half-merged config.
    """

    coupon_id: str
    enabled: bool = False
    types: ReminderTypes = Field(default_factory=ReminderTypes)
    custom: CustomReminderSettings = Field(default_factory=CustomReminderSettings)

    def wants(self, kind: TriggerKind) -> bool:
        return bool(self.enabled and getattr(self.types, kind))


class TrackedSubject(BaseModel):
    """The user's current location plus permission/tracking state."""

    location: Coordinate | None = None
    located_at: datetime | None = None
    permission_state: PermissionState = "requesting"
    is_tracking: bool = False
    last_error: str | None = None


class NotificationEvent(BaseModel):
    """One reminder the matching engine decided to fire."""

    model_config = ConfigDict(frozen=True)

    coupon_id: str
    kind: TriggerKind
    title: str
    body: str
    tag: str
    fired_at: datetime
    business_id: str | None = None
    distance_miles: float | None = None
    delivered: bool = False
