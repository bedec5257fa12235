"""
Tenant configuration schema.

Structural shape of a tenant configuration document: field types, formats
and numeric ranges. Anything that needs more than one field to decide
(id uniqueness, slot overlap, deposit vs. price, the 7-day week) lives in
``validation.py`` so the rule list stays auditable.

Source documents use camelCase keys; the models expose snake_case
attributes and serialize back to camelCase with ``by_alias=True``.

Schema Version: 1.0.0
"""

import re
from datetime import date
from typing import Annotated, Any, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, HttpUrl, TypeAdapter, ValidationError, model_validator
from pydantic.alias_generators import to_camel


SCHEMA_VERSION = "1.0.0"

# Fixed scheduling precision; every duration and buffer is a multiple of it.
GRAIN_MINUTES = 5

DAYS_OF_WEEK = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

DayOfWeek = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


# ────────────────────────────────────────────────────────────────
# Field formats
# ────────────────────────────────────────────────────────────────

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SLUG_PATTERN = re.compile(r"^[a-z0-9_-]+$")
HEX_COLOR_PATTERN = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")
SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
LOCALE_PATTERN = re.compile(r"^[a-z]{2}-[A-Z]{2}$")
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

_http_url = TypeAdapter(HttpUrl)


def to_minutes(value: str) -> int:
    """Convert an ``HH:MM`` string to minutes since midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def _check_time(value: str) -> str:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in 24-hour format HH:MM (e.g., 09:00, 14:30)")
    return value


def _check_date(value: str) -> str:
    if not DATE_PATTERN.match(value):
        raise ValueError("Date must be in YYYY-MM-DD format")
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"{value} is not a valid calendar date")
    return value


def _check_slug(value: str) -> str:
    if not SLUG_PATTERN.match(value):
        raise ValueError("ID must contain only lowercase letters, numbers, hyphens, and underscores")
    return value


def _check_color(value: str) -> str:
    if not HEX_COLOR_PATTERN.match(value):
        raise ValueError("Color must be a valid hex code (e.g., #FF5733 or #F57)")
    return value


def _check_phone(value: str) -> str:
    if not PHONE_PATTERN.match(value):
        raise ValueError("Phone must be in international format (e.g., +1234567890)")
    return value


def _check_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError("Invalid timezone. Must be a valid IANA timezone (e.g., America/New_York)")
    return value


def _check_url(value: str) -> str:
    # Validated as an http(s) URL but kept as the author wrote it
    try:
        _http_url.validate_python(value)
    except ValidationError:
        raise ValueError("Must be a valid URL")
    return value


def _number_to_str(value: Any) -> Any:
    # YAML reads unquoted phone numbers and postal codes as integers
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _pattern(pattern: re.Pattern, message: str):
    def check(value: str) -> str:
        if not pattern.match(value):
            raise ValueError(message)
        return value
    return AfterValidator(check)


TimeString = Annotated[str, AfterValidator(_check_time)]
DateString = Annotated[str, AfterValidator(_check_date)]
SlugId = Annotated[str, Field(min_length=1, max_length=100), AfterValidator(_check_slug)]
ColorHex = Annotated[str, AfterValidator(_check_color)]
PhoneString = Annotated[str, BeforeValidator(_number_to_str), AfterValidator(_check_phone)]
TimezoneString = Annotated[str, AfterValidator(_check_timezone)]
UrlString = Annotated[str, AfterValidator(_check_url)]
OptionalUrlString = Annotated[Optional[UrlString], BeforeValidator(_blank_to_none)]


class ConfigModel(BaseModel):
    """Base for every config entity: camelCase keys, no unknown keys, immutable."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        extra="forbid",
        frozen=True,
        strict=True,
    )


# ────────────────────────────────────────────────────────────────
# Business and contact
# ────────────────────────────────────────────────────────────────

class BusinessInfo(ConfigModel):
    id: SlugId
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    timezone: TimezoneString
    locale: Annotated[str, _pattern(LOCALE_PATTERN, "Locale must be in format xx-XX (e.g., en-US, es-ES)")] = "en-US"
    currency: Annotated[str, _pattern(CURRENCY_PATTERN, "Currency must be a 3-letter ISO code (e.g., USD)")] = "USD"


class Address(ConfigModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=2, max_length=100)
    postal_code: Annotated[str, BeforeValidator(_number_to_str)] = Field(min_length=1)
    country: str = Field(min_length=2, max_length=2, description="ISO 3166-1 alpha-2 country code")


class Contact(ConfigModel):
    address: Address
    email: EmailStr
    phone: PhoneString
    website: OptionalUrlString = None
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class Branding(ConfigModel):
    primary_color: ColorHex
    secondary_color: Optional[ColorHex] = None
    logo_url: UrlString
    cover_image_url: OptionalUrlString = None
    profile_image_url: OptionalUrlString = None
    favicon_url: OptionalUrlString = None


# ────────────────────────────────────────────────────────────────
# Availability
# ────────────────────────────────────────────────────────────────

class TimeSlot(ConfigModel):
    open: TimeString
    close: TimeString

    @model_validator(mode="after")
    def close_after_open(self) -> "TimeSlot":
        if to_minutes(self.close) <= to_minutes(self.open):
            raise ValueError("Close time must be after open time")
        return self

    @property
    def minutes(self) -> int:
        return to_minutes(self.close) - to_minutes(self.open)


class DailyAvailability(ConfigModel):
    """
    Opening hours for one day of the week.

    Accepts two input shapes:
    - Legacy: ``{day, open, close, enabled}``
    - Slots:  ``{day, slots: [{open, close}, ...], enabled}`` (lunch breaks, split shifts)

    Legacy input is rewritten into a single-element ``slots`` list, so the
    validated model only ever carries ``slots``.
    """

    day: DayOfWeek
    enabled: bool = True
    slots: list[TimeSlot]

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy_hours(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        data = dict(data)
        open_time = data.pop("open", None)
        close_time = data.pop("close", None)
        has_legacy = open_time is not None or close_time is not None

        if data.get("slots") is not None:
            if has_legacy:
                raise ValueError("Use either open/close or slots, not both")
            return data

        if has_legacy:
            if open_time is None or close_time is None:
                raise ValueError("Both open and close are required")
            data["slots"] = [{"open": open_time, "close": close_time}]
        elif data.get("enabled", True):
            raise ValueError(
                f"Day {data.get('day')} is enabled but has no open/close times or slots defined"
            )
        else:
            data["slots"] = []
        return data

    @property
    def total_minutes(self) -> int:
        return sum(slot.minutes for slot in self.slots)


class AvailabilityException(ConfigModel):
    """A dated override of the weekly hours (holiday, special closure)."""

    date: DateString
    reason: str = Field(min_length=1)
    open: Optional[TimeString] = None
    close: Optional[TimeString] = None
    closed: bool = False

    @model_validator(mode="after")
    def hours_unless_closed(self) -> "AvailabilityException":
        if self.closed:
            return self
        if self.open is None or self.close is None:
            raise ValueError("If not closed, must provide open and close times")
        if to_minutes(self.close) <= to_minutes(self.open):
            raise ValueError("Close time must be after open time")
        return self


# ────────────────────────────────────────────────────────────────
# Catalog
# ────────────────────────────────────────────────────────────────

class ServiceConfig(ConfigModel):
    id: SlugId
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    duration: int = Field(ge=5, le=480)
    price: int = Field(ge=0, description="Minor currency units (cents)")
    color: Optional[ColorHex] = None
    sort_order: int = Field(default=0, ge=0)
    enabled: bool = True
    requires_deposit: bool = False
    deposit_amount: Optional[int] = Field(default=None, ge=0)
    max_advance_booking_days: Optional[int] = Field(default=None, ge=0)
    # Falls back to bookingLimits.maxSimultaneousBookings when unset
    max_simultaneous_bookings: Optional[int] = Field(default=None, ge=1, le=100)
    buffer_before: int = Field(default=0, ge=0, le=120)
    buffer_after: int = Field(default=0, ge=0, le=120)


class CategoryConfig(ConfigModel):
    id: SlugId
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    sort_order: int = Field(default=0, ge=0)
    services: list[ServiceConfig] = Field(min_length=1)


# ────────────────────────────────────────────────────────────────
# Policies
# ────────────────────────────────────────────────────────────────

class CustomField(ConfigModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    type: Literal["text", "textarea", "select", "checkbox", "radio"]
    required: bool = False
    options: Optional[list[str]] = None
    placeholder: Optional[str] = None
    max_length: Optional[int] = Field(default=None, ge=1, le=1000)


class BookingRequirements(ConfigModel):
    require_email: bool = True
    require_phone: bool = False
    require_name: bool = True
    allow_guest_booking: bool = True
    require_email_verification: bool = False
    require_phone_verification: bool = False
    custom_fields: list[CustomField] = Field(default_factory=list)


class BookingLimits(ConfigModel):
    max_simultaneous_bookings: int = Field(ge=1, le=100)
    advance_booking_days: int = Field(ge=0, le=365)
    min_advance_booking_minutes: int = Field(default=0, ge=0)
    max_bookings_per_customer_per_day: Optional[int] = Field(default=None, ge=1, le=20)
    max_bookings_per_customer_pending: Optional[int] = Field(default=None, ge=1, le=50)


class CancellationPolicy(ConfigModel):
    allow_cancellation: bool = True
    cancellation_deadline_hours: int = Field(default=24, ge=0, le=168)
    allow_rescheduling: bool = True
    reschedule_deadline_hours: int = Field(default=24, ge=0, le=168)
    refund_policy: Literal["full", "partial", "none"] = "full"
    partial_refund_percentage: Optional[float] = Field(default=None, ge=0, le=100)


class NotificationPreferences(ConfigModel):
    send_confirmation_email: bool = True
    send_reminder_email: bool = True
    reminder_hours_before: int = Field(default=24, ge=1, le=168)
    send_confirmation_sms: bool = Field(default=False, alias="sendConfirmationSMS")
    send_reminder_sms: bool = Field(default=False, alias="sendReminderSMS")
    owner_notification_email: EmailStr
    notify_owner_on_new_booking: bool = True
    notify_owner_on_cancellation: bool = True


class Features(ConfigModel):
    enable_online_payments: bool = False
    enable_waitlist: bool = False
    enable_reviews: bool = False
    enable_multiple_staff: bool = False


# ────────────────────────────────────────────────────────────────
# Root document
# ────────────────────────────────────────────────────────────────

class TenantConfig(ConfigModel):
    """Validated, immutable tenant configuration. A new activation produces a new value."""

    version: Annotated[str, _pattern(SEMVER_PATTERN, "Version must be in semver format (e.g., 1.0.0)")]
    business: BusinessInfo
    contact: Contact
    branding: Branding
    # Display granularity in the booking UI; scheduling itself uses GRAIN_MINUTES
    time_slot_duration: int = Field(ge=5, le=480)
    availability: list[DailyAvailability]
    availability_exceptions: list[AvailabilityException] = Field(default_factory=list)
    categories: list[CategoryConfig] = Field(min_length=1)
    booking_requirements: BookingRequirements
    booking_limits: BookingLimits
    cancellation_policy: CancellationPolicy
    notifications: NotificationPreferences
    features: Features = Field(default_factory=Features)
    metadata: Optional[dict[str, Any]] = None

    def iter_services(self):
        for category in self.categories:
            yield from category.services

    def service_map(self) -> dict[str, ServiceConfig]:
        return {service.id: service for service in self.iter_services()}

    def to_document(self) -> dict[str, Any]:
        """Plain camelCase dict, suitable for YAML/JSON output."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
