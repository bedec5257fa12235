"""
Tenant configuration validator.

validate(raw) runs two passes:

1. Structural: the pydantic models in ``schema.py`` check shape, types,
   formats and ranges. Any failure here is fatal and returned immediately.
2. Semantic: explicit per-entity rule functions, each returning a list of
   violations, composed into one document check. Durations and buffers are
   first snapped to the 5-minute grain; rounding never fails, it only adds
   a warning.

Advisory warnings (unusual hours, very high capacity, missing optional
fields...) are collected separately and never block activation.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from .schema import (
    DAYS_OF_WEEK,
    GRAIN_MINUTES,
    AvailabilityException,
    BookingRequirements,
    CancellationPolicy,
    CategoryConfig,
    DailyAvailability,
    ServiceConfig,
    TenantConfig,
    to_minutes,
)

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

# Advisory thresholds
EARLY_OPENING_MINUTES = 6 * 60
LATE_CLOSING_MINUTES = 23 * 60
LONG_DAY_MINUTES = 16 * 60
FAR_ADVANCE_BOOKING_DAYS = 180
SMALL_TIME_SLOT_MINUTES = 15
HIGH_CAPACITY = 20


@dataclass
class ValidationResult:
    valid: bool
    config: Optional[TenantConfig] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# ────────────────────────────────────────────────────────────────
# Structural pass
# ────────────────────────────────────────────────────────────────

def format_validation_errors(error: ValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into ``path: message`` strings."""
    messages = []
    for item in error.errors():
        path = ".".join(str(part) for part in item["loc"])
        message = item["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(f"{path}: {message}" if path else message)
    return messages


# ────────────────────────────────────────────────────────────────
# Grain normalization
# ────────────────────────────────────────────────────────────────

def round_to_grain(minutes: int, minimum: int = 0) -> int:
    """Snap a minute count to the nearest grain boundary, never below ``minimum``."""
    rounded = GRAIN_MINUTES * round(minutes / GRAIN_MINUTES)
    return max(minimum, rounded)


def _round_service(service: ServiceConfig, warnings: list[str]) -> ServiceConfig:
    updates: dict[str, int] = {}

    duration = round_to_grain(service.duration, minimum=GRAIN_MINUTES)
    if duration != service.duration:
        warnings.append(
            f'Service "{service.id}" duration {service.duration}min rounded to {duration}min '
            f"({GRAIN_MINUTES}min grain)"
        )
        updates["duration"] = duration

    for attr, label in (("buffer_before", "buffer before"), ("buffer_after", "buffer after")):
        value = getattr(service, attr)
        rounded = round_to_grain(value)
        if rounded != value:
            warnings.append(
                f'Service "{service.id}" {label} {value}min rounded to {rounded}min '
                f"({GRAIN_MINUTES}min grain)"
            )
            updates[attr] = rounded

    return service.model_copy(update=updates) if updates else service


def normalize_to_grain(config: TenantConfig) -> tuple[TenantConfig, list[str]]:
    """
    Return a copy of ``config`` with timeSlotDuration, every service
    duration and every buffer aligned to the grain, plus one warning per
    value that had to move.
    """
    warnings: list[str] = []
    updates: dict[str, Any] = {}

    slot_duration = round_to_grain(config.time_slot_duration, minimum=GRAIN_MINUTES)
    if slot_duration != config.time_slot_duration:
        warnings.append(
            f"Time slot duration {config.time_slot_duration}min rounded to {slot_duration}min "
            f"({GRAIN_MINUTES}min grain)"
        )
        updates["time_slot_duration"] = slot_duration

    categories = []
    changed = False
    for category in config.categories:
        services = [_round_service(service, warnings) for service in category.services]
        if any(new is not old for new, old in zip(services, category.services)):
            category = category.model_copy(update={"services": services})
            changed = True
        categories.append(category)
    if changed:
        updates["categories"] = categories

    return (config.model_copy(update=updates) if updates else config), warnings


# ────────────────────────────────────────────────────────────────
# Semantic rules (one function per entity)
# ────────────────────────────────────────────────────────────────

def validate_daily_availability(entry: DailyAvailability) -> list[str]:
    if not entry.enabled:
        return []

    errors = []
    if not entry.slots:
        errors.append(f"availability.{entry.day}: enabled day must have at least one slot")
        return errors

    for current, following in zip(entry.slots, entry.slots[1:]):
        if to_minutes(following.open) <= to_minutes(current.close):
            errors.append(
                f"availability.{entry.day}: slot {following.open}-{following.close} overlaps or "
                f"precedes {current.open}-{current.close}; slots must be non-overlapping and chronological"
            )

    if entry.total_minutes > MINUTES_PER_DAY:
        errors.append(f"availability.{entry.day}: total open time exceeds 24 hours")
    return errors


def validate_week(entries: list[DailyAvailability]) -> list[str]:
    errors = []
    if len(entries) != len(DAYS_OF_WEEK):
        errors.append(
            f"availability: must provide exactly {len(DAYS_OF_WEEK)} days, got {len(entries)}"
        )

    seen: set[str] = set()
    for entry in entries:
        if entry.day in seen:
            errors.append(f"availability: duplicate entry for {entry.day}")
        seen.add(entry.day)

    for day in DAYS_OF_WEEK:
        if day not in seen:
            errors.append(f"availability: missing availability for {day}")

    for entry in entries:
        errors.extend(validate_daily_availability(entry))
    return errors


def validate_exceptions(exceptions: list[AvailabilityException], today: Optional[date]) -> list[str]:
    errors = []
    seen: set[str] = set()
    for exception in exceptions:
        if today is not None and date.fromisoformat(exception.date) < today:
            errors.append(f"availabilityExceptions: exception for {exception.date} is in the past")
        if exception.date in seen:
            errors.append(f"availabilityExceptions: duplicate exception for {exception.date}")
        seen.add(exception.date)
    return errors


def validate_service(service: ServiceConfig) -> list[str]:
    errors = []
    if service.requires_deposit and service.deposit_amount is None:
        errors.append(f'Service "{service.id}": requiresDeposit is set but depositAmount is missing')
    if service.deposit_amount is not None and service.deposit_amount > service.price:
        errors.append(
            f'Service "{service.id}": depositAmount ({service.deposit_amount}) exceeds price ({service.price})'
        )
    if service.duration % GRAIN_MINUTES != 0:
        errors.append(
            f'Service "{service.id}": duration {service.duration}min is not a multiple of {GRAIN_MINUTES} minutes'
        )
    return errors


def validate_catalog(categories: list[CategoryConfig]) -> list[str]:
    errors = []
    category_ids: set[str] = set()
    service_ids: set[str] = set()

    for category in categories:
        if category.id in category_ids:
            errors.append(f"Duplicate category ID: {category.id}")
        category_ids.add(category.id)

        for service in category.services:
            if service.id in service_ids:
                errors.append(f"Duplicate service ID: {service.id}")
            service_ids.add(service.id)
            errors.extend(validate_service(service))
    return errors


def validate_cancellation_policy(policy: CancellationPolicy) -> list[str]:
    if policy.refund_policy == "partial" and policy.partial_refund_percentage is None:
        return ["cancellationPolicy: partial refund policy requires partialRefundPercentage"]
    return []


def validate_booking_requirements(requirements: BookingRequirements) -> list[str]:
    errors = []
    field_ids: set[str] = set()
    for custom in requirements.custom_fields:
        if custom.id in field_ids:
            errors.append(f"bookingRequirements.customFields: duplicate field ID {custom.id}")
        field_ids.add(custom.id)
        if custom.type in ("select", "radio") and not custom.options:
            errors.append(
                f"bookingRequirements.customFields.{custom.id}: {custom.type} fields require options"
            )
    return errors


def check_invariants(config: TenantConfig, today: Optional[date]) -> list[str]:
    """
    Run every cross-field rule against a structurally valid config.
    ``today=None`` skips the past-exception rule.
    """
    errors: list[str] = []
    errors.extend(validate_week(config.availability))
    errors.extend(validate_exceptions(config.availability_exceptions, today))
    errors.extend(validate_catalog(config.categories))
    errors.extend(validate_cancellation_policy(config.cancellation_policy))
    errors.extend(validate_booking_requirements(config.booking_requirements))
    return errors


# ────────────────────────────────────────────────────────────────
# Advisory warnings
# ────────────────────────────────────────────────────────────────

def _availability_warnings(entries: Iterable[DailyAvailability]) -> list[str]:
    warnings = []
    for entry in entries:
        if not entry.enabled or not entry.slots:
            continue
        first, last = entry.slots[0], entry.slots[-1]
        if to_minutes(first.open) < EARLY_OPENING_MINUTES:
            warnings.append(f"{entry.day}: Opening time {first.open} is very early (before 6 AM)")
        if to_minutes(last.close) > LATE_CLOSING_MINUTES:
            warnings.append(f"{entry.day}: Closing time {last.close} is very late (after 11 PM)")
        if entry.total_minutes > LONG_DAY_MINUTES:
            warnings.append(
                f"{entry.day}: Business hours span {entry.total_minutes / 60:.1f} hours, which is unusually long"
            )
    return warnings


def collect_warnings(config: TenantConfig) -> list[str]:
    """Non-blocking observations about a valid config."""
    warnings = _availability_warnings(config.availability)

    limits = config.booking_limits
    if limits.advance_booking_days > FAR_ADVANCE_BOOKING_DAYS:
        warnings.append(
            f"Advance booking allowed {limits.advance_booking_days} days out. "
            f"Consider limiting to {FAR_ADVANCE_BOOKING_DAYS} days or less."
        )

    if config.time_slot_duration < SMALL_TIME_SLOT_MINUTES:
        warnings.append(
            f"Time slot duration of {config.time_slot_duration} minutes is very small "
            "and may create performance issues."
        )

    if limits.max_simultaneous_bookings > HIGH_CAPACITY:
        warnings.append(
            f"Max simultaneous bookings ({limits.max_simultaneous_bookings}) is very high. "
            "Ensure adequate capacity."
        )

    policy = config.cancellation_policy
    if not policy.allow_cancellation and not policy.allow_rescheduling:
        warnings.append("Neither cancellation nor rescheduling is allowed.")

    if any(service.requires_deposit for service in config.iter_services()) and not config.features.enable_online_payments:
        warnings.append("Some services require deposits but online payments are not enabled.")

    requirements = config.booking_requirements
    if requirements.require_email_verification and requirements.allow_guest_booking:
        warnings.append(
            "Email verification is required but guest booking is allowed. Consider disabling guest booking."
        )

    if all(not entry.enabled for entry in config.availability):
        warnings.append("All days are disabled. Business will not accept any bookings.")

    if not config.business.description:
        warnings.append("Business description is missing.")

    if not config.contact.website:
        warnings.append("Website URL is missing.")

    undescribed = [service.name for service in config.iter_services() if not service.description]
    if undescribed:
        warnings.append(f"Services without descriptions: {', '.join(undescribed)}")

    return warnings


# ────────────────────────────────────────────────────────────────
# Entry point
# ────────────────────────────────────────────────────────────────

def validate(
    raw: Any,
    *,
    today: Optional[date] = None,
    reject_past_exceptions: bool = True,
) -> ValidationResult:
    """
    Validate a deserialized config document.

    Args:
        raw: Output of the YAML loader (or any dict in the source shape)
        today: Reference date for the past-exception rule (defaults to today)
        reject_past_exceptions: False when serving an already-activated config,
            whose exception dates may legitimately have passed

    Returns:
        ValidationResult. ``config`` is set only when ``valid`` is True.
    """
    if not isinstance(raw, dict):
        return ValidationResult(valid=False, errors=["Config root must be a mapping"])

    try:
        parsed = TenantConfig.model_validate(raw)
    except ValidationError as exc:
        return ValidationResult(valid=False, errors=format_validation_errors(exc))

    config, warnings = normalize_to_grain(parsed)

    reference = (today or date.today()) if reject_past_exceptions else None
    errors = check_invariants(config, reference)
    if errors:
        return ValidationResult(valid=False, errors=errors, warnings=warnings)

    warnings.extend(collect_warnings(config))
    logger.debug(f"Config {config.business.id} v{config.version} valid with {len(warnings)} warnings")
    return ValidationResult(valid=True, config=config, errors=[], warnings=warnings)
