"""
Mapping between tenant configs and the normalized store records.

Write side (used inside a caller-owned transaction):
    sync_catalog        - upsert categories/services by config id, soft-delete the rest
    replace_availability - rewrite the weekly calendar and exception rows

Read side:
    build_fallback_document - rebuild a config document from stored rows when
                              a business has no usable authoritative source
"""

import logging
import uuid
from datetime import date, time
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings
from ..models import (
    DAY_NAMES,
    DAY_NUMBERS,
    Availability,
    Business,
    BusinessOwner,
    Category,
    Service,
    User,
    utc_now,
)
from .schema import DAYS_OF_WEEK, SCHEMA_VERSION, TenantConfig

logger = logging.getLogger(__name__)

FALLBACK_PRIMARY_COLOR = "#14b8a6"
FALLBACK_TIME_SLOT_MINUTES = 30
FALLBACK_OPEN = "09:00"
FALLBACK_CLOSE = "17:00"


def _parse_time(value: str) -> time:
    return time.fromisoformat(value)


def _format_time(value: time | None) -> str | None:
    return value.strftime("%H:%M") if value is not None else None


# ────────────────────────────────────────────────────────────────
# Write side
# ────────────────────────────────────────────────────────────────

async def sync_catalog(session: AsyncSession, business_id: uuid.UUID, config: TenantConfig) -> None:
    """
    Make the business's categories and services match ``config``.

    Rows are matched on the config id (external_id) and updated in place, so
    service row ids referenced by existing bookings survive re-activation.
    Rows whose id disappeared are soft-deleted.
    """
    now = utc_now()
    default_capacity = config.booking_limits.max_simultaneous_bookings

    category_rows = {
        row.external_id: row
        for row in (
            await session.scalars(
                select(Category).where(Category.business_id == business_id, Category.deleted_at.is_(None))
            )
        ).all()
    }
    service_rows = {
        row.external_id: row
        for row in (
            await session.scalars(
                select(Service).where(Service.business_id == business_id, Service.deleted_at.is_(None))
            )
        ).all()
    }

    live_categories: dict[str, Category] = {}
    for category in config.categories:
        category_row = category_rows.pop(category.id, None)
        if category_row is None:
            category_row = Category(id=uuid.uuid4(), business_id=business_id, external_id=category.id)
            session.add(category_row)
        category_row.name = category.name
        category_row.description = category.description
        category_row.sort_order = category.sort_order
        live_categories[category.id] = category_row
    for stale in category_rows.values():
        stale.deleted_at = now

    # Categories must exist before services reference them
    await session.flush()

    for category in config.categories:
        category_row = live_categories[category.id]
        for service in category.services:
            service_row = service_rows.pop(service.id, None)
            if service_row is None:
                service_row = Service(id=uuid.uuid4(), business_id=business_id, external_id=service.id)
                session.add(service_row)
            service_row.category_id = category_row.id
            service_row.name = service.name
            service_row.description = service.description
            service_row.duration_minutes = service.duration
            service_row.price_cents = service.price
            service_row.color = service.color
            service_row.max_simultaneous_bookings = service.max_simultaneous_bookings or default_capacity
            service_row.buffer_before_minutes = service.buffer_before
            service_row.buffer_after_minutes = service.buffer_after
            service_row.requires_deposit = service.requires_deposit
            service_row.deposit_amount_cents = service.deposit_amount
            service_row.sort_order = service.sort_order
            service_row.enabled = service.enabled

    for stale in service_rows.values():
        stale.deleted_at = now

    await session.flush()
    logger.debug(
        f"Catalog synced for business {business_id}: "
        f"{len(service_rows)} services and {len(category_rows)} categories retired"
    )


async def replace_availability(session: AsyncSession, business_id: uuid.UUID, config: TenantConfig) -> None:
    """One row per day of week plus one row per exception date."""
    await session.execute(delete(Availability).where(Availability.business_id == business_id))

    for entry in config.availability:
        slots = [{"open": slot.open, "close": slot.close} for slot in entry.slots]
        session.add(
            Availability(
                business_id=business_id,
                day_of_week=DAY_NUMBERS[entry.day],
                start_time=_parse_time(entry.slots[0].open) if entry.slots else None,
                end_time=_parse_time(entry.slots[-1].close) if entry.slots else None,
                slots=slots,
                is_available=entry.enabled,
            )
        )

    for exception in config.availability_exceptions:
        session.add(
            Availability(
                business_id=business_id,
                exception_date=date.fromisoformat(exception.date),
                start_time=_parse_time(exception.open) if exception.open else None,
                end_time=_parse_time(exception.close) if exception.close else None,
                slots=[],
                is_available=not exception.closed,
                reason=exception.reason,
            )
        )

    await session.flush()


# ────────────────────────────────────────────────────────────────
# Read side
# ────────────────────────────────────────────────────────────────

def _weekly_entries(rows: list[Availability]) -> list[dict[str, Any]]:
    by_day = {DAY_NAMES[row.day_of_week]: row for row in rows if row.day_of_week is not None}

    entries = []
    for day in DAYS_OF_WEEK:
        row = by_day.get(day)
        if not by_day:
            # Nothing stored at all: conservative Monday-Saturday, 9 to 5
            enabled = day != "sunday"
            slots = [{"open": FALLBACK_OPEN, "close": FALLBACK_CLOSE}] if enabled else []
        elif row is None:
            enabled, slots = False, []
        else:
            slots = list(row.slots or [])
            if not slots and row.start_time and row.end_time:
                slots = [{"open": _format_time(row.start_time), "close": _format_time(row.end_time)}]
            enabled = row.is_available and bool(slots)
        entries.append({"day": day, "enabled": enabled, "slots": slots})
    return entries


def _exception_entries(rows: list[Availability], today: date) -> list[dict[str, Any]]:
    entries = []
    for row in sorted(rows, key=lambda r: r.exception_date or date.min):
        if row.exception_date is None or row.exception_date < today:
            continue
        entry: dict[str, Any] = {
            "date": row.exception_date.isoformat(),
            "reason": row.reason or "Schedule change",
            "closed": not row.is_available,
        }
        if row.is_available:
            entry["open"] = _format_time(row.start_time)
            entry["close"] = _format_time(row.end_time)
        entries.append(entry)
    return entries


async def build_fallback_document(
    session: AsyncSession,
    business: Business,
    settings: Settings,
    today: date,
) -> dict[str, Any]:
    """
    Rebuild a config document (camelCase, pre-validation) from stored rows.

    Every required field gets a conservative default so the result passes
    the validator whenever the business has at least one live service.
    """
    categories = (
        await session.scalars(
            select(Category)
            .where(Category.business_id == business.id, Category.deleted_at.is_(None))
            .order_by(Category.sort_order, Category.name)
        )
    ).all()
    services = (
        await session.scalars(
            select(Service)
            .where(Service.business_id == business.id, Service.deleted_at.is_(None))
            .order_by(Service.sort_order, Service.name)
        )
    ).all()
    availability = (
        await session.scalars(select(Availability).where(Availability.business_id == business.id))
    ).all()
    owner_email = await session.scalar(
        select(User.email)
        .join(BusinessOwner, BusinessOwner.user_id == User.id)
        .where(BusinessOwner.business_id == business.id, User.deleted_at.is_(None))
        .order_by(BusinessOwner.is_primary.desc())
        .limit(1)
    )

    services_by_category: dict[uuid.UUID, list[dict[str, Any]]] = {}
    for service in services:
        document: dict[str, Any] = {
            "id": service.external_id,
            "name": service.name,
            "duration": service.duration_minutes,
            "price": service.price_cents,
            "sortOrder": service.sort_order,
            "enabled": service.enabled,
            "maxSimultaneousBookings": service.max_simultaneous_bookings,
            "bufferBefore": service.buffer_before_minutes,
            "bufferAfter": service.buffer_after_minutes,
            "requiresDeposit": service.requires_deposit,
        }
        if service.description:
            document["description"] = service.description
        if service.color:
            document["color"] = service.color
        if service.deposit_amount_cents is not None:
            document["depositAmount"] = service.deposit_amount_cents
        services_by_category.setdefault(service.category_id, []).append(document)

    category_documents = []
    for category in categories:
        members = services_by_category.get(category.id)
        if not members:
            # Empty categories are not valid config; leave them out
            continue
        document = {
            "id": category.external_id,
            "name": category.name,
            "sortOrder": category.sort_order,
            "services": members,
        }
        if category.description:
            document["description"] = category.description
        category_documents.append(document)

    capacity = max((service.max_simultaneous_bookings for service in services), default=1)
    contact_email = owner_email or settings.fallback_contact_email

    return {
        "version": SCHEMA_VERSION,
        "business": {
            "id": business.subdomain,
            "name": business.name,
            "timezone": business.timezone or settings.default_timezone,
            "locale": settings.default_locale,
            "currency": settings.default_currency,
        },
        "contact": {
            "address": {
                "street": "Not provided",
                "city": "Not provided",
                "state": "NA",
                "postalCode": "00000",
                "country": "US",
            },
            "email": contact_email,
            "phone": settings.fallback_contact_phone,
        },
        "branding": {
            "primaryColor": FALLBACK_PRIMARY_COLOR,
            "logoUrl": settings.fallback_logo_url,
        },
        "timeSlotDuration": FALLBACK_TIME_SLOT_MINUTES,
        "availability": _weekly_entries(list(availability)),
        "availabilityExceptions": _exception_entries(list(availability), today),
        "categories": category_documents,
        "bookingRequirements": {},
        "bookingLimits": {
            "maxSimultaneousBookings": min(capacity, 100),
            "advanceBookingDays": 30,
            "minAdvanceBookingMinutes": 60,
        },
        "cancellationPolicy": {},
        "notifications": {"ownerNotificationEmail": contact_email},
        "features": {},
    }
