"""
Business onboarding.

Turns a validated tenant config plus an owner identity into the full set of
store records: business, owner account (new, reused or upgraded), ownership
link, service catalog and availability calendar.

Everything after parsing runs inside one transaction, so a failure at any
point leaves no half-created business holding the subdomain. Concurrent
onboarding of the same subdomain is serialized by the unique constraint on
``businesses.subdomain``; the loser gets the "already exists" conflict.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.config import Settings, get_settings
from .core.errors import ConfigSourceError, ProvisioningConflict
from .core.responses import ErrorCodes
from .models import Business, BusinessOwner, BusinessStatus, User, UserRole, utc_now
from .security import (
    generate_temporary_password,
    generate_verification_token,
    hash_password,
    hash_token,
)
from .tenancy.catalog import replace_availability, sync_catalog
from .tenancy.parser import parse_config, read_source
from .tenancy.schema import TenantConfig
from .tenancy.subdomain import validate_subdomain_format

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


@dataclass
class OnboardingResult:
    success: bool
    business_id: Optional[str] = None
    owner_id: Optional[str] = None
    subdomain: Optional[str] = None
    # Plaintext, returned exactly once for out-of-band delivery
    temporary_credential: Optional[str] = None
    verification_token: Optional[str] = None
    verification_url: Optional[str] = None
    booking_page_url: Optional[str] = None
    is_existing_owner: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    retryable: bool = False
    # One of ErrorCodes when success is False
    error_code: Optional[str] = None


@dataclass
class _ResolvedOwner:
    user: User
    is_existing: bool
    temporary_credential: Optional[str] = None
    verification_token: Optional[str] = None


def booking_page_url(base_url: str, subdomain: str) -> str:
    return f"{base_url}/book/{subdomain}"


def verification_url(base_url: str, token: str) -> str:
    return f"{base_url}/auth/verify-email?token={token}"


class OnboardingProvisioner:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        today: Callable[[], date] = date.today,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._clock = clock
        self._today = today

    async def onboard(
        self,
        source_text: str,
        owner_email: str,
        owner_name: str | None = None,
        *,
        source_path: str | None = None,
    ) -> OnboardingResult:
        """
        Provision a new business from config source text.

        Never raises. Parse errors, conflicts, store timeouts and unexpected
        failures all come back as ``OnboardingResult(success=False, errors=[...])``.
        """
        try:
            return await asyncio.wait_for(
                self._onboard(source_text, owner_email, owner_name, source_path),
                timeout=self.settings.store_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Store timeout during onboarding")
            return OnboardingResult(
                success=False,
                errors=[f"Store timeout after {self.settings.store_timeout_seconds}s; no records were created"],
                retryable=True,
                error_code=ErrorCodes.STORE_TIMEOUT,
            )
        except Exception as e:
            logger.exception("Unexpected error during onboarding")
            return OnboardingResult(
                success=False, errors=[f"Onboarding failed: {e}"], error_code=ErrorCodes.INTERNAL_ERROR
            )

    async def onboard_from_file(
        self,
        path: str | Path,
        owner_email: str,
        owner_name: str | None = None,
    ) -> OnboardingResult:
        """Read a config file and onboard it; the path is recorded on the business."""
        try:
            source_text = await asyncio.to_thread(read_source, path)
        except ConfigSourceError as e:
            return OnboardingResult(success=False, errors=[str(e)], error_code=ErrorCodes.INVALID_INPUT)
        return await self.onboard(source_text, owner_email, owner_name, source_path=str(path))

    # ────────────────────────────────────────────────────────────

    async def _onboard(
        self,
        source_text: str,
        owner_email: str,
        owner_name: str | None,
        source_path: str | None,
    ) -> OnboardingResult:
        # Step 1: parse and validate
        parsed = parse_config(source_text, today=self._today())
        if not parsed.success:
            return OnboardingResult(
                success=False,
                errors=parsed.errors,
                warnings=parsed.warnings,
                error_code=ErrorCodes.CONFIG_SYNTAX_ERROR if parsed.syntax_error else ErrorCodes.CONFIG_INVALID,
            )

        config = parsed.config
        subdomain = config.business.id
        warnings = list(parsed.warnings)

        valid, error = validate_subdomain_format(subdomain)
        if not valid:
            return OnboardingResult(
                success=False,
                errors=[f"business.id: {error}"],
                warnings=warnings,
                error_code=ErrorCodes.CONFIG_INVALID,
            )

        try:
            email = _email_adapter.validate_python(owner_email.strip()).lower()
        except (ValidationError, AttributeError):
            return OnboardingResult(
                success=False,
                errors=[f"ownerEmail: invalid email address: {owner_email!r}"],
                warnings=warnings,
                error_code=ErrorCodes.INVALID_INPUT,
            )

        # Owner-resolution warnings only survive a committed transaction
        # Steps 2-4: one unit of work
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._check_subdomain(session, subdomain)
                    owner = await self._resolve_owner(session, email, owner_name, config, warnings)
                    business = await self._persist(session, config, owner.user, source_text, source_path)
        except ProvisioningConflict as e:
            return OnboardingResult(
                success=False, errors=[str(e)], warnings=parsed.warnings, error_code=ErrorCodes.CONFLICT
            )
        except IntegrityError as e:
            logger.warning(f"Integrity conflict onboarding {subdomain}: {e.orig}")
            return OnboardingResult(
                success=False,
                errors=[self._conflict_message(e, subdomain, email)],
                warnings=parsed.warnings,
                error_code=ErrorCodes.CONFLICT,
            )

        # Step 5: generated artifacts
        base_url = self.settings.base_url
        logger.info(
            f"Onboarded business {subdomain} ({business.id}) for owner {owner.user.id} "
            f"(existing={owner.is_existing})"
        )
        return OnboardingResult(
            success=True,
            business_id=str(business.id),
            owner_id=str(owner.user.id),
            subdomain=subdomain,
            temporary_credential=owner.temporary_credential,
            verification_token=owner.verification_token,
            verification_url=(
                verification_url(base_url, owner.verification_token) if owner.verification_token else None
            ),
            booking_page_url=booking_page_url(base_url, subdomain),
            is_existing_owner=owner.is_existing,
            warnings=warnings,
        )

    async def _check_subdomain(self, session: AsyncSession, subdomain: str) -> None:
        existing = await session.scalar(select(Business).where(Business.subdomain == subdomain))
        if existing is None:
            return
        if existing.status == BusinessStatus.SUSPENDED.value:
            raise ProvisioningConflict(
                f"Business '{subdomain}' exists but is suspended. Contact support to reactivate."
            )
        raise ProvisioningConflict(
            f"Subdomain already exists: '{subdomain}'. Choose a different subdomain."
        )

    def _issue_verification(self, user: User) -> str:
        token = generate_verification_token()
        user.email_verification_token_hash = hash_token(token)
        user.email_verification_expires_at = self._clock() + timedelta(
            hours=self.settings.verification_token_ttl_hours
        )
        return token

    async def _resolve_owner(
        self,
        session: AsyncSession,
        email: str,
        owner_name: str | None,
        config: TenantConfig,
        warnings: list[str],
    ) -> _ResolvedOwner:
        user = await session.scalar(select(User).where(User.email == email, User.deleted_at.is_(None)))

        if user is None:
            temporary_credential = generate_temporary_password()
            # bcrypt is CPU-bound; keep it off the event loop
            password_hash = await asyncio.to_thread(hash_password, temporary_credential)
            user = User(
                id=uuid.uuid4(),
                email=email,
                name=owner_name or f"{config.business.name} Owner",
                role=UserRole.OWNER.value,
                password_hash=password_hash,
                email_verified=False,
            )
            token = self._issue_verification(user)
            session.add(user)
            return _ResolvedOwner(
                user=user,
                is_existing=False,
                temporary_credential=temporary_credential,
                verification_token=token,
            )

        if user.role == UserRole.OWNER.value:
            warnings.append(
                f"Using existing owner account ({email}). New business will be associated with this owner."
            )
        elif user.role == UserRole.CUSTOMER.value:
            user.role = UserRole.OWNER.value
            warnings.append(f"Email {email} was registered as customer and has been upgraded to owner.")
        else:
            raise ProvisioningConflict(
                f"Email '{email}' is registered as {user.role}. Use a different email or contact support."
            )

        if owner_name and not user.name:
            user.name = owner_name

        # Credentials are left alone; an unverified account gets a fresh link
        token = None if user.email_verified else self._issue_verification(user)
        return _ResolvedOwner(user=user, is_existing=True, verification_token=token)

    async def _persist(
        self,
        session: AsyncSession,
        config: TenantConfig,
        owner: User,
        source_text: str,
        source_path: str | None,
    ) -> Business:
        business = Business(
            id=uuid.uuid4(),
            subdomain=config.business.id,
            name=config.business.name,
            timezone=config.business.timezone,
            status=BusinessStatus.ACTIVE.value,
            config_source=source_text,
            config_source_path=source_path,
            config_version=1,
        )
        session.add(business)
        # Business and user rows must exist before the link references them
        await session.flush()

        has_primary = await session.scalar(
            select(BusinessOwner.id).where(
                BusinessOwner.user_id == owner.id, BusinessOwner.is_primary.is_(True)
            )
        )
        session.add(
            BusinessOwner(
                user_id=owner.id,
                business_id=business.id,
                is_primary=has_primary is None,
            )
        )
        await session.flush()

        await sync_catalog(session, business.id, config)
        await replace_availability(session, business.id, config)
        return business

    @staticmethod
    def _conflict_message(error: IntegrityError, subdomain: str, email: str) -> str:
        detail = str(error.orig).lower()
        if "subdomain" in detail:
            return f"Subdomain already exists: '{subdomain}'. Choose a different subdomain."
        if "email" in detail:
            return f"Email address '{email}' conflicts with an existing account. Retry onboarding."
        return "Conflicting records already exist for this business; no records were created."
