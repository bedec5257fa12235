"""
Tests for business onboarding.

Run with: pytest Backend/tests/test_onboarding.py -v
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from tenantkit.core.responses import ErrorCodes
from tenantkit.models import (
    Availability,
    Business,
    BusinessOwner,
    BusinessStatus,
    Category,
    Service,
    User,
    UserRole,
)
from tenantkit.onboarding import OnboardingProvisioner
from tenantkit.security import hash_token, verify_password, verify_token

OWNER_EMAIL = "owner@bella-salon.com"


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _user(session_factory, email=OWNER_EMAIL) -> User:
    async with session_factory() as session:
        return await session.scalar(select(User).where(User.email == email))


async def _add_user(session_factory, email, role, verified=True):
    async with session_factory() as session:
        async with session.begin():
            session.add(User(email=email, name="Existing", role=role, email_verified=verified))


def _second_business(config_doc, to_yaml, subdomain="bella-west"):
    config_doc["business"]["id"] = subdomain
    config_doc["business"]["name"] = "Bella West"
    return to_yaml(config_doc)


# ============================================================================
# NEW OWNER
# ============================================================================

class TestNewOwner:
    @pytest.mark.asyncio
    async def test_creates_everything(self, provisioner, session_factory, config_yaml):
        result = await provisioner.onboard(config_yaml, OWNER_EMAIL, "Bella Owner")

        assert result.success, result.errors
        assert result.subdomain == "bella-salon"
        assert result.is_existing_owner is False
        assert result.booking_page_url == "https://book.example.com/book/bella-salon"
        assert result.verification_url == (
            f"https://book.example.com/auth/verify-email?token={result.verification_token}"
        )
        assert result.warnings == []

        async with session_factory() as session:
            business = await session.scalar(select(Business).where(Business.subdomain == "bella-salon"))
            assert str(business.id) == result.business_id
            assert business.status == BusinessStatus.ACTIVE.value
            assert business.config_version == 1
            assert business.config_source == config_yaml

            link = await session.scalar(select(BusinessOwner).where(BusinessOwner.business_id == business.id))
            assert str(link.user_id) == result.owner_id
            assert link.is_primary is True

            services = (await session.scalars(select(Service).where(Service.business_id == business.id))).all()
            by_id = {s.external_id: s for s in services}
            assert set(by_id) == {"haircut", "color", "manicure"}
            assert by_id["haircut"].max_simultaneous_bookings == 3
            assert by_id["color"].max_simultaneous_bookings == 1
            assert by_id["color"].buffer_after_minutes == 15

        assert await _count(session_factory, Category) == 2
        # Seven weekdays plus one exception date
        assert await _count(session_factory, Availability) == 8

    @pytest.mark.asyncio
    async def test_credentials_are_hashed(self, provisioner, session_factory, config_yaml):
        result = await provisioner.onboard(config_yaml, OWNER_EMAIL)

        user = await _user(session_factory)
        assert user.role == UserRole.OWNER.value
        assert user.email_verified is False
        assert len(result.temporary_credential) == 16
        assert user.password_hash != result.temporary_credential
        assert verify_password(result.temporary_credential, user.password_hash)
        assert user.email_verification_token_hash == hash_token(result.verification_token)
        assert verify_token(result.verification_token, user.email_verification_token_hash)

    @pytest.mark.asyncio
    async def test_verification_token_expires_in_24_hours(self, session_factory, settings, today, config_yaml):
        now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
        provisioner = OnboardingProvisioner(session_factory, settings=settings, clock=lambda: now, today=lambda: today)

        await provisioner.onboard(config_yaml, OWNER_EMAIL)

        user = await _user(session_factory)
        expires = user.email_verification_expires_at.replace(tzinfo=None)
        assert expires == (now + timedelta(hours=24)).replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_default_owner_name(self, provisioner, session_factory, config_yaml):
        await provisioner.onboard(config_yaml, OWNER_EMAIL)

        user = await _user(session_factory)
        assert user.name == "Bella Salon Owner"

    @pytest.mark.asyncio
    async def test_email_is_normalized(self, provisioner, session_factory, config_yaml):
        result = await provisioner.onboard(config_yaml, "  Owner@Bella-Salon.com ")

        assert result.success
        assert await _user(session_factory) is not None

    @pytest.mark.asyncio
    async def test_password_hashing_runs_off_event_loop(self, provisioner, config_yaml, monkeypatch):
        import tenantkit.onboarding as onboarding

        loop_thread = threading.get_ident()
        hashing_threads = []
        real_hash = onboarding.hash_password

        def recording_hash(password):
            hashing_threads.append(threading.get_ident())
            return real_hash(password)

        monkeypatch.setattr(onboarding, "hash_password", recording_hash)
        result = await provisioner.onboard(config_yaml, OWNER_EMAIL)

        assert result.success, result.errors
        assert len(hashing_threads) == 1
        assert hashing_threads[0] != loop_thread

    @pytest.mark.asyncio
    async def test_secrets_never_logged(self, provisioner, config_yaml, caplog):
        with caplog.at_level(logging.DEBUG):
            result = await provisioner.onboard(config_yaml, OWNER_EMAIL)

        assert result.temporary_credential not in caplog.text
        assert result.verification_token not in caplog.text


# ============================================================================
# EXISTING ACCOUNTS
# ============================================================================

class TestExistingAccounts:
    @pytest.mark.asyncio
    async def test_existing_owner_gets_secondary_business(
        self, provisioner, session_factory, config_yaml, config_doc, to_yaml
    ):
        first = await provisioner.onboard(config_yaml, OWNER_EMAIL)

        second = await provisioner.onboard(_second_business(config_doc, to_yaml), OWNER_EMAIL)

        assert second.success, second.errors
        assert second.is_existing_owner is True
        assert second.owner_id == first.owner_id
        assert second.temporary_credential is None
        assert any("Using existing owner account" in w for w in second.warnings)

        async with session_factory() as session:
            links = (
                await session.scalars(select(BusinessOwner).order_by(BusinessOwner.created_at))
            ).all()
        primaries = {str(link.business_id): link.is_primary for link in links}
        assert primaries == {first.business_id: True, second.business_id: False}

    @pytest.mark.asyncio
    async def test_existing_owner_credentials_untouched(
        self, provisioner, session_factory, config_yaml, config_doc, to_yaml
    ):
        first = await provisioner.onboard(config_yaml, OWNER_EMAIL)
        before = await _user(session_factory)

        await provisioner.onboard(_second_business(config_doc, to_yaml), OWNER_EMAIL)

        after = await _user(session_factory)
        assert after.password_hash == before.password_hash
        assert verify_password(first.temporary_credential, after.password_hash)

    @pytest.mark.asyncio
    async def test_unverified_owner_gets_fresh_link(
        self, provisioner, session_factory, config_yaml, config_doc, to_yaml
    ):
        await provisioner.onboard(config_yaml, OWNER_EMAIL)

        second = await provisioner.onboard(_second_business(config_doc, to_yaml), OWNER_EMAIL)

        assert second.verification_url is not None
        user = await _user(session_factory)
        assert user.email_verification_token_hash == hash_token(second.verification_token)

    @pytest.mark.asyncio
    async def test_verified_owner_gets_no_verification_url(self, provisioner, session_factory, config_yaml):
        await _add_user(session_factory, OWNER_EMAIL, UserRole.OWNER.value, verified=True)

        result = await provisioner.onboard(config_yaml, OWNER_EMAIL)

        assert result.success
        assert result.is_existing_owner is True
        assert result.verification_url is None
        assert result.verification_token is None

    @pytest.mark.asyncio
    async def test_customer_upgraded_with_one_warning(self, provisioner, session_factory, config_yaml):
        await _add_user(session_factory, OWNER_EMAIL, UserRole.CUSTOMER.value)

        result = await provisioner.onboard(config_yaml, OWNER_EMAIL)

        assert result.success, result.errors
        assert result.is_existing_owner is True
        assert len(result.warnings) == 1
        assert "upgraded to owner" in result.warnings[0]
        user = await _user(session_factory)
        assert user.role == UserRole.OWNER.value

    @pytest.mark.asyncio
    async def test_other_role_is_conflict(self, provisioner, session_factory, config_yaml):
        await _add_user(session_factory, OWNER_EMAIL, UserRole.STAFF.value)

        result = await provisioner.onboard(config_yaml, OWNER_EMAIL)

        assert not result.success
        assert result.error_code == ErrorCodes.CONFLICT
        assert result.errors == [
            f"Email '{OWNER_EMAIL}' is registered as staff. Use a different email or contact support."
        ]
        assert await _count(session_factory, Business) == 0


# ============================================================================
# CONFLICTS AND ATOMICITY
# ============================================================================

class TestConflicts:
    @pytest.mark.asyncio
    async def test_same_subdomain_twice(self, provisioner, session_factory, config_yaml):
        first = await provisioner.onboard(config_yaml, OWNER_EMAIL)
        second = await provisioner.onboard(config_yaml, "someone-else@example.com")

        assert first.success
        assert not second.success
        assert second.error_code == ErrorCodes.CONFLICT
        assert "Subdomain already exists" in second.errors[0]
        assert await _count(session_factory, Business) == 1
        assert await _user(session_factory, "someone-else@example.com") is None

    @pytest.mark.asyncio
    async def test_suspended_subdomain_has_distinct_message(self, provisioner, session_factory, config_yaml):
        await provisioner.onboard(config_yaml, OWNER_EMAIL)
        async with session_factory() as session:
            async with session.begin():
                business = await session.scalar(select(Business))
                business.status = BusinessStatus.SUSPENDED.value

        result = await provisioner.onboard(config_yaml, "new-owner@example.com")

        assert not result.success
        assert "suspended" in result.errors[0]

    @pytest.mark.asyncio
    async def test_race_on_subdomain_maps_integrity_error(
        self, provisioner, session_factory, config_yaml, monkeypatch
    ):
        """Two writers that both passed the pre-check: the store's unique key decides."""
        await provisioner.onboard(config_yaml, OWNER_EMAIL)

        async def skip_check(session, subdomain):
            return None

        monkeypatch.setattr(provisioner, "_check_subdomain", skip_check)
        result = await provisioner.onboard(config_yaml, "late@example.com")

        assert not result.success
        assert result.error_code == ErrorCodes.CONFLICT
        assert result.errors[0].startswith("Subdomain already exists")
        assert await _count(session_factory, Business) == 1
        assert await _user(session_factory, "late@example.com") is None

    @pytest.mark.asyncio
    async def test_failure_mid_write_leaves_nothing(self, provisioner, session_factory, config_yaml, monkeypatch):
        import tenantkit.onboarding as onboarding

        async def broken_availability(session, business_id, config):
            raise RuntimeError("disk full")

        monkeypatch.setattr(onboarding, "replace_availability", broken_availability)
        failed = await provisioner.onboard(config_yaml, OWNER_EMAIL)

        assert not failed.success
        assert failed.errors == ["Onboarding failed: disk full"]
        for model in (Business, User, BusinessOwner, Category, Service, Availability):
            assert await _count(session_factory, model) == 0

        # Retrying with the same subdomain needs no cleanup
        monkeypatch.undo()
        retried = await provisioner.onboard(config_yaml, OWNER_EMAIL)
        assert retried.success, retried.errors


# ============================================================================
# INPUT ERRORS
# ============================================================================

class TestInputErrors:
    @pytest.mark.asyncio
    async def test_invalid_config_has_no_side_effects(self, provisioner, session_factory, config_doc, to_yaml):
        config_doc["categories"][0]["services"][0].update(
            {"price": 1000, "requiresDeposit": True, "depositAmount": 1500}
        )

        result = await provisioner.onboard(to_yaml(config_doc), OWNER_EMAIL)

        assert not result.success
        assert result.error_code == ErrorCodes.CONFIG_INVALID
        assert await _count(session_factory, Business) == 0
        assert await _count(session_factory, User) == 0

    @pytest.mark.asyncio
    async def test_syntax_error(self, provisioner):
        result = await provisioner.onboard("business: [oops", OWNER_EMAIL)

        assert not result.success
        assert result.error_code == ErrorCodes.CONFIG_SYNTAX_ERROR

    @pytest.mark.asyncio
    async def test_reserved_subdomain_rejected(self, provisioner, session_factory, config_doc, to_yaml):
        config_doc["business"]["id"] = "admin"

        result = await provisioner.onboard(to_yaml(config_doc), OWNER_EMAIL)

        assert not result.success
        assert result.errors == ["business.id: Subdomain 'admin' is reserved and cannot be used"]
        assert await _count(session_factory, Business) == 0

    @pytest.mark.asyncio
    async def test_invalid_owner_email(self, provisioner, config_yaml):
        result = await provisioner.onboard(config_yaml, "not-an-email")

        assert not result.success
        assert result.error_code == ErrorCodes.INVALID_INPUT


# ============================================================================
# FILE SOURCE AND TIMEOUTS
# ============================================================================

class TestOnboardFromFile:
    @pytest.mark.asyncio
    async def test_records_source_path(self, provisioner, session_factory, config_yaml, tmp_path):
        path = tmp_path / "bella.yaml"
        path.write_text(config_yaml, encoding="utf-8")

        result = await provisioner.onboard_from_file(path, OWNER_EMAIL)

        assert result.success
        async with session_factory() as session:
            business = await session.scalar(select(Business))
        assert business.config_source_path == str(path)
        assert business.config_source == config_yaml

    @pytest.mark.asyncio
    async def test_missing_file(self, provisioner, tmp_path):
        result = await provisioner.onboard_from_file(tmp_path / "missing.yaml", OWNER_EMAIL)

        assert not result.success
        assert result.errors[0].startswith("Config file not found")


class _SlowSession:
    async def __aenter__(self):
        await asyncio.sleep(1)

    async def __aexit__(self, *exc):
        return False


@pytest.mark.asyncio
async def test_store_timeout_is_retryable(settings, today, config_yaml):
    slow = settings.model_copy(update={"store_timeout_seconds": 0.05})
    provisioner = OnboardingProvisioner(lambda: _SlowSession(), settings=slow, today=lambda: today)

    result = await provisioner.onboard(config_yaml, OWNER_EMAIL)

    assert not result.success
    assert result.retryable
    assert result.errors[0].startswith("Store timeout")
