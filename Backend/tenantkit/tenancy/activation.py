"""
Re-activation of an updated tenant config.

The new source is parsed, compared against the config currently served for
the business, and refused when it carries breaking changes unless forced.
An accepted update rewrites the catalog and calendar under the same
business id, stores the new source and bumps ``config_version`` in one
transaction, then drops the cached config.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.errors import ProvisioningConflict
from ..core.responses import ErrorCodes
from ..models import Business
from .catalog import replace_availability, sync_catalog
from .loader import ConfigLoader
from .migration import check_migration
from .parser import parse_config

logger = logging.getLogger(__name__)


@dataclass
class ActivationResult:
    success: bool
    business_id: Optional[str] = None
    config_version: Optional[int] = None
    breaking_changes: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    retryable: bool = False
    # One of ErrorCodes when success is False
    error_code: Optional[str] = None


class ConfigActivator:
    def __init__(
        self,
        loader: ConfigLoader,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.loader = loader
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._today = today

    async def activate(self, business_id: str, source_text: str, force: bool = False) -> ActivationResult:
        try:
            return await asyncio.wait_for(
                self._activate(business_id, source_text, force),
                timeout=self.settings.store_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Store timeout activating config for business {business_id}")
            return ActivationResult(
                success=False,
                business_id=business_id,
                errors=[f"Store timeout after {self.settings.store_timeout_seconds}s; config was not changed"],
                retryable=True,
                error_code=ErrorCodes.STORE_TIMEOUT,
            )
        except Exception as e:
            logger.exception(f"Unexpected error activating config for business {business_id}")
            return ActivationResult(
                success=False,
                business_id=business_id,
                errors=[f"Activation failed: {e}"],
                error_code=ErrorCodes.INTERNAL_ERROR,
            )

    async def _activate(self, business_id: str, source_text: str, force: bool) -> ActivationResult:
        parsed = parse_config(source_text, today=self._today())
        if not parsed.success:
            return ActivationResult(
                success=False,
                business_id=business_id,
                errors=parsed.errors,
                warnings=parsed.warnings,
                error_code=ErrorCodes.CONFIG_SYNTAX_ERROR if parsed.syntax_error else ErrorCodes.CONFIG_INVALID,
            )
        new_config = parsed.config
        warnings = list(parsed.warnings)

        current = await self.loader.resolve_by_business_id(business_id)
        if not current.success:
            return ActivationResult(
                success=False,
                business_id=business_id,
                errors=[current.error or "Current configuration could not be loaded"],
                warnings=warnings,
                retryable=current.retryable,
                error_code=current.error_code,
            )

        # Routing is keyed on the subdomain; it cannot move even when forced
        if new_config.business.id != current.subdomain:
            return ActivationResult(
                success=False,
                business_id=business_id,
                errors=[
                    f"business.id cannot change from '{current.subdomain}' to "
                    f"'{new_config.business.id}' on an existing business"
                ],
                warnings=warnings,
                error_code=ErrorCodes.BREAKING_CHANGE,
            )

        report = check_migration(current.config, new_config)
        if not report.safe:
            if not force:
                return ActivationResult(
                    success=False,
                    business_id=business_id,
                    breaking_changes=report.breaking_changes,
                    errors=["Configuration contains breaking changes; re-submit with force to apply"],
                    warnings=warnings,
                    error_code=ErrorCodes.BREAKING_CHANGE,
                )
            logger.warning(
                f"Forcing config activation for {current.subdomain} despite breaking changes: "
                f"{report.breaking_changes}"
            )

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    business = await session.scalar(
                        select(Business).where(Business.id == uuid.UUID(current.business_id))
                    )
                    if business is None or not business.is_servable():
                        raise ProvisioningConflict(f"No active business found for ID: {business_id}")

                    await sync_catalog(session, business.id, new_config)
                    await replace_availability(session, business.id, new_config)
                    business.name = new_config.business.name
                    business.timezone = new_config.business.timezone
                    business.config_source = source_text
                    business.config_version += 1
                    version = business.config_version
        except ProvisioningConflict as e:
            return ActivationResult(
                success=False,
                business_id=business_id,
                errors=[str(e)],
                warnings=warnings,
                error_code=ErrorCodes.NOT_FOUND,
            )

        self.loader.cache.invalidate(subdomain=current.subdomain, business_id=current.business_id)
        logger.info(f"Activated config version {version} for {current.subdomain}")
        return ActivationResult(
            success=True,
            business_id=current.business_id,
            config_version=version,
            breaking_changes=report.breaking_changes,
            warnings=warnings,
        )
