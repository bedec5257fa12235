"""
HTTP surface for tenant configuration.

Thin wrappers over the loader, parser, migration checker, provisioner and
activator. Every response uses the standard envelope from core.responses.

Endpoints:
    GET  /config/tenant                          resolve from the Host header
    GET  /config/tenant/{subdomain}              resolve by subdomain
    GET  /config/business/{business_id}          resolve by business id
    POST /config/validate                        parse + validate, no side effects
    POST /config/migration-check                 compare two sources
    POST /onboard                                provision a new business
    POST /config/business/{business_id}/activate apply an updated config
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.db import get_session_factory
from .core.responses import HTTP_STATUS_BY_CODE, ErrorCodes, error_response, success_response
from .onboarding import OnboardingProvisioner
from .tenancy.activation import ConfigActivator
from .tenancy.loader import ConfigLoader, ConfigLoadResult
from .tenancy.migration import check_migration
from .tenancy.parser import ParseResult, parse_config
from .tenancy.subdomain import extract_subdomain

logger = logging.getLogger(__name__)

router = APIRouter()


# === Dependencies ===

@lru_cache
def get_config_loader() -> ConfigLoader:
    """One loader per process so every request shares the config cache."""
    return ConfigLoader(get_session_factory())


def get_provisioner(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> OnboardingProvisioner:
    return OnboardingProvisioner(session_factory)


def get_activator(
    loader: ConfigLoader = Depends(get_config_loader),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ConfigActivator:
    return ConfigActivator(loader, session_factory)


# === Request Models ===

class SourceRequest(BaseModel):
    source: str = Field(..., min_length=1, description="YAML config source")


class MigrationCheckRequest(BaseModel):
    old_source: str = Field(..., min_length=1)
    new_source: str = Field(..., min_length=1)


class OnboardRequest(BaseModel):
    source: str = Field(..., min_length=1)
    owner_email: str = Field(..., min_length=3, max_length=320)
    owner_name: Optional[str] = Field(None, max_length=255)


class ActivateRequest(BaseModel):
    source: str = Field(..., min_length=1)
    force: bool = False


# === Helpers ===

def _error(code: str, message: str, details: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=HTTP_STATUS_BY_CODE.get(code, 500),
        content=error_response(code, message, details),
    )


def _parse_error(parsed: ParseResult) -> JSONResponse:
    code = ErrorCodes.CONFIG_SYNTAX_ERROR if parsed.syntax_error else ErrorCodes.CONFIG_INVALID
    message = "Config source is not valid YAML" if parsed.syntax_error else "Config failed validation"
    return _error(code, message, {"errors": parsed.errors, "warnings": parsed.warnings})


def _load_response(result: ConfigLoadResult) -> JSONResponse:
    if not result.success:
        return _error(result.error_code or ErrorCodes.INTERNAL_ERROR, result.error or "Config unavailable")
    return JSONResponse(
        content=success_response({
            "subdomain": result.subdomain,
            "businessId": result.business_id,
            "source": result.source,
            "warnings": result.warnings,
            "config": result.config.to_document(),
        })
    )


# === Read path ===

@router.get("/config/tenant")
async def get_tenant_config_for_host(
    request: Request,
    loader: ConfigLoader = Depends(get_config_loader),
):
    """Resolve the tenant from the request Host (``salon.example.app`` -> ``salon``)."""
    subdomain = extract_subdomain(request.headers.get("host", ""))
    if subdomain is None:
        return _error(ErrorCodes.INVALID_INPUT, "Host does not carry a tenant subdomain")
    return _load_response(await loader.resolve_by_subdomain(subdomain))


@router.get("/config/tenant/{subdomain}")
async def get_tenant_config(subdomain: str, loader: ConfigLoader = Depends(get_config_loader)):
    return _load_response(await loader.resolve_by_subdomain(subdomain))


@router.get("/config/business/{business_id}")
async def get_business_config(business_id: str, loader: ConfigLoader = Depends(get_config_loader)):
    return _load_response(await loader.resolve_by_business_id(business_id))


# === Authoring ===

@router.post("/config/validate")
async def validate_config(body: SourceRequest):
    parsed = parse_config(body.source)
    if not parsed.success:
        return _parse_error(parsed)
    return JSONResponse(
        content=success_response({
            "valid": True,
            "warnings": parsed.warnings,
            "config": parsed.config.to_document(),
        })
    )


@router.post("/config/migration-check")
async def migration_check(body: MigrationCheckRequest):
    """
    Report breaking changes between two config sources.

    The old source is parsed without the past-exception rule: a config that
    was valid when activated stays comparable after its holidays pass.
    """
    old = parse_config(body.old_source, reject_past_exceptions=False)
    if not old.success:
        return _parse_error(old)
    new = parse_config(body.new_source)
    if not new.success:
        return _parse_error(new)

    report = check_migration(old.config, new.config)
    return JSONResponse(
        content=success_response({"safe": report.safe, "breakingChanges": report.breaking_changes})
    )


# === Write path ===

@router.post("/onboard")
async def onboard_business(
    body: OnboardRequest,
    provisioner: OnboardingProvisioner = Depends(get_provisioner),
):
    """
    Provision a business, its owner and its catalog from a config source.

    Error Codes:
    - 422: Syntax or validation errors in the source, bad owner email
    - 409: Subdomain taken (or suspended), email registered under another role
    - 503: Store timeout, safe to retry
    """
    result = await provisioner.onboard(body.source, body.owner_email, body.owner_name)
    if not result.success:
        return _error(
            result.error_code or ErrorCodes.INTERNAL_ERROR,
            result.errors[0] if result.errors else "Onboarding failed",
            {"errors": result.errors, "warnings": result.warnings},
        )

    return JSONResponse(
        status_code=201,
        content=success_response({
            "businessId": result.business_id,
            "ownerId": result.owner_id,
            "subdomain": result.subdomain,
            "temporaryPassword": result.temporary_credential,
            "verificationUrl": result.verification_url,
            "bookingPageUrl": result.booking_page_url,
            "isExistingOwner": result.is_existing_owner,
            "warnings": result.warnings,
        }),
    )


@router.post("/config/business/{business_id}/activate")
async def activate_config(
    business_id: str,
    body: ActivateRequest,
    activator: ConfigActivator = Depends(get_activator),
):
    result = await activator.activate(business_id, body.source, force=body.force)
    if not result.success:
        return _error(
            result.error_code or ErrorCodes.INTERNAL_ERROR,
            result.errors[0] if result.errors else "Activation failed",
            {
                "errors": result.errors,
                "warnings": result.warnings,
                "breakingChanges": result.breaking_changes,
            },
        )

    return JSONResponse(
        content=success_response({
            "businessId": result.business_id,
            "configVersion": result.config_version,
            "breakingChanges": result.breaking_changes,
            "warnings": result.warnings,
        })
    )
