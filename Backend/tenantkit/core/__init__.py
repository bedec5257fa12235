"""
Core module - configuration, database, errors, and response formatting.
"""
from .config import Settings, get_settings
from .db import Base, get_engine, get_session_factory
from .errors import (
    TenantConfigError,
    ConfigSyntaxError,
    ConfigSourceError,
    ProvisioningConflict,
)
from .responses import (
    ErrorCodes,
    HTTP_STATUS_BY_CODE,
    success_response,
    error_response,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "Base",
    "get_engine",
    "get_session_factory",
    # Errors
    "TenantConfigError",
    "ConfigSyntaxError",
    "ConfigSourceError",
    "ProvisioningConflict",
    # Responses
    "ErrorCodes",
    "HTTP_STATUS_BY_CODE",
    "success_response",
    "error_response",
]
