"""
Tenant configuration package.

Modules:
    schema: Config document models and field-level rules
    validation: Two-pass validator (structural, then cross-field invariants)
    parser: YAML source parsing and serialization
    subdomain: Subdomain registration rules and host parsing
    catalog: Config <-> store record mapping and fallback synthesis
    loader: Cached tenant config resolution
    migration: Breaking-change detection between config versions
    activation: Re-activation of an updated config for an existing business
"""

from .schema import (
    GRAIN_MINUTES,
    SCHEMA_VERSION,
    DAYS_OF_WEEK,
    TenantConfig,
    DailyAvailability,
    ServiceConfig,
    CategoryConfig,
)
from .validation import ValidationResult, validate, check_invariants, collect_warnings
from .parser import ParseResult, parse_config, load_config_file, dump_config
from .subdomain import (
    RESERVED_SUBDOMAINS,
    validate_subdomain_format,
    generate_subdomain_suggestions,
    extract_subdomain,
)
from .migration import MigrationReport, check_migration
from .loader import ConfigCache, ConfigLoader, ConfigLoadResult
from .activation import ActivationResult, ConfigActivator

__all__ = [
    # Schema
    "GRAIN_MINUTES",
    "SCHEMA_VERSION",
    "DAYS_OF_WEEK",
    "TenantConfig",
    "DailyAvailability",
    "ServiceConfig",
    "CategoryConfig",
    # Validation
    "ValidationResult",
    "validate",
    "check_invariants",
    "collect_warnings",
    # Parsing
    "ParseResult",
    "parse_config",
    "load_config_file",
    "dump_config",
    # Subdomains
    "RESERVED_SUBDOMAINS",
    "validate_subdomain_format",
    "generate_subdomain_suggestions",
    "extract_subdomain",
    # Migration
    "MigrationReport",
    "check_migration",
    # Loading
    "ConfigCache",
    "ConfigLoader",
    "ConfigLoadResult",
    # Activation
    "ActivationResult",
    "ConfigActivator",
]
