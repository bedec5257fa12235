"""
Tenant configuration parser.

Loads YAML config sources, runs the validator, and sorts the outcome into
blocking errors and non-blocking warnings. Malformed YAML is reported as a
single syntax error so callers can tell "fix your syntax" apart from
"fix your business rules".

Usage:
    from tenantkit.tenancy.parser import parse_config, load_config_file

    result = parse_config(yaml_text)
    if result.success:
        config = result.config
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Optional

import yaml

from ..core.errors import ConfigSourceError, ConfigSyntaxError
from .schema import TenantConfig
from .validation import validate

logger = logging.getLogger(__name__)

SYNTAX_ERROR_PREFIX = "YAML parsing error"


@dataclass
class ParseResult:
    success: bool
    config: Optional[TenantConfig] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    # True when the source could not be deserialized at all
    syntax_error: bool = False


# ────────────────────────────────────────────────────────────────
# YAML loading
# ────────────────────────────────────────────────────────────────

class ConfigSourceLoader(yaml.SafeLoader):
    """
    SafeLoader that keeps ``14:30``, ``2026-12-25``, ``+15551234567`` and
    ``02134`` as strings.

    YAML 1.1 would read them as a base-60 integer (870), a date object, an
    integer without its plus sign and an octal integer. Only plain decimal,
    hex and binary literals resolve to int.
    """


ConfigSourceLoader.yaml_implicit_resolvers = {
    first: [
        (tag, regexp)
        for tag, regexp in resolvers
        if tag not in ("tag:yaml.org,2002:int", "tag:yaml.org,2002:timestamp")
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

ConfigSourceLoader.add_implicit_resolver(
    "tag:yaml.org,2002:int",
    re.compile(
        r"""^(?:-?0b[0-1_]+
            |-?(?:0|[1-9][0-9_]*)
            |-?0x[0-9a-fA-F_]+)$""",
        re.X,
    ),
    list("-0123456789"),
)


def load_document(source_text: str):
    """Deserialize YAML text; raises ConfigSyntaxError on malformed input."""
    try:
        return yaml.load(source_text, Loader=ConfigSourceLoader)
    except yaml.YAMLError as exc:
        raise ConfigSyntaxError(f"{SYNTAX_ERROR_PREFIX}: {exc}") from exc


def read_source(path: str | Path) -> str:
    """Read a config file; raises ConfigSourceError for any I/O failure."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigSourceError(f"Config file not found: {path}") from exc
    except PermissionError as exc:
        raise ConfigSourceError(f"Permission denied reading config file: {path}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigSourceError(f"Failed to read config file {path}: {exc}") from exc


# ────────────────────────────────────────────────────────────────
# Public contracts
# ────────────────────────────────────────────────────────────────

def parse_config(
    source_text: str,
    *,
    today: Optional[date] = None,
    reject_past_exceptions: bool = True,
) -> ParseResult:
    """
    Parse and validate a YAML config source.

    Never raises: syntax errors, schema errors and unexpected failures all
    come back as ``ParseResult(success=False, errors=[...])``.
    """
    try:
        raw = load_document(source_text)
    except ConfigSyntaxError as exc:
        return ParseResult(success=False, errors=[str(exc)], syntax_error=True)

    if not isinstance(raw, dict):
        return ParseResult(
            success=False,
            errors=[f"{SYNTAX_ERROR_PREFIX}: root must be a mapping"],
            syntax_error=True,
        )

    try:
        result = validate(raw, today=today, reject_past_exceptions=reject_past_exceptions)
    except Exception as exc:
        logger.exception("Unexpected error validating tenant config")
        return ParseResult(success=False, errors=[f"Unexpected error: {exc}"])

    if not result.valid:
        return ParseResult(success=False, errors=result.errors, warnings=result.warnings)

    return ParseResult(success=True, config=result.config, warnings=result.warnings)


def load_config_file(
    path: str | Path,
    *,
    today: Optional[date] = None,
    reject_past_exceptions: bool = True,
) -> ParseResult:
    """Read a config file and parse it. I/O failures are returned as parse errors."""
    try:
        source_text = read_source(path)
    except ConfigSourceError as exc:
        logger.warning(str(exc))
        return ParseResult(success=False, errors=[str(exc)])
    return parse_config(source_text, today=today, reject_past_exceptions=reject_past_exceptions)


def dump_config(config: TenantConfig) -> str:
    """Serialize a validated config back to YAML source (camelCase keys)."""
    return yaml.safe_dump(
        config.to_document(),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
