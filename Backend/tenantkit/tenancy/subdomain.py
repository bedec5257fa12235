"""
Subdomain rules for business registration.
"""

import re
import unicodedata
from typing import Optional

RESERVED_SUBDOMAINS = frozenset({
    "www",
    "app",
    "api",
    "admin",
    "dashboard",
    "book",
    "booking",
    "auth",
    "login",
    "signup",
    "register",
    "onboard",
    "debug",
    "test",
    "dev",
    "staging",
    "prod",
    "production",
    "help",
    "support",
    "status",
    "blog",
    "docs",
    "documentation",
})

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9-]+$")


def validate_subdomain_format(subdomain: str) -> tuple[bool, Optional[str]]:
    """
    Check a subdomain against the registration rules.

    Returns:
        (True, None) if usable, otherwise (False, reason)
    """
    if len(subdomain) < 3:
        return False, "Subdomain must be at least 3 characters"
    if len(subdomain) > 63:
        return False, "Subdomain cannot exceed 63 characters"
    if not SUBDOMAIN_PATTERN.match(subdomain):
        return False, "Subdomain can only contain lowercase letters, numbers, and hyphens"
    if subdomain.startswith("-") or subdomain.endswith("-"):
        return False, "Subdomain cannot start or end with a hyphen"
    if "--" in subdomain:
        return False, "Subdomain cannot contain consecutive hyphens"
    if subdomain in RESERVED_SUBDOMAINS:
        return False, f"Subdomain '{subdomain}' is reserved and cannot be used"
    return True, None


def slugify(name: str) -> str:
    """
    Generate a URL-safe slug from a business name.

    Examples:
        "Bella's Salon" -> "bella-s-salon"
        "Café Beauté" -> "cafe-beaute"
        "Hair & Nails!!!" -> "hair-nails"
    """
    normalized = unicodedata.normalize("NFKD", name)
    ascii_str = normalized.encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_str.lower())
    return slug.strip("-")[:63]


def generate_subdomain_suggestions(business_name: str, count: int = 3) -> list[str]:
    """Candidate subdomains for a business name, all passing the format rules."""
    base = slugify(business_name)
    suggestions = [base] + [f"{base}-{i}" for i in range(1, count)]

    words = business_name.lower().split()
    if len(words) >= 2:
        initials = slugify("".join(word[0] for word in words))
        if len(initials) >= 3:
            suggestions.append(initials)

    return [s for s in suggestions if validate_subdomain_format(s)[0]][:count]


def extract_subdomain(hostname: str) -> Optional[str]:
    """
    Pull the tenant subdomain out of a request hostname.

    "salon.example.app" -> "salon"; localhost and bare domains -> None.
    """
    host = hostname.split(":", 1)[0].lower()
    if host in ("localhost", "127.0.0.1") or host.endswith(".localhost"):
        return None
    parts = host.split(".")
    if len(parts) >= 3 and parts[0]:
        return parts[0]
    return None
