"""
Credential helpers for owner onboarding.

- Passwords: bcrypt via passlib
- Verification tokens: random URL-safe values, stored only as SHA-256 digests
"""

import hashlib
import hmac
import logging
import secrets
import string

from passlib.context import CryptContext

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)

TEMPORARY_PASSWORD_LENGTH = 16
TEMPORARY_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"


# ============================================================================
# PASSWORDS
# ============================================================================

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.error(f"Password verification error: {e}")
        return False


def generate_temporary_password(length: int = TEMPORARY_PASSWORD_LENGTH) -> str:
    """High-entropy one-time password, handed to the owner out of band."""
    return "".join(secrets.choice(TEMPORARY_PASSWORD_ALPHABET) for _ in range(length))


# ============================================================================
# VERIFICATION TOKENS
# ============================================================================

def generate_verification_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """Hash a token for storage; the plaintext is never persisted."""
    return hashlib.sha256(token.encode()).hexdigest()


def verify_token(token: str, stored_hash: str | None) -> bool:
    if not stored_hash:
        return False
    return hmac.compare_digest(hash_token(token), stored_hash)
