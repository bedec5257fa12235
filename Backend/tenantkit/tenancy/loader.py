"""
Tenant config loader and cache.

Resolves a subdomain or business id to a validated TenantConfig:

1. In-process cache (TTL, default 5 minutes)
2. The business's authoritative source: inline text, then the file path
   (a source that fails to parse falls through to the next)
3. A fallback synthesized from the normalized store records

Usage:
    loader = ConfigLoader(get_session_factory())
    result = await loader.resolve_by_subdomain("bella-salon")
    if result.success:
        config = result.config

    # After the authoritative source changes:
    loader.cache.invalidate(subdomain="bella-salon")
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.responses import ErrorCodes
from ..models import Business, BusinessStatus
from .catalog import build_fallback_document
from .parser import ParseResult, load_config_file, parse_config
from .schema import TenantConfig
from .validation import validate

logger = logging.getLogger(__name__)

FALLBACK_WARNING = "Configuration built from stored records (no valid authoritative source)"


@dataclass
class ConfigLoadResult:
    success: bool
    config: Optional[TenantConfig] = None
    error: Optional[str] = None
    subdomain: Optional[str] = None
    business_id: Optional[str] = None
    # "cache", "inline", "file" or "fallback"
    source: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    retryable: bool = False
    # One of ErrorCodes when success is False
    error_code: Optional[str] = None


# ────────────────────────────────────────────────────────────────
# Cache
# ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CacheEntry:
    config: TenantConfig
    stored_at: float
    subdomain: str
    business_id: str
    source: str
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class Generation:
    """Invalidation state of one key, taken before a load starts."""

    key: str
    epoch: int
    value: int


def subdomain_key(subdomain: str) -> str:
    return f"subdomain:{subdomain}"


def business_key(business_id: str) -> str:
    return f"business:{business_id}"


class ConfigCache:
    """
    Process-wide config cache with an injected clock.

    Entries are immutable and replaced whole, so a reader never sees a
    half-written entry. Loads are serialized per key (``locked``); there
    is no global lock across tenants, and a key's lock is dropped once no
    task holds or waits for it. Expiry is checked on read, and the loader
    calls ``maybe_sweep`` on every resolve so expired entries do not pile up.

    A load snapshots ``generation(key)`` before reading the store and hands
    it to ``put``. If the key was invalidated meanwhile the result is not
    cached, so a load that read the old source cannot outlive an
    invalidation.
    """

    DEFAULT_TTL_SECONDS = 300

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else self.DEFAULT_TTL_SECONDS
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self.last_sweep = clock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.stored_at < self.ttl_seconds

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry):
            # Only drop it if nobody replaced it meanwhile
            if self._entries.get(key) is entry:
                self._entries.pop(key, None)
            return None
        return entry

    def generation(self, key: str) -> Generation:
        return Generation(key=key, epoch=self._epoch, value=self._generations.get(key, 0))

    def _is_current(self, generation: Generation) -> bool:
        return generation == self.generation(generation.key)

    def put(
        self,
        config: TenantConfig,
        *,
        subdomain: str,
        business_id: str,
        source: str,
        warnings: list[str] | tuple[str, ...] = (),
        generation: Generation | None = None,
    ) -> Optional[CacheEntry]:
        """
        Store one entry under both the subdomain and the business id.

        Returns None without storing when ``generation`` is stale.
        """
        if generation is not None and not self._is_current(generation):
            logger.debug(f"Skipping cache write for {generation.key}: invalidated during load")
            return None
        entry = CacheEntry(
            config=config,
            stored_at=self._clock(),
            subdomain=subdomain,
            business_id=business_id,
            source=source,
            warnings=tuple(warnings),
        )
        self._entries[subdomain_key(subdomain)] = entry
        self._entries[business_key(business_id)] = entry
        return entry

    def invalidate(self, subdomain: str | None = None, business_id: str | None = None) -> None:
        """Drop the entry for a tenant (both keys), or everything when called bare."""
        if subdomain is None and business_id is None:
            self._entries.clear()
            self._generations.clear()
            self._epoch += 1
            return

        keys = []
        if subdomain is not None:
            keys.append(subdomain_key(subdomain))
        if business_id is not None:
            keys.append(business_key(business_id))

        for key in list(keys):
            entry = self._entries.pop(key, None)
            if entry is not None:
                keys.extend([subdomain_key(entry.subdomain), business_key(entry.business_id)])
        for key in set(keys):
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1

    def sweep(self) -> int:
        """Remove expired entries. Returns the number of keys removed."""
        expired = [key for key, entry in list(self._entries.items()) if not self._is_fresh(entry)]
        for key in expired:
            self._entries.pop(key, None)
        # Generations only matter to loads still in flight
        for key in [key for key in self._generations if key not in self._lock_users]:
            del self._generations[key]
        self.last_sweep = self._clock()
        if expired:
            logger.debug(f"Config cache sweep removed {len(expired)} keys, {len(self._entries)} remain")
        return len(expired)

    def maybe_sweep(self) -> None:
        """Sweep at most once per TTL period; called on the resolve path."""
        if self._clock() - self.last_sweep < self.ttl_seconds:
            return
        self.sweep()

    @asynccontextmanager
    async def locked(self, key: str):
        """Hold the per-key load lock."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._locks.pop(key, None)


# ────────────────────────────────────────────────────────────────
# Loader
# ────────────────────────────────────────────────────────────────

class ConfigLoader:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: ConfigCache | None = None,
        settings: Settings | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        if cache is None:
            cache = ConfigCache(ttl_seconds=self.settings.config_cache_ttl_seconds)
        self.cache = cache
        self._today = today

    async def resolve(self, tenant_key: str) -> ConfigLoadResult:
        """Resolve a tenant key that is either a business id (UUID) or a subdomain."""
        try:
            uuid.UUID(tenant_key)
        except (ValueError, TypeError):
            return await self.resolve_by_subdomain(tenant_key)
        return await self.resolve_by_business_id(tenant_key)

    async def resolve_by_subdomain(self, subdomain: str) -> ConfigLoadResult:
        async def lookup(session: AsyncSession) -> Optional[Business]:
            return await session.scalar(
                select(Business).where(
                    Business.subdomain == subdomain,
                    Business.deleted_at.is_(None),
                    Business.status == BusinessStatus.ACTIVE.value,
                )
            )

        return await self._resolve(
            subdomain_key(subdomain), lookup, f"No active business found for subdomain: {subdomain}"
        )

    async def resolve_by_business_id(self, business_id: str) -> ConfigLoadResult:
        not_found = f"No active business found for ID: {business_id}"
        try:
            business_uuid = uuid.UUID(str(business_id))
        except ValueError:
            return ConfigLoadResult(success=False, error=not_found, error_code=ErrorCodes.NOT_FOUND)

        async def lookup(session: AsyncSession) -> Optional[Business]:
            return await session.scalar(
                select(Business).where(
                    Business.id == business_uuid,
                    Business.deleted_at.is_(None),
                    Business.status == BusinessStatus.ACTIVE.value,
                )
            )

        return await self._resolve(business_key(str(business_uuid)), lookup, not_found)

    # ────────────────────────────────────────────────────────────

    def _from_cache(self, key: str) -> Optional[ConfigLoadResult]:
        entry = self.cache.get(key)
        if entry is None:
            return None
        return ConfigLoadResult(
            success=True,
            config=entry.config,
            subdomain=entry.subdomain,
            business_id=entry.business_id,
            source="cache",
            warnings=list(entry.warnings),
        )

    async def _resolve(
        self,
        key: str,
        lookup: Callable[[AsyncSession], Awaitable[Optional[Business]]],
        not_found: str,
    ) -> ConfigLoadResult:
        self.cache.maybe_sweep()
        cached = self._from_cache(key)
        if cached:
            return cached

        try:
            async with self.cache.locked(key):
                # Another task may have filled it while we waited
                cached = self._from_cache(key)
                if cached:
                    return cached
                generation = self.cache.generation(key)
                return await asyncio.wait_for(
                    self._load(lookup, not_found, generation), timeout=self.settings.store_timeout_seconds
                )
        except asyncio.TimeoutError:
            logger.warning(f"Store timeout resolving tenant config for {key}")
            return ConfigLoadResult(
                success=False,
                error=f"Store timeout after {self.settings.store_timeout_seconds}s loading configuration",
                retryable=True,
                error_code=ErrorCodes.STORE_TIMEOUT,
            )
        except Exception as e:
            logger.exception(f"Error loading tenant config for {key}")
            return ConfigLoadResult(
                success=False, error=str(e) or type(e).__name__, error_code=ErrorCodes.INTERNAL_ERROR
            )

    async def _load(
        self,
        lookup: Callable[[AsyncSession], Awaitable[Optional[Business]]],
        not_found: str,
        generation: Generation,
    ) -> ConfigLoadResult:
        async with self.session_factory() as session:
            business = await lookup(session)
            if business is None:
                return ConfigLoadResult(success=False, error=not_found, error_code=ErrorCodes.NOT_FOUND)

            subdomain, business_id = business.subdomain, str(business.id)

            parsed, source = await self._load_authoritative(business)
            if parsed is not None and parsed.success:
                self.cache.put(
                    parsed.config,
                    subdomain=subdomain,
                    business_id=business_id,
                    source=source,
                    warnings=parsed.warnings,
                    generation=generation,
                )
                return ConfigLoadResult(
                    success=True,
                    config=parsed.config,
                    subdomain=subdomain,
                    business_id=business_id,
                    source=source,
                    warnings=parsed.warnings,
                )
            if parsed is not None:
                logger.warning(
                    f"Authoritative {source} config for {subdomain} failed to parse, "
                    f"falling back to stored records: {parsed.errors}"
                )

            document = await build_fallback_document(session, business, self.settings, self._today())

        result = validate(document, today=self._today())
        if not result.valid:
            logger.error(f"Fallback config for {subdomain} is invalid: {result.errors}")
            return ConfigLoadResult(
                success=False,
                error="Failed to load configuration from any source: " + "; ".join(result.errors),
                subdomain=subdomain,
                business_id=business_id,
                error_code=ErrorCodes.CONFIG_INVALID,
            )

        warnings = [FALLBACK_WARNING] + result.warnings
        logger.warning(f"Serving fallback config for {subdomain}")
        self.cache.put(
            result.config,
            subdomain=subdomain,
            business_id=business_id,
            source="fallback",
            warnings=warnings,
            generation=generation,
        )
        return ConfigLoadResult(
            success=True,
            config=result.config,
            subdomain=subdomain,
            business_id=business_id,
            source="fallback",
            warnings=warnings,
        )

    async def _load_authoritative(self, business: Business) -> tuple[Optional[ParseResult], Optional[str]]:
        # Exception dates that have since passed do not invalidate a stored config
        options = {"today": self._today(), "reject_past_exceptions": False}
        if business.config_source:
            parsed = parse_config(business.config_source, **options)
            if parsed.success or not business.config_source_path:
                return parsed, "inline"
            logger.warning(
                f"Inline config for {business.subdomain} failed to parse, "
                f"trying {business.config_source_path}: {parsed.errors}"
            )
        if business.config_source_path:
            path = Path(business.config_source_path)
            if not path.is_absolute():
                path = Path(self.settings.config_root) / path
            # File reads block; keep them off the event loop
            return await asyncio.to_thread(load_config_file, path, **options), "file"
        return None, None
