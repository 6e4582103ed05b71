"""Throttled scan for batches that are past their expiry date.

The scan is informational: it reports expired stock and never writes to the
ledger. Turning an expired batch into waste is always an explicit
``mark_as_waste`` call by a person.

Results are memoised per tenant in a :class:`ScanCache` so page loads do not
hit the database every time. ``InMemoryScanCache`` is fine for a single
process; ``RedisScanCache`` shares the throttle between instances.
"""
import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from typing import Dict, Optional, Protocol, Tuple

import redis
import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from app.config import EXPIRY_SCAN_TTL_SECONDS, REDIS_URL, SCAN_CACHE_BACKEND
from app.models import BatchStatus, ProductBatch, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanResult:
    restaurant_id: int
    expired_count: int
    expired_batch_ids: Tuple[int, ...]
    scanned_at: datetime
    # served from cache rather than a fresh query; not part of equality
    cached: bool = field(default=False, compare=False)

    def to_json(self) -> str:
        data = asdict(self)
        data["scanned_at"] = self.scanned_at.isoformat()
        data["expired_batch_ids"] = list(self.expired_batch_ids)
        del data["cached"]
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "ScanResult":
        data = json.loads(raw)
        return cls(
            restaurant_id=data["restaurant_id"],
            expired_count=data["expired_count"],
            expired_batch_ids=tuple(data["expired_batch_ids"]),
            scanned_at=datetime.fromisoformat(data["scanned_at"]),
        )


class ScanCache(Protocol):
    ttl: float

    def get(self, key: str) -> Optional[ScanResult]: ...

    def set(self, key: str, value: ScanResult) -> None: ...

    async def aget(self, key: str) -> Optional[ScanResult]: ...

    async def aset(self, key: str, value: ScanResult) -> None: ...


class InMemoryScanCache:
    """Per-process TTL map guarded by a lock (requests, Celery threads)."""

    def __init__(self, ttl: float = EXPIRY_SCAN_TTL_SECONDS, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, ScanResult]] = {}

    def get(self, key: str) -> Optional[ScanResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: ScanResult) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    # the lock is only held for a dict lookup, so the loop never waits on I/O
    async def aget(self, key: str) -> Optional[ScanResult]:
        return self.get(key)

    async def aset(self, key: str, value: ScanResult) -> None:
        self.set(key, value)


class RedisScanCache:
    """Scan results shared across instances through Redis key expiry.

    Celery workers go through the blocking client (``get``/``set``); request
    handlers go through ``redis.asyncio`` (``aget``/``aset``) so a slow Redis
    never stalls the event loop.
    """

    def __init__(
        self,
        client=None,
        async_client=None,
        ttl: float = EXPIRY_SCAN_TTL_SECONDS,
        prefix: str = "clearstock:expiry-scan:",
    ):
        self.ttl = ttl
        self.prefix = prefix
        self._client = client
        self._async_client = async_client

    @property
    def client(self):
        if self._client is None:
            self._client = redis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)
        return self._client

    @property
    def async_client(self):
        if self._async_client is None:
            self._async_client = aioredis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)
        return self._async_client

    def _decode(self, raw) -> Optional[ScanResult]:
        if raw is None:
            return None
        return ScanResult.from_json(raw)

    def get(self, key: str) -> Optional[ScanResult]:
        return self._decode(self.client.get(self.prefix + key))

    def set(self, key: str, value: ScanResult) -> None:
        self.client.set(self.prefix + key, value.to_json(), px=int(self.ttl * 1000))

    async def aget(self, key: str) -> Optional[ScanResult]:
        return self._decode(await self.async_client.get(self.prefix + key))

    async def aset(self, key: str, value: ScanResult) -> None:
        await self.async_client.set(self.prefix + key, value.to_json(), px=int(self.ttl * 1000))


def expired_batches_query(restaurant_id: int, today: date):
    return select(ProductBatch.id).where(
        ProductBatch.restaurant_id == restaurant_id,
        ProductBatch.status == BatchStatus.ACTIVE,
        ProductBatch.expiry_date < today,
        ProductBatch.quantity > 0,
    ).order_by(ProductBatch.expiry_date, ProductBatch.id)


class ExpiryScanner:
    def __init__(self, cache: ScanCache):
        self.cache = cache

    @staticmethod
    def _key(restaurant_id: int) -> str:
        return str(restaurant_id)

    def _hit(self, restaurant_id: int, hit: Optional[ScanResult]) -> Optional[ScanResult]:
        if hit is None:
            return None
        logger.debug(f"Expiry scan for restaurant {restaurant_id} served from cache (scanned at {hit.scanned_at})")
        return replace(hit, cached=True)

    def _result(self, restaurant_id: int, batch_ids) -> ScanResult:
        result = ScanResult(
            restaurant_id=restaurant_id,
            expired_count=len(batch_ids),
            expired_batch_ids=tuple(batch_ids),
            scanned_at=utcnow(),
        )
        logger.info(
            f"Expiry scan for restaurant {restaurant_id}: {result.expired_count} expired batches "
            f"(reported only, nothing marked as waste)"
        )
        return result

    async def scan(self, db: AsyncSession, restaurant_id: int, today: Optional[date] = None) -> ScanResult:
        key = self._key(restaurant_id)
        hit = self._hit(restaurant_id, await self.cache.aget(key))
        if hit is not None:
            return hit
        rows = await db.execute(expired_batches_query(restaurant_id, today or date.today()))
        result = self._result(restaurant_id, rows.scalars().all())
        await self.cache.aset(key, result)
        return result

    def scan_sync(self, db: Session, restaurant_id: int, today: Optional[date] = None) -> ScanResult:
        key = self._key(restaurant_id)
        hit = self._hit(restaurant_id, self.cache.get(key))
        if hit is not None:
            return hit
        rows = db.execute(expired_batches_query(restaurant_id, today or date.today()))
        result = self._result(restaurant_id, rows.scalars().all())
        self.cache.set(key, result)
        return result


def build_scan_cache(backend: str = SCAN_CACHE_BACKEND, ttl: float = EXPIRY_SCAN_TTL_SECONDS) -> ScanCache:
    if backend == "redis":
        return RedisScanCache(ttl=ttl)
    if backend == "memory":
        return InMemoryScanCache(ttl=ttl)
    raise ValueError(f"Unknown SCAN_CACHE_BACKEND {backend!r} (expected 'memory' or 'redis')")


_scanner: Optional[ExpiryScanner] = None
_scanner_lock = threading.Lock()


def get_scanner() -> ExpiryScanner:
    """Process-wide scanner; FastAPI dependency and Celery entry point."""
    global _scanner
    with _scanner_lock:
        if _scanner is None:
            _scanner = ExpiryScanner(build_scan_cache())
        return _scanner
