"""
Document Cache

Content-fingerprint deduplication of enhancement results, scoped per owner.

A fingerprint has two parts:
- ``digest``: sha256 of the raw bytes, for exact matches
- ``simhash``: 64-bit SimHash over 8-byte shingles, for near matches.
  Similarity is ``1 - hamming(a, b) / 64``; the default 0.95 threshold
  admits at most 3 differing bits.

Storage layout:
    doccache:{owner}:{digest}      JSON CacheEntry, TTL = entry TTL
    doccache:index:{owner}         hash digest -> simhash hex, TTL refreshed on store
    doccache:order:{owner}         sorted set digest -> created_at, TTL refreshed on store

Entries are immutable. ``store`` is set-if-absent, so concurrent writers of
the same content keep whichever entry landed first; both are equivalent.
An owner keeps at most ``max_entries`` entries: storing past the bound
evicts the oldest ones. Everything else leaves by expiry.
"""

import asyncio
import hashlib
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from typing import Any

import orjson

from enhance_gateway.core.config.constants import DOC_CACHE_KEY_PREFIX
from enhance_gateway.core.interfaces import SharedStore
from enhance_gateway.core.logging import get_logger
from enhance_gateway.infrastructure.monitoring import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)

SIMHASH_BITS = 64
SHINGLE_SIZE = 8
# Upper bound on shingles hashed per document; larger inputs are sampled on a stride
MAX_SHINGLES = 4096


def _wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class ContentFingerprint:
    digest: str
    simhash: int

    @property
    def simhash_hex(self) -> str:
        return f"{self.simhash:016x}"

    def similarity(self, other: "ContentFingerprint") -> float:
        if self.digest == other.digest:
            return 1.0
        return simhash_similarity(self.simhash, other.simhash)


def simhash_similarity(a: int, b: int) -> float:
    return 1.0 - bin(a ^ b).count("1") / SIMHASH_BITS


def _simhash(content: bytes) -> int:
    if len(content) <= SHINGLE_SIZE:
        shingles = [content]
    else:
        count = len(content) - SHINGLE_SIZE + 1
        stride = max(1, count // MAX_SHINGLES)
        shingles = [content[i:i + SHINGLE_SIZE] for i in range(0, count, stride)]

    weights = [0] * SIMHASH_BITS
    for shingle in shingles:
        value = int.from_bytes(hashlib.blake2b(shingle, digest_size=8).digest(), "big")
        for bit in range(SIMHASH_BITS):
            weights[bit] += 1 if value >> bit & 1 else -1

    result = 0
    for bit, weight in enumerate(weights):
        if weight > 0:
            result |= 1 << bit
    return result


def fingerprint(content: bytes) -> ContentFingerprint:
    """Compute the exact and near-duplicate fingerprint of ``content``."""
    return ContentFingerprint(digest=hashlib.sha256(content).hexdigest(), simhash=_simhash(content))


@dataclass(frozen=True)
class CacheEntry:
    """A prior enhancement result reusable for the same (or near-identical) content."""

    document_id: str
    enhancement_id: str
    result_url: str
    metadata: dict[str, Any] = field(default_factory=dict)
    fingerprint: str | None = None
    created_at: int = 0

    def to_json(self) -> str:
        return orjson.dumps(asdict(self)).decode()

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        return cls(**orjson.loads(raw))


@dataclass(frozen=True)
class CacheMatch:
    entry: CacheEntry
    match: str  # exact or near
    similarity: float


class DocumentCache:
    """
    Per-owner content cache with exact and near-duplicate matching.

    Usage:
        cache = DocumentCache(store)
        hit = await cache.lookup(user_id, content)
        if hit is None:
            ...  # enqueue work; once it succeeds:
            await cache.store(user_id, content, CacheEntry(...))
    """

    def __init__(
        self,
        store: SharedStore,
        similarity_threshold: float = 0.95,
        entry_ttl_ms: int = 7 * 24 * 60 * 60 * 1000,
        max_entries: int = 1000,
        fingerprinter: Callable[[bytes], ContentFingerprint] = fingerprint,
        clock: Callable[[], float] = _wall_clock_ms,
        metrics: MetricsCollector | None = None,
    ):
        self._store = store
        self.similarity_threshold = similarity_threshold
        self._entry_ttl_ms = entry_ttl_ms
        self._max_entries = max_entries
        self._fingerprinter = fingerprinter
        self._clock = clock
        self._metrics = metrics or get_metrics_collector()

    @staticmethod
    def _entry_key(owner_id: str, digest: str) -> str:
        return f"{DOC_CACHE_KEY_PREFIX}:{owner_id}:{digest}"

    @staticmethod
    def _index_key(owner_id: str) -> str:
        return f"{DOC_CACHE_KEY_PREFIX}:index:{owner_id}"

    @staticmethod
    def _order_key(owner_id: str) -> str:
        return f"{DOC_CACHE_KEY_PREFIX}:order:{owner_id}"

    async def fingerprint(self, content: bytes) -> ContentFingerprint:
        """Hash off the event loop; uploads can be tens of megabytes."""
        return await asyncio.to_thread(self._fingerprinter, content)

    async def lookup(self, owner_id: str, content: bytes) -> CacheEntry | None:
        match = await self.lookup_fingerprint(owner_id, await self.fingerprint(content))
        return match.entry if match else None

    async def lookup_fingerprint(self, owner_id: str, fp: ContentFingerprint) -> CacheMatch | None:
        """Exact digest first, then the most similar indexed entry at or above the threshold."""
        raw = await self._store.get(self._entry_key(owner_id, fp.digest))
        if raw is not None:
            self._metrics.record_cache_hit("exact")
            logger.debug("Document cache exact hit", owner_id=owner_id, digest=fp.digest)
            return CacheMatch(CacheEntry.from_json(raw), "exact", 1.0)

        candidates = []
        index = await self._store.hgetall(self._index_key(owner_id))
        for digest, simhash_hex in index.items():
            similarity = simhash_similarity(fp.simhash, int(simhash_hex, 16))
            if similarity >= self.similarity_threshold:
                candidates.append((similarity, digest))

        for similarity, digest in sorted(candidates, reverse=True):
            raw = await self._store.get(self._entry_key(owner_id, digest))
            if raw is None:
                # Entry expired; drop the dangling index reference
                await self._store.hdel(self._index_key(owner_id), digest)
                continue
            self._metrics.record_cache_hit("near")
            logger.info(
                "Document cache near-duplicate hit",
                owner_id=owner_id,
                digest=fp.digest,
                matched_digest=digest,
                similarity=round(similarity, 4),
            )
            return CacheMatch(CacheEntry.from_json(raw), "near", similarity)

        self._metrics.record_cache_miss()
        return None

    async def store(self, owner_id: str, content: bytes, entry: CacheEntry) -> bool:
        return await self.store_fingerprint(owner_id, await self.fingerprint(content), entry)

    async def store_fingerprint(self, owner_id: str, fp: ContentFingerprint, entry: CacheEntry) -> bool:
        """
        Record ``entry`` for ``fp`` unless one already exists.

        Returns:
            bool: True if this call created the entry
        """
        record = replace(entry, fingerprint=fp.digest, created_at=entry.created_at or int(self._clock()))
        created = await self._store.set(
            self._entry_key(owner_id, fp.digest), record.to_json(), ttl_ms=self._entry_ttl_ms, nx=True
        )

        index_key = self._index_key(owner_id)
        order_key = self._order_key(owner_id)
        await self._store.hset(index_key, fp.digest, fp.simhash_hex)
        if created:
            await self._store.zadd(order_key, fp.digest, record.created_at)
        await self._store.expire(index_key, self._entry_ttl_ms)
        await self._store.expire(order_key, self._entry_ttl_ms)

        if created:
            logger.info("Document cache entry stored", owner_id=owner_id, digest=fp.digest)
            await self._evict_oldest(owner_id)
        else:
            logger.debug("Document cache entry already present", owner_id=owner_id, digest=fp.digest)
        return created

    async def _evict_oldest(self, owner_id: str) -> None:
        index_key = self._index_key(owner_id)
        excess = await self._store.hlen(index_key) - self._max_entries
        while excess > 0:
            oldest = await self._store.zpop_due(self._order_key(owner_id), float("inf"), limit=excess)
            if not oldest:
                break
            for digest in oldest:
                await self._store.hdel(index_key, digest)
                await self._store.delete(self._entry_key(owner_id, digest))
            logger.info("Document cache entries evicted", owner_id=owner_id, evicted=len(oldest))
            excess = await self._store.hlen(index_key) - self._max_entries
