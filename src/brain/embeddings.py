"""
Embedding provider client, cosine similarity, and a bounded embedding cache.

Embedding failures are never hard errors: `EmbeddingClient.embed` returns
None and the caller takes its non-semantic path.
"""

import hashlib
import logging
import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, Optional, Sequence

import httpx

from src.brain.config import EmbeddingConfig

logger = logging.getLogger(__name__)


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity of two vectors; 0.0 for missing, mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


class EmbeddingClient:
    """
    Async client for an OpenAI-compatible /embeddings endpoint.

    Usage:
        client = EmbeddingClient()
        vector = await client.embed("cold email subject lines")
        if vector is None:
            ...  # embeddings unavailable, use keyword path
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or EmbeddingConfig()

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.api_key)

    async def embed(self, text: str) -> Optional[list[float]]:
        """Embed text, or return None when embeddings are unavailable."""
        if not self.enabled:
            return None
        if not text or not text.strip():
            return None

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                response = await client.post(
                    f"{self.config.base_url}/embeddings",
                    headers={
                        "Authorization": f"Bearer {self.config.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.config.model,
                        "input": text[: self.config.max_input_chars],
                    },
                )
                response.raise_for_status()
                data = response.json()
            return [float(x) for x in data["data"][0]["embedding"]]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Embedding request failed, continuing without embeddings: {e}")
            return None


@dataclass
class CacheEntry:
    """A cached embedding."""

    key: str
    vector: list[float]
    created_at: float
    expires_at: float
    hit_count: int = 0


@dataclass
class CacheStats:
    """Cache statistics"""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 4),
            "size": self.size,
            "max_size": self.max_size,
        }


class EmbeddingCache:
    """
    LRU cache for embeddings with TTL expiration.

    Keyed by a caller-supplied id plus a hash of the embedded text, so an
    edited template never reuses a stale vector. Instances are passed into
    components explicitly; there is no module-level cache.
    """

    def __init__(self, ttl_seconds: int = 3600, max_size: int = 500, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock

        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = Lock()
        self._stats = CacheStats(max_size=max_size)

    @staticmethod
    def make_key(item_id: Optional[str], text: str) -> str:
        digest = hashlib.sha256(text.encode()).hexdigest()[:16]
        return f"{item_id or 'anon'}:{digest}"

    def get(self, key: str) -> Optional[list[float]]:
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._stats.misses += 1
                return None

            if self._clock() > entry.expires_at:
                del self._cache[key]
                self._stats.misses += 1
                self._stats.evictions += 1
                self._stats.size = len(self._cache)
                return None

            self._cache.move_to_end(key)
            entry.hit_count += 1
            self._stats.hits += 1
            return entry.vector

    def put(self, key: str, vector: list[float]) -> None:
        if self.max_size <= 0:
            return
        now = self._clock()
        entry = CacheEntry(
            key=key,
            vector=vector,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )

        with self._lock:
            if key in self._cache:
                del self._cache[key]
            # Remove oldest if at capacity
            while len(self._cache) >= self.max_size:
                self._cache.popitem(last=False)
                self._stats.evictions += 1

            self._cache[key] = entry
            self._stats.size = len(self._cache)

    async def get_or_embed(
        self,
        item_id: Optional[str],
        text: str,
        client: EmbeddingClient,
    ) -> Optional[list[float]]:
        """Return a cached vector or embed and cache it. None if unavailable."""
        key = self.make_key(item_id, text)
        cached = self.get(key)
        if cached is not None:
            return cached
        vector = await client.embed(text)
        if vector is not None:
            self.put(key, vector)
        return vector

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._stats.size = 0

    def __len__(self) -> int:
        return len(self._cache)

    def get_stats(self) -> CacheStats:
        self._stats.size = len(self._cache)
        return self._stats
