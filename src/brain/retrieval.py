"""
Knowledge search and budgeted context compilation.

Semantic ranking uses the query embedding against stored entry
embeddings. When embeddings are off or the provider fails, search drops to
filter plus keyword scoring instead of failing the caller.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from src.brain.base import KnowledgeEntry, OwnerScope, SearchFilters
from src.brain.config import RetrievalConfig
from src.brain.embeddings import EmbeddingClient
from src.brain.store import BrainStore

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[a-z0-9$%]+")

KEYWORD_STOPWORDS = {
    "the", "a", "an", "and", "or", "of", "to", "in", "on", "for", "with",
    "is", "are", "was", "it", "this", "that", "how", "what", "i", "you",
    "we", "my", "your", "do", "be",
}


def embedding_text(entry: KnowledgeEntry) -> str:
    """Text embedded for an entry: category, content and context."""
    text = f"{entry.category.value}: {entry.content}"
    if entry.context:
        text += f"\nContext: {entry.context}"
    return text


def keyword_tokens(text: str) -> set[str]:
    return {w for w in _WORD.findall((text or "").lower()) if w not in KEYWORD_STOPWORDS}


def keyword_score(query: str, entry: KnowledgeEntry) -> float:
    """Fraction of query tokens found in the entry's content, context and tags."""
    query_tokens = keyword_tokens(query)
    if not query_tokens:
        return 0.0
    haystack = keyword_tokens(
        " ".join([entry.content, entry.context or "", " ".join(entry.tags), " ".join(entry.topics)])
    )
    return len(query_tokens & haystack) / len(query_tokens)


@dataclass
class ScoredEntry:
    """A search hit with its relevance score."""

    entry: KnowledgeEntry
    similarity: float
    semantic: bool = True

    def boosted(self, quality_boost: float) -> float:
        """Similarity scaled by quality: a 5 gets +2*boost, a 1 gets -2*boost."""
        return self.similarity * (1 + quality_boost * (self.entry.quality_score - 3))


class KnowledgeBrain:
    """
    Search and context compilation over an owner's knowledge base.

    Usage:
        brain = KnowledgeBrain(store, EmbeddingClient())
        hits = await brain.search("pricing objections", scope=OwnerScope("user-1"))
        context = await brain.compile_context("pricing", OwnerScope("user-1"), budget=2000)
    """

    def __init__(
        self,
        store: BrainStore,
        embeddings: Optional[EmbeddingClient] = None,
        config: Optional[RetrievalConfig] = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.config = config or RetrievalConfig()

    async def search(
        self,
        query: str,
        scope: OwnerScope,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> list[ScoredEntry]:
        """
        Rank the scope's entries against a query.

        Ties on similarity are broken by quality, then recency.
        """
        limit = limit or self.config.default_limit
        threshold = self.config.similarity_threshold if threshold is None else threshold

        query_embedding = None
        if query and query.strip() and self.embeddings is not None:
            query_embedding = await self.embeddings.embed(query)

        if query_embedding is not None:
            matches = await self.store.match_entries(
                scope,
                query_embedding,
                filters=filters,
                limit=limit,
                threshold=threshold,
            )
            hits = [ScoredEntry(entry=entry, similarity=sim) for entry, sim in matches]
        else:
            hits = await self._keyword_search(query, scope, filters, limit)

        hits.sort(
            key=lambda h: (h.similarity, h.entry.quality_score, h.entry.created_at),
            reverse=True,
        )
        return hits[:limit]

    async def _keyword_search(
        self,
        query: str,
        scope: OwnerScope,
        filters: Optional[SearchFilters],
        limit: int,
    ) -> list[ScoredEntry]:
        logger.debug("Embeddings unavailable, using keyword search")
        candidates = await self.store.list_entries(scope, filters, limit=max(limit * 10, 200))

        if not query or not keyword_tokens(query):
            return [ScoredEntry(entry=e, similarity=0.0, semantic=False) for e in candidates]

        hits = []
        for entry in candidates:
            score = keyword_score(query, entry)
            if score > 0:
                hits.append(ScoredEntry(entry=entry, similarity=score, semantic=False))
        return hits

    async def compile_context(
        self,
        query: str,
        scope: OwnerScope,
        budget: Optional[int] = None,
        filters: Optional[SearchFilters] = None,
        quality_boost: bool = True,
        limit: Optional[int] = None,
    ) -> str:
        """
        Greedily pack the best entries into `[category] content` lines.

        Stops at `budget` characters. The line that would overflow is
        truncated with an ellipsis; nothing after it is added.
        """
        budget = self.config.context_budget_chars if budget is None else budget
        if budget <= 0:
            return ""

        hits = await self.search(query, scope, filters=filters, limit=limit)
        boost = self.config.quality_boost if quality_boost else None
        return pack_context(hits, budget, boost)


def pack_context(hits: list[ScoredEntry], budget: int, quality_boost: Optional[float] = None) -> str:
    """
    Join hits as `[category] content` lines within `budget` characters.

    With a quality_boost the hits are re-ordered by boosted similarity
    first. The line that would overflow is cut with an ellipsis and
    nothing after it is added.
    """
    if budget <= 0:
        return ""
    if quality_boost:
        hits = sorted(hits, key=lambda h: h.boosted(quality_boost), reverse=True)

    lines: list[str] = []
    used = 0
    for hit in hits:
        line = f"[{hit.entry.category.value}] {hit.entry.content}"
        separator = 1 if lines else 0
        remaining = budget - used - separator
        if remaining <= 0:
            break
        if len(line) > remaining:
            if remaining > 3:
                lines.append(line[: remaining - 3] + "...")
            break
        lines.append(line)
        used += separator + len(line)

    return "\n".join(lines)
