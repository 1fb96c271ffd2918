"""
Topic normalization.

Maps free-text topic suggestions onto an owner's canonical topic taxonomy so
"cold email" and "Cold Outreach via Email" end up under one slug.
"""

import difflib
import logging
import re
from typing import Optional

from src.brain.base import Topic
from src.brain.config import TopicConfig
from src.brain.embeddings import EmbeddingCache, EmbeddingClient, cosine_similarity
from src.brain.store import BrainStore

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 60

STOPWORDS = {
    "a", "an", "and", "the", "of", "for", "to", "in", "on", "with", "via",
    "by", "at", "your", "our", "how", "vs",
}


def slugify(text: str) -> str:
    """Lowercase, collapse non-alphanumerics to '-', trim, cap length."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


def _stem(token: str) -> str:
    if len(token) > 4 and token.endswith("ies"):
        return token[:-3] + "y"
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def topic_tokens(text: str) -> set[str]:
    """Normalized content tokens of a topic label."""
    tokens = re.split(r"[^a-z0-9]+", text.lower())
    return {_stem(t) for t in tokens if t and t not in STOPWORDS}


def string_similarity(a: str, b: str) -> float:
    """
    Similarity of two topic labels in [0, 1].

    The larger of token-set Jaccard (order and stopword insensitive) and the
    difflib ratio of the slugs (catches typos and hyphenation).
    """
    slug_a, slug_b = slugify(a), slugify(b)
    if not slug_a or not slug_b:
        return 0.0
    if slug_a == slug_b:
        return 1.0

    tokens_a, tokens_b = topic_tokens(a), topic_tokens(b)
    jaccard = 0.0
    if tokens_a and tokens_b:
        jaccard = len(tokens_a & tokens_b) / len(tokens_a | tokens_b)

    ratio = difflib.SequenceMatcher(None, slug_a, slug_b).ratio()
    return max(jaccard, ratio)


class TopicNormalizer:
    """
    Deduplicates topic suggestions into a per-owner taxonomy.

    Every accepted suggestion results in exactly one atomic
    increment-or-create on the store, so concurrent extraction batches for
    the same owner never lose a count.

    Usage:
        normalizer = TopicNormalizer(store, embeddings=EmbeddingClient())
        slugs = await normalizer.normalize(
            ["Cold Email", "pricing objections"],
            entry_content="...",
            owner_id="user-1",
        )
    """

    def __init__(
        self,
        store: BrainStore,
        embeddings: Optional[EmbeddingClient] = None,
        config: Optional[TopicConfig] = None,
        cache: Optional[EmbeddingCache] = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.config = config or TopicConfig()
        self.cache = cache

    async def normalize(
        self,
        suggested_topics: list[str],
        entry_content: str,
        owner_id: str,
    ) -> list[str]:
        """
        Resolve suggestions to canonical slugs, creating topics as needed.

        Args:
            suggested_topics: Free-text topic labels from the model
            entry_content: Content of the entry the topics describe
            owner_id: Owner whose taxonomy is used

        Returns:
            Up to `max_topics_per_entry` distinct canonical slugs
        """
        cleaned = []
        seen = set()
        for suggestion in suggested_topics or []:
            if not isinstance(suggestion, str):
                continue
            label = " ".join(suggestion.split())
            if not label or not slugify(label):
                continue
            if slugify(label) in seen:
                continue
            seen.add(slugify(label))
            cleaned.append(label)

        if not cleaned:
            return []

        existing = await self.store.list_topics(owner_id)
        slugs: list[str] = []

        for label in cleaned:
            if len(slugs) >= self.config.max_topics_per_entry:
                break

            match = await self._best_match(label, existing)
            if match is not None:
                slug, display_name = match.slug, match.display_name
            else:
                slug, display_name = slugify(label), label

            if slug in slugs:
                continue

            topic = await self.store.increment_or_create_topic(owner_id, slug, display_name)
            slugs.append(topic.slug)

            if all(t.slug != topic.slug for t in existing):
                existing.append(topic)
                logger.debug(f"Created topic '{topic.slug}' for owner {owner_id}")

        if not slugs:
            logger.debug(f"No topics resolved for entry: {entry_content[:80]}")
        return slugs

    async def _best_match(self, label: str, existing: list[Topic]) -> Optional[Topic]:
        """Closest existing topic above the threshold, else None."""
        if not existing:
            return None

        best: Optional[Topic] = None
        best_score = 0.0
        for topic in existing:
            score = max(
                string_similarity(label, topic.display_name),
                string_similarity(label, topic.slug),
            )
            if score > best_score:
                best, best_score = topic, score

        if best is not None and best_score >= self.config.match_threshold:
            return best

        semantic = await self._embedding_match(label, existing)
        if semantic is not None:
            return semantic
        return None

    async def _embedding_match(self, label: str, existing: list[Topic]) -> Optional[Topic]:
        if self.embeddings is None or not self.embeddings.enabled:
            return None

        query = await self._embed(None, label)
        if query is None:
            return None

        best: Optional[Topic] = None
        best_score = 0.0
        for topic in existing:
            vector = await self._embed(f"topic:{topic.slug}", topic.display_name)
            if vector is None:
                return None
            score = cosine_similarity(query, vector)
            if score > best_score:
                best, best_score = topic, score

        if best is not None and best_score >= self.config.embedding_threshold:
            return best
        return None

    async def _embed(self, item_id: Optional[str], text: str) -> Optional[list[float]]:
        if self.cache is not None:
            return await self.cache.get_or_embed(item_id, text, self.embeddings)
        return await self.embeddings.embed(text)
