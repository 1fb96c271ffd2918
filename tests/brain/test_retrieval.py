"""Tests for knowledge search and context compilation."""

from datetime import datetime, timedelta, timezone

import pytest

from src.brain.base import KnowledgeEntry, KnowledgeType, OwnerScope, SearchFilters
from src.brain.retrieval import KnowledgeBrain, ScoredEntry, embedding_text, keyword_score, pack_context

OWNER = "user-1"


def _entry(content, knowledge_type=KnowledgeType.INSIGHT, quality=3, embedding=None, **kwargs):
    return KnowledgeEntry(
        owner_id=kwargs.pop("owner_id", OWNER),
        knowledge_type=knowledge_type,
        content=content,
        quality_score=quality,
        embedding=embedding,
        **kwargs,
    )


class TestEmbeddingText:
    def test_includes_category_and_context(self):
        entry = _entry("Anchor high", context="Pricing call")
        assert embedding_text(entry) == "insight: Anchor high\nContext: Pricing call"

    def test_without_context(self):
        assert embedding_text(_entry("Anchor high")) == "insight: Anchor high"


class TestKeywordScore:
    def test_fraction_of_query_tokens(self):
        entry = _entry("Raise your prices every quarter", tags=["pricing"])
        assert keyword_score("prices pricing hiring", entry) == pytest.approx(2 / 3)

    def test_stopwords_only(self):
        assert keyword_score("the and of", _entry("anything")) == 0.0


class TestSearch:
    """Tests for KnowledgeBrain.search."""

    @pytest.mark.asyncio
    async def test_identical_embedding_ranks_first(self, store, make_embeddings):
        target = [0.2, 0.9, 0.4]
        await store.insert_entries([
            _entry("Cold email subject lines", embedding=[0.9, 0.1, 0.1]),
            _entry("Pricing objections", embedding=target),
            _entry("Hiring first sales rep", embedding=[0.1, 0.2, 0.95]),
        ])
        brain = KnowledgeBrain(store, make_embeddings(default=list(target)))

        hits = await brain.search("pricing", OwnerScope(OWNER), threshold=0.0)

        assert hits[0].entry.content == "Pricing objections"
        assert hits[0].similarity == pytest.approx(1.0)
        assert all(hits[i].similarity >= hits[i + 1].similarity for i in range(len(hits) - 1))

    @pytest.mark.asyncio
    async def test_threshold_filters(self, store, make_embeddings):
        await store.insert_entries([
            _entry("Relevant", embedding=[1.0, 0.0]),
            _entry("Orthogonal", embedding=[0.0, 1.0]),
        ])
        brain = KnowledgeBrain(store, make_embeddings(default=[1.0, 0.0]))

        hits = await brain.search("q", OwnerScope(OWNER))

        assert [h.entry.content for h in hits] == ["Relevant"]

    @pytest.mark.asyncio
    async def test_ties_broken_by_quality_then_recency(self, store, make_embeddings):
        now = datetime.now(timezone.utc)
        await store.insert_entries([
            _entry("low", quality=2, embedding=[1.0, 0.0], created_at=now),
            _entry("high old", quality=5, embedding=[1.0, 0.0], created_at=now - timedelta(days=2)),
            _entry("high new", quality=5, embedding=[1.0, 0.0], created_at=now),
        ])
        brain = KnowledgeBrain(store, make_embeddings(default=[1.0, 0.0]))

        hits = await brain.search("q", OwnerScope(OWNER))

        assert [h.entry.content for h in hits] == ["high new", "high old", "low"]

    @pytest.mark.asyncio
    async def test_keyword_fallback_without_embeddings(self, store):
        await store.insert_entries([
            _entry("Raise prices every quarter", tags=["pricing"]),
            _entry("Hire slowly, fire fast"),
        ])
        brain = KnowledgeBrain(store)

        hits = await brain.search("pricing quarter", OwnerScope(OWNER))

        assert len(hits) == 1
        assert hits[0].entry.content == "Raise prices every quarter"
        assert hits[0].semantic is False

    @pytest.mark.asyncio
    async def test_keyword_fallback_when_provider_fails(self, store, make_embeddings):
        await store.insert_entries([_entry("Raise prices every quarter", embedding=[1.0, 0.0])])
        brain = KnowledgeBrain(store, make_embeddings(default=None))

        hits = await brain.search("quarter", OwnerScope(OWNER))

        assert len(hits) == 1
        assert hits[0].semantic is False

    @pytest.mark.asyncio
    async def test_filters_and_scope(self, store):
        await store.insert_entries([
            _entry("Mine pricing", knowledge_type=KnowledgeType.OBJECTION),
            _entry("Mine pricing story", knowledge_type=KnowledgeType.STORY),
            _entry("Teammate pricing", knowledge_type=KnowledgeType.OBJECTION, owner_id="user-2"),
            _entry("Stranger pricing", knowledge_type=KnowledgeType.OBJECTION, owner_id="user-3"),
        ])
        brain = KnowledgeBrain(store)
        scope = OwnerScope(OWNER, team_id="team-1", member_ids=("user-2",))

        hits = await brain.search(
            "pricing",
            scope,
            filters=SearchFilters(knowledge_type=KnowledgeType.OBJECTION),
        )

        assert sorted(h.entry.content for h in hits) == ["Mine pricing", "Teammate pricing"]


class TestPackContext:
    """Tests for budgeted context packing."""

    def _hits(self, *contents):
        return [ScoredEntry(_entry(c), similarity=1.0 - i * 0.1) for i, c in enumerate(contents)]

    def test_lines_within_budget(self):
        context = pack_context(self._hits("one", "two"), budget=100)
        assert context == "[insight] one\n[insight] two"

    def test_overflow_line_truncated_to_budget(self):
        hits = self._hits("a" * 50, "b" * 50, "c" * 50)
        context = pack_context(hits, budget=80)

        assert len(context) == 80
        assert context.endswith("...")
        assert "c" not in context

    def test_zero_budget(self):
        assert pack_context(self._hits("one"), budget=0) == ""

    def test_quality_boost_reorders(self):
        low = ScoredEntry(_entry("low quality", quality=1), similarity=0.80)
        high = ScoredEntry(_entry("high quality", quality=5), similarity=0.75)

        assert pack_context([low, high], 1000, quality_boost=0.1).startswith("[insight] high quality")
        assert pack_context([low, high], 1000, quality_boost=None).startswith("[insight] low quality")


class TestCompileContext:
    @pytest.mark.asyncio
    async def test_compiles_search_results(self, store, make_embeddings):
        await store.insert_entries([
            _entry("Anchor your price high", embedding=[1.0, 0.0]),
            _entry("Never discount on the first call", embedding=[0.9, 0.1]),
        ])
        brain = KnowledgeBrain(store, make_embeddings(default=[1.0, 0.0]))

        context = await brain.compile_context("pricing", OwnerScope(OWNER), budget=40)

        assert len(context) <= 40
        assert context.startswith("[insight] Anchor your price high")

    @pytest.mark.asyncio
    async def test_empty_knowledge_base(self, store):
        brain = KnowledgeBrain(store)
        assert await brain.compile_context("pricing", OwnerScope(OWNER)) == ""
