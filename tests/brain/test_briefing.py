"""Tests for the briefing agent."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.brain.base import (
    DEFAULT_VOICE,
    ContentIdea,
    KnowledgeEntry,
    KnowledgeType,
    OwnerScope,
    Template,
    VoiceProfile,
)
from src.brain.briefing import GENERIC_STRUCTURE, BriefingAgent, top_knowledge_types, topic_readiness
from src.brain.errors import ExternalServiceError
from src.brain.retrieval import KnowledgeBrain, ScoredEntry
from src.brain.templates import TemplateMatcher

OWNER = "user-1"


def _idea(**kwargs):
    defaults = dict(owner_id=OWNER, title="Pricing mistakes", core_insight="Discounting early kills deals")
    defaults.update(kwargs)
    return ContentIdea(**defaults)


def _hit(knowledge_type=KnowledgeType.INSIGHT, quality=3, content="x"):
    entry = KnowledgeEntry(owner_id=OWNER, knowledge_type=knowledge_type, content=content, quality_score=quality)
    return ScoredEntry(entry=entry, similarity=0.9)


async def _seed_pricing_entries(store, count=3):
    await store.insert_entries([
        KnowledgeEntry(
            owner_id=OWNER,
            knowledge_type=KnowledgeType.MISTAKE,
            content=f"Pricing lesson number {i}",
            quality_score=4,
        )
        for i in range(count)
    ])


class TestTopicReadiness:
    def test_empty(self):
        assert topic_readiness([]) == 0.0

    def test_formula(self):
        hits = [
            _hit(KnowledgeType.INSIGHT, 3),
            _hit(KnowledgeType.STORY, 4),
            _hit(KnowledgeType.INSIGHT, 5),
        ]
        # 3/15*0.5 + 2/5*0.3 + 4/5*0.2
        assert topic_readiness(hits) == pytest.approx(0.38)

    def test_saturates_at_one(self):
        hits = [_hit(kt, 5) for kt in KnowledgeType] * 3
        assert topic_readiness(hits) == 1.0


class TestTopKnowledgeTypes:
    def test_counts_sorted(self):
        hits = [
            _hit(KnowledgeType.STORY),
            _hit(KnowledgeType.INSIGHT),
            _hit(KnowledgeType.STORY),
            _hit(KnowledgeType.MISTAKE),
        ]
        assert top_knowledge_types(hits, limit=2) == [("story", 2), ("insight", 1)]


class TestBriefingAgent:
    """Tests for BriefingAgent.build_brief."""

    @pytest.mark.asyncio
    async def test_brief_with_nothing_available(self, store):
        agent = BriefingAgent(store, KnowledgeBrain(store))

        brief = await agent.build_brief(_idea(), OwnerScope(OWNER))

        assert brief.entries == []
        assert brief.knowledge_context == ""
        assert brief.template is None
        assert brief.structure == GENERIC_STRUCTURE
        assert brief.voice is DEFAULT_VOICE
        assert brief.topic_readiness == 0.0
        assert brief.performance_guidance == []
        assert brief.suggested_angles == []

    @pytest.mark.asyncio
    async def test_brief_uses_available_inputs(self, store, make_embeddings):
        embeddings = make_embeddings(default=[1.0, 0.0])
        await store.insert_templates([
            Template(name="Mistake I Made", structure="[CONFESSION]", embedding=[1.0, 0.0], owner_id=OWNER),
        ])
        await store.insert_entries([
            KnowledgeEntry(
                owner_id=OWNER,
                knowledge_type=KnowledgeType.MISTAKE,
                content="Discounted on the first call",
                embedding=[1.0, 0.0],
            ),
        ])
        store.add_voice_profile(OWNER, VoiceProfile(speaker="Dana", tone="Warm and blunt"))
        analyzer = MagicMock()
        analyzer.performance_guidance = AsyncMock(return_value=["Hook types that work: number_hook"])
        agent = BriefingAgent(
            store,
            KnowledgeBrain(store, embeddings),
            matcher=TemplateMatcher(store, embeddings),
            analyzer=analyzer,
        )

        brief = await agent.build_brief(_idea(speaker="Dana"), OwnerScope(OWNER))

        assert brief.template.template.name == "Mistake I Made"
        assert brief.structure == "[CONFESSION]"
        assert brief.voice.tone == "Warm and blunt"
        assert brief.knowledge_context == "[insight] Discounted on the first call"
        assert brief.performance_guidance == ["Hook types that work: number_hook"]
        analyzer.performance_guidance.assert_awaited_once_with(OWNER)

    @pytest.mark.asyncio
    async def test_fallback_template_keeps_generic_structure(self, store):
        await store.insert_templates([Template(name="Quick Tip", structure="[TIP]", owner_id=OWNER, usage_count=5)])
        agent = BriefingAgent(store, KnowledgeBrain(store), matcher=TemplateMatcher(store))

        brief = await agent.build_brief(_idea(), OwnerScope(OWNER))

        assert brief.template is None
        assert brief.structure == GENERIC_STRUCTURE

    @pytest.mark.asyncio
    async def test_unknown_speaker_uses_any_owner_voice(self, store):
        store.add_voice_profile(OWNER, VoiceProfile(speaker="Dana", tone="Warm"))
        agent = BriefingAgent(store, KnowledgeBrain(store))

        brief = await agent.build_brief(_idea(speaker="Someone else"), OwnerScope(OWNER))

        assert brief.voice.speaker == "Dana"

    @pytest.mark.asyncio
    async def test_low_quality_entries_excluded(self, store):
        await store.insert_entries([
            KnowledgeEntry(owner_id=OWNER, knowledge_type=KnowledgeType.INSIGHT, content="Pricing noise", quality_score=1),
        ])
        agent = BriefingAgent(store, KnowledgeBrain(store))

        brief = await agent.build_brief(_idea(), OwnerScope(OWNER))

        assert brief.entries == []


class TestSuggestAngles:
    """Tests for angle suggestion."""

    @pytest.mark.asyncio
    async def test_angles_from_llm(self, store, make_llm):
        await _seed_pricing_entries(store)
        llm = make_llm(["The first-call discount trap", "  ", "Anchoring beats haggling"])
        agent = BriefingAgent(store, KnowledgeBrain(store), llm=llm)

        brief = await agent.build_brief(_idea(), OwnerScope(OWNER))

        assert len(brief.entries) == 3
        assert brief.suggested_angles == ["The first-call discount trap", "Anchoring beats haggling"]

    @pytest.mark.asyncio
    async def test_too_few_entries(self, store, make_llm):
        await _seed_pricing_entries(store, count=2)
        llm = make_llm(["unused"])
        agent = BriefingAgent(store, KnowledgeBrain(store), llm=llm)

        brief = await agent.build_brief(_idea(), OwnerScope(OWNER))

        assert brief.suggested_angles == []
        llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unparseable_response(self, store, make_llm):
        await _seed_pricing_entries(store)
        agent = BriefingAgent(store, KnowledgeBrain(store), llm=make_llm("Here are some angles!"))

        brief = await agent.build_brief(_idea(), OwnerScope(OWNER))

        assert brief.suggested_angles == []

    @pytest.mark.asyncio
    async def test_provider_failure_is_not_fatal(self, store, make_llm):
        await _seed_pricing_entries(store)
        agent = BriefingAgent(store, KnowledgeBrain(store), llm=make_llm(ExternalServiceError("llm", "timeout")))

        brief = await agent.build_brief(_idea(), OwnerScope(OWNER))

        assert brief.suggested_angles == []
        assert len(brief.entries) == 3
