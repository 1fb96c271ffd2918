"""Tests for the knowledge ingestion service."""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.brain.base import (
    ContentIdea,
    KnowledgeCategory,
    KnowledgeEntry,
    KnowledgeType,
    OwnerScope,
    SearchFilters,
    SourceDocument,
    TranscriptType,
)
from src.brain.config import ExtractorConfig
from src.brain.errors import ExternalServiceError, NotFoundError, ValidationError
from src.brain.extraction import KnowledgeExtractor, TranscriptClassifier
from src.brain.idea_extraction import IdeaExtractor
from src.brain.retrieval import KnowledgeBrain
from src.brain.service import KnowledgeIngestionService
from src.brain.topics import TopicNormalizer

OWNER = "user-1"

TRANSCRIPT = """Host: The biggest mistake I made was discounting in the first call.

Host: Here is the process. Send the proposal within 24 hours, then follow up on day 3."""

EXTRACTION = {
    "entries": [
        {
            "knowledge_type": "mistake",
            "speaker": "host",
            "content": "Discounting in the first call anchors the client low",
            "tags": ["Pricing"],
            "suggested_topics": ["Pricing Strategy"],
            "quality_score": 4,
        },
        {
            "knowledge_type": "how_to",
            "speaker": "host",
            "content": "Send the proposal within 24 hours, follow up on day 3",
            "tags": ["pricing", "Sales  Process"],
            "suggested_topics": ["Sales Process"],
        },
    ]
}

IDEAS = {
    "ideas": [
        {
            "title": "Stop discounting on the first call",
            "core_insight": "Discounting early anchors the client low",
            "content_type": "story",
            "post_ready": True,
        }
    ]
}


def _service(store, llm, embeddings=None, idea_extractor=None, classifier=None):
    extractor = KnowledgeExtractor(
        llm=llm,
        normalizer=TopicNormalizer(store),
        config=ExtractorConfig(batch_size=10, batch_delay_seconds=0),
    )
    return KnowledgeIngestionService(
        store,
        extractor,
        embeddings=embeddings,
        idea_extractor=idea_extractor,
        classifier=classifier,
    )


async def _entry(store, tags, source_id=None, embedding=None):
    [entry] = await store.insert_entries([
        KnowledgeEntry(
            owner_id=OWNER,
            knowledge_type=KnowledgeType.INSIGHT,
            content="Anchor high",
            tags=list(tags),
            source_id=source_id,
            embedding=embedding,
        )
    ])
    return entry


class TestIngest:
    """Tests for ingest_text and process_transcript."""

    @pytest.mark.asyncio
    async def test_ingest_end_to_end(self, store, make_llm, make_embeddings):
        service = _service(store, make_llm(EXTRACTION), make_embeddings(default=[1.0, 0.0]))

        result = await service.ingest_text(OWNER, TRANSCRIPT, title="Coaching call", team_id="team-1")

        assert result.entries_saved == 2
        assert result.tag_drift == []
        entries = await store.entries_for_source(result.source_id)
        assert {e.knowledge_type for e in entries} == {KnowledgeType.MISTAKE, KnowledgeType.HOW_TO}
        assert all(e.embedding == [1.0, 0.0] for e in entries)
        assert all(e.team_id == "team-1" for e in entries)
        assert all(e.source_id == result.source_id for e in entries)
        assert all(e.topics for e in entries)
        assert store.tags[(OWNER, "pricing")] == 2
        assert store.tags[(OWNER, "sales process")] == 1
        assert {t.slug for t in await store.list_topics(OWNER)} == {"pricing-strategy", "sales-process"}
        assert store.sources[result.source_id].knowledge_extracted_at is not None

    @pytest.mark.asyncio
    async def test_context_reaches_prompt(self, store, make_llm):
        llm = make_llm({"entries": []})
        source = store.add_source(SourceDocument(
            owner_id=OWNER,
            raw_text=TRANSCRIPT,
            title="Discovery call",
            transcript_type=TranscriptType.SALES,
            speaker_map={"Dana": {"role": "host"}},
        ))

        result = await _service(store, llm).process_transcript(OWNER, source.id)

        prompt = llm.complete.await_args.args[0]
        assert "Title: Discovery call" in prompt
        assert '"Dana" is the HOST' in prompt
        assert "SALES CALL" in prompt
        assert result.entries_saved == 0

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self, store, make_llm):
        llm = make_llm(EXTRACTION)

        with pytest.raises(ValidationError):
            await _service(store, llm).ingest_text(OWNER, "   ")

        assert store.sources == {}
        llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_source(self, store, make_llm):
        with pytest.raises(NotFoundError):
            await _service(store, make_llm(EXTRACTION)).process_transcript(OWNER, "missing")

    @pytest.mark.asyncio
    async def test_tag_failure_recorded_as_drift(self, store, make_llm):
        store.increment_tag = AsyncMock(side_effect=RuntimeError("connection reset"))

        result = await _service(store, make_llm(EXTRACTION)).ingest_text(OWNER, TRANSCRIPT)

        assert result.entries_saved == 2
        assert result.tag_drift == ["pricing", "sales process"]
        assert store.sources[result.source_id].knowledge_extracted_at is not None


class TestRepeatedProcessing:
    """Running process_transcript again for the same source."""

    @pytest.mark.asyncio
    async def test_second_run_changes_nothing(self, store, make_llm):
        llm = make_llm(EXTRACTION)
        source = store.add_source(SourceDocument(owner_id=OWNER, raw_text=TRANSCRIPT))
        service = _service(store, llm)

        first = await service.process_transcript(OWNER, source.id)
        second = await service.process_transcript(OWNER, source.id)

        assert first.entries_saved == 2
        assert second.entries_saved == 0
        assert second.stages_already_done == ["knowledge"]
        assert len(store.entries) == 2
        assert store.tags[(OWNER, "pricing")] == 2
        topics = {t.slug: t.usage_count for t in await store.list_topics(OWNER)}
        assert topics == {"pricing-strategy": 1, "sales-process": 1}
        assert llm.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_interrupted_run_leftovers_replaced(self, store, make_llm):
        source = store.add_source(SourceDocument(owner_id=OWNER, raw_text=TRANSCRIPT))
        await _entry(store, ["pricing"], source_id=source.id)
        store.tags[(OWNER, "pricing")] = 1

        result = await _service(store, make_llm(EXTRACTION)).process_transcript(OWNER, source.id)

        assert result.entries_deleted == 1
        assert result.entries_saved == 2
        assert len(await store.entries_for_source(source.id)) == 2
        assert store.tags[(OWNER, "pricing")] == 2

    @pytest.mark.asyncio
    async def test_concurrent_ingestion_keeps_counts(self, store, make_llm):
        service = _service(store, make_llm(EXTRACTION))

        results = await asyncio.gather(*[service.ingest_text(OWNER, TRANSCRIPT) for _ in range(10)])

        assert sum(r.entries_saved for r in results) == 20
        assert store.tags[(OWNER, "pricing")] == 20
        assert store.tags[(OWNER, "sales process")] == 10
        topics = {t.slug: t.usage_count for t in await store.list_topics(OWNER)}
        assert topics == {"pricing-strategy": 10, "sales-process": 10}


class TestClassification:
    """Transcript type classification during processing."""

    @pytest.mark.asyncio
    async def test_unclassified_transcript_is_classified(self, store, make_llm):
        llm = make_llm({"entries": []})
        classifier = TranscriptClassifier(make_llm({"transcript_type": "sales"}))
        source = store.add_source(SourceDocument(owner_id=OWNER, raw_text=TRANSCRIPT))

        result = await _service(store, llm, classifier=classifier).process_transcript(OWNER, source.id)

        assert result.transcript_type == TranscriptType.SALES
        assert store.sources[source.id].transcript_type == TranscriptType.SALES
        assert "SALES CALL" in llm.complete.await_args.args[0]
        assert "classify" not in result.skipped_stages

    @pytest.mark.asyncio
    async def test_classifier_failure_falls_back_to_coaching(self, store, make_llm):
        llm = make_llm({"entries": []})
        classifier = TranscriptClassifier(make_llm(ExternalServiceError("llm", "HTTP 503")))
        source = store.add_source(SourceDocument(owner_id=OWNER, raw_text=TRANSCRIPT))

        result = await _service(store, llm, classifier=classifier).process_transcript(OWNER, source.id)

        assert result.transcript_type == TranscriptType.COACHING
        assert "classify" in result.skipped_stages
        assert store.sources[source.id].transcript_type is None
        assert "GROUP COACHING CALL" in llm.complete.await_args.args[0]

    @pytest.mark.asyncio
    async def test_known_type_not_reclassified(self, store, make_llm):
        classifier_llm = make_llm({"transcript_type": "coaching"})
        source = store.add_source(SourceDocument(
            owner_id=OWNER,
            raw_text=TRANSCRIPT,
            transcript_type=TranscriptType.SALES,
        ))

        result = await _service(
            store,
            make_llm({"entries": []}),
            classifier=TranscriptClassifier(classifier_llm),
        ).process_transcript(OWNER, source.id)

        assert result.transcript_type == TranscriptType.SALES
        classifier_llm.complete.assert_not_awaited()


class TestIdeaStage:
    """Content idea extraction during processing."""

    @pytest.mark.asyncio
    async def test_ideas_saved(self, store, make_llm):
        source = store.add_source(SourceDocument(owner_id=OWNER, raw_text=TRANSCRIPT))
        service = _service(store, make_llm(EXTRACTION), idea_extractor=IdeaExtractor(make_llm(IDEAS)))

        result = await service.process_transcript(OWNER, source.id)

        assert result.ideas_saved == 1
        assert result.post_ready_ideas == 1
        assert result.skipped_stages == ["classify"]
        [idea] = store.ideas.values()
        assert idea.title == "Stop discounting on the first call"
        assert idea.status == "extracted"
        assert idea.source_id == source.id
        assert store.sources[source.id].ideas_extracted_at is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", ["not json", ExternalServiceError("llm", "HTTP 503")])
    async def test_idea_failure_is_skipped_stage(self, store, make_llm, response):
        source = store.add_source(SourceDocument(owner_id=OWNER, raw_text=TRANSCRIPT))
        service = _service(store, make_llm(EXTRACTION), idea_extractor=IdeaExtractor(make_llm(response)))

        result = await service.process_transcript(OWNER, source.id)

        assert "ideas" in result.skipped_stages
        assert result.entries_saved == 2
        assert store.ideas == {}
        assert store.sources[source.id].ideas_extracted_at is None

    @pytest.mark.asyncio
    async def test_failed_idea_stage_rerun_alone(self, store, make_llm):
        knowledge_llm = make_llm(EXTRACTION)
        source = store.add_source(SourceDocument(owner_id=OWNER, raw_text=TRANSCRIPT))
        await _service(store, knowledge_llm, idea_extractor=IdeaExtractor(make_llm("not json"))) \
            .process_transcript(OWNER, source.id)

        result = await _service(store, knowledge_llm, idea_extractor=IdeaExtractor(make_llm(IDEAS))) \
            .process_transcript(OWNER, source.id)

        assert result.stages_already_done == ["knowledge"]
        assert result.ideas_saved == 1
        assert len(store.entries) == 2
        assert knowledge_llm.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_reprocess_replaces_ideas(self, store, make_llm):
        extracted_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        source = store.add_source(SourceDocument(
            owner_id=OWNER,
            raw_text=TRANSCRIPT,
            knowledge_extracted_at=extracted_at,
            ideas_extracted_at=extracted_at,
        ))
        await store.insert_ideas([ContentIdea(owner_id=OWNER, title="Old idea", source_id=source.id)])
        service = _service(store, make_llm(EXTRACTION), idea_extractor=IdeaExtractor(make_llm(IDEAS)))

        result = await service.reprocess_transcript(OWNER, source.id)

        assert result.ideas_deleted == 1
        assert result.ideas_saved == 1
        assert [i.title for i in store.ideas.values()] == ["Stop discounting on the first call"]
        assert store.sources[source.id].ideas_extracted_at > extracted_at


class TestReprocess:
    """Tests for reprocess_transcript."""

    @pytest.mark.asyncio
    async def test_reprocess_replaces_derived_knowledge(self, store):
        source = store.add_source(SourceDocument(
            owner_id=OWNER,
            raw_text=TRANSCRIPT,
            knowledge_extracted_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        ))
        await _entry(store, ["pricing", "negotiation"], source_id=source.id)
        await _entry(store, ["pricing"], source_id=source.id)
        for _ in range(3):
            await _entry(store, [], source_id=source.id)
        await _entry(store, ["pricing"], source_id="other-source")
        await store.insert_ideas([ContentIdea(owner_id=OWNER, title="Old idea", source_id=source.id)])
        store.tags[(OWNER, "pricing")] = 5
        store.tags[(OWNER, "negotiation")] = 3

        seen = {}

        async def complete(prompt, **kwargs):
            seen["pricing"] = store.tags[(OWNER, "pricing")]
            seen["negotiation"] = store.tags[(OWNER, "negotiation")]
            seen["entries"] = len(await store.entries_for_source(source.id))
            hits = await KnowledgeBrain(store).search(
                "Anchor high",
                OwnerScope(OWNER),
                filters=SearchFilters(source_id=source.id),
            )
            seen["search"] = len(hits)
            seen["extracted_at"] = store.sources[source.id].knowledge_extracted_at
            return json.dumps({"entries": [{"knowledge_type": "insight", "content": "New insight", "tags": ["pricing"]}]})

        llm = MagicMock()
        llm.complete = AsyncMock(side_effect=complete)

        result = await _service(store, llm).reprocess_transcript(OWNER, source.id)

        assert seen == {"pricing": 3, "negotiation": 2, "entries": 0, "search": 0, "extracted_at": None}
        assert result.entries_deleted == 5
        assert result.ideas_deleted == 1
        assert result.tags_decremented == {"pricing": 2, "negotiation": 1}
        assert result.entries_saved == 1
        assert result.tag_drift == []
        assert store.tags[(OWNER, "pricing")] == 4
        assert len(await store.entries_for_source("other-source")) == 1
        assert store.sources[source.id].knowledge_extracted_at is not None

    @pytest.mark.asyncio
    async def test_refuses_while_processing(self, store, make_llm):
        source = store.add_source(SourceDocument(owner_id=OWNER, raw_text=TRANSCRIPT))
        llm = make_llm(EXTRACTION)

        with pytest.raises(ValidationError, match="currently being processed"):
            await _service(store, llm).reprocess_transcript(OWNER, source.id)

        llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_source(self, store, make_llm):
        with pytest.raises(NotFoundError):
            await _service(store, make_llm(EXTRACTION)).reprocess_transcript(OWNER, "missing")


class TestEntryMaintenance:
    """Tests for update_entry and delete_entry."""

    @pytest.mark.asyncio
    async def test_update_applies_tag_diff_and_reembeds(self, store, make_llm, make_embeddings):
        embeddings = make_embeddings(default=[0.5, 0.5])
        entry = await _entry(store, ["pricing", "negotiation"], embedding=[1.0, 0.0])
        store.tags[(OWNER, "pricing")] = 2
        store.tags[(OWNER, "negotiation")] = 1
        service = _service(store, make_llm(EXTRACTION), embeddings)

        updated = await service.update_entry(
            OWNER,
            entry.id,
            content="  Anchor high, then stay quiet  ",
            tags=["Pricing", "closing"],
        )

        assert updated.content == "Anchor high, then stay quiet"
        assert updated.tags == ["pricing", "closing"]
        assert updated.embedding == [0.5, 0.5]
        assert updated.updated_at is not None
        embeddings.embed.assert_awaited_once_with("insight: Anchor high, then stay quiet")
        assert store.tags[(OWNER, "pricing")] == 2
        assert store.tags[(OWNER, "negotiation")] == 0
        assert store.tags[(OWNER, "closing")] == 1

    @pytest.mark.asyncio
    async def test_type_change_derives_category(self, store, make_llm):
        entry = await _entry(store, [])

        updated = await _service(store, make_llm(EXTRACTION)).update_entry(OWNER, entry.id, knowledge_type="objection")

        assert updated.knowledge_type == KnowledgeType.OBJECTION
        assert updated.category == KnowledgeCategory.QUESTION

    @pytest.mark.asyncio
    async def test_quality_clamped_without_reembedding(self, store, make_llm, make_embeddings):
        embeddings = make_embeddings(default=[0.5, 0.5])
        entry = await _entry(store, [], embedding=[1.0, 0.0])

        updated = await _service(store, make_llm(EXTRACTION), embeddings).update_entry(
            OWNER, entry.id, quality_score=9
        )

        assert updated.quality_score == 5
        assert updated.embedding == [1.0, 0.0]
        embeddings.embed.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs,message", [
        ({"knowledge_type": "rumor"}, "Unknown knowledge type"),
        ({"category": "gossip"}, "Unknown category"),
        ({"content": "   "}, "cannot be empty"),
    ])
    async def test_invalid_update(self, store, make_llm, kwargs, message):
        entry = await _entry(store, [])

        with pytest.raises(ValidationError, match=message):
            await _service(store, make_llm(EXTRACTION)).update_entry(OWNER, entry.id, **kwargs)

    @pytest.mark.asyncio
    async def test_update_missing_entry(self, store, make_llm):
        with pytest.raises(NotFoundError):
            await _service(store, make_llm(EXTRACTION)).update_entry(OWNER, "missing", content="x")

    @pytest.mark.asyncio
    async def test_delete_decrements_tags(self, store, make_llm):
        entry = await _entry(store, ["pricing", "negotiation"])
        store.tags[(OWNER, "pricing")] = 3
        store.tags[(OWNER, "negotiation")] = 1

        await _service(store, make_llm(EXTRACTION)).delete_entry(OWNER, entry.id)

        assert await store.get_entry(OWNER, entry.id) is None
        assert store.tags[(OWNER, "pricing")] == 2
        assert store.tags[(OWNER, "negotiation")] == 0

    @pytest.mark.asyncio
    async def test_delete_other_owners_entry(self, store, make_llm):
        entry = await _entry(store, ["pricing"])

        with pytest.raises(NotFoundError):
            await _service(store, make_llm(EXTRACTION)).delete_entry("user-2", entry.id)

        assert await store.get_entry(OWNER, entry.id) is not None
