"""
Knowledge Ingestion Service - Main orchestrator.

Runs a transcript through classification, knowledge extraction and idea
extraction, then embeds and persists the results. Tag accounting is best
effort: a failed counter update is logged as drift and never fails the
ingestion.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from src.brain.base import (
    CATEGORY_BY_TYPE,
    ExtractionResult,
    KnowledgeCategory,
    KnowledgeEntry,
    KnowledgeType,
    SourceDocument,
    TranscriptType,
    clamp_quality,
    utcnow,
)
from src.brain.embeddings import EmbeddingClient
from src.brain.errors import BrainError, ConsistencyError, NotFoundError, ValidationError
from src.brain.extraction import KnowledgeExtractor, TranscriptClassifier
from src.brain.idea_extraction import IdeaExtractor
from src.brain.retrieval import embedding_text
from src.brain.store import BrainStore

logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    """Outcome of processing or reprocessing one source document."""

    source_id: str
    extraction: ExtractionResult
    transcript_type: Optional[TranscriptType] = None
    entries_saved: int = 0
    entries_deleted: int = 0
    ideas_deleted: int = 0
    tags_decremented: dict[str, int] = field(default_factory=dict)
    tag_drift: list[str] = field(default_factory=list)
    ideas_saved: int = 0
    post_ready_ideas: int = 0
    skipped_stages: list[str] = field(default_factory=list)
    stages_already_done: list[str] = field(default_factory=list)


def _clean_tags(tags: list[str]) -> list[str]:
    cleaned = []
    for tag in tags:
        tag = " ".join(str(tag).lower().split())
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


class KnowledgeIngestionService:
    """
    Main service for knowledge ingestion and maintenance.

    Usage:
        service = KnowledgeIngestionService(
            store,
            extractor,
            embeddings=EmbeddingClient(),
            idea_extractor=IdeaExtractor(llm),
            classifier=TranscriptClassifier(llm),
        )

        # Ingest a new transcript
        result = await service.ingest_text("user-1", transcript, title="Coaching call")

        # Re-run extraction for an existing transcript
        result = await service.reprocess_transcript("user-1", source_id)

        # Manual edits keep tags and embeddings consistent
        await service.update_entry("user-1", entry_id, content="...", tags=["pricing"])
    """

    def __init__(
        self,
        store: BrainStore,
        extractor: KnowledgeExtractor,
        embeddings: Optional[EmbeddingClient] = None,
        idea_extractor: Optional[IdeaExtractor] = None,
        classifier: Optional[TranscriptClassifier] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.embeddings = embeddings
        self.idea_extractor = idea_extractor
        self.classifier = classifier

    # =========================================================================
    # INGESTION
    # =========================================================================

    async def ingest_text(
        self,
        owner_id: str,
        raw_text: str,
        title: Optional[str] = None,
        transcript_type: Optional[TranscriptType] = None,
        participants: Optional[list[str]] = None,
        team_id: Optional[str] = None,
    ) -> ProcessingResult:
        """Store a new source document and process it."""
        if not raw_text or not raw_text.strip():
            raise ValidationError("Transcript has no content")

        source = await self.store.insert_source(
            SourceDocument(
                owner_id=owner_id,
                raw_text=raw_text,
                title=title,
                participants=participants or [],
                transcript_type=transcript_type,
                team_id=team_id,
            )
        )
        return await self.process_transcript(owner_id, source.id)

    async def process_transcript(self, owner_id: str, source_id: str) -> ProcessingResult:
        """
        Classify a source document, then extract its knowledge and ideas.

        Safe to run again for the same source. A stage whose timestamp is
        already set is skipped, and leftovers of an interrupted stage are
        removed before it runs again. Classification and idea extraction
        are best effort: their failures are reported in skipped_stages.

        Raises:
            NotFoundError: the source document does not exist for this owner.
            ValidationError: the source document has no text.
            ExternalServiceError: the model provider failed during knowledge
                extraction.
        """
        source = await self.store.get_source(owner_id, source_id)
        if source is None:
            raise NotFoundError("transcript", source_id)
        if not source.raw_text.strip():
            raise ValidationError("Transcript has no content")

        result = ProcessingResult(
            source_id=source.id,
            extraction=ExtractionResult(owner_id=owner_id, source_id=source.id),
        )
        context = {
            "title": source.title,
            "participants": source.participants,
            "call_date": source.call_date,
            "speaker_map": source.speaker_map,
        }

        result.transcript_type = source.transcript_type or await self._classify(source, result)

        if source.knowledge_extracted_at is not None:
            result.stages_already_done.append("knowledge")
        else:
            await self._extract_knowledge(source, result.transcript_type, context, result)

        if source.ideas_extracted_at is not None:
            result.stages_already_done.append("ideas")
        elif self.idea_extractor is None:
            result.skipped_stages.append("ideas")
        else:
            await self._extract_ideas(source, context, result)

        if result.stages_already_done:
            logger.info(f"Transcript {source.id} already processed: {', '.join(result.stages_already_done)}")
        return result

    async def _classify(self, source: SourceDocument, result: ProcessingResult) -> TranscriptType:
        if self.classifier is None:
            result.skipped_stages.append("classify")
            return TranscriptType.COACHING
        try:
            transcript_type = await self.classifier.classify(source.raw_text)
        except BrainError as e:
            logger.warning(f"Classification failed for transcript {source.id}, using coaching: {e}")
            result.skipped_stages.append("classify")
            return TranscriptType.COACHING

        await self.store.update_source(source.id, {"transcript_type": transcript_type})
        logger.info(f"Classified transcript {source.id} as {transcript_type.value}")
        return transcript_type

    async def _extract_knowledge(
        self,
        source: SourceDocument,
        transcript_type: TranscriptType,
        context: dict,
        result: ProcessingResult,
    ) -> None:
        leftovers = await self.store.entries_for_source(source.id)
        if leftovers:
            counts = Counter(tag for entry in leftovers for tag in entry.tags)
            result.entries_deleted = await self.store.delete_entries_for_source(source.id)
            result.tag_drift += await self._adjust_tags(source.owner_id, counts, increment=False)
            logger.warning(f"Removed {result.entries_deleted} entries left by an interrupted run of {source.id}")

        extraction = await self.extractor.extract(
            source.raw_text,
            source.owner_id,
            source_id=source.id,
            transcript_type=transcript_type,
            context=context,
        )
        if extraction.error:
            raise ValidationError(extraction.error)

        for entry in extraction.entries:
            entry.team_id = source.team_id
            await self._embed(entry)

        saved = await self.store.insert_entries(extraction.entries)

        counts = Counter(tag for entry in saved for tag in entry.tags)
        result.tag_drift += await self._adjust_tags(source.owner_id, counts, increment=True)

        await self.store.update_source(source.id, {"knowledge_extracted_at": utcnow()})
        logger.info(f"Saved {len(saved)} knowledge entries for transcript {source.id}")

        result.extraction = extraction
        result.entries_saved = len(saved)

    async def _extract_ideas(self, source: SourceDocument, context: dict, result: ProcessingResult) -> None:
        try:
            extracted = await self.idea_extractor.extract(
                source.raw_text,
                source.owner_id,
                source_id=source.id,
                context=context,
            )
        except BrainError as e:
            logger.warning(f"Idea extraction failed for transcript {source.id}: {e}")
            result.skipped_stages.append("ideas")
            return
        if extracted.error:
            result.skipped_stages.append("ideas")
            return

        leftovers = await self.store.delete_ideas_for_source(source.id)
        if leftovers:
            logger.warning(f"Removed {leftovers} ideas left by an interrupted run of {source.id}")

        saved = await self.store.insert_ideas(extracted.ideas)
        await self.store.update_source(source.id, {"ideas_extracted_at": utcnow()})
        logger.info(f"Saved {len(saved)} content ideas for transcript {source.id}")

        result.ideas_saved = len(saved)
        result.post_ready_ideas = extracted.post_ready_count

    async def reprocess_transcript(self, owner_id: str, source_id: str) -> ProcessingResult:
        """
        Delete a transcript's derived knowledge and extract it again.

        Steps: snapshot tags, delete entries and ideas, decrement tag
        counts, clear extraction timestamps, re-run extraction. The steps
        are not atomic with each other; tag counts may drift.

        Raises:
            NotFoundError: unknown source document.
            ValidationError: the transcript has never finished processing.
        """
        source = await self.store.get_source(owner_id, source_id)
        if source is None:
            raise NotFoundError("transcript", source_id)
        if source.knowledge_extracted_at is None and source.ideas_extracted_at is None:
            raise ValidationError("Transcript is currently being processed")

        existing = await self.store.entries_for_source(source.id)
        counts = Counter(tag for entry in existing for tag in entry.tags)

        deleted = await self.store.delete_entries_for_source(source.id)
        ideas_deleted = await self.store.delete_ideas_for_source(source.id)
        drift = await self._adjust_tags(owner_id, counts, increment=False)

        await self.store.update_source(
            source.id,
            {"knowledge_extracted_at": None, "ideas_extracted_at": None},
        )
        logger.info(
            f"Reprocessing transcript {source.id}: removed {deleted} entries, "
            f"{ideas_deleted} ideas, {len(counts)} tags"
        )

        result = await self.process_transcript(owner_id, source.id)
        result.entries_deleted = deleted
        result.ideas_deleted = ideas_deleted
        result.tags_decremented = dict(counts)
        result.tag_drift = drift + result.tag_drift
        return result

    # =========================================================================
    # ENTRY MAINTENANCE
    # =========================================================================

    async def update_entry(
        self,
        owner_id: str,
        entry_id: str,
        content: Optional[str] = None,
        context: Optional[str] = None,
        knowledge_type: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[list[str]] = None,
        quality_score: Optional[int] = None,
    ) -> KnowledgeEntry:
        """
        Apply a manual edit.

        Tag counts follow the tag diff; the embedding is regenerated when
        content or context changes.
        """
        entry = await self.store.get_entry(owner_id, entry_id)
        if entry is None:
            raise NotFoundError("knowledge entry", entry_id)

        fields: dict = {}
        if content is not None:
            if not content.strip():
                raise ValidationError("Entry content cannot be empty")
            fields["content"] = content.strip()
        if context is not None:
            fields["context"] = context.strip() or None

        if knowledge_type is not None:
            try:
                fields["knowledge_type"] = KnowledgeType(knowledge_type)
            except ValueError:
                raise ValidationError(f"Unknown knowledge type: {knowledge_type}")
            fields["category"] = CATEGORY_BY_TYPE[fields["knowledge_type"]]
        if category is not None:
            try:
                fields["category"] = KnowledgeCategory(category)
            except ValueError:
                raise ValidationError(f"Unknown category: {category}")

        if quality_score is not None:
            fields["quality_score"] = clamp_quality(quality_score)

        added: Counter = Counter()
        removed: Counter = Counter()
        if tags is not None:
            new_tags = _clean_tags(tags)
            added = Counter(t for t in new_tags if t not in entry.tags)
            removed = Counter(t for t in entry.tags if t not in new_tags)
            fields["tags"] = new_tags

        text_changed = (
            ("content" in fields and fields["content"] != entry.content)
            or ("context" in fields and fields["context"] != entry.context)
        )
        if text_changed and self.embeddings is not None:
            revised = KnowledgeEntry(
                owner_id=entry.owner_id,
                knowledge_type=fields.get("knowledge_type", entry.knowledge_type),
                category=fields.get("category", entry.category),
                content=fields.get("content", entry.content),
                context=fields.get("context", entry.context),
            )
            fields["embedding"] = await self.embeddings.embed(embedding_text(revised))

        if not fields:
            return entry

        fields["updated_at"] = utcnow()
        updated = await self.store.update_entry(owner_id, entry_id, fields)

        await self._adjust_tags(owner_id, added, increment=True)
        await self._adjust_tags(owner_id, removed, increment=False)
        return updated

    async def delete_entry(self, owner_id: str, entry_id: str) -> None:
        """Delete an entry and decrement its tags. Topic counts are left as they are."""
        entry = await self.store.get_entry(owner_id, entry_id)
        if entry is None:
            raise NotFoundError("knowledge entry", entry_id)
        await self.store.delete_entry(owner_id, entry_id)
        await self._adjust_tags(owner_id, Counter(entry.tags), increment=False)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _embed(self, entry: KnowledgeEntry) -> None:
        if self.embeddings is None:
            return
        entry.embedding = await self.embeddings.embed(embedding_text(entry))

    async def _adjust_tags(self, owner_id: str, counts: Counter, increment: bool) -> list[str]:
        """Apply tag count changes. Returns the tags whose update failed."""
        drift = []
        for tag, amount in sorted(counts.items()):
            if amount <= 0:
                continue
            try:
                if increment:
                    await self.store.increment_tag(owner_id, tag, amount)
                else:
                    await self.store.decrement_tag(owner_id, tag, amount)
            except Exception as e:
                error = ConsistencyError(
                    f"Tag count update failed for '{tag}'",
                    {"tag": tag, "amount": amount, "increment": increment, "cause": str(e)},
                )
                logger.warning(f"{error.message}: {e}")
                drift.append(tag)
        return drift
