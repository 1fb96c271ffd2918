"""
Knowledge extraction from call transcripts.

Splits a transcript into candidate segments, classifies them in batches
with the language model and validates every returned item against the
closed enums before it becomes a KnowledgeEntry.
"""

import asyncio
import logging
import re
from time import perf_counter
from typing import Any, Optional

from src.brain.base import (
    CATEGORY_BY_TYPE,
    Actionability,
    ExtractionResult,
    KnowledgeEntry,
    KnowledgeType,
    Speaker,
    TranscriptType,
    clamp_quality,
)
from src.brain.config import ExtractorConfig
from src.brain.errors import ValidationError
from src.brain.llm import LLMClient, parse_json_response
from src.brain.topics import TopicNormalizer, slugify

logger = logging.getLogger(__name__)


COACHING_GUIDANCE = """This is a GROUP COACHING CALL where the host teaches. Focus on:
- Methods, frameworks, principles, strategies, tactical advice, stories with lessons
- What participants ask or push back on (reveals what the audience struggles with)
- Mentions of the product, what it does, what's missing"""

SALES_GUIDANCE = """This is a SALES CALL between a sales rep and a prospect. Focus on:
- Prospect questions, objections, pain points, concerns
- Feature requests, gaps, competitor comparisons, what resonated
- Anything the rep explains well about the approach or value proposition"""

EXTRACTION_PROMPT = """You mine call transcripts for business-valuable knowledge.

{context}

{guidance}

Below are {count} numbered transcript segments. Extract every piece of
valuable knowledge they contain. For each entry provide:

- knowledge_type: one of
    how_to (process, method or steps someone can follow),
    insight (principle, framework, mental model),
    story (specific example with an outcome),
    question (something asked, plus the answer if given),
    objection (pushback and how it was handled),
    mistake (something that went wrong, a lesson from failure),
    decision (a choice between alternatives, with the reasoning),
    market_intel (competitors, market trends, pricing, industry shifts)
- speaker: host | participant | unknown
- content: the knowledge, written to stand on its own
- context: 1-2 sentences on what prompted it
- tags: 2-5 specific lowercase tags
- suggested_topics: 1-3 broad topic labels (e.g. "Cold Email", "Sales Objections")
- quality_score: 1-5 (5 = specific, actionable, concrete numbers, novel; 1 = filler)
- specificity: true if it contains concrete details (numbers, names, timeframes)
- actionability: immediately_actionable | contextual | theoretical
- segment: number of the segment it came from

Skip small talk and logistics. Preserve specific numbers, names and examples.

SEGMENTS:
---
{segments}
---

Return JSON:
{{
    "entries": [
        {{
            "knowledge_type": "how_to|insight|story|question|objection|mistake|decision|market_intel",
            "speaker": "host|participant|unknown",
            "content": "Standalone knowledge",
            "context": "What prompted this",
            "tags": ["specific", "tags"],
            "suggested_topics": ["Cold Email"],
            "quality_score": 4,
            "specificity": true,
            "actionability": "immediately_actionable|contextual|theoretical",
            "segment": 1
        }}
    ]
}}"""


_SPEAKER_TURN = re.compile(r"^\s*(?:\[[^\]]*\]\s*)?[A-Z][\w .'-]{0,40}:\s")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def segment_text(text: str, max_chars: int = 1500) -> list[str]:
    """
    Split a transcript into candidate segments.

    Paragraphs and speaker turns start new segments; consecutive short
    lines are merged and anything longer than `max_chars` is split on
    sentence boundaries (hard-cut as a last resort).
    """
    if not text or not text.strip():
        return []

    blocks: list[str] = []
    current: list[str] = []
    for line in text.splitlines():
        if not line.strip():
            if current:
                blocks.append(" ".join(current))
                current = []
            continue
        if _SPEAKER_TURN.match(line) and current and sum(len(c) for c in current) > max_chars // 3:
            blocks.append(" ".join(current))
            current = []
        current.append(line.strip())
    if current:
        blocks.append(" ".join(current))

    segments: list[str] = []
    for block in blocks:
        if len(block) <= max_chars:
            segments.append(block)
            continue
        chunk = ""
        for sentence in _SENTENCE_END.split(block):
            while len(sentence) > max_chars:
                if chunk:
                    segments.append(chunk)
                    chunk = ""
                segments.append(sentence[:max_chars])
                sentence = sentence[max_chars:]
            if chunk and len(chunk) + 1 + len(sentence) > max_chars:
                segments.append(chunk)
                chunk = sentence
            else:
                chunk = f"{chunk} {sentence}".strip()
        if chunk:
            segments.append(chunk)

    return [s for s in segments if s.strip()]


def build_context(context: Optional[dict]) -> str:
    """Render title, participants, date and speaker map for the prompt."""
    if not context:
        return "No additional context"

    parts = []
    if context.get("title"):
        parts.append(f"Title: {context['title']}")
    if context.get("participants"):
        parts.append(f"Participants: {', '.join(context['participants'])}")
    if context.get("call_date"):
        parts.append(f"Date: {context['call_date']}")

    speaker_map = context.get("speaker_map") or {}
    lines = []
    for name, info in speaker_map.items():
        info = info or {}
        role = info.get("role", "unknown")
        company = info.get("company")
        if role == "unknown" and not company:
            continue
        line = f'- "{name}"'
        if role == "host":
            line += " is the HOST"
        elif role in ("client", "guest"):
            line += f" is a {role.upper()}"
        if company:
            line += f" from {company}"
        lines.append(line)
    if lines:
        parts.append("Speaker context:\n" + "\n".join(lines))
        parts.append(
            'Use speaker "host" for the host\'s statements and "participant" for '
            "clients and guests. Attribute each insight to the person who said it."
        )

    return "\n".join(parts) if parts else "No additional context"


def _clean_tags(raw: Any, max_tags: int) -> list[str]:
    if not isinstance(raw, list):
        return []
    tags = []
    for tag in raw:
        if not isinstance(tag, str):
            continue
        tag = " ".join(tag.lower().split())
        if tag and tag not in tags:
            tags.append(tag)
    return tags[:max_tags]


def validate_item(
    item: Any,
    owner_id: str,
    source_id: Optional[str] = None,
    max_tags: int = 5,
) -> KnowledgeEntry:
    """
    Turn one model-returned item into a KnowledgeEntry.

    Raises:
        ValidationError: item is not an object, has no content, or its
            knowledge_type is outside the closed set.
    """
    if not isinstance(item, dict):
        raise ValidationError("extraction item is not an object")

    raw_type = str(item.get("knowledge_type") or "").strip().lower()
    try:
        knowledge_type = KnowledgeType(raw_type)
    except ValueError:
        raise ValidationError(f"Unknown knowledge type: {raw_type or '<missing>'}")

    content = item.get("content")
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("extraction item has no content")

    try:
        speaker = Speaker(str(item.get("speaker") or "").lower())
    except ValueError:
        speaker = Speaker.UNKNOWN

    try:
        actionability = Actionability(str(item.get("actionability") or "").lower())
    except ValueError:
        actionability = Actionability.CONTEXTUAL

    context = item.get("context")
    specificity = item.get("specificity")

    return KnowledgeEntry(
        owner_id=owner_id,
        source_id=source_id,
        knowledge_type=knowledge_type,
        category=CATEGORY_BY_TYPE[knowledge_type],
        speaker=speaker,
        content=content.strip(),
        context=context.strip() if isinstance(context, str) and context.strip() else None,
        tags=_clean_tags(item.get("tags"), max_tags),
        quality_score=clamp_quality(item.get("quality_score")),
        specificity=specificity is True or str(specificity).lower() == "true",
        actionability=actionability,
    )


class KnowledgeExtractor:
    """
    Extracts classified knowledge entries from transcript text.

    Batches run one after another with a delay in between so a long
    transcript never bursts the model provider's rate limit.

    Usage:
        extractor = KnowledgeExtractor(LLMClient(), normalizer=TopicNormalizer(store))
        result = await extractor.extract(transcript, owner_id="user-1")
        for entry in result.entries:
            ...
    """

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        normalizer: Optional[TopicNormalizer] = None,
        config: Optional[ExtractorConfig] = None,
        sleep=asyncio.sleep,
    ):
        self.llm = llm or LLMClient()
        self.normalizer = normalizer
        self.config = config or ExtractorConfig()
        self._sleep = sleep

    async def extract(
        self,
        raw_text: str,
        owner_id: str,
        source_id: Optional[str] = None,
        transcript_type: Optional[TranscriptType] = None,
        context: Optional[dict] = None,
    ) -> ExtractionResult:
        """
        Extract knowledge from plain text.

        Args:
            raw_text: Transcript or other plain text
            owner_id: Owner of the resulting entries
            source_id: Source document the entries link back to
            transcript_type: Coaching or sales, shapes the prompt focus
            context: Optional title, participants, call_date and speaker_map

        Returns:
            ExtractionResult with validated entries. Items that fail
            validation are counted in items_skipped.

        Raises:
            ExternalServiceError: the model provider failed; the job layer
                retries the whole extraction.
        """
        start_time = perf_counter()

        if not raw_text or not raw_text.strip():
            return ExtractionResult(
                owner_id=owner_id,
                source_id=source_id,
                error="No content to extract from",
            )

        text = raw_text[: self.config.max_transcript_chars]
        segments = segment_text(text, self.config.segment_max_chars)
        batch_size = max(1, self.config.batch_size)
        batches = [segments[i:i + batch_size] for i in range(0, len(segments), batch_size)]

        guidance = SALES_GUIDANCE if transcript_type == TranscriptType.SALES else COACHING_GUIDANCE
        context_str = build_context(context)

        result = ExtractionResult(owner_id=owner_id, source_id=source_id)

        for index, batch in enumerate(batches):
            if index > 0 and self.config.batch_delay_seconds > 0:
                await self._sleep(self.config.batch_delay_seconds)

            items = await self._classify_batch(batch, guidance, context_str)
            result.batches_processed += 1
            if items is None:
                result.items_skipped += 1
                continue

            for item in items:
                try:
                    entry = validate_item(item, owner_id, source_id, self.config.max_tags)
                except ValidationError as e:
                    logger.warning(f"Skipping extraction item: {e.message}")
                    result.items_skipped += 1
                    continue

                entry.topics = await self._resolve_topics(item, entry, owner_id)
                result.entries.append(entry)

        result.items_extracted = len(result.entries)
        result.execution_time_ms = int((perf_counter() - start_time) * 1000)
        logger.info(
            f"Extracted {result.items_extracted} entries from {len(segments)} segments "
            f"in {result.batches_processed} batches ({result.items_skipped} skipped)"
        )
        return result

    async def _classify_batch(
        self,
        segments: list[str],
        guidance: str,
        context_str: str,
    ) -> Optional[list]:
        """Raw items for one batch, or None when the response is unreadable."""
        numbered = "\n\n".join(f"[{i + 1}] {segment}" for i, segment in enumerate(segments))
        prompt = EXTRACTION_PROMPT.format(
            context=context_str,
            guidance=guidance,
            count=len(segments),
            segments=numbered,
        )

        response = await self.llm.complete(prompt, max_tokens=self.config.max_tokens)
        parsed = parse_json_response(response)
        if not parsed.ok:
            logger.error(f"Failed to parse extraction batch: {parsed.error}")
            return None

        data = parsed.data
        if isinstance(data, dict):
            data = data.get("entries", [])
        if not isinstance(data, list):
            logger.error("Extraction batch returned no entries list")
            return None
        return data

    async def _resolve_topics(self, item: dict, entry: KnowledgeEntry, owner_id: str) -> list[str]:
        suggestions = item.get("suggested_topics") or []
        if not isinstance(suggestions, list):
            return []
        suggestions = [s for s in suggestions if isinstance(s, str)]

        if self.normalizer is not None:
            return await self.normalizer.normalize(suggestions, entry.content, owner_id)

        slugs = []
        for suggestion in suggestions:
            slug = slugify(suggestion)
            if slug and slug not in slugs:
                slugs.append(slug)
        return slugs[:3]


CLASSIFY_PROMPT = """Classify this call transcript as one of:

- coaching: a host teaches a client or a group (coaching call, workshop, office hours, mastermind)
- sales: a rep talks with a prospect about buying something (discovery, demo, closing call)

TRANSCRIPT (excerpt):
---
{excerpt}
---

Return JSON: {{"transcript_type": "coaching|sales"}}"""


def parse_transcript_type(response: Optional[str]) -> Optional[TranscriptType]:
    """TranscriptType named by a classifier response, or None when unreadable."""
    parsed = parse_json_response(response, expect=dict)
    raw = parsed.data.get("transcript_type") if parsed.ok else response
    try:
        return TranscriptType(str(raw or "").strip().strip('".').lower())
    except ValueError:
        return None


class TranscriptClassifier:
    """
    Decides whether a transcript came from a coaching or a sales call.

    An unreadable answer falls back to coaching. Provider failures
    propagate to the caller.
    """

    def __init__(self, llm: Optional[LLMClient] = None, config: Optional[ExtractorConfig] = None):
        self.llm = llm or LLMClient()
        self.config = config or ExtractorConfig()

    async def classify(self, raw_text: str) -> TranscriptType:
        excerpt = raw_text[: self.config.classify_sample_chars]
        response = await self.llm.complete(CLASSIFY_PROMPT.format(excerpt=excerpt), max_tokens=50)

        transcript_type = parse_transcript_type(response)
        if transcript_type is None:
            logger.warning(f"Unreadable transcript classification, using coaching: {str(response)[:80]}")
            return TranscriptType.COACHING
        return transcript_type
