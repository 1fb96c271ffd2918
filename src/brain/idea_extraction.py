"""
Content idea extraction.

Mines a transcript for post-worthy ideas. Every accepted idea enters the
idea workflow in the extracted state; items without a title are skipped.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from src.brain.base import ContentIdea
from src.brain.config import IdeaExtractorConfig
from src.brain.errors import ValidationError
from src.brain.extraction import build_context
from src.brain.ideas import IdeaStatus
from src.brain.llm import LLMClient, parse_json_response

logger = logging.getLogger(__name__)


CONTENT_TYPES = frozenset({
    "story", "insight", "tip", "framework", "case_study", "question", "listicle", "contrarian",
})

CONTENT_PILLARS = frozenset({
    "moments_that_matter", "teaching_promotion", "human_personal", "collaboration_social_proof",
})

IDEA_PROMPT = """You are a content strategist extracting post-worthy ideas from call transcripts.
Find every distinct idea with enough substance for a standalone LinkedIn post.

{context}

For each idea provide:
- title: working title (5-10 words)
- core_insight: 1-2 sentences with the actual takeaway
- full_context: everything needed to write the post: the story with setup,
  details and outcome; exact numbers and timeframes; the steps or mechanism;
  who it applies to; before vs after; mistakes; memorable phrasing
- why_post_worthy: what makes it interesting, counterintuitive or actionable
- content_type: story|insight|tip|framework|case_study|question|listicle|contrarian
- content_pillar: one of
    moments_that_matter (milestones, turning points, lessons from pivotal moments),
    teaching_promotion (how-tos, frameworks, tips, expertise),
    human_personal (personal stories, vulnerability, behind the scenes),
    collaboration_social_proof (client wins, case studies, partnerships)
- post_ready: true if the post could be written without inventing details

Only extract ideas with at least TWO of: a specific story or example, exact
numbers, a step-by-step process, a contrarian take with reasoning, a
before/after structure, a memorable analogy or framework. Skip generic
advice and opinions without evidence.

TRANSCRIPT:
---
{transcript}
---

Return JSON:
{{
    "ideas": [
        {{
            "title": "Working title",
            "core_insight": "The takeaway",
            "full_context": "Stories, numbers, process, quotes",
            "why_post_worthy": "Why it works as a post",
            "content_type": "story",
            "content_pillar": "teaching_promotion",
            "post_ready": true
        }}
    ]
}}"""


@dataclass
class IdeaExtractionResult:
    """Result of extracting content ideas from one transcript."""

    owner_id: str
    source_id: Optional[str] = None
    ideas: list[ContentIdea] = field(default_factory=list)
    items_skipped: int = 0
    error: Optional[str] = None

    @property
    def post_ready_count(self) -> int:
        return sum(1 for idea in self.ideas if idea.post_ready)


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _choice(value: Any, allowed: frozenset) -> Optional[str]:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in allowed else None


def validate_idea(item: Any, owner_id: str, source_id: Optional[str] = None) -> ContentIdea:
    """
    Turn one model-returned item into a ContentIdea.

    Unknown content types and pillars are dropped rather than rejected.

    Raises:
        ValidationError: item is not an object or has no title.
    """
    if not isinstance(item, dict):
        raise ValidationError("idea item is not an object")

    title = _text(item.get("title"))
    if title is None:
        raise ValidationError("idea item has no title")

    post_ready = item.get("post_ready")
    key_points = item.get("key_points")

    return ContentIdea(
        owner_id=owner_id,
        source_id=source_id,
        title=title,
        core_insight=_text(item.get("core_insight")),
        full_context=_text(item.get("full_context")),
        why_post_worthy=_text(item.get("why_post_worthy")),
        content_type=_choice(item.get("content_type"), CONTENT_TYPES),
        content_pillar=_choice(item.get("content_pillar"), CONTENT_PILLARS),
        post_ready=post_ready is True or str(post_ready).lower() == "true",
        hook=_text(item.get("hook")),
        key_points=[p.strip() for p in key_points if _text(p)] if isinstance(key_points, list) else [],
        status=IdeaStatus.EXTRACTED.value,
    )


class IdeaExtractor:
    """
    Extracts post ideas from a transcript in a single model call.

    Usage:
        extractor = IdeaExtractor(LLMClient())
        result = await extractor.extract(transcript, owner_id="user-1", source_id=source.id)
        print(f"{len(result.ideas)} ideas, {result.post_ready_count} post-ready")
    """

    def __init__(self, llm: Optional[LLMClient] = None, config: Optional[IdeaExtractorConfig] = None):
        self.llm = llm or LLMClient()
        self.config = config or IdeaExtractorConfig()

    async def extract(
        self,
        raw_text: str,
        owner_id: str,
        source_id: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> IdeaExtractionResult:
        """
        Extract content ideas.

        Returns:
            IdeaExtractionResult; `error` is set when the response could not
            be read at all.

        Raises:
            ExternalServiceError: the model provider failed.
        """
        result = IdeaExtractionResult(owner_id=owner_id, source_id=source_id)
        if not raw_text or not raw_text.strip():
            result.error = "No content to extract from"
            return result

        transcript = raw_text[: self.config.max_transcript_chars]
        if len(raw_text) > self.config.max_transcript_chars:
            transcript += "\n... [truncated]"

        prompt = IDEA_PROMPT.format(context=build_context(context), transcript=transcript)
        response = await self.llm.complete(prompt, max_tokens=self.config.max_tokens)

        parsed = parse_json_response(response)
        data = parsed.data.get("ideas") if parsed.ok and isinstance(parsed.data, dict) else parsed.data
        if not parsed.ok or not isinstance(data, list):
            result.error = f"Failed to parse idea extraction: {parsed.error or 'no ideas list'}"
            logger.error(result.error)
            return result

        for item in data:
            try:
                result.ideas.append(validate_idea(item, owner_id, source_id))
            except ValidationError as e:
                logger.warning(f"Skipping idea item: {e.message}")
                result.items_skipped += 1

        logger.info(
            f"Extracted {len(result.ideas)} content ideas ({result.post_ready_count} post-ready, "
            f"{result.items_skipped} skipped)"
        )
        return result
