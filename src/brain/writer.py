"""
Post writer.

Turns a ContentBrief into a LinkedIn draft plus its auxiliary assets: a
short outreach DM, a call-to-action keyword and alternate variations.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from src.brain.base import VoiceProfile
from src.brain.briefing import ContentBrief
from src.brain.errors import ValidationError
from src.brain.llm import LLMClient, parse_json_response

logger = logging.getLogger(__name__)

DEFAULT_AUDIENCE = "B2B professionals, agency owners, and marketers"
DEFAULT_DM = "Hey {first_name}, here's the link I mentioned: [LINK]"
DEFAULT_CTA = "interested"

STYLE_GUIDELINES = """Voice:
- Direct, conversational, authoritative but not arrogant
- Confident claims backed by specifics, not hype
- A strong point of view. Take a stance.

Writing style:
- Real sentences with actual construction; fragments only for genuine dramatic moments
- Paragraphs of 1-4 sentences that flow into each other
- Make points through explanation and specifics, not declaration or rhythm

Forbidden: "game-changer", "here's the thing", "the truth is", "let's dive in",
"next level", three-item dramatic lists, stacked one-liner declarations,
throat-clearing before a point.

Formatting: short paragraphs, no headers, no bold, no emojis, no hashtags,
no em dashes. Numbered lists only when teaching a process.

Hook: the first line must stop the scroll. Use a number when possible.
Make a bold claim, present a result or open a knowledge gap. 1-2 sentences."""

OUTPUT_FORMAT = """Return ONLY valid JSON:
{
    "content": "The complete LinkedIn post",
    "variations": [
        {"id": "v1", "content": "Alternative with a different hook", "hook_type": "question|bold_statement|story|statistic", "selected": false},
        {"id": "v2", "content": "Second alternative", "hook_type": "question|bold_statement|story|statistic", "selected": false}
    ],
    "dm_template": "Short DM (max 200 chars) using {first_name} and [LINK] placeholder",
    "cta_word": "simple keyword like interested, send, link"
}"""


class PostVariation(BaseModel):
    """An alternate version of a draft."""

    id: str = ""
    content: str
    hook_type: Optional[str] = None
    selected: bool = False


class Draft(BaseModel):
    """A written post with its auxiliary assets."""

    content: str
    variations: list[PostVariation] = Field(default_factory=list)
    dm_template: str = DEFAULT_DM
    cta_word: str = DEFAULT_CTA
    template_name: Optional[str] = None


def voice_section(voice: VoiceProfile, author_name: Optional[str] = None) -> str:
    """Prompt lines describing who the post is written as."""
    parts = []
    if author_name:
        parts.append(f"YOU ARE WRITING AS: {author_name}")
    if voice.first_person_context:
        parts.append(f"FIRST-PERSON CONTEXT: {voice.first_person_context}")
    if voice.perspective_notes:
        parts.append(f"PERSPECTIVE: {voice.perspective_notes}")
    if voice.tone:
        parts.append(f"TONE: {voice.tone}")
    if voice.signature_phrases:
        parts.append(f"SIGNATURE PHRASES (use naturally): {', '.join(voice.signature_phrases)}")
    if voice.banned_phrases:
        parts.append(f"BANNED PHRASES (never use): {', '.join(voice.banned_phrases)}")
    if voice.industry_jargon:
        parts.append(f"DOMAIN TERMS: {', '.join(voice.industry_jargon)}")
    if voice.storytelling_style:
        parts.append(f"STORYTELLING STYLE: {voice.storytelling_style}")
    return "\n".join(parts)


def build_prompt(brief: ContentBrief, audience: str = DEFAULT_AUDIENCE, author_name: Optional[str] = None) -> str:
    """Template-driven prompt when the brief matched a template, freeform otherwise."""
    idea = brief.idea
    sections = []

    if brief.has_template:
        template = brief.template.template
        sections.append(
            "You are creating a LinkedIn post by combining a template with the context below. "
            "Adhere strictly to the template format."
        )
        sections.append(f"TEMPLATE ({template.name}):\n{template.structure}")
        if template.example_posts:
            sections.append(
                "EXAMPLE POSTS USING THIS TEMPLATE:\n" + "\n\n---\n\n".join(template.example_posts[:2])
            )
    else:
        sections.append(
            "You are writing a LinkedIn post. Write it without any preamble. "
            "Your first word is the first word of the post."
        )
        sections.append(f"SUGGESTED STRUCTURE:\n{brief.structure}")

    sections.append(STYLE_GUIDELINES)

    voice = voice_section(brief.voice, author_name)
    if voice:
        sections.append(voice + "\nWrite as this specific person. Use \"I\" from their experience.")

    idea_lines = [f"Title: {idea.title}"]
    if idea.core_insight:
        idea_lines.append(f"Core Insight: {idea.core_insight}")
    if idea.full_context:
        idea_lines.append(f"Full Context: {idea.full_context}")
    if idea.why_post_worthy:
        idea_lines.append(f"Why Post-Worthy: {idea.why_post_worthy}")
    if idea.content_type:
        idea_lines.append(f"Content Type: {idea.content_type}")
    if idea.hook:
        idea_lines.append(f"Suggested Hook: {idea.hook}")
    if idea.key_points:
        idea_lines.append("Key Points:\n" + "\n".join(f"- {p}" for p in idea.key_points))
    sections.append("CONTEXT FOR THIS POST:\n" + "\n".join(idea_lines))

    if brief.knowledge_context:
        sections.append(
            "KNOWLEDGE BASE CONTEXT (from your calls):\n"
            f"{brief.knowledge_context}\n"
            "Use specific quotes, real numbers and validated insights from this context."
        )

    if brief.performance_guidance:
        sections.append(
            "PERFORMANCE DATA (bias toward these proven patterns, but add variety):\n"
            + "\n".join(brief.performance_guidance)
        )

    if brief.suggested_angles:
        sections.append("POSSIBLE ANGLES:\n" + "\n".join(f"- {a}" for a in brief.suggested_angles))

    sections.append(f"Audience: {audience}")
    sections.append(OUTPUT_FORMAT)
    return "\n\n".join(sections)


def parse_draft(response: str) -> Draft:
    """
    Read a writer response.

    Off-schema or non-JSON output becomes a draft whose content is the raw
    text, with default auxiliary assets.

    Raises:
        ValidationError: the response is empty.
    """
    if not response or not response.strip():
        raise ValidationError("writer returned empty output")

    parsed = parse_json_response(response, expect=dict)
    if parsed.ok:
        try:
            draft = Draft.model_validate(parsed.data)
        except PydanticValidationError as e:
            logger.warning(f"Writer response off-schema, using raw text: {e.error_count()} errors")
        else:
            if draft.content.strip():
                return draft
    else:
        logger.warning(f"Writer response was not JSON ({parsed.error}), using raw text")

    return Draft(content=response.strip())


class PostWriter:
    """
    Writes a draft from a brief.

    Usage:
        writer = PostWriter(LLMClient())
        draft = await writer.write(brief)
    """

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        audience: str = DEFAULT_AUDIENCE,
        max_tokens: int = 4000,
    ):
        self.llm = llm or LLMClient()
        self.audience = audience
        self.max_tokens = max_tokens

    async def write(self, brief: ContentBrief, author_name: Optional[str] = None) -> Draft:
        """
        Raises:
            ExternalServiceError: the model provider failed.
            ValidationError: the model returned nothing usable.
        """
        prompt = build_prompt(brief, self.audience, author_name)
        response = await self.llm.complete(prompt, max_tokens=self.max_tokens)
        draft = parse_draft(response)
        if brief.has_template:
            draft.template_name = brief.template.template.name
        logger.info(f"Wrote draft for '{brief.idea.title}' ({len(draft.content)} chars)")
        return draft
