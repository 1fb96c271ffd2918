"""
Content briefing agent.

Gathers everything a writer needs for one idea: relevant knowledge, a post
structure, a voice and what has performed well before. Every input is
optional; the worst case is a brief built from the idea alone.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from src.brain.base import DEFAULT_VOICE, ContentIdea, OwnerScope, SearchFilters, VoiceProfile
from src.brain.errors import BrainError
from src.brain.llm import LLMClient, parse_json_response
from src.brain.performance import PerformanceAnalyzer
from src.brain.retrieval import KnowledgeBrain, ScoredEntry, pack_context
from src.brain.store import BrainStore
from src.brain.templates import TemplateMatch, TemplateMatcher

logger = logging.getLogger(__name__)

GENERIC_STRUCTURE = (
    "[HOOK - one specific, scroll-stopping line]\n\n"
    "[CONTEXT - the situation in 2-3 short lines]\n\n"
    "[INSIGHT - the core point with a concrete example or number]\n\n"
    "[TAKEAWAY - what the reader should do or think next]\n\n"
    "[CLOSE - a question or soft call to action]"
)

READINESS_SATURATION = 15
MIN_ENTRIES_FOR_ANGLES = 3

ANGLES_PROMPT = """Based on these knowledge entries about "{topic}", suggest 3-5 distinct content angles.

{entries}

Return ONLY a JSON array of short angle descriptions, e.g. ["Angle one", "Angle two"]."""


@dataclass
class ContentBrief:
    """Everything the writer receives for one idea."""

    idea: ContentIdea
    knowledge_context: str = ""
    entries: list[ScoredEntry] = field(default_factory=list)
    template: Optional[TemplateMatch] = None
    structure: str = GENERIC_STRUCTURE
    voice: VoiceProfile = field(default_factory=lambda: DEFAULT_VOICE)
    performance_guidance: list[str] = field(default_factory=list)
    topic_readiness: float = 0.0
    top_knowledge_types: list[tuple[str, int]] = field(default_factory=list)
    suggested_angles: list[str] = field(default_factory=list)

    @property
    def has_template(self) -> bool:
        return self.template is not None


def topic_readiness(entries: list[ScoredEntry]) -> float:
    """
    How well the knowledge base covers a topic, in [0, 1].

    min(1, (n/15)*0.5 + (unique_types/5)*0.3 + (avg_quality/5)*0.2)
    """
    if not entries:
        return 0.0
    count = len(entries)
    unique_types = len({hit.entry.knowledge_type for hit in entries})
    avg_quality = sum(hit.entry.quality_score for hit in entries) / count
    score = (
        (count / READINESS_SATURATION) * 0.5
        + (unique_types / 5) * 0.3
        + (avg_quality / 5) * 0.2
    )
    return min(1.0, score)


def top_knowledge_types(entries: list[ScoredEntry], limit: int = 3) -> list[tuple[str, int]]:
    counts = Counter(hit.entry.knowledge_type.value for hit in entries)
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]


class BriefingAgent:
    """
    Builds a ContentBrief for an idea.

    Usage:
        agent = BriefingAgent(store, brain, matcher, analyzer=analyzer, llm=LLMClient())
        brief = await agent.build_brief(idea, OwnerScope("user-1"))
    """

    def __init__(
        self,
        store: BrainStore,
        brain: KnowledgeBrain,
        matcher: Optional[TemplateMatcher] = None,
        analyzer: Optional[PerformanceAnalyzer] = None,
        llm: Optional[LLMClient] = None,
        max_entries: int = 15,
        min_quality: int = 2,
        context_budget: Optional[int] = None,
    ):
        self.store = store
        self.brain = brain
        self.matcher = matcher
        self.analyzer = analyzer
        self.llm = llm
        self.max_entries = max_entries
        self.min_quality = min_quality
        self.context_budget = context_budget or brain.config.context_budget_chars

    async def build_brief(self, idea: ContentIdea, scope: OwnerScope) -> ContentBrief:
        """Assemble a brief. Missing inputs fall back; nothing here raises for absence."""
        query = idea.query_text()
        brief = ContentBrief(idea=idea)

        brief.entries = await self.brain.search(
            query,
            scope,
            filters=SearchFilters(min_quality=self.min_quality),
            limit=self.max_entries,
        )
        if brief.entries:
            brief.knowledge_context = pack_context(
                brief.entries,
                self.context_budget,
                self.brain.config.quality_boost,
            )
        else:
            logger.info(f"No knowledge hits for idea '{idea.title}', briefing from idea fields")

        brief.topic_readiness = topic_readiness(brief.entries)
        brief.top_knowledge_types = top_knowledge_types(brief.entries)

        if self.matcher is not None:
            matches = await self.matcher.match(query, scope)
            if matches and not matches[0].fallback:
                brief.template = matches[0]
                brief.structure = matches[0].template.structure
            elif matches:
                logger.info(f"No template cleared the floor for '{idea.title}', using generic structure")

        voice = await self.store.get_voice_profile(scope, idea.speaker)
        if voice is None and idea.speaker:
            voice = await self.store.get_voice_profile(scope, None)
        brief.voice = voice or DEFAULT_VOICE

        if self.analyzer is not None:
            brief.performance_guidance = await self.analyzer.performance_guidance(scope.owner_id)

        brief.suggested_angles = await self.suggest_angles(idea.title, brief.entries)
        return brief

    async def suggest_angles(self, topic: str, entries: list[ScoredEntry]) -> list[str]:
        """Best effort; [] with too few entries or on any failure."""
        if self.llm is None or len(entries) < MIN_ENTRIES_FOR_ANGLES:
            return []

        listing = "\n".join(
            f"[{hit.entry.knowledge_type.value}] {hit.entry.content[:200]}" for hit in entries[:10]
        )
        try:
            response = await self.llm.complete(
                ANGLES_PROMPT.format(topic=topic, entries=listing),
                max_tokens=1000,
            )
        except BrainError as e:
            logger.warning(f"Angle suggestion failed: {e}")
            return []

        parsed = parse_json_response(response, expect=list)
        if not parsed.ok:
            return []
        return [a.strip() for a in parsed.data if isinstance(a, str) and a.strip()][:5]
