"""
Performance pattern analysis.

Turns append-only engagement snapshots into per-attribute patterns
(archetype, hook, format, topic, time of day, pillar, length) with a
confidence that grows with sample size. Each run replaces the owner's
pattern rows wholesale, so re-running over the same history yields the
same rows.
"""

import logging
import re
from collections import defaultdict
from datetime import timezone
from typing import Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from src.brain.base import PerformancePattern, PerformanceRecord, PublishedPost, utcnow
from src.brain.errors import BrainError
from src.brain.llm import LLMClient, parse_json_response
from src.brain.store import BrainStore

logger = logging.getLogger(__name__)

# Sample count at which a pattern reaches full confidence
CONFIDENCE_SATURATION = 15
MEDIUM_CONFIDENCE_SAMPLES = 5

PATTERN_TYPES = (
    "archetype",
    "content_pillar",
    "format",
    "hook",
    "length",
    "time_of_day",
    "topic",
)


def confidence_for(sample_count: int) -> float:
    """Saturating confidence: min(1, n / 15)."""
    if sample_count <= 0:
        return 0.0
    return min(1.0, sample_count / CONFIDENCE_SATURATION)


def confidence_label(sample_count: int) -> str:
    if sample_count >= CONFIDENCE_SATURATION:
        return "high"
    if sample_count >= MEDIUM_CONFIDENCE_SAMPLES:
        return "medium"
    return "low"


def word_count(content: str) -> int:
    return len(content.split())


def length_bucket(content: str) -> str:
    words = word_count(content)
    if words < 100:
        return "short"
    if words < 300:
        return "medium"
    return "long"


def time_of_day_bucket(hour: int) -> str:
    """Bucket a UTC hour."""
    if hour < 6:
        return "early_morning"
    if hour < 10:
        return "morning"
    if hour < 14:
        return "midday"
    if hour < 18:
        return "afternoon"
    return "evening"


_BOLD_OPENERS = re.compile(r"^(stop|don't|never|the biggest|the real|most people)")
_STATISTIC = re.compile(r"\$[\d,]+|\d+%")
_NUMBERED = re.compile(r"^\d+[.)]\s")
_BULLET = re.compile(r"^[-*\U00002022]\s")


def detect_hook_type(first_line: str) -> Optional[str]:
    """Classify the opening line of a post."""
    lower = first_line.strip().lower()
    if not lower:
        return None
    if lower[0].isdigit():
        return "number_hook"
    if lower.endswith("?"):
        return "question"
    if lower.startswith("i "):
        return "personal_story"
    if _BOLD_OPENERS.match(lower):
        return "bold_statement"
    if _STATISTIC.search(lower):
        return "statistic"
    return "other"


def detect_format(content: str) -> Optional[str]:
    """Classify the layout of a post."""
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    if not lines:
        return None
    if sum(1 for line in lines if _NUMBERED.match(line)) >= 3:
        return "numbered_list"
    if sum(1 for line in lines if _BULLET.match(line)) >= 3:
        return "bullet_list"
    words = word_count(content)
    if words < 80:
        return "short_form"
    if words > 300:
        return "long_form"
    return "paragraph"


def post_attributes(post: PublishedPost) -> list[tuple[str, str]]:
    """(pattern_type, pattern_value) pairs a post contributes to."""
    attributes = []
    idea = post.idea
    if idea is not None and idea.content_type:
        attributes.append(("archetype", idea.content_type))
    if idea is not None and idea.content_pillar:
        attributes.append(("content_pillar", idea.content_pillar))

    content = post.content or ""
    attributes.append(("length", length_bucket(content)))

    timestamp = post.published_at or post.scheduled_time
    if timestamp is not None:
        attributes.append(("time_of_day", time_of_day_bucket(timestamp.astimezone(timezone.utc).hour)))

    first_line = content.split("\n", 1)[0]
    hook = detect_hook_type(first_line)
    if hook:
        attributes.append(("hook", hook))

    layout = detect_format(content)
    if layout:
        attributes.append(("format", layout))

    if post.topic:
        attributes.append(("topic", post.topic))
    return attributes


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class PerformanceInsight(BaseModel):
    """Narrative summary of what works for an owner."""

    summary: str = ""
    top_performing: list[str] = Field(default_factory=list)
    underperforming: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    optimal_posting_pattern: Optional[str] = None


NOT_ENOUGH_DATA = PerformanceInsight(
    summary="Not enough data yet. Submit performance metrics for your published posts to get insights.",
    recommendations=["Start tracking post performance to build your feedback loop."],
)

INSIGHTS_PROMPT = """Analyze these content performance patterns and generate actionable insights.
Be specific and data-driven.

PATTERNS:
{patterns}

Return ONLY valid JSON:
{{
    "summary": "2-3 sentence overview of the content performance",
    "top_performing": ["What works best"],
    "underperforming": ["What is not working and why"],
    "recommendations": ["Actionable next step"],
    "optimal_posting_pattern": "The ideal post formula from the data, or null"
}}"""


class PerformanceAnalyzer:
    """
    Aggregates engagement history into confidence-scored patterns.

    Usage:
        analyzer = PerformanceAnalyzer(store, llm=LLMClient())
        await analyzer.record(snapshot)
        patterns = await analyzer.analyze("user-1")
        top = await analyzer.top_attributes("user-1")
    """

    def __init__(self, store: BrainStore, llm: Optional[LLMClient] = None):
        self.store = store
        self.llm = llm

    async def record(self, record: PerformanceRecord) -> bool:
        """Append a snapshot. Returns False if (post, captured_at) already exists."""
        inserted = await self.store.insert_performance_record(record)
        if not inserted:
            logger.debug(f"Duplicate snapshot ignored for post {record.post_id} at {record.captured_at}")
        return inserted

    async def analyze(self, owner_id: str) -> list[PerformancePattern]:
        """
        Recompute and replace all of an owner's patterns.

        Only the latest snapshot per published post counts. Posts with no
        snapshots are ignored.
        """
        posts = await self.store.list_published_posts(owner_id)
        latest: dict[str, PerformanceRecord] = {}
        if posts:
            records = await self.store.list_performance_records(owner_id, [p.id for p in posts])
            for record in records:
                current = latest.get(record.post_id)
                if current is None or record.captured_at > current.captured_at:
                    latest[record.post_id] = record

        buckets: dict[tuple[str, str], list[PerformanceRecord]] = defaultdict(list)
        analyzed = 0
        for post in posts:
            record = latest.get(post.id)
            if record is None:
                continue
            analyzed += 1
            for key in post_attributes(post):
                buckets[key].append(record)

        now = utcnow()
        patterns = []
        for (pattern_type, pattern_value), samples in sorted(buckets.items()):
            count = len(samples)
            patterns.append(
                PerformancePattern(
                    owner_id=owner_id,
                    pattern_type=pattern_type,
                    pattern_value=pattern_value,
                    avg_engagement_rate=round(_mean([s.engagement_rate for s in samples]), 4),
                    avg_views=round(_mean([s.views for s in samples]), 2),
                    avg_likes=round(_mean([s.likes for s in samples]), 2),
                    avg_comments=round(_mean([s.comments for s in samples]), 2),
                    sample_count=count,
                    confidence=confidence_for(count),
                    confidence_label=confidence_label(count),
                    last_updated=now,
                )
            )

        await self.store.replace_patterns(owner_id, patterns)
        logger.info(f"Analyzed {analyzed} posts into {len(patterns)} patterns for owner {owner_id}")
        return patterns

    async def top_attributes(self, owner_id: str) -> dict[str, list[PerformancePattern]]:
        """Patterns grouped by type, best engagement first, ties by confidence."""
        grouped: dict[str, list[PerformancePattern]] = defaultdict(list)
        for pattern in await self.store.list_patterns(owner_id):
            grouped[pattern.pattern_type].append(pattern)
        for patterns in grouped.values():
            patterns.sort(key=lambda p: (p.avg_engagement_rate, p.confidence, p.pattern_value), reverse=True)
        return dict(grouped)

    async def performance_guidance(self, owner_id: str) -> list[str]:
        """One line per pattern type naming its best medium/high-confidence value."""
        lines = []
        top = await self.top_attributes(owner_id)
        for pattern_type in PATTERN_TYPES:
            reliable = [p for p in top.get(pattern_type, []) if p.confidence_label != "low"]
            if not reliable:
                continue
            best = reliable[0]
            lines.append(
                f'Best performing {pattern_type}: "{best.pattern_value}" '
                f"(avg {best.avg_engagement_rate:.2f}% engagement, {best.sample_count} posts)"
            )
        return lines

    async def generate_insights(self, owner_id: str) -> PerformanceInsight:
        """
        Narrative insight from the stored patterns.

        Best effort: any model or parse failure returns a summary built
        from the patterns alone.
        """
        patterns = await self.store.list_patterns(owner_id)
        if not patterns:
            return NOT_ENOUGH_DATA.model_copy(deep=True)

        fallback = PerformanceInsight(
            summary=f"{len(patterns)} performance patterns tracked.",
            top_performing=[
                f"{p.pattern_type}={p.pattern_value} ({p.avg_engagement_rate:.2f}% engagement)"
                for p in patterns[:3]
            ],
        )
        if self.llm is None:
            return fallback

        summary = "\n".join(
            f'{p.pattern_type}="{p.pattern_value}": engagement={p.avg_engagement_rate}%, '
            f"views={p.avg_views}, likes={p.avg_likes}, comments={p.avg_comments} "
            f"(n={p.sample_count}, confidence={p.confidence_label})"
            for p in patterns
        )
        try:
            response = await self.llm.complete(INSIGHTS_PROMPT.format(patterns=summary), max_tokens=1500)
        except BrainError as e:
            logger.warning(f"Insight generation failed, returning computed summary: {e}")
            return fallback

        parsed = parse_json_response(response, expect=dict)
        if not parsed.ok:
            logger.warning(f"Insight response unparseable: {parsed.error}")
            return fallback
        try:
            return PerformanceInsight.model_validate(parsed.data)
        except PydanticValidationError as e:
            logger.warning(f"Insight response off-schema: {e}")
            return fallback
