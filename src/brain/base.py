"""
Base classes for the Content Brain.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class KnowledgeType(str, Enum):
    """Closed set of knowledge entry types."""

    HOW_TO = "how_to"  # Process, method, or steps
    INSIGHT = "insight"  # Principle, framework, mental model
    STORY = "story"  # Example with an outcome
    QUESTION = "question"  # Something asked, plus the answer
    OBJECTION = "objection"  # Pushback and how it was handled
    MISTAKE = "mistake"  # Failed approach or lesson from failure
    DECISION = "decision"  # Choice between alternatives, with reasoning
    MARKET_INTEL = "market_intel"  # Competitors, pricing, trends


class KnowledgeCategory(str, Enum):
    """Legacy coarse category derived from the knowledge type."""

    INSIGHT = "insight"
    QUESTION = "question"
    PRODUCT_INTEL = "product_intel"


class Speaker(str, Enum):
    """Who originated a piece of knowledge."""

    HOST = "host"
    PARTICIPANT = "participant"
    UNKNOWN = "unknown"


class Actionability(str, Enum):
    """How immediately an entry can be acted on."""

    IMMEDIATELY_ACTIONABLE = "immediately_actionable"
    CONTEXTUAL = "contextual"
    THEORETICAL = "theoretical"


class TranscriptType(str, Enum):
    """Kind of call a transcript came from."""

    COACHING = "coaching"
    SALES = "sales"


CATEGORY_BY_TYPE = {
    KnowledgeType.HOW_TO: KnowledgeCategory.INSIGHT,
    KnowledgeType.INSIGHT: KnowledgeCategory.INSIGHT,
    KnowledgeType.STORY: KnowledgeCategory.INSIGHT,
    KnowledgeType.MISTAKE: KnowledgeCategory.INSIGHT,
    KnowledgeType.DECISION: KnowledgeCategory.INSIGHT,
    KnowledgeType.QUESTION: KnowledgeCategory.QUESTION,
    KnowledgeType.OBJECTION: KnowledgeCategory.QUESTION,
    KnowledgeType.MARKET_INTEL: KnowledgeCategory.PRODUCT_INTEL,
}

MIN_QUALITY = 1
MAX_QUALITY = 5


def clamp_quality(value: Any, default: int = 3) -> int:
    """Round half-up and clamp a quality score into [1, 5].

    Non-numeric input, booleans included, falls back to ``default``.
    """
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    if math.isinf(number):
        return MAX_QUALITY if number > 0 else MIN_QUALITY
    rounded = math.floor(number + 0.5)
    return max(MIN_QUALITY, min(MAX_QUALITY, rounded))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass through a datetime)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class OwnerScope:
    """
    Whose rows an operation may see.

    A personal scope is just ``owner_id``. A team scope also lists the
    member owner ids whose knowledge is shared with the team.
    """

    owner_id: str
    team_id: Optional[str] = None
    member_ids: tuple[str, ...] = ()

    @property
    def owner_ids(self) -> list[str]:
        ids = [self.owner_id]
        for member in self.member_ids:
            if member not in ids:
                ids.append(member)
        return ids


@dataclass
class KnowledgeEntry:
    """
    A single classified unit of extracted knowledge.
    """

    owner_id: str
    knowledge_type: KnowledgeType
    content: str
    category: KnowledgeCategory = KnowledgeCategory.INSIGHT
    speaker: Speaker = Speaker.UNKNOWN
    context: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)

    # Quality signals
    quality_score: int = 3
    specificity: bool = False
    actionability: Actionability = Actionability.CONTEXTUAL

    # Link to source document (set after ingestion)
    source_id: Optional[str] = None
    team_id: Optional[str] = None

    embedding: Optional[list[float]] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    # Set after database insert
    id: Optional[str] = None

    def __post_init__(self):
        self.quality_score = clamp_quality(self.quality_score)

    def to_dict(self) -> dict:
        """Convert to dictionary for database insertion."""
        return {
            "user_id": self.owner_id,
            "transcript_id": self.source_id,
            "team_id": self.team_id,
            "category": self.category.value,
            "knowledge_type": self.knowledge_type.value,
            "speaker": self.speaker.value,
            "content": self.content,
            "context": self.context,
            "tags": list(self.tags),
            "topics": list(self.topics),
            "quality_score": self.quality_score,
            "specificity": self.specificity,
            "actionability": self.actionability.value,
            "embedding": self.embedding,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: dict) -> "KnowledgeEntry":
        """Build an entry from a store row. Raises ValueError on off-enum values."""
        knowledge_type = KnowledgeType(row["knowledge_type"])
        category = row.get("category")
        return cls(
            id=row.get("id"),
            owner_id=row.get("user_id") or row.get("owner_id"),
            source_id=row.get("transcript_id") or row.get("source_id"),
            team_id=row.get("team_id"),
            knowledge_type=knowledge_type,
            category=KnowledgeCategory(category) if category else CATEGORY_BY_TYPE[knowledge_type],
            speaker=Speaker(row.get("speaker") or "unknown"),
            content=row["content"],
            context=row.get("context"),
            tags=list(row.get("tags") or []),
            topics=list(row.get("topics") or []),
            quality_score=row.get("quality_score", 3),
            specificity=bool(row.get("specificity", False)),
            actionability=Actionability(row.get("actionability") or "contextual"),
            embedding=row.get("embedding"),
            created_at=parse_timestamp(row.get("created_at")) or utcnow(),
            updated_at=parse_timestamp(row.get("updated_at")) or utcnow(),
        )


@dataclass
class Topic:
    """Canonical label in an owner's topic taxonomy."""

    owner_id: str
    slug: str
    display_name: str
    usage_count: int = 1
    description: Optional[str] = None
    id: Optional[str] = None


@dataclass
class Tag:
    """Free-text tag with a display usage count."""

    owner_id: str
    name: str
    usage_count: int = 0


@dataclass
class Template:
    """Reusable structural skeleton for a post."""

    name: str
    structure: str
    category: Optional[str] = None
    description: Optional[str] = None
    example_posts: list[str] = field(default_factory=list)
    use_cases: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    usage_count: int = 0
    avg_engagement_score: Optional[float] = None
    embedding: Optional[list[float]] = None

    # None = platform-shared template
    owner_id: Optional[str] = None
    is_global: bool = False
    id: Optional[str] = None

    def embedding_text(self) -> str:
        """Text embedded for template matching."""
        parts = [f"Template: {self.name}"]
        if self.category:
            parts.append(f"Category: {self.category}")
        if self.description:
            parts.append(f"Description: {self.description}")
        parts.append(f"Structure: {self.structure}")
        if self.use_cases:
            parts.append(f"Use cases: {', '.join(self.use_cases)}")
        if self.tags:
            parts.append(f"Tags: {', '.join(self.tags)}")
        return "\n".join(parts)

    def to_dict(self) -> dict:
        return {
            "user_id": self.owner_id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "structure": self.structure,
            "example_posts": list(self.example_posts),
            "use_cases": list(self.use_cases),
            "tags": list(self.tags),
            "usage_count": self.usage_count,
            "avg_engagement_score": self.avg_engagement_score,
            "embedding": self.embedding,
            "is_global": self.is_global,
        }

    @classmethod
    def from_row(cls, row: dict) -> "Template":
        return cls(
            id=row.get("id"),
            owner_id=row.get("user_id"),
            name=row["name"],
            structure=row.get("structure") or "",
            category=row.get("category"),
            description=row.get("description"),
            example_posts=list(row.get("example_posts") or []),
            use_cases=list(row.get("use_cases") or []),
            tags=list(row.get("tags") or []),
            usage_count=int(row.get("usage_count") or 0),
            avg_engagement_score=row.get("avg_engagement_score"),
            embedding=row.get("embedding"),
            is_global=bool(row.get("is_global", False)),
        )


@dataclass(frozen=True)
class PerformanceRecord:
    """Append-only engagement snapshot for one post at one capture time."""

    post_id: str
    owner_id: str
    captured_at: datetime
    platform: str = "linkedin"
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    saves: int = 0
    clicks: int = 0
    impressions: int = 0
    engagement_rate: float = 0.0

    def to_dict(self) -> dict:
        return {
            "post_id": self.post_id,
            "user_id": self.owner_id,
            "platform": self.platform,
            "captured_at": _iso(self.captured_at),
            "views": self.views,
            "likes": self.likes,
            "comments": self.comments,
            "shares": self.shares,
            "saves": self.saves,
            "clicks": self.clicks,
            "impressions": self.impressions,
            "engagement_rate": self.engagement_rate,
        }

    @classmethod
    def from_row(cls, row: dict) -> "PerformanceRecord":
        return cls(
            post_id=row["post_id"],
            owner_id=row.get("user_id") or row.get("owner_id"),
            platform=row.get("platform") or "linkedin",
            captured_at=parse_timestamp(row["captured_at"]),
            views=int(row.get("views") or 0),
            likes=int(row.get("likes") or 0),
            comments=int(row.get("comments") or 0),
            shares=int(row.get("shares") or 0),
            saves=int(row.get("saves") or 0),
            clicks=int(row.get("clicks") or 0),
            impressions=int(row.get("impressions") or 0),
            engagement_rate=float(row.get("engagement_rate") or 0.0),
        )


@dataclass
class PerformancePattern:
    """Aggregated relationship between one content attribute and engagement."""

    owner_id: str
    pattern_type: str
    pattern_value: str
    avg_engagement_rate: float
    avg_views: float
    avg_likes: float
    avg_comments: float
    sample_count: int
    confidence: float
    confidence_label: str = "low"
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "user_id": self.owner_id,
            "pattern_type": self.pattern_type,
            "pattern_value": self.pattern_value,
            "avg_engagement_rate": self.avg_engagement_rate,
            "avg_views": self.avg_views,
            "avg_likes": self.avg_likes,
            "avg_comments": self.avg_comments,
            "sample_count": self.sample_count,
            "confidence": self.confidence,
            "confidence_label": self.confidence_label,
            "last_updated_at": _iso(self.last_updated),
        }

    @classmethod
    def from_row(cls, row: dict) -> "PerformancePattern":
        return cls(
            owner_id=row.get("user_id") or row.get("owner_id"),
            pattern_type=row["pattern_type"],
            pattern_value=row["pattern_value"],
            avg_engagement_rate=float(row.get("avg_engagement_rate") or 0.0),
            avg_views=float(row.get("avg_views") or 0.0),
            avg_likes=float(row.get("avg_likes") or 0.0),
            avg_comments=float(row.get("avg_comments") or 0.0),
            sample_count=int(row.get("sample_count") or 0),
            confidence=float(row.get("confidence") or 0.0),
            confidence_label=row.get("confidence_label") or "low",
            last_updated=parse_timestamp(row.get("last_updated_at")) or utcnow(),
        )


@dataclass
class SourceDocument:
    """A call transcript (or other plain-text source) owned by a user."""

    owner_id: str
    raw_text: str
    title: Optional[str] = None
    participants: list[str] = field(default_factory=list)
    call_date: Optional[str] = None
    transcript_type: Optional[TranscriptType] = None
    speaker_map: Optional[dict] = None
    knowledge_extracted_at: Optional[datetime] = None
    ideas_extracted_at: Optional[datetime] = None
    team_id: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "SourceDocument":
        transcript_type = row.get("transcript_type")
        return cls(
            id=row.get("id"),
            owner_id=row.get("user_id"),
            raw_text=row.get("raw_transcript") or "",
            title=row.get("title"),
            participants=list(row.get("participants") or []),
            call_date=row.get("call_date"),
            transcript_type=TranscriptType(transcript_type) if transcript_type else None,
            speaker_map=row.get("speaker_map"),
            knowledge_extracted_at=parse_timestamp(row.get("knowledge_extracted_at")),
            ideas_extracted_at=parse_timestamp(row.get("ideas_extracted_at")),
            team_id=row.get("team_id"),
        )


@dataclass
class ContentIdea:
    """A post idea mined from a source, tracked through the writing workflow."""

    owner_id: str
    title: str
    core_insight: Optional[str] = None
    full_context: Optional[str] = None
    why_post_worthy: Optional[str] = None
    content_type: Optional[str] = None
    content_pillar: Optional[str] = None
    post_ready: bool = False
    hook: Optional[str] = None
    key_points: list[str] = field(default_factory=list)
    speaker: Optional[str] = None
    status: str = "extracted"
    source_id: Optional[str] = None
    id: Optional[str] = None

    def query_text(self) -> str:
        """Text used to retrieve knowledge and templates for this idea."""
        parts = [self.title]
        for value in (self.core_insight, self.hook, self.full_context):
            if value:
                parts.append(value)
        return "\n".join(parts)

    @classmethod
    def from_row(cls, row: dict) -> "ContentIdea":
        return cls(
            id=row.get("id"),
            owner_id=row.get("user_id"),
            source_id=row.get("transcript_id"),
            title=row.get("title") or "",
            core_insight=row.get("core_insight"),
            full_context=row.get("full_context"),
            why_post_worthy=row.get("why_post_worthy"),
            content_type=row.get("content_type"),
            content_pillar=row.get("content_pillar"),
            post_ready=bool(row.get("post_ready")),
            hook=row.get("hook"),
            key_points=list(row.get("key_points") or []),
            speaker=row.get("speaker"),
            status=row.get("status") or "extracted",
        )


@dataclass
class VoiceProfile:
    """Tone and style parameters for one author identity."""

    speaker: str
    tone: Optional[str] = None
    first_person_context: Optional[str] = None
    perspective_notes: Optional[str] = None
    signature_phrases: list[str] = field(default_factory=list)
    banned_phrases: list[str] = field(default_factory=list)
    industry_jargon: list[str] = field(default_factory=list)
    storytelling_style: Optional[str] = None
    is_default: bool = False

    @classmethod
    def from_row(cls, row: dict) -> "VoiceProfile":
        return cls(
            speaker=row.get("speaker") or row.get("full_name") or "author",
            tone=row.get("tone"),
            first_person_context=row.get("first_person_context"),
            perspective_notes=row.get("perspective_notes"),
            signature_phrases=list(row.get("signature_phrases") or []),
            banned_phrases=list(row.get("banned_phrases") or []),
            industry_jargon=list(row.get("industry_jargon") or []),
            storytelling_style=row.get("storytelling_style"),
        )


DEFAULT_VOICE = VoiceProfile(
    speaker="default",
    tone="Direct, conversational, authoritative but not arrogant",
    storytelling_style="Specific examples with real numbers, short paragraphs",
    banned_phrases=["game-changer", "here's the thing", "let's dive in"],
    is_default=True,
)


@dataclass
class ExtractionResult:
    """Result of an extraction run."""

    owner_id: str
    source_id: Optional[str] = None
    batches_processed: int = 0
    items_extracted: int = 0
    items_skipped: int = 0
    entries: list[KnowledgeEntry] = field(default_factory=list)
    error: Optional[str] = None
    execution_time_ms: int = 0


@dataclass
class SearchFilters:
    """Optional filters for knowledge search."""

    category: Optional[KnowledgeCategory] = None
    speaker: Optional[Speaker] = None
    tag: Optional[str] = None
    topic: Optional[str] = None
    knowledge_type: Optional[KnowledgeType] = None
    min_quality: Optional[int] = None
    since: Optional[datetime] = None
    source_id: Optional[str] = None

    def matches(self, entry: KnowledgeEntry) -> bool:
        if self.category and entry.category != self.category:
            return False
        if self.speaker and entry.speaker != self.speaker:
            return False
        if self.tag and self.tag.lower() not in [t.lower() for t in entry.tags]:
            return False
        if self.topic and self.topic not in entry.topics:
            return False
        if self.knowledge_type and entry.knowledge_type != self.knowledge_type:
            return False
        if self.min_quality and entry.quality_score < self.min_quality:
            return False
        if self.since and entry.created_at < self.since:
            return False
        if self.source_id and entry.source_id != self.source_id:
            return False
        return True


@dataclass
class PublishedPost:
    """A published post joined with the attributes its idea carried."""

    id: str
    owner_id: str
    content: str
    published_at: Optional[datetime] = None
    scheduled_time: Optional[datetime] = None
    topic: Optional[str] = None
    idea: Optional[ContentIdea] = None

    @classmethod
    def from_row(cls, row: dict, idea: Optional[ContentIdea] = None) -> "PublishedPost":
        return cls(
            id=row["id"],
            owner_id=row.get("user_id"),
            content=row.get("final_content") or row.get("draft_content") or "",
            published_at=parse_timestamp(row.get("published_at")),
            scheduled_time=parse_timestamp(row.get("scheduled_time")),
            topic=row.get("topic"),
            idea=idea,
        )
