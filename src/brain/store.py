"""
Relational store for the Content Brain.

`BrainStore` is the interface every component talks to. Counter updates
(tag and topic usage) are single atomic operations at the store level,
never read-modify-write in application code, because extraction batches
for the same owner can run concurrently.

Implementations:
- SupabaseBrainStore: Postgres via supabase-py. Atomic counters and vector
  matching are RPCs defined in migrations/001_content_brain.sql.
- InMemoryBrainStore: process-local store for tests and local runs.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from supabase import Client, create_client

from src.brain.base import (
    ContentIdea,
    KnowledgeEntry,
    OwnerScope,
    PerformancePattern,
    PerformanceRecord,
    PublishedPost,
    SearchFilters,
    SourceDocument,
    Tag,
    Template,
    Topic,
    VoiceProfile,
    utcnow,
)
from src.brain.config import StoreConfig
from src.brain.embeddings import cosine_similarity
from src.brain.errors import NotFoundError

logger = logging.getLogger(__name__)

ENTRIES_TABLE = "cp_knowledge_entries"
TAGS_TABLE = "cp_knowledge_tags"
TOPICS_TABLE = "cp_knowledge_topics"
TEMPLATES_TABLE = "cp_post_templates"
TRANSCRIPTS_TABLE = "cp_call_transcripts"
IDEAS_TABLE = "cp_content_ideas"
POSTS_TABLE = "cp_pipeline_posts"
PERFORMANCE_TABLE = "cp_post_performance"
PATTERNS_TABLE = "cp_performance_patterns"
VOICE_TABLE = "team_voice_profiles"


class BrainStore(ABC):
    """Typed read/write operations over the Content Brain entities."""

    # Knowledge entries

    @abstractmethod
    async def insert_entries(self, entries: list[KnowledgeEntry]) -> list[KnowledgeEntry]:
        """Insert entries and return them with ids assigned."""

    @abstractmethod
    async def get_entry(self, owner_id: str, entry_id: str) -> Optional[KnowledgeEntry]:
        pass

    @abstractmethod
    async def update_entry(self, owner_id: str, entry_id: str, fields: dict) -> KnowledgeEntry:
        pass

    @abstractmethod
    async def delete_entry(self, owner_id: str, entry_id: str) -> None:
        pass

    @abstractmethod
    async def list_entries(
        self,
        scope: OwnerScope,
        filters: Optional[SearchFilters] = None,
        limit: int = 50,
    ) -> list[KnowledgeEntry]:
        """Entries visible to the scope, newest first."""

    @abstractmethod
    async def match_entries(
        self,
        scope: OwnerScope,
        embedding: list[float],
        filters: Optional[SearchFilters] = None,
        limit: int = 20,
        threshold: float = 0.0,
    ) -> list[tuple[KnowledgeEntry, float]]:
        """Entries ranked by cosine similarity to the embedding, best first."""

    @abstractmethod
    async def entries_for_source(self, source_id: str) -> list[KnowledgeEntry]:
        pass

    @abstractmethod
    async def delete_entries_for_source(self, source_id: str) -> int:
        pass

    # Tags

    @abstractmethod
    async def increment_tag(self, owner_id: str, name: str, amount: int = 1) -> None:
        pass

    @abstractmethod
    async def decrement_tag(self, owner_id: str, name: str, amount: int = 1) -> None:
        pass

    @abstractmethod
    async def list_tags(self, owner_id: str) -> list[Tag]:
        pass

    # Topics

    @abstractmethod
    async def list_topics(self, owner_id: str) -> list[Topic]:
        pass

    @abstractmethod
    async def increment_or_create_topic(self, owner_id: str, slug: str, display_name: str) -> Topic:
        """Atomically create the topic with usage 1 or increment its usage."""

    # Templates

    @abstractmethod
    async def list_templates(self, scope: OwnerScope) -> list[Template]:
        """Platform-shared templates plus the scope's private ones."""

    @abstractmethod
    async def insert_templates(self, templates: list[Template]) -> list[Template]:
        pass

    @abstractmethod
    async def count_templates(self, owner_id: str) -> int:
        pass

    # Source documents and ideas

    @abstractmethod
    async def insert_source(self, source: SourceDocument) -> SourceDocument:
        pass

    @abstractmethod
    async def get_source(self, owner_id: str, source_id: str) -> Optional[SourceDocument]:
        pass

    @abstractmethod
    async def update_source(self, source_id: str, fields: dict) -> None:
        pass

    @abstractmethod
    async def get_idea(self, owner_id: str, idea_id: str) -> Optional[ContentIdea]:
        pass

    @abstractmethod
    async def insert_ideas(self, ideas: list[ContentIdea]) -> list[ContentIdea]:
        pass

    @abstractmethod
    async def update_idea_status(self, owner_id: str, idea_id: str, status: str) -> None:
        pass

    @abstractmethod
    async def delete_ideas_for_source(self, source_id: str) -> int:
        pass

    @abstractmethod
    async def save_post(self, owner_id: str, idea_id: Optional[str], fields: dict) -> str:
        """Persist a written post, returning its id.

        Posts are keyed by idea: saving again for the same idea replaces
        the earlier post.
        """

    @abstractmethod
    async def get_post_for_idea(self, owner_id: str, idea_id: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def get_voice_profile(self, scope: OwnerScope, speaker: Optional[str]) -> Optional[VoiceProfile]:
        pass

    # Performance

    @abstractmethod
    async def insert_performance_record(self, record: PerformanceRecord) -> bool:
        """Append a snapshot. False when (post_id, captured_at) already exists."""

    @abstractmethod
    async def list_published_posts(self, owner_id: str) -> list[PublishedPost]:
        pass

    @abstractmethod
    async def list_performance_records(self, owner_id: str, post_ids: list[str]) -> list[PerformanceRecord]:
        pass

    @abstractmethod
    async def replace_patterns(self, owner_id: str, patterns: list[PerformancePattern]) -> int:
        """Replace every pattern row for the owner with the given set."""

    @abstractmethod
    async def list_patterns(self, owner_id: str) -> list[PerformancePattern]:
        pass


def _decode_embedding(value: Any) -> Optional[list[float]]:
    """pgvector columns come back from PostgREST as JSON strings."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    return [float(x) for x in value]


def _entry_from_row(row: dict) -> KnowledgeEntry:
    row = dict(row)
    row["embedding"] = _decode_embedding(row.get("embedding"))
    return KnowledgeEntry.from_row(row)


def _serialize_fields(fields: dict) -> dict:
    """Enum members and datetimes to their column representation."""
    payload = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        payload[key] = value
    return payload


def _filters_to_rpc(filters: Optional[SearchFilters]) -> dict:
    filters = filters or SearchFilters()
    return {
        "filter_category": filters.category.value if filters.category else None,
        "filter_speaker": filters.speaker.value if filters.speaker else None,
        "filter_tag": filters.tag,
        "filter_topic": filters.topic,
        "filter_knowledge_type": filters.knowledge_type.value if filters.knowledge_type else None,
        "filter_min_quality": filters.min_quality,
        "filter_since": filters.since.isoformat() if filters.since else None,
    }


class SupabaseBrainStore(BrainStore):
    """
    Store backed by Supabase (Postgres + pgvector).

    Usage:
        store = SupabaseBrainStore()
        entries = await store.list_entries(OwnerScope("user-1"))
    """

    def __init__(self, config: Optional[StoreConfig] = None, client: Optional[Client] = None):
        self.config = config or StoreConfig()
        self._supabase: Optional[Client] = client

    @property
    def supabase(self) -> Client:
        """Lazy initialization of Supabase client."""
        if self._supabase is None:
            if not self.config.supabase_url or not self.config.supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY required")
            self._supabase = create_client(
                self.config.supabase_url,
                self.config.supabase_key,
            )
        return self._supabase

    # =========================================================================
    # KNOWLEDGE ENTRIES
    # =========================================================================

    async def insert_entries(self, entries: list[KnowledgeEntry]) -> list[KnowledgeEntry]:
        if not entries:
            return []
        data = []
        for entry in entries:
            row = entry.to_dict()
            if row["embedding"] is not None:
                row["embedding"] = json.dumps(row["embedding"])
            data.append(row)
        response = self.supabase.table(ENTRIES_TABLE).insert(data).execute()
        for entry, row in zip(entries, response.data):
            entry.id = row["id"]
        return entries

    async def get_entry(self, owner_id: str, entry_id: str) -> Optional[KnowledgeEntry]:
        response = self.supabase.table(ENTRIES_TABLE) \
            .select("*") \
            .eq("id", entry_id) \
            .eq("user_id", owner_id) \
            .limit(1) \
            .execute()
        if not response.data:
            return None
        return _entry_from_row(response.data[0])

    async def update_entry(self, owner_id: str, entry_id: str, fields: dict) -> KnowledgeEntry:
        payload = _serialize_fields(fields)
        if payload.get("embedding") is not None:
            payload["embedding"] = json.dumps(payload["embedding"])
        response = self.supabase.table(ENTRIES_TABLE) \
            .update(payload) \
            .eq("id", entry_id) \
            .eq("user_id", owner_id) \
            .execute()
        if not response.data:
            raise NotFoundError("knowledge entry", entry_id)
        return _entry_from_row(response.data[0])

    async def delete_entry(self, owner_id: str, entry_id: str) -> None:
        self.supabase.table(ENTRIES_TABLE) \
            .delete() \
            .eq("id", entry_id) \
            .eq("user_id", owner_id) \
            .execute()

    async def list_entries(
        self,
        scope: OwnerScope,
        filters: Optional[SearchFilters] = None,
        limit: int = 50,
    ) -> list[KnowledgeEntry]:
        filters = filters or SearchFilters()
        query = self.supabase.table(ENTRIES_TABLE) \
            .select("*") \
            .in_("user_id", scope.owner_ids)

        if filters.category:
            query = query.eq("category", filters.category.value)
        if filters.speaker:
            query = query.eq("speaker", filters.speaker.value)
        if filters.knowledge_type:
            query = query.eq("knowledge_type", filters.knowledge_type.value)
        if filters.tag:
            query = query.contains("tags", [filters.tag])
        if filters.topic:
            query = query.contains("topics", [filters.topic])
        if filters.min_quality:
            query = query.gte("quality_score", filters.min_quality)
        if filters.since:
            query = query.gte("created_at", filters.since.isoformat())
        if filters.source_id:
            query = query.eq("transcript_id", filters.source_id)

        response = query.order("created_at", desc=True).limit(limit).execute()
        return [_entry_from_row(row) for row in response.data]

    async def match_entries(
        self,
        scope: OwnerScope,
        embedding: list[float],
        filters: Optional[SearchFilters] = None,
        limit: int = 20,
        threshold: float = 0.0,
    ) -> list[tuple[KnowledgeEntry, float]]:
        params = {
            "query_embedding": json.dumps(embedding),
            "p_user_ids": scope.owner_ids,
            "match_threshold": threshold,
            "match_count": limit,
            **_filters_to_rpc(filters),
        }
        response = self.supabase.rpc("match_knowledge_entries", params).execute()
        return [
            (_entry_from_row(row), float(row.get("similarity", 0.0)))
            for row in response.data or []
        ]

    async def entries_for_source(self, source_id: str) -> list[KnowledgeEntry]:
        response = self.supabase.table(ENTRIES_TABLE) \
            .select("*") \
            .eq("transcript_id", source_id) \
            .execute()
        return [_entry_from_row(row) for row in response.data]

    async def delete_entries_for_source(self, source_id: str) -> int:
        response = self.supabase.table(ENTRIES_TABLE) \
            .delete() \
            .eq("transcript_id", source_id) \
            .execute()
        return len(response.data or [])

    # =========================================================================
    # TAGS & TOPICS
    # =========================================================================

    async def increment_tag(self, owner_id: str, name: str, amount: int = 1) -> None:
        self.supabase.rpc(
            "increment_tag_count",
            {"p_user_id": owner_id, "p_tag_name": name, "p_amount": amount},
        ).execute()

    async def decrement_tag(self, owner_id: str, name: str, amount: int = 1) -> None:
        self.supabase.rpc(
            "decrement_tag_count",
            {"p_user_id": owner_id, "p_tag_name": name, "p_amount": amount},
        ).execute()

    async def list_tags(self, owner_id: str) -> list[Tag]:
        response = self.supabase.table(TAGS_TABLE) \
            .select("tag_name, usage_count") \
            .eq("user_id", owner_id) \
            .order("usage_count", desc=True) \
            .execute()
        return [
            Tag(owner_id=owner_id, name=row["tag_name"], usage_count=row["usage_count"])
            for row in response.data
        ]

    async def list_topics(self, owner_id: str) -> list[Topic]:
        response = self.supabase.table(TOPICS_TABLE) \
            .select("id, slug, display_name, description, usage_count") \
            .eq("user_id", owner_id) \
            .order("usage_count", desc=True) \
            .execute()
        return [
            Topic(
                id=row.get("id"),
                owner_id=owner_id,
                slug=row["slug"],
                display_name=row["display_name"],
                description=row.get("description"),
                usage_count=row.get("usage_count", 0),
            )
            for row in response.data
        ]

    async def increment_or_create_topic(self, owner_id: str, slug: str, display_name: str) -> Topic:
        response = self.supabase.rpc(
            "upsert_topic_usage",
            {"p_user_id": owner_id, "p_slug": slug, "p_display_name": display_name},
        ).execute()
        data = response.data
        row = data[0] if isinstance(data, list) and data else data or {}
        return Topic(
            id=row.get("id"),
            owner_id=owner_id,
            slug=row.get("slug", slug),
            display_name=row.get("display_name", display_name),
            usage_count=row.get("usage_count", 1),
        )

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    async def list_templates(self, scope: OwnerScope) -> list[Template]:
        owners = ",".join(scope.owner_ids)
        response = self.supabase.table(TEMPLATES_TABLE) \
            .select("*") \
            .eq("is_active", True) \
            .or_(f"is_global.eq.true,user_id.in.({owners})") \
            .execute()
        templates = []
        for row in response.data:
            row = dict(row)
            row["embedding"] = _decode_embedding(row.get("embedding"))
            templates.append(Template.from_row(row))
        return templates

    async def insert_templates(self, templates: list[Template]) -> list[Template]:
        if not templates:
            return []
        data = []
        for template in templates:
            row = template.to_dict()
            if row["embedding"] is not None:
                row["embedding"] = json.dumps(row["embedding"])
            data.append(row)
        response = self.supabase.table(TEMPLATES_TABLE).insert(data).execute()
        for template, row in zip(templates, response.data):
            template.id = row["id"]
        return templates

    async def count_templates(self, owner_id: str) -> int:
        response = self.supabase.table(TEMPLATES_TABLE) \
            .select("id", count="exact") \
            .eq("user_id", owner_id) \
            .execute()
        return response.count or 0

    # =========================================================================
    # SOURCES, IDEAS, POSTS, VOICE
    # =========================================================================

    async def insert_source(self, source: SourceDocument) -> SourceDocument:
        row = {
            "user_id": source.owner_id,
            "team_id": source.team_id,
            "title": source.title,
            "raw_transcript": source.raw_text,
            "participants": source.participants,
            "call_date": source.call_date,
            "transcript_type": source.transcript_type.value if source.transcript_type else None,
            "speaker_map": source.speaker_map,
        }
        response = self.supabase.table(TRANSCRIPTS_TABLE).insert(row).execute()
        source.id = response.data[0]["id"]
        return source

    async def get_source(self, owner_id: str, source_id: str) -> Optional[SourceDocument]:
        response = self.supabase.table(TRANSCRIPTS_TABLE) \
            .select("*") \
            .eq("id", source_id) \
            .eq("user_id", owner_id) \
            .limit(1) \
            .execute()
        if not response.data:
            return None
        return SourceDocument.from_row(response.data[0])

    async def update_source(self, source_id: str, fields: dict) -> None:
        self.supabase.table(TRANSCRIPTS_TABLE).update(_serialize_fields(fields)).eq("id", source_id).execute()

    async def get_idea(self, owner_id: str, idea_id: str) -> Optional[ContentIdea]:
        response = self.supabase.table(IDEAS_TABLE) \
            .select("*") \
            .eq("id", idea_id) \
            .eq("user_id", owner_id) \
            .limit(1) \
            .execute()
        if not response.data:
            return None
        return ContentIdea.from_row(response.data[0])

    async def insert_ideas(self, ideas: list[ContentIdea]) -> list[ContentIdea]:
        if not ideas:
            return []
        data = [
            {
                "user_id": idea.owner_id,
                "transcript_id": idea.source_id,
                "title": idea.title,
                "core_insight": idea.core_insight,
                "full_context": idea.full_context,
                "why_post_worthy": idea.why_post_worthy,
                "content_type": idea.content_type,
                "content_pillar": idea.content_pillar,
                "post_ready": idea.post_ready,
                "hook": idea.hook,
                "key_points": idea.key_points,
                "status": idea.status,
            }
            for idea in ideas
        ]
        response = self.supabase.table(IDEAS_TABLE).insert(data).execute()
        for idea, row in zip(ideas, response.data):
            idea.id = row["id"]
        return ideas

    async def update_idea_status(self, owner_id: str, idea_id: str, status: str) -> None:
        self.supabase.table(IDEAS_TABLE) \
            .update({"status": status, "updated_at": utcnow().isoformat()}) \
            .eq("id", idea_id) \
            .eq("user_id", owner_id) \
            .execute()

    async def delete_ideas_for_source(self, source_id: str) -> int:
        response = self.supabase.table(IDEAS_TABLE) \
            .delete() \
            .eq("transcript_id", source_id) \
            .execute()
        return len(response.data or [])

    async def save_post(self, owner_id: str, idea_id: Optional[str], fields: dict) -> str:
        row = {"user_id": owner_id, "idea_id": idea_id, **fields}
        if idea_id is None:
            response = self.supabase.table(POSTS_TABLE).insert(row).execute()
        else:
            response = self.supabase.table(POSTS_TABLE).upsert(row, on_conflict="idea_id").execute()
        return response.data[0]["id"]

    async def get_post_for_idea(self, owner_id: str, idea_id: str) -> Optional[dict]:
        response = self.supabase.table(POSTS_TABLE) \
            .select("*") \
            .eq("idea_id", idea_id) \
            .eq("user_id", owner_id) \
            .limit(1) \
            .execute()
        return response.data[0] if response.data else None

    async def get_voice_profile(self, scope: OwnerScope, speaker: Optional[str]) -> Optional[VoiceProfile]:
        query = self.supabase.table(VOICE_TABLE).select("*").in_("user_id", scope.owner_ids)
        if speaker:
            query = query.eq("speaker", speaker)
        response = query.limit(1).execute()
        if not response.data:
            return None
        return VoiceProfile.from_row(response.data[0])

    # =========================================================================
    # PERFORMANCE
    # =========================================================================

    async def insert_performance_record(self, record: PerformanceRecord) -> bool:
        response = self.supabase.table(PERFORMANCE_TABLE) \
            .upsert(
                record.to_dict(),
                on_conflict="post_id,captured_at",
                ignore_duplicates=True,
            ) \
            .execute()
        return bool(response.data)

    async def list_published_posts(self, owner_id: str) -> list[PublishedPost]:
        response = self.supabase.table(POSTS_TABLE) \
            .select("id, user_id, draft_content, final_content, topic, published_at, scheduled_time, idea_id") \
            .eq("user_id", owner_id) \
            .eq("status", "published") \
            .execute()
        posts = response.data or []

        idea_ids = [p["idea_id"] for p in posts if p.get("idea_id")]
        ideas: dict[str, ContentIdea] = {}
        if idea_ids:
            idea_response = self.supabase.table(IDEAS_TABLE) \
                .select("id, user_id, title, content_type, content_pillar, hook") \
                .in_("id", idea_ids) \
                .execute()
            ideas = {row["id"]: ContentIdea.from_row(row) for row in idea_response.data}

        return [PublishedPost.from_row(row, ideas.get(row.get("idea_id"))) for row in posts]

    async def list_performance_records(self, owner_id: str, post_ids: list[str]) -> list[PerformanceRecord]:
        if not post_ids:
            return []
        response = self.supabase.table(PERFORMANCE_TABLE) \
            .select("*") \
            .eq("user_id", owner_id) \
            .in_("post_id", post_ids) \
            .order("captured_at", desc=True) \
            .execute()
        return [PerformanceRecord.from_row(row) for row in response.data]

    async def replace_patterns(self, owner_id: str, patterns: list[PerformancePattern]) -> int:
        # Single transaction on the database side
        self.supabase.rpc(
            "replace_performance_patterns",
            {"p_user_id": owner_id, "p_patterns": [p.to_dict() for p in patterns]},
        ).execute()
        return len(patterns)

    async def list_patterns(self, owner_id: str) -> list[PerformancePattern]:
        response = self.supabase.table(PATTERNS_TABLE) \
            .select("*") \
            .eq("user_id", owner_id) \
            .order("avg_engagement_rate", desc=True) \
            .execute()
        return [PerformancePattern.from_row(row) for row in response.data]


class InMemoryBrainStore(BrainStore):
    """
    Process-local store with the same semantics as the Postgres schema.

    Counter operations run under an asyncio lock so concurrent coroutines
    never lose updates.
    """

    def __init__(self):
        self.entries: dict[str, KnowledgeEntry] = {}
        self.tags: dict[tuple[str, str], int] = {}
        self.topics: dict[tuple[str, str], Topic] = {}
        self.templates: dict[str, Template] = {}
        self.sources: dict[str, SourceDocument] = {}
        self.ideas: dict[str, ContentIdea] = {}
        self.posts: dict[str, dict] = {}
        self.voice_profiles: list[tuple[str, VoiceProfile]] = []
        self.performance: dict[tuple[str, str], PerformanceRecord] = {}
        self.patterns: dict[str, list[PerformancePattern]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _new_id() -> str:
        return str(uuid4())

    # Seeding helpers

    def add_source(self, source: SourceDocument) -> SourceDocument:
        source.id = source.id or self._new_id()
        self.sources[source.id] = source
        return source

    def add_post(
        self,
        owner_id: str,
        content: str,
        idea_id: Optional[str] = None,
        status: str = "published",
        published_at=None,
        topic: Optional[str] = None,
        post_id: Optional[str] = None,
    ) -> str:
        post_id = post_id or self._new_id()
        self.posts[post_id] = {
            "id": post_id,
            "user_id": owner_id,
            "idea_id": idea_id,
            "final_content": content,
            "status": status,
            "published_at": published_at,
            "topic": topic,
        }
        return post_id

    def add_voice_profile(self, owner_id: str, profile: VoiceProfile) -> None:
        self.voice_profiles.append((owner_id, profile))

    # Knowledge entries

    async def insert_entries(self, entries: list[KnowledgeEntry]) -> list[KnowledgeEntry]:
        for entry in entries:
            entry.id = entry.id or self._new_id()
            self.entries[entry.id] = entry
        return entries

    async def get_entry(self, owner_id: str, entry_id: str) -> Optional[KnowledgeEntry]:
        entry = self.entries.get(entry_id)
        if entry is None or entry.owner_id != owner_id:
            return None
        return entry

    async def update_entry(self, owner_id: str, entry_id: str, fields: dict) -> KnowledgeEntry:
        entry = await self.get_entry(owner_id, entry_id)
        if entry is None:
            raise NotFoundError("knowledge entry", entry_id)
        for key, value in fields.items():
            setattr(entry, key, value)
        return entry

    async def delete_entry(self, owner_id: str, entry_id: str) -> None:
        entry = await self.get_entry(owner_id, entry_id)
        if entry is not None:
            del self.entries[entry_id]

    def _visible(self, scope: OwnerScope, filters: Optional[SearchFilters]) -> list[KnowledgeEntry]:
        filters = filters or SearchFilters()
        owners = set(scope.owner_ids)
        return [
            e for e in self.entries.values()
            if e.owner_id in owners and filters.matches(e)
        ]

    async def list_entries(
        self,
        scope: OwnerScope,
        filters: Optional[SearchFilters] = None,
        limit: int = 50,
    ) -> list[KnowledgeEntry]:
        visible = sorted(self._visible(scope, filters), key=lambda e: e.created_at, reverse=True)
        return visible[:limit]

    async def match_entries(
        self,
        scope: OwnerScope,
        embedding: list[float],
        filters: Optional[SearchFilters] = None,
        limit: int = 20,
        threshold: float = 0.0,
    ) -> list[tuple[KnowledgeEntry, float]]:
        scored = []
        for entry in self._visible(scope, filters):
            if entry.embedding is None:
                continue
            similarity = cosine_similarity(embedding, entry.embedding)
            if similarity >= threshold:
                scored.append((entry, similarity))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    async def entries_for_source(self, source_id: str) -> list[KnowledgeEntry]:
        return [e for e in self.entries.values() if e.source_id == source_id]

    async def delete_entries_for_source(self, source_id: str) -> int:
        doomed = [eid for eid, e in self.entries.items() if e.source_id == source_id]
        for eid in doomed:
            del self.entries[eid]
        return len(doomed)

    # Tags & topics

    async def increment_tag(self, owner_id: str, name: str, amount: int = 1) -> None:
        async with self._lock:
            key = (owner_id, name)
            self.tags[key] = self.tags.get(key, 0) + amount

    async def decrement_tag(self, owner_id: str, name: str, amount: int = 1) -> None:
        async with self._lock:
            key = (owner_id, name)
            self.tags[key] = max(0, self.tags.get(key, 0) - amount)

    async def list_tags(self, owner_id: str) -> list[Tag]:
        tags = [
            Tag(owner_id=owner, name=name, usage_count=count)
            for (owner, name), count in self.tags.items()
            if owner == owner_id
        ]
        return sorted(tags, key=lambda t: t.usage_count, reverse=True)

    async def list_topics(self, owner_id: str) -> list[Topic]:
        topics = [t for (owner, _), t in self.topics.items() if owner == owner_id]
        return sorted(topics, key=lambda t: t.usage_count, reverse=True)

    async def increment_or_create_topic(self, owner_id: str, slug: str, display_name: str) -> Topic:
        async with self._lock:
            key = (owner_id, slug)
            topic = self.topics.get(key)
            if topic is None:
                topic = Topic(
                    id=self._new_id(),
                    owner_id=owner_id,
                    slug=slug,
                    display_name=display_name,
                    usage_count=1,
                )
                self.topics[key] = topic
            else:
                topic.usage_count += 1
            return topic

    # Templates

    async def list_templates(self, scope: OwnerScope) -> list[Template]:
        owners = set(scope.owner_ids)
        return [
            t for t in self.templates.values()
            if t.is_global or t.owner_id is None or t.owner_id in owners
        ]

    async def insert_templates(self, templates: list[Template]) -> list[Template]:
        for template in templates:
            template.id = template.id or self._new_id()
            self.templates[template.id] = template
        return templates

    async def count_templates(self, owner_id: str) -> int:
        return sum(1 for t in self.templates.values() if t.owner_id == owner_id)

    # Sources, ideas, posts, voice

    async def insert_source(self, source: SourceDocument) -> SourceDocument:
        return self.add_source(source)

    async def get_source(self, owner_id: str, source_id: str) -> Optional[SourceDocument]:
        source = self.sources.get(source_id)
        if source is None or source.owner_id != owner_id:
            return None
        return source

    async def update_source(self, source_id: str, fields: dict) -> None:
        source = self.sources.get(source_id)
        if source is None:
            return
        for key, value in fields.items():
            setattr(source, key, value)

    async def get_idea(self, owner_id: str, idea_id: str) -> Optional[ContentIdea]:
        idea = self.ideas.get(idea_id)
        if idea is None or idea.owner_id != owner_id:
            return None
        return idea

    async def insert_ideas(self, ideas: list[ContentIdea]) -> list[ContentIdea]:
        for idea in ideas:
            idea.id = idea.id or self._new_id()
            self.ideas[idea.id] = idea
        return ideas

    async def update_idea_status(self, owner_id: str, idea_id: str, status: str) -> None:
        idea = await self.get_idea(owner_id, idea_id)
        if idea is not None:
            idea.status = status

    async def delete_ideas_for_source(self, source_id: str) -> int:
        doomed = [iid for iid, idea in self.ideas.items() if idea.source_id == source_id]
        for iid in doomed:
            del self.ideas[iid]
        return len(doomed)

    async def save_post(self, owner_id: str, idea_id: Optional[str], fields: dict) -> str:
        existing = await self.get_post_for_idea(owner_id, idea_id) if idea_id else None
        post_id = existing["id"] if existing else self._new_id()
        self.posts[post_id] = {"id": post_id, "user_id": owner_id, "idea_id": idea_id, **fields}
        return post_id

    async def get_post_for_idea(self, owner_id: str, idea_id: str) -> Optional[dict]:
        for post in self.posts.values():
            if post.get("idea_id") == idea_id and post.get("user_id") == owner_id:
                return post
        return None

    async def get_voice_profile(self, scope: OwnerScope, speaker: Optional[str]) -> Optional[VoiceProfile]:
        owners = set(scope.owner_ids)
        for owner, profile in self.voice_profiles:
            if owner in owners and (speaker is None or profile.speaker == speaker):
                return profile
        return None

    # Performance

    async def insert_performance_record(self, record: PerformanceRecord) -> bool:
        key = (record.post_id, record.captured_at.isoformat())
        async with self._lock:
            if key in self.performance:
                return False
            self.performance[key] = record
            return True

    async def list_published_posts(self, owner_id: str) -> list[PublishedPost]:
        posts = []
        for row in self.posts.values():
            if row.get("user_id") != owner_id or row.get("status") != "published":
                continue
            idea = self.ideas.get(row.get("idea_id")) if row.get("idea_id") else None
            posts.append(PublishedPost.from_row(row, idea))
        return sorted(posts, key=lambda p: p.id)

    async def list_performance_records(self, owner_id: str, post_ids: list[str]) -> list[PerformanceRecord]:
        wanted = set(post_ids)
        records = [
            r for r in self.performance.values()
            if r.owner_id == owner_id and r.post_id in wanted
        ]
        return sorted(records, key=lambda r: r.captured_at, reverse=True)

    async def replace_patterns(self, owner_id: str, patterns: list[PerformancePattern]) -> int:
        async with self._lock:
            self.patterns[owner_id] = list(patterns)
        return len(patterns)

    async def list_patterns(self, owner_id: str) -> list[PerformancePattern]:
        patterns = list(self.patterns.get(owner_id, []))
        return sorted(patterns, key=lambda p: p.avg_engagement_rate, reverse=True)
