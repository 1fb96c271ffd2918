"""
Content Brain - Knowledge to Content Pipeline
==============================================

Turns call transcripts into a searchable knowledge base and uses it to
write, polish and learn from LinkedIn posts.

Stages:
- Classification (transcript -> coaching or sales)
- Extraction (transcripts -> typed knowledge entries and content ideas)
- Topic normalization (free-text topics -> canonical slugs)
- Retrieval (semantic search + budgeted context compilation)
- Template matching (idea -> proven post structure)
- Briefing, writing and polishing
- Performance analysis (engagement -> patterns -> guidance)

Usage:
    from src.brain import (
        KnowledgeIngestionService,
        KnowledgeExtractor,
        KnowledgeBrain,
        SupabaseBrainStore,
    )

    store = SupabaseBrainStore()
    embeddings = EmbeddingClient()
    extractor = KnowledgeExtractor(normalizer=TopicNormalizer(store, embeddings))
    service = KnowledgeIngestionService(store, extractor, embeddings)

    # Ingest a transcript
    result = await service.ingest_text("user-1", transcript, title="Discovery call")

    # Query knowledge for a post
    brain = KnowledgeBrain(store, embeddings)
    context = await brain.compile_context("pricing objections", OwnerScope("user-1"))
"""

from src.brain.base import (
    ContentIdea,
    KnowledgeCategory,
    KnowledgeEntry,
    KnowledgeType,
    OwnerScope,
    PerformancePattern,
    PerformanceRecord,
    SearchFilters,
    Template,
)
from src.brain.briefing import BriefingAgent, ContentBrief
from src.brain.embeddings import EmbeddingCache, EmbeddingClient
from src.brain.errors import (
    BrainError,
    ConsistencyError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from src.brain.extraction import KnowledgeExtractor, TranscriptClassifier
from src.brain.idea_extraction import IdeaExtractor
from src.brain.ideas import IdeaStatus, IdeaWorkflow
from src.brain.jobs import JobPayload, JobResult, JobRunner, JobStatus, JobType
from src.brain.llm import LLMClient
from src.brain.performance import PerformanceAnalyzer
from src.brain.polish import EditPatternClassifier, PostPolisher
from src.brain.retrieval import KnowledgeBrain
from src.brain.service import KnowledgeIngestionService
from src.brain.store import BrainStore, InMemoryBrainStore, SupabaseBrainStore
from src.brain.templates import TemplateMatcher
from src.brain.topics import TopicNormalizer
from src.brain.writer import PostWriter

__all__ = [
    "ContentIdea",
    "KnowledgeCategory",
    "KnowledgeEntry",
    "KnowledgeType",
    "OwnerScope",
    "PerformancePattern",
    "PerformanceRecord",
    "SearchFilters",
    "Template",
    "BriefingAgent",
    "ContentBrief",
    "EmbeddingCache",
    "EmbeddingClient",
    "BrainError",
    "ConsistencyError",
    "ExternalServiceError",
    "NotFoundError",
    "ValidationError",
    "KnowledgeExtractor",
    "TranscriptClassifier",
    "IdeaExtractor",
    "IdeaStatus",
    "IdeaWorkflow",
    "JobPayload",
    "JobResult",
    "JobRunner",
    "JobStatus",
    "JobType",
    "LLMClient",
    "PerformanceAnalyzer",
    "EditPatternClassifier",
    "PostPolisher",
    "KnowledgeBrain",
    "KnowledgeIngestionService",
    "BrainStore",
    "InMemoryBrainStore",
    "SupabaseBrainStore",
    "TemplateMatcher",
    "TopicNormalizer",
    "PostWriter",
]
