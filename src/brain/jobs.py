"""
Background jobs.

Every Content Brain operation that touches a provider runs as a job: a
coroutine handler keyed by JobType, driven by JobRunner. The runner retries
retryable provider failures with exponential backoff and turns everything
else into a JobResult. No state survives between runs.

Configure retries via environment variables:
- RETRY_MAX_ATTEMPTS: Maximum retry attempts (default: 3)
- RETRY_INITIAL_DELAY_MS: Initial delay (default: 1000)
- RETRY_MAX_DELAY_MS: Maximum delay (default: 30000)
- RETRY_BACKOFF_MULTIPLIER: Backoff multiplier (default: 2)
"""

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

from pydantic import BaseModel, Field

from src.brain.base import OwnerScope
from src.brain.briefing import BriefingAgent
from src.brain.config import RetryConfig
from src.brain.errors import BrainError, ExternalServiceError, NotFoundError, ValidationError
from src.brain.ideas import IdeaStatus, IdeaWorkflow
from src.brain.performance import PerformanceAnalyzer
from src.brain.polish import PostPolisher
from src.brain.service import KnowledgeIngestionService
from src.brain.store import BrainStore
from src.brain.templates import seed_templates
from src.brain.writer import PostWriter

logger = logging.getLogger(__name__)

# A redelivered write job for an idea in one of these states reuses its post.
_POST_WRITTEN_STATES = frozenset({
    IdeaStatus.WRITTEN.value,
    IdeaStatus.SCHEDULED.value,
    IdeaStatus.PUBLISHED.value,
})


class JobType(str, Enum):
    PROCESS_TRANSCRIPT = "process_transcript"
    REPROCESS_TRANSCRIPT = "reprocess_transcript"
    WRITE_POST = "write_post"
    ANALYZE_PERFORMANCE = "analyze_performance"
    SEED_TEMPLATES = "seed_templates"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobPayload(BaseModel):
    """Arguments shared by all job types."""

    owner_id: str
    team_id: Optional[str] = None
    member_ids: list[str] = Field(default_factory=list)
    source_id: Optional[str] = None
    idea_id: Optional[str] = None
    author_name: Optional[str] = None

    @property
    def scope(self) -> OwnerScope:
        return OwnerScope(self.owner_id, self.team_id, tuple(self.member_ids))


class JobResult(BaseModel):
    """Outcome of one job run. Partial success is success with skipped stages."""

    job_type: JobType
    status: JobStatus = JobStatus.PENDING
    success: bool = False
    attempts: int = 0
    skipped_stages: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class JobQueue(Protocol):
    """Anything that can accept a job for asynchronous execution."""

    async def enqueue(self, job_type: JobType, payload: JobPayload) -> str:
        ...


class InMemoryJobQueue:
    """
    Queue that keeps jobs in a list and runs them on demand.

    Usage:
        queue = InMemoryJobQueue()
        job_id = await queue.enqueue(JobType.WRITE_POST, payload)
        results = await queue.drain(runner)
    """

    def __init__(self):
        self.jobs: list[tuple[str, JobType, JobPayload]] = []
        self.statuses: dict[str, JobStatus] = {}
        self.results: dict[str, JobResult] = {}

    async def enqueue(self, job_type: JobType, payload: JobPayload) -> str:
        job_id = str(uuid.uuid4())
        self.jobs.append((job_id, job_type, payload))
        self.statuses[job_id] = JobStatus.PENDING
        return job_id

    async def drain(self, runner: "JobRunner") -> list[JobResult]:
        results = []
        while self.jobs:
            job_id, job_type, payload = self.jobs.pop(0)
            self.statuses[job_id] = JobStatus.PROCESSING
            result = await runner.run(job_type, payload)
            self.statuses[job_id] = result.status
            self.results[job_id] = result
            results.append(result)
        return results


Handler = Callable[[JobPayload, JobResult], Awaitable[dict]]


class JobRunner:
    """
    Runs jobs with retry and failure classification.

    - ExternalServiceError (retryable): retried with exponential backoff,
      then failed
    - NotFoundError / ValidationError: failed without retry
    - anything else: logged with traceback, failed

    Usage:
        runner = JobRunner(store, service=service, briefing=agent, writer=writer)
        result = await runner.run(JobType.PROCESS_TRANSCRIPT, JobPayload(owner_id="u1", source_id="t1"))
    """

    def __init__(
        self,
        store: BrainStore,
        service: Optional[KnowledgeIngestionService] = None,
        briefing: Optional[BriefingAgent] = None,
        writer: Optional[PostWriter] = None,
        polisher: Optional[PostPolisher] = None,
        analyzer: Optional[PerformanceAnalyzer] = None,
        retry: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.service = service
        self.briefing = briefing
        self.writer = writer
        self.polisher = polisher
        self.analyzer = analyzer
        self.retry = retry or RetryConfig()
        self._sleep = sleep
        self.handlers: dict[JobType, Handler] = {
            JobType.PROCESS_TRANSCRIPT: self._process_transcript,
            JobType.REPROCESS_TRANSCRIPT: self._reprocess_transcript,
            JobType.WRITE_POST: self._write_post,
            JobType.ANALYZE_PERFORMANCE: self._analyze_performance,
            JobType.SEED_TEMPLATES: self._seed_templates,
        }

    def backoff_ms(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        return min(
            self.retry.initial_delay_ms * (self.retry.backoff_multiplier ** attempt),
            self.retry.max_delay_ms,
        )

    async def run(self, job_type: JobType, payload: JobPayload) -> JobResult:
        result = JobResult(job_type=job_type, status=JobStatus.PROCESSING)
        handler = self.handlers[job_type]

        for attempt in range(self.retry.max_retries + 1):
            result.attempts = attempt + 1
            result.notes = []
            result.skipped_stages = []
            try:
                result.data = await handler(payload, result)
                result.success = True
                result.status = JobStatus.COMPLETED
                if attempt > 0:
                    logger.info(f"Job {job_type.value} succeeded on attempt {attempt + 1}")
                return result

            except ExternalServiceError as e:
                if not e.retryable or attempt >= self.retry.max_retries:
                    logger.warning(f"Job {job_type.value} failed after {attempt + 1} attempts: {e}")
                    return self._fail(result, e)
                delay_ms = self.backoff_ms(attempt)
                logger.warning(f"Job {job_type.value} attempt {attempt + 1} failed, retrying in {delay_ms}ms: {e}")
                await self._sleep(delay_ms / 1000)

            except (NotFoundError, ValidationError) as e:
                logger.warning(f"Job {job_type.value} failed: {e}")
                return self._fail(result, e)

            except Exception as e:
                logger.exception(f"Job {job_type.value} crashed: {e}")
                return self._fail(result, e)

        return result

    def _fail(self, result: JobResult, error: Exception) -> JobResult:
        result.success = False
        result.status = JobStatus.FAILED
        result.error = str(error)
        return result

    def _require(self, component: Any, name: str) -> Any:
        if component is None:
            raise ValidationError(f"Job runner has no {name} configured")
        return component

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def _process_transcript(self, payload: JobPayload, result: JobResult) -> dict:
        service = self._require(self.service, "ingestion service")
        if not payload.source_id:
            raise ValidationError("source_id is required")
        processed = await service.process_transcript(payload.owner_id, payload.source_id)
        return self._processing_data(processed, result)

    async def _reprocess_transcript(self, payload: JobPayload, result: JobResult) -> dict:
        service = self._require(self.service, "ingestion service")
        if not payload.source_id:
            raise ValidationError("source_id is required")
        processed = await service.reprocess_transcript(payload.owner_id, payload.source_id)
        data = self._processing_data(processed, result)
        data["entries_deleted"] = processed.entries_deleted
        data["ideas_deleted"] = processed.ideas_deleted
        return data

    def _processing_data(self, processed, result: JobResult) -> dict:
        extraction = processed.extraction
        result.skipped_stages.extend(processed.skipped_stages)
        if processed.stages_already_done:
            result.notes.append(f"Already processed: {', '.join(processed.stages_already_done)}")
        if extraction.items_skipped:
            result.notes.append(f"{extraction.items_skipped} extracted items skipped")
        if processed.tag_drift:
            result.notes.append(f"Tag counts may have drifted for: {', '.join(processed.tag_drift)}")
        return {
            "source_id": processed.source_id,
            "transcript_type": processed.transcript_type.value if processed.transcript_type else None,
            "entries_saved": processed.entries_saved,
            "ideas_saved": processed.ideas_saved,
            "batches_processed": extraction.batches_processed,
            "items_skipped": extraction.items_skipped,
        }

    async def _write_post(self, payload: JobPayload, result: JobResult) -> dict:
        """Brief, write and polish a post for an idea in the writing state."""
        briefing = self._require(self.briefing, "briefing agent")
        writer = self._require(self.writer, "post writer")
        if not payload.idea_id:
            raise ValidationError("idea_id is required")

        idea = await self.store.get_idea(payload.owner_id, payload.idea_id)
        if idea is None:
            raise NotFoundError("content idea", payload.idea_id)

        if idea.status in _POST_WRITTEN_STATES:
            existing = await self.store.get_post_for_idea(payload.owner_id, idea.id)
            if existing is not None:
                result.notes.append(f"Post already written for this idea ({idea.status})")
                return {
                    "post_id": existing["id"],
                    "template_name": existing.get("template_name"),
                    "hook_score": existing.get("hook_score"),
                    "topic_readiness": None,
                }

        brief = await briefing.build_brief(idea, payload.scope)
        if not brief.entries:
            result.notes.append("No knowledge matched this idea")
        if not brief.has_template:
            result.notes.append("No template matched, used generic structure")

        draft = await writer.write(brief, author_name=payload.author_name)

        content = draft.content
        hook_score = None
        if self.polisher is None:
            result.skipped_stages.append("polish")
        else:
            try:
                polished = await self.polisher.polish(draft)
            except BrainError as e:
                logger.warning(f"Polish failed for idea {idea.id}, keeping draft: {e}")
                result.skipped_stages.append("polish")
            else:
                content = polished.polished_text
                hook_score = polished.hook_score.score
                result.notes.extend(polished.changes)

        post_id = await self.store.save_post(
            payload.owner_id,
            idea.id,
            {
                "draft_content": draft.content,
                "final_content": content,
                "dm_template": draft.dm_template,
                "cta_word": draft.cta_word,
                "variations": [v.model_dump() for v in draft.variations],
                "template_name": draft.template_name,
                "hook_score": hook_score,
                "status": "draft",
            },
        )

        if idea.status == IdeaStatus.WRITING.value:
            await IdeaWorkflow(self.store).advance(payload.owner_id, idea.id, IdeaStatus.WRITTEN)
        else:
            result.notes.append(f"Idea status left as {idea.status}")

        logger.info(f"Saved post {post_id} for idea {idea.id}")
        return {
            "post_id": post_id,
            "template_name": draft.template_name,
            "hook_score": hook_score,
            "topic_readiness": brief.topic_readiness,
        }

    async def _analyze_performance(self, payload: JobPayload, result: JobResult) -> dict:
        analyzer = self._require(self.analyzer, "performance analyzer")
        patterns = await analyzer.analyze(payload.owner_id)
        if not patterns:
            result.notes.append("No performance data to analyze")
        return {"patterns": len(patterns)}

    async def _seed_templates(self, payload: JobPayload, result: JobResult) -> dict:
        embeddings = self.service.embeddings if self.service is not None else None
        inserted = await seed_templates(self.store, payload.owner_id, embeddings)
        if not inserted:
            result.notes.append("Template library already seeded")
        return {"inserted": inserted}
