"""
Configuration for the Content Brain.

Every value can be passed explicitly or picked up from the environment.
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class LLMConfig:
    """Configuration for the language-model provider (OpenRouter)."""

    openrouter_api_key: str = ""
    model: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    temperature: float = 0.3
    max_tokens: int = 4096
    timeout_seconds: float = 60.0

    def __post_init__(self):
        if not self.openrouter_api_key:
            self.openrouter_api_key = os.getenv("OPENROUTER_API_KEY", "")
        if not self.model:
            self.model = os.getenv("BRAIN_MODEL", "anthropic/claude-sonnet-4")


@dataclass
class EmbeddingConfig:
    """Configuration for the embedding provider (OpenAI-compatible)."""

    api_key: str = ""
    model: str = "text-embedding-3-small"
    base_url: str = "https://api.openai.com/v1"
    enabled: bool = True
    timeout_seconds: float = 30.0
    max_input_chars: int = 8000

    def __post_init__(self):
        if not self.api_key:
            self.api_key = os.getenv("EMBEDDINGS_API_KEY") or os.getenv("OPENAI_API_KEY", "")
        self.enabled = self.enabled and _env_bool("EMBEDDINGS_ENABLED", "true")


@dataclass
class ExtractorConfig:
    """Configuration for batched knowledge extraction."""

    batch_size: int = 0
    batch_delay_seconds: float = -1.0
    segment_max_chars: int = 1500
    max_transcript_chars: int = 100000
    max_tags: int = 5
    max_tokens: int = 8000
    classify_sample_chars: int = 6000

    def __post_init__(self):
        if self.batch_size <= 0:
            self.batch_size = int(os.getenv("EXTRACTION_BATCH_SIZE", "10"))
        if self.batch_delay_seconds < 0:
            self.batch_delay_seconds = float(os.getenv("EXTRACTION_BATCH_DELAY_SECONDS", "1.0"))


@dataclass
class IdeaExtractorConfig:
    """Configuration for content idea extraction."""

    max_transcript_chars: int = 25000
    max_tokens: int = 8000


@dataclass
class TopicConfig:
    """Configuration for topic normalization."""

    match_threshold: float = 0.8
    embedding_threshold: float = 0.88
    max_topics_per_entry: int = 3


@dataclass
class RetrievalConfig:
    """Configuration for knowledge search and context compilation."""

    default_limit: int = 20
    similarity_threshold: float = 0.3
    context_budget_chars: int = 6000
    quality_boost: float = 0.1


@dataclass
class TemplateConfig:
    """Configuration for template matching."""

    top_k: int = 3
    min_similarity: float = 0.5
    tie_margin: float = 0.03
    cache_ttl_seconds: int = 3600
    cache_max_size: int = 500


@dataclass
class RetryConfig:
    """Configuration for job-level retry with exponential backoff."""

    max_retries: int = -1
    initial_delay_ms: int = -1
    max_delay_ms: int = -1
    backoff_multiplier: float = -1.0

    def __post_init__(self):
        if self.max_retries < 0:
            self.max_retries = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
        if self.initial_delay_ms < 0:
            self.initial_delay_ms = int(os.getenv("RETRY_INITIAL_DELAY_MS", "1000"))
        if self.max_delay_ms < 0:
            self.max_delay_ms = int(os.getenv("RETRY_MAX_DELAY_MS", "30000"))
        if self.backoff_multiplier < 0:
            self.backoff_multiplier = float(os.getenv("RETRY_BACKOFF_MULTIPLIER", "2"))


@dataclass
class StoreConfig:
    """Configuration for the Supabase store."""

    supabase_url: str = ""
    supabase_key: str = ""

    def __post_init__(self):
        if not self.supabase_url:
            self.supabase_url = os.getenv("SUPABASE_URL", "")
        if not self.supabase_key:
            self.supabase_key = os.getenv("SUPABASE_SERVICE_KEY", "")
