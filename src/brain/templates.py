"""
Template matching (RAG) and the seed template library.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from src.brain.base import OwnerScope, Template
from src.brain.config import TemplateConfig
from src.brain.embeddings import EmbeddingCache, EmbeddingClient, cosine_similarity
from src.brain.store import BrainStore

logger = logging.getLogger(__name__)

SEED_THRESHOLD = 10


SEED_TEMPLATES = [
    Template(
        name="Before/After Transformation",
        category="story",
        description="Show a dramatic before/after with specific results",
        structure=(
            "[BOLD RESULT STATEMENT]\n\n[BEFORE SITUATION - paint the pain]\n\n"
            "[TURNING POINT - what changed]\n\n[AFTER RESULT - specific numbers]\n\n"
            "[TAKEAWAY - what the reader can learn]"
        ),
        use_cases=["Case studies", "Client wins", "Personal growth stories"],
        tags=["storytelling", "results", "transformation"],
    ),
    Template(
        name="Contrarian Take",
        category="contrarian",
        description="Challenge conventional wisdom with evidence",
        structure=(
            "[CONTROVERSIAL STATEMENT]\n\n[WHAT EVERYONE BELIEVES]\n\n"
            "[WHY IT'S WRONG - evidence/experience]\n\n[WHAT TO DO INSTEAD]\n\n[CALL TO ACTION]"
        ),
        use_cases=["Industry hot takes", "Myth busting", "Reframing problems"],
        tags=["contrarian", "thought-leadership", "debate"],
    ),
    Template(
        name="Step-by-Step Framework",
        category="framework",
        description="Teach a process with numbered steps",
        structure=(
            "[RESULT YOU CAN ACHIEVE]\n\n[WHY THIS MATTERS]\n\n"
            "Step 1: [ACTION] - [BRIEF EXPLANATION]\nStep 2: [ACTION] - [BRIEF EXPLANATION]\n"
            "Step 3: [ACTION] - [BRIEF EXPLANATION]\n\n[SUMMARY + CTA]"
        ),
        use_cases=["How-to guides", "Process breakdowns", "Tutorials"],
        tags=["educational", "framework", "actionable"],
    ),
    Template(
        name="Mistake I Made",
        category="story",
        description="Vulnerable confession that teaches a lesson",
        structure=(
            "[CONFESSION/ADMISSION]\n\n[WHAT I DID WRONG]\n\n[THE CONSEQUENCES]\n\n"
            "[WHAT I LEARNED]\n\n[ADVICE FOR THE READER]"
        ),
        use_cases=["Lessons learned", "Vulnerability posts", "Teaching through failure"],
        tags=["vulnerability", "lessons", "authenticity"],
    ),
    Template(
        name="Data-Driven Insight",
        category="educational",
        description="Share surprising data with analysis",
        structure=(
            "[SURPRISING STATISTIC OR DATA POINT]\n\n[CONTEXT - why this matters]\n\n"
            "[ANALYSIS - what it means]\n\n[IMPLICATIONS - what to do about it]\n\n"
            "[QUESTION FOR ENGAGEMENT]"
        ),
        use_cases=["Industry trends", "Research findings", "Market analysis"],
        tags=["data", "research", "insights"],
    ),
    Template(
        name="Unpopular Opinion",
        category="contrarian",
        description="State a strong opinion and defend it",
        structure=(
            "Unpopular opinion: [BOLD STATEMENT]\n\n[YOUR REASONING - 2-3 paragraphs]\n\n"
            "[ACKNOWLEDGE THE COUNTERARGUMENT]\n\n[WHY YOU STILL BELIEVE THIS]\n\n"
            "[ASK: agree or disagree?]"
        ),
        use_cases=["Thought leadership", "Debate starters", "Position pieces"],
        tags=["opinion", "debate", "engagement"],
    ),
    Template(
        name="Quick Tip",
        category="educational",
        description="One actionable tip with context",
        structure="[ONE-LINE TIP]\n\n[WHY IT WORKS]\n\n[EXAMPLE]\n\n[HOW TO IMPLEMENT TODAY]",
        use_cases=["Daily tips", "Quick wins", "Productivity hacks"],
        tags=["tips", "quick", "actionable"],
    ),
    Template(
        name="Client Story",
        category="case_study",
        description="Real client example with results",
        structure=(
            "[CLIENT RESULT - specific number]\n\n[THEIR SITUATION BEFORE]\n\n"
            "[WHAT WE DID - 2-3 key actions]\n\n[THE RESULTS - metrics]\n\n[LESSON FOR THE READER]"
        ),
        use_cases=["Social proof", "Service promotion", "Credibility building"],
        tags=["case-study", "social-proof", "results"],
    ),
    Template(
        name="Observation/Trend",
        category="educational",
        description="Spot a trend and analyze implications",
        structure=(
            "[TREND OBSERVATION]\n\n[HOW THINGS USED TO WORK]\n\n[WHAT'S CHANGING]\n\n"
            "[WHY IT MATTERS]\n\n[WHAT SMART PEOPLE ARE DOING ABOUT IT]"
        ),
        use_cases=["Market commentary", "Future predictions", "Industry analysis"],
        tags=["trends", "analysis", "forward-looking"],
    ),
    Template(
        name="Question Post",
        category="question",
        description="Spark discussion with a thought-provoking question",
        structure=(
            "[SET UP THE CONTEXT - 2-3 sentences]\n\n[THE QUESTION]\n\n"
            "[YOUR TAKE - brief]\n\n[INVITE RESPONSES]"
        ),
        use_cases=["Community engagement", "Research", "Networking"],
        tags=["engagement", "question", "community"],
    ),
]


@dataclass
class TemplateMatch:
    """A ranked template candidate."""

    template: Template
    similarity: float
    fallback: bool = False


def _proven(template: Template) -> tuple[int, float]:
    return (template.usage_count, template.avg_engagement_score or 0.0)


class TemplateMatcher:
    """
    Matches a content idea to the reusable post structures in scope.

    Template vectors come from the stored row when present, otherwise from
    the EmbeddingCache handed in by the caller. When nothing clears the
    similarity floor the most-used template is returned, so a writer is
    never left without a structure.

    Usage:
        matcher = TemplateMatcher(store, EmbeddingClient(), EmbeddingCache())
        matches = await matcher.match(idea.query_text(), OwnerScope("user-1"))
        template = matches[0].template if matches else None
    """

    def __init__(
        self,
        store: BrainStore,
        embeddings: Optional[EmbeddingClient] = None,
        cache: Optional[EmbeddingCache] = None,
        config: Optional[TemplateConfig] = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.config = config or TemplateConfig()
        self.cache = cache or EmbeddingCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_size=self.config.cache_max_size,
        )

    async def match(
        self,
        idea_text: str,
        scope: OwnerScope,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ) -> list[TemplateMatch]:
        """
        Rank templates for an idea.

        Returns:
            Up to top_k matches above min_similarity, or a single fallback
            match (fallback=True). Empty only when no templates exist.
        """
        top_k = top_k or self.config.top_k
        min_similarity = self.config.min_similarity if min_similarity is None else min_similarity

        templates = await self.store.list_templates(scope)
        if not templates:
            logger.info(f"No templates available for owner {scope.owner_id}")
            return []

        scored: list[TemplateMatch] = []
        query = None
        if self.embeddings is not None and idea_text and idea_text.strip():
            query = await self.embeddings.embed(idea_text)

        if query is not None:
            for template in templates:
                vector = await self._template_vector(template)
                if vector is None:
                    continue
                similarity = cosine_similarity(query, vector)
                if similarity >= min_similarity:
                    scored.append(TemplateMatch(template=template, similarity=similarity))

        if not scored:
            return [self._fallback(templates)]

        return self._rerank(scored)[:top_k]

    def _rerank(self, scored: list[TemplateMatch]) -> list[TemplateMatch]:
        """Order by similarity; within a tie_margin band prefer proven templates."""
        scored.sort(key=lambda m: m.similarity, reverse=True)

        ranked: list[TemplateMatch] = []
        band: list[TemplateMatch] = []
        for match in scored:
            if band and band[0].similarity - match.similarity > self.config.tie_margin:
                ranked.extend(sorted(band, key=lambda m: _proven(m.template), reverse=True))
                band = []
            band.append(match)
        ranked.extend(sorted(band, key=lambda m: _proven(m.template), reverse=True))
        return ranked

    def _fallback(self, templates: list[Template]) -> TemplateMatch:
        best = max(templates, key=lambda t: (_proven(t), t.name))
        logger.info(f"No template cleared the similarity floor, falling back to '{best.name}'")
        return TemplateMatch(template=best, similarity=0.0, fallback=True)

    async def _template_vector(self, template: Template) -> Optional[list[float]]:
        if template.embedding:
            return template.embedding
        return await self.cache.get_or_embed(template.id, template.embedding_text(), self.embeddings)


async def seed_templates(
    store: BrainStore,
    owner_id: str,
    embeddings: Optional[EmbeddingClient] = None,
) -> int:
    """
    Give an owner the starter template library.

    No-op once the owner already has SEED_THRESHOLD templates. Templates are
    stored without an embedding when the provider is unavailable.

    Returns:
        Number of templates inserted
    """
    count = await store.count_templates(owner_id)
    if count >= SEED_THRESHOLD:
        logger.info(f"Templates already seeded for owner {owner_id}")
        return 0

    rows = []
    for seed in SEED_TEMPLATES:
        template = Template(
            owner_id=owner_id,
            name=seed.name,
            category=seed.category,
            description=seed.description,
            structure=seed.structure,
            use_cases=list(seed.use_cases),
            tags=list(seed.tags),
        )
        if embeddings is not None:
            template.embedding = await embeddings.embed(template.embedding_text())
        rows.append(template)

    inserted = await store.insert_templates(rows)
    logger.info(f"Seeded {len(inserted)} templates for owner {owner_id}")
    return len(inserted)
