"""
Post polishing and edit-pattern learning.

Polishing is deterministic formatting plus AI-phrase detection and a hook
score; the model is only asked for a rewrite when the post needs one.
The edit-pattern classifier is advisory and never raises.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from src.brain.base import VoiceProfile
from src.brain.errors import BrainError
from src.brain.llm import LLMClient, parse_json_response
from src.brain.writer import Draft, voice_section

logger = logging.getLogger(__name__)

HOOK_REWRITE_THRESHOLD = 6

AI_PHRASES = [
    "Here's the thing",
    "Let me explain",
    "game-changer",
    "game changer",
    "At the end of the day",
    "In this article",
    "As a matter of fact",
    "It's important to note",
    "In conclusion",
    "Moving forward",
    "That being said",
    "Dive deep",
    "deep dive",
    "Unlock your potential",
    "Level up",
    "Take it to the next level",
    "Leverage",
    "synergy",
    "paradigm shift",
    "low-hanging fruit",
    "value proposition",
    "circle back",
    "touch base",
    "think outside the box",
    "drill down",
    "bandwidth",
    "unpack this",
    "double down",
    "at scale",
    "pivot",
    "disrupt",
    "ideate",
    "align on",
    "needle-moving",
    "mission-critical",
    "world-class",
    "best-in-class",
    "cutting-edge",
    "state-of-the-art",
    "next-generation",
    "holistic approach",
    "ecosystem",
    "robust",
    "seamless",
    "comprehensive",
]

AI_STRUCTURAL_PATTERNS = [
    re.compile(r"^(Every [a-z]+\.\s*){3,}", re.IGNORECASE | re.MULTILINE),
    re.compile(r"That's the game\.", re.IGNORECASE),
    re.compile(r"That's it\.", re.IGNORECASE),
    re.compile(r"Full stop\.", re.IGNORECASE),
    re.compile(r"Period\.", re.IGNORECASE),
    re.compile(r"End of story\.", re.IGNORECASE),
    re.compile(r"That's the secret\.", re.IGNORECASE),
    re.compile(r"That's the key\.", re.IGNORECASE),
    re.compile(r"(\b\w+\b)(\.|,)\s+\1(\.|,)\s+\1", re.IGNORECASE),
    re.compile(r"\bWant to know (the secret|what|how|why)\?", re.IGNORECASE),
    re.compile(
        r"\bHere's what (most people|nobody|everyone) (gets wrong|doesn't know|misses)",
        re.IGNORECASE,
    ),
    re.compile(r"\bwith that said\b", re.IGNORECASE),
    re.compile(r"\bhaving said that\b", re.IGNORECASE),
    re.compile(r"\bit goes without saying\b", re.IGNORECASE),
]

_AI_PHRASE_PATTERNS = [(phrase, re.compile(re.escape(phrase), re.IGNORECASE)) for phrase in AI_PHRASES]


def detect_ai_patterns(text: str) -> list[str]:
    """AI-sounding phrases and structures found in text, deduplicated in order."""
    found: list[str] = []
    for phrase, pattern in _AI_PHRASE_PATTERNS:
        if pattern.search(text) and phrase not in found:
            found.append(phrase)
    for pattern in AI_STRUCTURAL_PATTERNS:
        match = pattern.search(text)
        if match and match.group(0).strip() not in found:
            found.append(match.group(0).strip())
    return found


# name -> (weight, test)
HOOK_STRENGTH_FACTORS = {
    "has_numbers": (2.0, lambda t: bool(re.search(r"\$?\d+[,.\d]*%?", t))),
    "has_timeframe": (1.5, lambda t: bool(re.search(r"\d+\s*(days?|weeks?|months?|years?|hours?)", t, re.I))),
    "is_short": (1.0, lambda t: len(t) <= 80),
    "has_contrast": (1.5, lambda t: bool(re.search(r"\b(but|instead|not|never|stop|quit|wrong|mistake)\b", t, re.I))),
    "has_first_person": (1.0, lambda t: bool(re.search(r"\b(I|my|me|we|our)\b", t, re.I))),
    "has_question": (0.5, lambda t: "?" in t),
    "has_curiosity": (
        1.5,
        lambda t: bool(re.search(r"\b(secret|surprising|unexpected|weird|strange|crazy|one thing|single)\b", t, re.I)),
    ),
    "has_outcome": (
        2.0,
        lambda t: bool(re.search(r"\b(revenue|profit|sales|customers|followers|growth|doubled|tripled|increased)\b", t, re.I)),
    ),
}

# name -> (penalty, test, suggestion)
HOOK_WEAKNESS_FACTORS = {
    "is_generic": (
        2.0,
        lambda t: bool(re.match(r"(Tips for|Thoughts on|Some thoughts|How to|Ways to|Things to|Ideas for)\b", t, re.I)),
        "Start with a specific result or story instead of generic intro",
    ),
    "is_vague": (
        1.5,
        lambda t: bool(re.search(r"\b(better|improve|great|good|important|essential|key|must)\b", t, re.I))
        and not re.search(r"\d", t),
        "Add specific numbers or outcomes",
    ),
    "is_too_long": (
        1.0,
        lambda t: len(t) > 120,
        "Shorten to under 80 characters for maximum impact",
    ),
    "has_ai_patterns": (
        2.0,
        lambda t: bool(detect_ai_patterns(t)),
        "Remove AI-sounding phrases",
    ),
    "lacks_specificity": (
        1.5,
        lambda t: not re.search(r"\d", t) and not re.search(r"\b(I|my|we)\b", t, re.I),
        "Add personal experience (I, my, we) or specific data",
    ),
}


@dataclass
class HookScore:
    """Hook strength on a 1-10 scale with improvement suggestions."""

    score: int
    suggestions: list[str] = field(default_factory=list)


def score_hook(hook: str) -> HookScore:
    """Score an opening line: base 5, plus strengths, minus weaknesses, clamped to 1-10."""
    score = 5.0
    suggestions: list[str] = []

    for weight, test in HOOK_STRENGTH_FACTORS.values():
        if test(hook):
            score += weight

    for penalty, test, suggestion in HOOK_WEAKNESS_FACTORS.values():
        if test(hook):
            score -= penalty
            suggestions.append(suggestion)

    if not HOOK_STRENGTH_FACTORS["has_numbers"][1](hook):
        suggestions.append("Consider adding specific numbers ($X, Y%, Z days)")
    if not HOOK_STRENGTH_FACTORS["has_first_person"][1](hook):
        suggestions.append("Make it personal with first-person perspective")

    rounded = max(1, min(10, math.floor(score + 0.5)))
    return HookScore(score=rounded, suggestions=list(dict.fromkeys(suggestions)))


_EMOJI = re.compile(
    "[\U0001F300-\U0001F9FF\U00002600-\U000026FF\U00002700-\U000027BF\U0001F600-\U0001F64F"
    "\U0001F680-\U0001F6FF\U0001F1E0-\U0001F1FF\U00002300-\U000023FF\U00002B50"
    "\U0001FA00-\U0001FAFF\U0000FE00-\U0000FE0F\U0000200D]"
)


def format_post(content: str) -> str:
    """Strip emoji and hashtags, replace em dashes, normalize whitespace."""
    result = _EMOJI.sub("", content)
    result = re.sub(r"#\w+", "", result)
    result = re.sub(r"\s*\U00002014\s*", ", ", result)
    result = re.sub(r"\n{3,}", "\n\n", result)
    result = re.sub(r"\.([A-Z])", r".\n\n\1", result)
    result = re.sub(r"[ \t]+", " ", result)
    result = result.replace("\n ", "\n").replace(" \n", "\n")
    return result.strip()


def extract_hook(text: str) -> str:
    match = re.match(r"[^\n.!?]+[.!?]?", text)
    return match.group(0) if match else text.split("\n", 1)[0]


def extract_rewritten_post(response: str) -> Optional[str]:
    """Strip code fences and 'Here's the rewritten post:' style prefixes."""
    trimmed = response.strip()
    fenced = re.search(r"```(?:text)?\n?([\s\S]*?)```", trimmed)
    if fenced:
        return fenced.group(1).strip() or None
    cleaned = re.sub(r"^(?:Here['\U00002019]s|Here is) (?:the )?rewritten (?:post|version)[:\s]*", "", trimmed, flags=re.I)
    cleaned = re.sub(r"^(?:Rewritten|Updated|Revised) (?:post|version)[:\s]*", "", cleaned, flags=re.I)
    return cleaned.strip() or None


POLISH_PROMPT = """You are an expert LinkedIn content editor. Rewrite the following post to fix these issues:

{issues}

RULES:
1. Keep the same core message and structure
2. Replace AI-sounding phrases with natural, conversational language
3. Make the hook more specific, personal, and attention-grabbing
4. Keep the same length (within 10% variance)
5. Do NOT add emojis or hashtags
6. Do NOT use em dashes
7. Use short paragraphs for readability
{style}
ORIGINAL POST:
{content}

Return ONLY the rewritten post, no explanations or comments."""


@dataclass
class PolishResult:
    """Outcome of polishing one draft."""

    original: str
    polished_text: str
    hook_score: HookScore
    changes: list[str] = field(default_factory=list)
    ai_patterns_found: list[str] = field(default_factory=list)

    @property
    def suggestions(self) -> list[str]:
        return self.hook_score.suggestions


class PostPolisher:
    """
    Formats a draft, scores its hook and rewrites it when needed.

    Usage:
        polisher = PostPolisher(LLMClient())
        result = await polisher.polish(draft)
        print(result.hook_score.score, result.changes)
    """

    def __init__(self, llm: Optional[LLMClient] = None, voice: Optional[VoiceProfile] = None):
        self.llm = llm
        self.voice = voice

    async def polish(self, draft: Union[Draft, str], format_only: bool = False) -> PolishResult:
        """
        Polish a draft. A failed rewrite keeps the formatted text and is
        not reported as a change.
        """
        content = draft.content if isinstance(draft, Draft) else draft
        polished = format_post(content)
        ai_patterns = detect_ai_patterns(content)
        hook_score = score_hook(extract_hook(polished))
        changes: list[str] = []

        if polished != content.strip():
            changes.append("Applied formatting fixes")

        needs_rewrite = bool(ai_patterns) or hook_score.score < HOOK_REWRITE_THRESHOLD
        if format_only or not needs_rewrite or self.llm is None:
            return PolishResult(content, polished, hook_score, changes, ai_patterns)

        rewritten = await self._rewrite(polished, ai_patterns, hook_score)
        if rewritten:
            polished = format_post(rewritten)
            if ai_patterns:
                changes.append(f"Rewrote {len(ai_patterns)} AI patterns")
            if hook_score.score < HOOK_REWRITE_THRESHOLD:
                changes.append("Strengthened hook")
                hook_score = score_hook(extract_hook(polished))

        return PolishResult(content, polished, hook_score, changes, ai_patterns)

    async def _rewrite(self, content: str, ai_patterns: list[str], hook_score: HookScore) -> Optional[str]:
        issues = []
        if ai_patterns:
            issues.append(f"AI-sounding phrases found: {', '.join(ai_patterns)}")
        if hook_score.score < HOOK_REWRITE_THRESHOLD:
            issues.append(
                f"Weak hook (score: {hook_score.score}/10). "
                f"Suggestions: {'; '.join(hook_score.suggestions)}"
            )

        style = ""
        if self.voice is not None:
            section = voice_section(self.voice)
            if section:
                style = f"\n{section}\n\nPolish the post to match this author's writing style.\n"

        prompt = POLISH_PROMPT.format(issues="\n".join(issues), style=style, content=content)
        try:
            response = await self.llm.complete(prompt, max_tokens=2000)
        except BrainError as e:
            logger.warning(f"Polish rewrite failed, keeping formatted text: {e}")
            return None
        return extract_rewritten_post(response)


class EditPattern(str, Enum):
    """Closed taxonomy of deliberate human edits to an AI draft."""

    SHORTENED_HOOK = "shortened_hook"
    STRENGTHENED_HOOK = "strengthened_hook"
    REMOVED_JARGON = "removed_jargon"
    REMOVED_AI_PHRASES = "removed_ai_phrases"
    ADDED_STORY = "added_story"
    ADDED_SPECIFICS = "added_specifics"
    SOFTENED_CTA = "softened_cta"
    MADE_CONVERSATIONAL = "made_conversational"
    REDUCED_LENGTH = "reduced_length"
    EXPANDED_LENGTH = "expanded_length"
    RESTRUCTURED = "restructured"


EDIT_CLASSIFIER_PROMPT = """Analyze what changed between the original and edited text. Identify specific writing style patterns.

Content type: {content_type}

ORIGINAL:
{original}

EDITED:
{edited}

Allowed pattern labels: {labels}

Return JSON with a "patterns" array. Each pattern has:
- "pattern": one of the allowed labels
- "description": one sentence explaining the change

Only include deliberate style choices, not typo fixes.
Return {{"patterns": []}} if no meaningful style changes were made."""


class EditPatternClassifier:
    """
    Labels a human edit of an AI draft for future learning.

    Advisory only: any provider or parse failure yields [].
    """

    def __init__(self, llm: LLMClient, max_tokens: int = 500):
        self.llm = llm
        self.max_tokens = max_tokens

    async def classify(self, original: str, edited: str, content_type: str = "linkedin_post") -> list[str]:
        if not original or not edited or original.strip() == edited.strip():
            return []

        prompt = EDIT_CLASSIFIER_PROMPT.format(
            content_type=content_type,
            original=original,
            edited=edited,
            labels=", ".join(p.value for p in EditPattern),
        )
        try:
            response = await self.llm.complete(prompt, max_tokens=self.max_tokens)
        except BrainError as e:
            logger.warning(f"Edit classification skipped: {e}")
            return []

        parsed = parse_json_response(response, expect=dict)
        if not parsed.ok:
            logger.debug(f"Edit classification unparseable: {parsed.error}")
            return []

        raw = parsed.data.get("patterns")
        if not isinstance(raw, list):
            return []

        patterns: list[str] = []
        for item in raw:
            label = item.get("pattern") if isinstance(item, dict) else item
            if not isinstance(label, str):
                continue
            try:
                pattern = EditPattern(label.strip().lower()).value
            except ValueError:
                logger.debug(f"Ignoring unknown edit pattern: {label}")
                continue
            if pattern not in patterns:
                patterns.append(pattern)
        return patterns
