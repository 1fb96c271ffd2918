"""
Language-model provider client and tolerant JSON parsing.

Every caller of the model must tolerate non-JSON, truncated or off-schema
responses, so parsing never raises: it returns a ParseResult that says
whether the text could be read.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from src.brain.config import LLMConfig
from src.brain.errors import ExternalServiceError

logger = logging.getLogger(__name__)


@dataclass
class ParseResult:
    """Outcome of parsing a model response as JSON."""

    ok: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "ParseResult":
        return cls(ok=False, data=None, error=error)


class LLMClient:
    """
    Thin async client for chat completions via OpenRouter.

    Usage:
        client = LLMClient()
        text = await client.complete("Summarize...", max_tokens=500)
    """

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig()

    async def complete(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Send one user prompt and return the text of the first choice.

        Raises:
            ExternalServiceError: provider unreachable, rate-limited, or
                returned no text.
        """
        if not self.config.openrouter_api_key:
            raise ExternalServiceError("llm", "OPENROUTER_API_KEY not configured", retryable=False)

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                response = await client.post(
                    f"{self.config.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.config.openrouter_api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": model or self.config.model,
                        "messages": [{"role": "user", "content": prompt}],
                        "temperature": self.config.temperature,
                        "max_tokens": max_tokens or self.config.max_tokens,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ExternalServiceError(
                "llm",
                f"HTTP {status}",
                retryable=status == 429 or status >= 500,
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError("llm", f"connection error: {e}") from e

        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExternalServiceError("llm", "response had no text content") from e
        if not text:
            raise ExternalServiceError("llm", "empty completion")
        return text


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    json_str = text.strip()
    if json_str.startswith("```"):
        parts = json_str.split("```")
        if len(parts) >= 2:
            json_str = parts[1]
            if json_str.startswith("json"):
                json_str = json_str[4:]
        json_str = json_str.strip()
    return json_str


def repair_json(json_str: str) -> str:
    """Attempt to repair truncated or malformed JSON."""
    # Fix unterminated strings
    quote_count = json_str.count('"') - json_str.count('\\"')
    if quote_count % 2 == 1:
        json_str = json_str + '"'

    # Add missing closing brackets
    open_brackets = json_str.count("[") - json_str.count("]")
    if open_brackets > 0:
        json_str = json_str + "]" * open_brackets

    # Add missing closing braces
    open_braces = json_str.count("{") - json_str.count("}")
    if open_braces > 0:
        json_str = json_str + "}" * open_braces

    # Remove trailing commas
    json_str = re.sub(r",\s*}", "}", json_str)
    json_str = re.sub(r",\s*]", "]", json_str)

    return json_str


def _first_json_span(text: str) -> Optional[str]:
    """Slice from the first '{' or '[' so leading prose does not break parsing."""
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return None
    return text[min(starts):]


def parse_json_response(text: Optional[str], expect: Optional[type] = None) -> ParseResult:
    """
    Parse a model response as JSON without raising.

    Args:
        text: Raw model output (may be fenced, prefixed with prose, or truncated)
        expect: Optional required top-level type (dict or list)

    Returns:
        ParseResult with ok=False when the text cannot be read as JSON of the
        expected shape.
    """
    if not text or not text.strip():
        return ParseResult.failure("empty response")

    candidate = strip_code_fence(text)
    attempts = [candidate]
    span = _first_json_span(candidate)
    if span and span != candidate:
        attempts.append(span)

    last_error = "unparseable response"
    for attempt in attempts:
        for payload in (attempt, repair_json(attempt)):
            try:
                data = json.loads(payload)
            except json.JSONDecodeError as e:
                last_error = f"invalid JSON: {e.msg}"
                continue
            if expect is not None and not isinstance(data, expect):
                last_error = f"expected {expect.__name__}, got {type(data).__name__}"
                continue
            return ParseResult(ok=True, data=data)

    logger.debug(f"Unparseable model response: {text[:500]}")
    return ParseResult.failure(last_error)
