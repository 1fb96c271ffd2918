"""Tests for the LLM client and tolerant JSON parsing."""

from unittest.mock import patch

import pytest

from src.brain.config import LLMConfig
from src.brain.errors import ExternalServiceError
from src.brain.llm import LLMClient, parse_json_response, repair_json, strip_code_fence


class TestLLMConfig:
    """Tests for LLMConfig."""

    def test_reads_environment(self):
        with patch.dict("os.environ", {"OPENROUTER_API_KEY": "test-key", "BRAIN_MODEL": "custom/model"}):
            config = LLMConfig()
            assert config.openrouter_api_key == "test-key"
            assert config.model == "custom/model"

    def test_explicit_key(self):
        config = LLMConfig(openrouter_api_key="explicit-key")
        assert config.openrouter_api_key == "explicit-key"


class TestLLMClient:
    """Tests for LLMClient."""

    @pytest.mark.asyncio
    async def test_missing_key_is_not_retryable(self):
        with patch.dict("os.environ", {"OPENROUTER_API_KEY": ""}):
            client = LLMClient()

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.complete("hello")
        assert exc_info.value.retryable is False


class TestStripCodeFence:
    def test_json_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_text(self):
        assert strip_code_fence('  {"a": 1} ') == '{"a": 1}'


class TestJsonRepair:
    """Tests for JSON repair."""

    def test_repair_unterminated_string(self):
        repaired = repair_json('{"key": "value')
        assert repaired.count('"') % 2 == 0

    def test_repair_missing_brace(self):
        assert repair_json('{"key": "value"').endswith("}")

    def test_repair_trailing_comma(self):
        assert repair_json('{"items": [1, 2,]}') == '{"items": [1, 2]}'


class TestParseJsonResponse:
    """Tests for parse_json_response."""

    def test_fenced_object(self):
        result = parse_json_response('```json\n{"entries": []}\n```')
        assert result.ok
        assert result.data == {"entries": []}

    def test_leading_prose(self):
        result = parse_json_response('Sure! Here you go: {"entries": [{"a": 1}]}')
        assert result.ok
        assert result.data["entries"] == [{"a": 1}]

    def test_truncated_response_is_repaired(self):
        result = parse_json_response('{"entries": ["Price anchoring"')
        assert result.ok
        assert result.data["entries"] == ["Price anchoring"]

    def test_wrong_shape(self):
        result = parse_json_response('["a", "b"]', expect=dict)
        assert not result.ok
        assert "expected dict" in result.error

    def test_empty(self):
        assert not parse_json_response("").ok
        assert not parse_json_response(None).ok

    def test_prose_only_never_raises(self):
        result = parse_json_response("I could not find anything useful.")
        assert not result.ok
        assert result.data is None
