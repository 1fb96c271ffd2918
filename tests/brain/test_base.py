"""Tests for Content Brain base classes."""

from datetime import datetime, timedelta, timezone

import pytest

from src.brain.base import (
    CATEGORY_BY_TYPE,
    KnowledgeCategory,
    KnowledgeEntry,
    KnowledgeType,
    OwnerScope,
    SearchFilters,
    Speaker,
    clamp_quality,
    parse_timestamp,
)


class TestClampQuality:
    """Tests for quality score clamping."""

    @pytest.mark.parametrize(
        "raw,expected",
        [(3.7, 4), (7, 5), (0, 1), (2.5, 3), (1.49, 1), (-4, 1), ("4", 4)],
    )
    def test_rounds_and_clamps(self, raw, expected):
        assert clamp_quality(raw) == expected

    def test_non_numeric_uses_default(self):
        assert clamp_quality("excellent") == 3
        assert clamp_quality(None) == 3

    def test_boolean_uses_default(self):
        assert clamp_quality(True) == 3
        assert clamp_quality(False, default=2) == 2

    def test_nan_uses_default(self):
        assert clamp_quality(float("nan")) == 3


class TestKnowledgeType:
    """Tests for the closed knowledge type set."""

    def test_all_types_exist(self):
        expected = [
            "how_to", "insight", "story", "question",
            "objection", "mistake", "decision", "market_intel",
        ]
        assert sorted(kt.value for kt in KnowledgeType) == sorted(expected)

    def test_every_type_has_a_category(self):
        assert set(CATEGORY_BY_TYPE) == set(KnowledgeType)

    def test_legacy_categories(self):
        assert CATEGORY_BY_TYPE[KnowledgeType.OBJECTION] == KnowledgeCategory.QUESTION
        assert CATEGORY_BY_TYPE[KnowledgeType.MARKET_INTEL] == KnowledgeCategory.PRODUCT_INTEL
        assert CATEGORY_BY_TYPE[KnowledgeType.MISTAKE] == KnowledgeCategory.INSIGHT


class TestOwnerScope:
    """Tests for OwnerScope."""

    def test_personal_scope(self):
        assert OwnerScope("u1").owner_ids == ["u1"]

    def test_team_scope_deduplicates(self):
        scope = OwnerScope("u1", team_id="t1", member_ids=("u2", "u1", "u3"))
        assert scope.owner_ids == ["u1", "u2", "u3"]


class TestKnowledgeEntry:
    """Tests for KnowledgeEntry."""

    def test_to_dict(self):
        entry = KnowledgeEntry(
            owner_id="u1",
            source_id="t1",
            knowledge_type=KnowledgeType.HOW_TO,
            content="Send the proposal within 24 hours",
            tags=["proposals"],
        )
        row = entry.to_dict()

        assert row["user_id"] == "u1"
        assert row["transcript_id"] == "t1"
        assert row["knowledge_type"] == "how_to"
        assert row["speaker"] == "unknown"
        assert row["tags"] == ["proposals"]

    def test_from_row_derives_missing_category(self):
        entry = KnowledgeEntry.from_row({
            "id": "e1",
            "user_id": "u1",
            "knowledge_type": "objection",
            "content": "Too expensive",
        })

        assert entry.category == KnowledgeCategory.QUESTION
        assert entry.speaker == Speaker.UNKNOWN
        assert entry.id == "e1"

    def test_from_row_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            KnowledgeEntry.from_row({"user_id": "u1", "knowledge_type": "rumor", "content": "x"})


class TestSearchFilters:
    """Tests for SearchFilters.matches."""

    def _entry(self, **kwargs):
        defaults = dict(owner_id="u1", knowledge_type=KnowledgeType.INSIGHT, content="x")
        defaults.update(kwargs)
        return KnowledgeEntry(**defaults)

    def test_empty_filters_match_everything(self):
        assert SearchFilters().matches(self._entry())

    def test_tag_filter_is_case_insensitive(self):
        entry = self._entry(tags=["Pricing"])
        assert SearchFilters(tag="pricing").matches(entry)
        assert not SearchFilters(tag="hiring").matches(entry)

    def test_min_quality(self):
        assert not SearchFilters(min_quality=4).matches(self._entry(quality_score=3))
        assert SearchFilters(min_quality=3).matches(self._entry(quality_score=3))

    def test_since(self):
        old = self._entry(created_at=datetime.now(timezone.utc) - timedelta(days=30))
        assert not SearchFilters(since=datetime.now(timezone.utc) - timedelta(days=7)).matches(old)


class TestParseTimestamp:
    """Tests for timestamp parsing."""

    def test_z_suffix(self):
        parsed = parse_timestamp("2025-01-15T10:00:00Z")
        assert parsed == datetime(2025, 1, 15, 10, tzinfo=timezone.utc)

    def test_naive_becomes_utc(self):
        assert parse_timestamp("2025-01-15T10:00:00").tzinfo == timezone.utc

    def test_garbage(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None
