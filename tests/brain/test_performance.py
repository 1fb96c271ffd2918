"""Tests for performance pattern analysis."""

from datetime import datetime, timedelta, timezone

import pytest

from src.brain.base import ContentIdea, PerformancePattern, PerformanceRecord
from src.brain.errors import ExternalServiceError
from src.brain.performance import (
    NOT_ENOUGH_DATA,
    PerformanceAnalyzer,
    confidence_for,
    confidence_label,
    detect_format,
    detect_hook_type,
    length_bucket,
    time_of_day_bucket,
)

OWNER = "user-1"
CAPTURED = datetime(2026, 1, 6, 12, 0, tzinfo=timezone.utc)

LISTICLE = "5 ways to stop discounting\n1. Anchor high\n2. Sell outcomes\n3. Walk away"


def _pattern(pattern_type, value, rate, samples, label):
    return PerformancePattern(
        owner_id=OWNER,
        pattern_type=pattern_type,
        pattern_value=value,
        avg_engagement_rate=rate,
        avg_views=100.0,
        avg_likes=10.0,
        avg_comments=2.0,
        sample_count=samples,
        confidence=confidence_for(samples),
        confidence_label=label,
    )


def _record(post_id, rate, captured_at=CAPTURED, views=100):
    return PerformanceRecord(
        post_id=post_id,
        owner_id=OWNER,
        captured_at=captured_at,
        views=views,
        engagement_rate=rate,
    )


async def _seed_history(store):
    [idea] = await store.insert_ideas([ContentIdea(owner_id=OWNER, title="Discounting", content_type="listicle")])
    store.add_post(
        OWNER,
        LISTICLE,
        idea_id=idea.id,
        published_at="2026-01-05T08:00:00Z",
        topic="pricing",
        post_id="p1",
    )
    store.add_post(OWNER, "Why do we discount?", published_at="2026-01-05T15:00:00Z", topic="pricing", post_id="p2")
    store.add_post(OWNER, "No metrics yet", published_at="2026-01-05T15:00:00Z", post_id="p3")
    store.add_post(OWNER, "Unpublished draft", status="draft", post_id="p4")

    analyzer = PerformanceAnalyzer(store)
    await analyzer.record(_record("p1", 1.0, CAPTURED - timedelta(days=1), views=40))
    await analyzer.record(_record("p1", 4.0))
    await analyzer.record(_record("p2", 2.0))
    await analyzer.record(_record("p4", 9.0))
    return analyzer


class TestConfidence:
    @pytest.mark.parametrize("samples,expected", [(0, 0.0), (3, 0.2), (15, 1.0), (40, 1.0)])
    def test_confidence_for(self, samples, expected):
        assert confidence_for(samples) == pytest.approx(expected)

    @pytest.mark.parametrize("samples,label", [(1, "low"), (4, "low"), (5, "medium"), (14, "medium"), (15, "high")])
    def test_confidence_label(self, samples, label):
        assert confidence_label(samples) == label

    def test_monotonic(self):
        values = [confidence_for(n) for n in range(30)]
        assert values == sorted(values)


class TestDetectors:
    """Tests for post attribute detection."""

    @pytest.mark.parametrize("line,hook", [
        ("5 ways to stop discounting", "number_hook"),
        ("Why do we discount?", "question"),
        ("I fired my best client", "personal_story"),
        ("Stop discounting on the first call", "bold_statement"),
        ("We lost $40,000 last year", "statistic"),
        ("Pricing is a signal", "other"),
        ("   ", None),
    ])
    def test_hook_type(self, line, hook):
        assert detect_hook_type(line) == hook

    def test_numbered_list(self):
        assert detect_format(LISTICLE) == "numbered_list"

    def test_bullet_list(self):
        assert detect_format("Three rules\n- one\n- two\n* three") == "bullet_list"

    def test_length_formats(self):
        assert detect_format("word " * 20) == "short_form"
        assert detect_format("word " * 150) == "paragraph"
        assert detect_format("word " * 301) == "long_form"
        assert detect_format("") is None

    def test_length_bucket(self):
        assert length_bucket("word " * 99) == "short"
        assert length_bucket("word " * 100) == "medium"
        assert length_bucket("word " * 300) == "long"

    @pytest.mark.parametrize("hour,bucket", [(0, "early_morning"), (9, "morning"), (12, "midday"), (17, "afternoon"), (22, "evening")])
    def test_time_of_day(self, hour, bucket):
        assert time_of_day_bucket(hour) == bucket


class TestAnalyze:
    """Tests for PerformanceAnalyzer.analyze."""

    @pytest.mark.asyncio
    async def test_patterns_from_latest_snapshot(self, store):
        analyzer = await _seed_history(store)

        patterns = await analyzer.analyze(OWNER)
        by_key = {(p.pattern_type, p.pattern_value): p for p in patterns}

        topic = by_key[("topic", "pricing")]
        assert topic.sample_count == 2
        assert topic.avg_engagement_rate == pytest.approx(3.0)
        assert topic.confidence == pytest.approx(2 / 15)
        assert topic.confidence_label == "low"

        assert by_key[("hook", "number_hook")].avg_engagement_rate == pytest.approx(4.0)
        assert by_key[("hook", "question")].avg_engagement_rate == pytest.approx(2.0)
        assert by_key[("archetype", "listicle")].sample_count == 1
        assert by_key[("format", "numbered_list")].avg_views == pytest.approx(100.0)
        assert by_key[("time_of_day", "morning")].sample_count == 1
        assert by_key[("time_of_day", "afternoon")].sample_count == 1
        assert by_key[("length", "short")].sample_count == 2

    @pytest.mark.asyncio
    async def test_unmeasured_and_unpublished_posts_ignored(self, store):
        analyzer = await _seed_history(store)

        patterns = await analyzer.analyze(OWNER)

        assert sum(p.sample_count for p in patterns if p.pattern_type == "length") == 2
        assert all(p.avg_engagement_rate < 9.0 for p in patterns)

    @pytest.mark.asyncio
    async def test_rerun_is_deterministic(self, store):
        analyzer = await _seed_history(store)

        def snapshot(patterns):
            return [
                (p.pattern_type, p.pattern_value, p.avg_engagement_rate, p.sample_count, p.confidence)
                for p in patterns
            ]

        first = snapshot(await analyzer.analyze(OWNER))
        second = snapshot(await analyzer.analyze(OWNER))

        assert first == second
        assert len(store.patterns[OWNER]) == len(first)

    @pytest.mark.asyncio
    async def test_no_history(self, store):
        patterns = await PerformanceAnalyzer(store).analyze(OWNER)

        assert patterns == []
        assert store.patterns[OWNER] == []

    @pytest.mark.asyncio
    async def test_duplicate_snapshot_rejected(self, store):
        analyzer = PerformanceAnalyzer(store)

        assert await analyzer.record(_record("p1", 1.0)) is True
        assert await analyzer.record(_record("p1", 5.0)) is False
        assert len(store.performance) == 1


class TestGuidance:
    """Tests for top attributes and writer guidance."""

    @pytest.mark.asyncio
    async def test_top_attributes_sorted(self, store):
        await store.replace_patterns(OWNER, [
            _pattern("hook", "question", 3.0, 6, "medium"),
            _pattern("hook", "number_hook", 5.0, 2, "low"),
            _pattern("format", "short_form", 1.0, 20, "high"),
        ])

        top = await PerformanceAnalyzer(store).top_attributes(OWNER)

        assert [p.pattern_value for p in top["hook"]] == ["number_hook", "question"]
        assert top["format"][0].pattern_value == "short_form"

    @pytest.mark.asyncio
    async def test_guidance_skips_low_confidence(self, store):
        await store.replace_patterns(OWNER, [
            _pattern("hook", "number_hook", 5.0, 2, "low"),
            _pattern("hook", "question", 3.0, 6, "medium"),
            _pattern("topic", "pricing", 8.0, 1, "low"),
        ])

        guidance = await PerformanceAnalyzer(store).performance_guidance(OWNER)

        assert guidance == ['Best performing hook: "question" (avg 3.00% engagement, 6 posts)']


class TestInsights:
    """Tests for generate_insights."""

    @pytest.mark.asyncio
    async def test_not_enough_data(self, store, make_llm):
        llm = make_llm("unused")

        insight = await PerformanceAnalyzer(store, llm).generate_insights(OWNER)

        assert insight == NOT_ENOUGH_DATA
        assert insight is not NOT_ENOUGH_DATA
        llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_model_insight(self, store, make_llm):
        await store.replace_patterns(OWNER, [_pattern("hook", "question", 3.0, 6, "medium")])
        llm = make_llm({
            "summary": "Questions work.",
            "top_performing": ["Question hooks"],
            "recommendations": ["Ask more questions"],
        })

        insight = await PerformanceAnalyzer(store, llm).generate_insights(OWNER)

        assert insight.summary == "Questions work."
        assert insight.recommendations == ["Ask more questions"]
        assert insight.optimal_posting_pattern is None
        assert 'hook="question"' in llm.complete.await_args.args[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", ["not json", ExternalServiceError("llm", "HTTP 502")])
    async def test_fallback_summary(self, store, make_llm, response):
        await store.replace_patterns(OWNER, [_pattern("hook", "question", 3.0, 6, "medium")])

        insight = await PerformanceAnalyzer(store, make_llm(response)).generate_insights(OWNER)

        assert insight.summary == "1 performance patterns tracked."
        assert insight.top_performing == ["hook=question (3.00% engagement)"]

    @pytest.mark.asyncio
    async def test_without_llm(self, store):
        await store.replace_patterns(OWNER, [_pattern("hook", "question", 3.0, 6, "medium")])

        insight = await PerformanceAnalyzer(store).generate_insights(OWNER)

        assert insight.summary == "1 performance patterns tracked."
