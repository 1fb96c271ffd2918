#!/usr/bin/env python3
"""
Content Brain CLI
=================

Operator tool for ingesting transcripts and inspecting the knowledge base.

Usage:
    # Ingest a transcript file
    python brain_cli.py ingest --file call.txt --title "Discovery call" --type sales

    # Re-run extraction for a transcript
    python brain_cli.py reprocess <transcript-id>

    # Search knowledge base
    python brain_cli.py search "pricing objections" --limit 10

    # Compile a writing context for a query
    python brain_cli.py search "pricing objections" --context --budget 3000

    # Match an idea against the template library
    python brain_cli.py match "Why our clients stopped discounting"

    # Recompute performance patterns
    python brain_cli.py analyze --insights

    # Give an owner the starter template library
    python brain_cli.py seed-templates

    # Show tag and topic counts
    python brain_cli.py stats

Environment Variables:
    BRAIN_OWNER_ID - Default owner for all commands
    OPENROUTER_API_KEY - For LLM extraction and writing
    EMBEDDINGS_API_KEY - For embeddings (EMBEDDINGS_ENABLED=false to disable)
    SUPABASE_URL - Supabase project URL
    SUPABASE_SERVICE_KEY - Supabase service key
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from dotenv import load_dotenv
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("brain_cli")


def _components():
    from src.brain import (
        EmbeddingClient,
        IdeaExtractor,
        KnowledgeExtractor,
        KnowledgeIngestionService,
        LLMClient,
        SupabaseBrainStore,
        TopicNormalizer,
        TranscriptClassifier,
    )

    store = SupabaseBrainStore()
    embeddings = EmbeddingClient()
    if not embeddings.enabled:
        embeddings = None
    llm = LLMClient()
    extractor = KnowledgeExtractor(llm=llm, normalizer=TopicNormalizer(store, embeddings))
    service = KnowledgeIngestionService(
        store,
        extractor,
        embeddings,
        idea_extractor=IdeaExtractor(llm),
        classifier=TranscriptClassifier(llm),
    )
    return store, embeddings, llm, service


def _print_header(title: str):
    print(f"\n{'='*60}")
    print(title)
    print(f"{'='*60}")


async def cmd_ingest(args):
    """Ingest a transcript."""
    from src.brain.base import TranscriptType

    _print_header("TRANSCRIPT INGESTION")

    if args.file:
        with open(args.file) as f:
            transcript = f.read()
        print(f"Transcript file: {args.file}")
    elif args.text:
        transcript = args.text
    else:
        print("ERROR: Provide --file or --text")
        return 1
    print(f"Transcript length: {len(transcript)} chars")

    _, _, _, service = _components()
    result = await service.ingest_text(
        args.owner,
        transcript,
        title=args.title,
        transcript_type=TranscriptType(args.type) if args.type else None,
    )
    _print_processing(result)
    return 0


async def cmd_reprocess(args):
    """Re-run extraction for an existing transcript."""
    _print_header("TRANSCRIPT REPROCESSING")
    print(f"Transcript: {args.source_id}")

    _, _, _, service = _components()
    result = await service.reprocess_transcript(args.owner, args.source_id)

    print(f"\n  Entries deleted: {result.entries_deleted}")
    print(f"  Ideas deleted: {result.ideas_deleted}")
    _print_processing(result)
    return 0


def _print_processing(result):
    extraction = result.extraction
    print(f"\nResults:")
    print(f"  Transcript: {result.source_id}")
    if result.transcript_type:
        print(f"  Type: {result.transcript_type.value}")
    print(f"  Batches processed: {extraction.batches_processed}")
    print(f"  Entries saved: {result.entries_saved}")
    print(f"  Items skipped: {extraction.items_skipped}")
    print(f"  Execution time: {extraction.execution_time_ms}ms")
    print(f"  Ideas saved: {result.ideas_saved} ({result.post_ready_ideas} post-ready)")
    if result.stages_already_done:
        print(f"  Already processed: {', '.join(result.stages_already_done)}")
    if result.skipped_stages:
        print(f"  Skipped stages: {', '.join(result.skipped_stages)}")

    if extraction.entries:
        print(f"\nExtracted knowledge:")
        for entry in extraction.entries[:10]:
            print(f"  [{entry.knowledge_type.value}] {entry.content[:60]}...")

    if result.tag_drift:
        print(f"\nTag counts may have drifted: {', '.join(result.tag_drift)}")


async def cmd_search(args):
    """Search knowledge base."""
    from src.brain import KnowledgeBrain, KnowledgeType, OwnerScope, SearchFilters

    _print_header("KNOWLEDGE SEARCH")
    print(f"Query: {args.query}")

    store, embeddings, _, _ = _components()
    brain = KnowledgeBrain(store, embeddings)
    scope = OwnerScope(args.owner, args.team)
    filters = SearchFilters(
        knowledge_type=KnowledgeType(args.type) if args.type else None,
        min_quality=args.min_quality,
        tag=args.tag,
    )

    if args.context:
        context = await brain.compile_context(args.query, scope, budget=args.budget, filters=filters)
        print(f"\n{context or '(no matching knowledge)'}")
        print(f"\n{len(context)} chars")
        return 0

    hits = await brain.search(args.query, scope, filters=filters, limit=args.limit)

    print(f"\nFound {len(hits)} results:\n")
    for i, hit in enumerate(hits, 1):
        entry = hit.entry
        print(f"{i}. [{entry.knowledge_type.value.upper()}] q={entry.quality_score} sim={hit.similarity:.3f}")
        print(f"   {entry.content}")
        if entry.topics:
            print(f"   Topics: {', '.join(entry.topics)}")
        print()

    return 0


async def cmd_match(args):
    """Match an idea against the template library."""
    from src.brain import OwnerScope, TemplateMatcher

    _print_header("TEMPLATE MATCH")
    print(f"Idea: {args.idea}")

    store, embeddings, _, _ = _components()
    matcher = TemplateMatcher(store, embeddings)
    matches = await matcher.match(args.idea, OwnerScope(args.owner, args.team), top_k=args.top_k)

    if not matches:
        print("\nNo templates available. Run seed-templates first.")
        return 0

    for match in matches:
        label = "fallback" if match.fallback else f"{match.similarity:.3f}"
        print(f"\n  {match.template.name} ({label})")
        print(f"    uses={match.template.usage_count} category={match.template.category}")
    return 0


async def cmd_analyze(args):
    """Recompute performance patterns."""
    from src.brain import PerformanceAnalyzer

    _print_header("PERFORMANCE ANALYSIS")

    store, _, llm, _ = _components()
    analyzer = PerformanceAnalyzer(store, llm)
    patterns = await analyzer.analyze(args.owner)

    print(f"\n{len(patterns)} patterns\n")
    for pattern in patterns:
        print(
            f"  {pattern.pattern_type:15} {pattern.pattern_value:25} "
            f"eng={pattern.avg_engagement_rate:.4f} n={pattern.sample_count:3} {pattern.confidence_label}"
        )

    if args.insights:
        insight = await analyzer.generate_insights(args.owner)
        print(f"\nSummary: {insight.summary}")
        for recommendation in insight.recommendations:
            print(f"  - {recommendation}")
    return 0


async def cmd_seed_templates(args):
    """Seed the starter template library."""
    from src.brain.templates import seed_templates

    _print_header("SEED TEMPLATES")

    store, embeddings, _, _ = _components()
    inserted = await seed_templates(store, args.owner, embeddings)
    print(f"\nInserted {inserted} templates")
    return 0


async def cmd_stats(args):
    """Show tag and topic counts."""
    _print_header("KNOWLEDGE BASE STATISTICS")

    store, _, _, _ = _components()

    topics = await store.list_topics(args.owner)
    print("\nTopics:")
    for topic in sorted(topics, key=lambda t: -t.usage_count)[:args.limit]:
        print(f"  {topic.slug:30} {topic.usage_count:5}")

    tags = await store.list_tags(args.owner)
    print("\nTags:")
    for tag in sorted(tags, key=lambda t: -t.usage_count)[:args.limit]:
        print(f"  {tag.name:30} {tag.usage_count:5}")

    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Content Brain CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--owner", default=os.getenv("BRAIN_OWNER_ID"), help="Owner (user) id")
    parser.add_argument("--team", default=None, help="Team id for team-scoped reads")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a transcript")
    ingest_parser.add_argument("--file", help="Path to transcript file")
    ingest_parser.add_argument("--text", help="Transcript text")
    ingest_parser.add_argument("--title", help="Call title")
    ingest_parser.add_argument("--type", choices=["coaching", "sales"], help="Transcript type")

    # Reprocess command
    reprocess_parser = subparsers.add_parser("reprocess", help="Re-run extraction for a transcript")
    reprocess_parser.add_argument("source_id", help="Transcript id")

    # Search command
    search_parser = subparsers.add_parser("search", help="Search knowledge base")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--type", help="Knowledge type to filter")
    search_parser.add_argument("--tag", help="Tag to filter")
    search_parser.add_argument("--min-quality", type=int, help="Minimum quality score")
    search_parser.add_argument("--limit", type=int, default=20, help="Max results")
    search_parser.add_argument("--context", action="store_true", help="Print compiled context instead")
    search_parser.add_argument("--budget", type=int, help="Context budget in characters")

    # Match command
    match_parser = subparsers.add_parser("match", help="Match an idea to templates")
    match_parser.add_argument("idea", help="Idea text")
    match_parser.add_argument("--top-k", type=int, default=3, help="Max matches")

    # Analyze command
    analyze_parser = subparsers.add_parser("analyze", help="Recompute performance patterns")
    analyze_parser.add_argument("--insights", action="store_true", help="Also generate LLM insights")

    # Seed command
    subparsers.add_parser("seed-templates", help="Seed the starter template library")

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Show tag and topic counts")
    stats_parser.add_argument("--limit", type=int, default=20, help="Rows per section")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    if not args.owner:
        print("ERROR: --owner or BRAIN_OWNER_ID required")
        return 1

    commands = {
        "ingest": cmd_ingest,
        "reprocess": cmd_reprocess,
        "search": cmd_search,
        "match": cmd_match,
        "analyze": cmd_analyze,
        "seed-templates": cmd_seed_templates,
        "stats": cmd_stats,
    }
    return asyncio.run(commands[args.command](args))


if __name__ == "__main__":
    sys.exit(main() or 0)
