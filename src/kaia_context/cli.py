"""
Operator CLI for the Context Store.

Usage:
    kaia-context show <entity_id> [--db path]
    kaia-context list <owner_id> [--min-score N] [--kind TASK] [--db path]
    kaia-context high <owner_id> [--limit N] [--db path]
    kaia-context invalidate <entity_id> [--db path]
    kaia-context sweep [--days N] [--db path]
    kaia-context urgency <iso-deadline>
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .analyzers.temporal import TemporalContextAnalyzer
from .config import Settings, configure_logging, load_settings
from .kernel.engine import ContextBuilder
from .kernel.schema import ContextFilters, UnifiedContext
from .kernel.store import SqliteContextStore


# =============================================================================
# Resolution
# =============================================================================

def resolve_settings(args: argparse.Namespace) -> Settings:
    """
    Resolve settings:
    1. Explicit --db flag
    2. Environment / kaia-context.toml / defaults (see config.load_settings)
    """
    return load_settings(db_path=getattr(args, "db", None))


def open_store(settings: Settings) -> Optional[SqliteContextStore]:
    """Open the store, or report and return None when the file is missing."""
    if not Path(settings.db_path).exists():
        print(f"✗ Database not found: {settings.db_path}", file=sys.stderr)
        return None
    return SqliteContextStore(
        settings.db_path, high_priority_score=settings.high_priority_score
    )


def print_context_row(context: UnifiedContext) -> None:
    print(
        f"  {context.context_score:3d}  │ v{context.version:<3d} │ "
        f"{context.entity_kind:<11} │ {context.entity_id}"
    )


def print_contexts(title: str, contexts: List[UnifiedContext]) -> None:
    print()
    print(f"  {title}")
    print()
    if not contexts:
        print("  No contexts found.")
        print()
        return
    print("  Score │ Ver  │ Kind        │ Entity")
    print("  ──────┼──────┼─────────────┼──────────────────────────")
    for context in contexts:
        print_context_row(context)
    print()
    print(f"  Total: {len(contexts)}")
    print()


# =============================================================================
# Commands
# =============================================================================

def cmd_show(args: argparse.Namespace) -> int:
    """Print one stored context as JSON."""
    store = open_store(resolve_settings(args))
    if store is None:
        return 1
    try:
        context = asyncio.run(ContextBuilder(store).get(args.entity_id))
    finally:
        store.close()

    if context is None:
        print(f"✗ No context for {args.entity_id}", file=sys.stderr)
        return 1
    print(context.model_dump_json(indent=2))
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List an owner's contexts, best score first."""
    store = open_store(resolve_settings(args))
    if store is None:
        return 1
    filters = ContextFilters(min_score=args.min_score, entity_kind=args.kind)
    try:
        contexts = asyncio.run(store.query_by_owner(args.owner_id, filters))
    finally:
        store.close()

    print_contexts(f"Contexts for {args.owner_id}", contexts)
    return 0


def cmd_high(args: argparse.Namespace) -> int:
    """List an owner's high-priority contexts."""
    settings = resolve_settings(args)
    store = open_store(settings)
    if store is None:
        return 1
    try:
        contexts = asyncio.run(store.get_high_priority(args.owner_id, limit=args.limit))
    finally:
        store.close()

    print_contexts(
        f"High priority (score ≥ {settings.high_priority_score}) for {args.owner_id}",
        contexts,
    )
    return 0


def cmd_invalidate(args: argparse.Namespace) -> int:
    """Drop the stored context of one entity."""
    store = open_store(resolve_settings(args))
    if store is None:
        return 1
    try:
        asyncio.run(ContextBuilder(store).invalidate_context(args.entity_id))
    finally:
        store.close()

    print(f"✓ Invalidated {args.entity_id}")
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    """Retention sweep: drop contexts not updated for N days."""
    settings = resolve_settings(args)
    store = open_store(settings)
    if store is None:
        return 1
    days = args.days if args.days is not None else settings.retention_days
    try:
        removed = asyncio.run(store.clean_old_contexts(days_old=days))
    finally:
        store.close()

    print(f"✓ Removed {removed} context(s) older than {days} day(s)")
    return 0


def cmd_urgency(args: argparse.Namespace) -> int:
    """Print the urgency score of a deadline relative to now."""
    try:
        deadline = datetime.fromisoformat(args.deadline)
    except ValueError:
        print(f"✗ Not an ISO-8601 timestamp: {args.deadline}", file=sys.stderr)
        return 1

    analyzer = TemporalContextAnalyzer()
    print(analyzer.urgency(deadline))
    return 0


# =============================================================================
# Entry point
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="kaia-context",
        description="Inspect and maintain stored entity contexts",
    )
    parser.add_argument("--log-level", help="Logging level (default: from settings)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # show command
    show_parser = subparsers.add_parser("show", help="Show one stored context")
    show_parser.add_argument("entity_id", help="Entity ID")
    show_parser.add_argument("--db", help="Database path")
    show_parser.set_defaults(func=cmd_show)

    # list command
    list_parser = subparsers.add_parser("list", help="List an owner's contexts")
    list_parser.add_argument("owner_id", help="Owner ID")
    list_parser.add_argument("--min-score", type=int, help="Minimum context score")
    list_parser.add_argument("--kind", help="Entity kind (TASK, EVENT, ...)")
    list_parser.add_argument("--db", help="Database path")
    list_parser.set_defaults(func=cmd_list)

    # high command
    high_parser = subparsers.add_parser("high", help="List high-priority contexts")
    high_parser.add_argument("owner_id", help="Owner ID")
    high_parser.add_argument(
        "--limit", "-n", type=int, default=10,
        help="Maximum number of contexts (default: 10)"
    )
    high_parser.add_argument("--db", help="Database path")
    high_parser.set_defaults(func=cmd_high)

    # invalidate command
    invalidate_parser = subparsers.add_parser("invalidate", help="Drop a stored context")
    invalidate_parser.add_argument("entity_id", help="Entity ID")
    invalidate_parser.add_argument("--db", help="Database path")
    invalidate_parser.set_defaults(func=cmd_invalidate)

    # sweep command
    sweep_parser = subparsers.add_parser("sweep", help="Drop stale contexts")
    sweep_parser.add_argument(
        "--days", "-d", type=int,
        help="Age in days (default: retention_days setting)"
    )
    sweep_parser.add_argument("--db", help="Database path")
    sweep_parser.set_defaults(func=cmd_sweep)

    # urgency command
    urgency_parser = subparsers.add_parser("urgency", help="Urgency score of a deadline")
    urgency_parser.add_argument("deadline", help="ISO-8601 deadline")
    urgency_parser.set_defaults(func=cmd_urgency)

    args = parser.parse_args(argv)
    configure_logging(args.log_level or load_settings().log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
