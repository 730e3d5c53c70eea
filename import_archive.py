#!/usr/bin/env python3
"""
Mail Archive CLI

Imports PST or JSON mail archives, enriches them with a local Ollama model
and searches the result.

Usage:
    python import_archive.py import mailbox.pst
    python import_archive.py search "invoice payment" --top-k 5
    python import_archive.py ask "When is the quarterly review?"

Examples:
    # Import without storing attachments, enrich later
    python import_archive.py import export.json --no-attachments --no-enrich
    python import_archive.py process

    # Semantic search over embedded chunks
    python import_archive.py semantic "project schedule"

    # Drop embeddings only, or everything
    python import_archive.py reset
    python import_archive.py reset --all
"""

import argparse
import logging
import os
import sys
from pathlib import Path

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv
load_dotenv()


def setup_logging(verbose: bool = False, quiet: bool = False):
    """Configure logging based on verbosity."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_service():
    from mailsearch.core.config import get_settings
    from mailsearch.core.database import Database
    from mailsearch.core.pipeline import ImportService

    settings = get_settings()
    database = Database.from_settings(settings)
    database.create_all()
    return ImportService.build(settings, database)


def cmd_import(args) -> int:
    from mailsearch.core.archive import UnsupportedArchiveError, EmptyArchiveError

    logger = logging.getLogger(__name__)
    path = Path(args.file).expanduser()
    if not path.is_file():
        print(f"Error: File does not exist: {path}", file=sys.stderr)
        return 1

    service = build_service()
    try:
        result = service.import_archive(path.name, path.read_bytes(), save_attachments=not args.no_attachments)
    except (UnsupportedArchiveError, EmptyArchiveError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("\n" + "=" * 60)
    print(f"Imported {result.inserted_count} of {result.parsed_count} messages from {result.filename}")
    print("=" * 60)
    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        for error in result.errors[:10]:
            print(f"  - {error}")
        if len(result.errors) > 10:
            print(f"  ... and {len(result.errors) - 10} more errors")

    if not args.no_enrich:
        logger.info("Enriching imported messages...")
        summary = service.enrich(result.inserted_ids)
        print_enrichment(summary)
    return 0


def print_enrichment(summary):
    print(
        f"\nEnrichment: {summary.processed} processed, {summary.classified} classified, "
        f"{summary.unclassified} unclassified, {summary.chunks} chunks, {summary.events} events"
    )
    if summary.used_local_fallback:
        print("Model service unreachable: only local event extraction ran. Run 'process' later.")


def cmd_search(args) -> int:
    from mailsearch.core.search import LexicalScorer

    service = build_service()
    hits = LexicalScorer(service.repository).search(args.query, args.top_k)
    if not hits:
        print("No results.")
        return 0
    for hit in hits:
        print(f"[{hit.score:.0f}] #{hit.mail_id} {hit.subject}  ({hit.sender}, {hit.date})")
        if hit.snippet:
            print(f"      {hit.snippet}")
    return 0


def cmd_semantic(args) -> int:
    service = build_service()
    hits = service.retriever.search_text(args.query, args.top_k)
    if not hits:
        print("No relevant results.")
        return 0
    for hit in hits:
        print(f"[{hit.score:.3f}] #{hit.mail_id} {hit.subject}")
        print(f"      {hit.content[:200]}")
    return 0


def cmd_ask(args) -> int:
    from mailsearch.core.ai import answer_question, LLMUnavailableError

    service = build_service()
    try:
        answer = answer_question(args.question, service.retriever, service.client, service.settings.rag_top_k)
    except LLMUnavailableError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(answer.answer)
    if answer.sources:
        print("\nSources:")
        for hit in answer.sources:
            print(f"  - #{hit.mail_id} {hit.subject} ({hit.score:.2f})")
    return 0


def cmd_process(args) -> int:
    service = build_service()
    print_enrichment(service.process_unprocessed())
    return 0


def cmd_stats(args) -> int:
    service = build_service()
    for key, value in service.repository.stats().items():
        print(f"{key:>12}: {value}")
    available = service.client.is_available()
    print(f"{'ollama':>12}: {'connected' if available else 'unreachable'} ({service.settings.ollama_base_url})")
    if available:
        print(f"{'models':>12}: {', '.join(service.client.list_models()) or '-'}")
    return 0


def cmd_reset(args) -> int:
    service = build_service()
    counts = service.reset_corpus(everything=args.all)
    print(", ".join(f"{name}: {count}" for name, count in counts.items()) + " deleted")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Import, enrich and search mail archives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s import mailbox.pst                 # Import and enrich
  %(prog)s import export.json --no-enrich     # Import only
  %(prog)s search "invoice payment"           # Keyword search
  %(prog)s semantic "project schedule"        # Embedding search
  %(prog)s ask "Who sent the quote?"          # Question over the corpus
        """
    )

    # Output options
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import a .pst or .json archive")
    import_parser.add_argument("file", type=str, help="Archive to import")
    import_parser.add_argument(
        "--no-attachments",
        action="store_true",
        help="Do not store attachments (faster preview imports)",
    )
    import_parser.add_argument(
        "--no-enrich",
        action="store_true",
        help="Skip classification, embeddings and event extraction",
    )
    import_parser.set_defaults(func=cmd_import)

    search_parser = subparsers.add_parser("search", help="Keyword search")
    search_parser.add_argument("query", type=str)
    search_parser.add_argument("--top-k", "-k", type=int, default=10, help="Maximum results (default: 10)")
    search_parser.set_defaults(func=cmd_search)

    semantic_parser = subparsers.add_parser("semantic", help="Semantic search over embedded chunks")
    semantic_parser.add_argument("query", type=str)
    semantic_parser.add_argument("--top-k", "-k", type=int, default=5, help="Maximum results (default: 5)")
    semantic_parser.set_defaults(func=cmd_semantic)

    ask_parser = subparsers.add_parser("ask", help="Ask a question about the imported mail")
    ask_parser.add_argument("question", type=str)
    ask_parser.set_defaults(func=cmd_ask)

    process_parser = subparsers.add_parser("process", help="Enrich every unprocessed message")
    process_parser.set_defaults(func=cmd_process)

    stats_parser = subparsers.add_parser("stats", help="Corpus and model service status")
    stats_parser.set_defaults(func=cmd_stats)

    reset_parser = subparsers.add_parser("reset", help="Delete embeddings (or everything with --all)")
    reset_parser.add_argument(
        "--all",
        action="store_true",
        help="Also delete messages, events, import history and stored attachments",
    )
    reset_parser.set_defaults(func=cmd_reset)

    args = parser.parse_args()

    # Setup logging
    setup_logging(verbose=args.verbose, quiet=args.quiet)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
