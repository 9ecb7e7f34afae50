#!/usr/bin/env python
"""Index documentation sites or text and query the vector store.

Usage:
    python scripts/index_docs.py index --url https://nextjs.org/docs
    python scripts/index_docs.py index --file notes.txt
    python scripts/index_docs.py search "how do I deploy?" --host nextjs.org
    python scripts/index_docs.py context "and the app router?"
    python scripts/index_docs.py status
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dochelper import config
from dochelper.errors import DocHelperError
from dochelper.services import DocHelper, configure_logging
import structlog

logger = structlog.get_logger()


def print_banner(message: str):
    print(f"\n{'=' * 60}")
    print(f"  {message}")
    print(f"{'=' * 60}\n")


def print_configuration():
    print("\n📋 Configuration:")
    print(f"   Embedding provider: {config.EMBEDDING_PROVIDER}")
    print(f"   Embedding model:    {config.EMBEDDING_MODEL} (dim={config.EMBEDDING_DIM})")
    print(f"   Vector backend:     {config.VECTOR_BACKEND}")
    print(f"   Chunk size:         {config.CHUNK_SIZE} chars")
    print(f"   Chunk overlap:      {config.CHUNK_OVERLAP} chars")
    print(f"   Crawl limits:       {config.CRAWL_MAX_PAGES} pages, depth {config.CRAWL_MAX_DEPTH}")


async def run_index(helper: DocHelper, args) -> None:
    text = args.text
    if args.file:
        text = args.file.read_text(encoding="utf-8")

    print_configuration()
    started = datetime.now()
    print_banner(f"Indexing {args.url or (args.file.name if args.file else 'text')}")

    result = await helper.index(url=args.url, text=text)

    elapsed = (datetime.now() - started).total_seconds()
    print(f"  📝 Chunks indexed:  {result.chunks}")
    if result.pages is not None:
        print(f"  📁 Pages crawled:   {result.pages}")
    print(f"  ⏱️  Time elapsed:    {elapsed:.1f}s\n")


async def run_search(helper: DocHelper, args) -> None:
    filters = {"sourceHost": args.host, "sourcePrefix": args.prefix}
    results = await helper.search(args.query, top_k=args.top_k, filters=filters)

    if not results:
        print("\nNo results.\n")
        return

    print()
    for i, result in enumerate(results, 1):
        snippet = result.content[:200].replace("\n", " ")
        print(f"[#{i}] {result.distance:.4f}  {result.source_url or 'n/a'}")
        print(f"     {snippet}\n")


async def run_context(helper: DocHelper, args) -> None:
    filters = {"sourceHost": args.host, "sourcePrefix": args.prefix}
    retrieval = await helper.retrieve_for_chat(args.message, top_k=args.top_k, filters=filters)

    if retrieval.dominant_host:
        print(f"\n  Narrowed to: {retrieval.dominant_host}")
    print(f"\n{retrieval.context or 'No results.'}\n")


async def run_status(helper: DocHelper, args) -> None:
    status = await helper.status()
    print(f"\n  Backend:    {status['backend']}")
    print(f"  Model:      {status['embedding_model']} (dim={status['dimension']})")
    print(f"  Chunks:     {status['count']}\n")


async def main():
    """Main entry point for the indexing CLI."""
    parser = argparse.ArgumentParser(
        description="Index documentation and run semantic searches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default=None, help=f"Log level (default: {config.LOG_LEVEL})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Crawl a site or index raw text")
    source = index_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--url", help="Start URL of the site to crawl")
    source.add_argument("--text", help="Raw text to index")
    source.add_argument("--file", type=Path, help="File whose text should be indexed")
    index_parser.set_defaults(handler=run_index)

    search_parser = subparsers.add_parser("search", help="Semantic search over indexed chunks")
    search_parser.add_argument("query")
    search_parser.add_argument("--top-k", type=int, default=None, help=f"Results (default: {config.RETRIEVAL_TOP_K})")
    search_parser.add_argument("--host", default=None, help="Only results from this host")
    search_parser.add_argument("--prefix", default=None, help="Only results whose URL starts with this")
    search_parser.set_defaults(handler=run_search)

    context_parser = subparsers.add_parser("context", help="Build the answering context for a question")
    context_parser.add_argument("message")
    context_parser.add_argument("--top-k", type=int, default=None, help=f"Results (default: {config.RETRIEVAL_TOP_K})")
    context_parser.add_argument("--host", default=None, help="Only results from this host")
    context_parser.add_argument("--prefix", default=None, help="Only results whose URL starts with this")
    context_parser.set_defaults(handler=run_context)

    status_parser = subparsers.add_parser("status", help="Show indexed chunk count")
    status_parser.set_defaults(handler=run_status)

    args = parser.parse_args()
    configure_logging(args.log_level)

    try:
        async with DocHelper.create() as helper:
            await args.handler(helper, args)

    except KeyboardInterrupt:
        print("\n\n⚠️  Cancelled by user.\n")
        sys.exit(1)

    except DocHelperError as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("index_docs_failed", command=args.command, error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
