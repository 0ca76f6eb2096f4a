#!/usr/bin/env python
"""Ingest the document corpus into the vector store.

Usage:
    python scripts/reindex.py              # Append to the existing store
    python scripts/reindex.py --rebuild    # Clear the store first
    python scripts/reindex.py --verbose    # Log every batch instead of a progress bar
"""
import argparse
import asyncio
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import structlog

from docchat.config import Settings
from docchat.errors import InvalidConfiguration
from docchat.log_config import configure_logging
from docchat.main import build_components

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int):
        """Update progress after each embedding batch."""
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total} batches)",
            end="",
            flush=True,
        )

    def finish(self, report, settings: Settings):
        """Finish progress reporting."""
        stats = report.stats
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Documents loaded:      {stats.documents_loaded}")
        print(f"  Files failed:          {stats.files_failed}")
        print(f"  Duplicates skipped:    {stats.duplicates_skipped}")
        print(f"  Chunks created:        {stats.chunks_created}")
        print(f"  Embeddings generated:  {stats.embeddings_generated}")
        print(f"  Chunks stored:         {stats.records_stored}")
        print(f"  Embedding failures:    {stats.embedding_failures}")
        print(f"  Storage failures:      {stats.ingestion_errors}")
        print(f"  Time elapsed:          {elapsed_seconds:.1f}s")

        if stats.records_stored > 0 and elapsed_seconds > 0:
            rate = stats.records_stored / elapsed_seconds
            print(f"  Indexing rate:         {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        for error in report.loader_errors:
            print(f"  Skipped file {error.path}: {error.cause}")

        skipped = stats.files_failed + stats.embedding_failures + stats.ingestion_errors
        if skipped:
            print(f"Warning: {skipped} item(s) were skipped. Check logs for details.\n")

        if stats.records_stored > 0:
            print(f"Store ready at: {settings.db_path}\n")


async def main() -> int:
    """Main entry point for reindex script."""
    parser = argparse.ArgumentParser(
        description="Ingest documents into the docchat vector store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/reindex.py              # Append to the existing store
  python scripts/reindex.py --rebuild    # Clear the store first
  python scripts/reindex.py --verbose    # Log every batch
        """,
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Clear the store before ingesting",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )
    parser.add_argument(
        "--docs-dir",
        type=Path,
        default=None,
        help="Documents directory (default: DOCS_DIR)",
    )
    args = parser.parse_args()

    try:
        settings = Settings.from_env()
        if args.docs_dir is not None:
            settings = replace(settings, docs_dir=args.docs_dir)
        settings.validate()
    except InvalidConfiguration as e:
        print(f"\nConfiguration error: {e}\n")
        return 2

    configure_logging("DEBUG" if args.verbose else settings.log_level, settings.log_json)
    progress = ProgressReporter(verbose=args.verbose)

    print("\nConfiguration:")
    print(f"   Documents directory: {settings.docs_dir}")
    print(f"   Embedding model:     {settings.embedding_model}")
    print(f"   Chunk size:          {settings.chunk_size} chars")
    print(f"   Chunk overlap:       {settings.chunk_overlap} chars")
    print(f"   Batch size:          {settings.embed_batch_size}")
    print(f"   Concurrency:         {settings.ingest_concurrency}")

    try:
        if args.rebuild:
            print("\nRebuild mode: the existing store will be cleared!")
            print("   Press Ctrl+C within 3 seconds to cancel...")
            await asyncio.sleep(3)

        progress.start("Rebuilding Store" if args.rebuild else "Ingesting Documents")

        pipeline = build_components(settings).ingest_pipeline()
        report = await pipeline.ingest_all(
            rebuild=args.rebuild,
            progress_callback=None if args.verbose else progress.update,
        )

        progress.finish(report, settings)
        return 1 if report.stats.files_failed > 0 else 0

    except KeyboardInterrupt:
        print("\n\nIngestion cancelled by user.\n")
        return 1

    except (FileNotFoundError, InvalidConfiguration) as e:
        print(f"\nError: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
