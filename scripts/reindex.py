#!/usr/bin/env python
"""Rebuild the vector index from the documents stored in the database.

Usage:
    python scripts/reindex.py              # Rebuild after a 3 second grace period
    python scripts/reindex.py --yes        # Rebuild immediately
    python scripts/reindex.py --verbose    # Show one line per document
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docchat import config, db
from docchat.errors import DocChatError
from docchat.llm_client import OllamaClient
from docchat.rag.chunker import TextChunker
from docchat.rag.ingest import DocumentService
from docchat.rag.store_faiss import FAISSVectorStore
from docchat.rag.vector_index import VectorIndex
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, document):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {document.filename[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Reindexing Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Documents processed:  {stats['documents_processed']}")
        print(f"  Documents failed:     {stats['documents_failed']}")
        print(f"  Chunks created:       {stats['chunks_created']}")
        print(f"  Time elapsed:         {elapsed_seconds:.1f}s")

        if stats["chunks_created"] > 0 and elapsed_seconds > 0:
            rate = stats["chunks_created"] / elapsed_seconds
            print(f"  Indexing rate:        {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        if stats["documents_failed"] > 0:
            print(f"Warning: {stats['documents_failed']} document(s) failed to index.")
            print("   Check logs for details.\n")


async def main():
    """Main entry point for reindex script."""
    parser = argparse.ArgumentParser(
        description="Rebuild the vector index from stored documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--yes", "-y", action="store_true", help="Skip the grace period")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show verbose progress output")
    parser.add_argument("--chunk-size", type=int, default=None, help=f"Chunk size (default: {config.CHUNK_SIZE})")
    parser.add_argument("--chunk-overlap", type=int, default=None, help=f"Chunk overlap (default: {config.CHUNK_OVERLAP})")
    args = parser.parse_args()

    progress = ProgressReporter(verbose=args.verbose)

    try:
        print("\nConfiguration:")
        print(f"   Database:         {config.DB_PATH}")
        print(f"   Index directory:  {config.VECTOR_INDEX_DIR}")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
        print(f"   Chunk size:       {args.chunk_size or config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:    {args.chunk_overlap if args.chunk_overlap is not None else config.CHUNK_OVERLAP} chars")

        if not args.yes:
            print("\nThe existing vector index will be cleared.")
            print("   Press Ctrl+C within 3 seconds to cancel...")
            await asyncio.sleep(3)

        db.init_database()

        client = OllamaClient()
        service = DocumentService(
            VectorIndex(FAISSVectorStore(embedder=client)),
            chunker=TextChunker(chunk_size=args.chunk_size, chunk_overlap=args.chunk_overlap),
        )

        progress.start("Rebuilding Vector Index")
        stats = await service.reindex_all(progress_callback=progress.update)
        progress.finish(stats)

        if stats["documents_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nReindexing cancelled by user.\n")
        sys.exit(1)

    except (DocChatError, ValueError) as e:
        print(f"\nError: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
