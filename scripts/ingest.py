#!/usr/bin/env python
"""Ingest local documents into the vector store.

Usage:
    python scripts/ingest.py report.pdf notes.docx       # Ingest files
    python scripts/ingest.py report.pdf --max-chunk-size 800
    python scripts/ingest.py *.pdf --verbose             # Show detailed progress
"""
import argparse
import asyncio
import sys
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from navi import config
from navi.db import SQLiteVectorStore
from navi.errors import IngestionError, NaviError
from navi.llm_client import OllamaClient
from navi.main import configure_logging, sanitize_filename
from navi.rag.ingest import IngestPipeline
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """One line per file, then totals."""

    def __init__(self, total: int, verbose: bool = False):
        self.total = total
        self.verbose = verbose
        self.started = time.monotonic()

    def file_done(self, index: int, path: Path, outcome: str) -> None:
        if self.verbose or outcome != "ok":
            print(f"  [{index}/{self.total}] {path.name}: {outcome}")

    def summary(self, stats: dict) -> None:
        elapsed = time.monotonic() - self.started
        print(
            f"\n  {stats['files_processed']} ingested, {stats['files_failed']} failed, "
            f"{stats['chunks_created']} chunks stored in {elapsed:.1f}s"
        )
        if stats["files_processed"]:
            print(f"  Database: {config.DB_PATH}")
        print()


async def ingest_files(paths, max_chunk_size, progress: ProgressReporter) -> dict:
    stats = {"files_processed": 0, "files_failed": 0, "chunks_created": 0}

    async with SQLiteVectorStore(config.DB_PATH) as store:
        pipeline = IngestPipeline(store, OllamaClient(), max_chunk_size=max_chunk_size)

        for index, path in enumerate(paths, 1):
            source_name = f"{int(time.time() * 1000)}-{sanitize_filename(path.name)}"

            try:
                data = await asyncio.to_thread(path.read_bytes)
                result = await pipeline.ingest_bytes(
                    data,
                    declared_type=path.name,
                    source_id=Path(source_name).stem,
                    source_name=source_name,
                )
            except IngestionError as e:
                # Earlier chunks of this file stay in the store
                logger.error("file_ingestion_failed", path=str(path), chunk_index=e.chunk_index, error=str(e))
                stats["files_failed"] += 1
                stats["chunks_created"] += e.chunk_index
                progress.file_done(index, path, f"failed at chunk {e.chunk_index} ({e.cause})")
                continue
            except (NaviError, OSError) as e:
                logger.error("file_ingestion_failed", path=str(path), error=str(e))
                stats["files_failed"] += 1
                progress.file_done(index, path, f"failed ({e})")
                continue

            stats["files_processed"] += 1
            stats["chunks_created"] += result.chunk_count
            progress.file_done(index, path, "ok")

    return stats


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest PDF and Word documents into the Navi vector store")
    parser.add_argument("paths", nargs="+", type=Path, help="documents to ingest")
    parser.add_argument(
        "--max-chunk-size",
        type=int,
        default=None,
        help=f"maximum chunk size in characters (default: {config.CHUNK_SIZE})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="print every file and debug logs")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "WARNING")

    if args.max_chunk_size is not None and args.max_chunk_size <= 0:
        print("--max-chunk-size must be positive")
        return 2

    missing = [str(p) for p in args.paths if not p.is_file()]
    if missing:
        print(f"Not found: {', '.join(missing)}")
        return 1

    print(f"Ingesting {len(args.paths)} file(s) with {config.EMBEDDING_MODEL}")
    progress = ProgressReporter(len(args.paths), verbose=args.verbose)
    try:
        stats = await ingest_files(args.paths, args.max_chunk_size, progress)
    except NaviError as e:
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        print(f"Error: {e}")
        return 1

    progress.summary(stats)
    return 1 if stats["files_failed"] else 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nCancelled.")
        sys.exit(1)
