"""
Command-line interface for the exam-paper RAG service.

Usage:
    python -m exam_rag ingest [OPTIONS]
    python -m exam_rag verify
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from exam_rag.config import Settings, get_settings
from exam_rag.db.fragments import FragmentStore
from exam_rag.db.supabase_client import get_supabase_client
from exam_rag.models.documents import PaperFileFilters
from exam_rag.services.embedding_client import EmbeddingClient
from exam_rag.services.ingestion import IngestionCoordinator
from exam_rag.services.ingestion_batch import BatchOptions, run_ingestion_batch
from exam_rag.utils.normalizers import normalize_file_type

SAMPLE_PREVIEW_CHARS = 200


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="exam-rag",
        description="Exam RAG CLI - ingest stored papers and inspect the index"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ingest_parser = subparsers.add_parser(
        "ingest",
        help="Chunk and embed stored paper files"
    )
    ingest_parser.add_argument(
        "--batch-files", "-b", type=int, default=None,
        help="Paper files per batch (default: from env or 5)"
    )
    ingest_parser.add_argument(
        "--offset", "-o", type=int, default=None,
        help="Index of the first paper file (default: from env or 0)"
    )
    ingest_parser.add_argument(
        "--max-files", type=int, default=None,
        help="Stop after this many files (default: from env)"
    )
    ingest_parser.add_argument(
        "--paper-file-id", type=str, default=None,
        help="Ingest a single paper file by id"
    )
    ingest_parser.add_argument("--chunk-size", type=int, default=None)
    ingest_parser.add_argument("--chunk-overlap", type=int, default=None)
    ingest_parser.add_argument(
        "--max-chunks", type=int, default=None,
        help="Per-file fragment cap (default: from env or 120)"
    )
    ingest_parser.add_argument(
        "--concurrency", "-c", type=int, default=None,
        help="Embedding workers per file (default: from env or 2)"
    )
    ingest_parser.add_argument("--level", type=str, default=None, help="Subject level, e.g. O or A")
    ingest_parser.add_argument("--file-type", type=str, default=None, help="QP, MS, ER or GT")
    ingest_parser.add_argument("--subject-code", type=str, default=None, help="Subject code, e.g. 1011")
    ingest_parser.add_argument("--year", type=int, default=None)
    ingest_parser.add_argument(
        "--all", dest="run_all", action="store_true",
        help="Keep going until every page has been processed"
    )

    subparsers.add_parser(
        "verify",
        help="Print fragment and embedding counts and a sample fragment"
    )

    return parser


def _load_settings() -> Optional[Settings]:
    try:
        return get_settings()
    except ValueError as e:
        print(f"Configuration error: {e}")
        print("\nMake sure you have a .env file with:")
        print("  GEMINI_API_KEY=your_api_key")
        print("  SUPABASE_URL=https://your-project.supabase.co")
        print("  SUPABASE_KEY=your_anon_key")
        return None


def _pick(value: Optional[int], default: int) -> int:
    return value if value is not None else default


async def ingest_command(args: argparse.Namespace) -> int:
    """
    Run one ingestion batch (or all of them with --all).

    Returns:
        int: Exit code (0 unless configuration or setup failed)
    """
    settings = _load_settings()
    if settings is None:
        return 1

    concurrency = _pick(args.concurrency, settings.embed_concurrency)
    if concurrency < 1:
        print("Error: --concurrency must be at least 1")
        return 1
    batch_files = _pick(args.batch_files, settings.batch_files)
    if batch_files < 1:
        print("Error: --batch-files must be at least 1")
        return 1

    options = BatchOptions(
        batch_files=batch_files,
        offset=_pick(args.offset, settings.files_offset),
        max_files=_pick(args.max_files, settings.max_files),
        paper_file_id=args.paper_file_id,
        filters=PaperFileFilters(
            level=args.level,
            file_type=normalize_file_type(args.file_type),
            subject_code=args.subject_code,
            year=args.year,
        ),
        run_all=args.run_all,
    )

    client = get_supabase_client()
    embedder = EmbeddingClient(
        base_url=settings.embedding_service_url,
        model=settings.embedding_model,
        dimension=settings.embedding_dimension,
        timeout=settings.embedding_timeout_seconds,
    )
    coordinator = IngestionCoordinator(
        FragmentStore(client),
        embedder,
        chunk_size=_pick(args.chunk_size, settings.chunk_size),
        chunk_overlap=_pick(args.chunk_overlap, settings.chunk_overlap),
        max_chunks=_pick(args.max_chunks, settings.max_chunks_per_file),
        concurrency=concurrency,
        min_text_chars=settings.min_text_chars,
    )

    print(f"Embedding service: {embedder.endpoint} (model {embedder.model})")
    print(
        f"Batch: offset={options.offset}, files={options.batch_files}, "
        f"concurrency={concurrency}, all={options.run_all}"
    )

    try:
        summary = await run_ingestion_batch(client, coordinator, settings.storage_bucket, options)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 1
    finally:
        await embedder.aclose()

    print("\nIngestion summary")
    print(f"  Files processed:    {summary.processed}")
    print(f"  Files skipped:      {summary.skipped}")
    print(f"  Files failed:       {summary.failed}")
    print(f"  Fragments created:  {summary.fragments_created}")
    print(f"  Embeddings created: {summary.embeddings_created}")
    print(f"  Elapsed:            {summary.elapsed_s}s")
    if not options.paper_file_id:
        print(f"\nNext offset: {summary.next_offset}")
    return 0


async def verify_command(args: argparse.Namespace) -> int:
    """Print index counts, the stored embedding model and one sample fragment."""
    settings = _load_settings()
    if settings is None:
        return 1

    store = FragmentStore(get_supabase_client())
    fragments = await store.count_fragments()
    embeddings = await store.count_embeddings()
    model = await store.embedding_model()
    sample = await store.sample_fragment()

    print(f"Fragments:  {fragments}")
    print(f"Embeddings: {embeddings}")
    print(f"Embedding model: {model or 'none'} (configured: {settings.embedding_model})")
    if sample is not None:
        preview = sample.text[:SAMPLE_PREVIEW_CHARS].replace("\n", " ")
        print(f"Sample fragment {sample.id} (chunk {sample.sequence_index}, {sample.status}):")
        print(f"  {preview}")
    else:
        print("No fragments stored yet")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "ingest":
        return asyncio.run(ingest_command(args))
    elif args.command == "verify":
        return asyncio.run(verify_command(args))
    else:
        print(f"Unknown command: {args.command}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
