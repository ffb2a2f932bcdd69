"""
Batch ingestion of stored paper files.

Pages through ``paper_files`` (or takes a single file by id), downloads each
PDF from storage, extracts its text and hands it to the
:class:`IngestionCoordinator`. Files are processed one at a time. A failure
on one file (download, extraction) is logged and the batch moves on.
"""

import logging
import time
from typing import List, Optional

from pydantic import BaseModel, Field
from supabase import Client

from exam_rag.db.paper_files import fetch_paper_files, get_paper_file
from exam_rag.models.documents import IngestionStats, PaperFileFilters, SourceDocument
from exam_rag.services.document_storage import download_document
from exam_rag.services.ingestion import IngestionCoordinator
from exam_rag.services.pdf_text import extract_pdf_text_from_bytes

logger = logging.getLogger(__name__)


class BatchOptions(BaseModel):
    """Which paper files a run picks up."""
    batch_files: int = Field(default=5, ge=1)
    offset: int = Field(default=0, ge=0)
    max_files: int = Field(default=999999, ge=1)
    paper_file_id: Optional[str] = None
    filters: PaperFileFilters = Field(default_factory=PaperFileFilters)
    run_all: bool = Field(default=False, description="Keep paging until no files are left")


class BatchSummary(BaseModel):
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    fragments_created: int = 0
    embeddings_created: int = 0
    next_offset: int = 0
    elapsed_s: float = 0.0
    results: List[IngestionStats] = Field(default_factory=list)


async def ingest_paper_file(
    client: Client,
    coordinator: IngestionCoordinator,
    bucket: str,
    paper_file: SourceDocument,
) -> IngestionStats:
    """Download, extract and ingest one paper file.

    Raises:
        RuntimeError: If the download fails
        ValueError: If text extraction fails
    """
    logger.info(f"Ingest {paper_file.id} ({paper_file.file_type or '?'}) path={paper_file.storage_path}")
    content = await download_document(client, bucket, paper_file.storage_path)
    text = await extract_pdf_text_from_bytes(content)
    logger.info(f"Extracted chars: {len(text.strip())}")
    return await coordinator.ingest_text(paper_file.id, text)


async def run_ingestion_batch(
    client: Client,
    coordinator: IngestionCoordinator,
    bucket: str,
    options: BatchOptions,
) -> BatchSummary:
    """Ingest one page of paper files (or every page with ``run_all``).

    Returns:
        BatchSummary: Totals plus the offset to resume from
    """
    t0 = time.time()
    summary = BatchSummary(next_offset=options.offset)

    async def _ingest(paper_file: SourceDocument) -> None:
        try:
            stats = await ingest_paper_file(client, coordinator, bucket, paper_file)
        except (RuntimeError, ValueError, FileNotFoundError) as e:
            logger.warning(f"Ingest {paper_file.id} failed: {e}")
            summary.failed += 1
            return
        summary.processed += 1
        summary.results.append(stats)
        if stats.skipped:
            summary.skipped += 1
        summary.fragments_created += stats.fragments_created
        summary.embeddings_created += stats.embeddings_created

    if options.paper_file_id:
        paper_file = await get_paper_file(client, options.paper_file_id)
        if paper_file is None:
            logger.warning(f"Paper file {options.paper_file_id} not found")
        else:
            await _ingest(paper_file)
        summary.elapsed_s = round(time.time() - t0, 1)
        return summary

    offset = options.offset
    seen = 0
    while seen < options.max_files:
        files = await fetch_paper_files(client, offset, options.batch_files, options.filters)
        take = files[: options.max_files - seen]
        if len(take) < len(files):
            # Resume at the first file of this page that was not ingested.
            offset = _resume_offset(files[len(take)], offset, len(take))
        else:
            offset += options.batch_files
        summary.next_offset = offset

        for paper_file in take:
            await _ingest(paper_file)
            seen += 1

        logger.info(
            f"Progress: processed={summary.processed}, next offset={offset}, "
            f"embeddings={summary.embeddings_created}, elapsed={time.time() - t0:.1f}s"
        )
        if not options.run_all:
            break
        # An empty filtered page is not the end; an empty unfiltered page is.
        if not files and not await _page_has_rows(client, offset - options.batch_files):
            break

    summary.elapsed_s = round(time.time() - t0, 1)
    return summary


async def _page_has_rows(client: Client, offset: int) -> bool:
    rows = await fetch_paper_files(client, offset, 1)
    return bool(rows)


def _resume_offset(first_left: SourceDocument, page_offset: int, taken: int) -> int:
    if first_left.page_position is not None:
        return first_left.page_position
    return page_offset + taken
