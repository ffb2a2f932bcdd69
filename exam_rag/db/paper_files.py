"""Paper-file selection for ingestion batches.

Paper files are paged by id. Filters on level, subject code or year need the
owning paper and subject, which are fetched in two follow-up queries and
joined in memory.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from supabase import Client

from exam_rag.models.documents import PaperFileFilters, SourceDocument

PAPER_FILE_COLUMNS = "id, paper_id, file_type, storage_path"


def _to_document(row: Dict[str, Any], position: Optional[int] = None) -> SourceDocument:
    return SourceDocument(
        id=str(row["id"]),
        paper_id=str(row["paper_id"]) if row.get("paper_id") else None,
        file_type=row.get("file_type") or "",
        storage_path=row.get("storage_path") or "",
        page_position=position,
    )


async def get_paper_file(client: Client, paper_file_id: str) -> Optional[SourceDocument]:
    """Fetch a single paper file by id, or None if it does not exist."""
    response = await asyncio.to_thread(
        lambda: client.table("paper_files")
        .select(PAPER_FILE_COLUMNS)
        .eq("id", paper_file_id)
        .limit(1)
        .execute()
    )
    rows = response.data or []
    return _to_document(rows[0]) if rows else None


async def fetch_paper_files(
    client: Client,
    offset: int,
    limit: int,
    filters: Optional[PaperFileFilters] = None,
) -> List[SourceDocument]:
    """Fetch one page of paper files, then apply the optional filters.

    The page is taken before filtering, so a filtered page may hold fewer
    than ``limit`` files; the next page still starts at ``offset + limit``.
    Each file keeps its unfiltered position in ``page_position`` so a
    partially processed page can be resumed exactly.

    Args:
        client: Supabase client instance
        offset: Index of the first paper file (ordered by id)
        limit: Page size
        filters: Optional level / file type / subject code / year filters

    Returns:
        List[SourceDocument]: Matching paper files in id order
    """
    filters = filters or PaperFileFilters()

    response = await asyncio.to_thread(
        lambda: client.table("paper_files")
        .select(PAPER_FILE_COLUMNS)
        .order("id", desc=False)
        .range(offset, offset + limit - 1)
        .execute()
    )
    rows: List[Tuple[int, Dict[str, Any]]] = list(enumerate(response.data or [], start=offset))

    if filters.file_type:
        rows = [(pos, r) for pos, r in rows if r.get("file_type") == filters.file_type]

    if not filters.needs_join:
        return [_to_document(r, pos) for pos, r in rows]

    paper_ids = sorted({str(r["paper_id"]) for _, r in rows if r.get("paper_id")})
    if not paper_ids:
        return []

    papers_response = await asyncio.to_thread(
        lambda: client.table("papers")
        .select("id, subject_id, year, session, paper, variant")
        .in_("id", paper_ids)
        .execute()
    )
    papers = {str(p["id"]): p for p in papers_response.data or []}

    subject_ids = sorted({str(p["subject_id"]) for p in papers.values() if p.get("subject_id")})
    subjects: Dict[str, Dict[str, Any]] = {}
    if subject_ids:
        subjects_response = await asyncio.to_thread(
            lambda: client.table("subjects")
            .select("id, level, code")
            .in_("id", subject_ids)
            .execute()
        )
        subjects = {str(s["id"]): s for s in subjects_response.data or []}

    selected = []
    for pos, row in rows:
        paper = papers.get(str(row.get("paper_id")))
        if not paper:
            continue
        if filters.year and str(paper.get("year")) != str(filters.year):
            continue
        subject = subjects.get(str(paper.get("subject_id")))
        if not subject:
            continue
        if filters.level and str(subject.get("level")) != str(filters.level):
            continue
        if filters.subject_code and str(subject.get("code")) != str(filters.subject_code):
            continue
        selected.append(_to_document(row, pos))

    return selected
