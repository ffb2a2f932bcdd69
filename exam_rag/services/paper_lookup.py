"""Direct paper lookup: find stored paper sets by year and file type.

Results are nested ``"{code}-{year}"`` sets:

    {subject, year, level, sessions: {session: {session, papers:
        {paper: {paper, files: {file_type: {file_type, storage_path, id}}}}}}}
"""

import logging
from typing import Any, Dict, List

from supabase import Client

from exam_rag.db.papers import list_papers_with_files
from exam_rag.models.rag import ClassificationMetadata

logger = logging.getLogger(__name__)


def group_papers(papers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Nest paper rows by subject/year, session, paper number and file type."""
    sets: Dict[str, Dict[str, Any]] = {}
    for paper in papers:
        subject = paper.get("subjects") or {}
        if isinstance(subject, list):
            subject = subject[0] if subject else {}
        code = subject.get("code")
        year = paper.get("year")

        paper_set = sets.setdefault(
            f"{code}-{year}",
            {"subject": code, "year": year, "level": subject.get("level"), "sessions": {}},
        )
        session = paper_set["sessions"].setdefault(
            paper.get("session"),
            {"session": paper.get("session"), "papers": {}},
        )
        entry = session["papers"].setdefault(
            paper.get("paper"),
            {"paper": paper.get("paper"), "files": {}},
        )
        for paper_file in paper.get("paper_files") or []:
            entry["files"][paper_file.get("file_type")] = {
                "file_type": paper_file.get("file_type"),
                "storage_path": paper_file.get("storage_path"),
                "id": paper_file.get("id"),
            }
    return list(sets.values())


async def resolve_paper_lookup(
    client: Client,
    metadata: ClassificationMetadata,
) -> List[Dict[str, Any]]:
    """Paper sets matching the detected year and file type.

    The detected subject keyword is not applied: subjects are stored by code,
    not by name. Database errors are logged and give an empty list.
    """
    try:
        papers = await list_papers_with_files(client, metadata.year)
    except RuntimeError as e:
        logger.warning(f"Paper lookup failed: {e}")
        return []

    if metadata.file_type:
        papers = [
            p for p in papers
            if any(f.get("file_type") == metadata.file_type for f in p.get("paper_files") or [])
        ]

    results = group_papers(papers)
    logger.info(
        f"Paper lookup (year={metadata.year}, file_type={metadata.file_type}): "
        f"{len(results)} sets"
    )
    return results
