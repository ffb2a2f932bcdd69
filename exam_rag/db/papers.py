"""Paper queries for the direct lookup path (no embeddings involved)."""

import asyncio
from typing import Any, Dict, List, Optional

from supabase import Client

PAPER_LOOKUP_SELECT = """
    id,
    year,
    session,
    paper,
    subject_id,
    subjects(code, level),
    paper_files(file_type, storage_path, id)
"""


async def list_papers_with_files(
    client: Client,
    year: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """List papers with their subject and attached files, optionally for one year.

    Raises:
        RuntimeError: If the query fails
    """
    def _query() -> Any:
        query = client.table("papers").select(PAPER_LOOKUP_SELECT)
        if year:
            query = query.eq("year", year)
        return query.execute()

    try:
        response = await asyncio.to_thread(_query)
    except Exception as e:
        raise RuntimeError(f"Failed to list papers: {str(e)}") from e
    return response.data or []
