"""Vector search and fragment enrichment queries used at question time."""

import asyncio
from typing import Any, Dict, List, Optional

from supabase import Client

from exam_rag.models.rag import QueryFilters

SEARCH_RPC = "rag_search"

# rag_chunks -> paper_files -> papers -> subjects, inner joins.
ENRICHED_FRAGMENT_SELECT = """
    id,
    chunk_index,
    content,
    paper_file_id,
    paper_files!inner(
        id,
        file_type,
        storage_path,
        paper_id,
        papers!inner(
            id,
            year,
            session,
            paper,
            subject_id,
            subjects!inner(
                id,
                code,
                level
            )
        )
    )
"""


def build_search_params(
    query_embedding: List[float],
    match_count: int,
    filters: Optional[QueryFilters] = None,
) -> Dict[str, Any]:
    """Build ``rag_search`` arguments; filters that are not set are omitted."""
    params: Dict[str, Any] = {
        "query_embedding": query_embedding,
        "match_count": match_count,
    }
    if filters is not None:
        if filters.subject:
            params["filter_subject_code"] = filters.subject
        if filters.year:
            params["filter_year"] = filters.year
        if filters.file_type:
            params["filter_file_type"] = filters.file_type
        if filters.level:
            params["filter_level"] = filters.level
    return params


async def search_fragments(
    client: Client,
    query_embedding: List[float],
    match_count: int,
    filters: Optional[QueryFilters] = None,
) -> List[Dict[str, Any]]:
    """Nearest-neighbour search over stored embeddings.

    Returns:
        List of ``{"chunk_id", "similarity"}`` rows ordered by descending similarity

    Raises:
        RuntimeError: If the RPC call fails
    """
    params = build_search_params(query_embedding, match_count, filters)
    try:
        response = await asyncio.to_thread(
            lambda: client.rpc(SEARCH_RPC, params).execute()
        )
    except Exception as e:
        raise RuntimeError(f"Vector search failed: {str(e)}") from e
    return response.data or []


async def fetch_enriched_fragments(
    client: Client,
    fragment_ids: List[str],
) -> List[Dict[str, Any]]:
    """Load fragments with their paper file, paper and subject context.

    Raises:
        RuntimeError: If the query fails
    """
    if not fragment_ids:
        return []
    try:
        response = await asyncio.to_thread(
            lambda: client.table("rag_chunks")
            .select(ENRICHED_FRAGMENT_SELECT)
            .in_("id", fragment_ids)
            .execute()
        )
    except Exception as e:
        raise RuntimeError(f"Failed to enrich fragments: {str(e)}") from e
    return response.data or []
