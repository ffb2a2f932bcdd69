"""
Question-time retrieval: embed, vector search, threshold, enrich, group.

Retrieval never raises. Every failure mode (no hits, nothing above the
similarity threshold, enrichment failure, unexpected errors) comes back as an
unsuccessful :class:`RetrievalResult` carrying a short error message.
"""

import logging
from typing import Any, Dict, List, Optional

from supabase import Client

from exam_rag.db.search import fetch_enriched_fragments, search_fragments
from exam_rag.models.rag import (
    QueryFilters,
    RetrievalResult,
    RetrievedFragment,
    RetrievedGroup,
)
from exam_rag.services.embedding_client import EmbeddingClient

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 16
DEFAULT_SIMILARITY_THRESHOLD = 0.5
DEFAULT_MAX_FRAGMENTS_PER_GROUP = 2


def _nested(row: Optional[Dict[str, Any]], key: str) -> Dict[str, Any]:
    """Embedded relation from a PostgREST row; to-one joins may come back as a list."""
    if not row:
        return {}
    value = row.get(key)
    if isinstance(value, list):
        value = value[0] if value else None
    return value or {}


def _new_group(row: Dict[str, Any]) -> RetrievedGroup:
    paper_file = _nested(row, "paper_files")
    paper = _nested(paper_file, "papers")
    subject = _nested(paper, "subjects")
    return RetrievedGroup(
        paper_file_id=str(row.get("paper_file_id")),
        file_type=paper_file.get("file_type") or "Unknown",
        storage_path=paper_file.get("storage_path") or "",
        subject=str(subject.get("code") or "Unknown"),
        level=subject.get("level"),
        year=int(paper.get("year") or 0),
        session=paper.get("session") or "Unknown",
        paper=str(paper.get("paper") or "P"),
    )


def group_fragments(
    rows: List[Dict[str, Any]],
    similarity_by_id: Dict[str, float],
    max_fragments_per_group: int = DEFAULT_MAX_FRAGMENTS_PER_GROUP,
) -> List[RetrievedGroup]:
    """Group enriched rows by paper file.

    Rows are visited in descending similarity, so groups appear in the order
    of their best fragment and each group keeps its highest-scoring
    ``max_fragments_per_group`` fragments.
    """
    ordered = sorted(
        rows,
        key=lambda r: similarity_by_id.get(str(r.get("id")), 0.0),
        reverse=True,
    )

    groups: Dict[str, RetrievedGroup] = {}
    for row in ordered:
        file_id = str(row.get("paper_file_id"))
        group = groups.get(file_id)
        if group is None:
            group = groups[file_id] = _new_group(row)
        if len(group.fragments) >= max_fragments_per_group:
            continue
        fragment_id = str(row.get("id"))
        group.fragments.append(
            RetrievedFragment(
                id=fragment_id,
                content=row.get("content") or "",
                chunk_index=int(row.get("chunk_index") or 0),
                similarity=similarity_by_id.get(fragment_id, 0.0),
            )
        )
    return list(groups.values())


class RetrievalEngine:
    """Finds the fragments most similar to a question, grouped by source document.

    Args:
        client: Supabase client instance
        embedder: Embedding client (remote, falling back to the local embedding)
        top_k: Number of nearest neighbours requested from the search
        similarity_threshold: Minimum cosine similarity kept
        max_fragments_per_group: Per-document fragment cap
    """

    def __init__(
        self,
        client: Client,
        embedder: EmbeddingClient,
        top_k: int = DEFAULT_TOP_K,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_fragments_per_group: int = DEFAULT_MAX_FRAGMENTS_PER_GROUP,
    ):
        self.client = client
        self.embedder = embedder
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold
        self.max_fragments_per_group = max_fragments_per_group

    async def retrieve(
        self,
        question: str,
        filters: Optional[QueryFilters] = None,
    ) -> RetrievalResult:
        used_fallback = False
        try:
            embedding = await self.embedder.embed(question)
            used_fallback = embedding.is_fallback

            try:
                hits = await search_fragments(self.client, embedding.vector, self.top_k, filters)
            except RuntimeError as e:
                logger.warning(f"{e}; treating as no results")
                hits = []

            if not hits:
                return RetrievalResult.failure("No results found", used_fallback_embedding=used_fallback)

            kept = [
                h for h in hits
                if float(h.get("similarity") or 0.0) >= self.similarity_threshold
            ]
            if not kept:
                return RetrievalResult.failure(
                    f"No results above similarity threshold ({self.similarity_threshold})",
                    used_fallback_embedding=used_fallback,
                )

            raw_scores = [float(h["similarity"]) for h in kept]
            similarity_by_id = {str(h["chunk_id"]): float(h["similarity"]) for h in kept}

            try:
                rows = await fetch_enriched_fragments(self.client, list(similarity_by_id))
            except RuntimeError as e:
                logger.warning(str(e))
                rows = []
            if not rows:
                return RetrievalResult.failure(
                    "Failed to enrich results",
                    raw_similarity_scores=raw_scores,
                    used_fallback_embedding=used_fallback,
                )

            groups = group_fragments(rows, similarity_by_id, self.max_fragments_per_group)
            logger.info(
                f"Retrieved {len(kept)} fragments above {self.similarity_threshold} "
                f"in {len(groups)} documents"
            )
            return RetrievalResult(
                success=True,
                groups=groups,
                raw_similarity_scores=raw_scores,
                used_fallback_embedding=used_fallback,
            )

        except Exception as e:
            logger.error(f"Retrieval failed: {e}")
            return RetrievalResult.failure(
                str(e) or "Retrieval error",
                used_fallback_embedding=used_fallback,
            )
