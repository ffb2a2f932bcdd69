"""Fragment and embedding persistence (``rag_chunks`` / ``rag_embeddings``).

Fragments are keyed by ``content_hash``: inserting a fragment whose hash
already exists is ignored, so re-ingesting the same document is a no-op.
Embeddings are unique per ``(chunk_id, model)``; inserting a duplicate is
reported as "already existed" rather than an error so interrupted runs can be
restarted.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Set

from supabase import Client

from exam_rag.models.documents import Embedding, Fragment

CHUNKS_TABLE = "rag_chunks"
EMBEDDINGS_TABLE = "rag_embeddings"

# Chunk ids per ``in_`` filter; keeps PostgREST URLs short.
ID_BATCH_SIZE = 100


class FragmentStoreError(RuntimeError):
    """Raised when a fragment or embedding operation fails."""


class FragmentNotFoundError(FragmentStoreError):
    """Raised when an embedding references a fragment that does not exist."""


def _is_unique_violation(err_msg: str) -> bool:
    return "23505" in err_msg or "unique" in err_msg or "duplicate" in err_msg


def _is_foreign_key_violation(err_msg: str) -> bool:
    return "23503" in err_msg or "foreign key" in err_msg


def _row_to_fragment(row: Dict[str, Any]) -> Fragment:
    return Fragment(
        id=str(row["id"]),
        source_document_id=str(row["paper_file_id"]),
        sequence_index=int(row["chunk_index"]),
        text=row.get("content") or "",
        content_hash=row.get("content_hash") or "",
        status="embedded" if row.get("embedding_status") == "embedded" else "pending",
    )


def _batched(ids: List[str], size: int = ID_BATCH_SIZE) -> Iterable[List[str]]:
    for i in range(0, len(ids), size):
        yield ids[i:i + size]


class FragmentStore:
    """Supabase-backed store for fragments and their embeddings."""

    def __init__(self, client: Client):
        self._client = client

    async def upsert_fragments(self, fragments: List[Fragment]) -> int:
        """Insert fragments, skipping any whose content_hash already exists.

        Returns:
            int: Number of newly inserted fragments

        Raises:
            FragmentStoreError: If the database call fails
        """
        if not fragments:
            return 0

        records = [
            {
                "paper_file_id": f.source_document_id,
                "chunk_index": f.sequence_index,
                "content": f.text,
                "content_hash": f.content_hash,
                "embedding_status": "pending",
            }
            for f in fragments
        ]
        try:
            response = await asyncio.to_thread(
                lambda: self._client.table(CHUNKS_TABLE)
                .upsert(records, on_conflict="content_hash", ignore_duplicates=True)
                .execute()
            )
        except Exception as e:
            raise FragmentStoreError(f"Failed to upsert fragments: {str(e)}") from e
        return len(response.data or [])

    async def list_fragments(self, source_document_id: str) -> List[Fragment]:
        """List a document's fragments ordered by chunk_index."""
        try:
            response = await asyncio.to_thread(
                lambda: self._client.table(CHUNKS_TABLE)
                .select("id, paper_file_id, chunk_index, content, content_hash, embedding_status")
                .eq("paper_file_id", source_document_id)
                .order("chunk_index", desc=False)
                .execute()
            )
        except Exception as e:
            raise FragmentStoreError(f"Failed to list fragments: {str(e)}") from e
        return [_row_to_fragment(row) for row in response.data or []]

    async def find_missing_embeddings(self, fragment_ids: List[str], model: str) -> Set[str]:
        """Return the ids in ``fragment_ids`` that have no embedding under ``model``."""
        requested = [str(i) for i in fragment_ids]
        if not requested:
            return set()

        existing: Set[str] = set()
        for batch in _batched(requested):
            try:
                response = await asyncio.to_thread(
                    lambda batch=batch: self._client.table(EMBEDDINGS_TABLE)
                    .select("chunk_id")
                    .in_("chunk_id", batch)
                    .eq("model", model)
                    .execute()
                )
            except Exception as e:
                raise FragmentStoreError(f"Failed to read embeddings: {str(e)}") from e
            existing.update(str(row["chunk_id"]) for row in response.data or [])

        return set(requested) - existing

    async def insert_embedding(self, fragment_id: str, vector: List[float], model: str) -> bool:
        """Store the embedding of one fragment.

        Returns:
            bool: True if inserted, False if an embedding already existed

        Raises:
            FragmentNotFoundError: If the fragment does not exist
            FragmentStoreError: For any other database failure
        """
        record = Embedding(fragment_id=fragment_id, vector=vector, model_name=model).to_record()
        try:
            await asyncio.to_thread(
                lambda: self._client.table(EMBEDDINGS_TABLE).insert(record).execute()
            )
            return True
        except Exception as e:
            err_msg = str(e).lower()
            if _is_foreign_key_violation(err_msg):
                raise FragmentNotFoundError(f"Fragment {fragment_id} does not exist") from e
            if _is_unique_violation(err_msg):
                return False
            raise FragmentStoreError(f"Failed to insert embedding: {str(e)}") from e

    async def mark_embedded(self, fragment_id: str) -> None:
        try:
            await asyncio.to_thread(
                lambda: self._client.table(CHUNKS_TABLE)
                .update({"embedding_status": "embedded"})
                .eq("id", fragment_id)
                .execute()
            )
        except Exception as e:
            raise FragmentStoreError(f"Failed to mark fragment embedded: {str(e)}") from e

    async def count_fragments(self) -> int:
        response = await asyncio.to_thread(
            lambda: self._client.table(CHUNKS_TABLE).select("id", count="exact").limit(1).execute()
        )
        return int(response.count or 0)

    async def count_embeddings(self) -> int:
        response = await asyncio.to_thread(
            lambda: self._client.table(EMBEDDINGS_TABLE).select("chunk_id", count="exact").limit(1).execute()
        )
        return int(response.count or 0)

    async def sample_fragment(self) -> Optional[Fragment]:
        response = await asyncio.to_thread(
            lambda: self._client.table(CHUNKS_TABLE)
            .select("id, paper_file_id, chunk_index, content, content_hash, embedding_status")
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return _row_to_fragment(rows[0]) if rows else None

    async def embedding_model(self) -> Optional[str]:
        """Model name of any stored embedding, or None when there are none."""
        response = await asyncio.to_thread(
            lambda: self._client.table(EMBEDDINGS_TABLE).select("model").limit(1).execute()
        )
        rows = response.data or []
        return rows[0].get("model") if rows else None
