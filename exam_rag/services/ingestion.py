"""
Per-document ingestion: chunk, store fragments, embed what is missing.

A document is processed end to end before the next one starts; the only
parallelism is the bounded embedding worker pool inside one document.
Every step is idempotent (fragments dedup on content hash, embeddings are
unique per fragment and model), so a run can be repeated after a crash.
"""

import asyncio
import logging
from typing import List, Optional

from exam_rag.db.fragments import FragmentStore, FragmentStoreError
from exam_rag.models.documents import Fragment, IngestionStats
from exam_rag.services.embedding_client import EmbeddingClient
from exam_rag.services.text_chunker import chunk_text

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2500
DEFAULT_CHUNK_OVERLAP = 250
DEFAULT_MAX_CHUNKS = 120
DEFAULT_CONCURRENCY = 2
DEFAULT_MIN_TEXT_CHARS = 200

# Log embedding progress every N embeddings per worker.
PROGRESS_EVERY = 5


class IngestionCoordinator:
    """Turns one document's extracted text into stored, embedded fragments.

    Args:
        store: Fragment/embedding persistence
        embedder: Embedding client; its ``model`` names the stored embeddings
        chunk_size: Maximum characters per fragment
        chunk_overlap: Characters shared between consecutive fragments
        max_chunks: Per-document fragment cap
        concurrency: Number of embedding workers
        min_text_chars: Documents with less text are skipped
    """

    def __init__(
        self,
        store: FragmentStore,
        embedder: EmbeddingClient,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        concurrency: int = DEFAULT_CONCURRENCY,
        min_text_chars: int = DEFAULT_MIN_TEXT_CHARS,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.store = store
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.max_chunks = max_chunks
        self.concurrency = concurrency
        self.min_text_chars = min_text_chars

    async def ingest_text(self, source_document_id: str, text: str) -> IngestionStats:
        """Chunk, persist and embed one document's text.

        Returns:
            IngestionStats: Fragment and embedding counts for this run
        """
        stripped = (text or "").strip()
        stats = IngestionStats(source_document_id=source_document_id, extracted_chars=len(stripped))

        if len(stripped) < self.min_text_chars:
            logger.warning(
                f"Document {source_document_id}: only {len(stripped)} chars extracted "
                f"(scanned?), skipping"
            )
            stats.skipped_reason = "too_little_text"
            return stats

        fragments = [
            Fragment.build(source_document_id, idx, content)
            for idx, content in enumerate(
                chunk_text(stripped, self.chunk_size, self.chunk_overlap, self.max_chunks)
            )
        ]
        stats.fragments_total = len(fragments)
        logger.info(f"Document {source_document_id}: {len(fragments)} fragments")

        try:
            stats.fragments_created = await self.store.upsert_fragments(fragments)
            stored = await self.store.list_fragments(source_document_id)
            missing = await self.store.find_missing_embeddings(
                [f.id for f in stored if f.id], self.embedder.model
            )
        except FragmentStoreError as e:
            logger.warning(f"Document {source_document_id}: {e}")
            return stats

        to_embed = [f for f in stored if f.id in missing]
        stats.embeddings_needed = len(to_embed)
        logger.info(f"Document {source_document_id}: need embeddings for {len(to_embed)} fragments")

        if to_embed:
            created, failed = await self._embed_all(to_embed)
            stats.embeddings_created = created
            stats.embeddings_failed = failed

        return stats

    async def _embed_all(self, fragments: List[Fragment]) -> tuple[int, int]:
        """Embed fragments with a fixed pool of workers; returns (created, failed)."""
        queue: asyncio.Queue[Optional[Fragment]] = asyncio.Queue()
        for fragment in fragments:
            queue.put_nowait(fragment)
        worker_count = min(self.concurrency, len(fragments))
        for _ in range(worker_count):
            queue.put_nowait(None)

        workers = [
            asyncio.create_task(self._worker(queue, len(fragments)))
            for _ in range(worker_count)
        ]
        await queue.join()
        results = await asyncio.gather(*workers)

        created = sum(r[0] for r in results)
        failed = sum(r[1] for r in results)
        return created, failed

    async def _worker(self, queue: "asyncio.Queue[Optional[Fragment]]", total: int) -> tuple[int, int]:
        created = 0
        failed = 0
        while True:
            fragment = await queue.get()
            try:
                if fragment is None:
                    return created, failed
                if await self._embed_one(fragment):
                    created += 1
                    if created % PROGRESS_EVERY == 0:
                        logger.info(
                            f"Document {fragment.source_document_id}: worker embedded "
                            f"{created} of {total} fragments"
                        )
            except Exception as e:
                failed += 1
                logger.warning(
                    f"Embedding failed for fragment {fragment.id} "
                    f"(chunk {fragment.sequence_index}): {e}"
                )
            finally:
                queue.task_done()

    async def _embed_one(self, fragment: Fragment) -> bool:
        """Embed, store and mark one fragment; False if it was already embedded."""
        fragment_id = str(fragment.id)
        vector = await self.embedder.embed_strict(fragment.text)
        created = await self.store.insert_embedding(fragment_id, vector, self.embedder.model)
        await self.store.mark_embedded(fragment_id)
        return created
