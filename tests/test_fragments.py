"""Tests for fragment and embedding persistence."""

from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from exam_rag.db.fragments import (
    CHUNKS_TABLE,
    EMBEDDINGS_TABLE,
    FragmentNotFoundError,
    FragmentStore,
    FragmentStoreError,
)
from exam_rag.models.documents import Fragment, compute_content_hash


@pytest.fixture
def mock_client():
    return MagicMock()


class TestContentHash:

    def test_matches_document_index_text_digest(self):
        import hashlib

        expected = hashlib.sha256("doc-1:3:some text".encode("utf-8")).hexdigest()
        assert compute_content_hash("doc-1", 3, "some text") == expected

    def test_fragment_build_sets_hash(self):
        fragment = Fragment.build("doc-1", 0, "text")

        assert fragment.content_hash == compute_content_hash("doc-1", 0, "text")
        assert fragment.status == "pending"
        assert fragment.id is None


class TestUpsertFragments:

    @pytest.mark.asyncio
    async def test_upsert_ignores_duplicates(self, mock_client):
        upsert = mock_client.table.return_value.upsert
        upsert.return_value.execute.return_value.data = [{"id": "c1"}]
        fragments = [Fragment.build("doc-1", 0, "alpha"), Fragment.build("doc-1", 1, "beta")]

        created = await FragmentStore(mock_client).upsert_fragments(fragments)

        assert created == 1
        mock_client.table.assert_called_with(CHUNKS_TABLE)
        records = upsert.call_args.args[0]
        assert [r["chunk_index"] for r in records] == [0, 1]
        assert records[0]["content_hash"] == fragments[0].content_hash
        assert upsert.call_args.kwargs == {"on_conflict": "content_hash", "ignore_duplicates": True}

    @pytest.mark.asyncio
    async def test_upsert_empty_list_skips_database(self, mock_client):
        assert await FragmentStore(mock_client).upsert_fragments([]) == 0
        mock_client.table.assert_not_called()

    @pytest.mark.asyncio
    async def test_upsert_failure_raises(self, mock_client):
        mock_client.table.return_value.upsert.return_value.execute.side_effect = Exception("down")

        with pytest.raises(FragmentStoreError):
            await FragmentStore(mock_client).upsert_fragments([Fragment.build("d", 0, "t")])


class TestListFragments:

    @pytest.mark.asyncio
    async def test_rows_converted(self, mock_client):
        chain = mock_client.table.return_value.select.return_value.eq.return_value.order.return_value
        chain.execute.return_value.data = [
            {
                "id": "c1",
                "paper_file_id": "doc-1",
                "chunk_index": 0,
                "content": "alpha",
                "content_hash": "h1",
                "embedding_status": "embedded",
            },
            {
                "id": "c2",
                "paper_file_id": "doc-1",
                "chunk_index": 1,
                "content": "beta",
                "content_hash": "h2",
                "embedding_status": "pending",
            },
        ]

        fragments = await FragmentStore(mock_client).list_fragments("doc-1")

        assert [f.id for f in fragments] == ["c1", "c2"]
        assert fragments[0].status == "embedded"
        assert fragments[1].status == "pending"
        mock_client.table.return_value.select.return_value.eq.assert_called_once_with("paper_file_id", "doc-1")


class TestFindMissingEmbeddings:

    @pytest.mark.asyncio
    async def test_returns_ids_without_embedding(self, mock_client):
        chain = mock_client.table.return_value.select.return_value.in_.return_value.eq.return_value
        chain.execute.return_value.data = [{"chunk_id": "c1"}]

        missing = await FragmentStore(mock_client).find_missing_embeddings(["c1", "c2"], "bge-m3")

        assert missing == {"c2"}
        mock_client.table.assert_called_with(EMBEDDINGS_TABLE)
        mock_client.table.return_value.select.return_value.in_.return_value.eq.assert_called_with("model", "bge-m3")

    @pytest.mark.asyncio
    async def test_queries_in_batches(self, mock_client):
        chain = mock_client.table.return_value.select.return_value.in_.return_value.eq.return_value
        chain.execute.return_value.data = []
        ids = [f"c{i}" for i in range(250)]

        missing = await FragmentStore(mock_client).find_missing_embeddings(ids, "bge-m3")

        assert missing == set(ids)
        assert mock_client.table.return_value.select.return_value.in_.call_count == 3

    @pytest.mark.asyncio
    async def test_empty_input(self, mock_client):
        assert await FragmentStore(mock_client).find_missing_embeddings([], "bge-m3") == set()


class TestInsertEmbedding:

    @pytest.mark.asyncio
    async def test_insert_returns_true(self, mock_client):
        insert = mock_client.table.return_value.insert
        insert.return_value.execute.return_value.data = [{"chunk_id": "c1"}]

        assert await FragmentStore(mock_client).insert_embedding("c1", [0.1, 0.2], "bge-m3") is True
        insert.assert_called_once_with({"chunk_id": "c1", "embedding": [0.1, 0.2], "model": "bge-m3"})

    @pytest.mark.asyncio
    async def test_duplicate_is_idempotent(self, mock_client):
        mock_client.table.return_value.insert.return_value.execute.side_effect = Exception(
            "duplicate key value violates unique constraint (23505)"
        )

        assert await FragmentStore(mock_client).insert_embedding("c1", [0.1], "bge-m3") is False

    @pytest.mark.asyncio
    async def test_missing_fragment_raises_not_found(self, mock_client):
        mock_client.table.return_value.insert.return_value.execute.side_effect = Exception(
            "insert or update violates foreign key constraint (23503)"
        )

        with pytest.raises(FragmentNotFoundError):
            await FragmentStore(mock_client).insert_embedding("missing", [0.1], "bge-m3")

    @pytest.mark.asyncio
    async def test_other_failures_raise(self, mock_client):
        mock_client.table.return_value.insert.return_value.execute.side_effect = Exception("timeout")

        with pytest.raises(FragmentStoreError) as exc_info:
            await FragmentStore(mock_client).insert_embedding("c1", [0.1], "bge-m3")

        assert not isinstance(exc_info.value, FragmentNotFoundError)

    @pytest.mark.asyncio
    async def test_invalid_vector_is_rejected_before_insert(self, mock_client):
        with pytest.raises(ValidationError):
            await FragmentStore(mock_client).insert_embedding("c1", ["not-a-number"], "bge-m3")

        mock_client.table.return_value.insert.assert_not_called()


class TestMarkAndCounts:

    @pytest.mark.asyncio
    async def test_mark_embedded(self, mock_client):
        await FragmentStore(mock_client).mark_embedded("c1")

        mock_client.table.return_value.update.assert_called_once_with({"embedding_status": "embedded"})
        mock_client.table.return_value.update.return_value.eq.assert_called_once_with("id", "c1")

    @pytest.mark.asyncio
    async def test_counts_use_exact_count(self, mock_client):
        mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value.count = 42

        store = FragmentStore(mock_client)

        assert await store.count_fragments() == 42
        assert await store.count_embeddings() == 42
        mock_client.table.return_value.select.assert_any_call("id", count="exact")

    @pytest.mark.asyncio
    async def test_embedding_model_none_when_empty(self, mock_client):
        mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value.data = []

        assert await FragmentStore(mock_client).embedding_model() is None
