"""Tests for the question-answering endpoint."""

import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from exam_rag.main import app
from exam_rag.middleware.rate_limit import limiter
from exam_rag.routers.rag import build_query_pipeline, close_query_pipeline, get_query_pipeline


@pytest.fixture
def pipeline():
    pipeline = MagicMock()
    pipeline.answer = AsyncMock(return_value={
        "type": "smalltalk",
        "answer": "Hello! I can help you find past papers or answer questions about your subjects.",
        "citations": [],
    })
    return pipeline


@pytest.fixture
def client(env, pipeline):
    limiter.reset()
    app.dependency_overrides[get_query_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()
    limiter.reset()


def test_query_returns_pipeline_payload(client, pipeline):
    response = client.post("/api/rag/query", json={"question": "hello"})

    assert response.status_code == 200
    assert response.json()["type"] == "smalltalk"
    assert response.json()["citations"] == []
    assert response.headers["X-Intent"] == "smalltalk"
    request = pipeline.answer.await_args.args[0]
    assert request.question == "hello"
    assert request.limit == 5


def test_request_id_header_echoed(client):
    response = client.post(
        "/api/rag/query",
        json={"question": "hello"},
        headers={"X-Request-ID": "req-123"},
    )

    assert response.headers["X-Request-ID"] == "req-123"


def test_filters_and_limit_passed_through(client, pipeline):
    client.post(
        "/api/rag/query",
        json={"question": "what is osmosis", "limit": 3, "filters": {"subject": "1002", "year": 2021, "file_type": "ms"}},
    )

    request = pipeline.answer.await_args.args[0]
    assert request.limit == 3
    assert request.filters.subject == "1002"
    assert request.filters.year == 2021
    assert request.filters.file_type == "MS"


@pytest.mark.parametrize("question", ["", "   "])
def test_blank_question_rejected(client, pipeline, question):
    response = client.post("/api/rag/query", json={"question": question})

    assert response.status_code == 400
    assert response.json() == {"detail": "Question is required"}
    pipeline.answer.assert_not_awaited()


def test_missing_question_is_validation_error(client):
    assert client.post("/api/rag/query", json={}).status_code == 422


@pytest.mark.parametrize("limit", [0, 51])
def test_limit_out_of_range(client, limit):
    response = client.post("/api/rag/query", json={"question": "osmosis", "limit": limit})

    assert response.status_code == 422


def test_unexpected_error_returns_500(client, pipeline):
    pipeline.answer.side_effect = Exception("boom")

    response = client.post("/api/rag/query", json={"question": "what is osmosis"})

    assert response.status_code == 500
    assert response.json() == {"detail": "Failed to process query"}


def test_rate_limit_exceeded(client):
    for _ in range(30):
        assert client.post("/api/rag/query", json={"question": "hi"}).status_code == 200

    response = client.post("/api/rag/query", json={"question": "hi"})

    assert response.status_code == 429
    assert response.json()["detail"] == "Rate limit exceeded"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" in response.headers


@pytest.fixture
def shared_pipeline(env, monkeypatch):
    monkeypatch.setattr("exam_rag.routers.rag.get_supabase_client", MagicMock())
    monkeypatch.setattr("exam_rag.routers.rag.get_gemini_client", MagicMock())
    build_query_pipeline.cache_clear()
    yield
    build_query_pipeline.cache_clear()


@pytest.mark.asyncio
async def test_pipeline_is_built_once_per_process(shared_pipeline):
    first = await get_query_pipeline()
    second = await get_query_pipeline()

    assert first is second
    assert first.retrieval.embedder is second.retrieval.embedder


@pytest.mark.asyncio
async def test_close_query_pipeline_closes_embedder(shared_pipeline):
    pipeline = await get_query_pipeline()
    http = pipeline.retrieval.embedder._http

    await close_query_pipeline()

    assert http.is_closed is True
    assert build_query_pipeline.cache_info().currsize == 0
    # A second close is a no-op
    await close_query_pipeline()


def test_shutdown_closes_shared_pipeline(shared_pipeline):
    with TestClient(app):
        http = build_query_pipeline().retrieval.embedder._http

    assert http.is_closed is True


def test_request_log_line_carries_request_id_and_intent(client, caplog):
    with caplog.at_level(logging.INFO, logger="exam_rag.middleware.logging"):
        response = client.post(
            "/api/rag/query",
            json={"question": "hello"},
            headers={"X-Request-ID": "req-456"},
        )

    lines = [json.loads(r.getMessage()) for r in caplog.records if r.name == "exam_rag.middleware.logging"]
    assert lines[-1]["request_id"] == response.headers["X-Request-ID"] == "req-456"
    assert lines[-1]["intent"] == "smalltalk"
    assert lines[-1]["path"] == "/api/rag/query"
