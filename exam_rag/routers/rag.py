"""
Question-answering API endpoint.

``POST /api/rag/query`` classifies the question and returns a smalltalk
reply, a paper lookup, or an exam-style answer with citations.
"""

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from exam_rag.config import get_settings
from exam_rag.db.supabase_client import get_supabase_client
from exam_rag.middleware.rate_limit import RATE_LIMITS, get_limiter
from exam_rag.models.rag import RagQueryRequest
from exam_rag.services.answer_generator import AnswerGenerator
from exam_rag.services.embedding_client import EmbeddingClient
from exam_rag.services.gemini_client import get_gemini_client
from exam_rag.services.query_pipeline import QueryPipeline
from exam_rag.services.retrieval import RetrievalEngine

router = APIRouter(prefix="/api/rag", tags=["rag"])
limiter = get_limiter()
logger = logging.getLogger(__name__)


@lru_cache
def build_query_pipeline() -> QueryPipeline:
    """Process-wide pipeline; its embedding HTTP client lives until shutdown."""
    settings = get_settings()
    client = get_supabase_client()
    embedder = EmbeddingClient(
        base_url=settings.embedding_service_url,
        model=settings.embedding_model,
        dimension=settings.embedding_dimension,
        timeout=settings.embedding_timeout_seconds,
    )
    retrieval = RetrievalEngine(
        client,
        embedder,
        top_k=settings.top_k,
        similarity_threshold=settings.similarity_threshold,
        max_fragments_per_group=settings.max_chunks_per_group,
    )
    generator = AnswerGenerator(
        get_gemini_client(),
        settings.model_name,
        top_k=settings.top_k,
        max_citations=settings.max_citations,
        max_output_tokens=settings.llm_max_output_tokens,
        temperature=settings.llm_temperature,
    )
    return QueryPipeline(
        client,
        retrieval,
        generator,
        top_k=settings.top_k,
        max_citations=settings.max_citations,
    )


async def close_query_pipeline() -> None:
    """Close the shared embedding client, if the pipeline was ever built."""
    if not build_query_pipeline.cache_info().currsize:
        return
    pipeline = build_query_pipeline()
    build_query_pipeline.cache_clear()
    await pipeline.retrieval.embedder.aclose()


async def get_query_pipeline() -> QueryPipeline:
    return build_query_pipeline()


@router.post("/query")
@limiter.limit(RATE_LIMITS["query"])  # type: ignore[untyped-decorator]
async def query(
    request: Request,
    body: RagQueryRequest,
    pipeline: QueryPipeline = Depends(get_query_pipeline),
) -> JSONResponse:
    """
    Answer a study question.

    Returns:
        200: ``{type, answer, citations, ...}``; the ``type`` is also sent
            in the X-Intent header
        400: Empty or whitespace-only question
        429: Rate limit exceeded
        500: Unexpected processing error
    """
    if not body.question or not body.question.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Question is required",
        )

    try:
        payload = await pipeline.answer(body)
    except Exception as e:
        logger.error(f"Query failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process query",
        )

    return JSONResponse(content=payload, headers={"X-Intent": payload["type"]})
