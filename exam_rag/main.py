"""FastAPI application for the exam-paper RAG service."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Union

import httpx
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded  # type: ignore[import-not-found]

from exam_rag.config import get_settings
from exam_rag.db.fragments import CHUNKS_TABLE
from exam_rag.db.supabase_client import get_supabase_client
from exam_rag.middleware.logging import RequestLoggingMiddleware
from exam_rag.middleware.rate_limit import get_limiter, rate_limit_exceeded_handler
from exam_rag.middleware.request_id import RequestIDMiddleware
from exam_rag.routers import rag
from exam_rag.services.gemini_client import get_gemini_client

VERSION = "1.0.0"
COMMIT_HASH = "development"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Validate configuration at startup; a bad environment fails the process."""
    try:
        settings = get_settings()
        logger.info(f"Starting Exam RAG API v{VERSION}")
        logger.info(f"Model: {settings.model_name}, embeddings: {settings.embedding_model}")
        logger.info("Environment validation: OK")
    except Exception as e:
        logger.error(f"Startup validation failed: {e}")
        raise

    yield

    logger.info("Shutting down Exam RAG API")
    await rag.close_query_pipeline()


app = FastAPI(
    title="Exam RAG API",
    description="Retrieval-augmented answers and past-paper lookup over ingested exam papers",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.limiter = get_limiter()
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# RequestIDMiddleware wraps the logger so the logged id matches the response header.
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _check_embedding_service() -> str:
    settings = get_settings()
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(settings.embedding_service_url)
        if response.status_code < 500:
            return "healthy"
        return f"degraded: status {response.status_code} (keyword fallback active)"
    except httpx.HTTPError as e:
        return f"degraded: {str(e) or type(e).__name__} (keyword fallback active)"


@app.get("/health", response_model=None)
async def health_check() -> Union[Dict[str, Any], Response]:
    """
    Service health.

    Supabase and Gemini decide the overall status. The embedding service is
    reported but informational only, since queries fall back to keyword
    embeddings without it.

    Status Codes:
        200: Required services healthy
        503: Supabase or Gemini unavailable
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    services: Dict[str, str] = {}
    overall_healthy = True

    try:
        get_gemini_client()
        services["gemini_api"] = "healthy"
    except Exception as e:
        services["gemini_api"] = f"unhealthy: {str(e)}"
        overall_healthy = False

    try:
        supabase_client = get_supabase_client()
        await asyncio.to_thread(
            lambda: supabase_client.table(CHUNKS_TABLE).select("id").limit(1).execute()
        )
        services["supabase"] = "healthy"
    except Exception as e:
        services["supabase"] = f"unhealthy: {str(e)}"
        overall_healthy = False

    services["embedding_service"] = await _check_embedding_service()

    response_data: Dict[str, Any] = {
        "status": "healthy" if overall_healthy else "unhealthy",
        "timestamp": timestamp,
        "services": services,
    }

    if not overall_healthy:
        return Response(
            content=json.dumps(response_data),
            status_code=503,
            media_type="application/json",
        )

    return response_data


@app.get("/version")
async def version_info() -> Dict[str, str]:
    return {
        "version": VERSION,
        "commit_hash": COMMIT_HASH,
    }


app.include_router(rag.router)
