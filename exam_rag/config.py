"""Configuration management for the exam-paper RAG service.

This module uses Pydantic Settings to load configuration from environment
variables. All settings are validated at startup so that a missing
connection or service setting fails the process before any request or
ingestion run is served.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All sensitive values (API keys, database credentials) must be
    provided via environment variables or .env file.
    """

    # Gemini API Configuration
    gemini_api_key: str = Field(
        ...,
        description="Google Gemini API key used for exam-style answer generation"
    )

    # Supabase Configuration
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anonymous/service role key"
    )
    supabase_service_role_key: Optional[str] = Field(
        default=None,
        description="Service role key (bypasses RLS); preferred over supabase_key when set"
    )
    storage_bucket: str = Field(
        default="content",
        description="Supabase Storage bucket holding the paper PDFs"
    )

    # AI Model Configuration
    model_name: str = Field(
        default="gemini-3-flash-preview",
        description="Gemini model used for answer generation"
    )
    llm_max_output_tokens: int = Field(default=700, ge=1)
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    # Embedding service (Ollama-compatible /api/embeddings)
    embedding_service_url: str = Field(
        default="http://localhost:11434",
        description="Base URL of the embedding service"
    )
    embedding_model: str = Field(default="bge-m3")
    embedding_dimension: int = Field(
        default=1024,
        ge=1,
        description="Dimension of stored vectors; also used for the fallback embedding"
    )
    embedding_timeout_seconds: float = Field(default=30.0, gt=0)

    # Ingestion batch controls
    chunk_size: int = Field(default=2500, ge=1)
    chunk_overlap: int = Field(default=250, ge=0)
    max_chunks_per_file: int = Field(default=120, ge=1)
    embed_concurrency: int = Field(default=2, ge=1)
    batch_files: int = Field(default=5, ge=1)
    files_offset: int = Field(default=0, ge=0)
    max_files: int = Field(default=999999, ge=1)
    min_text_chars: int = Field(
        default=200,
        ge=0,
        description="Documents with less extracted text are skipped (scanned PDFs)"
    )

    # Retrieval and answer thresholds
    similarity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    top_k: int = Field(default=16, ge=1)
    max_chunks_per_group: int = Field(default=2, ge=1)
    max_citations: int = Field(default=5, ge=1)

    # Rate limiting
    trusted_proxies: str = Field(
        default="",
        description="Comma-separated proxy IPs whose X-Forwarded-For header is trusted"
    )

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    @field_validator("gemini_api_key")
    @classmethod
    def validate_gemini_api_key(cls, v: str) -> str:
        """Validate that GEMINI_API_KEY is present and non-empty."""
        if not v or not v.strip():
            raise ValueError(
                "GEMINI_API_KEY must be set in environment variables. "
                "Get your API key from https://ai.google.dev/"
            )
        return v.strip()

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate that Supabase URL is present and properly formatted."""
        if not v or not v.strip():
            raise ValueError("SUPABASE_URL must be set in environment variables")

        url = v.strip()
        if not url.startswith("https://"):
            raise ValueError(
                "SUPABASE_URL must start with https:// "
                f"(got: {url[:20]}...)"
            )

        return url

    @field_validator("supabase_key")
    @classmethod
    def validate_supabase_key(cls, v: str) -> str:
        """Validate that Supabase key is present and non-empty."""
        if not v or not v.strip():
            raise ValueError("SUPABASE_KEY must be set in environment variables")
        return v.strip()

    @field_validator("supabase_service_role_key")
    @classmethod
    def normalize_service_role_key(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("embedding_service_url")
    @classmethod
    def validate_embedding_service_url(cls, v: str) -> str:
        """Strip whitespace and trailing slashes so paths can be appended."""
        url = (v or "").strip().rstrip("/")
        if not url.startswith(("http://", "https://")):
            raise ValueError(
                "EMBEDDING_SERVICE_URL must start with http:// or https:// "
                f"(got: {url[:20]}...)"
            )
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance.

    This function uses lru_cache to ensure settings are loaded only once
    and reused across the application lifetime.

    Returns:
        Settings: Validated application settings

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    return Settings()
