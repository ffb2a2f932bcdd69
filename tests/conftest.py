"""Shared fixtures."""

import pytest

from exam_rag.config import get_settings
from exam_rag.db.supabase_client import reset_supabase_client


@pytest.fixture
def env(monkeypatch):
    """Minimal valid environment; settings and client caches are cleared around the test."""
    get_settings.cache_clear()
    reset_supabase_client()
    monkeypatch.setenv("GEMINI_API_KEY", "test-gemini-key")
    monkeypatch.setenv("SUPABASE_URL", "https://test-project.supabase.co")
    monkeypatch.setenv("SUPABASE_KEY", "test-supabase-key")
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("TRUSTED_PROXIES", raising=False)
    yield
    get_settings.cache_clear()
    reset_supabase_client()
