"""Tests for Supabase client initialization."""

from unittest.mock import MagicMock, patch

import pytest

from exam_rag.db.supabase_client import get_supabase_client


@pytest.fixture(autouse=True)
def setup_env(env):
    yield


class TestGetSupabaseClient:

    @patch("exam_rag.db.supabase_client.create_client")
    def test_successful_client_creation(self, mock_create_client):
        mock_client = MagicMock()
        mock_create_client.return_value = mock_client

        client = get_supabase_client()

        assert client is mock_client
        mock_create_client.assert_called_once_with(
            "https://test-project.supabase.co",
            "test-supabase-key"
        )

    @patch("exam_rag.db.supabase_client.create_client")
    def test_client_is_a_singleton(self, mock_create_client):
        mock_create_client.return_value = MagicMock()

        first = get_supabase_client()
        second = get_supabase_client()

        assert first is second
        mock_create_client.assert_called_once()

    @patch("exam_rag.db.supabase_client.create_client")
    def test_service_role_key_preferred(self, mock_create_client, monkeypatch):
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-role-key")
        mock_create_client.return_value = MagicMock()

        get_supabase_client()

        mock_create_client.assert_called_once_with(
            "https://test-project.supabase.co",
            "service-role-key"
        )

    @patch("exam_rag.db.supabase_client.create_client")
    def test_creation_failure_wrapped(self, mock_create_client):
        mock_create_client.side_effect = Exception("bad key")

        with pytest.raises(ValueError) as exc_info:
            get_supabase_client()

        assert "Failed to create Supabase client" in str(exc_info.value)
        assert "bad key" in str(exc_info.value)
