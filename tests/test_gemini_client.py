"""Tests for Gemini client initialization."""

from unittest.mock import MagicMock, patch

import pytest

from exam_rag.services.gemini_client import get_gemini_client


@pytest.fixture(autouse=True)
def setup_env(env):
    yield


@patch("exam_rag.services.gemini_client.genai.Client")
def test_client_created_with_api_key(mock_client_cls):
    mock_client_cls.return_value = MagicMock()

    client = get_gemini_client()

    assert client is mock_client_cls.return_value
    mock_client_cls.assert_called_once_with(api_key="test-gemini-key")
