"""Gemini API client initialization.

This module provides the Gemini client used by the answer generator.
Uses the modern google-genai SDK (not google.generativeai).
"""

from google import genai
from exam_rag.config import get_settings


def get_gemini_client() -> genai.Client:
    """Initialize and return a Gemini API client.

    The client reads the GEMINI_API_KEY from the application settings.
    Settings validation ensures the API key is present at startup.

    Returns:
        genai.Client: Initialized Gemini client ready for API calls.

    Raises:
        ValueError: If GEMINI_API_KEY is not set in environment.

    Example:
        >>> client = get_gemini_client()
        >>> response = client.models.generate_content(
        ...     model="gemini-3-flash-preview",
        ...     contents=["What is osmosis?"]
        ... )
    """
    settings = get_settings()

    if not settings.gemini_api_key:
        raise ValueError(
            "GEMINI_API_KEY not set in environment. "
            "Please set this variable in your .env file or environment."
        )

    return genai.Client(api_key=settings.gemini_api_key)
