"""
PDF text extraction using OpenDataLoader.

Converts a PDF to Markdown locally and returns the text for chunking. Scanned
PDFs come back with little or no text; callers decide what is too little.
"""

import asyncio
import os
import tempfile

from opendataloader_pdf import convert


def extract_pdf_text(file_path: str) -> str:
    """
    Extract the text of a PDF file as Markdown.

    Args:
        file_path: Path to the PDF file to process

    Returns:
        Extracted text (possibly empty)

    Raises:
        FileNotFoundError: If the PDF file does not exist
        ValueError: If the file cannot be processed
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"PDF file not found: {file_path}")

    with tempfile.TemporaryDirectory() as temp_dir:
        try:
            convert(
                input_path=file_path,
                output_dir=temp_dir,
                format="markdown",
                quiet=True
            )
        except Exception as e:
            raise ValueError(
                f"Failed to extract text from {file_path}: {str(e)}"
            ) from e

        base_name = os.path.splitext(os.path.basename(file_path))[0]
        markdown_path = os.path.join(temp_dir, f"{base_name}.md")
        if not os.path.exists(markdown_path):
            return ""
        with open(markdown_path, "r", encoding="utf-8") as f:
            return f.read()


def _extract_from_bytes(content: bytes) -> str:
    with tempfile.TemporaryDirectory() as temp_dir:
        pdf_path = os.path.join(temp_dir, "document.pdf")
        with open(pdf_path, "wb") as f:
            f.write(content)
        return extract_pdf_text(pdf_path)


async def extract_pdf_text_from_bytes(content: bytes) -> str:
    """Write ``content`` to a temporary file and extract its text off the event loop."""
    return await asyncio.to_thread(_extract_from_bytes, content)
