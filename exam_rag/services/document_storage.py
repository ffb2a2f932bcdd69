"""Download source PDFs from Supabase Storage."""

import asyncio

from supabase import Client


async def download_document(client: Client, bucket: str, storage_path: str) -> bytes:
    """Download a stored file's bytes.

    Args:
        client: Supabase client instance
        bucket: Storage bucket name
        storage_path: Object path inside the bucket

    Returns:
        bytes: File content

    Raises:
        RuntimeError: If the download fails or returns no content
    """
    path = storage_path.strip().lstrip("/")
    try:
        content = await asyncio.to_thread(
            lambda: client.storage.from_(bucket).download(path)
        )
    except Exception as e:
        raise RuntimeError(f"Download failed for {bucket}/{path}: {str(e)}") from e
    if not content:
        raise RuntimeError(f"Download returned no content for {bucket}/{path}")
    return content
