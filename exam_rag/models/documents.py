"""Pydantic models for ingested exam-paper documents.

A paper (subject, year, session, paper number) groups one or more
SourceDocuments (question paper, marking scheme, examiner report, grade
threshold). Each SourceDocument is split into Fragments; each Fragment gets
at most one Embedding per embedding model.
"""

import hashlib
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


FragmentStatus = Literal["pending", "embedded"]


def compute_content_hash(source_document_id: str, sequence_index: int, text: str) -> str:
    """SHA-256 hex digest of ``"{document_id}:{index}:{text}"``, the fragment dedup key."""
    payload = f"{source_document_id}:{sequence_index}:{text}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class SourceDocument(BaseModel):
    """A single PDF attached to a paper (``paper_files`` row)."""
    id: str
    paper_id: Optional[str] = None
    file_type: str = Field(description="QP / MS / ER / GT")
    storage_path: str
    page_position: Optional[int] = Field(
        default=None, description="Index in the id-ordered paper_files listing, when paged"
    )


class Fragment(BaseModel):
    """A bounded slice of a document's normalized text (``rag_chunks`` row)."""
    id: Optional[str] = None
    source_document_id: str
    sequence_index: int = Field(ge=0)
    text: str
    content_hash: str
    status: FragmentStatus = "pending"

    @classmethod
    def build(cls, source_document_id: str, sequence_index: int, text: str) -> "Fragment":
        return cls(
            source_document_id=source_document_id,
            sequence_index=sequence_index,
            text=text,
            content_hash=compute_content_hash(source_document_id, sequence_index, text),
        )


class Embedding(BaseModel):
    """Vector for one fragment under one embedding model (``rag_embeddings`` row)."""
    fragment_id: str
    vector: List[float]
    model_name: str

    model_config = {"protected_namespaces": ()}

    def to_record(self) -> dict:
        return {"chunk_id": self.fragment_id, "embedding": self.vector, "model": self.model_name}


class IngestionStats(BaseModel):
    """Counts reported for one document's ingestion run."""
    source_document_id: str
    extracted_chars: int = 0
    fragments_total: int = 0
    fragments_created: int = 0
    embeddings_needed: int = 0
    embeddings_created: int = 0
    embeddings_failed: int = 0
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class PaperFileFilters(BaseModel):
    """Optional restrictions on which paper files an ingestion batch picks up."""
    level: Optional[str] = None
    file_type: Optional[str] = None
    subject_code: Optional[str] = None
    year: Optional[int] = None

    @property
    def needs_join(self) -> bool:
        """Level, subject and year live on papers/subjects, not on paper_files."""
        return bool(self.level or self.subject_code or self.year)
