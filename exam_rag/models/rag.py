"""Pydantic models for the query pipeline.

Defines the request body of ``POST /api/rag/query`` and the typed results
passed between the classifier, retrieval engine and answer generator, so
untyped database and model output is narrowed at each boundary.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from exam_rag.utils.normalizers import normalize_file_type


Intent = Literal["smalltalk", "paper_lookup", "exam_question"]


class ClassificationMetadata(BaseModel):
    """Metadata detected in a lookup-style question."""
    subject: Optional[str] = None
    year: Optional[int] = None
    paper_number: Optional[str] = Field(default=None, description="P1 / P2 / P3")
    file_type: Optional[str] = Field(default=None, description="QP / MS / ER / GT")


class ClassificationResult(BaseModel):
    """Result of rule-based intent classification of a question."""
    intent: Intent
    metadata: Optional[ClassificationMetadata] = None


class QueryFilters(BaseModel):
    """Optional restrictions applied to the vector search."""
    subject: Optional[str] = Field(default=None, description="Subject code, e.g. '1011'")
    year: Optional[int] = None
    file_type: Optional[str] = None
    level: Optional[str] = Field(default=None, description="'O' or 'A'")

    @field_validator("file_type")
    @classmethod
    def normalize_file_type_filter(cls, v: Optional[str]) -> Optional[str]:
        return normalize_file_type(v)


class RagQueryRequest(BaseModel):
    """Request body for POST /api/rag/query."""
    question: str = Field(..., description="Natural-language study question")
    limit: int = Field(default=5, ge=1, le=50, description="Maximum citations returned")
    filters: Optional[QueryFilters] = None


class RetrievedFragment(BaseModel):
    id: str
    content: str
    chunk_index: int
    similarity: float


class RetrievedGroup(BaseModel):
    """Fragments of one source document, with denormalized paper context."""
    paper_file_id: str
    file_type: str = "Unknown"
    storage_path: str = ""
    subject: str = "Unknown"
    level: Optional[str] = None
    year: int = 0
    session: str = "Unknown"
    paper: str = "P"
    fragments: List[RetrievedFragment] = Field(default_factory=list)


class RetrievalResult(BaseModel):
    """Outcome of retrieval for one question."""
    success: bool
    groups: List[RetrievedGroup] = Field(default_factory=list)
    raw_similarity_scores: List[float] = Field(default_factory=list)
    error: Optional[str] = None
    used_fallback_embedding: bool = False

    @classmethod
    def failure(
        cls,
        error: str,
        raw_similarity_scores: Optional[List[float]] = None,
        used_fallback_embedding: bool = False,
    ) -> "RetrievalResult":
        return cls(
            success=False,
            error=error,
            raw_similarity_scores=raw_similarity_scores or [],
            used_fallback_embedding=used_fallback_embedding,
        )


class Citation(BaseModel):
    """Display-ready projection of one scored fragment."""
    subject: str
    subject_name: str
    year: int
    session: str
    paper: str
    file_type: str
    storage_path: str
    chunk_index: int
    similarity: float


class MarkingPoint(BaseModel):
    point: str
    marks: int = Field(default=1, ge=1)


class ExamAnswer(BaseModel):
    """Exam-style answer synthesized from retrieved fragments."""
    answer: str
    marking_points: List[MarkingPoint] = Field(default_factory=list)
    common_mistakes: List[str] = Field(default_factory=list)
    citations: List[Citation] = Field(default_factory=list)
    confidence_score: float = Field(ge=0.0, le=1.0)
    coverage_percentage: float = Field(ge=0.0, le=100.0)


class RagQueryResponse(BaseModel):
    """Response of POST /api/rag/query; optional fields depend on ``type``."""
    type: Intent
    answer: str
    citations: List[Citation] = Field(default_factory=list)
    marking_points: Optional[List[MarkingPoint]] = None
    common_mistakes: Optional[List[str]] = None
    confidence_score: Optional[float] = None
    coverage_percentage: Optional[float] = None
    low_confidence: Optional[bool] = None
    results: Optional[List[Dict[str, Any]]] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict without the fields this response type does not carry."""
        return self.model_dump(exclude_none=True)
