"""
Exam-style answer generation from retrieved fragments.

The retrieved fragments are concatenated into a bounded context, Gemini is
asked for a JSON object ``{answer, marking_points, common_mistakes}``, and
the reply is repaired into an :class:`ExamAnswer`. Confidence and coverage
are computed from the retrieval scores, never from the model.
"""

import asyncio
import json
import logging
from typing import Any, List, Optional

from google import genai
from google.genai import types

from exam_rag.models.rag import (
    Citation,
    ExamAnswer,
    MarkingPoint,
    RetrievalResult,
    RetrievedGroup,
)
from exam_rag.utils.normalizers import get_subject_name

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 16
DEFAULT_MAX_CITATIONS = 5
DEFAULT_CONTEXT_CHAR_LIMIT = 2000
DEFAULT_MAX_OUTPUT_TOKENS = 700
DEFAULT_TEMPERATURE = 0.7

# Confidence when no raw scores are available.
DEFAULT_SIMILARITY = 0.3
MIN_CONFIDENCE = 0.1
# Boost applied when at least this many documents contributed.
BOOST_MIN_GROUPS = 3
CONFIDENCE_BOOST = 1.2

FALLBACK_ANSWER_CHARS = 500
FALLBACK_ANSWER = "Unable to generate answer from the retrieved documents."
FALLBACK_MARKING_POINT = "Review the answer against the source material"
FALLBACK_COMMON_MISTAKE = "Unclear from the available resources"
DEFAULT_MARKING_POINT = "Key concept from sources"

SYSTEM_INSTRUCTION_TEMPLATE = """You are an expert exam tutor. Provide exam-style answers with:
1. Clear main answer (2-3 sentences max)
2. Marking points (3-5 bullet points with marks allocated based on importance and confidence)
3. Common mistakes students make (2-3 mistakes)

Mark allocation based on how closely the sources match the question:
- High match (70% or more): Award 2-3 marks per important point
- Medium match (50% or more): Award 1-2 marks per point
- Low match (below 50%): Award 1 mark per point

Current match level suggests: {mark_guidance}

Respond with a single JSON object exactly in this shape:
{{
  "answer": "Your main answer here",
  "marking_points": [
    {{"point": "First key concept", "marks": 2}},
    {{"point": "Second key concept", "marks": 1}}
  ],
  "common_mistakes": ["Mistake 1", "Mistake 2"]
}}"""


# ---------------------------------------------------------------------------
# Scoring helpers (shared with the context-only fallback)
# ---------------------------------------------------------------------------

def mean_similarity(scores: List[float], default: float = 0.0) -> float:
    return sum(scores) / len(scores) if scores else default


def mark_guidance(avg_similarity: float) -> str:
    """Marks-per-point band suggested to the model for a mean similarity."""
    if avg_similarity >= 0.7:
        return "2-3 marks each"
    if avg_similarity >= 0.5:
        return "1-2 marks each"
    return "1 mark each"


def compute_confidence(scores: List[float], group_count: int) -> float:
    confidence = min(1.0, max(MIN_CONFIDENCE, mean_similarity(scores, DEFAULT_SIMILARITY)))
    if group_count >= BOOST_MIN_GROUPS:
        confidence = min(1.0, confidence * CONFIDENCE_BOOST)
    return confidence


def compute_coverage(group_count: int, top_k: int = DEFAULT_TOP_K) -> float:
    """Share of the requested neighbours that landed in distinct documents, in percent."""
    return min(100.0, group_count / top_k * 100)


def build_context(groups: List[RetrievedGroup]) -> str:
    """Fragment texts in group order then fragment order, separated by blank lines."""
    return "\n\n".join(f.content for g in groups for f in g.fragments)


def build_citations(
    groups: List[RetrievedGroup],
    max_citations: int = DEFAULT_MAX_CITATIONS,
) -> List[Citation]:
    """One citation per retained fragment, best first, capped at ``max_citations``."""
    citations = [
        Citation(
            subject=group.subject,
            subject_name=get_subject_name(group.subject),
            year=group.year,
            session=group.session,
            paper=group.paper,
            file_type=group.file_type,
            storage_path=group.storage_path,
            chunk_index=fragment.chunk_index,
            similarity=fragment.similarity,
        )
        for group in groups
        for fragment in group.fragments
    ]
    citations.sort(key=lambda c: c.similarity, reverse=True)
    return citations[:max_citations]


# ---------------------------------------------------------------------------
# Model output repair
# ---------------------------------------------------------------------------

def extract_json_object(text: str) -> Optional[dict]:
    """First top-level JSON object embedded in ``text``, or None."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def _coerce_marks(value: Any) -> int:
    if isinstance(value, bool):
        return 1
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return 1


def normalize_marking_points(raw: Any) -> List[MarkingPoint]:
    """Accept plain strings or ``{point, marks}`` objects; never return an empty list."""
    points: List[MarkingPoint] = []
    if isinstance(raw, list):
        for item in raw:
            if isinstance(item, str):
                if item.strip():
                    points.append(MarkingPoint(point=item.strip(), marks=1))
            elif isinstance(item, dict) and item.get("point"):
                points.append(
                    MarkingPoint(point=str(item["point"]), marks=_coerce_marks(item.get("marks")))
                )
            elif item:
                points.append(MarkingPoint(point=str(item), marks=1))
    if not points:
        points = [MarkingPoint(point=DEFAULT_MARKING_POINT, marks=1)]
    return points


def parse_answer_payload(raw_text: str) -> dict:
    """Parsed model reply, or the stock fallback when it is not usable JSON."""
    parsed = extract_json_object(raw_text)
    if not parsed or not parsed.get("answer"):
        logger.warning("Model reply was not a usable JSON answer, using raw text")
        return {
            "answer": raw_text[:FALLBACK_ANSWER_CHARS] or FALLBACK_ANSWER,
            "marking_points": [{"point": FALLBACK_MARKING_POINT, "marks": 1}],
            "common_mistakes": [FALLBACK_COMMON_MISTAKE],
        }
    return parsed


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class AnswerGenerator:
    """Synthesizes an exam-style answer with Gemini.

    Args:
        llm_client: google-genai client
        model: Gemini model name
        top_k: Neighbour count used by retrieval (coverage denominator)
        max_citations: Citations kept on the answer
        context_char_limit: Characters of context sent to the model
        max_output_tokens: Output token bound for the model call
        temperature: Sampling temperature
    """

    def __init__(
        self,
        llm_client: genai.Client,
        model: str,
        top_k: int = DEFAULT_TOP_K,
        max_citations: int = DEFAULT_MAX_CITATIONS,
        context_char_limit: int = DEFAULT_CONTEXT_CHAR_LIMIT,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self.llm_client = llm_client
        self.model = model
        self.top_k = top_k
        self.max_citations = max_citations
        self.context_char_limit = context_char_limit
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature

    async def _complete(self, question: str, context: str, guidance: str) -> str:
        config = types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTION_TEMPLATE.format(mark_guidance=guidance),
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )
        contents = f"Question: {question}\n\nExam paper context:\n{context[:self.context_char_limit]}"
        response = await asyncio.to_thread(
            lambda: self.llm_client.models.generate_content(
                model=self.model,
                contents=contents,
                config=config,
            )
        )
        return response.text or ""

    async def generate(self, question: str, retrieval: RetrievalResult) -> Optional[ExamAnswer]:
        """Answer ``question`` from a retrieval result.

        Returns:
            ExamAnswer, or None when there is nothing to answer from or the
            model call fails (the caller then answers from context alone)
        """
        if not retrieval.success or not retrieval.groups:
            return None

        context = build_context(retrieval.groups)
        if not context.strip():
            return None

        scores = retrieval.raw_similarity_scores
        guidance = mark_guidance(mean_similarity(scores))

        try:
            raw_text = await self._complete(question, context, guidance)
        except Exception as e:
            logger.warning(f"Answer generation failed: {e}")
            return None

        if not raw_text.strip():
            logger.warning("Model returned empty content")
            return None

        payload = parse_answer_payload(raw_text)
        mistakes = payload.get("common_mistakes")
        group_count = len(retrieval.groups)

        return ExamAnswer(
            answer=str(payload.get("answer") or FALLBACK_ANSWER),
            marking_points=normalize_marking_points(payload.get("marking_points")),
            common_mistakes=[str(m) for m in mistakes] if isinstance(mistakes, list) else [],
            citations=build_citations(retrieval.groups, self.max_citations),
            confidence_score=compute_confidence(scores, group_count),
            coverage_percentage=compute_coverage(group_count, self.top_k),
        )
