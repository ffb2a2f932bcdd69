"""
Question answering: classify, then dispatch to smalltalk, paper lookup or
retrieval + answer generation.

Every branch returns a well-formed response payload; failures along the way
degrade to a low-confidence message or a context-only answer.
"""

import logging
import random
from typing import Any, Dict, Optional

from supabase import Client

from exam_rag.models.rag import (
    ClassificationMetadata,
    RagQueryRequest,
    RagQueryResponse,
    RetrievalResult,
)
from exam_rag.services.answer_generator import (
    AnswerGenerator,
    build_citations,
    build_context,
    compute_coverage,
)
from exam_rag.services.intent_classifier import classify_intent
from exam_rag.services.paper_lookup import resolve_paper_lookup
from exam_rag.services.retrieval import RetrievalEngine

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.4
CONTEXT_PREVIEW_CHARS = 600

NOT_ENOUGH_INFORMATION = (
    "I don't have enough information in my database to answer this question "
    "with confidence. Try asking about specific exam topics or request a "
    "particular past paper."
)

SMALLTALK_REPLIES = [
    "Hi! Ask me about a topic or tell me a subject, year, and paper type to find.",
    "Hey there! What would you like to know? You can ask about exam topics or find specific papers.",
    "Hello! I can help you find past papers or answer questions about your subjects.",
    "Hi! Want to search for papers or have a question about your studies?",
]


def pick_smalltalk_reply(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(SMALLTALK_REPLIES)


class QueryPipeline:
    """Answers one query request end to end.

    Args:
        client: Supabase client instance (paper lookups)
        retrieval: Retrieval engine for exam questions
        generator: Answer generator for exam questions
        rng: Random source for smalltalk replies
        top_k: Neighbour count used by retrieval (coverage denominator)
        max_citations: Citations kept before the request limit applies
    """

    def __init__(
        self,
        client: Client,
        retrieval: RetrievalEngine,
        generator: AnswerGenerator,
        rng: Optional[random.Random] = None,
        top_k: int = 16,
        max_citations: int = 5,
    ):
        self.client = client
        self.retrieval = retrieval
        self.generator = generator
        self.rng = rng or random.Random()
        self.top_k = top_k
        self.max_citations = max_citations

    async def answer(self, request: RagQueryRequest) -> Dict[str, Any]:
        response = await self.respond(request)
        return response.to_payload()

    async def respond(self, request: RagQueryRequest) -> RagQueryResponse:
        question = request.question.strip()
        classification = classify_intent(question)
        logger.info(f"Query intent: {classification.intent}")

        if classification.intent == "smalltalk":
            return RagQueryResponse(type="smalltalk", answer=pick_smalltalk_reply(self.rng))

        if classification.intent == "paper_lookup":
            return await self._paper_lookup(classification.metadata or ClassificationMetadata())

        return await self._exam_question(question, request)

    async def _paper_lookup(self, metadata: ClassificationMetadata) -> RagQueryResponse:
        results = await resolve_paper_lookup(self.client, metadata)
        return RagQueryResponse(
            type="paper_lookup",
            answer=f"Found {len(results)} paper set(s):",
            results=results,
        )

    async def _exam_question(self, question: str, request: RagQueryRequest) -> RagQueryResponse:
        retrieval = await self.retrieval.retrieve(question, request.filters)
        if not retrieval.success or not retrieval.groups:
            logger.info(f"No usable retrieval: {retrieval.error}")
            return RagQueryResponse(
                type="exam_question",
                answer=NOT_ENOUGH_INFORMATION,
                confidence_score=0.0,
                coverage_percentage=0.0,
                low_confidence=True,
            )

        exam_answer = await self.generator.generate(question, retrieval)
        if exam_answer is None:
            return self._context_only(retrieval, request.limit)

        return RagQueryResponse(
            type="exam_question",
            answer=exam_answer.answer,
            marking_points=exam_answer.marking_points,
            common_mistakes=exam_answer.common_mistakes,
            citations=exam_answer.citations[: request.limit],
            confidence_score=exam_answer.confidence_score,
            coverage_percentage=exam_answer.coverage_percentage,
            low_confidence=exam_answer.confidence_score < LOW_CONFIDENCE_THRESHOLD,
        )

    def _context_only(self, retrieval: RetrievalResult, limit: int) -> RagQueryResponse:
        """Answer with the retrieved text itself when the model is unavailable."""
        logger.warning("Answer generation unavailable, returning context-only answer")
        context = build_context(retrieval.groups)
        scores = retrieval.raw_similarity_scores
        confidence = min(1.0, scores[0]) if scores else 0.0
        citations = build_citations(retrieval.groups, self.max_citations)
        return RagQueryResponse(
            type="exam_question",
            answer=f"Based on exam sources:\n\n{context[:CONTEXT_PREVIEW_CHARS]}...",
            citations=citations[:limit],
            confidence_score=confidence,
            coverage_percentage=compute_coverage(len(retrieval.groups), self.top_k),
            low_confidence=confidence < LOW_CONFIDENCE_THRESHOLD,
        )
