"""Rule-based intent classifier for incoming questions.

Decides how a question is handled, cheapest check first:

1. Smalltalk (greetings, acknowledgements, bare punctuation, fillers)
2. Paper lookup (a subject keyword plus a year, paper number or file type)
3. Exam question (everything else; goes to retrieval)

Matching is first-match-wins, so "chemistry or physics 2021" is a chemistry
lookup.
"""

import re
from typing import Optional

from exam_rag.models.rag import ClassificationMetadata, ClassificationResult


# ---------------------------------------------------------------------------
# Layer 1 – Smalltalk
# ---------------------------------------------------------------------------

_SMALLTALK_TOKENS = frozenset({
    "hello", "hi", "hey", "thanks", "thank you", "ok", "okay", "yes", "no",
    "sure", "good", "great", "nice", "cool", "bye", "goodbye",
})

_FILLER_TOKENS = frozenset({"lol", "haha", "hmm", "umm", "err"})

_PUNCTUATION_ONLY = re.compile(r'^[?!.]{1,3}$')


def _is_smalltalk(text: str) -> bool:
    return (
        text in _SMALLTALK_TOKENS
        or text in _FILLER_TOKENS
        or bool(_PUNCTUATION_ONLY.match(text))
    )


# ---------------------------------------------------------------------------
# Layer 2 – Paper lookup metadata
# ---------------------------------------------------------------------------

# Order matters: the first keyword found wins.
_SUBJECT_KEYWORDS = [
    "chemistry", "physics", "biology", "mathematics", "islamiyat", "urdu",
    "english", "computer", "economics", "history", "geography", "art",
    "music", "english language", "english literature",
]

_SUBJECT_PATTERNS = [
    (subject, re.compile(rf'\b{re.escape(subject)}\b')) for subject in _SUBJECT_KEYWORDS
]

_YEAR_PATTERN = re.compile(r'\b(20\d{2})\b')
_PAPER_PATTERN = re.compile(r'\b(p1|p2|p3)\b', re.IGNORECASE)
_FILE_TYPE_PATTERNS = [
    (file_type.upper(), re.compile(rf'\b{file_type}\b'))
    for file_type in ("qp", "ms", "er", "gt")
]


def _detect_subject(text: str) -> Optional[str]:
    for subject, pattern in _SUBJECT_PATTERNS:
        if pattern.search(text):
            return subject
    return None


def _detect_file_type(text: str) -> Optional[str]:
    for file_type, pattern in _FILE_TYPE_PATTERNS:
        if pattern.search(text):
            return file_type
    return None


def _extract_lookup_metadata(text: str) -> Optional[ClassificationMetadata]:
    """Metadata for a lookup question, or None if it is not one."""
    subject = _detect_subject(text)
    if subject is None:
        return None

    year_match = _YEAR_PATTERN.search(text)
    paper_match = _PAPER_PATTERN.search(text)
    file_type = _detect_file_type(text)

    if not (year_match or paper_match or file_type):
        return None

    return ClassificationMetadata(
        subject=subject,
        year=int(year_match.group(1)) if year_match else None,
        paper_number=paper_match.group(1).upper() if paper_match else None,
        file_type=file_type,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def classify_intent(question: str) -> ClassificationResult:
    """Classify a question as smalltalk, paper lookup or exam question.

    Args:
        question: Raw user question

    Returns:
        ClassificationResult with metadata set only for paper lookups
    """
    text = (question or "").strip().lower()

    if _is_smalltalk(text):
        return ClassificationResult(intent="smalltalk")

    metadata = _extract_lookup_metadata(text)
    if metadata is not None:
        return ClassificationResult(intent="paper_lookup", metadata=metadata)

    return ClassificationResult(intent="exam_question")
