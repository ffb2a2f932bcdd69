"""Normalize subject codes and file types for display and matching."""

from typing import Optional

SUBJECT_NAMES: dict[str, str] = {
    "1001": "Physics",
    "1002": "Biology",
    "1003": "Mathematics",
    "1004": "Islamiyat",
    "1005": "Urdu",
    "1006": "English",
    "1007": "Computer Science",
    "1008": "Economics",
    "1009": "History",
    "1010": "Geography",
    "1011": "Chemistry",
}

FILE_TYPE_MAPPINGS: dict[str, str] = {
    "qp": "QP",
    "question paper": "QP",
    "ms": "MS",
    "mark scheme": "MS",
    "marking scheme": "MS",
    "er": "ER",
    "examiner report": "ER",
    "gt": "GT",
    "grade threshold": "GT",
    "grade thresholds": "GT",
}


def get_subject_name(code: Optional[str]) -> str:
    """Display name for a subject code. Unknown codes are returned unchanged."""
    if code is None:
        return ""
    key = str(code).strip()
    return SUBJECT_NAMES.get(key, key)


def normalize_file_type(file_type: Optional[str]) -> Optional[str]:
    """Map 'qp', 'Mark Scheme', etc. to QP/MS/ER/GT. Unknown values upper-cased."""
    if not file_type or not file_type.strip():
        return None
    key = file_type.strip().lower()
    return FILE_TYPE_MAPPINGS.get(key, file_type.strip().upper())

