"""Tests for subject, file type and paper normalization."""

from exam_rag.utils.normalizers import get_subject_name, normalize_file_type


def test_known_subject_codes():
    assert get_subject_name("1011") == "Chemistry"
    assert get_subject_name("1001") == "Physics"
    assert get_subject_name("1007") == "Computer Science"


def test_unknown_subject_code_returned_unchanged():
    assert get_subject_name("9999") == "9999"
    assert get_subject_name("Unknown") == "Unknown"


def test_normalize_file_type():
    assert normalize_file_type("qp") == "QP"
    assert normalize_file_type("Mark Scheme") == "MS"
    assert normalize_file_type("  er ") == "ER"
    assert normalize_file_type("xx") == "XX"
    assert normalize_file_type("") is None

