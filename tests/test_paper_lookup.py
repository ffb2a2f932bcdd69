"""Tests for direct paper lookup."""

from unittest.mock import MagicMock

import pytest

from exam_rag.models.rag import ClassificationMetadata
from exam_rag.services.paper_lookup import group_papers, resolve_paper_lookup


def _paper(code, year, session, paper, files):
    return {
        "id": f"{code}-{year}-{session}-{paper}",
        "year": year,
        "session": session,
        "paper": paper,
        "subject_id": f"s-{code}",
        "subjects": {"code": code, "level": "O"},
        "paper_files": [
            {"file_type": ft, "storage_path": f"{code}/{year}/{paper}_{ft}.pdf", "id": f"{paper}-{ft}"}
            for ft in files
        ],
    }


PAPERS = [
    _paper("1011", 2022, "May/June", "P1", ["QP", "MS"]),
    _paper("1011", 2022, "May/June", "P2", ["QP"]),
    _paper("1011", 2022, "Oct/Nov", "P1", ["ER"]),
    _paper("1001", 2022, "May/June", "P1", ["MS"]),
]


@pytest.fixture
def mock_client():
    client = MagicMock()
    query = client.table.return_value.select.return_value
    query.eq.return_value.execute.return_value.data = PAPERS
    query.execute.return_value.data = PAPERS
    return client


def test_group_papers_nesting():
    results = group_papers(PAPERS)

    assert [(r["subject"], r["year"]) for r in results] == [("1011", 2022), ("1001", 2022)]
    chemistry = results[0]
    assert chemistry["level"] == "O"
    assert set(chemistry["sessions"]) == {"May/June", "Oct/Nov"}
    may_june = chemistry["sessions"]["May/June"]
    assert set(may_june["papers"]) == {"P1", "P2"}
    assert may_june["papers"]["P1"]["files"]["MS"] == {
        "file_type": "MS",
        "storage_path": "1011/2022/P1_MS.pdf",
        "id": "P1-MS",
    }


@pytest.mark.asyncio
async def test_lookup_filters_by_year_in_query(mock_client):
    results = await resolve_paper_lookup(mock_client, ClassificationMetadata(subject="chemistry", year=2022))

    mock_client.table.assert_called_once_with("papers")
    mock_client.table.return_value.select.return_value.eq.assert_called_once_with("year", 2022)
    assert len(results) == 2


@pytest.mark.asyncio
async def test_lookup_filters_by_file_type(mock_client):
    results = await resolve_paper_lookup(mock_client, ClassificationMetadata(subject="chemistry", file_type="ER"))

    assert len(results) == 1
    assert list(results[0]["sessions"]) == ["Oct/Nov"]


@pytest.mark.asyncio
async def test_lookup_without_year_skips_year_filter(mock_client):
    await resolve_paper_lookup(mock_client, ClassificationMetadata(subject="physics", file_type="QP"))

    mock_client.table.return_value.select.return_value.eq.assert_not_called()


@pytest.mark.asyncio
async def test_database_error_gives_empty_list():
    client = MagicMock()
    client.table.return_value.select.return_value.eq.return_value.execute.side_effect = Exception("down")

    assert await resolve_paper_lookup(client, ClassificationMetadata(subject="physics", year=2020)) == []
