"""Shared pytest fixtures for docchat unit tests."""
from __future__ import annotations

import pytest

from docchat.schema import Passage, Query


@pytest.fixture()
def sample_query() -> Query:
    return Query(
        text="What is the notice period for termination?",
        user_id="user-1",
        document_ids=("doc-contract", "doc-handbook"),
    )


@pytest.fixture()
def sample_passage() -> Passage:
    return Passage(
        id="p-1",
        text="Either party may terminate this agreement with 30 days written notice.",
        title="Contract",
        page=8,
        total_pages=24,
        score=0.82,
        ai_title="Master Services Agreement",
    )


@pytest.fixture()
def sample_passages() -> list[Passage]:
    return [
        Passage(
            id="p-1",
            text="Either party may terminate this agreement with 30 days written notice.",
            title="Contract",
            page=8,
            total_pages=24,
            score=0.82,
            ai_title="Master Services Agreement",
        ),
        Passage(
            id="p-2",
            text="Invoices are payable within 45 days of receipt.",
            title="Contract",
            page=3,
            total_pages=24,
            score=0.61,
        ),
        Passage(
            id="p-3",
            text="Employees accrue two vacation days per month of service.",
            title="Handbook",
            page=12,
            total_pages=40,
            score=0.44,
            ai_description="Company leave and holiday rules",
        ),
    ]
