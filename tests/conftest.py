from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def pytest_configure() -> None:
    """
    Ensure the project root is importable when running pytest without installing.
    """
    project_root = Path(__file__).resolve().parents[1]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


# A Wednesday afternoon, outside every time-of-day suggestion window
NOW = datetime(2026, 10, 14, 15, 30)


@pytest.fixture()
def session():
    from db.database import init_db

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    db = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


class FakeAI:
    """Stands in for AIService: returns canned replies and records each call."""

    def __init__(self, replies=None, error=None):
        self.replies = list(replies or [])
        self.error = error
        self.calls = []

    async def chat(self, messages, temperature=0.8):
        self.calls.append((messages, temperature))
        if self.error is not None:
            raise self.error
        return self.replies.pop(0)


@pytest.fixture()
def fake_ai():
    return FakeAI
