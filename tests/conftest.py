"""Shared fixtures for quest map tests."""

import os
import sys

import pytest
from sqlalchemy.orm import sessionmaker

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import DocumentStore, init_db, make_engine
from logic.geo import LngLat


@pytest.fixture
def store(tmp_path):
    """Document store on a throwaway SQLite file."""
    engine = make_engine(f"sqlite:///{tmp_path / 'quests.db'}")
    init_db(engine)
    yield DocumentStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()


class RecordingWriter:
    """Stands in for the persistence queue and remembers every snapshot."""

    def __init__(self, fail=False):
        self.snapshots = []
        self.fail = fail

    async def submit(self, quests):
        self.snapshots.append([(q.id, q.next.id if q.next else None) for q in quests])
        if self.fail:
            raise ConnectionError("store unreachable")


class StaticRepository:
    """Repository whose load returns a fixed result."""

    def __init__(self, quests=None):
        self.quests = quests
        self.load_calls = 0

    async def load(self):
        self.load_calls += 1
        return self.quests


@pytest.fixture
def writer():
    return RecordingWriter()


@pytest.fixture
def points():
    return [LngLat(10, 20), LngLat(30, 40), LngLat(50, 60)]


@pytest.fixture
def service(writer):
    from logic.quests import QuestService

    return QuestService(writer, StaticRepository([]))
