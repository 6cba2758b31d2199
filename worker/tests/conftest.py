"""
Pytest configuration and shared fixtures for the retention worker tests.
"""
import pytest
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from models import Base, Account, Action, BlockBatch, Block, ActionType, ActionStatus, ActionCause, enable_sqlite_foreign_keys
from observability import metrics
from store import ActionStore


class StopLoop(Exception):
    """Raised by a test sleep to break out of a run_forever loop."""


class RecordingSleep:
    """
    Async stand-in for asyncio.sleep that records requested delays.
    Raises StopLoop once `stop_after` calls have been made.
    """

    def __init__(self, stop_after=None):
        self.calls = []
        self.stop_after = stop_after

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.stop_after is not None and len(self.calls) >= self.stop_after:
            raise StopLoop()


def days_ago(days: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture(scope="function")
def session_factory() -> Generator[sessionmaker, None, None]:
    """
    Session factory bound to a clean in-memory SQLite database.
    Foreign keys are enforced so block_batches cascade to blocks.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def test_db(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def store(session_factory) -> ActionStore:
    return ActionStore(session_factory)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def make_account(test_db: Session):
    def _make(uid, deactivated_at=None, block_count=0):
        account = Account(uid=uid, deactivated_at=deactivated_at, block_count=block_count)
        test_db.add(account)
        test_db.commit()
        return account
    return _make


@pytest.fixture
def make_action(test_db: Session):
    def _make(source_uid, id=None, type_num=ActionType.BLOCK, status_num=ActionStatus.DONE,
              cause_num=ActionCause.SUBSCRIPTION, updated_at=None):
        action = Action(
            id=id,
            source_uid=source_uid,
            sink_uid="sink",
            type_num=type_num,
            status_num=status_num,
            cause_num=cause_num,
            updated_at=updated_at or datetime.now(timezone.utc),
        )
        test_db.add(action)
        test_db.commit()
        return action
    return _make


@pytest.fixture
def make_block_batch(test_db: Session):
    def _make(source_uid, block_sinks=()):
        batch = BlockBatch(source_uid=source_uid, size=len(block_sinks), complete=True)
        test_db.add(batch)
        test_db.flush()
        for sink in block_sinks:
            test_db.add(Block(sink_uid=sink, block_batch_id=batch.id))
        test_db.commit()
        return batch
    return _make
