"""
Pytest configuration for backlinkhub tests.
Points settings at throwaway directories before any backlinkhub import.
"""

import os
import tempfile

_test_data_dir = tempfile.mkdtemp(prefix="backlinkhub_test_")
os.environ.setdefault("BACKLINKHUB_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("BACKLINKHUB_LOG_DIR", os.path.join(_test_data_dir, "logs"))
os.environ.setdefault("BACKLINKHUB_FUNCTIONS_URL", "https://functions.test/v1")
os.environ.setdefault("BACKLINKHUB_SERVICE_ROLE_KEY", "service-role-test-key")

import pytest
from sqlmodel import Session, SQLModel, select

from backlinkhub.core.database import _build_engine, get_engine
from backlinkhub.core.errors import WorkerInvocationError
from backlinkhub.core.errors.registry import error_registry
from backlinkhub.models import backlinks  # noqa: F401

SQLModel.metadata.create_all(get_engine())

# Load error registry so BacklinkHubError maps to the registered HTTP status
error_registry.load()


class Store:
    """Small helper for seeding and reading rows in a test database."""

    def __init__(self, engine):
        self.engine = engine

    def add(self, obj):
        with Session(self.engine) as session:
            session.add(obj)
            session.commit()
            session.refresh(obj)
            return obj

    def add_all(self, objs):
        return [self.add(obj) for obj in objs]

    def get(self, model, item_id):
        with Session(self.engine) as session:
            return session.get(model, item_id)

    def all(self, model):
        with Session(self.engine) as session:
            return list(session.exec(select(model)).all())

    def statuses(self, model):
        return {row.id: row.status for row in self.all(model)}


class RecordingInvoker:
    """Stands in for WorkerInvoker; fails for ids listed in ``fail_ids``."""

    def __init__(self):
        self.calls = []
        self.fail_ids = set()

    async def invoke(self, name, payload):
        self.calls.append((name, payload))
        item_id = payload.get("backlink_id", payload.get("review_id", payload.get("id")))
        if item_id in self.fail_ids:
            raise WorkerInvocationError(name, f"{name} returned HTTP 500: boom", status_code=500)
        return {"ok": True}


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite database per test."""
    eng = _build_engine(f"sqlite:///{tmp_path / 'pipeline.db'}")
    SQLModel.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return Store(engine)


@pytest.fixture
def invoker():
    return RecordingInvoker()
