from __future__ import annotations

# Pytest's default import-mode prepends the test directories to sys.path, which
# can shadow the project's top-level packages (e.g. "analytics" vs
# "tests/analytics"). Force the repo root to the front so imports resolve to the
# production code.

import copy
import sys
import os
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Settings lookups must stay local: no Secret Manager calls and no operator
# config/env.toml leaking into the results.
os.environ["DISABLE_GCP_SECRET_MANAGER"] = "1"
os.environ.setdefault("FEED_CYCLE_CONFIG", str(ROOT / "config" / "__disabled_for_tests__.toml"))


class FakeSnapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeQuery:
    def __init__(self, docs):
        self._docs = list(docs)

    def order_by(self, field, direction="ASCENDING"):
        docs = sorted(self._docs, key=lambda d: d[1].get(field), reverse=direction == "DESCENDING")
        return FakeQuery(docs)

    def limit(self, count):
        return FakeQuery(self._docs[:count])

    def stream(self):
        for doc_id, data in self._docs:
            yield FakeSnapshot(doc_id, data)


class FakeCollection(FakeQuery):
    def __init__(self):
        super().__init__([])

    def add(self, data):
        doc_id = f"doc{len(self._docs)}"
        self._docs.append((doc_id, copy.deepcopy(data)))
        return None, doc_id

    @property
    def docs(self):
        return [data for _, data in self._docs]


class FakeFirestore:
    def __init__(self):
        self.collections = {}

    def collection(self, name):
        return self.collections.setdefault(name, FakeCollection())


@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def fake_provider(fake_db):
    from utils.firestore_handle import FirestoreHandleProvider

    return FirestoreHandleProvider(factory=lambda project: fake_db)


@pytest.fixture
def broken_provider():
    from utils.firestore_handle import FirestoreHandleProvider

    def _factory(project):
        raise RuntimeError("Could not automatically determine credentials")

    return FirestoreHandleProvider(factory=_factory)


@pytest.fixture(autouse=True)
def _clear_collection_env(monkeypatch):
    monkeypatch.delenv("CYCLE_HEALTH_COLLECTION", raising=False)
