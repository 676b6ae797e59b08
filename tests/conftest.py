import hashlib
import threading
from pathlib import Path
from typing import List, Optional

import pytest

from semantic_indexer.chunker import CodeChunker
from semantic_indexer.config import IndexingSettings
from semantic_indexer.embeddings import EmbeddingProvider
from semantic_indexer.errors import EmbeddingError
from semantic_indexer.index_state import IndexStateStore
from semantic_indexer.indexer import CodebaseIndexer
from semantic_indexer.storage import InMemoryVectorStore, Point


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic vectors derived from the text; fails on marked text."""

    name = "Fake"

    def __init__(self, dimension: int = 8, fail_on: Optional[List[str]] = None):
        super().__init__("fake-model")
        self.dimension = dimension
        self.fail_on = fail_on or []
        self.calls: List[str] = []

    def embed(self, text, cancellation=None):
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        self.calls.append(text)
        for marker in self.fail_on:
            if marker in text:
                raise EmbeddingError(self.name, "500 Internal Server Error - boom")
        digest = hashlib.sha256(text.encode()).digest()
        return [b / 255.0 + 0.01 for b in digest[:self.dimension]]

    def get_embedding_dimension(self, cancellation=None):
        return self.dimension


class BlockingEmbeddingProvider(FakeEmbeddingProvider):
    """Blocks inside the first embedding call until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def embed(self, text, cancellation=None):
        self.entered.set()
        self.release.wait(5)
        return super().embed(text, cancellation)


class RecordingVectorStore(InMemoryVectorStore):
    """In-memory store that remembers the order of writes."""

    def __init__(self):
        super().__init__()
        self.operations = []

    def upsert(self, collection, points):
        paths = tuple(sorted({p.payload["file_path"] for p in points}))
        self.operations.append(("upsert", paths))
        super().upsert(collection, points)

    def delete_where(self, collection, filter):
        self.operations.append(("delete", filter.get("file_path")))
        super().delete_where(collection, filter)

    def points_for(self, file_path: str, collection: str = "codebase") -> List[Point]:
        return [
            p for p in self._get(collection).points.values()
            if p.payload["file_path"] == file_path
        ]


class FixedRevisionProvider:
    def __init__(self, revision: Optional[str] = "rev-1"):
        self.revision = revision

    def get_current_revision(self, workspace_root):
        return self.revision

    def get_repo_id(self, workspace_root):
        return "test-repo"


def write_file(root: Path, rel_path: str, content) -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


def numbered_lines(count: int, prefix: str = "line") -> str:
    return "\n".join(f"{prefix} {i}" for i in range(1, count + 1))


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def state_store(tmp_path):
    return IndexStateStore(str(tmp_path / "state" / "index_state.db"))


@pytest.fixture
def make_indexer(workspace, state_store):
    def _make(provider=None, store=None, revision="rev-1", **settings):
        settings.setdefault("include_extensions", ["py", "ts", "md"])
        settings.setdefault("connection_retry_delay", 0)
        return CodebaseIndexer(
            workspace_root=str(workspace),
            embedding_provider=provider or FakeEmbeddingProvider(),
            vector_store=store if store is not None else RecordingVectorStore(),
            state_store=state_store,
            chunker=CodeChunker(),
            revision_provider=FixedRevisionProvider(revision),
            settings=IndexingSettings(**settings),
        )
    return _make
