"""
Vector Storage for Code Chunks

This module defines the narrow client interface the indexer needs from a
vector database. Qdrant and Pinecone back real deployments; an in-memory
NumPy store serves tests and throwaway sessions.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
from pinecone import Pinecone, ServerlessSpec
from qdrant_client import QdrantClient, models

from .chunker import Chunk
from .config import VectorStoreConfig, VectorStoreKind
from .errors import ConfigurationError, VectorStoreError

logger = logging.getLogger(__name__)

COSINE = "cosine"

_QDRANT_DISTANCES = {
    "cosine": models.Distance.COSINE,
    "dot": models.Distance.DOT,
    "euclid": models.Distance.EUCLID,
}

_PINECONE_METRICS = {
    "cosine": "cosine",
    "dot": "dotproduct",
    "euclid": "euclidean",
}

PINECONE_CONTENT_BYTES = 35000
PINECONE_UPSERT_BATCH = 100


@dataclass
class Point:
    """A chunk's vector plus the text and location it came from."""
    id: str
    vector: List[float]
    payload: Dict[str, Any]

    @classmethod
    def from_chunk(cls, chunk: Chunk, vector: List[float]) -> 'Point':
        return cls(
            id=chunk.id,
            vector=vector,
            payload={
                "file_path": chunk.file_path,
                "content": chunk.content,
                "line_start": chunk.line_start,
                "line_end": chunk.line_end,
            },
        )


@dataclass
class SearchHit:
    """One result from a vector search."""
    id: str
    score: float
    payload: Dict[str, Any]


class VectorStore(ABC):
    """Operations the indexer performs against a vector database."""

    @abstractmethod
    def list_collections(self) -> List[str]:
        pass

    @abstractmethod
    def create_collection(self, name: str, vector_size: int, distance: str = COSINE):
        pass

    @abstractmethod
    def collection_dimension(self, name: str) -> Optional[int]:
        """Vector size of an existing collection, None if it can't be told."""

    @abstractmethod
    def upsert(self, collection: str, points: List[Point]):
        pass

    @abstractmethod
    def delete_where(self, collection: str, filter: Dict[str, Any]):
        """Delete every point whose payload equals all key/value pairs in filter."""

    @abstractmethod
    def search(self, collection: str, vector: List[float], limit: int) -> List[SearchHit]:
        pass

    @abstractmethod
    def count(self, collection: str) -> int:
        pass

    def check_connection(self):
        """Raise VectorStoreError if the database can't be reached."""
        self.list_collections()


class QdrantVectorStore(VectorStore):
    """VectorStore backed by a Qdrant server."""

    def __init__(self, url: str = "http://localhost:6333", api_key: Optional[str] = None,
                 client: Optional[QdrantClient] = None):
        self.url = url
        self.client = client or QdrantClient(url=url, api_key=api_key)

    def list_collections(self) -> List[str]:
        try:
            return [c.name for c in self.client.get_collections().collections]
        except Exception as e:
            raise VectorStoreError(f"Failed to list collections at {self.url}: {e}") from e

    def create_collection(self, name: str, vector_size: int, distance: str = COSINE):
        if distance not in _QDRANT_DISTANCES:
            raise ValueError(f"Unsupported distance metric: {distance}")
        try:
            self.client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(
                    size=vector_size,
                    distance=_QDRANT_DISTANCES[distance],
                ),
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to create collection '{name}': {e}") from e
        logger.info(f"Created collection '{name}' ({vector_size} dims, {distance})")

    def collection_dimension(self, name: str) -> Optional[int]:
        try:
            info = self.client.get_collection(collection_name=name)
        except Exception as e:
            raise VectorStoreError(f"Failed to read collection '{name}': {e}") from e

        vectors = info.config.params.vectors
        # Named multi-vector collections have no single size
        if isinstance(vectors, dict):
            return None
        return vectors.size

    def upsert(self, collection: str, points: List[Point]):
        if not points:
            return
        try:
            self.client.upsert(
                collection_name=collection,
                points=[
                    models.PointStruct(id=p.id, vector=p.vector, payload=p.payload)
                    for p in points
                ],
                wait=True,
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to upsert {len(points)} points into '{collection}': {e}") from e

    def delete_where(self, collection: str, filter: Dict[str, Any]):
        if not filter:
            raise ValueError("delete_where requires at least one condition")
        conditions = [
            models.FieldCondition(key=key, match=models.MatchValue(value=value))
            for key, value in filter.items()
        ]
        try:
            self.client.delete(
                collection_name=collection,
                points_selector=models.FilterSelector(filter=models.Filter(must=conditions)),
                wait=True,
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to delete points from '{collection}': {e}") from e

    def search(self, collection: str, vector: List[float], limit: int) -> List[SearchHit]:
        try:
            response = self.client.query_points(
                collection_name=collection,
                query=vector,
                limit=limit,
                with_payload=True,
            )
        except Exception as e:
            raise VectorStoreError(f"Search in '{collection}' failed: {e}") from e

        return [
            SearchHit(id=str(p.id), score=p.score, payload=p.payload or {})
            for p in response.points
        ]

    def count(self, collection: str) -> int:
        try:
            return self.client.count(collection_name=collection, exact=True).count
        except Exception as e:
            raise VectorStoreError(f"Failed to count points in '{collection}': {e}") from e


class PineconeVectorStore(VectorStore):
    """
    VectorStore backed by serverless Pinecone indexes.

    A collection is a Pinecone index; every point is written to ``namespace``
    inside it. Pinecone keeps at most 40KB of metadata per vector, so the chunk
    text stored in the payload is cut to PINECONE_CONTENT_BYTES.
    """

    def __init__(self, api_key: Optional[str] = None, cloud: str = "aws",
                 region: str = "us-east-1", namespace: str = "",
                 client: Optional[Pinecone] = None):
        self.cloud = cloud
        self.region = region
        self.namespace = namespace
        self.client = client or Pinecone(api_key=api_key)
        self._indexes: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def list_collections(self) -> List[str]:
        try:
            return list(self.client.list_indexes().names())
        except Exception as e:
            raise VectorStoreError(f"Failed to list Pinecone indexes: {e}") from e

    def create_collection(self, name: str, vector_size: int, distance: str = COSINE):
        if distance not in _PINECONE_METRICS:
            raise ValueError(f"Unsupported distance metric: {distance}")
        try:
            self.client.create_index(
                name=name,
                dimension=vector_size,
                metric=_PINECONE_METRICS[distance],
                spec=ServerlessSpec(cloud=self.cloud, region=self.region),
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to create Pinecone index '{name}': {e}") from e
        logger.info(f"Created Pinecone index '{name}' ({vector_size} dims, {distance})")

    def collection_dimension(self, name: str) -> Optional[int]:
        try:
            return self.client.describe_index(name).dimension
        except Exception as e:
            raise VectorStoreError(f"Failed to read Pinecone index '{name}': {e}") from e

    def upsert(self, collection: str, points: List[Point]):
        if not points:
            return
        vectors = [
            {"id": p.id, "values": p.vector, "metadata": _pinecone_metadata(p.payload)}
            for p in points
        ]
        index = self._index(collection)
        try:
            for start in range(0, len(vectors), PINECONE_UPSERT_BATCH):
                index.upsert(
                    vectors=vectors[start:start + PINECONE_UPSERT_BATCH],
                    namespace=self.namespace,
                )
        except Exception as e:
            raise VectorStoreError(f"Failed to upsert {len(points)} points into '{collection}': {e}") from e

    def delete_where(self, collection: str, filter: Dict[str, Any]):
        if not filter:
            raise ValueError("delete_where requires at least one condition")
        try:
            self._index(collection).delete(
                filter={key: {"$eq": value} for key, value in filter.items()},
                namespace=self.namespace,
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to delete points from '{collection}': {e}") from e

    def search(self, collection: str, vector: List[float], limit: int) -> List[SearchHit]:
        try:
            response = self._index(collection).query(
                vector=vector,
                top_k=limit,
                include_metadata=True,
                namespace=self.namespace,
            )
        except Exception as e:
            raise VectorStoreError(f"Search in '{collection}' failed: {e}") from e

        return [
            SearchHit(id=str(m.id), score=m.score, payload=_payload_from_metadata(m.metadata))
            for m in response.matches
        ]

    def count(self, collection: str) -> int:
        # Serverless index stats are eventually consistent
        try:
            stats = self._index(collection).describe_index_stats()
        except Exception as e:
            raise VectorStoreError(f"Failed to count points in '{collection}': {e}") from e
        summary = (stats.namespaces or {}).get(self.namespace)
        return summary.vector_count if summary is not None else 0

    def _index(self, name: str):
        with self._lock:
            index = self._indexes.get(name)
            if index is None:
                index = self.client.Index(name)
                self._indexes[name] = index
            return index


def _truncate_utf8(text: str, max_bytes: int) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def _pinecone_metadata(payload: Dict[str, Any]) -> Dict[str, Any]:
    # Pinecone rejects null metadata values
    metadata = {k: v for k, v in payload.items() if v is not None}
    if isinstance(metadata.get("content"), str):
        metadata["content"] = _truncate_utf8(metadata["content"], PINECONE_CONTENT_BYTES)
    return metadata


def _payload_from_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    payload = dict(metadata or {})
    # Numbers come back as floats
    for key in ("line_start", "line_end"):
        if isinstance(payload.get(key), float):
            payload[key] = int(payload[key])
    return payload


@dataclass
class _MemoryCollection:
    vector_size: int
    distance: str
    points: Dict[str, Point]


class InMemoryVectorStore(VectorStore):
    """In-process store using NumPy cosine similarity."""

    def __init__(self):
        self._collections: Dict[str, _MemoryCollection] = {}
        self._lock = threading.Lock()

    def list_collections(self) -> List[str]:
        with self._lock:
            return list(self._collections)

    def create_collection(self, name: str, vector_size: int, distance: str = COSINE):
        if distance != COSINE:
            raise ValueError(f"In-memory store only supports cosine distance, got {distance}")
        with self._lock:
            if name in self._collections:
                raise VectorStoreError(f"Collection '{name}' already exists")
            self._collections[name] = _MemoryCollection(vector_size, distance, {})

    def collection_dimension(self, name: str) -> Optional[int]:
        return self._get(name).vector_size

    def upsert(self, collection: str, points: List[Point]):
        target = self._get(collection)
        for point in points:
            if len(point.vector) != target.vector_size:
                raise VectorStoreError(
                    f"Vector of size {len(point.vector)} does not fit collection "
                    f"'{collection}' ({target.vector_size})"
                )
        with self._lock:
            for point in points:
                target.points[point.id] = point

    def delete_where(self, collection: str, filter: Dict[str, Any]):
        if not filter:
            raise ValueError("delete_where requires at least one condition")
        target = self._get(collection)
        with self._lock:
            doomed = [
                point_id for point_id, point in target.points.items()
                if all(point.payload.get(k) == v for k, v in filter.items())
            ]
            for point_id in doomed:
                del target.points[point_id]

    def search(self, collection: str, vector: List[float], limit: int) -> List[SearchHit]:
        target = self._get(collection)
        with self._lock:
            points = list(target.points.values())
        if not points or limit <= 0:
            return []

        matrix = np.array([p.vector for p in points], dtype=float)
        query = np.array(vector, dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = 1.0
        scores = matrix @ query / norms

        order = np.argsort(-scores)[:limit]
        return [
            SearchHit(id=points[i].id, score=float(scores[i]), payload=dict(points[i].payload))
            for i in order
        ]

    def count(self, collection: str) -> int:
        target = self._get(collection)
        with self._lock:
            return len(target.points)

    def _get(self, name: str) -> _MemoryCollection:
        with self._lock:
            collection = self._collections.get(name)
        if collection is None:
            raise VectorStoreError(f"Collection '{name}' does not exist")
        return collection


def create_vector_store(config: VectorStoreConfig) -> VectorStore:
    """Build the store selected by the config's kind."""
    if config.kind is VectorStoreKind.QDRANT:
        return QdrantVectorStore(config.url, config.api_key)
    if config.kind is VectorStoreKind.PINECONE:
        return PineconeVectorStore(config.api_key, config.cloud, config.region, config.namespace)
    if config.kind is VectorStoreKind.MEMORY:
        return InMemoryVectorStore()
    raise ConfigurationError(f"Unsupported vector store: {config.kind}")
