"""
Context Retrieval

Semantic search over an indexed collection: the query is embedded with the
same provider used for indexing, matched against stored points, filtered by
a similarity floor and de-duplicated where fallback windows overlap.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .embeddings import EmbeddingProvider
from .storage import SearchHit, VectorStore

logger = logging.getLogger(__name__)


@dataclass
class RetrievalConfig:
    """Configuration for search."""
    max_results: int = 10
    min_similarity: float = 0.1
    overlap_dedup_threshold: float = 0.85


@dataclass
class SearchResult:
    file_path: str
    content: str
    line_start: int
    line_end: int
    similarity: float
    rank: int

    @classmethod
    def from_hit(cls, hit: SearchHit, rank: int) -> 'SearchResult':
        payload = hit.payload
        return cls(
            file_path=payload.get("file_path", ""),
            content=payload.get("content", ""),
            line_start=int(payload.get("line_start", 0)),
            line_end=int(payload.get("line_end", 0)),
            similarity=hit.score,
            rank=rank,
        )


class ContextRetriever:
    """Finds stored chunks relevant to a natural-language query."""

    def __init__(self, embedding_provider: EmbeddingProvider, vector_store: VectorStore,
                 collection_name: str, config: Optional[RetrievalConfig] = None):
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store
        self.collection_name = collection_name
        self.config = config or RetrievalConfig()

    def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        """
        Search the collection for chunks similar to query.

        Raises:
            EmbeddingError: the query could not be embedded.
            VectorStoreError: the search itself failed.
        """
        limit = limit or self.config.max_results
        if self.collection_name not in self.vector_store.list_collections():
            logger.info(f"Collection '{self.collection_name}' does not exist yet, nothing to search")
            return []

        vector = self.embedding_provider.embed(query)
        hits = self.vector_store.search(self.collection_name, vector, limit)

        results = []
        for hit in hits:
            if hit.score < self.config.min_similarity:
                continue
            candidate = SearchResult.from_hit(hit, rank=len(results) + 1)
            if any(self._overlaps(candidate, kept) for kept in results):
                continue
            results.append(candidate)

        logger.debug(f"Search returned {len(hits)} hits, kept {len(results)}")
        return results

    def _overlaps(self, first: SearchResult, second: SearchResult) -> bool:
        """Whether two results cover mostly the same lines of one file."""
        if first.file_path != second.file_path:
            return False
        lines1 = set(range(first.line_start, first.line_end + 1))
        lines2 = set(range(second.line_start, second.line_end + 1))
        total_lines = len(lines1 | lines2)
        if total_lines == 0:
            return False
        return len(lines1 & lines2) / total_lines > self.config.overlap_dedup_threshold


def format_results(results: List[SearchResult], query: str) -> str:
    """Render search results grouped by file."""
    if not results:
        return "No relevant code found."

    parts = [
        "RELEVANT CODE:",
        "=" * 60,
        f"Query: {query}",
        f"Retrieved {len(results)} chunks:",
        "",
    ]

    by_file: Dict[str, List[SearchResult]] = {}
    for result in results:
        by_file.setdefault(result.file_path, []).append(result)

    for file_path, file_results in by_file.items():
        parts.append(f"📁 FILE: {file_path}")
        parts.append("-" * 50)
        for result in file_results:
            parts.append(
                f"<chunk lines=\"{result.line_start}-{result.line_end}\" "
                f"similarity=\"{result.similarity:.3f}\">"
            )
            parts.append(result.content)
            parts.append("</chunk>")
            parts.append("")

    average = sum(r.similarity for r in results) / len(results)
    parts.append("=" * 60)
    parts.append(f"• Files covered: {len(by_file)}")
    parts.append(f"• Average similarity: {average:.3f}")

    return "\n".join(parts)
