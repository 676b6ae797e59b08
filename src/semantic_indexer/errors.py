"""
Exception types raised by the indexing pipeline.

Chunk- and file-level problems are logged and absorbed where they happen;
only the types below cross component boundaries.
"""

from typing import Optional


class IndexerError(Exception):
    """Base class for all indexer errors."""


class ConfigurationError(IndexerError):
    """Configuration is missing a required value or holds an invalid one."""


class IndexingCancelledError(IndexerError):
    """Raised when a cancellation request halts work. Not a failure."""

    def __init__(self, message: str = "Indexing cancelled"):
        super().__init__(message)


class EmbeddingError(IndexerError):
    """An embedding backend returned an error or an unusable response."""

    def __init__(self, provider: str, message: str,
                 status_code: Optional[int] = None, body: Optional[str] = None):
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider} Error: {message}")


class VectorStoreError(IndexerError):
    """The vector database is unreachable or rejected an operation."""


class IndexingError(IndexerError):
    """A run was aborted by a fatal failure.

    ``result`` holds the partial IndexingResult collected before the abort.
    """

    def __init__(self, message: str, result=None):
        self.result = result
        super().__init__(message)
