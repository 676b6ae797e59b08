"""
Semantic Indexer

Incremental semantic indexing of source trees: files are split into chunks,
embedded through a pluggable provider and stored in a vector database, with
content hashes so unchanged files are never re-embedded.
"""

from .cancellation import CancellationToken
from .chunker import Chunk, CodeChunker
from .config import IndexerConfig, IndexingSettings, load_config
from .embeddings import (
    EmbeddingProvider,
    GeminiEmbeddingProvider,
    OllamaEmbeddingProvider,
    OpenAIEmbeddingProvider,
    create_embedding_provider,
)
from .errors import (
    ConfigurationError,
    EmbeddingError,
    IndexerError,
    IndexingCancelledError,
    IndexingError,
    VectorStoreError,
)
from .index_state import FileIndexRecord, IndexStateStore
from .indexer import CodebaseIndexer, FileOutcome, IndexingResult, RunOutcome, create_indexer
from .retriever import ContextRetriever, RetrievalConfig, SearchResult
from .status import IndexStatus, ProgressEvent, ProgressEventType, RepoIndexState, derive_index_status
from .storage import (
    InMemoryVectorStore,
    PineconeVectorStore,
    Point,
    QdrantVectorStore,
    VectorStore,
    create_vector_store,
)

__version__ = "0.1.0"

__all__ = [
    'CancellationToken',
    'Chunk',
    'CodeChunker',
    'IndexerConfig',
    'IndexingSettings',
    'load_config',
    'EmbeddingProvider',
    'OllamaEmbeddingProvider',
    'OpenAIEmbeddingProvider',
    'GeminiEmbeddingProvider',
    'create_embedding_provider',
    'ConfigurationError',
    'EmbeddingError',
    'IndexerError',
    'IndexingCancelledError',
    'IndexingError',
    'VectorStoreError',
    'FileIndexRecord',
    'IndexStateStore',
    'CodebaseIndexer',
    'FileOutcome',
    'IndexingResult',
    'RunOutcome',
    'create_indexer',
    'ContextRetriever',
    'RetrievalConfig',
    'SearchResult',
    'IndexStatus',
    'ProgressEvent',
    'ProgressEventType',
    'RepoIndexState',
    'derive_index_status',
    'InMemoryVectorStore',
    'PineconeVectorStore',
    'Point',
    'QdrantVectorStore',
    'VectorStore',
    'create_vector_store',
]
