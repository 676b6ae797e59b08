"""
Indexer Configuration

Settings are plain dataclasses. ``load_config`` fills them from the
environment, after pulling a ``.env`` file in with python-dotenv.

Embedding providers and vector stores are tagged variants: each config class
carries only its own fields plus a fixed ``kind`` discriminator, and the
factories in ``embeddings`` and ``storage`` dispatch on that one field.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from dotenv import load_dotenv

from .errors import ConfigurationError


class EmbeddingProviderKind(Enum):
    """Supported embedding backends."""
    OLLAMA = "ollama"
    OPENAI = "openai"
    GEMINI = "gemini"


class VectorStoreKind(Enum):
    """Supported vector databases."""
    QDRANT = "qdrant"
    PINECONE = "pinecone"
    MEMORY = "memory"


@dataclass
class OllamaConfig:
    """Local model served by Ollama."""
    base_url: str = "http://localhost:11434"
    model: str = "nomic-embed-text"
    kind: EmbeddingProviderKind = field(default=EmbeddingProviderKind.OLLAMA, init=False)


@dataclass
class OpenAIConfig:
    api_key: str
    model: str = "text-embedding-3-small"
    kind: EmbeddingProviderKind = field(default=EmbeddingProviderKind.OPENAI, init=False)

    def __post_init__(self):
        if not self.api_key:
            raise ConfigurationError("OpenAI API key required for embedding provider")


@dataclass
class GeminiConfig:
    api_key: str
    model: str = "text-embedding-004"
    kind: EmbeddingProviderKind = field(default=EmbeddingProviderKind.GEMINI, init=False)

    def __post_init__(self):
        if not self.api_key:
            raise ConfigurationError("Gemini API key required for embedding provider")


EmbeddingConfig = Union[OllamaConfig, OpenAIConfig, GeminiConfig]


@dataclass
class QdrantConfig:
    url: str = "http://localhost:6333"
    api_key: Optional[str] = None
    kind: VectorStoreKind = field(default=VectorStoreKind.QDRANT, init=False)


@dataclass
class PineconeConfig:
    """Serverless Pinecone; each collection is an index."""
    api_key: str
    cloud: str = "aws"
    region: str = "us-east-1"
    namespace: str = ""
    kind: VectorStoreKind = field(default=VectorStoreKind.PINECONE, init=False)

    def __post_init__(self):
        if not self.api_key:
            raise ConfigurationError("Pinecone API key required for vector store")


@dataclass
class MemoryStoreConfig:
    """Process-local store; contents are lost on exit."""
    kind: VectorStoreKind = field(default=VectorStoreKind.MEMORY, init=False)


VectorStoreConfig = Union[QdrantConfig, PineconeConfig, MemoryStoreConfig]


DEFAULT_INCLUDE_EXTENSIONS = [
    "ts", "tsx", "js", "jsx", "py", "java", "rs", "go", "kt", "dart", "md", "json",
]

DEFAULT_EXCLUDE_PATTERNS = [
    "**/node_modules/**",
    "**/.git/**",
    "**/dist/**",
    "**/build/**",
    "**/__pycache__/**",
    "**/.semantic_index/**",
    "*.min.js",
]


@dataclass
class IndexingSettings:
    """Inputs for file discovery and re-indexing policy."""
    max_files: int = 1000
    include_extensions: List[str] = None
    exclude_patterns: List[str] = None
    max_file_size: int = 1024 * 1024
    reindex_on_revision_change: bool = False
    connection_retries: int = 3
    connection_retry_delay: float = 1.0

    def __post_init__(self):
        if self.include_extensions is None:
            self.include_extensions = list(DEFAULT_INCLUDE_EXTENSIONS)
        if self.exclude_patterns is None:
            self.exclude_patterns = list(DEFAULT_EXCLUDE_PATTERNS)
        if self.max_files <= 0:
            raise ConfigurationError(f"max_files must be positive, got {self.max_files}")
        if self.connection_retries < 1:
            raise ConfigurationError(f"connection_retries must be at least 1, got {self.connection_retries}")


@dataclass
class IndexerConfig:
    """Everything needed to build a CodebaseIndexer."""
    workspace_root: Optional[str] = None
    collection_name: str = "codebase"
    embedding: EmbeddingConfig = None
    vector_store: VectorStoreConfig = None
    indexing: IndexingSettings = None
    state_dir: str = ".semantic_index"
    request_timeout: float = 30.0
    search_limit: int = 10
    search_threshold: float = 0.1

    def __post_init__(self):
        if self.embedding is None:
            self.embedding = OllamaConfig()
        if self.vector_store is None:
            self.vector_store = QdrantConfig()
        if self.indexing is None:
            self.indexing = IndexingSettings()

    @property
    def state_path(self) -> Optional[Path]:
        """Directory holding the change-detection database."""
        if self.workspace_root is None:
            return None
        path = Path(self.state_dir)
        if not path.is_absolute():
            path = Path(self.workspace_root) / path
        return path


def _split_list(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_embedding_config() -> EmbeddingConfig:
    """Build the embedding provider config selected by EMBEDDING_PROVIDER."""
    provider = os.getenv("EMBEDDING_PROVIDER", EmbeddingProviderKind.OLLAMA.value).lower()

    if provider == EmbeddingProviderKind.OLLAMA.value:
        return OllamaConfig(
            base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
            model=os.getenv("OLLAMA_MODEL", "nomic-embed-text"),
        )
    if provider == EmbeddingProviderKind.OPENAI.value:
        return OpenAIConfig(
            api_key=os.getenv("OPENAI_API_KEY", ""),
            model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
        )
    if provider == EmbeddingProviderKind.GEMINI.value:
        return GeminiConfig(
            api_key=os.getenv("GEMINI_API_KEY", ""),
            model=os.getenv("GEMINI_EMBEDDING_MODEL", "text-embedding-004"),
        )

    raise ConfigurationError(f"Unknown embedding provider: {provider}")


def load_vector_store_config() -> VectorStoreConfig:
    """Build the vector store config selected by VECTOR_STORE."""
    store = os.getenv("VECTOR_STORE", VectorStoreKind.QDRANT.value).lower()

    if store == VectorStoreKind.QDRANT.value:
        return QdrantConfig(
            url=os.getenv("QDRANT_URL", "http://localhost:6333"),
            api_key=os.getenv("QDRANT_API_KEY") or None,
        )
    if store == VectorStoreKind.PINECONE.value:
        return PineconeConfig(
            api_key=os.getenv("PINECONE_API_KEY", ""),
            cloud=os.getenv("PINECONE_CLOUD", "aws"),
            region=os.getenv("PINECONE_REGION", "us-east-1"),
            namespace=os.getenv("PINECONE_NAMESPACE", ""),
        )
    if store == VectorStoreKind.MEMORY.value:
        return MemoryStoreConfig()

    raise ConfigurationError(f"Unknown vector store: {store}")


def load_config(env_file: Optional[str] = None, workspace_root: Optional[str] = None) -> IndexerConfig:
    """
    Load configuration from the environment.

    Args:
        env_file: Explicit .env path; by default python-dotenv searches upwards
            from the working directory.
        workspace_root: Overrides SEMANTIC_INDEX_WORKSPACE when given.

    Returns:
        A fully populated IndexerConfig.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    indexing = IndexingSettings(
        max_files=_int_env("INDEXING_MAX_FILES", 1000),
        include_extensions=_split_list(os.getenv("INDEXING_INCLUDE_EXTENSIONS")),
        exclude_patterns=_split_list(os.getenv("INDEXING_EXCLUDE_PATTERNS")),
        reindex_on_revision_change=_bool_env("INDEXING_REINDEX_ON_REVISION_CHANGE", False),
        connection_retries=_int_env("INDEXING_CONNECTION_RETRIES", 3),
        connection_retry_delay=_float_env("INDEXING_CONNECTION_RETRY_DELAY", 1.0),
    )

    return IndexerConfig(
        workspace_root=workspace_root or os.getenv("SEMANTIC_INDEX_WORKSPACE") or None,
        collection_name=os.getenv("SEMANTIC_INDEX_COLLECTION", "codebase"),
        embedding=load_embedding_config(),
        vector_store=load_vector_store_config(),
        indexing=indexing,
        state_dir=os.getenv("SEMANTIC_INDEX_STATE_DIR", ".semantic_index"),
        request_timeout=_float_env("EMBEDDING_REQUEST_TIMEOUT", 30.0),
        search_limit=_int_env("SEARCH_LIMIT", 10),
        search_threshold=_float_env("SEARCH_THRESHOLD", 0.1),
    )
