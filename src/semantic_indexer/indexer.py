"""
Main Codebase Indexer

This module orchestrates indexing of a workspace: it discovers files, skips
the ones whose content hash is unchanged, and pushes the rest through
chunking, embedding and the vector store. File hashes are recorded only after
a file's points have been written, so an interrupted run never marks a file
as indexed when it isn't.

Only one full run may be active per indexer. Single-file updates run outside
that lock but never process the same path twice at once.
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Set

import tenacity

from .cancellation import CancellationToken
from .chunker import Chunk, CodeChunker
from .config import IndexerConfig, IndexingSettings
from .discovery import GlobFilter, discover_files, normalize_extensions
from .embeddings import EmbeddingProvider, create_embedding_provider
from .errors import (
    EmbeddingError,
    IndexerError,
    IndexingCancelledError,
    IndexingError,
    VectorStoreError,
)
from .git_revision import GitRevisionProvider
from .index_state import IndexStateStore
from .retriever import ContextRetriever, RetrievalConfig, SearchResult
from .status import (
    IndexingRunState,
    IndexStats,
    IndexStatus,
    ProgressEvent,
    ProgressEventType,
    RepoIndexState,
    StatusReport,
    derive_index_status,
)
from .storage import COSINE, Point, VectorStore, create_vector_store

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]

STATE_DB_NAME = "index_state.db"


class FileOutcome(Enum):
    INDEXED = "indexed"
    UNCHANGED = "unchanged"
    REMOVED = "removed"
    FAILED = "failed"
    IGNORED = "ignored"
    BUSY = "busy"


@dataclass
class FileResult:
    """What happened to one file."""
    file_path: str
    outcome: FileOutcome
    points_written: int = 0
    error: Optional[str] = None


class RunOutcome(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ALREADY_INDEXING = "already_indexing"
    NO_WORKSPACE = "no_workspace"


@dataclass
class IndexingResult:
    """Statistics from a full indexing run."""
    outcome: RunOutcome
    files_discovered: int = 0
    files_indexed: int = 0
    files_unchanged: int = 0
    files_failed: int = 0
    files_busy: int = 0
    points_written: int = 0
    errors: List[str] = None
    duration_seconds: float = 0.0

    def __post_init__(self):
        if self.errors is None:
            self.errors = []

    @property
    def files_processed(self) -> int:
        return self.files_indexed + self.files_unchanged

    def summary(self) -> str:
        return f"{self.files_indexed} files indexed, {self.files_failed} skipped/failed"

    def record(self, file_result: FileResult):
        if file_result.outcome is FileOutcome.INDEXED:
            self.files_indexed += 1
            self.points_written += file_result.points_written
        elif file_result.outcome is FileOutcome.UNCHANGED:
            self.files_unchanged += 1
        elif file_result.outcome is FileOutcome.BUSY:
            self.files_busy += 1
        elif file_result.outcome is FileOutcome.FAILED:
            self.files_failed += 1
            if file_result.error:
                self.errors.append(file_result.error)


class CodebaseIndexer:
    """Indexes one workspace into one vector store collection."""

    def __init__(self,
                 workspace_root: Optional[str],
                 embedding_provider: EmbeddingProvider,
                 vector_store: VectorStore,
                 state_store: Optional[IndexStateStore] = None,
                 chunker: Optional[CodeChunker] = None,
                 revision_provider: Optional[GitRevisionProvider] = None,
                 settings: Optional[IndexingSettings] = None,
                 collection_name: str = "codebase",
                 retrieval_config: Optional[RetrievalConfig] = None):

        self.workspace_root = Path(workspace_root).resolve() if workspace_root else None
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store
        self.settings = settings or IndexingSettings()
        self.collection_name = collection_name
        self.revision_provider = revision_provider or GitRevisionProvider()

        if chunker is None:
            chunker = CodeChunker()
            chunker.initialize()
        self.chunker = chunker

        if state_store is None and self.workspace_root is not None:
            state_store = IndexStateStore(str(self.workspace_root / ".semantic_index" / STATE_DB_NAME))
        self.state_store = state_store

        self.repo_id = (
            self.revision_provider.get_repo_id(str(self.workspace_root))
            if self.workspace_root is not None else None
        )

        self.retriever = ContextRetriever(
            embedding_provider, vector_store, collection_name, retrieval_config
        )

        self._run_state = IndexingRunState()
        self._listeners: List[ProgressListener] = []
        self._inflight: Set[str] = set()
        self._inflight_lock = threading.Lock()
        self._collection_lock = threading.Lock()
        self._exclude_filter = GlobFilter(self.settings.exclude_patterns)
        self._extensions = normalize_extensions(self.settings.include_extensions)

        if self.workspace_root is not None:
            logger.info(f"Initialized indexer for {self.workspace_root} (repo {self.repo_id})")

    # Progress notifications

    def add_progress_listener(self, listener: ProgressListener):
        self._listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: ProgressEvent):
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Progress listener failed on '{event.type.value}': {e}")

    # Connections

    def validate_connections(self, token: Optional[CancellationToken] = None):
        """
        Check that the embedding provider and the vector store answer.

        Failed checks are retried with exponential backoff, as configured by
        ``connection_retries`` and ``connection_retry_delay``.

        Raises:
            EmbeddingError or VectorStoreError: still unreachable after the last attempt.
            IndexingCancelledError: cancelled while checking or backing off.
        """
        token = token or CancellationToken()
        retrying = tenacity.Retrying(
            retry=tenacity.retry_if_exception_type((EmbeddingError, VectorStoreError)),
            stop=tenacity.stop_after_attempt(self.settings.connection_retries),
            wait=tenacity.wait_exponential(multiplier=self.settings.connection_retry_delay, max=30),
            sleep=token.wait,
            before_sleep=_log_connection_retry,
            reraise=True,
        )
        retrying(self._check_connections, token)

    def _check_connections(self, token: CancellationToken):
        token.raise_if_cancelled()
        self.embedding_provider.check_connection(token)
        self.vector_store.check_connection()
        logger.debug("Embedding provider and vector store are reachable")

    # Full runs

    @property
    def is_indexing(self) -> bool:
        return self._run_state.is_indexing

    def index_workspace(self, force: bool = False) -> IndexingResult:
        """
        Index every discovered file that changed since it was last indexed.

        Args:
            force: Reprocess every file regardless of stored hashes.

        Returns:
            IndexingResult. Its outcome is ALREADY_INDEXING (nothing was done)
            when another run is active, CANCELLED when ``cancel`` stopped it.

        Raises:
            IndexingError: the vector store or embedding provider failed in a
                way that stops the whole run, or no file could be indexed.
        """
        if self.workspace_root is None:
            logger.warning("No workspace folder is open, nothing to index")
            return IndexingResult(RunOutcome.NO_WORKSPACE)

        token = self._run_state.try_start()
        if token is None:
            logger.warning("Indexing already in progress, request rejected")
            return IndexingResult(RunOutcome.ALREADY_INDEXING)

        start_time = time.time()
        result = IndexingResult(RunOutcome.COMPLETED)
        logger.info(f"Starting indexing of {self.workspace_root}")
        self._emit(ProgressEvent(ProgressEventType.STARTED, message="Indexing started"))

        try:
            self.validate_connections(token)
            self._ensure_collection(token)

            files = discover_files(
                str(self.workspace_root),
                self.settings.include_extensions,
                self.settings.exclude_patterns,
                self.settings.max_files,
            )
            result.files_discovered = len(files)
            logger.info(f"Found {len(files)} files to scan")

            revision = self._current_revision()
            force_all = force or self._index_was_cleared()

            for position, rel_path in enumerate(files, 1):
                token.raise_if_cancelled()
                result.record(self._process_file(rel_path, revision, token, force_all))
                self._emit(ProgressEvent(
                    ProgressEventType.FILE_PROCESSED,
                    processed=position,
                    total=len(files),
                    file_path=rel_path,
                ))

            if result.files_failed and result.files_processed == 0:
                raise IndexerError(result.errors[-1])

            self.state_store.update_last_indexed_timestamp()
            self._refresh_repo_state(revision)

        except IndexingCancelledError:
            result.outcome = RunOutcome.CANCELLED
            result.duration_seconds = time.time() - start_time
            self._finish_cancelled(result)
            return result

        except Exception as e:
            result.duration_seconds = time.time() - start_time
            message = self._failure_message(result, e)
            logger.error(f"Indexing failed: {message}")
            self._run_state.finish(error=message)
            self._emit(ProgressEvent(
                ProgressEventType.ERROR,
                processed=result.files_processed,
                total=result.files_discovered,
                message=message,
            ))
            raise IndexingError(message, result) from e

        except BaseException:
            # KeyboardInterrupt or SystemExit must not leave the run marked active
            logger.error("Indexing interrupted")
            self._run_state.finish(error="Indexing interrupted")
            raise

        result.duration_seconds = time.time() - start_time
        self._run_state.finish()
        logger.info(f"Indexing complete: {result.summary()}, "
                    f"{result.files_unchanged} unchanged, {result.duration_seconds:.2f}s")
        self._emit(ProgressEvent(
            ProgressEventType.COMPLETED,
            processed=result.files_processed,
            total=result.files_discovered,
            message=result.summary(),
        ))
        return result

    def _index_was_cleared(self) -> bool:
        """No record of any earlier run, so stored file hashes can't be trusted."""
        return (self.state_store.get_last_indexed_timestamp() is None
                and self.state_store.get_repo_state(self.repo_id) is None)

    def cancel(self) -> bool:
        """Ask the active run to stop after its current step."""
        requested = self._run_state.cancel()
        if requested:
            logger.info("Cancellation requested")
        return requested

    def _finish_cancelled(self, result: IndexingResult):
        # Files committed before the cancel stay; only the count moves
        if result.files_indexed:
            try:
                self._refresh_repo_state(keep_commit=True)
            except VectorStoreError as e:
                logger.error(f"Could not refresh index state after cancellation: {e}")
        self._run_state.finish()
        logger.info(f"Indexing cancelled: {result.summary()}")
        self._emit(ProgressEvent(
            ProgressEventType.CANCELLED,
            processed=result.files_processed,
            total=result.files_discovered,
            message="Indexing cancelled",
        ))

    @staticmethod
    def _failure_message(result: IndexingResult, error: Exception) -> str:
        if result.files_indexed > 0:
            return f"Indexing stopped after {result.summary()}: {error}"
        return str(error)

    # Single files

    def update_file(self, path: str, token: Optional[CancellationToken] = None) -> FileResult:
        """
        Bring one file's points up to date, e.g. after a file-watch event.

        A path that no longer exists is removed from the index. Runs even while
        a full run is active; returns a BUSY result if the same path is
        already being processed.
        """
        rel_path = self._relative_path(path)
        if not self._is_indexable(rel_path):
            return FileResult(rel_path, FileOutcome.IGNORED)
        if not self._claim(rel_path):
            logger.debug(f"{rel_path} is already being processed")
            return FileResult(rel_path, FileOutcome.BUSY)

        try:
            token = token or CancellationToken()
            if not (self.workspace_root / rel_path).is_file():
                file_result = self._remove(rel_path)
            else:
                self._ensure_collection(token)
                file_result = self._index_file(rel_path, self._current_revision(), token, force=False)

            if file_result.outcome in (FileOutcome.INDEXED, FileOutcome.REMOVED):
                self._refresh_repo_state(keep_commit=True)
            return file_result
        finally:
            self._release(rel_path)

    def remove_file(self, path: str) -> FileResult:
        """Delete every point and the hash record for a file."""
        rel_path = self._relative_path(path)
        if not self._claim(rel_path):
            return FileResult(rel_path, FileOutcome.BUSY)
        try:
            file_result = self._remove(rel_path)
            self._refresh_repo_state(keep_commit=True)
            return file_result
        finally:
            self._release(rel_path)

    def _remove(self, rel_path: str) -> FileResult:
        if self.collection_name in self.vector_store.list_collections():
            self.vector_store.delete_where(self.collection_name, {"file_path": rel_path})
        self.state_store.remove_file_hash(rel_path)
        logger.info(f"Removed {rel_path} from the index")
        return FileResult(rel_path, FileOutcome.REMOVED)

    def _process_file(self, rel_path: str, revision: Optional[str],
                      token: CancellationToken, force: bool) -> FileResult:
        if not self._claim(rel_path):
            logger.debug(f"{rel_path} is being updated elsewhere, skipping")
            return FileResult(rel_path, FileOutcome.BUSY)
        try:
            return self._index_file(rel_path, revision, token, force)
        finally:
            self._release(rel_path)

    def _index_file(self, rel_path: str, revision: Optional[str],
                    token: CancellationToken, force: bool) -> FileResult:
        """Read, chunk, embed and store one file.

        File-level problems come back as a FAILED result. Vector store errors
        and cancellation propagate.
        """
        full_path = self.workspace_root / rel_path
        try:
            size = full_path.stat().st_size
            if size > self.settings.max_file_size:
                return self._failed(rel_path, f"file too large ({size} bytes)")
            data = full_path.read_bytes()
            content = data.decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return self._failed(rel_path, f"could not read file: {e}")

        content_hash = hashlib.sha256(data).hexdigest()
        if not force and not self._needs_indexing(rel_path, content_hash, revision):
            return FileResult(rel_path, FileOutcome.UNCHANGED)

        try:
            chunks = self.chunker.split(content, rel_path)
        except Exception as e:
            return self._failed(rel_path, f"chunking failed: {e}")

        points = []
        for chunk in chunks:
            vector = self.embedding_provider.generate_embedding(self._prepare_chunk_text(chunk), token)
            if vector is None:
                logger.warning(f"Dropping chunk {rel_path}:{chunk.line_start}-{chunk.line_end}, no embedding")
                continue
            points.append(Point.from_chunk(chunk, vector))

        if chunks and not points:
            return self._failed(rel_path, "no embeddings could be generated")

        token.raise_if_cancelled()

        # Old points go first so no stale chunk outlives the new hash
        self.vector_store.delete_where(self.collection_name, {"file_path": rel_path})
        if points:
            self.vector_store.upsert(self.collection_name, points)
        self.state_store.update_file_hash(rel_path, content_hash, revision)

        logger.debug(f"Indexed {rel_path}: {len(points)}/{len(chunks)} chunks")
        return FileResult(rel_path, FileOutcome.INDEXED, points_written=len(points))

    def _needs_indexing(self, rel_path: str, content_hash: str, revision: Optional[str]) -> bool:
        record = self.state_store.get_file_record(rel_path)
        if record is None or record.content_hash != content_hash:
            return True
        if self.settings.reindex_on_revision_change and revision is not None:
            return record.last_indexed_revision != revision
        return False

    @staticmethod
    def _failed(rel_path: str, reason: str) -> FileResult:
        logger.warning(f"Skipping {rel_path}: {reason}")
        return FileResult(rel_path, FileOutcome.FAILED, error=f"{rel_path}: {reason}")

    def _prepare_chunk_text(self, chunk: Chunk) -> str:
        """Text sent to the embedding provider for a chunk."""
        return f"File: {chunk.file_path}\nLines: {chunk.line_start}-{chunk.line_end}\n\n{chunk.content}"

    def _claim(self, rel_path: str) -> bool:
        with self._inflight_lock:
            if rel_path in self._inflight:
                return False
            self._inflight.add(rel_path)
            return True

    def _release(self, rel_path: str):
        with self._inflight_lock:
            self._inflight.discard(rel_path)

    def _relative_path(self, path: str) -> str:
        if self.workspace_root is None:
            raise IndexerError("No workspace folder is open")
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.workspace_root / candidate
        try:
            return candidate.resolve().relative_to(self.workspace_root).as_posix()
        except ValueError:
            raise IndexerError(f"{path} is outside the workspace {self.workspace_root}")

    def _is_indexable(self, rel_path: str) -> bool:
        if self._exclude_filter.matches(rel_path):
            return False
        return not self._extensions or Path(rel_path).suffix.lower() in self._extensions

    # Collection and repository state

    def _ensure_collection(self, token: CancellationToken):
        """Create the collection sized for the provider, or check the existing one fits."""
        dimension = self.embedding_provider.get_embedding_dimension(token)

        # A sweep and a single-file update may both get here first
        with self._collection_lock:
            if self.collection_name not in self.vector_store.list_collections():
                self.vector_store.create_collection(self.collection_name, dimension, COSINE)
                return

        existing = self.vector_store.collection_dimension(self.collection_name)
        if existing is not None and existing != dimension:
            raise VectorStoreError(
                f"Collection '{self.collection_name}' holds {existing}-dimensional vectors "
                f"but the embedding provider produces {dimension}"
            )

    def _current_revision(self) -> Optional[str]:
        return self.revision_provider.get_current_revision(str(self.workspace_root))

    def _refresh_repo_state(self, revision: Optional[str] = None, keep_commit: bool = False):
        vector_count = self.vector_store.count(self.collection_name)
        if keep_commit:
            previous = self.state_store.get_repo_state(self.repo_id)
            revision = previous.last_indexed_commit if previous else None
        self.state_store.update_repo_state(RepoIndexState(
            repo_id=self.repo_id,
            vector_count=vector_count,
            last_indexed_commit=revision,
        ))

    def get_status(self) -> StatusReport:
        """Current status, recomputed from stored state."""
        if self.workspace_root is None:
            return StatusReport(IndexStatus.NO_WORKSPACE, message="No workspace folder is open")

        repo_state = self.state_store.get_repo_state(self.repo_id)
        current_revision = self._current_revision()
        last_error = self._run_state.last_error
        status = derive_index_status(
            has_workspace=True,
            is_indexing=self._run_state.is_indexing,
            repo_state=repo_state,
            current_revision=current_revision,
            last_error=last_error,
        )

        stats = None
        if repo_state is not None:
            stats = IndexStats(
                vector_count=repo_state.vector_count,
                last_commit=repo_state.last_indexed_commit,
                repo_id=self.repo_id,
            )

        message = None
        if status is IndexStatus.ERROR:
            message = last_error
        elif status is IndexStatus.STALE:
            indexed_at = (repo_state.last_indexed_commit or "unknown")[:7]
            message = f"Index was built at {indexed_at}, repository is now at {current_revision[:7]}"
        elif status is IndexStatus.NOT_INDEXED:
            message = "Workspace has not been indexed"

        return StatusReport(status, stats, message)

    def clear_index(self):
        """Forget what has been indexed so the next run reprocesses every file."""
        if self._run_state.is_indexing:
            raise IndexerError("Cannot clear the index while indexing is in progress")
        if self.state_store is None:
            raise IndexerError("No workspace folder is open")
        self.state_store.clear_index()
        self.state_store.remove_repo_state(self.repo_id)
        self._run_state.clear_error()
        logger.info("Index state cleared")

    def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        return self.retriever.search(query, limit)


def _log_connection_retry(retry_state: tenacity.RetryCallState):
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"Connection check attempt {retry_state.attempt_number} failed: {exc}")


def create_indexer(config: IndexerConfig) -> CodebaseIndexer:
    """Convenience function to build an indexer from configuration."""
    state_store = None
    if config.state_path is not None:
        state_store = IndexStateStore(str(config.state_path / STATE_DB_NAME))

    return CodebaseIndexer(
        workspace_root=config.workspace_root,
        embedding_provider=create_embedding_provider(config.embedding, config.request_timeout),
        vector_store=create_vector_store(config.vector_store),
        state_store=state_store,
        settings=config.indexing,
        collection_name=config.collection_name,
        retrieval_config=RetrievalConfig(
            max_results=config.search_limit,
            min_similarity=config.search_threshold,
        ),
    )
