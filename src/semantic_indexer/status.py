"""
Index Status

The status of an index is never stored. It is recomputed on demand from the
persisted RepoIndexState, the current repository revision and the indexer's
run state. This module holds those types, the derivation, and the progress
events emitted while a run is in flight.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .cancellation import CancellationToken


class IndexStatus(Enum):
    """Freshness of the index as seen by callers."""
    NO_WORKSPACE = "no_workspace"
    NOT_INDEXED = "notIndexed"
    INDEXING = "indexing"
    READY = "ready"
    STALE = "stale"
    ERROR = "error"


@dataclass
class RepoIndexState:
    """Cached summary of what has been indexed for one repository."""
    repo_id: str
    vector_count: int = 0
    last_indexed_commit: Optional[str] = None


@dataclass
class IndexStats:
    vector_count: int
    last_commit: Optional[str]
    repo_id: str


@dataclass
class StatusReport:
    """Status object handed to UI and CLI layers."""
    status: IndexStatus
    stats: Optional[IndexStats] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"status": self.status.value}
        if self.stats is not None:
            result["stats"] = {
                "vectorCount": self.stats.vector_count,
                "lastCommit": self.stats.last_commit,
                "repoId": self.stats.repo_id,
            }
        if self.message:
            result["message"] = self.message
        return result


def derive_index_status(has_workspace: bool,
                        is_indexing: bool,
                        repo_state: Optional[RepoIndexState],
                        current_revision: Optional[str],
                        last_error: Optional[str] = None) -> IndexStatus:
    """
    Compute the index status. Pure; reads nothing but its arguments.

    Args:
        has_workspace: Whether a workspace folder is open.
        is_indexing: Whether a run is in flight.
        repo_state: Stored summary for the repository, if any.
        current_revision: Current repository revision; None when it can't be
            resolved, in which case an index with vectors counts as ready.
        last_error: Message from the most recent failed run, None if it succeeded.
    """
    if not has_workspace:
        return IndexStatus.NO_WORKSPACE
    if is_indexing:
        return IndexStatus.INDEXING
    if last_error:
        return IndexStatus.ERROR
    if repo_state is None or repo_state.vector_count <= 0:
        return IndexStatus.NOT_INDEXED
    if current_revision is None or repo_state.last_indexed_commit == current_revision:
        return IndexStatus.READY
    return IndexStatus.STALE


class ProgressEventType(Enum):
    STARTED = "started"
    FILE_PROCESSED = "file-processed"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class ProgressEvent:
    """Notification emitted to progress listeners during a run."""
    type: ProgressEventType
    processed: int = 0
    total: int = 0
    file_path: Optional[str] = None
    message: Optional[str] = None


class IndexingRunState:
    """
    In-flight flag for full indexing runs, owned by one indexer.

    ``try_start`` is the only way into the indexing state and ``finish`` the
    only way out; a second ``try_start`` while a run is active is refused.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._token: Optional[CancellationToken] = None
        self._last_error: Optional[str] = None

    @property
    def is_indexing(self) -> bool:
        with self._lock:
            return self._token is not None

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    def try_start(self) -> Optional[CancellationToken]:
        """Enter the indexing state. Returns None if a run is already active."""
        with self._lock:
            if self._token is not None:
                return None
            self._token = CancellationToken()
            self._last_error = None
            return self._token

    def cancel(self) -> bool:
        """Request cancellation of the active run. False if nothing is running."""
        with self._lock:
            if self._token is None:
                return False
            self._token.cancel()
            return True

    def finish(self, error: Optional[str] = None):
        """Leave the indexing state, recording the failure message if any."""
        with self._lock:
            self._token = None
            self._last_error = error

    def clear_error(self):
        with self._lock:
            self._last_error = None
