"""
Change-Detection Store

SQLite-backed record of what has been indexed: one row per file with the
content hash and revision it was indexed at, a global "last indexed"
timestamp, and the per-repository summary used for status derivation.
"""

import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .status import RepoIndexState

LAST_INDEXED_KEY = "last_indexed_at"


@dataclass
class FileIndexRecord:
    file_path: str
    content_hash: str
    last_indexed_revision: Optional[str] = None


class IndexStateStore:
    """Persistent file hashes and repository index state."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_database(self):
        """Create tables if this is a fresh database."""
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS file_index (
                    file_path TEXT PRIMARY KEY,
                    content_hash TEXT NOT NULL,
                    last_indexed_revision TEXT,
                    updated_at REAL NOT NULL
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS repo_index (
                    repo_id TEXT PRIMARY KEY,
                    vector_count INTEGER NOT NULL,
                    last_indexed_commit TEXT,
                    updated_at REAL NOT NULL
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS index_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            ''')
            conn.commit()
        finally:
            conn.close()

    def get_file_record(self, file_path: str) -> Optional[FileIndexRecord]:
        conn = self._connect()
        try:
            row = conn.execute(
                'SELECT content_hash, last_indexed_revision FROM file_index WHERE file_path = ?',
                (file_path,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return FileIndexRecord(file_path=file_path, content_hash=row[0], last_indexed_revision=row[1])

    def get_file_hash(self, file_path: str) -> Optional[str]:
        record = self.get_file_record(file_path)
        return record.content_hash if record else None

    def update_file_hash(self, file_path: str, content_hash: str, revision: Optional[str] = None):
        """Record that file_path was indexed with this content."""
        conn = self._connect()
        try:
            conn.execute(
                'INSERT OR REPLACE INTO file_index '
                '(file_path, content_hash, last_indexed_revision, updated_at) VALUES (?, ?, ?, ?)',
                (file_path, content_hash, revision, time.time())
            )
            conn.commit()
        finally:
            conn.close()

    def remove_file_hash(self, file_path: str):
        conn = self._connect()
        try:
            conn.execute('DELETE FROM file_index WHERE file_path = ?', (file_path,))
            conn.commit()
        finally:
            conn.close()

    def get_last_indexed_timestamp(self) -> Optional[float]:
        conn = self._connect()
        try:
            row = conn.execute(
                'SELECT value FROM index_meta WHERE key = ?', (LAST_INDEXED_KEY,)
            ).fetchone()
        finally:
            conn.close()
        return float(row[0]) if row else None

    def update_last_indexed_timestamp(self, timestamp: Optional[float] = None):
        conn = self._connect()
        try:
            conn.execute(
                'INSERT OR REPLACE INTO index_meta (key, value) VALUES (?, ?)',
                (LAST_INDEXED_KEY, repr(timestamp if timestamp is not None else time.time()))
            )
            conn.commit()
        finally:
            conn.close()

    def clear_index(self):
        """Forget the last full index.

        File rows stay and are overwritten the next time each file is indexed.
        """
        conn = self._connect()
        try:
            conn.execute('DELETE FROM index_meta WHERE key = ?', (LAST_INDEXED_KEY,))
            conn.commit()
        finally:
            conn.close()

    def get_repo_state(self, repo_id: str) -> Optional[RepoIndexState]:
        conn = self._connect()
        try:
            row = conn.execute(
                'SELECT vector_count, last_indexed_commit FROM repo_index WHERE repo_id = ?',
                (repo_id,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return RepoIndexState(repo_id=repo_id, vector_count=row[0], last_indexed_commit=row[1])

    def update_repo_state(self, state: RepoIndexState):
        conn = self._connect()
        try:
            conn.execute(
                'INSERT OR REPLACE INTO repo_index '
                '(repo_id, vector_count, last_indexed_commit, updated_at) VALUES (?, ?, ?, ?)',
                (state.repo_id, state.vector_count, state.last_indexed_commit, time.time())
            )
            conn.commit()
        finally:
            conn.close()

    def remove_repo_state(self, repo_id: str):
        conn = self._connect()
        try:
            conn.execute('DELETE FROM repo_index WHERE repo_id = ?', (repo_id,))
            conn.commit()
        finally:
            conn.close()
