"""Repository revision and identity lookup via GitPython."""

import hashlib
import logging
from pathlib import Path
from typing import Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

logger = logging.getLogger(__name__)


def generate_repo_id(workspace_root: str, remote_url: Optional[str] = None) -> str:
    """Short stable id from the remote URL, or the absolute path when there is none."""
    source = remote_url or str(Path(workspace_root).absolute())
    return hashlib.md5(source.encode()).hexdigest()[:12]


class GitRevisionProvider:
    """Answers "which commit is checked out" for a workspace."""

    def _open(self, workspace_root: str) -> Optional[Repo]:
        try:
            return Repo(workspace_root, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return None

    def get_current_revision(self, workspace_root: str) -> Optional[str]:
        """HEAD commit sha, or None outside a repository or before the first commit."""
        repo = self._open(workspace_root)
        if repo is None:
            return None
        try:
            return repo.head.commit.hexsha
        except (ValueError, GitCommandError) as e:
            logger.debug(f"No HEAD commit in {workspace_root}: {e}")
            return None
        finally:
            repo.close()

    def get_remote_url(self, workspace_root: str) -> Optional[str]:
        repo = self._open(workspace_root)
        if repo is None:
            return None
        try:
            if not repo.remotes:
                return None
            remote = repo.remotes.origin if "origin" in repo.remotes else repo.remotes[0]
            return next(iter(remote.urls), None)
        except (ValueError, GitCommandError) as e:
            logger.debug(f"Could not read remote of {workspace_root}: {e}")
            return None
        finally:
            repo.close()

    def get_repo_id(self, workspace_root: str) -> str:
        return generate_repo_id(workspace_root, self.get_remote_url(workspace_root))
