"""
File discovery for indexing runs.

Walks the workspace in a stable order and returns relative POSIX paths that
pass the exclude globs and the include-extension list, capped at a maximum
file count.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Set

import pathspec

logger = logging.getLogger(__name__)


class GlobFilter:
    """Set of gitwildmatch patterns; a pattern that fails to compile never matches."""

    def __init__(self, patterns: Iterable[str]):
        self._specs: List[pathspec.PathSpec] = []
        for pattern in patterns:
            try:
                self._specs.append(pathspec.PathSpec.from_lines("gitwildmatch", [pattern]))
            except ValueError as e:
                logger.warning(f"Ignoring malformed exclude pattern {pattern!r}: {e}")

    def matches(self, relative_path: str) -> bool:
        return any(spec.match_file(relative_path) for spec in self._specs)


def normalize_extensions(extensions: Optional[Iterable[str]]) -> Set[str]:
    """'*.ts', '.ts' and 'TS' all become '.ts'."""
    normalized = set()
    for ext in extensions or []:
        ext = ext.strip().lower().lstrip("*").lstrip(".")
        if ext:
            normalized.add(f".{ext}")
    return normalized


def discover_files(root: str,
                   include_extensions: Optional[Iterable[str]] = None,
                   exclude_patterns: Optional[Iterable[str]] = None,
                   max_files: int = 1000) -> List[str]:
    """
    Enumerate candidate files under root.

    Args:
        root: Workspace directory.
        include_extensions: Extensions to keep; empty or None keeps every file.
        exclude_patterns: gitwildmatch globs, checked before extensions.
        max_files: Stop after this many files.

    Returns:
        Relative POSIX paths in sorted walk order.
    """
    root_path = Path(root)
    excludes = GlobFilter(exclude_patterns or [])
    extensions = normalize_extensions(include_extensions)
    found: List[str] = []

    for dirpath, dirnames, filenames in os.walk(root_path):
        rel_dir = Path(dirpath).relative_to(root_path).as_posix()
        prefix = "" if rel_dir == "." else f"{rel_dir}/"

        # Prune excluded directories so their contents are never walked
        dirnames[:] = sorted(
            d for d in dirnames if not excludes.matches(f"{prefix}{d}/")
        )

        for filename in sorted(filenames):
            rel_path = f"{prefix}{filename}"
            if excludes.matches(rel_path):
                continue
            if extensions and Path(filename).suffix.lower() not in extensions:
                continue

            found.append(rel_path)
            if len(found) >= max_files:
                logger.info(f"Reached the limit of {max_files} files, stopping discovery")
                return found

    return found
