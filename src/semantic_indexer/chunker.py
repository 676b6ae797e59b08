"""
Semantic Code Chunking

This module splits source files into semantically meaningful units for vector
indexing. Supported languages are parsed with tree-sitter and split at their
top-level declarations; everything else (and anything that fails to parse) is
split into fixed-size overlapping line windows.
"""

import hashlib
import importlib
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from tree_sitter import Language, Parser, Query, QueryCursor

logger = logging.getLogger(__name__)

# Fallback window geometry: 50-line windows, 10 lines shared between neighbours.
WINDOW_LINES = 50
WINDOW_OVERLAP = 10
WINDOW_STEP = WINDOW_LINES - WINDOW_OVERLAP

_TS_QUERY = """
(function_declaration) @func
(method_definition) @method
(class_declaration) @class
(interface_declaration) @interface
"""

_JS_QUERY = """
(function_declaration) @func
(method_definition) @method
(class_declaration) @class
"""

_PY_QUERY = """
(function_definition) @func
(class_definition) @class
"""

_JAVA_QUERY = """
(class_declaration) @class
(method_declaration) @method
(interface_declaration) @interface
"""

_RUST_QUERY = """
(function_item) @func
(struct_item) @struct
(trait_item) @trait
(impl_item) @impl
"""

_GO_QUERY = """
(function_declaration) @func
(method_declaration) @method
(type_declaration) @type
"""

# name -> (grammar module, language function, declaration query)
GRAMMARS: Dict[str, Tuple[str, str, str]] = {
    "typescript": ("tree_sitter_typescript", "language_typescript", _TS_QUERY),
    "tsx": ("tree_sitter_typescript", "language_tsx", _TS_QUERY),
    "javascript": ("tree_sitter_javascript", "language", _JS_QUERY),
    "python": ("tree_sitter_python", "language", _PY_QUERY),
    "java": ("tree_sitter_java", "language", _JAVA_QUERY),
    "rust": ("tree_sitter_rust", "language", _RUST_QUERY),
    "go": ("tree_sitter_go", "language", _GO_QUERY),
}

EXTENSION_GRAMMARS: Dict[str, str] = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".java": "java",
    ".rs": "rust",
    ".go": "go",
}


def chunk_id(file_path: str, line_start: int, line_end: int) -> str:
    """Stable point id for a span of a file."""
    digest = hashlib.md5(f"{file_path}:{line_start}:{line_end}".encode()).hexdigest()
    return str(uuid.UUID(digest))


@dataclass
class Chunk:
    """A contiguous span of a file chosen as the unit of embedding."""
    id: str
    file_path: str
    content: str
    line_start: int
    line_end: int

    @classmethod
    def create(cls, file_path: str, content: str, line_start: int, line_end: int) -> 'Chunk':
        """Create a chunk with an id derived from its path and position."""
        return cls(
            id=chunk_id(file_path, line_start, line_end),
            file_path=file_path,
            content=content,
            line_start=line_start,
            line_end=line_end,
        )


@dataclass
class _Grammar:
    language: Language
    parser: Parser
    query: Query


class CodeChunker:
    """Splits file content into chunks, structurally where a grammar is loaded."""

    def __init__(self):
        self._grammars: Dict[str, _Grammar] = {}
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self):
        """Load every grammar whose package is installed.

        Until this runs, ``split`` uses line windows for every file.
        """
        for name, (module_name, function_name, query_source) in GRAMMARS.items():
            try:
                module = importlib.import_module(module_name)
                language = Language(getattr(module, function_name)())
                self._grammars[name] = _Grammar(
                    language=language,
                    parser=Parser(language),
                    query=Query(language, query_source),
                )
            except Exception as e:
                logger.warning(f"Grammar '{name}' unavailable, using line windows: {e}")

        self._initialized = True
        logger.info(f"Chunker initialized with {len(self._grammars)} grammars")

    def supports(self, file_path: str) -> bool:
        """Whether the file would be split structurally."""
        return self._grammar_for(file_path) is not None

    def split(self, content: str, file_path: str) -> List[Chunk]:
        """Split content into chunks. Never raises for malformed source."""
        grammar = self._grammar_for(file_path)
        if grammar is not None:
            try:
                chunks = self._split_structural(content, file_path, grammar)
            except Exception as e:
                logger.warning(f"Structural split failed for {file_path}, using line windows: {e}")
                chunks = []
            if chunks:
                return chunks

        return self._split_lines(content, file_path)

    def _grammar_for(self, file_path: str) -> Optional[_Grammar]:
        if not self._initialized:
            return None
        name = EXTENSION_GRAMMARS.get(Path(file_path).suffix.lower())
        if name is None:
            return None
        return self._grammars.get(name)

    def _split_structural(self, content: str, file_path: str, grammar: _Grammar) -> List[Chunk]:
        tree = grammar.parser.parse(content.encode("utf-8"))
        if tree.root_node.has_error:
            logger.debug(f"Syntax errors in {file_path}, using line windows for the whole file")
            return []

        captures = QueryCursor(grammar.query).captures(tree.root_node)
        nodes = {}
        for captured in captures.values():
            for node in captured:
                nodes[(node.start_byte, node.end_byte)] = node

        # Outer declarations sort ahead of anything nested inside them
        ordered = sorted(nodes.values(), key=lambda n: (n.start_byte, -n.end_byte))

        lines = content.split("\n")
        chunks = []
        consumed_to = -1
        for node in ordered:
            if node.start_byte < consumed_to:
                continue
            consumed_to = node.end_byte

            start_row = node.start_point[0]
            end_row = node.end_point[0]
            text = "\n".join(lines[start_row:end_row + 1]).strip()
            if text:
                chunks.append(Chunk.create(file_path, text, start_row + 1, end_row + 1))

        return chunks

    def _split_lines(self, content: str, file_path: str) -> List[Chunk]:
        lines = content.split("\n")
        total = len(lines)
        chunks = []

        for start in range(0, total, WINDOW_STEP):
            end = min(start + WINDOW_LINES, total)
            text = "\n".join(lines[start:end])
            if text.strip():
                chunks.append(Chunk.create(file_path, text, start + 1, end))
            if end >= total:
                break

        return chunks
