"""
Context manager — single entry point for retrieval-backed context.

Sits on top of the local vector store and turns raw search hits into
enriched, cached context for an LLM consumer:

* every hit gets a :class:`SemanticContext` (keywords, summary, related
  chunk ids, importance), cached in a bounded LRU;
* past interactions with overlapping wording are pulled from the
  :class:`~codememory.kb.memory_ledger.MemoryLedger`;
* a one-time :class:`~codememory.kb.project_orientation.ProjectContext`
  scan describes the workspace.

Prompt construction and network calls belong to the consumer; this module
only supplies the pieces and a budgeted text rendering of them.
"""

from __future__ import annotations

import logging
import os
import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from .local.chunks import CodeChunk, format_chunk_for_context
from .memory_ledger import MemoryEntry, MemoryLedger
from .project_orientation import ProjectContext, ProjectOrientation

if TYPE_CHECKING:
    from ..config import Config
    from .local.vector_store import LocalVectorStore, VectorSearchResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Keyword extraction & scoring tables
# ---------------------------------------------------------------------------

_IDENTIFIER_RE = re.compile(r"\b[a-zA-Z_][a-zA-Z0-9_]{2,}\b")

_STOPWORDS = frozenset({
    "var", "let", "const", "function", "class", "import", "export",
    "return", "if", "else", "for", "while",
})

MAX_IDENTIFIER_KEYWORDS = 10
RELATED_CHUNKS_PER_CONTEXT = 3
MAX_RELATED_MEMORIES = 5

_TYPE_DESCRIPTIONS: dict[str, str] = {
    "function": "Function",
    "class": "Class definition",
    "method": "Method",
    "module": "Module",
    "variable": "Variable declaration",
    "import": "Import statement",
}

_TYPE_WEIGHTS: dict[str, float] = {
    "module": 0.9,
    "class": 0.8,
    "function": 0.7,
    "method": 0.6,
    "variable": 0.4,
    "import": 0.3,
}
_BASE_IMPORTANCE = 0.5


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class SemanticContext:
    """Derived, cached view of one chunk."""

    chunk_id: str
    keywords: list[str] = field(default_factory=list)
    summary: str = ""
    related_chunks: list[str] = field(default_factory=list)
    importance: float = _BASE_IMPORTANCE


@dataclass
class RelevantContext:
    """Result of :meth:`ContextManager.get_relevant_context`."""

    chunks: list["VectorSearchResult"] = field(default_factory=list)
    project_info: Optional[ProjectContext] = None
    related_memories: list[MemoryEntry] = field(default_factory=list)


@dataclass
class CodeExplanationContext:
    """Unmerged material for explaining one chunk."""

    chunk: CodeChunk
    dependencies: list["VectorSearchResult"] = field(default_factory=list)
    usages: list["VectorSearchResult"] = field(default_factory=list)
    related_chunks: list["VectorSearchResult"] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def extract_keywords(chunk: CodeChunk) -> list[str]:
    """``[name, type, language]`` plus up to 10 distinct code identifiers."""
    keywords = [chunk.name, chunk.type, chunk.language]
    identifiers = [
        word for word in dict.fromkeys(_IDENTIFIER_RE.findall(chunk.content))
        if word.lower() not in _STOPWORDS
    ]
    keywords.extend(identifiers[:MAX_IDENTIFIER_KEYWORDS])
    return keywords


def summarize_chunk(chunk: CodeChunk) -> str:
    type_desc = _TYPE_DESCRIPTIONS.get(chunk.type, chunk.type)
    location = os.path.basename(chunk.filepath)
    return (
        f'{type_desc} "{chunk.name}" in {location} '
        f"(lines {chunk.start_line}-{chunk.end_line})"
    )


def chunk_importance(chunk: CodeChunk) -> float:
    """
    Heuristic importance in [0, 1].

    Type weight (module > class > function > method > variable > import,
    0.5 otherwise), +0.1 for a docstring, +0.1 past 50 lines and another
    +0.1 past 100 lines.
    """
    importance = _TYPE_WEIGHTS.get(chunk.type, _BASE_IMPORTANCE)
    if chunk.metadata.docstring:
        importance += 0.1
    lines = chunk.line_count
    if lines > 50:
        importance += 0.1
    if lines > 100:
        importance += 0.1
    return min(importance, 1.0)


# ---------------------------------------------------------------------------
# ContextManager
# ---------------------------------------------------------------------------

class ContextManager:
    """
    Assembles search results into enriched context and keeps the
    interaction ledger.

    Construction loads the ledger and scans the project once.  The vector
    store must already be initialised.

    Parameters
    ----------
    workspace_path:
        Workspace root directory.
    vector_store:
        Initialised :class:`~codememory.kb.local.vector_store.LocalVectorStore`.
    config:
        Optional :class:`~codememory.config.Config`; defaults apply when
        omitted.
    """

    def __init__(
        self,
        workspace_path: str,
        vector_store: "LocalVectorStore",
        config: Optional["Config"] = None,
    ) -> None:
        if config is None:
            from ..config import Config
            config = Config()
        self._workspace = os.path.abspath(workspace_path)
        self._store = vector_store
        self._default_top_k = config.DEFAULT_TOP_K
        self._cache_size = max(config.CONTEXT_CACHE_SIZE, 1)
        self._cache: OrderedDict[str, SemanticContext] = OrderedDict()

        self._ledger = MemoryLedger(
            os.path.join(self._workspace, config.STORAGE_DIR),
            max_entries=config.MAX_MEMORY_ENTRIES,
        )

        t0 = time.perf_counter()
        self._project_context = ProjectOrientation(
            self._workspace,
            vector_store,
            filter_indicators=config.PATTERN_INDICATOR_FILTER,
        ).get_context()
        logger.info(
            "[ContextManager] Ready in %.1fms — %d memories, languages=%s",
            (time.perf_counter() - t0) * 1000,
            len(self._ledger),
            self._project_context.language,
        )

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get_relevant_context(
        self, query: str, max_results: Optional[int] = None,
    ) -> RelevantContext:
        """
        Search for *query*, attach a :class:`SemanticContext` to every hit
        and collect up to 5 related past interactions.
        """
        k = self._default_top_k if max_results is None else max_results
        results = self._store.search(query, k)
        for result in results:
            result.context = self._get_or_create_semantic_context(result.chunk)

        return RelevantContext(
            chunks=results,
            project_info=self._project_context,
            related_memories=self._ledger.find_related(query, MAX_RELATED_MEMORIES),
        )

    def get_code_explanation_context(self, chunk: CodeChunk) -> CodeExplanationContext:
        """
        Gather dependency hits (3 per declared dependency), likely usages
        and related chunks for *chunk*.  The three lists are not merged.
        """
        dependencies: list["VectorSearchResult"] = []
        for dep in chunk.metadata.dependencies:
            dependencies.extend(self._store.search(dep, 3))

        usage_query = f"uses {chunk.name} from {os.path.basename(chunk.filepath)}"
        usages = self._store.search(usage_query, 10)
        related = self._store.get_related_chunks(chunk.id, 5)

        return CodeExplanationContext(
            chunk=chunk,
            dependencies=dependencies,
            usages=usages,
            related_chunks=related,
        )

    def get_project_context(self) -> ProjectContext:
        return self._project_context

    # ------------------------------------------------------------------
    # Memory ledger
    # ------------------------------------------------------------------

    def record_memory_entry(
        self,
        query: str,
        response: str,
        relevant_chunk_ids: list[str],
        feedback: Optional[str] = None,
    ) -> MemoryEntry:
        """Record one interaction; the ledger is persisted immediately."""
        entry = self._ledger.record(
            query,
            response,
            relevant_chunk_ids,
            feedback=feedback,
            context={"projectContext": self._project_context.to_dict()},
        )
        logger.debug("[ContextManager] Recorded memory %s", entry.id)
        return entry

    def update_memory_feedback(self, entry_id: str, feedback: str) -> bool:
        """Set feedback on a recorded interaction.  False if unknown."""
        updated = self._ledger.update_feedback(entry_id, feedback)
        if not updated:
            logger.debug("[ContextManager] No memory entry %s", entry_id)
        return updated

    def get_memory_entries(self) -> list[MemoryEntry]:
        """All recorded interactions, newest first."""
        return self._ledger.entries()

    # ------------------------------------------------------------------
    # Semantic context cache
    # ------------------------------------------------------------------

    def _get_or_create_semantic_context(self, chunk: CodeChunk) -> SemanticContext:
        cached = self._cache.get(chunk.id)
        if cached is not None:
            self._cache.move_to_end(chunk.id)
            return cached

        related = self._store.get_related_chunks(chunk.id, RELATED_CHUNKS_PER_CONTEXT)
        context = SemanticContext(
            chunk_id=chunk.id,
            keywords=extract_keywords(chunk),
            summary=summarize_chunk(chunk),
            related_chunks=[r.chunk.id for r in related],
            importance=chunk_importance(chunk),
        )
        self._cache[chunk.id] = context
        if len(self._cache) > self._cache_size:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug("[ContextManager] Evicted cached context %s", evicted)
        return context

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        """Drop every cached semantic context.  Persisted data is untouched."""
        self._cache.clear()

    # ------------------------------------------------------------------
    # Formatter
    # ------------------------------------------------------------------

    def format_context_for_prompt(
        self, context: RelevantContext, max_chars: Optional[int] = None,
    ) -> str:
        """
        Render *context* as a text block of at most *max_chars* characters
        (when given).  Chunk blocks are added in rank order until the next
        one would exceed the budget.
        """
        parts: list[str] = []
        if context.project_info is not None:
            parts.append(context.project_info.format_for_prompt())
        parts.append("=== RELEVANT CODE ===")

        budget = max_chars if max_chars is not None else float("inf")
        total = len("\n".join(parts))
        for result in context.chunks:
            block = format_chunk_for_context(result.chunk)
            if total + len(block) + 1 > budget:
                break
            parts.append(block)
            total += len(block) + 1

        return "\n".join(parts)
