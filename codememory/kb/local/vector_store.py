"""
JSON-snapshot vector store for the Local Knowledge Base.

Keeps every ``{chunk, embedding}`` pair in memory, ranks them by exhaustive
cosine similarity (numpy), and writes the whole store to a single JSON
document after every mutation.  Zero-config — no database, no services.

Storage: ``<project_root>/.codememory/chunks.json``

Durability is at-most-once: the snapshot is replaced atomically, but a
mutation is lost if the process dies before its write completes.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Iterator, Optional

import numpy as np

from .chunks import CodeChunk, chunk_text
from .embedder import EmbeddingGenerator

if TYPE_CHECKING:
    from ...config import Config
    from ..context_builder import SemanticContext

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_STORAGE_DIR = ".codememory"
SNAPSHOT_FILENAME = "chunks.json"
CODE_QUERY_PREFIX = "Code similar to: "


class NotInitializedError(RuntimeError):
    """Raised when the store is used before :meth:`LocalVectorStore.initialize`."""


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class VectorSearchResult:
    """A ranked hit.  ``score`` is a cosine *distance*: lower is closer."""

    chunk: CodeChunk
    score: float
    context: Optional["SemanticContext"] = None


@dataclass
class StoreStats:
    total_chunks: int = 0
    chunks_by_type: dict[str, int] = field(default_factory=dict)
    chunks_by_language: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "totalChunks": self.total_chunks,
            "chunksByType": dict(self.chunks_by_type),
            "chunksByLanguage": dict(self.chunks_by_language),
        }


@dataclass
class _StoredChunk:
    chunk: CodeChunk
    embedding: list[float]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _cosine_similarity_batch(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between *query* (1-D) and each row of *matrix*.

    Rows or queries with zero norm score 0.
    """
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0])
    row_norms = np.linalg.norm(matrix, axis=1)
    zero_rows = row_norms == 0
    row_norms[zero_rows] = 1.0
    sims = (matrix @ query) / (row_norms * query_norm)
    sims[zero_rows] = 0.0
    return sims


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; 0.0 if either has zero norm."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


# ---------------------------------------------------------------------------
# LocalVectorStore
# ---------------------------------------------------------------------------

class LocalVectorStore:
    """In-memory chunk store with JSON snapshot persistence.

    Parameters
    ----------
    project_root:
        Workspace root; the snapshot lives under ``storage_dir`` inside it.
    storage_dir:
        Directory name (relative to *project_root*) or absolute path.
    generator:
        Embedding generator shared by indexing and querying.  A fresh one
        is created when omitted.
    pretty_json:
        Indent the snapshot for readability.
    """

    def __init__(
        self,
        project_root: str,
        storage_dir: str = DEFAULT_STORAGE_DIR,
        generator: Optional[EmbeddingGenerator] = None,
        pretty_json: bool = True,
    ) -> None:
        self._project_root = os.path.abspath(project_root)
        self._storage_dir = os.path.join(self._project_root, storage_dir)
        self._snapshot_path = os.path.join(self._storage_dir, SNAPSHOT_FILENAME)
        self._generator = generator or EmbeddingGenerator()
        self._pretty_json = pretty_json

        self._chunks: dict[str, _StoredChunk] = {}
        self._matrix: Optional[np.ndarray] = None
        self._project_name: Optional[str] = None
        self._initialized = False

        self._defer_depth = 0
        self._dirty = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def snapshot_path(self) -> str:
        return self._snapshot_path

    @property
    def generator(self) -> EmbeddingGenerator:
        return self._generator

    @property
    def project_name(self) -> Optional[str]:
        return self._project_name

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self, project_name: str) -> None:
        """Create the storage directory and load any prior snapshot.

        Calling it again only updates the project name.
        """
        self._project_name = project_name
        if self._initialized:
            return
        os.makedirs(self._storage_dir, exist_ok=True)
        self._load_from_disk()
        self._initialized = True
        logger.info(
            "[VectorStore] Initialised for project %s (%d chunks)",
            project_name, len(self._chunks),
        )

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError(
                "Vector store not initialized — call initialize() first"
            )

    def __len__(self) -> int:
        self._require_initialized()
        return len(self._chunks)

    def __contains__(self, chunk_id: object) -> bool:
        self._require_initialized()
        return chunk_id in self._chunks

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: Iterable[CodeChunk]) -> None:
        """Embed *chunks* in one batch and store them, overwriting by id.

        Raises
        ------
        EmbeddingError
            If the batch cannot be embedded; the store is left unchanged.
        """
        self._require_initialized()
        chunks = list(chunks)
        if not chunks:
            return

        embeddings = self._generator.embed_batch(chunk_text(c) for c in chunks)
        for chunk, embedding in zip(chunks, embeddings):
            self._chunks[chunk.id] = _StoredChunk(chunk=chunk, embedding=embedding)
        self._matrix = None
        logger.debug("[VectorStore] Added %d chunks", len(chunks))
        self._persist()

    def update_chunk(self, chunk: CodeChunk) -> None:
        """Re-embed a single chunk and replace its entry."""
        self._require_initialized()
        embedding = self._generator.embed(chunk_text(chunk))
        self._chunks[chunk.id] = _StoredChunk(chunk=chunk, embedding=embedding)
        self._matrix = None
        logger.debug("[VectorStore] Updated chunk %s", chunk.id)
        self._persist()

    def delete_chunks(self, chunk_ids: Iterable[str]) -> int:
        """Remove entries by id.  Unknown ids are ignored.

        Returns the number of entries removed.  The embedding vocabulary
        is not affected.
        """
        self._require_initialized()
        removed = 0
        for chunk_id in chunk_ids:
            if self._chunks.pop(chunk_id, None) is not None:
                removed += 1
        self._matrix = None
        logger.debug("[VectorStore] Deleted %d chunks", removed)
        self._persist()
        return removed

    def clear_all(self) -> None:
        """Drop every entry and remove the snapshot file."""
        self._require_initialized()
        self._chunks.clear()
        self._matrix = None
        self._dirty = False
        if os.path.exists(self._snapshot_path):
            os.remove(self._snapshot_path)
        logger.info("[VectorStore] Cleared all chunks")

    @contextmanager
    def deferred_persistence(self) -> Iterator["LocalVectorStore"]:
        """Suspend per-mutation snapshots; write once when the block exits.

        Nested blocks write only when the outermost one exits.  The write
        happens even if the block raises, so completed mutations are kept.
        """
        self._require_initialized()
        self._defer_depth += 1
        try:
            yield self
        finally:
            self._defer_depth -= 1
            if self._defer_depth == 0 and self._dirty:
                self._persist()

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def search(self, query: str, k: int = 10) -> list[VectorSearchResult]:
        """Rank every stored chunk against *query*.

        The query is embedded with the shared generator, so it joins the
        corpus even when the store is empty.  Results are sorted by
        ascending distance; ties keep insertion order.
        """
        self._require_initialized()
        query_vec = np.asarray(self._generator.embed(query), dtype=np.float64)
        if not self._chunks:
            return []

        stored = list(self._chunks.values())
        sims = _cosine_similarity_batch(query_vec, self._embedding_matrix())
        distances = 1.0 - sims
        order = np.argsort(distances, kind="stable")[: max(k, 0)]
        return [
            VectorSearchResult(chunk=stored[i].chunk, score=float(distances[i]))
            for i in order
        ]

    def search_by_code(self, snippet: str, k: int = 10) -> list[VectorSearchResult]:
        """Search with a snippet, phrased as a code-similarity query."""
        return self.search(f"{CODE_QUERY_PREFIX}{snippet}", k)

    def get_related_chunks(self, chunk_id: str, k: int = 5) -> list[VectorSearchResult]:
        """Return up to *k* chunks closest to *chunk_id*, excluding itself.

        Unknown ids yield an empty list.
        """
        chunk = self.get_chunk_by_id(chunk_id)
        if chunk is None:
            return []
        results = self.search(chunk_text(chunk), k + 1)
        return [r for r in results if r.chunk.id != chunk_id][:k]

    def get_chunk_by_id(self, chunk_id: str) -> Optional[CodeChunk]:
        self._require_initialized()
        stored = self._chunks.get(chunk_id)
        return stored.chunk if stored else None

    def get_embedding(self, chunk_id: str) -> Optional[list[float]]:
        self._require_initialized()
        stored = self._chunks.get(chunk_id)
        return list(stored.embedding) if stored else None

    def all_chunks(self) -> list[CodeChunk]:
        self._require_initialized()
        return [s.chunk for s in self._chunks.values()]

    def similarity(self, chunk_id_a: str, chunk_id_b: str) -> Optional[float]:
        """Cosine similarity between two stored embeddings, or None."""
        self._require_initialized()
        a = self._chunks.get(chunk_id_a)
        b = self._chunks.get(chunk_id_b)
        if a is None or b is None:
            return None
        return cosine_similarity(a.embedding, b.embedding)

    def get_stats(self) -> StoreStats:
        """Total count plus histograms by chunk type and language."""
        self._require_initialized()
        stats = StoreStats(total_chunks=len(self._chunks))
        for stored in self._chunks.values():
            chunk = stored.chunk
            stats.chunks_by_type[chunk.type] = stats.chunks_by_type.get(chunk.type, 0) + 1
            stats.chunks_by_language[chunk.language] = (
                stats.chunks_by_language.get(chunk.language, 0) + 1
            )
        return stats

    def _embedding_matrix(self) -> np.ndarray:
        if self._matrix is None:
            self._matrix = np.array(
                [s.embedding for s in self._chunks.values()], dtype=np.float64,
            )
        return self._matrix

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if self._defer_depth > 0:
            self._dirty = True
            return
        self._save_to_disk()
        self._dirty = False

    def _save_to_disk(self) -> None:
        """Write the full snapshot via a temp file + ``os.replace``."""
        data = [
            {"id": chunk_id, "chunk": s.chunk.to_dict(), "embedding": s.embedding}
            for chunk_id, s in self._chunks.items()
        ]
        os.makedirs(self._storage_dir, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self._storage_dir, prefix=".chunks_", suffix=".json.tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2 if self._pretty_json else None)
            os.replace(tmp_path, self._snapshot_path)
        except OSError as exc:
            logger.warning(
                "[VectorStore] Failed to save snapshot %s: %s",
                self._snapshot_path, exc,
            )
            raise
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
        logger.debug(
            "[VectorStore] Saved %d chunks to %s", len(data), self._snapshot_path,
        )

    def _load_from_disk(self) -> None:
        """Load the snapshot; a corrupt file is logged and treated as empty."""
        if not os.path.isfile(self._snapshot_path):
            return
        try:
            with open(self._snapshot_path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            if not isinstance(data, list):
                raise ValueError("snapshot root is not a list")
            loaded: dict[str, _StoredChunk] = {}
            for item in data:
                embedding = [float(v) for v in item["embedding"]]
                if len(embedding) != self._generator.dimension:
                    raise ValueError(
                        f"embedding for {item['id']!r} has {len(embedding)} "
                        f"dimensions, expected {self._generator.dimension}"
                    )
                loaded[item["id"]] = _StoredChunk(
                    chunk=CodeChunk.from_dict(item["chunk"]),
                    embedding=embedding,
                )
        except (
            OSError, json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError,
        ) as exc:
            logger.warning(
                "[VectorStore] Failed to load snapshot %s, starting empty: %s",
                self._snapshot_path, exc,
            )
            return
        self._chunks = loaded
        self._matrix = None
        logger.info(
            "[VectorStore] Loaded %d chunks from %s",
            len(self._chunks), self._snapshot_path,
        )


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------

def create_vector_store(
    project_root: str,
    config: Optional["Config"] = None,
) -> LocalVectorStore:
    """Create a store (and its embedding generator) from *config*.

    The returned store still needs :meth:`LocalVectorStore.initialize`.
    """
    if config is None:
        from ...config import Config
        config = Config()
    generator = EmbeddingGenerator(
        dimension=config.EMBEDDING_DIMENSION,
        idf_mode=config.IDF_MODE,
    )
    return LocalVectorStore(
        project_root,
        storage_dir=config.STORAGE_DIR,
        generator=generator,
        pretty_json=config.PRETTY_JSON,
    )
