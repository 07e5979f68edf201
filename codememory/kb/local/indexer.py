"""
Chunk indexer — feeds parser output into the vector store file by file.

Each file's chunks go through one ``add_chunks`` call, so IDF is refreshed
once per file.  A file whose batch cannot be embedded is recorded in
:attr:`IndexingProgress.errors` and indexing moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from tqdm import tqdm

from .chunks import CodeChunk
from .embedder import EmbeddingError

if TYPE_CHECKING:
    from .vector_store import LocalVectorStore

logger = logging.getLogger(__name__)

STATUS_IDLE = "idle"
STATUS_INDEXING = "indexing"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"


@dataclass
class IndexingProgress:
    total_files: int = 0
    processed_files: int = 0
    current_file: str = ""
    errors: list[str] = field(default_factory=list)
    status: str = STATUS_IDLE


def group_by_file(chunks: Iterable[CodeChunk]) -> dict[str, list[CodeChunk]]:
    """Group *chunks* by ``filepath``, keeping first-seen file order."""
    groups: dict[str, list[CodeChunk]] = {}
    for chunk in chunks:
        groups.setdefault(chunk.filepath, []).append(chunk)
    return groups


def index_chunks(
    store: "LocalVectorStore",
    chunks: Iterable[CodeChunk],
    show_progress: bool = False,
    on_progress: Optional[Callable[[IndexingProgress], None]] = None,
) -> IndexingProgress:
    """
    Add *chunks* to *store*, one ``add_chunks`` batch per source file.

    The snapshot is written once at the end rather than after every file.

    Parameters
    ----------
    store:
        An initialised vector store.
    chunks:
        Parser output for any number of files.
    show_progress:
        Display a tqdm progress bar.
    on_progress:
        Called after each file with the current progress.

    Returns
    -------
    IndexingProgress
        Final state; ``status`` is ``"error"`` if any file failed.
    """
    groups = group_by_file(chunks)
    progress = IndexingProgress(total_files=len(groups), status=STATUS_INDEXING)

    with store.deferred_persistence(), tqdm(
        groups.items(),
        desc="Indexing files",
        unit="file",
        total=len(groups),
        disable=not show_progress,
    ) as bar:
        for filepath, file_chunks in bar:
            progress.current_file = filepath
            try:
                store.add_chunks(file_chunks)
            except EmbeddingError as exc:
                logger.warning("[Indexer] Skipping %s: %s", filepath, exc)
                progress.errors.append(f"{filepath}: {exc}")
            progress.processed_files += 1
            bar.set_postfix({"errors": len(progress.errors)})
            if on_progress is not None:
                on_progress(progress)

    progress.current_file = ""
    progress.status = STATUS_ERROR if progress.errors else STATUS_COMPLETED
    logger.info(
        "[Indexer] Indexed %d/%d files (%d errors)",
        progress.processed_files - len(progress.errors),
        progress.total_files,
        len(progress.errors),
    )
    return progress
