"""
codememory — local semantic memory for source-code chunks.

Public API for library usage::

    from codememory import create_vector_store, ContextManager

    store = create_vector_store("/path/to/project")
    store.initialize("my-project")
    store.add_chunks(chunks)
    manager = ContextManager("/path/to/project", store)
    context = manager.get_relevant_context("how does login work?")
"""

from .config import Config
from .kb.context_builder import ContextManager
from .kb.local.chunks import ChunkMetadata, CodeChunk
from .kb.local.vector_store import (
    LocalVectorStore,
    NotInitializedError,
    VectorSearchResult,
    create_vector_store,
)

__all__ = [
    "ChunkMetadata",
    "CodeChunk",
    "Config",
    "ContextManager",
    "LocalVectorStore",
    "NotInitializedError",
    "VectorSearchResult",
    "create_vector_store",
]
