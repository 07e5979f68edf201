"""
Chunk records for the Local Knowledge Base.

A :class:`CodeChunk` is the unit of indexing: a named, located fragment of
source handed over by a parser.  This module also owns the two text
renderings every other layer relies on:

* :func:`chunk_text` — the canonical text that gets embedded.
* :func:`format_chunk_for_context` — a truncation-friendly block for
  prompt assembly.

The JSON form keeps the camelCase keys of the on-disk snapshot format.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CHUNK_TYPES = frozenset({
    "function", "class", "method", "module", "variable", "import",
})

# Lines of chunk content shown by format_chunk_for_context
CONTEXT_PREVIEW_LINES = 10


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ChunkMetadata:
    """Optional descriptive fields attached to a chunk."""

    signature: Optional[str] = None
    docstring: Optional[str] = None
    dependencies: list[str] = field(default_factory=list)
    complexity: Optional[int] = None
    last_modified: Optional[str] = None   # ISO-8601

    def to_dict(self) -> dict:
        data: dict = {}
        if self.signature is not None:
            data["signature"] = self.signature
        if self.docstring is not None:
            data["docstring"] = self.docstring
        if self.dependencies:
            data["dependencies"] = list(self.dependencies)
        if self.complexity is not None:
            data["complexity"] = self.complexity
        if self.last_modified is not None:
            data["lastModified"] = self.last_modified
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ChunkMetadata":
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise TypeError(f"chunk metadata must be an object, got {type(data).__name__}")
        deps = data.get("dependencies") or []
        return cls(
            signature=data.get("signature"),
            docstring=data.get("docstring"),
            dependencies=[str(d) for d in deps],
            complexity=data.get("complexity"),
            last_modified=data.get("lastModified"),
        )


@dataclass
class CodeChunk:
    """A named, located fragment of source code.

    ``start_line`` and ``end_line`` are 0-based and inclusive.
    ``parent_id`` is a weak reference to an enclosing chunk; the store
    never checks that it resolves.
    """

    id: str
    filepath: str
    content: str
    type: str               # see CHUNK_TYPES
    name: str
    start_line: int
    end_line: int
    language: str
    parent_id: Optional[str] = None
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "filepath": self.filepath,
            "content": self.content,
            "type": self.type,
            "name": self.name,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "language": self.language,
            "metadata": self.metadata.to_dict(),
        }
        if self.parent_id is not None:
            data["parentId"] = self.parent_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CodeChunk":
        """Build a chunk from its JSON form.

        Raises ``KeyError`` when a required field is missing and
        ``TypeError`` when *data* or its metadata is not a dict.
        """
        if not isinstance(data, dict):
            raise TypeError(f"chunk must be an object, got {type(data).__name__}")
        return cls(
            id=str(data["id"]),
            filepath=data["filepath"],
            content=data["content"],
            type=data["type"],
            name=data["name"],
            start_line=int(data["startLine"]),
            end_line=int(data["endLine"]),
            language=data["language"],
            parent_id=data.get("parentId"),
            metadata=ChunkMetadata.from_dict(data.get("metadata")),
        )


# ---------------------------------------------------------------------------
# Text renderings
# ---------------------------------------------------------------------------

def chunk_text(chunk: CodeChunk) -> str:
    """Return the canonical text embedded for *chunk*."""
    parts = [
        f"Type: {chunk.type}",
        f"Name: {chunk.name}",
        f"Language: {chunk.language}",
        f"File: {os.path.basename(chunk.filepath)}",
    ]
    if chunk.metadata.signature:
        parts.append(f"Signature: {chunk.metadata.signature}")
    if chunk.metadata.docstring:
        parts.append(f"Documentation: {chunk.metadata.docstring}")
    parts.append(f"Code:\n{chunk.content}")
    return "\n".join(parts)


def format_chunk_for_context(chunk: CodeChunk) -> str:
    """
    Render *chunk* as a self-contained block for prompt context.

    Only the first ``CONTEXT_PREVIEW_LINES`` lines of content are kept, so
    the block size is bounded and a consumer can drop whole blocks to fit
    its budget.
    """
    lines = chunk.content.split("\n")
    preview = "\n".join(lines[:CONTEXT_PREVIEW_LINES])
    if len(lines) > CONTEXT_PREVIEW_LINES:
        preview += "\n// ... more ..."
    doc = f"Doc: {chunk.metadata.docstring}" if chunk.metadata.docstring else ""
    return (
        f"\nFile: {chunk.filepath}\n"
        f"Type: {chunk.type} - {chunk.name}\n"
        f"Lines: {chunk.start_line}-{chunk.end_line}\n"
        f"{doc}\n"
        f"\n```{chunk.language}\n"
        f"{preview}\n"
        f"```\n"
    )
