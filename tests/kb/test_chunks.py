"""
Unit tests for codememory.kb.local.chunks

Tests the JSON form of chunks and the two text renderings.
"""

from __future__ import annotations

import pytest

from codememory.kb.local.chunks import (
    ChunkMetadata,
    CodeChunk,
    chunk_text,
    format_chunk_for_context,
)


def _make(content="def f():\n    return 1", **meta):
    return CodeChunk(
        id="f1",
        filepath="pkg/mod/util.py",
        content=content,
        type="function",
        name="f",
        start_line=4,
        end_line=4 + content.count("\n"),
        language="python",
        metadata=ChunkMetadata(**meta),
    )


class TestChunkDict:

    def test_camel_case_keys(self):
        data = _make(last_modified="2024-01-01T00:00:00Z").to_dict()
        assert data["startLine"] == 4
        assert data["endLine"] == 5
        assert data["metadata"] == {"lastModified": "2024-01-01T00:00:00Z"}
        assert "parentId" not in data

    def test_from_dict_restores_everything(self):
        chunk = _make(signature="f()", docstring="Return one.",
                      dependencies=["os"], complexity=1)
        chunk.parent_id = "mod"
        assert CodeChunk.from_dict(chunk.to_dict()) == chunk

    def test_missing_metadata_defaults(self):
        data = _make().to_dict()
        del data["metadata"]
        restored = CodeChunk.from_dict(data)
        assert restored.metadata == ChunkMetadata()

    def test_missing_required_key_raises(self):
        data = _make().to_dict()
        del data["filepath"]
        with pytest.raises(KeyError):
            CodeChunk.from_dict(data)

    def test_line_count_is_inclusive(self):
        assert _make().line_count == 2


class TestChunkText:

    def test_minimal_rendering(self):
        text = chunk_text(_make())
        assert text == (
            "Type: function\n"
            "Name: f\n"
            "Language: python\n"
            "File: util.py\n"
            "Code:\n"
            "def f():\n    return 1"
        )

    def test_signature_and_docstring_lines(self):
        text = chunk_text(_make(signature="f() -> int", docstring="Return one."))
        lines = text.split("\n")
        assert lines[4] == "Signature: f() -> int"
        assert lines[5] == "Documentation: Return one."
        assert lines[6] == "Code:"

    def test_empty_docstring_is_omitted(self):
        assert "Documentation" not in chunk_text(_make(docstring=""))


class TestFormatChunkForContext:

    def test_short_chunk_shows_all_lines(self):
        block = format_chunk_for_context(_make())
        assert "File: pkg/mod/util.py" in block
        assert "Type: function - f" in block
        assert "Lines: 4-5" in block
        assert "```python\ndef f():\n    return 1\n```" in block
        assert "// ... more ..." not in block

    def test_long_chunk_is_truncated(self):
        content = "\n".join(f"line{i}" for i in range(15))
        block = format_chunk_for_context(_make(content=content))
        assert "line9" in block
        assert "line10" not in block
        assert "// ... more ..." in block

    def test_docstring_line(self):
        block = format_chunk_for_context(_make(docstring="Return one."))
        assert "Doc: Return one." in block
