"""
Unit tests for the JSON-snapshot local vector store.

Covers initialisation guards, ranking, persistence round-trips,
overwrite/delete semantics and the failure policies.
"""

from __future__ import annotations

import json
import os
from unittest.mock import patch

import pytest

from codememory.config import Config
from codememory.kb.local.chunks import ChunkMetadata, CodeChunk, chunk_text
from codememory.kb.local.embedder import EmbeddingError
from codememory.kb.local.vector_store import (
    LocalVectorStore,
    NotInitializedError,
    create_vector_store,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _chunk(chunk_id, content, name=None, type_="function",
           filepath="src/app.js", language="javascript", **meta):
    return CodeChunk(
        id=chunk_id,
        filepath=filepath,
        content=content,
        type=type_,
        name=name or chunk_id,
        start_line=0,
        end_line=content.count("\n"),
        language=language,
        metadata=ChunkMetadata(**meta),
    )


@pytest.fixture
def store(tmp_path):
    s = LocalVectorStore(str(tmp_path))
    s.initialize("test-project")
    return s


@pytest.fixture
def populated(store):
    store.add_chunks([
        _chunk("a", "function login(user, pass) { return auth(user, pass); }",
               name="login", filepath="src/auth.js"),
        _chunk("b", "function processData(data) { return data.map(transform); }",
               name="processData", filepath="src/data.js"),
        _chunk("c", "class Renderer { draw(canvas) { canvas.paint(); } }",
               name="Renderer", type_="class", filepath="src/render.ts",
               language="typescript"),
    ])
    return store


# ---------------------------------------------------------------------------
# Initialisation
# ---------------------------------------------------------------------------

class TestInitialisation:

    @pytest.mark.parametrize("op", [
        lambda s: s.add_chunks([_chunk("a", "x")]),
        lambda s: s.search("query"),
        lambda s: s.search_by_code("x = 1"),
        lambda s: s.get_related_chunks("a"),
        lambda s: s.get_chunk_by_id("a"),
        lambda s: s.update_chunk(_chunk("a", "x")),
        lambda s: s.delete_chunks(["a"]),
        lambda s: s.get_stats(),
        lambda s: s.clear_all(),
        lambda s: len(s),
        lambda s: "a" in s,
    ])
    def test_operations_require_initialize(self, tmp_path, op):
        s = LocalVectorStore(str(tmp_path))
        with pytest.raises(NotInitializedError):
            op(s)

    def test_initialize_creates_storage_dir(self, tmp_path):
        s = LocalVectorStore(str(tmp_path))
        s.initialize("proj")
        assert os.path.isdir(tmp_path / ".codememory")
        assert s.is_initialized
        assert s.project_name == "proj"

    def test_initialize_twice_keeps_state(self, store):
        store.add_chunks([_chunk("a", "let x = 1;")])
        store.initialize("renamed")
        assert len(store) == 1
        assert store.project_name == "renamed"


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class TestSearch:

    def test_empty_store_returns_empty_list(self, store):
        assert store.search("anything", 5) == []

    def test_login_query_ranks_login_first(self, store):
        store.add_chunks([
            _chunk("a", "function login(user, pass) { ... }", name="login"),
            _chunk("b", "function processData(data) { ... }", name="processData"),
        ])
        results = store.search("login user pass", 2)
        assert [r.chunk.id for r in results] == ["a", "b"]
        assert results[0].score < results[1].score

    def test_exact_text_ranks_chunk_first(self, populated):
        target = populated.get_chunk_by_id("c")
        results = populated.search(chunk_text(target), 3)
        assert results[0].chunk.id == "c"
        assert results[0].score < 0.05

    def test_single_chunk_exact_match_has_zero_distance(self, store):
        chunk = _chunk("only", "def handler(event): return event")
        store.add_chunks([chunk])
        results = store.search(chunk_text(chunk), 1)
        assert results[0].chunk.id == "only"
        assert results[0].score == pytest.approx(0.0, abs=1e-9)

    def test_k_limits_results(self, populated):
        assert len(populated.search("function", 2)) == 2
        assert len(populated.search("function", 10)) == 3
        assert populated.search("function", 0) == []

    def test_scores_sorted_ascending(self, populated):
        scores = [r.score for r in populated.search("render canvas", 3)]
        assert scores == sorted(scores)

    def test_ties_keep_insertion_order(self, store):
        store.add_chunks([
            _chunk("first", "same body", name="same"),
            _chunk("second", "same body", name="same"),
        ])
        results = store.search("same body", 2)
        assert [r.chunk.id for r in results] == ["first", "second"]

    def test_query_joins_the_corpus(self, store):
        store.add_chunks([_chunk("a", "let x = 1;")])
        before = store.generator.document_count
        store.search("x")
        assert store.generator.document_count == before + 1

    def test_query_joins_the_corpus_when_store_is_empty(self, store):
        assert store.search("login user", 5) == []
        assert store.generator.document_count == 1
        assert "login_user" in store.generator.stats.vocabulary

    def test_search_by_code_prefixes_query(self, populated):
        results = populated.search_by_code("canvas.paint()", 1)
        assert len(results) == 1
        assert populated.generator.stats.documents[-1].startswith("code similar to: ")


# ---------------------------------------------------------------------------
# Lookup & related chunks
# ---------------------------------------------------------------------------

class TestLookup:

    def test_get_chunk_by_id(self, populated):
        assert populated.get_chunk_by_id("a").name == "login"
        assert populated.get_chunk_by_id("missing") is None

    def test_related_chunks_exclude_self(self, populated):
        related = populated.get_related_chunks("a", 3)
        ids = [r.chunk.id for r in related]
        assert "a" not in ids
        assert sorted(ids) == ["b", "c"]

    def test_related_chunks_respect_k(self, populated):
        assert len(populated.get_related_chunks("a", 1)) == 1

    def test_related_chunks_unknown_id(self, populated):
        assert populated.get_related_chunks("missing", 3) == []

    def test_similarity_is_symmetric(self, populated):
        ab = populated.similarity("a", "b")
        ba = populated.similarity("b", "a")
        assert ab == pytest.approx(ba)
        assert populated.similarity("a", "a") == pytest.approx(1.0)
        assert populated.similarity("a", "missing") is None

    def test_contains(self, populated):
        assert "a" in populated
        assert "zzz" not in populated


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

class TestMutations:

    def test_add_with_existing_id_overwrites(self, populated):
        populated.add_chunks([_chunk("a", "function logout() {}", name="logout")])
        assert len(populated) == 3
        assert populated.get_chunk_by_id("a").name == "logout"

    def test_add_empty_list_writes_nothing(self, store):
        store.add_chunks([])
        assert not os.path.exists(store.snapshot_path)

    def test_update_chunk_replaces_entry(self, populated):
        old_embedding = populated.get_embedding("b")
        populated.update_chunk(
            _chunk("b", "function processData(rows) { return rows; }", name="processData")
        )
        assert "rows" in populated.get_chunk_by_id("b").content
        assert populated.get_embedding("b") != old_embedding
        assert len(populated) == 3

    def test_delete_removes_from_stats_and_search(self, populated):
        removed = populated.delete_chunks(["a", "missing"])
        assert removed == 1
        stats = populated.get_stats()
        assert stats.total_chunks == 2
        assert stats.chunks_by_type == {"function": 1, "class": 1}
        ids = [r.chunk.id for r in populated.search("login user pass", 10)]
        assert "a" not in ids

    def test_delete_keeps_vocabulary(self, populated):
        vocab_size = populated.generator.vocabulary_size
        populated.delete_chunks(["a", "b", "c"])
        assert populated.generator.vocabulary_size == vocab_size

    def test_stats_histograms(self, populated):
        stats = populated.get_stats()
        assert stats.total_chunks == 3
        assert stats.chunks_by_language == {"javascript": 2, "typescript": 1}
        assert stats.to_dict()["chunksByType"] == {"function": 2, "class": 1}

    def test_clear_all_removes_snapshot(self, populated):
        assert os.path.exists(populated.snapshot_path)
        populated.clear_all()
        assert len(populated) == 0
        assert not os.path.exists(populated.snapshot_path)

    def test_failed_batch_leaves_store_unchanged(self, populated):
        with patch.object(
            populated.generator, "embed_batch", side_effect=EmbeddingError("boom"),
        ):
            with pytest.raises(EmbeddingError):
                populated.add_chunks([_chunk("d", "let d = 4;")])
        assert len(populated) == 3
        assert populated.get_chunk_by_id("d") is None


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class TestPersistence:

    def test_round_trip_is_exact(self, tmp_path):
        s1 = LocalVectorStore(str(tmp_path))
        s1.initialize("proj")
        s1.add_chunks([
            _chunk("a", "function login(user) {}", signature="login(user)",
                   docstring="Log in.", dependencies=["auth"], complexity=2),
            _chunk("b", "class Store {}", type_="class"),
        ])

        s2 = LocalVectorStore(str(tmp_path))
        s2.initialize("proj")
        assert len(s2) == 2
        for chunk_id in ("a", "b"):
            assert s2.get_chunk_by_id(chunk_id) == s1.get_chunk_by_id(chunk_id)
            assert s2.get_embedding(chunk_id) == s1.get_embedding(chunk_id)

    def test_snapshot_format(self, populated):
        with open(populated.snapshot_path, encoding="utf-8") as fh:
            data = json.load(fh)
        assert [item["id"] for item in data] == ["a", "b", "c"]
        assert data[0]["chunk"]["startLine"] == 0
        assert len(data[0]["embedding"]) == 384

    def test_corrupt_snapshot_starts_empty(self, tmp_path, caplog):
        storage = tmp_path / ".codememory"
        storage.mkdir()
        (storage / "chunks.json").write_text("{not json", encoding="utf-8")
        s = LocalVectorStore(str(tmp_path))
        with caplog.at_level("WARNING"):
            s.initialize("proj")
        assert len(s) == 0
        assert "Failed to load snapshot" in caplog.text

    @pytest.mark.parametrize("metadata", ["oops", ["a", "b"], 42])
    def test_non_object_metadata_starts_empty(self, tmp_path, caplog, metadata):
        storage = tmp_path / ".codememory"
        storage.mkdir()
        chunk = _chunk("a", "x").to_dict()
        chunk["metadata"] = metadata
        item = {"id": "a", "chunk": chunk, "embedding": [0.0] * 384}
        (storage / "chunks.json").write_text(json.dumps([item]), encoding="utf-8")
        s = LocalVectorStore(str(tmp_path))
        with caplog.at_level("WARNING"):
            s.initialize("proj")
        assert len(s) == 0
        assert "Failed to load snapshot" in caplog.text

    def test_non_object_item_starts_empty(self, tmp_path):
        storage = tmp_path / ".codememory"
        storage.mkdir()
        (storage / "chunks.json").write_text(json.dumps(["not an item"]), encoding="utf-8")
        s = LocalVectorStore(str(tmp_path))
        s.initialize("proj")
        assert len(s) == 0

    def test_wrong_dimension_snapshot_starts_empty(self, tmp_path):
        storage = tmp_path / ".codememory"
        storage.mkdir()
        item = {"id": "a", "chunk": _chunk("a", "x").to_dict(), "embedding": [0.0, 1.0]}
        (storage / "chunks.json").write_text(json.dumps([item]), encoding="utf-8")
        s = LocalVectorStore(str(tmp_path))
        s.initialize("proj")
        assert len(s) == 0

    def test_deferred_persistence_writes_once_on_exit(self, store):
        with store.deferred_persistence():
            store.add_chunks([_chunk("a", "let a = 1;")])
            store.add_chunks([_chunk("b", "let b = 2;")])
            assert not os.path.exists(store.snapshot_path)
        with open(store.snapshot_path, encoding="utf-8") as fh:
            assert len(json.load(fh)) == 2

    def test_no_temp_files_left_behind(self, populated):
        leftovers = [
            name for name in os.listdir(os.path.dirname(populated.snapshot_path))
            if name.endswith(".tmp")
        ]
        assert leftovers == []


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

class TestCreateVectorStore:

    def test_uses_config(self, tmp_path):
        config = Config({"idf_mode": "incremental", "storage_dir": ".mem"})
        s = create_vector_store(str(tmp_path), config)
        s.initialize("proj")
        assert isinstance(s, LocalVectorStore)
        assert s.generator.stats.mode == "incremental"
        assert os.path.isdir(tmp_path / ".mem")

    def test_defaults(self, tmp_path):
        s = create_vector_store(str(tmp_path))
        assert s.generator.dimension == 384
