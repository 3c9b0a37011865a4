"""Tests for the embedding index and cosine similarity."""

from __future__ import annotations

import math
import random

import pytest

from cortex.db.vectors import EmbeddingIndex, cosine_similarity, deserialize_float32
from cortex.errors import DimensionMismatch


@pytest.fixture
def index(tmp_db):
    return EmbeddingIndex(tmp_db, 3)


def _random_vector(rng: random.Random, n: int) -> list[float]:
    return [rng.uniform(-10, 10) for _ in range(n)]


# ------------------------------------------------------------------
# cosine_similarity
# ------------------------------------------------------------------


def test_cosine_identical_vectors():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)


def test_cosine_opposite_vectors():
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_cosine_orthogonal_vectors():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_cosine_zero_norm_returns_zero():
    assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
    assert cosine_similarity([1.0, 2.0, 3.0], [0.0, 0.0, 0.0]) == 0.0


def test_cosine_length_mismatch_raises():
    with pytest.raises(DimensionMismatch):
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


@pytest.mark.parametrize("seed", range(20))
def test_cosine_symmetric_and_bounded(seed):
    rng = random.Random(seed)
    n = rng.randint(1, 16)
    a, b = _random_vector(rng, n), _random_vector(rng, n)
    ab = cosine_similarity(a, b)
    assert ab == cosine_similarity(b, a)
    assert -1.0 <= ab <= 1.0


@pytest.mark.parametrize("seed", range(5))
def test_cosine_parallel_vectors_clamped_to_one(seed):
    rng = random.Random(seed)
    a = _random_vector(rng, 8)
    scaled = [x * 1e6 for x in a]
    assert cosine_similarity(a, scaled) <= 1.0
    assert math.isclose(cosine_similarity(a, scaled), 1.0, rel_tol=1e-9)


# ------------------------------------------------------------------
# EmbeddingIndex
# ------------------------------------------------------------------


def test_put_and_get_roundtrip(index):
    index.put("a", [1.0, 0.5, -2.0])
    assert index.get("a") == pytest.approx([1.0, 0.5, -2.0])


def test_get_missing_returns_none(index):
    assert index.get("nope") is None


def test_put_replaces_existing(index):
    index.put("a", [1.0, 0.0, 0.0])
    index.put("a", [0.0, 1.0, 0.0])
    assert index.count() == 1
    assert index.get("a") == pytest.approx([0.0, 1.0, 0.0])


def test_put_wrong_dimensions_raises(index):
    with pytest.raises(DimensionMismatch) as excinfo:
        index.put("a", [1.0, 2.0])
    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2


def test_reopen_with_other_dimensions_raises(tmp_db):
    EmbeddingIndex(tmp_db, 3)
    with pytest.raises(DimensionMismatch):
        EmbeddingIndex(tmp_db, 4)


def test_reopen_with_same_dimensions_ok(tmp_db):
    EmbeddingIndex(tmp_db, 3).put("a", [1.0, 2.0, 3.0])
    assert EmbeddingIndex(tmp_db, 3).count() == 1


def test_zero_dimensions_rejected(tmp_db):
    with pytest.raises(ValueError):
        EmbeddingIndex(tmp_db, 0)


def test_delete_and_delete_many(index):
    for i in range(4):
        index.put(f"v{i}", [float(i), 1.0, 0.0])
    index.delete("v0")
    assert index.delete_many(["v1", "v2", "missing"]) == 2
    assert index.ids() == ["v3"]


def test_ids_in_insertion_order(index):
    for name in ("c", "a", "b"):
        index.put(name, [1.0, 0.0, 0.0])
    assert index.ids() == ["c", "a", "b"]


def test_blob_is_little_endian_float32(index, tmp_db):
    index.put("a", [1.5, -2.0, 0.25])
    blob = tmp_db.execute("SELECT embedding FROM vec_insights WHERE id = 'a'").fetchone()[0]
    assert len(blob) == 12
    assert deserialize_float32(blob) == [1.5, -2.0, 0.25]


# ------------------------------------------------------------------
# search
# ------------------------------------------------------------------


def test_search_empty_index_returns_empty(index):
    assert index.search([1.0, 0.0, 0.0], 5) == []


def test_search_limit_zero_returns_empty(index):
    index.put("a", [1.0, 0.0, 0.0])
    assert index.search([1.0, 0.0, 0.0], 0) == []


def test_search_sorted_descending(index):
    index.put("far", [0.0, 1.0, 0.0])
    index.put("near", [1.0, 0.1, 0.0])
    index.put("exact", [2.0, 0.0, 0.0])
    results = index.search([1.0, 0.0, 0.0], 10)
    assert [r[0] for r in results] == ["exact", "near", "far"]
    assert results[0][1] == pytest.approx(1.0)


def test_search_ties_keep_insertion_order(index):
    for name in ("first", "second", "third"):
        index.put(name, [1.0, 1.0, 0.0])
    results = index.search([1.0, 1.0, 0.0], 10)
    assert [r[0] for r in results] == ["first", "second", "third"]


def test_search_respects_limit(index):
    for i in range(5):
        index.put(f"v{i}", [1.0, float(i), 0.0])
    assert len(index.search([1.0, 0.0, 0.0], 2)) == 2


def test_search_query_dimension_mismatch_raises(index):
    index.put("a", [1.0, 0.0, 0.0])
    with pytest.raises(DimensionMismatch):
        index.search([1.0, 0.0], 5)


@pytest.mark.parametrize("seed", range(5))
def test_search_scores_non_increasing(index, seed):
    rng = random.Random(seed)
    for i in range(15):
        index.put(f"v{i}", _random_vector(rng, 3))
    scores = [s for _, s in index.search(_random_vector(rng, 3), 15)]
    assert scores == sorted(scores, reverse=True)


# ------------------------------------------------------------------
# vacuum
# ------------------------------------------------------------------


def test_vacuum_removes_orphans(index):
    for name in ("keep", "drop1", "drop2"):
        index.put(name, [1.0, 0.0, 0.0])
    assert index.vacuum({"keep"}) == 2
    assert index.ids() == ["keep"]


def test_vacuum_is_idempotent(index):
    index.put("keep", [1.0, 0.0, 0.0])
    index.put("drop", [1.0, 0.0, 0.0])
    index.vacuum({"keep"})
    assert index.vacuum({"keep"}) == 0
