"""Tests for hash embeddings and vector serialisation."""

import math

import pytest

from specgraph.embeddings import (
    HashEmbeddingModel,
    blob_to_vector,
    cosine_similarity,
    fnv1a_64,
    semantic_vector,
    vector_to_blob,
    vector_to_json,
)
from specgraph.errors import IndexCorruptionError


class TestHashEmbeddingModel:
    """Tests for HashEmbeddingModel."""

    def test_dimension(self):
        assert len(HashEmbeddingModel().embed_text("checkout flow")) == 256
        assert len(HashEmbeddingModel(dim=32).embed_text("checkout flow")) == 32

    def test_deterministic(self):
        model = HashEmbeddingModel()
        assert model.embed_text("Payment gateway") == model.embed_text("Payment gateway")
        assert semantic_vector("Payment gateway") == model.embed_text("Payment gateway")

    def test_case_insensitive(self):
        model = HashEmbeddingModel()
        assert model.embed_text("CHECKOUT Flow") == model.embed_text("checkout flow")

    def test_non_ascii_case_is_kept(self):
        model = HashEmbeddingModel()
        assert model.embed_text("ÜBER ÄRGER ÖL") != model.embed_text("über ärger öl")
        assert model.embed_text("ÜBER ÄRGER ÖL") == model.embed_text("Über Ärger Öl")

    def test_unit_length(self):
        vec = HashEmbeddingModel().embed_text("The checkout flow submits the payment.")
        assert math.isclose(math.sqrt(sum(v * v for v in vec)), 1.0, rel_tol=1e-9)

    def test_empty_text_is_zero_vector(self):
        assert HashEmbeddingModel(dim=8).embed_text("") == [0.0] * 8

    def test_related_text_scores_higher(self):
        model = HashEmbeddingModel()
        query = model.embed_text("checkout payment")
        related = model.embed_text("The checkout flow submits the payment for the cart.")
        unrelated = model.embed_text("Users edit their avatar and notification settings.")

        assert cosine_similarity(query, related) > cosine_similarity(query, unrelated)

    def test_embed_many(self):
        model = HashEmbeddingModel()
        assert model.embed_many(["a b", "c d"]) == [model.embed_text("a b"), model.embed_text("c d")]


class TestHashing:
    """Tests for the FNV-1a hash."""

    def test_empty_input_is_offset_basis(self):
        assert fnv1a_64(b"") == 1469598103934665603

    def test_fits_in_64_bits(self):
        assert 0 <= fnv1a_64(b"checkout") < 2 ** 64

    def test_distinct_inputs(self):
        assert fnv1a_64(b"abc") != fnv1a_64(b"abd")


class TestSerialisation:
    """Tests for blob and JSON encodings."""

    def test_blob_is_little_endian_float64(self):
        blob = vector_to_blob([1.0, -0.5])
        assert len(blob) == 16
        assert blob[:8] == b"\x00\x00\x00\x00\x00\x00\xf0\x3f"
        assert blob_to_vector(blob) == [1.0, -0.5]

    def test_bad_blob_length_is_corruption(self):
        with pytest.raises(IndexCorruptionError):
            blob_to_vector(b"\x00" * 12)

    def test_empty_blob(self):
        assert blob_to_vector(b"") == []

    def test_json_is_compact(self):
        assert vector_to_json([0.5, 0.25]) == "[0.5,0.25]"


class TestCosine:
    """Tests for cosine_similarity on normalised vectors."""

    def test_identical(self):
        vec = HashEmbeddingModel().embed_text("impact analysis")
        assert cosine_similarity(vec, vec) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_shared_vocabulary_is_closer(self):
        query = semantic_vector("authorization policy")
        near = semantic_vector("authorization rules and policy for access")
        far = semantic_vector("invoice tax and payment details")

        assert cosine_similarity(query, near) > cosine_similarity(query, far)
