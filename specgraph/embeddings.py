"""Deterministic hash embeddings for chunk text.

Each vector is a bag of hashed word tokens (weight 2.0) plus hashed
character trigrams (weight 1.0), folded into ``EMBEDDING_DIM`` buckets
with FNV-1a and L2-normalised. No model download, no ML dependencies,
and identical output on every platform.
"""

from __future__ import annotations

import json
import math
import struct
from typing import Iterable, List

from .config import EMBEDDING_DIM, EMBEDDING_MODEL_TAG
from .errors import IndexCorruptionError
from .text import ascii_lower, tokenize

FNV_OFFSET_BASIS = 1469598103934665603
FNV_PRIME = 1099511628211
_U64_MASK = 0xFFFFFFFFFFFFFFFF

TOKEN_WEIGHT = 2.0
TRIGRAM_WEIGHT = 1.0

_F64_WIDTH = struct.calcsize("<d")


def fnv1a_64(data: bytes) -> int:
    value = FNV_OFFSET_BASIS
    for byte in data:
        value ^= byte
        value = (value * FNV_PRIME) & _U64_MASK
    return value


class HashEmbeddingModel:
    """Token + trigram hashing embedder.

    The ``model_tag`` is stored next to every vector so a future change to
    the hashing scheme can coexist with (and ignore) older rows.
    """

    model_tag = EMBEDDING_MODEL_TAG

    def __init__(self, dim: int = EMBEDDING_DIM) -> None:
        self.dim = dim

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        normalized = ascii_lower(text)

        for token in tokenize(normalized):
            vec[fnv1a_64(token.encode("utf-8")) % self.dim] += TOKEN_WEIGHT

        compact = "".join(
            ch for ch in normalized
            if (ch.isascii() and ch.isalnum()) or ch.isspace()
        )
        for i in range(len(compact) - 2):
            gram = compact[i:i + 3]
            vec[fnv1a_64(gram.encode("utf-8")) % self.dim] += TRIGRAM_WEIGHT

        return _l2_normalize(vec)

    def embed_many(self, texts: Iterable[str]) -> List[List[float]]:
        return [self.embed_text(text) for text in texts]


_DEFAULT_MODEL = HashEmbeddingModel()


def semantic_vector(text: str) -> List[float]:
    """Embed *text* with the default 256-dimension hash model."""
    return _DEFAULT_MODEL.embed_text(text)


def cosine_similarity(vec_a: List[float], vec_b: List[float]) -> float:
    """Dot product over the shared prefix of two L2-normalised vectors.

    Both inputs come out of :func:`_l2_normalize`, so the dot product is
    the cosine. Vectors of different length compare over the shorter one.
    """
    return sum(a * b for a, b in zip(vec_a, vec_b))


def _l2_normalize(vec: List[float]) -> List[float]:
    """Return a unit-length copy of *vec*; a zero vector is returned unchanged."""
    norm = math.sqrt(sum(v * v for v in vec))
    if norm <= 0.0:
        return vec
    return [v / norm for v in vec]


# ===================================================================
# Serialisation
# ===================================================================

def vector_to_blob(vec: List[float]) -> bytes:
    """Pack as little-endian float64."""
    return struct.pack(f"<{len(vec)}d", *vec)


def blob_to_vector(blob: bytes) -> List[float]:
    """Unpack a :func:`vector_to_blob` payload.

    Raises:
        IndexCorruptionError: If the blob length is not a multiple of 8.
    """
    if len(blob) % _F64_WIDTH:
        raise IndexCorruptionError(f"invalid embedding blob length: {len(blob)}")
    return list(struct.unpack(f"<{len(blob) // _F64_WIDTH}d", blob))


def vector_to_json(vec: List[float]) -> str:
    return json.dumps([round(v, 8) for v in vec], separators=(",", ":"))
