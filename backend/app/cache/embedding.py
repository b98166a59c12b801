"""
Deterministic hashed bag-of-words embedding.

Cheap stand-in for a real embedding model: each word is hashed into one of
``EMBEDDING_DIMENSIONS`` buckets and the count vector is L2-normalized. Stable
across processes (no reliance on Python's randomized ``hash``), so entries
stored by one worker compare correctly against queries embedded by another.
"""

from __future__ import annotations

import hashlib
import math
import re
from typing import List, Sequence

EMBEDDING_DIMENSIONS = 100

_WORD = re.compile(r"[\w']+", re.UNICODE)
_TRAILING_PUNCT = re.compile(r"[\s?!.,;:]+$")


def normalize_query(query: str | None) -> str:
    """
    Canonical form used for keys and embeddings.

    Args:
        query: Raw query text

    Returns:
        Lower-cased text with collapsed whitespace and no trailing punctuation
    """
    if not query:
        return ""
    text = re.sub(r"\s+", " ", query.strip().lower())
    return _TRAILING_PUNCT.sub("", text)


def _bucket(word: str, dimensions: int) -> int:
    digest = hashlib.blake2b(word.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dimensions


def embed(text: str, dimensions: int = EMBEDDING_DIMENSIONS) -> List[float]:
    vector = [0.0] * dimensions
    for word in _WORD.findall(normalize_query(text)):
        vector[_bucket(word, dimensions)] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector
    return [v / norm for v in vector]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError("embedding dimensions differ")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def query_hash(normalized: str) -> str:
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]


__all__ = ["EMBEDDING_DIMENSIONS", "cosine_similarity", "embed", "normalize_query", "query_hash"]
