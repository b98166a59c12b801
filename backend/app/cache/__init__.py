from .embedding import EMBEDDING_DIMENSIONS, cosine_similarity, embed, normalize_query
from .semantic import CachedResponse, CacheEntry, CacheLookup, CacheStats, SemanticCache

__all__ = [
    "EMBEDDING_DIMENSIONS",
    "cosine_similarity",
    "embed",
    "normalize_query",
    "CachedResponse",
    "CacheEntry",
    "CacheLookup",
    "CacheStats",
    "SemanticCache",
]
