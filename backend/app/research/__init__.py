from backend.app.research.augment import NullSearchAugmenter, format_search_facts, is_follow_up, needs_search

__all__ = ["NullSearchAugmenter", "format_search_facts", "is_follow_up", "needs_search"]
