from .store import InMemoryConversationStore

__all__ = ["InMemoryConversationStore"]
