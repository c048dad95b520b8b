"""
Sync cursor persistence.
"""

from .cursor_store import CursorStore, InMemoryCursorStore, RedisCursorStore

__all__ = [
    "CursorStore",
    "InMemoryCursorStore",
    "RedisCursorStore",
]
