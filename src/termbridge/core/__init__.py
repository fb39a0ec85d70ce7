"""Core module - identifier utilities"""

from .ids import EntityKind, IdAllocator, normalize_id, short_id

__all__ = [
    "EntityKind",
    "IdAllocator",
    "normalize_id",
    "short_id",
]
