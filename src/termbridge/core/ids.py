"""Identifier utilities

Two identifier spaces meet in termbridge:
- local ids handed to callers: "window-N", "tab-N", "pane-N"
- iTerm2 session ids, the only key the automation API understands.
  They come either as a pure UUID or prefixed with the window/tab/pane
  position ($ITERM_SESSION_ID style, e.g. "w0t1p1:UUID").
"""

import itertools
from dataclasses import dataclass
from enum import Enum


class EntityKind(Enum):
    """Kind of tracked entity."""

    WINDOW = "window"
    TAB = "tab"
    PANE = "pane"


@dataclass(frozen=True)
class LocalId:
    """Parsed local identifier."""

    kind: EntityKind
    number: int

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.number}"


class IdAllocator:
    """Monotonic per-kind identifier allocator.

    Counters only move forward; an id is never handed out twice within the
    lifetime of the allocator, even after the entity it named is removed.
    """

    def __init__(self, start: int = 0):
        self._counters = {kind: itertools.count(start) for kind in EntityKind}

    def allocate(self, kind: EntityKind | str) -> str:
        """Return a fresh identifier of the requested kind.

        Args:
            kind: EntityKind or its string value ("window", "tab", "pane")

        Returns:
            Identifier like "pane-3"
        """
        kind = EntityKind(kind)
        return str(LocalId(kind, next(self._counters[kind])))


def normalize_id(session_id: str) -> str:
    """Normalize an iTerm2 session ID by extracting the UUID part.

    Args:
        session_id: "UUID" or "w0t1p1:UUID"

    Returns:
        The UUID part
    """
    if ":" in session_id:
        return session_id.split(":")[-1]
    return session_id


def short_id(session_id: str, length: int = 8) -> str:
    """Get a short display version of a session ID for logging."""
    return normalize_id(session_id)[:length]
