"""History entries and the branch records that address them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

MAIN_BRANCH_ID = "main"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class HistoryEntry:
    """One recorded execution of a command.

    ``undone_at`` is set while the entry sits above its branch pointer and
    cleared when it is redone. ``snapshot_ref`` points into the graph's
    :class:`~canvas_history.history.snapshots.SnapshotStore` and describes the
    document *after* this entry was applied.
    """

    id: int
    command: Any
    executed_at: datetime = field(default_factory=utcnow)
    undone_at: Optional[datetime] = None
    snapshot_ref: Optional[str] = None

    @property
    def description(self) -> str:
        return str(getattr(self.command, "description", type(self.command).__name__))

    @property
    def is_undone(self) -> bool:
        return self.undone_at is not None


@dataclass(slots=True)
class Branch:
    """Named timeline over the graph's entry arena.

    The first ``base_length`` entries are borrowed from the parent branch's
    sequence; ``tail`` lists entry ids this branch holds itself. A fresh fork
    borrows everything up to its fork point and owns an empty tail.
    """

    id: str
    name: str
    parent_branch_id: Optional[str] = None
    fork_index: Optional[int] = None
    current_index: int = -1
    base_length: int = 0
    tail: List[int] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def borrows(self) -> bool:
        return self.base_length > 0


__all__ = ["MAIN_BRANCH_ID", "HistoryEntry", "Branch", "utcnow"]
