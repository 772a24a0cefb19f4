"""Branch graph over a shared entry arena.

Entries live once in ``HistoryGraph.entries`` keyed by a monotonically
increasing id. A branch's logical sequence is ``parent[:base_length] + tail``,
so forking is O(1). Before a branch drops entries that a child still borrows,
the child copies the affected slice into its own tail.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from canvas_history.errors import (
    BranchNotFoundError,
    HistoryValidationError,
    IndexOutOfRangeError,
)
from canvas_history.runtime.telemetry import record_event

from .branch import MAIN_BRANCH_ID, Branch, HistoryEntry, utcnow
from .snapshots import SnapshotStore


@dataclass(frozen=True, slots=True)
class SavedMarker:
    branch_id: str
    index: int


class HistoryGraph:
    """Owns every branch, the entry arena, snapshots, and the save marker."""

    def __init__(
        self,
        *,
        entries: Optional[Dict[int, HistoryEntry]] = None,
        branches: Optional[Dict[str, Branch]] = None,
        active_branch_id: str = MAIN_BRANCH_ID,
        saved_marker: Optional[SavedMarker] = None,
        snapshots: Optional[SnapshotStore] = None,
        next_entry_id: Optional[int] = None,
        executed_count: int = 0,
    ) -> None:
        self.entries: Dict[int, HistoryEntry] = dict(entries or {})
        self.branches: Dict[str, Branch] = dict(branches or {})
        if not self.branches:
            self.branches[MAIN_BRANCH_ID] = Branch(MAIN_BRANCH_ID, MAIN_BRANCH_ID)
        self.active_branch_id = active_branch_id
        self.saved_marker = saved_marker
        self.snapshots = snapshots or SnapshotStore()
        # commands executed since the last clear; drives the snapshot cadence
        self.executed_count = executed_count
        highest = max(self.entries, default=0)
        self._next_entry_id = max(next_entry_id or 0, highest + 1)

    # -- lookups -----------------------------------------------------------

    @property
    def next_entry_id(self) -> int:
        return self._next_entry_id

    @property
    def active(self) -> Branch:
        return self.branch(self.active_branch_id)

    def branch(self, branch_id: str) -> Branch:
        try:
            return self.branches[branch_id]
        except KeyError:
            raise BranchNotFoundError(branch_id) from None

    def iter_branches(self) -> Iterator[Branch]:
        yield from self.branches.values()

    def has_branch_name(self, name: str) -> bool:
        return name in self.branches or any(
            branch.name == name for branch in self.branches.values()
        )

    def entry_ids(self, branch_id: str) -> List[int]:
        chain: List[Branch] = []
        seen: set[str] = set()
        branch = self.branch(branch_id)
        while True:
            if branch.id in seen:
                raise HistoryValidationError(
                    "branch lineage contains a cycle", path=f"branches.{branch_id}"
                )
            seen.add(branch.id)
            chain.append(branch)
            if not branch.borrows:
                break
            if branch.parent_branch_id is None:
                raise HistoryValidationError(
                    "borrowing branch has no parent", path=f"branches.{branch.id}"
                )
            branch = self.branch(branch.parent_branch_id)

        ids: List[int] = []
        for link in reversed(chain):
            if link.base_length > len(ids):
                raise HistoryValidationError(
                    "borrowed prefix exceeds parent length",
                    path=f"branches.{link.id}.base_length",
                )
            ids = ids[: link.base_length] + link.tail
        return ids

    def entries_for(self, branch_id: str) -> List[HistoryEntry]:
        return [self.entries[entry_id] for entry_id in self.entry_ids(branch_id)]

    def length(self, branch_id: str) -> int:
        return len(self.entry_ids(branch_id))

    def entry_at(self, branch_id: str, index: int) -> HistoryEntry:
        ids = self.entry_ids(branch_id)
        if index < 0 or index >= len(ids):
            raise IndexOutOfRangeError(index, branch_id=branch_id, length=len(ids))
        return self.entries[ids[index]]

    def branches_containing(self, entry_id: int) -> List[str]:
        return [
            branch_id
            for branch_id in self.branches
            if entry_id in self.entry_ids(branch_id)
        ]

    def is_exclusive(self, entry_id: int, branch_id: str) -> bool:
        return self.branches_containing(entry_id) == [branch_id]

    def children_of(self, branch_id: str) -> List[Branch]:
        return [
            branch
            for branch in self.branches.values()
            if branch.parent_branch_id == branch_id and branch.id != branch_id
        ]

    def marker_matches(self, branch_id: str, index: int) -> bool:
        marker = self.saved_marker
        return marker is not None and marker == SavedMarker(branch_id, index)

    # -- mutation ------------------------------------------------------------

    def append(self, branch_id: str, command: Any) -> HistoryEntry:
        """Record ``command`` at the end of ``branch_id``'s sequence."""

        branch = self.branch(branch_id)
        entry = HistoryEntry(id=self._next_entry_id, command=command)
        self._next_entry_id += 1
        self.entries[entry.id] = entry
        branch.tail.append(entry.id)
        return entry

    def truncate(self, branch_id: str, keep: int) -> List[int]:
        """Drop every entry at position ``>= keep``; returns the dropped ids."""

        ids = self.entry_ids(branch_id)
        if keep >= len(ids):
            return []
        keep = max(keep, 0)
        self._release_dependents(branch_id, keep)
        branch = self.branch(branch_id)
        if keep >= branch.base_length:
            del branch.tail[keep - branch.base_length :]
        else:
            branch.base_length = keep
            branch.tail = []
        marker = self.saved_marker
        if (
            marker is not None
            and marker.branch_id == branch_id
            and marker.index >= keep
        ):
            self.saved_marker = None
        return ids[keep:]

    def fork(self, name: str) -> Branch:
        """Create a branch borrowing the active branch up to its pointer."""

        if not name:
            raise ValueError("branch name cannot be empty")
        if self.has_branch_name(name):
            raise ValueError(f"Branch '{name}' already exists")
        parent = self.active
        fork_index = parent.current_index
        child = Branch(
            id=name,
            name=name,
            parent_branch_id=parent.id,
            fork_index=fork_index,
            current_index=fork_index,
            base_length=fork_index + 1,
        )
        self.branches[child.id] = child
        return child

    def remove_branch(self, branch_id: str) -> Branch:
        """Delete ``branch_id``; children are re-parented onto its parent."""

        branch = self.branch(branch_id)
        for child in self.children_of(branch_id):
            child_ids = self.entry_ids(child.id)
            inherited = min(child.base_length, branch.base_length)
            child.tail = child_ids[inherited:]
            child.base_length = inherited
            child.parent_branch_id = branch.parent_branch_id
        del self.branches[branch_id]
        if self.saved_marker is not None and self.saved_marker.branch_id == branch_id:
            self.saved_marker = None
        self.collect_garbage()
        return branch

    def evict(self, max_size: int) -> List[HistoryEntry]:
        """Drop the oldest evictable entries until the arena fits ``max_size``.

        An entry is evictable when it is the first entry of every branch
        holding it and sits strictly below each such branch's pointer.
        """

        evicted: List[HistoryEntry] = []
        while len(self.entries) > max_size:
            candidate = self._eviction_candidate()
            if candidate is None:
                record_event(
                    "history.eviction_blocked",
                    level="warning",
                    data={"retained": len(self.entries), "limit": max_size},
                )
                break
            evicted.append(self._evict_first(candidate))
        if evicted:
            self.collect_garbage()
        return evicted

    def collect_garbage(self) -> int:
        """Drop entries no branch reaches and snapshots no entry references."""

        reachable: set[int] = set()
        for branch_id in self.branches:
            reachable.update(self.entry_ids(branch_id))
        orphaned = [entry_id for entry_id in self.entries if entry_id not in reachable]
        for entry_id in orphaned:
            del self.entries[entry_id]
        self.snapshots.retain_only(
            entry.snapshot_ref
            for entry in self.entries.values()
            if entry.snapshot_ref is not None
        )
        return len(orphaned)

    def validate(self) -> None:
        """Raise :class:`HistoryValidationError` if any invariant is broken."""

        if MAIN_BRANCH_ID not in self.branches:
            raise HistoryValidationError("main branch is missing", path="branches")
        if self.active_branch_id not in self.branches:
            raise HistoryValidationError(
                f"active branch '{self.active_branch_id}' does not exist",
                path="active_branch_id",
            )
        main = self.branches[MAIN_BRANCH_ID]
        if main.borrows:
            raise HistoryValidationError(
                "main cannot borrow entries", path="branches.main"
            )
        for branch_id, branch in self.branches.items():
            if branch.id != branch_id:
                raise HistoryValidationError(
                    "id mismatch", path=f"branches.{branch_id}"
                )
            if branch.borrows and branch.parent_branch_id not in self.branches:
                raise HistoryValidationError(
                    f"parent '{branch.parent_branch_id}' does not exist",
                    path=f"branches.{branch_id}.parent_branch_id",
                )
            for entry_id in branch.tail:
                if entry_id not in self.entries:
                    raise HistoryValidationError(
                        f"unknown entry {entry_id}", path=f"branches.{branch_id}.tail"
                    )
            length = len(self.entry_ids(branch_id))
            if not -1 <= branch.current_index <= length - 1:
                raise HistoryValidationError(
                    f"current_index {branch.current_index} out of range",
                    path=f"branches.{branch_id}.current_index",
                )
        marker = self.saved_marker
        if marker is not None:
            if marker.branch_id not in self.branches:
                raise HistoryValidationError(
                    "save marker references a missing branch", path="saved_marker"
                )
            if not -1 <= marker.index < self.length(marker.branch_id):
                raise HistoryValidationError(
                    "save marker index out of range", path="saved_marker"
                )

    # -- internals -------------------------------------------------------

    def _release_dependents(self, branch_id: str, keep: int) -> None:
        for child in self.children_of(branch_id):
            if child.base_length <= keep:
                continue
            child_ids = self.entry_ids(child.id)
            child.tail = child_ids[keep:]
            child.base_length = keep

    def _eviction_candidate(self) -> Optional[int]:
        heads: set[int] = set()
        blocked: set[int] = set()
        for branch_id, branch in self.branches.items():
            ids = self.entry_ids(branch_id)
            if not ids:
                continue
            heads.add(ids[0])
            if branch.current_index < 1:
                blocked.add(ids[0])
            blocked.update(ids[1:])
        options = [entry_id for entry_id in heads if entry_id not in blocked]
        if not options:
            return None
        return min(
            options,
            key=lambda entry_id: (self.entries[entry_id].executed_at, entry_id),
        )

    def _evict_first(self, entry_id: int) -> HistoryEntry:
        affected = [
            branch
            for branch in self.branches.values()
            if self._first_entry(branch.id) == entry_id
        ]
        for branch in affected:
            if branch.borrows:
                branch.base_length -= 1
            else:
                branch.tail.pop(0)
            branch.current_index -= 1
            if branch.fork_index is not None:
                branch.fork_index = max(branch.fork_index - 1, -1)
        marker = self.saved_marker
        touched = {branch.id for branch in affected}
        if marker is not None and marker.branch_id in touched:
            shifted = marker.index - 1
            self.saved_marker = (
                SavedMarker(marker.branch_id, shifted) if shifted >= -1 else None
            )
        return self.entries.pop(entry_id)

    def _first_entry(self, branch_id: str) -> Optional[int]:
        ids = self.entry_ids(branch_id)
        return ids[0] if ids else None


def stamp_undone(entries: Sequence[HistoryEntry], pointer: int) -> None:
    """Align ``undone_at`` flags with a branch pointer."""

    now = utcnow()
    for position, entry in enumerate(entries):
        if position <= pointer:
            entry.undone_at = None
        elif entry.undone_at is None:
            entry.undone_at = now


__all__ = ["HistoryGraph", "SavedMarker", "stamp_undone"]
