"""History engine façade: execute, undo/redo, jumps, branches, and notifications."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, List, Literal, Optional, Tuple

from canvas_history.config import HistoryConfig
from canvas_history.errors import CommandApplyError, SnapshotCorruptError
from canvas_history.runtime import telemetry

from .branch import MAIN_BRANCH_ID, Branch, HistoryEntry, utcnow
from .graph import HistoryGraph, SavedMarker, stamp_undone
from .snapshots import DocumentHost

if TYPE_CHECKING:  # pragma: no cover
    from canvas_history.persistence.adapter import PersistenceAdapter

StepKind = Literal["apply", "invert"]
ReplayStep = Tuple[int, StepKind]


@dataclass(frozen=True, slots=True)
class HistoryInfo:
    """Snapshot of engine state handed to observers."""

    current_index: int
    current_branch: str
    has_unsaved_changes: bool
    size: int = 0
    can_undo: bool = False
    can_redo: bool = False
    branches: Tuple[str, ...] = (MAIN_BRANCH_ID,)
    warning: Optional[str] = None


HistoryObserver = Callable[[HistoryInfo], None]


def plan_steps(
    source_ids: List[int],
    source_index: int,
    target_ids: List[int],
    target_index: int,
) -> List[ReplayStep]:
    """Steps that move the document from one pointer to another.

    Walks back along the source sequence to the last entry both sequences
    share, then forward along the target sequence.
    """

    common = 0
    while (
        common < len(source_ids)
        and common < len(target_ids)
        and source_ids[common] == target_ids[common]
    ):
        common += 1
    meet = min(source_index, target_index, common - 1)
    steps: List[ReplayStep] = [
        (source_ids[position], "invert")
        for position in range(source_index, meet, -1)
    ]
    steps.extend(
        (target_ids[position], "apply")
        for position in range(meet + 1, target_index + 1)
    )
    return steps


def _describe(command: Any) -> str:
    return str(getattr(command, "description", type(command).__name__))


class HistoryEngine:
    """Orchestrates every history mutation for a single editing session.

    ``execute_command``, ``undo`` and ``redo`` are synchronous. Multi-step
    moves (``jump_to_history``, ``switch_branch``) are coroutines guarded by a
    generation counter: any newer mutation makes an in-flight replay abort
    without touching state.
    """

    def __init__(
        self,
        host: DocumentHost,
        config: Optional[HistoryConfig] = None,
        *,
        graph: Optional[HistoryGraph] = None,
        persistence: Optional["PersistenceAdapter"] = None,
        on_history_change: Optional[HistoryObserver] = None,
        logger_name: Optional[str] = None,
    ) -> None:
        self.host = host
        self.config = config or HistoryConfig()
        self.graph = graph or HistoryGraph()
        self.persistence = persistence if self.config.enable_persistence else None
        self._logger_name = logger_name or "canvas_history.engine"
        self._observers: List[HistoryObserver] = []
        self._generation = 0
        if on_history_change is not None:
            self.subscribe(on_history_change)
        if len(self.graph.entries) > self.config.max_history_size:
            self.graph.evict(self.config.max_history_size)

    @classmethod
    async def open(
        cls,
        host: DocumentHost,
        config: Optional[HistoryConfig] = None,
        *,
        persistence: Optional["PersistenceAdapter"] = None,
        on_history_change: Optional[HistoryObserver] = None,
        logger_name: Optional[str] = None,
    ) -> "HistoryEngine":
        """Build an engine, restoring persisted history when available."""

        config = config or HistoryConfig()
        graph: Optional[HistoryGraph] = None
        if persistence is not None and config.enable_persistence:
            graph = await persistence.load()
        if graph is None:
            telemetry.record_event(
                "history.session_fresh", data={"persistence": config.enable_persistence}
            )
        return cls(
            host,
            config,
            graph=graph,
            persistence=persistence,
            on_history_change=on_history_change,
            logger_name=logger_name,
        )

    # -- observers -------------------------------------------------------

    def subscribe(self, observer: HistoryObserver) -> Callable[[], None]:
        """Register ``observer``; the returned callable unsubscribes it."""

        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, warning: Optional[str] = None) -> None:
        info = self._build_info(warning)
        for observer in list(self._observers):
            try:
                observer(info)
            except Exception as exc:
                telemetry.record_event(
                    "history.observer_failed",
                    level="error",
                    data={"observer": repr(observer), "error": str(exc)},
                    logger_name=self._logger_name,
                )

    # -- derived state ---------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def current_index(self) -> int:
        return self.graph.active.current_index

    @property
    def current_branch(self) -> str:
        return self.graph.active_branch_id

    @property
    def can_undo(self) -> bool:
        return self.graph.active.current_index >= 0

    @property
    def can_redo(self) -> bool:
        branch = self.graph.active
        return branch.current_index < self.graph.length(branch.id) - 1

    @property
    def has_unsaved_changes(self) -> bool:
        branch = self.graph.active
        return not self.graph.marker_matches(branch.id, branch.current_index)

    @property
    def history_info(self) -> HistoryInfo:
        return self._build_info()

    def _build_info(self, warning: Optional[str] = None) -> HistoryInfo:
        branch = self.graph.active
        return HistoryInfo(
            current_index=branch.current_index,
            current_branch=branch.id,
            has_unsaved_changes=self.has_unsaved_changes,
            size=self.graph.length(branch.id),
            can_undo=self.can_undo,
            can_redo=self.can_redo,
            branches=tuple(self.graph.branches),
            warning=warning,
        )

    def get_history(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self.graph.entries_for(self.graph.active_branch_id))

    def get_branches(self) -> Tuple[Branch, ...]:
        return tuple(self.graph.iter_branches())

    # -- linear history --------------------------------------------------

    def execute_command(self, command: Any) -> HistoryEntry:
        description = _describe(command)
        with telemetry.span(
            "history::execute",
            logger_name=self._logger_name,
            component="history",
            metadata={"command": description},
        ) as handle:
            self._advance_generation()
            try:
                document = command.apply(self.host.document)
            except Exception as exc:
                handle.add_metadata("apply_failed", str(exc))
                raise CommandApplyError(
                    f"Command '{description}' failed to apply: {exc}", command=command
                ) from exc

            self.host.document = document
            branch = self.graph.active
            self.graph.truncate(branch.id, branch.current_index + 1)
            entry = self._merge_into_current(command)
            if entry is None:
                entry = self.graph.append(branch.id, command)
                branch.current_index += 1
            handle.add_metadata("index", branch.current_index)

            self.graph.executed_count += 1
            interval = self.config.snapshot_interval
            if interval and self.graph.executed_count % interval == 0:
                self._capture_snapshot(entry)

            evicted = self.graph.evict(self.config.max_history_size)
            if evicted:
                handle.add_metadata("evicted", len(evicted))
                telemetry.record_event(
                    "history.evicted",
                    data={"count": len(evicted), "retained": len(self.graph.entries)},
                    logger_name=self._logger_name,
                )
            self.graph.collect_garbage()

        self._persist()
        self._notify()
        return entry

    def _merge_into_current(self, command: Any) -> Optional[HistoryEntry]:
        can_merge = getattr(command, "can_merge", None)
        branch = self.graph.active
        if can_merge is None or branch.current_index < 0:
            return None
        entry = self.graph.entry_at(branch.id, branch.current_index)
        if not can_merge(entry.command):
            return None
        if not self.graph.is_exclusive(entry.id, branch.id):
            return None
        if self.graph.marker_matches(branch.id, branch.current_index):
            return None
        try:
            merged = command.merge(entry.command)
        except Exception as exc:
            telemetry.record_event(
                "history.merge_failed",
                level="warning",
                data={"command": _describe(command), "error": str(exc)},
                logger_name=self._logger_name,
            )
            return None
        entry.command = merged
        entry.executed_at = utcnow()
        entry.undone_at = None
        entry.snapshot_ref = None
        return entry

    def undo(self) -> bool:
        branch = self.graph.active
        if branch.current_index < 0:
            return False
        entry = self.graph.entry_at(branch.id, branch.current_index)
        with telemetry.span(
            "history::undo",
            logger_name=self._logger_name,
            component="history",
            metadata={"command": entry.description, "index": branch.current_index},
        ) as handle:
            self._advance_generation()
            try:
                document = entry.command.invert(self.host.document)
            except Exception as exc:
                handle.add_metadata("invert_failed", str(exc))
                telemetry.record_event(
                    "history.undo_failed",
                    level="error",
                    data={"command": entry.description, "error": str(exc)},
                    logger_name=self._logger_name,
                )
                return False
            self.host.document = document
            entry.undone_at = utcnow()
            branch.current_index -= 1
        self._persist()
        self._notify()
        return True

    def redo(self) -> bool:
        branch = self.graph.active
        if branch.current_index >= self.graph.length(branch.id) - 1:
            return False
        entry = self.graph.entry_at(branch.id, branch.current_index + 1)
        with telemetry.span(
            "history::redo",
            logger_name=self._logger_name,
            component="history",
            metadata={"command": entry.description, "index": branch.current_index + 1},
        ) as handle:
            self._advance_generation()
            try:
                document = entry.command.apply(self.host.document)
            except Exception as exc:
                handle.add_metadata("apply_failed", str(exc))
                telemetry.record_event(
                    "history.redo_failed",
                    level="error",
                    data={"command": entry.description, "error": str(exc)},
                    logger_name=self._logger_name,
                )
                return False
            self.host.document = document
            entry.undone_at = None
            branch.current_index += 1
        self._persist()
        self._notify()
        return True

    async def jump_to_history(self, index: int) -> bool:
        """Move the active branch pointer to ``index`` (``-1`` = before first)."""

        branch = self.graph.active
        length = self.graph.length(branch.id)
        if index < -1 or index >= length:
            telemetry.record_event(
                "history.jump_out_of_range",
                level="warning",
                data={"index": index, "length": length, "branch": branch.id},
                logger_name=self._logger_name,
            )
            return False
        generation = self._advance_generation()
        return await self._replay(generation, branch.id, index, operation="jump")

    def clear_history(self) -> None:
        """Reset to a single empty ``main`` branch; the document is left as is."""

        with telemetry.span(
            "history::clear", logger_name=self._logger_name, component="history"
        ):
            self._advance_generation()
            self.graph = HistoryGraph()
        self._persist()
        self._notify()

    def mark_saved(self) -> None:
        self._advance_generation()
        branch = self.graph.active
        self.graph.saved_marker = SavedMarker(branch.id, branch.current_index)
        if branch.current_index >= 0:
            self._capture_snapshot(self.graph.entry_at(branch.id, branch.current_index))
        telemetry.record_event(
            "history.saved",
            data={"branch": branch.id, "index": branch.current_index},
            logger_name=self._logger_name,
        )
        self._persist()
        self._notify()

    # -- branches --------------------------------------------------------

    def create_branch(self, name: str) -> Optional[str]:
        """Fork the active branch at its pointer; returns the new id or ``None``."""

        if not self.config.enable_branching:
            telemetry.record_event(
                "history.branching_disabled",
                level="warning",
                data={"name": name},
                logger_name=self._logger_name,
            )
            return None
        if not name or self.graph.has_branch_name(name):
            return None
        with telemetry.span(
            "history::create_branch",
            logger_name=self._logger_name,
            component="history",
            metadata={"name": name, "from": self.graph.active_branch_id},
        ):
            self._advance_generation()
            parent = self.graph.active
            branch = self.graph.fork(name)
            if parent.current_index >= 0:
                self._capture_snapshot(
                    self.graph.entry_at(parent.id, parent.current_index)
                )
        self._persist()
        self._notify()
        return branch.id

    async def switch_branch(self, branch_id: str) -> bool:
        """Activate ``branch_id`` and move the document to its tip."""

        if not self.config.enable_branching:
            return False
        if branch_id not in self.graph.branches:
            telemetry.record_event(
                "history.branch_not_found",
                level="warning",
                data={"branch": branch_id},
                logger_name=self._logger_name,
            )
            return False
        if branch_id == self.graph.active_branch_id:
            return True
        generation = self._advance_generation()
        tip = self.graph.length(branch_id) - 1
        return await self._replay(generation, branch_id, tip, operation="switch")

    def delete_branch(self, branch_id: str) -> bool:
        if not self.config.enable_branching:
            return False
        if branch_id == MAIN_BRANCH_ID or branch_id == self.graph.active_branch_id:
            return False
        if branch_id not in self.graph.branches:
            telemetry.record_event(
                "history.branch_not_found",
                level="warning",
                data={"branch": branch_id},
                logger_name=self._logger_name,
            )
            return False
        with telemetry.span(
            "history::delete_branch",
            logger_name=self._logger_name,
            component="history",
            metadata={"branch": branch_id},
        ):
            self._advance_generation()
            self.graph.remove_branch(branch_id)
        self._persist()
        self._notify()
        return True

    # -- replay ----------------------------------------------------------

    async def _replay(
        self, generation: int, branch_id: str, target_index: int, *, operation: str
    ) -> bool:
        source = self.graph.active
        source_ids = self.graph.entry_ids(source.id)
        target_ids = self.graph.entry_ids(branch_id)
        steps = plan_steps(source_ids, source.current_index, target_ids, target_index)
        document = self.host.document
        warning: Optional[str] = None

        with telemetry.span(
            f"history::{operation}",
            logger_name=self._logger_name,
            component="history",
            metadata={
                "branch": branch_id,
                "target": target_index,
                "generation": generation,
            },
        ) as handle:
            if len(steps) > self.config.replay_threshold:
                restored, warning = self._restore_nearest_snapshot(
                    target_ids, target_index, len(steps)
                )
                if restored is not None:
                    position, document = restored
                    steps = [
                        (target_ids[p], "apply")
                        for p in range(position + 1, target_index + 1)
                    ]
                    handle.add_metadata("snapshot_position", position)
            handle.add_metadata("steps", len(steps))

            await asyncio.sleep(0)
            for entry_id, kind in steps:
                if generation != self._generation:
                    handle.cancel("superseded")
                    return False
                command = self.graph.entries[entry_id].command
                try:
                    if kind == "apply":
                        document = command.apply(document)
                    else:
                        document = command.invert(document)
                except Exception as exc:
                    handle.add_metadata("step_failed", str(exc))
                    telemetry.record_event(
                        "history.replay_failed",
                        level="error",
                        data={"command": _describe(command), "error": str(exc)},
                        logger_name=self._logger_name,
                    )
                    return False
                await asyncio.sleep(0)

            if generation != self._generation:
                handle.cancel("superseded")
                return False

            target = self.graph.branches.get(branch_id)
            if target is None or target_index >= self.graph.length(branch_id):
                handle.cancel("target branch changed")
                return False

            self.host.document = document
            self.graph.active_branch_id = branch_id
            target.current_index = target_index
            stamp_undone(self.graph.entries_for(branch_id), target_index)

        self._persist()
        self._notify(warning)
        return True

    def _restore_nearest_snapshot(
        self, target_ids: List[int], target_index: int, incremental_cost: int
    ) -> Tuple[Optional[Tuple[int, Any]], Optional[str]]:
        """Restore the nearest snapshot at or before ``target_index``.

        Corrupt snapshots are dropped and older ones tried in turn; when none
        survive the caller replays incrementally.
        """

        candidates = [
            position
            for position in range(target_index, -1, -1)
            if self.graph.entries[target_ids[position]].snapshot_ref is not None
        ]
        if not candidates or target_index - candidates[0] >= incremental_cost:
            return None, None

        warning: Optional[str] = None
        for position in candidates:
            entry = self.graph.entries[target_ids[position]]
            ref = entry.snapshot_ref
            if ref is None:
                continue
            try:
                snapshot = self.graph.snapshots.get(ref)
                try:
                    document = self.host.restore(snapshot)
                except Exception as exc:
                    raise SnapshotCorruptError(
                        f"Snapshot '{ref}' could not be restored: {exc}", ref=ref
                    ) from exc
            except SnapshotCorruptError as exc:
                warning = str(exc)
                telemetry.record_event(
                    "history.snapshot_corrupt",
                    level="warning",
                    data={"ref": ref, "position": position, "error": str(exc)},
                    logger_name=self._logger_name,
                )
                entry.snapshot_ref = None
                self.graph.snapshots.discard(ref)
                continue
            return (position, document), warning
        return None, warning

    # -- helpers ---------------------------------------------------------

    def _advance_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _capture_snapshot(self, entry: HistoryEntry) -> None:
        ref = entry.snapshot_ref
        if ref is not None and ref in self.graph.snapshots:
            return
        entry.snapshot_ref = self.graph.snapshots.capture(self.host)

    def _persist(self) -> None:
        if self.persistence is not None:
            self.persistence.schedule(self.graph)

    async def flush(self) -> None:
        """Wait for any debounced persistence write to land."""

        if self.persistence is not None:
            await self.persistence.flush()

    async def close(self) -> None:
        self._advance_generation()
        if self.persistence is not None:
            self.persistence.schedule(self.graph)
            await self.persistence.flush()
        self._observers.clear()


__all__ = ["HistoryEngine", "HistoryInfo", "HistoryObserver", "plan_steps"]
