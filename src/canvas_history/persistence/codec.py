"""JSON-ready encoding of a :class:`HistoryGraph`."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from canvas_history.commands.registry import CommandRegistry
from canvas_history.errors import HistoryValidationError, PersistenceError
from canvas_history.history.branch import Branch, HistoryEntry
from canvas_history.history.graph import HistoryGraph, SavedMarker
from canvas_history.history.snapshots import SnapshotStore
from canvas_history.runtime.telemetry import record_event

from .validation import (
    FORMAT_VERSION,
    ensure_int,
    ensure_list,
    ensure_mapping,
    ensure_payload,
    ensure_str,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_time(value: Any, path: str) -> datetime:
    try:
        return datetime.fromisoformat(ensure_str(value, path))
    except ValueError as exc:
        raise HistoryValidationError("invalid timestamp", path=path) from exc


def encode_graph(graph: HistoryGraph) -> Dict[str, Any]:
    entries = []
    for entry_id, entry in graph.entries.items():
        to_dict = getattr(entry.command, "to_dict", None)
        if to_dict is None:
            raise PersistenceError(
                f"Command '{entry.description}' does not support serialization"
            )
        entries.append(
            {
                "id": entry_id,
                "command": to_dict(),
                "executed_at": _iso(entry.executed_at),
                "undone_at": _iso(entry.undone_at),
                "snapshot_ref": entry.snapshot_ref,
            }
        )
    branches = [
        {
            "id": branch.id,
            "name": branch.name,
            "parent_branch_id": branch.parent_branch_id,
            "fork_index": branch.fork_index,
            "current_index": branch.current_index,
            "base_length": branch.base_length,
            "tail": list(branch.tail),
            "created_at": _iso(branch.created_at),
        }
        for branch in graph.iter_branches()
    ]
    marker = graph.saved_marker
    return {
        "version": FORMAT_VERSION,
        "active_branch_id": graph.active_branch_id,
        "saved_marker": (
            {"branch_id": marker.branch_id, "index": marker.index} if marker else None
        ),
        "next_entry_id": graph.next_entry_id,
        "executed_count": graph.executed_count,
        "entries": entries,
        "branches": branches,
        "snapshots": graph.snapshots.to_dict(),
    }


def _decode_entry(
    raw: Any, position: int, registry: CommandRegistry
) -> HistoryEntry:
    path = f"entries[{position}]"
    data = ensure_mapping(raw, path)
    command_payload = ensure_mapping(data.get("command"), f"{path}.command")
    try:
        command = registry.decode(command_payload)
    except (KeyError, ValueError, TypeError) as exc:
        raise HistoryValidationError(
            f"command could not be decoded: {exc}", path=f"{path}.command"
        ) from exc
    undone_raw = data.get("undone_at")
    snapshot_ref = data.get("snapshot_ref")
    return HistoryEntry(
        id=ensure_int(data.get("id"), f"{path}.id"),
        command=command,
        executed_at=_parse_time(data.get("executed_at"), f"{path}.executed_at"),
        undone_at=(
            _parse_time(undone_raw, f"{path}.undone_at")
            if undone_raw is not None
            else None
        ),
        snapshot_ref=str(snapshot_ref) if snapshot_ref is not None else None,
    )


def _decode_branch(raw: Any, position: int) -> Branch:
    path = f"branches[{position}]"
    data = ensure_mapping(raw, path)
    parent = data.get("parent_branch_id")
    fork_index = data.get("fork_index")
    tail = ensure_list(data.get("tail", []), f"{path}.tail")
    branch = Branch(
        id=ensure_str(data.get("id"), f"{path}.id"),
        name=ensure_str(data.get("name"), f"{path}.name"),
        parent_branch_id=ensure_str(parent, f"{path}.parent_branch_id")
        if parent is not None
        else None,
        fork_index=ensure_int(fork_index, f"{path}.fork_index")
        if fork_index is not None
        else None,
        current_index=ensure_int(data.get("current_index"), f"{path}.current_index"),
        base_length=ensure_int(data.get("base_length", 0), f"{path}.base_length"),
        tail=[ensure_int(item, f"{path}.tail") for item in tail],
    )
    if data.get("created_at") is not None:
        branch.created_at = _parse_time(data["created_at"], f"{path}.created_at")
    if branch.base_length < 0:
        raise HistoryValidationError("negative base_length", path=f"{path}.base_length")
    return branch


def decode_graph(payload: Any, registry: CommandRegistry) -> HistoryGraph:
    """Rebuild a graph, raising :class:`HistoryValidationError` when invalid."""

    data = ensure_payload(payload)
    entries: Dict[int, HistoryEntry] = {}
    for position, raw in enumerate(data["entries"]):
        entry = _decode_entry(raw, position, registry)
        if entry.id in entries:
            raise HistoryValidationError(
                f"duplicate entry id {entry.id}", path=f"entries[{position}].id"
            )
        entries[entry.id] = entry

    branches: Dict[str, Branch] = {}
    for position, raw in enumerate(data["branches"]):
        branch = _decode_branch(raw, position)
        if branch.id in branches:
            raise HistoryValidationError(
                f"duplicate branch id '{branch.id}'", path=f"branches[{position}].id"
            )
        branches[branch.id] = branch
    if not branches:
        raise HistoryValidationError("no branches", path="branches")

    try:
        snapshots = SnapshotStore.from_dict(data.get("snapshots") or {})
    except (KeyError, ValueError, TypeError) as exc:
        raise HistoryValidationError(
            f"invalid snapshots: {exc}", path="snapshots"
        ) from exc
    for entry in entries.values():
        if entry.snapshot_ref is not None and entry.snapshot_ref not in snapshots:
            record_event(
                "persistence.snapshot_missing",
                level="warning",
                data={"entry": entry.id, "ref": entry.snapshot_ref},
            )
            entry.snapshot_ref = None

    marker_raw: Optional[Mapping[str, Any]] = data.get("saved_marker")
    marker = (
        SavedMarker(str(marker_raw["branch_id"]), int(marker_raw["index"]))
        if marker_raw is not None
        else None
    )
    next_entry_id = data.get("next_entry_id")
    executed_count = data.get("executed_count")
    graph = HistoryGraph(
        entries=entries,
        branches=branches,
        active_branch_id=str(data["active_branch_id"]),
        saved_marker=marker,
        snapshots=snapshots,
        next_entry_id=next_entry_id if isinstance(next_entry_id, int) else None,
        executed_count=executed_count if isinstance(executed_count, int) else 0,
    )
    graph.validate()
    graph.collect_garbage()
    return graph


__all__ = ["encode_graph", "decode_graph"]
