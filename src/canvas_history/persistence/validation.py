"""Shape checks for persisted history payloads."""

from __future__ import annotations

from typing import Any, Mapping

from canvas_history.errors import HistoryValidationError

FORMAT_VERSION = 1


def ensure_mapping(value: Any, path: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise HistoryValidationError("expected an object", path=path)
    return value


def ensure_list(value: Any, path: str) -> list:
    if not isinstance(value, list):
        raise HistoryValidationError("expected a list", path=path)
    return value


def ensure_int(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise HistoryValidationError("expected an integer", path=path)
    return value


def ensure_str(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value:
        raise HistoryValidationError("expected a non-empty string", path=path)
    return value


def ensure_payload(payload: Any) -> Mapping[str, Any]:
    data = ensure_mapping(payload, "$")
    version = data.get("version")
    if version != FORMAT_VERSION:
        raise HistoryValidationError(
            f"unsupported format version {version!r}", path="version"
        )
    ensure_str(data.get("active_branch_id"), "active_branch_id")
    ensure_list(data.get("entries"), "entries")
    ensure_list(data.get("branches"), "branches")
    ensure_mapping(data.get("snapshots", {}), "snapshots")
    marker = data.get("saved_marker")
    if marker is not None:
        marker = ensure_mapping(marker, "saved_marker")
        ensure_str(marker.get("branch_id"), "saved_marker.branch_id")
        ensure_int(marker.get("index"), "saved_marker.index")
    return data


__all__ = [
    "FORMAT_VERSION",
    "ensure_payload",
    "ensure_mapping",
    "ensure_list",
    "ensure_int",
    "ensure_str",
]
