"""Document snapshots, the host protocol, and the snapshot store."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol

from canvas_history.commands.scene import SceneDocument
from canvas_history.errors import SnapshotCorruptError


def checksum_for(data: Any) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class DocumentSnapshot:
    """Serialized document state plus a display thumbnail."""

    data: Any
    thumbnail: Optional[str] = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.checksum:
            object.__setattr__(self, "checksum", checksum_for(self.data))

    def verify(self) -> bool:
        return checksum_for(self.data) == self.checksum

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "thumbnail": self.thumbnail,
            "captured_at": self.captured_at.isoformat(),
            "checksum": self.checksum,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DocumentSnapshot":
        return cls(
            data=payload["data"],
            thumbnail=payload.get("thumbnail"),
            captured_at=datetime.fromisoformat(payload["captured_at"]),
            checksum=str(payload.get("checksum") or ""),
        )


class DocumentHost(Protocol):
    """Boundary between the engine and whatever owns the live document."""

    document: Any

    def serialize(self) -> DocumentSnapshot:
        """Capture the current ``document`` as a snapshot."""
        ...

    def restore(self, snapshot: DocumentSnapshot) -> Any:
        """Rebuild a document value from ``snapshot`` without installing it."""
        ...


class SceneHost:
    """Reference host for :class:`SceneDocument` values."""

    def __init__(self, document: Optional[SceneDocument] = None) -> None:
        self.document = document or SceneDocument()

    def serialize(self) -> DocumentSnapshot:
        return DocumentSnapshot(
            data=self.document.to_dict(), thumbnail=self.thumbnail(self.document)
        )

    def restore(self, snapshot: DocumentSnapshot) -> SceneDocument:
        return SceneDocument.from_dict(snapshot.data)

    @staticmethod
    def thumbnail(document: SceneDocument) -> str:
        kinds: Dict[str, int] = {}
        for obj in document.objects:
            kinds[obj.kind] = kinds.get(obj.kind, 0) + 1
        parts = [f"{count} {kind}" for kind, count in sorted(kinds.items())]
        summary = ", ".join(parts) if parts else "empty"
        return f"{summary} | {len(document.layers)} layers | bg {document.background}"


class SnapshotStore:
    """Keeps snapshots addressed by short refs.

    Entries point at snapshots through ``HistoryEntry.snapshot_ref``; the store
    itself never decides what is still referenced, callers prune it with
    :meth:`retain_only`.
    """

    def __init__(self) -> None:
        self._snapshots: Dict[str, DocumentSnapshot] = {}
        self._counter = 0

    def __len__(self) -> int:
        return len(self._snapshots)

    def __contains__(self, ref: object) -> bool:
        return ref in self._snapshots

    def capture(self, host: DocumentHost) -> str:
        return self.add(host.serialize())

    def add(self, snapshot: DocumentSnapshot) -> str:
        self._counter += 1
        ref = f"snap-{self._counter}"
        self._snapshots[ref] = snapshot
        return ref

    def get(self, ref: str) -> DocumentSnapshot:
        try:
            snapshot = self._snapshots[ref]
        except KeyError as exc:
            raise SnapshotCorruptError(f"Snapshot '{ref}' is missing", ref=ref) from exc
        if not snapshot.verify():
            raise SnapshotCorruptError(f"Snapshot '{ref}' failed its checksum", ref=ref)
        return snapshot

    def discard(self, ref: str) -> None:
        self._snapshots.pop(ref, None)

    def retain_only(self, refs: Iterable[str]) -> int:
        keep = set(refs)
        dropped = [ref for ref in self._snapshots if ref not in keep]
        for ref in dropped:
            del self._snapshots[ref]
        return len(dropped)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counter": self._counter,
            "snapshots": {ref: snap.to_dict() for ref, snap in self._snapshots.items()},
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SnapshotStore":
        store = cls()
        for ref, raw in dict(payload.get("snapshots") or {}).items():
            store._snapshots[str(ref)] = DocumentSnapshot.from_dict(raw)
        suffixes = [
            int(ref.rsplit("-", 1)[-1])
            for ref in store._snapshots
            if ref.rsplit("-", 1)[-1].isdigit()
        ]
        store._counter = max([int(payload.get("counter", 0)), *suffixes])
        return store


__all__ = [
    "DocumentSnapshot",
    "DocumentHost",
    "SceneHost",
    "SnapshotStore",
    "checksum_for",
]
