"""Command protocol: reversible, pure edit operations."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Protocol, Sequence, runtime_checkable


class CommandType(str, Enum):
    OBJECT_ADD = "object_add"
    OBJECT_REMOVE = "object_remove"
    OBJECT_MODIFY = "object_modify"
    OBJECT_MOVE = "object_move"
    OBJECT_TRANSFORM = "object_transform"
    LAYER_CREATE = "layer_create"
    LAYER_DELETE = "layer_delete"
    LAYER_MODIFY = "layer_modify"
    LAYER_REORDER = "layer_reorder"
    CANVAS_CLEAR = "canvas_clear"
    CANVAS_BACKGROUND = "canvas_background"
    BATCH_OPERATION = "batch_operation"


@runtime_checkable
class Command(Protocol):
    """Structural contract every history command satisfies.

    ``apply`` and ``invert`` receive a document value and return a new one.
    They must not mutate their input; raising leaves the caller's document
    untouched.
    """

    id: str
    type: CommandType
    description: str
    timestamp: datetime

    def apply(self, document: Any) -> Any: ...

    def invert(self, document: Any) -> Any: ...

    def can_merge(self, other: "Command") -> bool: ...

    def merge(self, other: "Command") -> "Command": ...

    def to_dict(self) -> Dict[str, Any]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_command_id(kind: CommandType | str) -> str:
    value = kind.value if isinstance(kind, CommandType) else kind
    return f"{value}_{uuid.uuid4().hex[:12]}"


class BaseCommand:
    """Shared identity, metadata, and serialization for concrete commands."""

    #: decoder key used by :class:`~canvas_history.commands.registry.CommandRegistry`
    kind: str = "base"

    def __init__(
        self,
        type: CommandType,
        description: str,
        *,
        id: str | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        self.type = CommandType(type)
        self.description = description
        self.id = id or make_command_id(self.type)
        self.timestamp = timestamp or _utcnow()

    def apply(self, document: Any) -> Any:  # pragma: no cover - abstract override
        raise NotImplementedError

    def invert(self, document: Any) -> Any:  # pragma: no cover - abstract override
        raise NotImplementedError

    def can_merge(self, other: Command) -> bool:
        del other
        return False

    def merge(self, other: Command) -> Command:
        raise NotImplementedError(f"{type(self).__name__} does not support merging")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
        }

    def __repr__(self) -> str:
        name = type(self).__name__
        return f"{name}(id={self.id!r}, description={self.description!r})"


class BatchCommand(BaseCommand):
    """Composite command: applies children in order, inverts them in reverse."""

    kind = "batch"

    def __init__(
        self,
        commands: Sequence[Command],
        description: str = "Batch operation",
        **kwargs: Any,
    ) -> None:
        super().__init__(CommandType.BATCH_OPERATION, description, **kwargs)
        self.commands = tuple(commands)

    def apply(self, document: Any) -> Any:
        for command in self.commands:
            document = command.apply(document)
        return document

    def invert(self, document: Any) -> Any:
        for command in reversed(self.commands):
            document = command.invert(document)
        return document

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["commands"] = [command.to_dict() for command in self.commands]
        return data


class NoOpCommand(BaseCommand):
    kind = "noop"

    def __init__(self, description: str = "No operation", **kwargs: Any) -> None:
        super().__init__(CommandType.OBJECT_MODIFY, description, **kwargs)

    def apply(self, document: Any) -> Any:
        return document

    def invert(self, document: Any) -> Any:
        return document


__all__ = [
    "Command",
    "CommandType",
    "BaseCommand",
    "BatchCommand",
    "NoOpCommand",
    "make_command_id",
]
