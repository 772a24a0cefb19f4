"""Exception taxonomy shared by the history engine and its collaborators."""

from __future__ import annotations

from typing import Optional


class HistoryError(RuntimeError):
    """Base class for every error raised by canvas_history."""


class CommandApplyError(HistoryError):
    """Raised when a command's ``apply`` or ``invert`` fails.

    The document and the history are left exactly as they were before the
    call; the original exception is chained as ``__cause__``.
    """

    def __init__(self, message: str, *, command: object | None = None) -> None:
        super().__init__(message)
        self.command = command


class BranchNotFoundError(HistoryError, KeyError):
    def __init__(self, branch_id: str) -> None:
        super().__init__(f"Branch '{branch_id}' not found")
        self.branch_id = branch_id

    def __str__(self) -> str:
        return str(self.args[0])


class IndexOutOfRangeError(HistoryError, IndexError):
    def __init__(self, index: int, *, branch_id: str, length: int) -> None:
        super().__init__(
            f"Index {index} out of range for branch '{branch_id}' (length {length})"
        )
        self.index = index
        self.branch_id = branch_id
        self.length = length


class PersistenceError(HistoryError):
    """Raised by persistence stores when a read or write fails."""

    def __init__(self, message: str, *, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key = key


class SnapshotCorruptError(HistoryError):
    """A stored snapshot failed its checksum or could not be restored."""

    def __init__(self, message: str, *, ref: Optional[str] = None) -> None:
        super().__init__(message)
        self.ref = ref


class HistoryValidationError(HistoryError, ValueError):
    """Raised when a persisted history graph is structurally invalid."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message if path is None else f"{path}: {message}")
        self.path = path


__all__ = [
    "HistoryError",
    "CommandApplyError",
    "BranchNotFoundError",
    "IndexOutOfRangeError",
    "PersistenceError",
    "SnapshotCorruptError",
    "HistoryValidationError",
]
