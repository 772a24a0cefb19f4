"""Branching command history: entries, branches, graph, snapshots, engine."""

from .branch import MAIN_BRANCH_ID, Branch, HistoryEntry
from .engine import HistoryEngine, HistoryInfo, HistoryObserver, plan_steps
from .graph import HistoryGraph, SavedMarker
from .snapshots import DocumentHost, DocumentSnapshot, SceneHost, SnapshotStore

__all__ = [
    "MAIN_BRANCH_ID",
    "Branch",
    "HistoryEntry",
    "HistoryGraph",
    "SavedMarker",
    "HistoryEngine",
    "HistoryInfo",
    "HistoryObserver",
    "plan_steps",
    "DocumentHost",
    "DocumentSnapshot",
    "SceneHost",
    "SnapshotStore",
]
