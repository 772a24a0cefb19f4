from __future__ import annotations

import pytest

from canvas_history.commands import NoOpCommand
from canvas_history.errors import (
    BranchNotFoundError,
    HistoryValidationError,
    IndexOutOfRangeError,
)
from canvas_history.history import MAIN_BRANCH_ID, HistoryGraph, SavedMarker, plan_steps


def make_graph(count: int) -> HistoryGraph:
    graph = HistoryGraph()
    for position in range(count):
        graph.append(MAIN_BRANCH_ID, NoOpCommand(f"step {position}"))
    graph.active.current_index = count - 1
    return graph


def test_fork_borrows_the_prefix_up_to_the_pointer() -> None:
    graph = make_graph(3)
    ids = graph.entry_ids(MAIN_BRANCH_ID)
    graph.active.current_index = 1

    child = graph.fork("alt")

    assert graph.entry_ids("alt") == ids[:2]
    assert child.tail == []
    assert child.base_length == 2
    assert child.fork_index == 1
    assert child.current_index == 1
    assert child.parent_branch_id == MAIN_BRANCH_ID


def test_truncate_copies_borrowed_entries_into_children() -> None:
    graph = make_graph(3)
    ids = graph.entry_ids(MAIN_BRANCH_ID)
    graph.fork("alt")

    dropped = graph.truncate(MAIN_BRANCH_ID, 1)

    assert dropped == ids[1:]
    assert graph.entry_ids(MAIN_BRANCH_ID) == ids[:1]
    assert graph.entry_ids("alt") == ids
    alt = graph.branch("alt")
    assert alt.base_length == 1
    assert alt.tail == ids[1:]
    assert graph.collect_garbage() == 0


def test_truncate_clears_a_marker_past_the_cut() -> None:
    graph = make_graph(3)
    graph.saved_marker = SavedMarker(MAIN_BRANCH_ID, 2)

    graph.truncate(MAIN_BRANCH_ID, 2)

    assert graph.saved_marker is None


def test_remove_branch_reparents_children_and_collects_entries() -> None:
    graph = make_graph(2)
    graph.fork("a")
    graph.active_branch_id = "a"
    own = graph.append("a", NoOpCommand("only on a"))
    graph.active.current_index = 2
    graph.fork("b")
    graph.active_branch_id = MAIN_BRANCH_ID
    expected = graph.entry_ids("b")

    graph.remove_branch("a")

    assert graph.branch("b").parent_branch_id == MAIN_BRANCH_ID
    assert graph.entry_ids("b") == expected
    assert own.id in graph.entries

    graph.remove_branch("b")

    assert own.id not in graph.entries
    assert set(graph.branches) == {MAIN_BRANCH_ID}


def test_evict_drops_the_oldest_entries_and_shifts_the_pointer() -> None:
    graph = make_graph(5)
    ids = graph.entry_ids(MAIN_BRANCH_ID)

    evicted = graph.evict(3)

    assert [entry.id for entry in evicted] == ids[:2]
    assert graph.entry_ids(MAIN_BRANCH_ID) == ids[2:]
    assert graph.active.current_index == 2


def test_evict_shifts_every_branch_sharing_the_entry() -> None:
    graph = make_graph(4)
    ids = graph.entry_ids(MAIN_BRANCH_ID)
    graph.fork("alt")
    graph.saved_marker = SavedMarker("alt", 0)

    graph.evict(3)

    alt = graph.branch("alt")
    assert graph.entry_ids("alt") == ids[1:]
    assert alt.base_length == 3
    assert alt.current_index == 2
    assert alt.fork_index == 2
    assert graph.saved_marker == SavedMarker("alt", -1)


def test_evict_keeps_entries_below_a_branch_pointer() -> None:
    graph = make_graph(3)
    graph.active.current_index = 0

    assert graph.evict(1) == []
    assert len(graph.entries) == 3


def test_lookups_raise_structured_errors() -> None:
    graph = make_graph(2)

    with pytest.raises(BranchNotFoundError) as missing:
        graph.branch("ghost")
    with pytest.raises(IndexOutOfRangeError) as out_of_range:
        graph.entry_at(MAIN_BRANCH_ID, 5)

    assert isinstance(missing.value, KeyError)
    assert missing.value.branch_id == "ghost"
    assert out_of_range.value.length == 2


def test_validate_rejects_broken_graphs() -> None:
    graph = make_graph(2)
    graph.validate()

    graph.active_branch_id = "ghost"
    with pytest.raises(HistoryValidationError):
        graph.validate()

    graph.active_branch_id = MAIN_BRANCH_ID
    graph.active.current_index = 7
    with pytest.raises(HistoryValidationError) as invalid:
        graph.validate()
    assert invalid.value.path == "branches.main.current_index"


def test_plan_steps_walks_back_to_the_shared_prefix() -> None:
    assert plan_steps([1, 2, 3], 2, [1, 2, 4, 5], 3) == [
        (3, "invert"),
        (4, "apply"),
        (5, "apply"),
    ]
    assert plan_steps([1, 2, 3], 2, [1, 2, 3], 0) == [(3, "invert"), (2, "invert")]
    assert plan_steps([1, 2, 3], -1, [1, 2, 3], 1) == [(1, "apply"), (2, "apply")]
