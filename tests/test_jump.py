from __future__ import annotations

import asyncio
from typing import Any, List

from canvas_history.commands import ObjectAddCommand, SceneDocument, SceneObject
from canvas_history.config import HistoryConfig
from canvas_history.history import (
    DocumentSnapshot,
    HistoryEngine,
    HistoryInfo,
    SceneHost,
)


class CountingHost(SceneHost):
    def __init__(self) -> None:
        super().__init__()
        self.restores = 0

    def restore(self, snapshot: DocumentSnapshot) -> SceneDocument:
        self.restores += 1
        return super().restore(snapshot)


class BrokenRestoreHost(SceneHost):
    def restore(self, snapshot: DocumentSnapshot) -> SceneDocument:
        raise ValueError("unreadable snapshot")


def make_engine(host: SceneHost | None = None, **overrides: Any) -> HistoryEngine:
    return HistoryEngine(host or SceneHost(), HistoryConfig(**overrides))


def add_many(engine: HistoryEngine, count: int) -> None:
    for position in range(count):
        engine.execute_command(ObjectAddCommand(SceneObject(f"o{position}", "area")))


def object_ids(engine: HistoryEngine) -> List[str]:
    return [obj.id for obj in engine.host.document.objects]


def history_ids(engine: HistoryEngine) -> List[str]:
    return [entry.command.object.id for entry in engine.get_history()]


def test_jump_moves_the_pointer_and_document() -> None:
    engine = make_engine()
    add_many(engine, 3)

    assert asyncio.run(engine.jump_to_history(-1)) is True
    assert engine.current_index == -1
    assert object_ids(engine) == []

    assert asyncio.run(engine.jump_to_history(1)) is True
    assert object_ids(engine) == ["o0", "o1"]
    assert [entry.is_undone for entry in engine.get_history()] == [
        False,
        False,
        True,
    ]


def test_execute_after_jump_truncates_the_future() -> None:
    engine = make_engine()
    add_many(engine, 3)

    asyncio.run(engine.jump_to_history(0))
    engine.execute_command(ObjectAddCommand(SceneObject("d", "area")))

    assert history_ids(engine) == ["o0", "d"]
    assert object_ids(engine) == ["o0", "d"]


def test_jumps_compose() -> None:
    direct = make_engine()
    add_many(direct, 4)
    asyncio.run(direct.jump_to_history(1))

    hopping = make_engine()
    add_many(hopping, 4)
    asyncio.run(hopping.jump_to_history(-1))
    asyncio.run(hopping.jump_to_history(3))
    asyncio.run(hopping.jump_to_history(1))

    assert hopping.host.document == direct.host.document
    assert hopping.current_index == direct.current_index


def test_out_of_range_jump_is_rejected() -> None:
    engine = make_engine()
    add_many(engine, 2)
    generation = engine.generation

    assert asyncio.run(engine.jump_to_history(2)) is False
    assert asyncio.run(engine.jump_to_history(-2)) is False
    assert engine.current_index == 1
    assert engine.generation == generation


def test_newer_jump_supersedes_an_older_one() -> None:
    engine = make_engine()
    add_many(engine, 3)

    async def scenario() -> tuple[bool, bool]:
        first = asyncio.create_task(engine.jump_to_history(-1))
        second = asyncio.create_task(engine.jump_to_history(1))
        return await first, await second

    assert asyncio.run(scenario()) == (False, True)
    assert engine.current_index == 1
    assert object_ids(engine) == ["o0", "o1"]


def test_undo_during_a_jump_cancels_the_jump() -> None:
    engine = make_engine()
    add_many(engine, 3)

    async def scenario() -> bool:
        pending = asyncio.create_task(engine.jump_to_history(-1))
        await asyncio.sleep(0)
        engine.undo()
        return await pending

    assert asyncio.run(scenario()) is False
    assert engine.current_index == 1
    assert object_ids(engine) == ["o0", "o1"]


def test_long_jumps_start_from_the_nearest_snapshot() -> None:
    host = CountingHost()
    engine = make_engine(host, snapshot_interval=5, replay_threshold=2)
    add_many(engine, 12)
    asyncio.run(engine.jump_to_history(0))
    assert host.restores == 0

    assert asyncio.run(engine.jump_to_history(10)) is True

    assert host.restores == 1
    assert object_ids(engine) == [f"o{position}" for position in range(11)]
    assert engine.current_index == 10


def test_missing_snapshot_falls_back_to_an_older_one() -> None:
    host = CountingHost()
    engine = make_engine(host, snapshot_interval=5, replay_threshold=2)
    add_many(engine, 12)
    asyncio.run(engine.jump_to_history(0))
    warnings: List[HistoryInfo] = []
    engine.subscribe(warnings.append)
    ref = engine.get_history()[9].snapshot_ref
    assert ref is not None
    engine.graph.snapshots.discard(ref)

    assert asyncio.run(engine.jump_to_history(10)) is True

    assert host.restores == 1
    assert object_ids(engine) == [f"o{position}" for position in range(11)]
    assert engine.get_history()[9].snapshot_ref is None
    assert warnings[-1].warning is not None
    assert ref in warnings[-1].warning


def test_unrestorable_snapshots_fall_back_to_incremental_replay() -> None:
    engine = make_engine(BrokenRestoreHost(), snapshot_interval=1, replay_threshold=0)
    add_many(engine, 3)
    asyncio.run(engine.jump_to_history(-1))
    seen: List[HistoryInfo] = []
    engine.subscribe(seen.append)

    assert asyncio.run(engine.jump_to_history(2)) is True

    assert object_ids(engine) == ["o0", "o1", "o2"]
    assert seen[-1].warning is not None
    assert "could not be restored" in seen[-1].warning
    assert all(entry.snapshot_ref is None for entry in engine.get_history())
