from __future__ import annotations

import asyncio
from typing import List, Tuple

import pytest

from canvas_history.adapters import HistoryPanelAdapter, HistoryPanelHooks, PanelRow
from canvas_history.commands import (
    CanvasBackgroundCommand,
    Layer,
    LayerCreateCommand,
    ObjectAddCommand,
    SceneDocument,
    SceneObject,
)
from canvas_history.config import HistoryConfig
from canvas_history.history import (
    DocumentSnapshot,
    HistoryEngine,
    HistoryInfo,
    SceneHost,
)


class BrokenRestoreHost(SceneHost):
    def restore(self, snapshot: DocumentSnapshot) -> SceneDocument:
        raise ValueError("unreadable snapshot")


def make_engine(host: SceneHost | None = None, **overrides: object) -> HistoryEngine:
    return HistoryEngine(host or SceneHost(), HistoryConfig(**overrides))


def add(engine: HistoryEngine, object_id: str, kind: str = "area") -> None:
    engine.execute_command(ObjectAddCommand(SceneObject(object_id, kind)))


def test_adapter_pushes_info_and_rows() -> None:
    engine = make_engine()
    infos: List[HistoryInfo] = []
    rows: List[Tuple[PanelRow, ...]] = []
    hooks = HistoryPanelHooks(update_info=infos.append, update_entries=rows.append)
    HistoryPanelAdapter(engine, hooks)

    add(engine, "a", "area")
    add(engine, "b", "plant")
    engine.undo()

    assert infos[0].current_index == -1
    assert rows[0] == ()
    latest = rows[-1]
    assert [row.description for row in latest] == ["Add area", "Add plant"]
    assert [row.is_current for row in latest] == [True, False]
    assert [row.is_undone for row in latest] == [False, True]
    assert latest[0].type == "object_add"
    assert infos[-1].can_redo is True


def test_shortcuts_drive_undo_redo_and_save() -> None:
    engine = make_engine()
    logs: List[str] = []
    adapter = HistoryPanelAdapter(
        engine, HistoryPanelHooks(update_info=lambda info: None, log=logs.append)
    )
    add(engine, "a")
    add(engine, "b")

    assert adapter.handle_shortcut("z", modifiers=["ctrl"]) is True
    assert engine.current_index == 0
    assert adapter.handle_shortcut("Z", modifiers=["ctrl", "shift"]) is True
    assert engine.current_index == 1
    assert adapter.handle_shortcut("z", modifiers=["ctrl"]) is True
    assert adapter.handle_shortcut("y", modifiers=["ctrl"]) is True
    assert engine.current_index == 1

    assert adapter.handle_shortcut("s", modifiers=["ctrl"]) is True
    assert engine.has_unsaved_changes is False
    assert adapter.handle_shortcut("z") is False
    assert any("action='undo'" in line for line in logs)


def test_adapter_surfaces_replay_warnings() -> None:
    engine = make_engine(BrokenRestoreHost(), snapshot_interval=1, replay_threshold=0)
    warnings: List[str] = []
    HistoryPanelAdapter(
        engine,
        HistoryPanelHooks(update_info=lambda info: None, show_warning=warnings.append),
    )
    add(engine, "a")
    add(engine, "b")
    asyncio.run(engine.jump_to_history(-1))

    asyncio.run(engine.jump_to_history(1))

    assert warnings
    assert "could not be restored" in warnings[-1]


def test_detach_stops_updates() -> None:
    engine = make_engine()
    infos: List[HistoryInfo] = []
    adapter = HistoryPanelAdapter(engine, HistoryPanelHooks(update_info=infos.append))

    adapter.detach()
    add(engine, "a")

    assert len(infos) == 1


def test_filter_narrows_rows_but_keeps_history_positions() -> None:
    engine = make_engine()
    rows: List[Tuple[PanelRow, ...]] = []
    adapter = HistoryPanelAdapter(
        engine,
        HistoryPanelHooks(update_info=lambda info: None, update_entries=rows.append),
    )
    add(engine, "a")
    engine.execute_command(LayerCreateCommand(Layer("top", "Top")))
    engine.execute_command(CanvasBackgroundCommand("#ffffff", "#222222"))
    add(engine, "b")

    layer_rows = adapter.rows("layer")
    adapter.set_filter("object")

    assert [row.index for row in layer_rows] == [1]
    assert layer_rows[0].type == "layer_create"
    assert [row.index for row in rows[-1]] == [0, 3]
    assert [row.index for row in adapter.rows("canvas")] == [2]
    assert len(adapter.rows("all")) == 4
    with pytest.raises(ValueError):
        adapter.set_filter("plants")
    assert adapter.filter == "object"
