from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from canvas_history.commands import (
    BatchCommand,
    CanvasBackgroundCommand,
    CanvasClearCommand,
    Command,
    CommandRegistry,
    Layer,
    LayerCreateCommand,
    LayerDeleteCommand,
    LayerModifyCommand,
    LayerReorderCommand,
    NoOpCommand,
    ObjectAddCommand,
    ObjectModifyCommand,
    ObjectMoveCommand,
    ObjectRemoveCommand,
    ObjectTransformCommand,
    SceneDocument,
    SceneObject,
    load_default_commands,
)


def make_document() -> SceneDocument:
    return SceneDocument(
        objects=(
            SceneObject(
                "a",
                "area",
                layer_id="base",
                left=1,
                top=2,
                properties={"fill": "red", "angle": 0},
            ),
            SceneObject("b", "line", properties={"stroke": "black"}),
        ),
        layers=(Layer("base", "Base"),),
    )


def make_commands(document: SceneDocument) -> List[Command]:
    return [
        ObjectAddCommand(SceneObject("c", "plant")),
        ObjectRemoveCommand.from_document(document, "a"),
        ObjectModifyCommand("b", {"stroke": "black"}, {"stroke": "blue"}),
        ObjectMoveCommand("a", (1, 2), (5, 6)),
        ObjectTransformCommand("a", {"angle": 0}, {"angle": 15}),
        LayerCreateCommand(Layer("top", "Top")),
        LayerDeleteCommand.from_document(document, "base"),
        LayerModifyCommand(Layer("base", "Base"), Layer("base", "Base", visible=False)),
        CanvasBackgroundCommand("#ffffff", "#000000"),
        CanvasClearCommand.from_document(document),
    ]


def test_invert_restores_the_original_document() -> None:
    document = make_document()

    for command in make_commands(document):
        changed = command.apply(document)
        assert changed != document, command
        assert command.invert(changed) == document, command


def test_commands_leave_their_input_untouched() -> None:
    document = make_document()

    ObjectAddCommand(SceneObject("c", "plant")).apply(document)
    CanvasClearCommand.from_document(document).apply(document)

    assert [obj.id for obj in document.objects] == ["a", "b"]


def test_commands_reject_missing_targets() -> None:
    document = make_document()

    with pytest.raises(KeyError):
        ObjectModifyCommand("ghost", {"fill": "red"}, {"fill": "blue"}).apply(document)
    with pytest.raises(ValueError):
        ObjectAddCommand(SceneObject("a", "area")).apply(document)
    with pytest.raises(ValueError):
        ObjectMoveCommand("a", (9, 9), (0, 0)).apply(document)


def test_command_ids_are_prefixed_with_their_type() -> None:
    command = ObjectAddCommand(SceneObject("c", "plant"))

    assert command.id.startswith("object_add_")
    assert command.description == "Add plant"


def test_batch_applies_in_order_and_inverts_in_reverse() -> None:
    document = make_document()
    batch = BatchCommand(
        [
            ObjectAddCommand(SceneObject("c", "plant")),
            ObjectMoveCommand("c", (0, 0), (3, 3)),
        ],
        "Place plant",
    )

    placed = batch.apply(document)

    assert placed.get("c").position == (3.0, 3.0)
    assert batch.invert(placed) == document


def test_batch_failure_does_not_touch_input() -> None:
    document = make_document()
    batch = BatchCommand(
        [
            ObjectAddCommand(SceneObject("c", "plant")),
            ObjectModifyCommand("ghost", {"fill": "red"}, {"fill": "blue"}),
        ]
    )

    with pytest.raises(KeyError):
        batch.apply(document)
    assert not document.has_object("c")


def test_moves_merge_inside_the_window() -> None:
    start = datetime(2024, 5, 1, tzinfo=timezone.utc)
    first = ObjectMoveCommand("a", (1, 2), (3, 4), timestamp=start)
    second = ObjectMoveCommand(
        "a", (3, 4), (7, 8), timestamp=start + timedelta(milliseconds=400)
    )
    late = ObjectMoveCommand(
        "a", (3, 4), (9, 9), timestamp=start + timedelta(seconds=2)
    )
    other = ObjectMoveCommand(
        "b", (3, 4), (7, 8), timestamp=start + timedelta(milliseconds=400)
    )

    assert second.can_merge(first)
    assert not late.can_merge(first)
    assert not other.can_merge(first)

    merged = second.merge(first)

    assert isinstance(merged, ObjectMoveCommand)
    assert merged.previous == (1.0, 2.0)
    assert merged.new == (7.0, 8.0)
    moved = merged.apply(make_document())
    assert moved.get("a").position == (7.0, 8.0)


def test_transforms_merge_into_one_change() -> None:
    start = datetime(2024, 5, 1, tzinfo=timezone.utc)
    first = ObjectTransformCommand("a", {"angle": 0}, {"angle": 10}, timestamp=start)
    second = ObjectTransformCommand(
        "a", {"angle": 10}, {"angle": 25}, timestamp=start + timedelta(milliseconds=50)
    )

    merged = second.merge(first)
    document = make_document()

    assert merged.apply(document).get("a").properties["angle"] == 25
    assert merged.invert(merged.apply(document)) == document
    with pytest.raises(ValueError):
        ObjectTransformCommand("a", {"fill": "red"}, {"fill": "blue"})


def test_non_mergeable_commands_refuse_to_merge() -> None:
    command = NoOpCommand()

    assert command.can_merge(NoOpCommand()) is False
    with pytest.raises(NotImplementedError):
        command.merge(NoOpCommand())


def test_registry_rebuilds_nested_batches() -> None:
    registry = load_default_commands(CommandRegistry())
    document = make_document()
    commands = make_commands(document)
    batch = BatchCommand([commands[index] for index in (0, 2, 3, 4, 8)], "Mixed edits")

    decoded = registry.decode(batch.to_dict())

    assert isinstance(decoded, BatchCommand)
    assert decoded.id == batch.id
    assert decoded.timestamp == batch.timestamp
    assert [type(child) for child in decoded.commands] == [
        type(child) for child in batch.commands
    ]
    assert decoded.apply(document) == batch.apply(document)


def test_registry_rejects_duplicates_and_unknown_kinds() -> None:
    registry = load_default_commands(CommandRegistry(), include_kinds=["noop"])

    assert "noop" in registry
    assert registry.stats().kinds == ("noop",)
    with pytest.raises(ValueError):
        load_default_commands(registry, include_kinds=["noop"])
    with pytest.raises(KeyError):
        registry.decode({"kind": "object_add"})

    assert registry.unregister("noop") is not None
    assert "noop" not in registry
    assert registry.unregister("noop") is None


def test_layer_reorder_moves_the_layer_and_survives_decoding() -> None:
    document = SceneDocument(
        layers=(Layer("base", "Base"), Layer("sketch", "Sketch"), Layer("top", "Top"))
    )
    command = LayerReorderCommand("base", 0, 2)
    registry = load_default_commands(CommandRegistry())

    reordered = command.apply(document)
    decoded = registry.decode(command.to_dict())

    assert [layer.id for layer in reordered.layers] == ["sketch", "top", "base"]
    assert command.invert(reordered) == document
    assert isinstance(decoded, LayerReorderCommand)
    assert decoded.apply(document) == reordered
    with pytest.raises(ValueError):
        command.apply(reordered)
    with pytest.raises(ValueError):
        LayerReorderCommand("base", 0, 5).apply(document)
