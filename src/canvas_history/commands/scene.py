"""Scene document model and the concrete commands that edit it.

``SceneDocument`` stands in for the host canvas: an immutable value holding
drawable objects (areas, lines, plants, ...), layers, and a background colour.
Every command returns a new document and never touches its input.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .base import BaseCommand, Command, CommandType

Position = Tuple[float, float]  # (left, top)

MERGE_WINDOW_SECONDS = 1.0
TRANSFORM_KEYS = ("scale_x", "scale_y", "angle", "skew_x", "skew_y")


def _freeze(values: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(values or {}))


@dataclass(frozen=True, slots=True)
class SceneObject:
    id: str
    kind: str
    layer_id: Optional[str] = None
    left: float = 0.0
    top: float = 0.0
    properties: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("SceneObject id cannot be empty")
        object.__setattr__(self, "properties", _freeze(self.properties))

    @property
    def position(self) -> Position:
        return (self.left, self.top)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "layer_id": self.layer_id,
            "left": self.left,
            "top": self.top,
            "properties": dict(self.properties),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SceneObject":
        return cls(
            id=str(data["id"]),
            kind=str(data.get("kind", "object")),
            layer_id=data.get("layer_id"),
            left=float(data.get("left", 0.0)),
            top=float(data.get("top", 0.0)),
            properties=dict(data.get("properties") or {}),
        )


@dataclass(frozen=True, slots=True)
class Layer:
    id: str
    name: str
    visible: bool = True
    locked: bool = False
    opacity: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "visible": self.visible,
            "locked": self.locked,
            "opacity": self.opacity,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Layer":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            visible=bool(data.get("visible", True)),
            locked=bool(data.get("locked", False)),
            opacity=float(data.get("opacity", 1.0)),
        )


@dataclass(frozen=True, slots=True)
class SceneDocument:
    """Immutable canvas contents; objects are kept in z-order."""

    objects: Tuple[SceneObject, ...] = ()
    layers: Tuple[Layer, ...] = ()
    background: str = "#ffffff"

    def __post_init__(self) -> None:
        object.__setattr__(self, "objects", tuple(self.objects))
        object.__setattr__(self, "layers", tuple(self.layers))

    def index_of(self, object_id: str) -> int:
        for index, obj in enumerate(self.objects):
            if obj.id == object_id:
                return index
        raise KeyError(f"Object '{object_id}' not found")

    def get(self, object_id: str) -> SceneObject:
        return self.objects[self.index_of(object_id)]

    def has_object(self, object_id: str) -> bool:
        return any(obj.id == object_id for obj in self.objects)

    def layer_index(self, layer_id: str) -> int:
        for index, layer in enumerate(self.layers):
            if layer.id == layer_id:
                return index
        raise KeyError(f"Layer '{layer_id}' not found")

    def with_objects(self, objects: Iterable[SceneObject]) -> "SceneDocument":
        return replace(self, objects=tuple(objects))

    def with_layers(self, layers: Iterable[Layer]) -> "SceneDocument":
        return replace(self, layers=tuple(layers))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "objects": [obj.to_dict() for obj in self.objects],
            "layers": [layer.to_dict() for layer in self.layers],
            "background": self.background,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SceneDocument":
        return cls(
            objects=tuple(SceneObject.from_dict(o) for o in data.get("objects", ())),
            layers=tuple(Layer.from_dict(item) for item in data.get("layers", ())),
            background=str(data.get("background", "#ffffff")),
        )


def _insert(items: Sequence[Any], index: int, item: Any) -> Tuple[Any, ...]:
    values = list(items)
    values.insert(max(0, min(index, len(values))), item)
    return tuple(values)


def _without(items: Sequence[Any], index: int) -> Tuple[Any, ...]:
    values = list(items)
    del values[index]
    return tuple(values)


def _replace_at(items: Sequence[Any], index: int, item: Any) -> Tuple[Any, ...]:
    values = list(items)
    values[index] = item
    return tuple(values)


def _expect_object(document: SceneDocument, expected: SceneObject) -> int:
    index = document.index_of(expected.id)
    if document.objects[index] != expected:
        raise ValueError(f"Object '{expected.id}' changed outside of history")
    return index


class ObjectAddCommand(BaseCommand):
    kind = "object_add"

    def __init__(
        self, obj: SceneObject, *, index: Optional[int] = None, **kwargs: Any
    ) -> None:
        super().__init__(CommandType.OBJECT_ADD, f"Add {obj.kind}", **kwargs)
        self.object = obj
        self.index = index

    def apply(self, document: SceneDocument) -> SceneDocument:
        if document.has_object(self.object.id):
            raise ValueError(f"Object '{self.object.id}' already exists")
        if self.object.layer_id is not None:
            document.layer_index(self.object.layer_id)
        index = len(document.objects) if self.index is None else self.index
        return document.with_objects(_insert(document.objects, index, self.object))

    def invert(self, document: SceneDocument) -> SceneDocument:
        index = _expect_object(document, self.object)
        return document.with_objects(_without(document.objects, index))

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(object=self.object.to_dict(), index=self.index)
        return data


class ObjectRemoveCommand(BaseCommand):
    """Removes an object; remembers its z-index so ``invert`` restores it."""

    kind = "object_remove"

    def __init__(self, obj: SceneObject, index: int, **kwargs: Any) -> None:
        super().__init__(CommandType.OBJECT_REMOVE, f"Remove {obj.kind}", **kwargs)
        self.object = obj
        self.index = index

    @classmethod
    def from_document(
        cls, document: SceneDocument, object_id: str
    ) -> "ObjectRemoveCommand":
        index = document.index_of(object_id)
        return cls(document.objects[index], index)

    def apply(self, document: SceneDocument) -> SceneDocument:
        index = _expect_object(document, self.object)
        return document.with_objects(_without(document.objects, index))

    def invert(self, document: SceneDocument) -> SceneDocument:
        if document.has_object(self.object.id):
            raise ValueError(f"Object '{self.object.id}' already exists")
        return document.with_objects(
            _insert(document.objects, self.index, self.object)
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(object=self.object.to_dict(), index=self.index)
        return data


class _PropertyChangeCommand(BaseCommand):
    """Replaces a subset of an object's properties, recording prior values."""

    def __init__(
        self,
        type: CommandType,
        description: str,
        object_id: str,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
        **kwargs: Any,
    ) -> None:
        super().__init__(type, description, **kwargs)
        if set(before) != set(after):
            raise ValueError("before/after must describe the same properties")
        self.object_id = object_id
        self.before = _freeze(before)
        self.after = _freeze(after)

    def _swap(
        self,
        document: SceneDocument,
        current: Mapping[str, Any],
        target: Mapping[str, Any],
    ) -> SceneDocument:
        index = document.index_of(self.object_id)
        obj = document.objects[index]
        for key, value in current.items():
            if obj.properties.get(key) != value:
                raise ValueError(
                    f"Object '{self.object_id}' property '{key}' does not match"
                )
        properties = {**obj.properties, **target}
        updated = replace(obj, properties=properties)
        return document.with_objects(_replace_at(document.objects, index, updated))

    def apply(self, document: SceneDocument) -> SceneDocument:
        return self._swap(document, self.before, self.after)

    def invert(self, document: SceneDocument) -> SceneDocument:
        return self._swap(document, self.after, self.before)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            object_id=self.object_id, before=dict(self.before), after=dict(self.after)
        )
        return data


class ObjectModifyCommand(_PropertyChangeCommand):
    kind = "object_modify"

    def __init__(
        self,
        object_id: str,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
        description: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            CommandType.OBJECT_MODIFY,
            description or f"Modify {object_id}",
            object_id,
            before,
            after,
            **kwargs,
        )


def _within_window(left: datetime, right: datetime) -> bool:
    return abs((left - right).total_seconds()) < MERGE_WINDOW_SECONDS


class ObjectTransformCommand(_PropertyChangeCommand):
    """Scale/rotate/skew change; consecutive drags of one object merge."""

    kind = "object_transform"

    def __init__(
        self,
        object_id: str,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
        **kwargs: Any,
    ) -> None:
        unknown = set(before) - set(TRANSFORM_KEYS)
        if unknown:
            raise ValueError(f"Unknown transform keys: {sorted(unknown)}")
        super().__init__(
            CommandType.OBJECT_TRANSFORM,
            f"Transform {object_id}",
            object_id,
            before,
            after,
            **kwargs,
        )

    def can_merge(self, other: Command) -> bool:
        return (
            isinstance(other, ObjectTransformCommand)
            and other.object_id == self.object_id
            and set(other.after) == set(self.before)
            and _within_window(self.timestamp, other.timestamp)
        )

    def merge(self, other: Command) -> Command:
        if not self.can_merge(other):
            raise ValueError("Cannot merge these transform commands")
        assert isinstance(other, ObjectTransformCommand)
        return ObjectTransformCommand(
            self.object_id, other.before, self.after, timestamp=self.timestamp
        )


class ObjectMoveCommand(BaseCommand):
    """Moves an object; consecutive moves of one object merge."""

    kind = "object_move"

    def __init__(
        self, object_id: str, previous: Position, new: Position, **kwargs: Any
    ) -> None:
        super().__init__(CommandType.OBJECT_MOVE, f"Move {object_id}", **kwargs)
        self.object_id = object_id
        self.previous = (float(previous[0]), float(previous[1]))
        self.new = (float(new[0]), float(new[1]))

    def _move(
        self, document: SceneDocument, source: Position, target: Position
    ) -> SceneDocument:
        index = document.index_of(self.object_id)
        obj = document.objects[index]
        if obj.position != source:
            raise ValueError(f"Object '{self.object_id}' is not at {source}")
        updated = replace(obj, left=target[0], top=target[1])
        return document.with_objects(_replace_at(document.objects, index, updated))

    def apply(self, document: SceneDocument) -> SceneDocument:
        return self._move(document, self.previous, self.new)

    def invert(self, document: SceneDocument) -> SceneDocument:
        return self._move(document, self.new, self.previous)

    def can_merge(self, other: Command) -> bool:
        return (
            isinstance(other, ObjectMoveCommand)
            and other.object_id == self.object_id
            and other.new == self.previous
            and _within_window(self.timestamp, other.timestamp)
        )

    def merge(self, other: Command) -> Command:
        """Fold ``other`` (the earlier move) into one move ending at ``self.new``."""

        if not self.can_merge(other):
            raise ValueError("Cannot merge these move commands")
        assert isinstance(other, ObjectMoveCommand)
        return ObjectMoveCommand(
            self.object_id, other.previous, self.new, timestamp=self.timestamp
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            object_id=self.object_id,
            previous=list(self.previous),
            new=list(self.new),
        )
        return data


class LayerCreateCommand(BaseCommand):
    kind = "layer_create"

    def __init__(
        self, layer: Layer, *, index: Optional[int] = None, **kwargs: Any
    ) -> None:
        super().__init__(
            CommandType.LAYER_CREATE, f'Create layer "{layer.name}"', **kwargs
        )
        self.layer = layer
        self.index = index

    def apply(self, document: SceneDocument) -> SceneDocument:
        if any(layer.id == self.layer.id for layer in document.layers):
            raise ValueError(f"Layer '{self.layer.id}' already exists")
        index = len(document.layers) if self.index is None else self.index
        return document.with_layers(_insert(document.layers, index, self.layer))

    def invert(self, document: SceneDocument) -> SceneDocument:
        index = document.layer_index(self.layer.id)
        if any(obj.layer_id == self.layer.id for obj in document.objects):
            raise ValueError(f"Layer '{self.layer.id}' is not empty")
        return document.with_layers(_without(document.layers, index))

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(layer=self.layer.to_dict(), index=self.index)
        return data


class LayerDeleteCommand(BaseCommand):
    """Deletes a layer together with the objects placed on it."""

    kind = "layer_delete"

    def __init__(
        self,
        layer: Layer,
        index: int,
        objects: Sequence[Tuple[int, SceneObject]] = (),
        **kwargs: Any,
    ) -> None:
        super().__init__(
            CommandType.LAYER_DELETE, f'Delete layer "{layer.name}"', **kwargs
        )
        self.layer = layer
        self.index = index
        self.objects = tuple(sorted(objects, key=lambda pair: pair[0]))

    @classmethod
    def from_document(
        cls, document: SceneDocument, layer_id: str
    ) -> "LayerDeleteCommand":
        index = document.layer_index(layer_id)
        members = [
            (position, obj)
            for position, obj in enumerate(document.objects)
            if obj.layer_id == layer_id
        ]
        return cls(document.layers[index], index, members)

    def apply(self, document: SceneDocument) -> SceneDocument:
        index = document.layer_index(self.layer.id)
        members = {obj.id for _, obj in self.objects}
        remaining = tuple(obj for obj in document.objects if obj.id not in members)
        if len(document.objects) - len(remaining) != len(members):
            raise ValueError(f"Layer '{self.layer.id}' contents changed")
        if any(obj.layer_id == self.layer.id for obj in remaining):
            raise ValueError(f"Layer '{self.layer.id}' contents changed")
        return replace(
            document, objects=remaining, layers=_without(document.layers, index)
        )

    def invert(self, document: SceneDocument) -> SceneDocument:
        if any(layer.id == self.layer.id for layer in document.layers):
            raise ValueError(f"Layer '{self.layer.id}' already exists")
        objects: Tuple[SceneObject, ...] = document.objects
        for position, obj in self.objects:
            objects = _insert(objects, position, obj)
        return replace(
            document,
            objects=objects,
            layers=_insert(document.layers, self.index, self.layer),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            layer=self.layer.to_dict(),
            index=self.index,
            objects=[[position, obj.to_dict()] for position, obj in self.objects],
        )
        return data


class LayerModifyCommand(BaseCommand):
    kind = "layer_modify"

    def __init__(self, before: Layer, after: Layer, **kwargs: Any) -> None:
        if before.id != after.id:
            raise ValueError("LayerModifyCommand cannot change a layer id")
        super().__init__(CommandType.LAYER_MODIFY, "Modify layer properties", **kwargs)
        self.before = before
        self.after = after

    def _swap(
        self, document: SceneDocument, current: Layer, target: Layer
    ) -> SceneDocument:
        index = document.layer_index(current.id)
        if document.layers[index] != current:
            raise ValueError(f"Layer '{current.id}' changed outside of history")
        return document.with_layers(_replace_at(document.layers, index, target))

    def apply(self, document: SceneDocument) -> SceneDocument:
        return self._swap(document, self.before, self.after)

    def invert(self, document: SceneDocument) -> SceneDocument:
        return self._swap(document, self.after, self.before)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(before=self.before.to_dict(), after=self.after.to_dict())
        return data


class LayerReorderCommand(BaseCommand):
    """Moves a layer to another position in the stacking order."""

    kind = "layer_reorder"

    def __init__(
        self, layer_id: str, previous_index: int, new_index: int, **kwargs: Any
    ) -> None:
        super().__init__(CommandType.LAYER_REORDER, "Reorder layer", **kwargs)
        self.layer_id = layer_id
        self.previous_index = previous_index
        self.new_index = new_index

    def _move(
        self, document: SceneDocument, source: int, target: int
    ) -> SceneDocument:
        index = document.layer_index(self.layer_id)
        if index != source:
            raise ValueError(f"Layer '{self.layer_id}' is not at position {source}")
        if not 0 <= target < len(document.layers):
            raise ValueError(f"Layer position {target} is out of range")
        layer = document.layers[index]
        return document.with_layers(
            _insert(_without(document.layers, index), target, layer)
        )

    def apply(self, document: SceneDocument) -> SceneDocument:
        return self._move(document, self.previous_index, self.new_index)

    def invert(self, document: SceneDocument) -> SceneDocument:
        return self._move(document, self.new_index, self.previous_index)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            layer_id=self.layer_id,
            previous_index=self.previous_index,
            new_index=self.new_index,
        )
        return data


class CanvasBackgroundCommand(BaseCommand):
    kind = "canvas_background"

    def __init__(self, previous: str, new: str, **kwargs: Any) -> None:
        super().__init__(CommandType.CANVAS_BACKGROUND, "Change background", **kwargs)
        self.previous = previous
        self.new = new

    def apply(self, document: SceneDocument) -> SceneDocument:
        if document.background != self.previous:
            raise ValueError("Background changed outside of history")
        return replace(document, background=self.new)

    def invert(self, document: SceneDocument) -> SceneDocument:
        if document.background != self.new:
            raise ValueError("Background changed outside of history")
        return replace(document, background=self.previous)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(previous=self.previous, new=self.new)
        return data


class CanvasClearCommand(BaseCommand):
    """Removes every object; layers and background survive."""

    kind = "canvas_clear"

    def __init__(self, objects: Sequence[SceneObject], **kwargs: Any) -> None:
        super().__init__(CommandType.CANVAS_CLEAR, "Clear canvas", **kwargs)
        self.objects = tuple(objects)

    @classmethod
    def from_document(cls, document: SceneDocument) -> "CanvasClearCommand":
        return cls(document.objects)

    def apply(self, document: SceneDocument) -> SceneDocument:
        if document.objects != self.objects:
            raise ValueError("Canvas contents changed outside of history")
        return document.with_objects(())

    def invert(self, document: SceneDocument) -> SceneDocument:
        if document.objects:
            raise ValueError("Canvas is not empty")
        return document.with_objects(self.objects)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["objects"] = [obj.to_dict() for obj in self.objects]
        return data


__all__ = [
    "Position",
    "SceneObject",
    "Layer",
    "SceneDocument",
    "ObjectAddCommand",
    "ObjectRemoveCommand",
    "ObjectModifyCommand",
    "ObjectMoveCommand",
    "ObjectTransformCommand",
    "LayerCreateCommand",
    "LayerDeleteCommand",
    "LayerModifyCommand",
    "LayerReorderCommand",
    "CanvasBackgroundCommand",
    "CanvasClearCommand",
]
