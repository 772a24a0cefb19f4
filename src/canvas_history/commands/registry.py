"""Decoder registry that rebuilds commands from their ``to_dict`` payloads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from canvas_history.runtime.telemetry import span

from .base import BatchCommand, Command, NoOpCommand
from .scene import (
    CanvasBackgroundCommand,
    CanvasClearCommand,
    Layer,
    LayerCreateCommand,
    LayerDeleteCommand,
    LayerModifyCommand,
    LayerReorderCommand,
    ObjectAddCommand,
    ObjectModifyCommand,
    ObjectMoveCommand,
    ObjectRemoveCommand,
    ObjectTransformCommand,
    SceneObject,
)

CommandDecoder = Callable[[Mapping[str, Any], "CommandRegistry"], Command]


@dataclass(slots=True)
class RegistryStats:
    decoder_count: int
    kinds: tuple[str, ...]


class CommandRegistry:
    """Owns the ``kind -> decoder`` table used by the persistence layer."""

    def __init__(self, *, logger_name: str | None = None) -> None:
        self._decoders: Dict[str, CommandDecoder] = {}
        self._logger_name = logger_name

    def register(
        self, kind: str, decoder: CommandDecoder, *, replace: bool = False
    ) -> CommandDecoder:
        if not kind:
            raise ValueError("kind cannot be empty")
        if not replace and kind in self._decoders:
            raise ValueError(f"Decoder for '{kind}' already registered")
        self._decoders[kind] = decoder
        return decoder

    def unregister(self, kind: str) -> Optional[CommandDecoder]:
        return self._decoders.pop(kind, None)

    def __contains__(self, kind: object) -> bool:
        return kind in self._decoders

    def decode(self, payload: Mapping[str, Any]) -> Command:
        kind = str(payload.get("kind", ""))
        with span(
            "commands::decode",
            logger_name=self._logger_name,
            component="commands",
            metadata={"kind": kind},
        ) as handle:
            decoder = self._decoders.get(kind)
            if decoder is None:
                handle.add_metadata("missing_decoder", kind)
                raise KeyError(f"No decoder registered for command kind '{kind}'")
            return decoder(payload, self)

    def stats(self) -> RegistryStats:
        return RegistryStats(
            decoder_count=len(self._decoders), kinds=tuple(sorted(self._decoders))
        )


def _identity(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": payload["id"],
        "timestamp": datetime.fromisoformat(payload["timestamp"]),
    }


def _position(raw: Iterable[Any]) -> tuple[float, float]:
    left, top = raw
    return (float(left), float(top))


def _decode_batch(payload: Mapping[str, Any], registry: CommandRegistry) -> Command:
    children = [registry.decode(child) for child in payload.get("commands", ())]
    return BatchCommand(
        children,
        payload.get("description", "Batch operation"),
        **_identity(payload),
    )


def _decode_noop(payload: Mapping[str, Any], registry: CommandRegistry) -> Command:
    del registry
    return NoOpCommand(payload.get("description", "No operation"), **_identity(payload))


def _decode_object_add(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    return ObjectAddCommand(
        SceneObject.from_dict(payload["object"]),
        index=payload.get("index"),
        **_identity(payload),
    )


def _decode_object_remove(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    return ObjectRemoveCommand(
        SceneObject.from_dict(payload["object"]),
        int(payload["index"]),
        **_identity(payload),
    )


def _decode_object_modify(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    return ObjectModifyCommand(
        payload["object_id"],
        payload["before"],
        payload["after"],
        description=payload.get("description"),
        **_identity(payload),
    )


def _decode_object_transform(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    return ObjectTransformCommand(
        payload["object_id"], payload["before"], payload["after"], **_identity(payload)
    )


def _decode_object_move(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    return ObjectMoveCommand(
        payload["object_id"],
        _position(payload["previous"]),
        _position(payload["new"]),
        **_identity(payload),
    )


def _decode_layer_create(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    return LayerCreateCommand(
        Layer.from_dict(payload["layer"]),
        index=payload.get("index"),
        **_identity(payload),
    )


def _decode_layer_delete(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    members = [
        (int(position), SceneObject.from_dict(obj))
        for position, obj in payload.get("objects", ())
    ]
    return LayerDeleteCommand(
        Layer.from_dict(payload["layer"]),
        int(payload["index"]),
        members,
        **_identity(payload),
    )


def _decode_layer_modify(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    return LayerModifyCommand(
        Layer.from_dict(payload["before"]),
        Layer.from_dict(payload["after"]),
        **_identity(payload),
    )


def _decode_layer_reorder(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    return LayerReorderCommand(
        str(payload["layer_id"]),
        int(payload["previous_index"]),
        int(payload["new_index"]),
        **_identity(payload),
    )


def _decode_canvas_background(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    return CanvasBackgroundCommand(
        str(payload["previous"]), str(payload["new"]), **_identity(payload)
    )


def _decode_canvas_clear(
    payload: Mapping[str, Any], registry: CommandRegistry
) -> Command:
    del registry
    return CanvasClearCommand(
        [SceneObject.from_dict(obj) for obj in payload.get("objects", ())],
        **_identity(payload),
    )


_DEFAULT_DECODERS: Dict[str, CommandDecoder] = {
    BatchCommand.kind: _decode_batch,
    NoOpCommand.kind: _decode_noop,
    ObjectAddCommand.kind: _decode_object_add,
    ObjectRemoveCommand.kind: _decode_object_remove,
    ObjectModifyCommand.kind: _decode_object_modify,
    ObjectTransformCommand.kind: _decode_object_transform,
    ObjectMoveCommand.kind: _decode_object_move,
    LayerCreateCommand.kind: _decode_layer_create,
    LayerDeleteCommand.kind: _decode_layer_delete,
    LayerModifyCommand.kind: _decode_layer_modify,
    LayerReorderCommand.kind: _decode_layer_reorder,
    CanvasBackgroundCommand.kind: _decode_canvas_background,
    CanvasClearCommand.kind: _decode_canvas_clear,
}


def load_default_commands(
    registry: CommandRegistry,
    *,
    include_kinds: Optional[Iterable[str]] = None,
    replace: bool = False,
) -> CommandRegistry:
    """Register decoders for the built-in command catalogue."""

    allowed = set(include_kinds) if include_kinds is not None else None
    for kind, decoder in _DEFAULT_DECODERS.items():
        if allowed is not None and kind not in allowed:
            continue
        registry.register(kind, decoder, replace=replace)
    return registry


__all__ = [
    "CommandDecoder",
    "CommandRegistry",
    "RegistryStats",
    "load_default_commands",
]
