"""Reversible edit commands and the scene document they operate on."""

from .base import BaseCommand, BatchCommand, Command, CommandType, NoOpCommand
from .registry import CommandRegistry, RegistryStats, load_default_commands
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
    SceneDocument,
    SceneObject,
)

__all__ = [
    "Command",
    "CommandType",
    "BaseCommand",
    "BatchCommand",
    "NoOpCommand",
    "CommandRegistry",
    "RegistryStats",
    "load_default_commands",
    "SceneDocument",
    "SceneObject",
    "Layer",
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
