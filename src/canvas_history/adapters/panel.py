"""Framework-agnostic adapter that wires HistoryEngine changes into a panel."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from canvas_history.history.engine import HistoryEngine, HistoryInfo


def _noop(*_args, **_kwargs) -> None:  # pragma: no cover - default hook
    return None


@dataclass(frozen=True, slots=True)
class PanelRow:
    """One line of the history list as a panel would render it."""

    index: int
    description: str
    type: str
    executed_at: datetime
    is_current: bool
    is_undone: bool


@dataclass(slots=True)
class HistoryPanelHooks:
    """Callbacks invoked by the adapter to update panel widgets."""

    update_info: Callable[[HistoryInfo], None]
    update_entries: Callable[[Tuple[PanelRow, ...]], None] = _noop
    show_warning: Callable[[str], None] = _noop
    # debug lines describing each key press and state change
    log: Callable[[str], None] = _noop


class HistoryPanelAdapter:
    """Bridges engine notifications and keyboard shortcuts to a history panel."""

    SHORTCUTS: Dict[Tuple[str, Tuple[str, ...]], str] = {
        ("z", ("CTRL",)): "undo",
        ("y", ("CTRL",)): "redo",
        ("z", ("CTRL", "SHIFT")): "redo",
        ("s", ("CTRL",)): "save",
    }
    FILTERS: Tuple[str, ...] = ("all", "object", "layer", "canvas")

    def __init__(self, engine: HistoryEngine, hooks: HistoryPanelHooks) -> None:
        self.engine = engine
        self.hooks = hooks
        self.filter = "all"
        self._unsubscribe: Optional[Callable[[], None]] = engine.subscribe(
            self._on_change
        )
        self._on_change(engine.history_info)

    def rows(self, filter: Optional[str] = None) -> Tuple[PanelRow, ...]:
        """History rows in the ``filter`` category (the adapter's own by default).

        Rows keep their position in the full history so a host can pass
        ``row.index`` straight to ``jump_to_history``.
        """

        category = _check_filter(filter or self.filter)
        current = self.engine.current_index
        rows: List[PanelRow] = []
        for position, entry in enumerate(self.engine.get_history()):
            label = _type_label(entry.command)
            if category != "all" and not label.startswith(f"{category}_"):
                continue
            rows.append(
                PanelRow(
                    index=position,
                    description=entry.description,
                    type=label,
                    executed_at=entry.executed_at,
                    is_current=position == current,
                    is_undone=position > current,
                )
            )
        return tuple(rows)

    def set_filter(self, filter: str) -> None:
        self.filter = _check_filter(filter)
        self._log_state("filter ->", filter=self.filter)
        self.hooks.update_entries(self.rows())

    def handle_shortcut(self, key: str, modifiers: Iterable[str] = ()) -> bool:
        """Run the history action bound to ``key``; returns ``True`` if handled."""

        normalized = tuple(sorted({str(mod).upper() for mod in modifiers}))
        action = self.SHORTCUTS.get((key.lower(), normalized))
        self._log_state("key ->", key=key, mods=normalized, action=action)
        if action is None:
            return False
        if action == "undo":
            self.engine.undo()
        elif action == "redo":
            self.engine.redo()
        else:
            self.engine.mark_saved()
        return True

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, info: HistoryInfo) -> None:
        self._log_state(
            "change ->",
            branch=info.current_branch,
            index=info.current_index,
            unsaved=info.has_unsaved_changes,
        )
        self.hooks.update_info(info)
        self.hooks.update_entries(self.rows())
        if info.warning:
            self.hooks.show_warning(info.warning)

    def _log_state(self, prefix: str, **fields: object) -> None:
        parts: List[str] = [prefix]
        for key, value in fields.items():
            if value is not None:
                parts.append(f"{key}={value!r}")
        self.hooks.log(" ".join(parts))


def _check_filter(filter: str) -> str:
    if filter not in HistoryPanelAdapter.FILTERS:
        raise ValueError(f"Unknown history filter '{filter}'")
    return filter


def _type_label(command: object) -> str:
    kind = getattr(command, "type", None)
    value = getattr(kind, "value", kind)
    return str(value) if value is not None else type(command).__name__


__all__ = ["HistoryPanelAdapter", "HistoryPanelHooks", "PanelRow"]
