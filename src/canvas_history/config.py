"""Engine configuration with ``CANVAS_HISTORY_*`` environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

ENV_PREFIX = "CANVAS_HISTORY_"

DEFAULT_MAX_HISTORY_SIZE = 100
DEFAULT_PERSISTENCE_KEY = "canvas-history"
DEFAULT_SNAPSHOT_INTERVAL = 10
DEFAULT_REPLAY_THRESHOLD = 8
DEFAULT_DEBOUNCE_MS = 250


@dataclass(frozen=True, slots=True)
class HistoryConfig:
    """Recognized engine options.

    ``snapshot_interval`` of ``0`` disables the periodic snapshot cadence;
    fork points and save points still capture snapshots.
    """

    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE
    enable_branching: bool = True
    enable_persistence: bool = False
    persistence_key: str = DEFAULT_PERSISTENCE_KEY
    snapshot_interval: int = DEFAULT_SNAPSHOT_INTERVAL
    replay_threshold: int = DEFAULT_REPLAY_THRESHOLD
    persistence_debounce_ms: int = DEFAULT_DEBOUNCE_MS

    def __post_init__(self) -> None:
        if self.max_history_size < 1:
            raise ValueError("max_history_size must be at least 1")
        if self.snapshot_interval < 0:
            raise ValueError("snapshot_interval cannot be negative")
        if self.replay_threshold < 0:
            raise ValueError("replay_threshold cannot be negative")
        if self.persistence_debounce_ms < 0:
            raise ValueError("persistence_debounce_ms cannot be negative")
        if not self.persistence_key:
            raise ValueError("persistence_key cannot be empty")

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any
    ) -> "HistoryConfig":
        """Build a config from ``CANVAS_HISTORY_<FIELD>`` variables.

        Explicit keyword ``overrides`` win over the environment.
        """

        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for option in fields(cls):
            raw = env.get(f"{ENV_PREFIX}{option.name.upper()}")
            if raw is None:
                continue
            values[option.name] = _coerce(option.name, raw, option.default)
        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **changes: Any) -> "HistoryConfig":
        return replace(self, **changes)


def _coerce(name: str, raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError as exc:
            raise ValueError(f"{ENV_PREFIX}{name.upper()} must be an integer") from exc
    return raw


__all__ = ["HistoryConfig", "ENV_PREFIX"]
