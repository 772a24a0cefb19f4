from __future__ import annotations

import pytest

from canvas_history.config import HistoryConfig


def test_defaults_match_documented_values() -> None:
    config = HistoryConfig()

    assert config.max_history_size == 100
    assert config.enable_branching is True
    assert config.enable_persistence is False
    assert config.persistence_key == "canvas-history"


def test_environment_overrides_are_coerced() -> None:
    environ = {
        "CANVAS_HISTORY_MAX_HISTORY_SIZE": "5",
        "CANVAS_HISTORY_ENABLE_BRANCHING": "false",
        "CANVAS_HISTORY_ENABLE_PERSISTENCE": "yes",
        "CANVAS_HISTORY_PERSISTENCE_KEY": "board-7",
    }

    config = HistoryConfig.from_env(environ, snapshot_interval=3)

    assert config.max_history_size == 5
    assert config.enable_branching is False
    assert config.enable_persistence is True
    assert config.persistence_key == "board-7"
    assert config.snapshot_interval == 3


def test_explicit_overrides_win_over_environment() -> None:
    environ = {"CANVAS_HISTORY_MAX_HISTORY_SIZE": "5"}

    config = HistoryConfig.from_env(environ, max_history_size=9)

    assert config.max_history_size == 9


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValueError):
        HistoryConfig(max_history_size=0)
    with pytest.raises(ValueError):
        HistoryConfig.from_env({"CANVAS_HISTORY_REPLAY_THRESHOLD": "many"})
    with pytest.raises(ValueError):
        HistoryConfig().with_overrides(snapshot_interval=-1)
