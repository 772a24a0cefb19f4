from __future__ import annotations

import pytest

from canvas_history.runtime import telemetry


def test_settings_read_the_environment() -> None:
    settings = telemetry.TelemetrySettings.from_env(
        {
            "CANVAS_HISTORY_LOG_LEVEL": "debug",
            "CANVAS_HISTORY_LOG_JSON": "1",
            "CANVAS_HISTORY_LOG_DISABLE_CONSOLE": "true",
            "CANVAS_HISTORY_LOG_BUFFERED": "yes",
            "CANVAS_HISTORY_LOG_BUFFER_SIZE": "64",
        }
    )

    assert settings.level == "DEBUG"
    assert settings.json is True
    assert settings.console is False
    assert settings.buffered is True
    assert settings.buffer_size == 64
    assert settings.log_file == ""


def test_configure_rejects_conflicting_options() -> None:
    with pytest.raises(ValueError):
        telemetry.configure(preset="quiet", settings=telemetry.TelemetrySettings())
    with pytest.raises(ValueError):
        telemetry.configure(preset="verbose")


def test_configure_resets_cached_loggers() -> None:
    before = telemetry.get_logger("canvas_history.tests")
    assert telemetry.get_logger("canvas_history.tests") is before

    telemetry.configure(preset="quiet")
    try:
        assert telemetry.get_logger("canvas_history.tests") is not before
    finally:
        telemetry.configure()


def test_span_collects_metadata_and_reraises() -> None:
    with telemetry.span(
        "tests::span", component=True, metadata={"branch": "main", "index": 3}
    ) as handle:
        handle.add_metadata("steps", [1, 2])

    assert handle.component_name == "tests::span"
    assert handle.metadata == {"branch": "main", "index": "3", "steps": "[1, 2]"}

    with pytest.raises(RuntimeError):
        with telemetry.span("tests::failing"):
            raise RuntimeError("boom")
