"""Structured logging and profiling for the history engine, backed by telelog.

Every module logs through three entry points:

``record_event(name, ...)`` -- one structured ``event::<name>`` line
``span(name, ...)`` -- profile a block, optionally tracked as a component
``get_logger(name)`` -- the cached ``telelog.Logger`` behind both

Output is driven by :class:`TelemetrySettings`, read from ``CANVAS_HISTORY_LOG_*``
variables unless :func:`configure` installs something else.
"""

from __future__ import annotations

import os
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, MutableMapping, Optional, cast

import telelog  # type: ignore[import]

tl = cast(Any, telelog)

ENV_PREFIX = "CANVAS_HISTORY_"
DEFAULT_LOGGER_NAME = "canvas_history"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class TelemetrySettings:
    """Plain description of a telelog configuration."""

    level: str = "INFO"
    console: bool = True
    colored: bool = True
    json: bool = False
    log_file: str = ""
    buffered: bool = False
    buffer_size: int = 2048

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "TelemetrySettings":
        env = os.environ if environ is None else environ

        def flag(name: str, default: bool) -> bool:
            raw = env.get(f"{ENV_PREFIX}{name}")
            return default if raw is None else raw.strip().lower() in _TRUTHY

        return cls(
            level=env.get(f"{ENV_PREFIX}LOG_LEVEL", "INFO").upper(),
            console=not flag("LOG_DISABLE_CONSOLE", False),
            colored=not flag("LOG_NO_COLOR", False),
            json=flag("LOG_JSON", False),
            log_file=env.get(f"{ENV_PREFIX}LOG_FILE", ""),
            buffered=flag("LOG_BUFFERED", False),
            buffer_size=int(env.get(f"{ENV_PREFIX}LOG_BUFFER_SIZE", "2048")),
        )

    def to_config(self) -> Any:
        config = tl.Config()
        config.with_min_level(self.level)
        config.with_console_output(self.console)
        if self.console:
            config.with_colored_output(self.colored)
        config.with_json_format(self.json)
        if self.log_file:
            config.with_file_output(self.log_file)
        if self.buffered:
            config.with_buffering(True)
            config.with_buffer_size(self.buffer_size)
        # spans rely on logger.profile
        config.with_profiling(True)
        return config


PRESETS: Dict[str, TelemetrySettings] = {
    "development": TelemetrySettings(level="DEBUG"),
    "production": TelemetrySettings(
        console=False, log_file="canvas_history.log", buffered=True
    ),
    "quiet": TelemetrySettings(level="WARNING", colored=False),
}

_LOGGERS: MutableMapping[str, Any] = {}
_CONFIG: Optional[Any] = None


def configure(
    *,
    settings: Optional[TelemetrySettings] = None,
    preset: Optional[str] = None,
    config: Optional[Any] = None,
) -> None:
    """Install a telelog configuration and drop cached loggers.

    Pass at most one of ``settings``, ``preset`` (a key of :data:`PRESETS`) or
    a ready-made ``tl.Config``. With none of them the environment is re-read.
    """

    global _CONFIG
    if sum(option is not None for option in (settings, preset, config)) > 1:
        raise ValueError("Provide only one of `settings`, `preset`, or `config`.")

    if preset is not None:
        try:
            settings = PRESETS[preset.lower()]
        except KeyError:
            raise ValueError(f"Unknown preset '{preset}'.") from None
    if config is None:
        config = (settings or TelemetrySettings.from_env()).to_config()
    else:
        config.with_profiling(True)

    _CONFIG = config
    _LOGGERS.clear()


def get_logger(name: Optional[str] = None) -> Any:
    """Return the cached ``telelog.Logger`` for ``name``."""

    global _CONFIG
    logger_name = name or DEFAULT_LOGGER_NAME
    if logger_name not in _LOGGERS:
        if _CONFIG is None:
            _CONFIG = TelemetrySettings.from_env().to_config()
        _LOGGERS[logger_name] = tl.Logger.with_config(logger_name, _CONFIG)
    return _LOGGERS[logger_name]


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple, set)):
        return repr(value)
    return str(value)


def _emit(logger: Any, level: str, message: str, fields: Mapping[str, Any]) -> None:
    name = level.lower()
    structured = getattr(logger, f"{name}_with", None)
    if structured is not None:
        structured(message, [(str(key), _text(value)) for key, value in fields.items()])
        return
    plain = getattr(logger, name, None)
    if plain is None:
        raise ValueError(f"Unsupported log level '{level}'.")
    plain(f"{message} {dict(fields)}")


def record_event(
    name: str,
    *,
    level: str = "info",
    data: Optional[Dict[str, Any]] = None,
    logger_name: Optional[str] = None,
) -> None:
    """Emit ``event::<name>`` with ``data`` as structured fields."""

    _emit(
        get_logger(logger_name),
        level,
        f"event::{name}",
        {"event": name, **(data or {})},
    )


@dataclass
class SpanHandle:
    """Yielded by :func:`span`; lets the block attach metadata or flag outcomes."""

    logger: Any
    span_name: str
    component_name: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def add_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = _text(value)

    def fail(self, reason: str) -> None:
        self._report("error", "span::fail", reason)

    def cancel(self, reason: Optional[str] = None) -> None:
        self._report("warning", "span::cancel", reason)

    def _report(self, level: str, message: str, reason: Optional[str]) -> None:
        fields: Dict[str, Any] = {"span": self.span_name, **self.metadata}
        if self.component_name:
            fields["component"] = self.component_name
        if reason:
            fields["reason"] = reason
        _emit(self.logger, level, message, fields)


@contextmanager
def span(
    name: str,
    *,
    logger_name: Optional[str] = None,
    component: Optional[str | bool] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Iterator[SpanHandle]:
    """Profile the block as ``name``.

    ``component=True`` also tracks the block as a component of the same name;
    a string tracks it under that name instead. ``metadata`` is pushed as
    logger context for the duration of the block. Exceptions are reported
    through :meth:`SpanHandle.fail` and re-raised.
    """

    log = get_logger(logger_name)
    component_name = name if component is True else component or None
    context = {key: _text(value) for key, value in (metadata or {}).items()}
    handle = SpanHandle(
        logger=log,
        span_name=name,
        component_name=cast(Optional[str], component_name),
        metadata=dict(context),
    )

    with ExitStack() as stack:
        for key, value in context.items():
            log.add_context(key, value)
            stack.callback(log.remove_context, key)
        if handle.component_name:
            stack.enter_context(log.track_component(handle.component_name))
        stack.enter_context(log.profile(name))
        try:
            yield handle
        except Exception as exc:
            handle.fail(str(exc))
            raise


__all__ = [
    "PRESETS",
    "SpanHandle",
    "TelemetrySettings",
    "configure",
    "get_logger",
    "record_event",
    "span",
]
