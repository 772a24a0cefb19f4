"""Debounced, best-effort persistence of the history graph."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from canvas_history.commands.registry import CommandRegistry, load_default_commands
from canvas_history.config import HistoryConfig
from canvas_history.errors import HistoryValidationError, PersistenceError
from canvas_history.history.graph import HistoryGraph
from canvas_history.runtime import telemetry

from .codec import decode_graph, encode_graph
from .stores import KeyValueStore


class PersistenceAdapter:
    """Serializes a :class:`HistoryGraph` into a key-value store.

    ``schedule`` coalesces bursts of mutations into one write after
    ``debounce_ms`` of quiet. Outside a running event loop the write stays
    pending until ``flush`` is awaited. Background write failures are logged
    and counted in ``failures``; the in-memory graph is never rolled back.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = "canvas-history",
        registry: Optional[CommandRegistry] = None,
        debounce_ms: int = 250,
        logger_name: Optional[str] = None,
    ) -> None:
        self.store = store
        self.key = key
        self.registry = registry or load_default_commands(CommandRegistry())
        self.debounce_ms = debounce_ms
        self.failures = 0
        self._logger_name = logger_name or "canvas_history.persistence"
        self._pending: Optional[HistoryGraph] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._write_task: Optional[asyncio.Task[None]] = None
        # one write at a time so the newest graph always lands last
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        store: KeyValueStore,
        config: HistoryConfig,
        *,
        registry: Optional[CommandRegistry] = None,
    ) -> "PersistenceAdapter":
        return cls(
            store,
            key=config.persistence_key,
            registry=registry,
            debounce_ms=config.persistence_debounce_ms,
        )

    @property
    def pending(self) -> bool:
        return self._pending is not None

    async def save(self, graph: HistoryGraph) -> None:
        """Write ``graph`` immediately; raises :class:`PersistenceError`."""

        with telemetry.span(
            "persistence::save",
            logger_name=self._logger_name,
            component="persistence",
            metadata={"key": self.key, "entries": len(graph.entries)},
        ):
            try:
                payload = json.dumps(encode_graph(graph))
            except (TypeError, ValueError) as exc:
                raise PersistenceError(
                    f"History could not be encoded: {exc}", key=self.key
                ) from exc
            try:
                await self.store.set(self.key, payload)
            except PersistenceError:
                raise
            except Exception as exc:
                raise PersistenceError(
                    f"History could not be written: {exc}", key=self.key
                ) from exc

    async def load(self) -> Optional[HistoryGraph]:
        """Return the stored graph, or ``None`` when missing or unusable."""

        with telemetry.span(
            "persistence::load",
            logger_name=self._logger_name,
            component="persistence",
            metadata={"key": self.key},
        ) as handle:
            try:
                raw = await self.store.get(self.key)
            except Exception as exc:
                self._report("persistence.load_failed", exc)
                return None
            if raw is None:
                handle.add_metadata("found", False)
                return None
            try:
                payload: Any = json.loads(raw)
                graph = decode_graph(payload, self.registry)
            except (HistoryValidationError, ValueError, KeyError, TypeError) as exc:
                self._report("persistence.load_invalid", exc)
                return None
            handle.add_metadata("entries", len(graph.entries))
            return graph

    async def clear(self) -> None:
        self._cancel_timer()
        self._pending = None
        try:
            await self.store.remove(self.key)
        except Exception as exc:
            self._report("persistence.clear_failed", exc)

    def schedule(self, graph: HistoryGraph) -> None:
        """Queue a debounced write of ``graph``; never blocks the caller."""

        self._pending = graph
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_timer()
        self._timer = loop.call_later(self.debounce_ms / 1000.0, self._start_write)

    async def flush(self) -> None:
        """Write any pending graph now and wait for in-flight writes."""

        self._cancel_timer()
        if self._write_task is not None and not self._write_task.done():
            await self._write_task
        await self._write_pending()

    def _start_write(self) -> None:
        self._timer = None
        self._write_task = asyncio.ensure_future(self._write_pending())

    async def _write_pending(self) -> None:
        async with self._write_lock:
            graph, self._pending = self._pending, None
            if graph is None:
                return
            try:
                await self.save(graph)
            except Exception as exc:
                self.failures += 1
                self._report("persistence.save_failed", exc)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _report(self, event: str, exc: Exception) -> None:
        telemetry.record_event(
            event,
            level="warning",
            data={"key": self.key, "error": str(exc)},
            logger_name=self._logger_name,
        )


__all__ = ["PersistenceAdapter"]
