"""Host-facing adapters for the history engine."""

from .panel import HistoryPanelAdapter, HistoryPanelHooks, PanelRow

__all__ = ["HistoryPanelAdapter", "HistoryPanelHooks", "PanelRow"]
