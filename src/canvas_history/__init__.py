"""Branching command history for canvas editors."""

__all__ = [
    "adapters",
    "commands",
    "config",
    "errors",
    "history",
    "persistence",
    "runtime",
]

__version__ = "0.1.0"
