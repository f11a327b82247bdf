"""Error types shared across the artifact replication package."""

from __future__ import annotations

__all__ = ["AggregateFailure", "LocalIOError"]


class LocalIOError(RuntimeError):
    """Raised when writing, reading or extracting a local file fails."""


class AggregateFailure(RuntimeError):
    """Raised when a run had artifacts but produced no usable release assets."""
