"""Artifact replication helper package.

Copies the build artifacts of a GitHub Actions workflow run onto a release:
each artifact archive is downloaded, unpacked, and every file in it is
uploaded as a release asset.
"""

from __future__ import annotations

from .config import DownloadLimits, ReplacePolicy, ReplicateConfig, build_config
from .errors import AggregateFailure, LocalIOError
from .pipeline import RunSummary, ensure_success, replicate

__all__ = [
    "AggregateFailure",
    "DownloadLimits",
    "LocalIOError",
    "ReplacePolicy",
    "ReplicateConfig",
    "RunSummary",
    "build_config",
    "ensure_success",
    "replicate",
]
