"""Configuration models for the artifact replication helper.

Inputs are validated once by :func:`build_config` and the resulting frozen
:class:`ReplicateConfig` is passed explicitly to every stage of the pipeline.
"""

from __future__ import annotations

import dataclasses
import enum
import os
import tempfile
from pathlib import Path

import uuid_utils
from github_rest import DEFAULT_API_URL
from input_validation import (
    InputValidationError,
    RepositoryRef,
    parse_numeric_id,
    parse_repository,
)

from .errors import LocalIOError

__all__ = [
    "DownloadLimits",
    "ReplacePolicy",
    "ReplicateConfig",
    "build_config",
    "new_staging_dir",
]

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_TRANSFER_TIMEOUT = 600.0
DEFAULT_MAX_REDIRECTS = 5


class ReplacePolicy(enum.StrEnum):
    """What to do when a release already has an asset with the same name."""

    REPLACE = "replace"
    SKIP_IF_EXISTS = "skip-if-exists"


@dataclasses.dataclass(frozen=True, slots=True)
class DownloadLimits:
    """Bounds applied to a single artifact archive download."""

    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    transfer_timeout: float = DEFAULT_TRANSFER_TIMEOUT
    max_redirects: int = DEFAULT_MAX_REDIRECTS


@dataclasses.dataclass(frozen=True, slots=True)
class ReplicateConfig:
    """Concrete configuration produced by :func:`build_config`."""

    token: str
    workflow_repo: RepositoryRef
    run_id: int
    release_repo: RepositoryRef
    release_id: int
    replace_policy: ReplacePolicy = ReplacePolicy.REPLACE
    limits: DownloadLimits = dataclasses.field(default_factory=DownloadLimits)
    staging_root: Path = dataclasses.field(
        default_factory=lambda: Path(tempfile.gettempdir())
    )
    api_url: str = DEFAULT_API_URL


def _parse_policy(value: str | ReplacePolicy | None) -> ReplacePolicy:
    text = str(value or ReplacePolicy.REPLACE).strip().lower().replace("_", "-")
    try:
        return ReplacePolicy(text)
    except ValueError as exc:
        choices = ", ".join(policy.value for policy in ReplacePolicy)
        msg = f"Invalid replace_policy {value!r}: expected one of {choices}"
        raise InputValidationError(msg) from exc


def _parse_positive_float(value: float | str, *, parameter: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        msg = f"Invalid {parameter} {value!r}: expected a number of seconds"
        raise InputValidationError(msg) from exc
    if not number > 0:
        msg = f"Invalid {parameter} {value!r}: must be greater than zero"
        raise InputValidationError(msg)
    return number


def _default_staging_root() -> Path:
    """Prefer the runner's per-job temp directory."""
    runner_temp = os.environ.get("RUNNER_TEMP")
    if runner_temp:
        return Path(runner_temp)
    return Path(tempfile.gettempdir())


def build_config(  # noqa: PLR0913 - mirrors the action inputs
    *,
    token: str,
    workflow_repo: str,
    run_id: str | int,
    release_repo: str,
    release_id: str | int,
    replace_policy: str | ReplacePolicy | None = None,
    connect_timeout: float | str = DEFAULT_CONNECT_TIMEOUT,
    transfer_timeout: float | str = DEFAULT_TRANSFER_TIMEOUT,
    max_redirects: int | str = DEFAULT_MAX_REDIRECTS,
    staging_root: Path | None = None,
    api_url: str | None = None,
) -> ReplicateConfig:
    """Validate raw action inputs.

    Raises
    ------
    InputValidationError
        When any input is missing or malformed. Nothing has touched the
        network at that point.
    """
    if not (token or "").strip():
        msg = "Input 'token' is required"
        raise InputValidationError(msg)
    limits = DownloadLimits(
        connect_timeout=_parse_positive_float(
            connect_timeout, parameter="connect_timeout"
        ),
        transfer_timeout=_parse_positive_float(
            transfer_timeout, parameter="transfer_timeout"
        ),
        max_redirects=parse_numeric_id(max_redirects, parameter="max_redirects"),
    )
    return ReplicateConfig(
        token=token.strip(),
        workflow_repo=parse_repository(workflow_repo, parameter="workflow_repo"),
        run_id=parse_numeric_id(run_id, parameter="run_id"),
        release_repo=parse_repository(release_repo, parameter="release_repo"),
        release_id=parse_numeric_id(release_id, parameter="release_id"),
        replace_policy=_parse_policy(replace_policy),
        limits=limits,
        staging_root=staging_root or _default_staging_root(),
        api_url=(api_url or "").strip()
        or os.environ.get("GITHUB_API_URL")
        or DEFAULT_API_URL,
    )


def new_staging_dir(root: Path) -> Path:
    """Create and return a staging directory unique to this run.

    The UUIDv7 suffix keeps parallel jobs sharing ``root`` apart.
    """
    staging_dir = root / f"replicate-artifacts-{uuid_utils.uuid7().hex}"
    try:
        staging_dir.mkdir(parents=True, exist_ok=False)
    except OSError as exc:
        msg = f"Cannot create staging directory {staging_dir}: {exc}"
        raise LocalIOError(msg) from exc
    return staging_dir
