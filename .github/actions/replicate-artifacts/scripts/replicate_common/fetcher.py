"""Listing and downloading the artifacts of a workflow run."""

from __future__ import annotations

import dataclasses
import logging
import time
import typing as typ

import httpx
from github_rest import ErrorKind, UpstreamError, error_from_response

from .errors import LocalIOError
from .extractor import sanitize_component

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from github_rest import GithubClient, JsonValue
    from input_validation import RepositoryRef

    from .config import DownloadLimits

__all__ = [
    "Artifact",
    "archive_path_for",
    "download_artifact",
    "get_workflow_run",
    "list_artifacts",
]

logger = logging.getLogger(__name__)

_DOWNLOAD_CHUNK_SIZE = 1024 * 1024


@dataclasses.dataclass(slots=True, frozen=True)
class Artifact:
    """Build artifact attached to a workflow run."""

    id: int
    name: str
    size_in_bytes: int
    archive_download_url: str
    expired: bool = False

    @classmethod
    def from_api(cls, payload: dict[str, JsonValue]) -> Artifact:
        """Build an :class:`Artifact` from a REST API artifact object."""
        try:
            return cls(
                id=int(typ.cast("int", payload["id"])),
                name=str(payload["name"]),
                size_in_bytes=int(typ.cast("int", payload.get("size_in_bytes") or 0)),
                archive_download_url=str(payload["archive_download_url"]),
                expired=bool(payload.get("expired", False)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"Malformed artifact entry in API response: {exc!r}"
            raise UpstreamError(msg, kind=ErrorKind.GENERIC) from exc


def get_workflow_run(
    client: GithubClient, repo: RepositoryRef, run_id: int
) -> dict[str, JsonValue]:
    """Return the workflow run, confirming it exists before listing artifacts.

    Raises
    ------
    UpstreamError
        ``NOT_FOUND`` when the run does not exist in ``repo``.
    """
    payload = client.get_json(
        f"/repos/{repo.slug}/actions/runs/{run_id}",
        context=f"read workflow run {run_id} in {repo.slug}",
    )
    if not isinstance(payload, dict):
        msg = f"Unexpected response for workflow run {run_id}"
        raise UpstreamError(msg, kind=ErrorKind.GENERIC)
    logger.info(
        "Workflow run %s: %s (status=%s, conclusion=%s)",
        run_id,
        payload.get("name") or payload.get("display_title") or "unnamed",
        payload.get("status"),
        payload.get("conclusion"),
    )
    return payload


def list_artifacts(
    client: GithubClient, repo: RepositoryRef, run_id: int
) -> list[Artifact]:
    """Return every artifact produced by workflow run ``run_id``.

    A run without artifacts yields an empty list.

    Raises
    ------
    UpstreamError
        Classified as not-found (missing run), forbidden, unauthenticated or
        generic.
    """
    items = client.paginate(
        f"/repos/{repo.slug}/actions/runs/{run_id}/artifacts",
        context=f"list artifacts for run {run_id} in {repo.slug}",
        key="artifacts",
    )
    artifacts = [Artifact.from_api(item) for item in items]
    if artifacts:
        logger.info(
            "Found %d artifacts for workflow run %s.", len(artifacts), run_id
        )
    else:
        logger.info("No artifacts found for workflow run %s.", run_id)
    return artifacts


def archive_path_for(artifact: Artifact, staging_dir: Path) -> Path:
    """Return the collision-free archive path for ``artifact``."""
    return staging_dir / "archives" / f"{sanitize_component(artifact.name)}-{artifact.id}.zip"


def _next_location(response: httpx.Response, *, context: str) -> httpx.URL:
    location = response.headers.get("Location")
    if not location:
        msg = f"Failed to {context}: redirect without a Location header"
        raise UpstreamError(msg, kind=ErrorKind.GENERIC, status=response.status_code)
    return response.url.join(location)


def _deadline_exceeded(context: str) -> UpstreamError:
    msg = f"Failed to {context}: transfer timeout exceeded"
    return UpstreamError(msg, kind=ErrorKind.TIMEOUT)


def _write_body(
    response: httpx.Response,
    target: Path,
    *,
    deadline: float,
    clock: cabc.Callable[[], float],
    context: str,
) -> int:
    """Stream ``response`` into ``target`` until done or ``deadline`` passes."""
    written = 0
    try:
        with target.open("wb") as handle:
            for chunk in response.iter_bytes(_DOWNLOAD_CHUNK_SIZE):
                if clock() > deadline:
                    raise _deadline_exceeded(context)
                handle.write(chunk)
                written += len(chunk)
    except OSError as exc:
        msg = f"Failed to write {target.name}: {exc}"
        raise LocalIOError(msg) from exc
    return written


def download_artifact(
    client: GithubClient,
    artifact: Artifact,
    staging_dir: Path,
    limits: DownloadLimits,
    *,
    clock: cabc.Callable[[], float] = time.monotonic,
) -> Path:
    """Download ``artifact``'s zip archive into ``staging_dir``.

    Redirects are followed manually, at most ``limits.max_redirects`` times;
    the token is only sent to GitHub hosts, never to the storage URL the
    download endpoint redirects to. The transfer timeout is one deadline for
    the whole download: every hop only gets what remains of it, and the
    connection timeout is capped by the same remainder.

    Returns
    -------
    Path
        Location of the downloaded archive.

    Raises
    ------
    UpstreamError
        ``EXPIRED`` for expired artifacts (or HTTP 410), ``TIMEOUT`` when a
        timeout fires, and the usual API classifications otherwise.
    LocalIOError
        When the archive cannot be written.

    Notes
    -----
    Any partially written archive is removed before the error propagates.
    """
    context = f"download artifact {artifact.name}"
    if artifact.expired:
        msg = f"Failed to {context}: the artifact has expired"
        raise UpstreamError(msg, kind=ErrorKind.EXPIRED)

    target = archive_path_for(artifact, staging_dir)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        msg = f"Cannot create download directory {target.parent}: {exc}"
        raise LocalIOError(msg) from exc

    deadline = clock() + limits.transfer_timeout
    url = httpx.URL(artifact.archive_download_url)
    logger.info(
        "Downloading artifact: %s (%d bytes)", artifact.name, artifact.size_in_bytes
    )

    completed = False
    try:
        for _hop in range(limits.max_redirects + 1):
            remaining = deadline - clock()
            if remaining <= 0:
                raise _deadline_exceeded(context)
            timeout = httpx.Timeout(
                remaining, connect=min(limits.connect_timeout, remaining)
            )
            with client.stream(url, context=context, timeout=timeout) as response:
                if response.is_redirect:
                    url = _next_location(response, context=context)
                    logger.debug(
                        "Following redirect to %s (authenticated=%s)",
                        url.host,
                        client.is_trusted(url),
                    )
                    continue
                if not response.is_success:
                    response.read()
                    raise error_from_response(response, context=context)
                size = _write_body(
                    response, target, deadline=deadline, clock=clock, context=context
                )
            logger.info("Artifact downloaded to: %s (%d bytes)", target, size)
            completed = True
            return target

        msg = f"Failed to {context}: more than {limits.max_redirects} redirects"
        raise UpstreamError(msg, kind=ErrorKind.GENERIC)
    finally:
        if not completed:
            target.unlink(missing_ok=True)
