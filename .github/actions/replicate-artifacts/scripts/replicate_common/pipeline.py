"""Run orchestration: download, extract, publish and clean up each artifact."""

from __future__ import annotations

import dataclasses
import logging
import shutil
import typing as typ

from github_rest import UpstreamError

from .config import new_staging_dir
from .errors import AggregateFailure, LocalIOError
from .extractor import iter_extracted_files, sanitize_component
from .fetcher import download_artifact, get_workflow_run, list_artifacts
from .publisher import (
    PublishResult,
    get_release,
    list_existing_assets,
    publish_file,
    resolve_asset_names,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from github_rest import GithubClient

    from .config import ReplicateConfig
    from .extractor import ExtractedFile
    from .fetcher import Artifact
    from .publisher import Release

__all__ = ["RunSummary", "ensure_success", "replicate"]

logger = logging.getLogger(__name__)


@dataclasses.dataclass(slots=True)
class RunSummary:
    """Aggregate counters for one replication run, in artifact order."""

    artifacts_total: int = 0
    artifacts_succeeded: int = 0
    failed_artifacts: list[str] = dataclasses.field(default_factory=list)
    files_uploaded: int = 0
    files_replaced: int = 0
    files_skipped: int = 0
    files_failed: int = 0

    @property
    def processed(self) -> int:
        """Publish attempts that did not fail."""
        return self.files_uploaded + self.files_replaced + self.files_skipped

    @property
    def succeeded(self) -> bool:
        """False when artifacts existed but nothing was published."""
        return self.artifacts_total == 0 or self.processed > 0

    def record(self, result: PublishResult) -> None:
        """Count a successful publish."""
        if result is PublishResult.UPLOADED:
            self.files_uploaded += 1
        elif result is PublishResult.REPLACED:
            self.files_replaced += 1
        else:
            self.files_skipped += 1

    def render(self) -> str:
        """Return a human-readable summary."""
        lines = [
            f"Artifacts processed: {self.artifacts_succeeded}/{self.artifacts_total}",
            f"Files uploaded: {self.files_uploaded}",
            f"Files replaced: {self.files_replaced}",
            f"Files skipped: {self.files_skipped}",
            f"Files failed: {self.files_failed}",
        ]
        if self.failed_artifacts:
            lines.append(f"Failed artifacts: {', '.join(self.failed_artifacts)}")
        return "\n".join(lines)


def _remove_path(path: Path) -> None:
    """Delete ``path``; failures are logged, never raised."""
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Failed to clean up %s: %s", path, exc)


def _publish_files(
    client: GithubClient,
    config: ReplicateConfig,
    release: Release,
    artifact: Artifact,
    files: list[ExtractedFile],
    existing: dict[str, int],
    summary: RunSummary,
) -> int:
    """Publish every extracted file; return how many did not fail."""
    processed = 0
    for extracted, asset_name in resolve_asset_names(artifact.name, files):
        try:
            result = publish_file(
                client,
                release,
                extracted.path,
                asset_name,
                existing,
                policy=config.replace_policy,
            )
        except (UpstreamError, LocalIOError, OSError) as exc:
            summary.files_failed += 1
            logger.error(
                "Failed to upload %s from artifact %s: %s",
                asset_name,
                artifact.name,
                exc,
            )
            continue
        summary.record(result)
        processed += 1
        logger.info("%s %s", result.value.capitalize(), asset_name)
    return processed


def _process_artifact(
    client: GithubClient,
    config: ReplicateConfig,
    release: Release,
    artifact: Artifact,
    *,
    staging_dir: Path,
    existing: dict[str, int],
    summary: RunSummary,
) -> bool:
    """Download, extract and publish ``artifact``; return True on success."""
    extract_dir = (
        staging_dir / "extracted" / f"{sanitize_component(artifact.name)}-{artifact.id}"
    )
    archive: Path | None = None
    try:
        try:
            archive = download_artifact(client, artifact, staging_dir, config.limits)
            files = list(iter_extracted_files(archive, extract_dir))
        except (UpstreamError, LocalIOError) as exc:
            logger.error("Skipping artifact %s: %s", artifact.name, exc)
            return False

        if not files:
            logger.warning("Artifact %s contained no files", artifact.name)
            return False
        logger.info("Extracted %d file(s) from %s", len(files), artifact.name)
        processed = _publish_files(
            client, config, release, artifact, files, existing, summary
        )
        return processed > 0
    finally:
        if archive is not None:
            _remove_path(archive)
        _remove_path(extract_dir)


def replicate(
    client: GithubClient,
    config: ReplicateConfig,
    *,
    staging_dir: Path | None = None,
) -> RunSummary:
    """Copy the artifacts of ``config.run_id`` onto ``config.release_id``.

    Parameters
    ----------
    client
        GitHub API client.
    config
        Validated run configuration.
    staging_dir
        Scratch directory; a fresh unique directory under
        ``config.staging_root`` is created (and removed afterwards) when
        omitted.

    Returns
    -------
    RunSummary
        Counters for the run. Per-artifact and per-file failures are logged
        and counted, never raised.

    Raises
    ------
    UpstreamError
        When the run, its artifact list or the release cannot be read.
    """
    get_workflow_run(client, config.workflow_repo, config.run_id)
    artifacts = list_artifacts(client, config.workflow_repo, config.run_id)
    summary = RunSummary(artifacts_total=len(artifacts))
    if not artifacts:
        logger.info("No artifacts to upload.")
        return summary

    release = get_release(client, config.release_repo, config.release_id)
    existing = list_existing_assets(client, config.release_repo, config.release_id)

    owns_staging = staging_dir is None
    run_dir = new_staging_dir(config.staging_root) if staging_dir is None else staging_dir
    try:
        for artifact in artifacts:
            ok = _process_artifact(
                client,
                config,
                release,
                artifact,
                staging_dir=run_dir,
                existing=existing,
                summary=summary,
            )
            if ok:
                summary.artifacts_succeeded += 1
            else:
                summary.failed_artifacts.append(artifact.name)
    finally:
        if owns_staging:
            _remove_path(run_dir)
    return summary


def ensure_success(summary: RunSummary) -> None:
    """Raise :class:`AggregateFailure` when nothing was published.

    Raises
    ------
    AggregateFailure
        When the run had artifacts but zero files were processed, including
        the case where every archive was empty.
    """
    if summary.succeeded:
        return
    msg = (
        f"No files were uploaded from {summary.artifacts_total} artifact(s); "
        f"failed artifacts: {', '.join(summary.failed_artifacts) or 'none'}"
    )
    raise AggregateFailure(msg)
