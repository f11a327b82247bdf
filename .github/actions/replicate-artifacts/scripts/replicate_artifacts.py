#!/usr/bin/env -S uv run --script
# fmt: off
# /// script
# requires-python = ">=3.12"
# dependencies = [
#   "cyclopts>=3.24,<4.0",
#   "httpx>=0.28,<0.29",
#   "syspath-hack>=0.4.0,<0.5.0",
#   "tenacity>=8.2,<9.0",
#   "uuid-utils>=0.9,<1.0",
# ]
# ///
# fmt: on

"""Replicate the artifacts of a workflow run onto a GitHub release.

Every artifact of the run is downloaded as a zip archive and unpacked; each
file inside is uploaded to the release. A file keeps its own name when it is
the only one in its artifact and is prefixed with the artifact name
otherwise. Assets that already exist are replaced (or kept, with
``replace_policy=skip-if-exists``).

The step fails when the inputs are invalid, when the run, its artifact list
or the release cannot be read, or when artifacts existed but no file could be
published.

Examples
--------
Copy the artifacts of run 1234 onto release 5678::

    export GITHUB_OUTPUT="$(mktemp)"
    INPUT_TOKEN=ghp_... INPUT_WORKFLOW_REPO=octo/build INPUT_RUN_ID=1234 \
        INPUT_RELEASE_REPO=octo/app INPUT_RELEASE_ID=5678 \
        uv run replicate_artifacts.py
"""

from __future__ import annotations

import logging
import sys
import typing as typ
from pathlib import Path

import cyclopts
from cyclopts import App, Parameter
from syspath_hack import prepend_project_root, prepend_to_syspath

# Add script directory to path for replicate_common import
_SCRIPT_DIR = Path(__file__).resolve().parent
prepend_to_syspath(_SCRIPT_DIR)
# Add project root for the shared helper modules
prepend_project_root(start=_SCRIPT_DIR)

from actions_common import configure_logging, normalize_input_env, write_step_outputs
from github_rest import GithubClient, UpstreamError
from input_validation import InputValidationError
from replicate_common import (
    AggregateFailure,
    LocalIOError,
    RunSummary,
    build_config,
    ensure_success,
    replicate,
)

if typ.TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

app: App = App(
    help="Upload the artifacts of a workflow run as release assets.",
    config=cyclopts.config.Env("INPUT_", command=False),
)


def _failure_outputs(message: str, summary: RunSummary | None = None) -> dict[str, str]:
    summary = summary or RunSummary()
    return {
        "uploaded_count": str(summary.files_uploaded + summary.files_replaced),
        "skipped_count": str(summary.files_skipped),
        "failed_count": str(summary.files_failed),
        "upload_error": "true",
        "error_message": message,
    }


def _success_outputs(summary: RunSummary) -> dict[str, str]:
    return {
        "uploaded_count": str(summary.files_uploaded + summary.files_replaced),
        "skipped_count": str(summary.files_skipped),
        "failed_count": str(summary.files_failed),
        "upload_error": "false",
        "error_message": "",
    }


def main(  # noqa: PLR0913 - mirrors the action inputs
    *,
    token: str,
    workflow_repo: str,
    run_id: str,
    release_repo: str,
    release_id: str,
    replace_policy: str = "replace",
    connect_timeout: str | float = 10.0,
    transfer_timeout: str | float = 600.0,
    max_redirects: str | int = 5,
    api_url: str | None = None,
    staging_root: Path | None = None,
    transport: httpx.BaseTransport | None = None,
) -> int:
    """Entry point shared by the CLI and tests.

    Returns
    -------
    int
        Exit code: ``0`` on success (including partial success and runs
        without artifacts), ``1`` otherwise.
    """
    try:
        config = build_config(
            token=token,
            workflow_repo=workflow_repo,
            run_id=run_id,
            release_repo=release_repo,
            release_id=release_id,
            replace_policy=replace_policy,
            connect_timeout=connect_timeout,
            transfer_timeout=transfer_timeout,
            max_redirects=max_redirects,
            staging_root=staging_root,
            api_url=api_url,
        )
    except InputValidationError as exc:
        print(f"::error title=Invalid Input::{exc}", file=sys.stderr)
        write_step_outputs(_failure_outputs(str(exc)))
        return 1

    logger.info("Workflow Repo: %s", config.workflow_repo)
    logger.info("Workflow Run ID: %s", config.run_id)
    logger.info("Release Repo: %s", config.release_repo)
    logger.info("Release ID: %s", config.release_id)

    summary: RunSummary | None = None
    try:
        with GithubClient(
            config.token, api_url=config.api_url, transport=transport
        ) as client:
            summary = replicate(client, config)
        print(summary.render())
        ensure_success(summary)
    except (UpstreamError, LocalIOError, AggregateFailure) as exc:
        print(f"::error title=Artifact Replication Failure::{exc}", file=sys.stderr)
        write_step_outputs(_failure_outputs(str(exc), summary))
        return 1

    write_step_outputs(_success_outputs(summary))
    if summary.failed_artifacts:
        logger.warning(
            "Some artifacts were not published: %s",
            ", ".join(summary.failed_artifacts),
        )
    print(f"Successfully processed {summary.processed} file(s)")
    return 0


@app.default
def cli(  # noqa: PLR0913 - mirrors the action inputs
    *,
    token: typ.Annotated[str, Parameter(required=True)],
    workflow_repo: typ.Annotated[str, Parameter(required=True)],
    run_id: typ.Annotated[str, Parameter(required=True)],
    release_repo: typ.Annotated[str, Parameter(required=True)],
    release_id: typ.Annotated[str, Parameter(required=True)],
    replace_policy: str = "replace",
    connect_timeout: str = "10",
    transfer_timeout: str = "600",
    max_redirects: str = "5",
    api_url: str = "",
) -> None:
    """Upload the artifacts of a workflow run as release assets."""
    try:
        exit_code = main(
            token=token,
            workflow_repo=workflow_repo,
            run_id=run_id,
            release_repo=release_repo,
            release_id=release_id,
            replace_policy=replace_policy,
            connect_timeout=connect_timeout,
            transfer_timeout=transfer_timeout,
            max_redirects=max_redirects,
            api_url=api_url,
        )
    except Exception as exc:
        logger.exception("Unhandled error while replicating artifacts")
        write_step_outputs(_failure_outputs(f"Unexpected error: {exc}"))
        exit_code = 1
    raise SystemExit(exit_code)


if __name__ == "__main__":
    normalize_input_env()
    configure_logging()
    app()
