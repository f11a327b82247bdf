#!/usr/bin/env -S uv run --script
# fmt: off
# /// script
# requires-python = ">=3.12"
# dependencies = [
#   "cyclopts>=3.24,<4.0",
#   "httpx>=0.28,<0.29",
#   "syspath-hack>=0.4.0,<0.5.0",
#   "tenacity>=8.2,<9.0",
# ]
# ///
# fmt: on

"""Create a tag, or move an existing one, so it points at a commit.

When no commit is supplied the tip of the repository's default branch is
used. An existing tag that already points at the commit is left alone; one
that points elsewhere is force-updated unless ``skip_update`` is set.

The outcome is exported through ``GITHUB_OUTPUT`` as ``result`` (one of
``created``, ``updated``, ``skipped`` or ``failed``), ``message``, ``tag`` and
``commit``.

Examples
--------
Point ``nightly`` at the default branch tip::

    INPUT_TOKEN=ghp_... INPUT_REPOSITORY=octo/app INPUT_TAG=nightly \
        uv run update_tag.py

Only create the tag, never move it::

    INPUT_TOKEN=ghp_... INPUT_REPOSITORY=octo/app INPUT_TAG=v1.2.3 \
        INPUT_COMMIT=4f2c... INPUT_SKIP_UPDATE=true uv run update_tag.py
"""

from __future__ import annotations

import dataclasses as dc
import enum
import logging
import os
import sys
import typing as typ
from pathlib import Path
from urllib.parse import quote

import cyclopts
from cyclopts import App, Parameter
from syspath_hack import prepend_project_root

# Add project root for the shared helper modules
prepend_project_root(start=Path(__file__).resolve().parent)

from actions_common import configure_logging, normalize_input_env, write_step_outputs
from github_rest import DEFAULT_API_URL, ErrorKind, GithubClient, UpstreamError
from input_validation import (
    InputValidationError,
    RepositoryRef,
    coerce_bool,
    parse_repository,
    validate_tag_name,
)

if typ.TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

app: App = App(config=cyclopts.config.Env("INPUT_", command=False))

# Annotated tags can point at other tag objects; stop following after this many.
_MAX_TAG_DEREFERENCES = 5


class TagResult(enum.StrEnum):
    """Value exported as the ``result`` output."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dc.dataclass(frozen=True, slots=True)
class TagOutcome:
    """Result of :func:`ensure_tag`."""

    result: TagResult
    tag: str
    commit: str
    message: str

    @classmethod
    def failed(cls, message: str) -> TagOutcome:
        """Return a failure outcome; tag and commit are reported empty."""
        return cls(TagResult.FAILED, "", "", message)

    def to_output_mapping(self) -> dict[str, str]:
        """Serialise the outcome into ``GITHUB_OUTPUT`` assignments."""
        return {
            "result": str(self.result),
            "message": self.message,
            "tag": self.tag,
            "commit": self.commit,
        }


@dc.dataclass(frozen=True, slots=True)
class TagConfig:
    """Validated inputs for a single invocation."""

    token: str
    repository: RepositoryRef
    tag: str
    commit: str | None
    skip_update: bool
    api_url: str = DEFAULT_API_URL


def build_config(
    *,
    token: str,
    repository: str,
    tag: str,
    commit: str | None = None,
    skip_update: bool | str = False,
    api_url: str | None = None,
) -> TagConfig:
    """Validate raw action inputs.

    Raises
    ------
    InputValidationError
        When the token is empty, the repository is not ``owner/name``, the
        tag is not a valid ref name or ``skip_update`` is not boolean-like.
    """
    if not (token or "").strip():
        msg = "Input 'token' is required"
        raise InputValidationError(msg)
    return TagConfig(
        token=token.strip(),
        repository=parse_repository(repository),
        tag=validate_tag_name(tag),
        commit=(commit or "").strip() or None,
        skip_update=coerce_bool(skip_update, default=False, parameter="skip_update"),
        api_url=(api_url or "").strip()
        or os.environ.get("GITHUB_API_URL")
        or DEFAULT_API_URL,
    )


def _ref_path(repo: RepositoryRef, tag: str, *, exact: bool) -> str:
    """Return the refs API path for ``tag``; ``exact`` selects ``git/ref``."""
    endpoint = "ref" if exact else "refs"
    return f"/repos/{repo.slug}/git/{endpoint}/tags/{quote(tag, safe='/')}"


def _commit_sha(payload: object, *, context: str) -> str:
    sha = payload.get("sha") if isinstance(payload, dict) else None
    if not isinstance(sha, str) or not sha:
        msg = f"Failed to {context}: response did not include a commit SHA"
        raise UpstreamError(msg, kind=ErrorKind.GENERIC)
    return sha


def resolve_commit(
    client: GithubClient, repo: RepositoryRef, explicit_commit: str | None = None
) -> str:
    """Return ``explicit_commit`` or the tip of ``repo``'s default branch.

    Raises
    ------
    UpstreamError
        When the repository or branch lookup fails.
    """
    if explicit_commit:
        return explicit_commit

    logger.info("No commit specified, fetching latest commit from default branch...")
    context = f"read repository {repo.slug}"
    repository = client.get_json(f"/repos/{repo.slug}", context=context)
    branch = repository.get("default_branch") if isinstance(repository, dict) else None
    if not isinstance(branch, str) or not branch:
        msg = f"Failed to {context}: response did not include a default branch"
        raise UpstreamError(msg, kind=ErrorKind.GENERIC)
    logger.info("Default branch: %s", branch)

    context = f"resolve the tip of {repo.slug}@{branch}"
    payload = client.get_json(
        f"/repos/{repo.slug}/commits/{quote(branch, safe='')}", context=context
    )
    sha = _commit_sha(payload, context=context)
    logger.info("Using commit: %s", sha)
    return sha


def lookup_tag(client: GithubClient, repo: RepositoryRef, name: str) -> str | None:
    """Return the commit ``name`` points at, or ``None`` when it is absent.

    Annotated tags are dereferenced to the commit they tag.

    Raises
    ------
    UpstreamError
        For failures other than the tag not existing.
    """
    context = f"look up tag {name}"
    try:
        payload = client.get_json(_ref_path(repo, name, exact=True), context=context)
    except UpstreamError as exc:
        if exc.kind is ErrorKind.NOT_FOUND:
            return None
        raise

    target = payload.get("object") if isinstance(payload, dict) else None
    for _ in range(_MAX_TAG_DEREFERENCES):
        if not isinstance(target, dict):
            break
        sha = target.get("sha")
        if target.get("type") != "tag":
            return _commit_sha(target, context=context)
        logger.debug("Tag %s is annotated; dereferencing tag object %s", name, sha)
        tag_object = client.get_json(
            f"/repos/{repo.slug}/git/tags/{sha}", context=context
        )
        target = tag_object.get("object") if isinstance(tag_object, dict) else None

    msg = f"Failed to {context}: could not determine the tagged commit"
    raise UpstreamError(msg, kind=ErrorKind.GENERIC)


def _failure_message(name: str, exc: UpstreamError) -> str:
    # GitHub's own reason (e.g. "Reference already exists") when it gave one.
    return f"Failed to create tag {name}: {exc.detail or exc}."


def _create_tag(
    client: GithubClient, repo: RepositoryRef, name: str, commit: str
) -> None:
    client.send_json(
        "POST",
        f"/repos/{repo.slug}/git/refs",
        context=f"create tag {name}",
        payload={"ref": f"refs/tags/{name}", "sha": commit},
    )


def _update_tag(
    client: GithubClient, repo: RepositoryRef, name: str, commit: str
) -> None:
    client.send_json(
        "PATCH",
        _ref_path(repo, name, exact=False),
        context=f"update tag {name}",
        payload={"sha": commit, "force": True},
    )


def ensure_tag(
    client: GithubClient,
    repo: RepositoryRef,
    name: str,
    target_commit: str,
    *,
    skip_update: bool = False,
) -> TagOutcome:
    """Make tag ``name`` point at ``target_commit``.

    Parameters
    ----------
    client
        GitHub API client.
    repo
        Repository holding the tag.
    name
        Tag name without the ``refs/tags/`` prefix.
    target_commit
        Desired commit SHA.
    skip_update
        When ``True``, an existing tag pointing at another commit is left as
        it is and the outcome is ``skipped``.

    Returns
    -------
    TagOutcome
        ``created`` when the tag was created or already pointed at the
        commit, ``updated`` after a forced move, ``skipped`` when an update
        was declined (``commit`` then reports the unchanged target), and
        ``failed`` for any API failure other than the tag being absent.

    Notes
    -----
    At most one write (create or update) is issued per call.
    """
    logger.info("Checking if tag %s exists...", name)
    try:
        current = lookup_tag(client, repo, name)
    except UpstreamError as exc:
        logger.error("Error checking tag: %s", exc)
        return TagOutcome.failed(_failure_message(name, exc))

    try:
        if current is None:
            logger.info("Tag %s does not exist. Creating a new tag...", name)
            _create_tag(client, repo, name, target_commit)
            return TagOutcome(
                TagResult.CREATED,
                name,
                target_commit,
                f"Tag {name} created successfully with commit {target_commit}.",
            )

        logger.info("Tag %s already exists.", name)
        if current == target_commit:
            logger.info(
                "Tag %s already points to commit %s. No action needed.",
                name,
                target_commit,
            )
            return TagOutcome(
                TagResult.CREATED,
                name,
                target_commit,
                f"Tag {name} already exists and points to the same commit.",
            )

        if skip_update:
            message = (
                f"Tag {name} exists but points to a different commit. "
                "Skipping update as per input."
            )
            logger.info(message)
            return TagOutcome(TagResult.SKIPPED, name, current, message)

        logger.info("Updating tag %s to point to commit %s...", name, target_commit)
        _update_tag(client, repo, name, target_commit)
        return TagOutcome(
            TagResult.UPDATED,
            name,
            target_commit,
            f"Tag {name} updated successfully to point to commit {target_commit}.",
        )
    except UpstreamError as exc:
        logger.error("Error writing tag: %s", exc)
        return TagOutcome.failed(_failure_message(name, exc))


def run(config: TagConfig, client: GithubClient) -> TagOutcome:
    """Resolve the target commit and apply :func:`ensure_tag`."""
    try:
        commit = resolve_commit(client, config.repository, config.commit)
    except UpstreamError as exc:
        logger.error("Error resolving commit: %s", exc)
        return TagOutcome.failed(f"Failed to resolve commit for {config.tag}: {exc}.")
    return ensure_tag(
        client,
        config.repository,
        config.tag,
        commit,
        skip_update=config.skip_update,
    )


def main(
    *,
    token: str,
    repository: str,
    tag: str,
    commit: str | None = None,
    skip_update: bool | str = False,
    api_url: str | None = None,
    transport: httpx.BaseTransport | None = None,
) -> int:
    """Entry point shared by the CLI and tests.

    Returns
    -------
    int
        Exit code: ``0`` when the tag was created, updated or skipped, ``1``
        for invalid inputs or API failures.
    """
    try:
        config = build_config(
            token=token,
            repository=repository,
            tag=tag,
            commit=commit,
            skip_update=skip_update,
            api_url=api_url,
        )
    except InputValidationError as exc:
        print(f"::error title=Invalid Input::{exc}", file=sys.stderr)
        write_step_outputs(TagOutcome.failed(str(exc)).to_output_mapping())
        return 1

    logger.info("Repository: %s", config.repository)
    logger.info("Tag: %s", config.tag)
    with GithubClient(
        config.token, api_url=config.api_url, transport=transport
    ) as client:
        outcome = run(config, client)

    write_step_outputs(outcome.to_output_mapping())
    if outcome.result is TagResult.FAILED:
        print(f"::error title=Tag Update Failure::{outcome.message}", file=sys.stderr)
        return 1
    print(outcome.message)
    return 0


@app.default
def cli(
    *,
    token: typ.Annotated[str, Parameter(required=True)],
    repository: typ.Annotated[str, Parameter(required=True)],
    tag: typ.Annotated[str, Parameter(required=True)],
    commit: str = "",
    skip_update: bool | str = False,
    api_url: str = "",
) -> None:
    """Create or update a tag so it points at a commit."""
    try:
        exit_code = main(
            token=token,
            repository=repository,
            tag=tag,
            commit=commit,
            skip_update=skip_update,
            api_url=api_url,
        )
    except Exception as exc:
        logger.exception("Unhandled error while updating tag")
        write_step_outputs(
            TagOutcome.failed(f"Unexpected error: {exc}").to_output_mapping()
        )
        exit_code = 1
    raise SystemExit(exit_code)


if __name__ == "__main__":
    normalize_input_env()
    configure_logging()
    app()
