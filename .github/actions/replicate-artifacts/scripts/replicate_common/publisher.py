"""Publishing extracted files as GitHub release assets."""

from __future__ import annotations

import dataclasses
import enum
import logging
import re
import typing as typ

from github_rest import ErrorKind, UpstreamError

from .config import ReplacePolicy

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from github_rest import GithubClient
    from input_validation import RepositoryRef

    from .extractor import ExtractedFile

__all__ = [
    "PublishResult",
    "Release",
    "content_type_for",
    "get_release",
    "list_existing_assets",
    "publish_file",
    "resolve_asset_names",
]

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_CONTENT_TYPES: dict[str, str] = {
    ".zip": "application/zip",
    ".gz": "application/gzip",
    ".tgz": "application/gzip",
    ".tar": "application/x-tar",
    ".bz2": "application/x-bzip2",
    ".xz": "application/x-xz",
    ".zst": "application/zstd",
    ".7z": "application/x-7z-compressed",
    ".deb": "application/vnd.debian.binary-package",
    ".rpm": "application/x-rpm",
    ".msi": "application/x-msi",
    ".exe": "application/vnd.microsoft.portable-executable",
    ".dmg": "application/x-apple-diskimage",
    ".pkg": "application/octet-stream",
    ".apk": "application/vnd.android.package-archive",
    ".jar": "application/java-archive",
    ".whl": "application/zip",
    ".json": "application/json",
    ".xml": "application/xml",
    ".yaml": "application/yaml",
    ".yml": "application/yaml",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".log": "text/plain",
    ".csv": "text/csv",
    ".html": "text/html",
    ".sha256": "text/plain",
    ".sha512": "text/plain",
    ".sig": "application/pgp-signature",
    ".asc": "application/pgp-signature",
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".svg": "image/svg+xml",
}


class PublishResult(enum.StrEnum):
    """Outcome of publishing one file."""

    UPLOADED = "uploaded"
    REPLACED = "replaced"
    SKIPPED = "skipped"


@dataclasses.dataclass(slots=True, frozen=True)
class Release:
    """Release that receives the assets."""

    id: int
    repo: RepositoryRef
    upload_url: str
    name: str


def get_release(client: GithubClient, repo: RepositoryRef, release_id: int) -> Release:
    """Fetch release ``release_id`` and its upload endpoint.

    Raises
    ------
    UpstreamError
        ``NOT_FOUND`` when the release does not exist.
    """
    context = f"read release {release_id} in {repo.slug}"
    payload = client.get_json(f"/repos/{repo.slug}/releases/{release_id}", context=context)
    if not isinstance(payload, dict) or not isinstance(payload.get("upload_url"), str):
        msg = f"Failed to {context}: response did not include an upload URL"
        raise UpstreamError(msg, kind=ErrorKind.GENERIC)
    # upload_url is an RFC 6570 template such as ".../assets{?name,label}".
    upload_url = re.sub(r"\{[^}]*\}$", "", str(payload["upload_url"]))
    name = str(payload.get("name") or payload.get("tag_name") or release_id)
    logger.info("Release %s: %s", release_id, name)
    return Release(id=release_id, repo=repo, upload_url=upload_url, name=name)


def list_existing_assets(
    client: GithubClient, repo: RepositoryRef, release_id: int
) -> dict[str, int]:
    """Return a ``name -> asset id`` mapping of the release's current assets.

    A failure here is not fatal: a warning is logged and an empty mapping is
    returned, so uploads proceed and may then collide.
    """
    try:
        items = list(
            client.paginate(
                f"/repos/{repo.slug}/releases/{release_id}/assets",
                context=f"list assets of release {release_id}",
            )
        )
    except UpstreamError as exc:
        logger.warning("Could not list existing release assets: %s", exc)
        return {}
    existing: dict[str, int] = {}
    for item in items:
        name, asset_id = item.get("name"), item.get("id")
        if isinstance(name, str) and isinstance(asset_id, int):
            existing[name] = asset_id
    logger.info("Release %s has %d existing asset(s)", release_id, len(existing))
    return existing


def resolve_asset_names(
    artifact_name: str, files: cabc.Sequence[ExtractedFile]
) -> list[tuple[ExtractedFile, str]]:
    """Pair each extracted file with the asset name it is uploaded under.

    A single file keeps its base name; when an artifact holds several files
    each name is prefixed with the artifact name to disambiguate.

    Examples
    --------
    ``logs`` containing ``a.txt`` uploads ``a.txt``; ``build`` containing
    ``x.bin`` and ``y.bin`` uploads ``build_x.bin`` and ``build_y.bin``.
    """
    if len(files) == 1:
        return [(files[0], files[0].path.name)]
    return [(item, f"{artifact_name}_{item.path.name}") for item in files]


def content_type_for(path: Path) -> str:
    """Return the MIME type for ``path`` based on its extension."""
    return _CONTENT_TYPES.get(path.suffix.lower(), DEFAULT_CONTENT_TYPE)


def _delete_asset(client: GithubClient, release: Release, asset_id: int, name: str) -> None:
    try:
        client.delete(
            f"/repos/{release.repo.slug}/releases/assets/{asset_id}",
            context=f"delete existing asset {name}",
        )
    except UpstreamError as exc:
        if exc.kind is not ErrorKind.NOT_FOUND:
            raise
        logger.info("Existing asset %s was already removed", name)


def publish_file(
    client: GithubClient,
    release: Release,
    path: Path,
    asset_name: str,
    existing: dict[str, int],
    *,
    policy: ReplacePolicy = ReplacePolicy.REPLACE,
) -> PublishResult:
    """Upload ``path`` to ``release`` as ``asset_name``.

    Parameters
    ----------
    client
        GitHub API client.
    release
        Target release.
    path
        Local file to upload.
    asset_name
        Name the asset gets on the release.
    existing
        ``name -> asset id`` mapping of the release's assets. Updated in
        place with the new id after a successful upload.
    policy
        ``REPLACE`` deletes a same-named asset before uploading;
        ``SKIP_IF_EXISTS`` leaves it and skips the upload.

    Returns
    -------
    PublishResult
        ``uploaded``, ``replaced``, or ``skipped`` (the name was taken, either
        per ``existing`` under ``SKIP_IF_EXISTS`` or because GitHub answered
        the upload with a 422 ``already_exists``).

    Raises
    ------
    UpstreamError
        Classified as not-found (release missing), unprocessable, or other.
    """
    replaced = False
    if (asset_id := existing.get(asset_name)) is not None:
        if policy is ReplacePolicy.SKIP_IF_EXISTS:
            logger.info("Asset %s already exists, skipping upload", asset_name)
            return PublishResult.SKIPPED
        logger.info("Replacing existing asset %s (id %s)", asset_name, asset_id)
        _delete_asset(client, release, asset_id, asset_name)
        del existing[asset_name]
        replaced = True

    content_type = content_type_for(path)
    logger.info("Uploading %s as %s (%s)", path.name, asset_name, content_type)
    try:
        payload = client.upload_file(
            release.upload_url,
            path,
            name=asset_name,
            content_type=content_type,
            context=f"upload asset {asset_name}",
        )
    except UpstreamError as exc:
        if exc.kind is ErrorKind.CONFLICT:
            logger.info("Asset %s already exists, skipping upload", asset_name)
            return PublishResult.SKIPPED
        raise

    if isinstance(payload, dict) and isinstance(payload.get("id"), int):
        existing[asset_name] = payload["id"]
    return PublishResult.REPLACED if replaced else PublishResult.UPLOADED
