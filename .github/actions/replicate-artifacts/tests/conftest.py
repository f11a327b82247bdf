"""Common test utilities for the replicate-artifacts scripts."""

from __future__ import annotations

import dataclasses as dc
import io
import itertools
import sys
import typing as typ
import zipfile
from pathlib import Path

import httpx
import pytest
from syspath_hack import prepend_to_syspath

SCRIPTS_DIR = Path(__file__).resolve().parent.parent / "scripts"
prepend_to_syspath(SCRIPTS_DIR)

from release_actions_conftest import FakeGithub, bytes_response, json_response  # noqa: E402
from replicate_common.config import ReplicateConfig, build_config  # noqa: E402

if typ.TYPE_CHECKING:
    import collections.abc as cabc

sys.modules.setdefault("replicate_test_support", sys.modules[__name__])

WORKFLOW_REPO = "octo/build"
RUN_ID = 42
RELEASE_REPO = "octo/app"
RELEASE_ID = 7
BLOB_HOST = "blob.example.net"
RUN_PATH = f"/repos/{WORKFLOW_REPO}/actions/runs/{RUN_ID}"
ARTIFACTS_PATH = f"{RUN_PATH}/artifacts"
RELEASE_PATH = f"/repos/{RELEASE_REPO}/releases/{RELEASE_ID}"
ASSETS_PATH = f"{RELEASE_PATH}/assets"


def zip_bytes(entries: typ.Mapping[str, bytes]) -> bytes:
    """Return a zip archive holding ``entries`` (name -> content)."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def tamper_zip(
    data: bytes, *, encrypted: bool = False, method: int | None = None
) -> bytes:
    """Rewrite the first central directory entry of the zip archive ``data``.

    ``encrypted`` sets the encryption flag bit and ``method`` replaces the
    compression method, which is what ``zipfile`` consults when a member is
    opened.
    """
    buffer = bytearray(data)
    offset = buffer.find(b"PK\x01\x02")
    if encrypted:
        buffer[offset + 8] |= 0x01
    if method is not None:
        buffer[offset + 10 : offset + 12] = method.to_bytes(2, "little")
    return bytes(buffer)


def artifact_payload(artifact_id: int, name: str, **extra: object) -> dict[str, object]:
    """Return an artifact object as listed by the REST API."""
    return {
        "id": artifact_id,
        "name": name,
        "size_in_bytes": 100,
        "archive_download_url": (
            f"https://api.github.com/repos/{WORKFLOW_REPO}/actions/artifacts/"
            f"{artifact_id}/zip"
        ),
        "expired": False,
        **extra,
    }


def download_path(artifact_id: int) -> str:
    """Return the API path of an artifact's archive download endpoint."""
    return f"/repos/{WORKFLOW_REPO}/actions/artifacts/{artifact_id}/zip"


@dc.dataclass
class FakeRelease:
    """In-memory release whose assets change as the client uploads/deletes."""

    fake: FakeGithub
    assets: dict[str, int] = dc.field(default_factory=dict)
    uploads: list[tuple[str, bytes]] = dc.field(default_factory=list)
    deleted: list[int] = dc.field(default_factory=list)
    failing_names: set[str] = dc.field(default_factory=set)
    _ids: cabc.Iterator[int] = dc.field(default_factory=lambda: itertools.count(1000))

    def install(self) -> None:
        """Register the release, its asset list and upload routes."""
        self.fake.add(
            "GET",
            RELEASE_PATH,
            json_response(
                200,
                {
                    "id": RELEASE_ID,
                    "name": "v1.0.0",
                    "tag_name": "v1.0.0",
                    "upload_url": (
                        f"https://uploads.github.com{ASSETS_PATH}{{?name,label}}"
                    ),
                },
            ),
        )
        self.fake.add("GET", ASSETS_PATH, self._list)
        self.fake.add("POST", ASSETS_PATH, self._upload, host="uploads.github.com")
        for asset_id in self.assets.values():
            self._route_delete(asset_id)

    def _route_delete(self, asset_id: int) -> None:
        self.fake.add(
            "DELETE", f"/repos/{RELEASE_REPO}/releases/assets/{asset_id}", self._delete
        )

    def _list(self, request: httpx.Request) -> httpx.Response:
        payload = [{"id": asset_id, "name": name} for name, asset_id in self.assets.items()]
        return httpx.Response(200, json=payload, request=request)

    def _upload(self, request: httpx.Request) -> httpx.Response:
        name = request.url.params["name"]
        if name in self.failing_names:
            return httpx.Response(500, json={"message": "Server Error"}, request=request)
        if name in self.assets:
            payload = {
                "message": "Validation Failed",
                "errors": [{"resource": "ReleaseAsset", "code": "already_exists"}],
            }
            return httpx.Response(422, json=payload, request=request)
        asset_id = next(self._ids)
        self.assets[name] = asset_id
        self.uploads.append((name, request.content))
        self._route_delete(asset_id)
        return httpx.Response(201, json={"id": asset_id, "name": name}, request=request)

    def _delete(self, request: httpx.Request) -> httpx.Response:
        asset_id = int(request.url.path.rsplit("/", 1)[-1])
        self.deleted.append(asset_id)
        for name, existing in list(self.assets.items()):
            if existing == asset_id:
                del self.assets[name]
                return httpx.Response(204, request=request)
        return httpx.Response(404, json={"message": "Not Found"}, request=request)


def serve_run(
    fake: FakeGithub,
    archives: typ.Mapping[str, bytes | None],
    *,
    release_assets: typ.Mapping[str, int] | None = None,
) -> FakeRelease:
    """Serve a workflow run with one artifact per ``archives`` entry.

    Each archive is reached through a redirect to blob storage, as GitHub
    does. A ``None`` archive answers the download with ``500``.
    """
    fake.add("GET", RUN_PATH, json_response(200, {"id": RUN_ID, "name": "CI"}))
    artifacts = []
    for artifact_id, (name, content) in enumerate(archives.items(), start=1):
        artifacts.append(artifact_payload(artifact_id, name))
        blob_path = f"/artifacts/{artifact_id}.zip"
        fake.add(
            "GET",
            download_path(artifact_id),
            bytes_response(
                b"", 302, headers={"Location": f"https://{BLOB_HOST}{blob_path}"}
            ),
        )
        if content is None:
            fake.add("GET", blob_path, bytes_response(b"boom", 500), host=BLOB_HOST)
        else:
            fake.add("GET", blob_path, bytes_response(content), host=BLOB_HOST)
    fake.add(
        "GET",
        ARTIFACTS_PATH,
        json_response(200, {"total_count": len(artifacts), "artifacts": artifacts}),
    )
    release = FakeRelease(fake, assets=dict(release_assets or {}))
    release.install()
    return release


@pytest.fixture
def make_config(tmp_path: Path) -> cabc.Callable[..., ReplicateConfig]:
    """Return a factory building a valid config staged under ``tmp_path``."""

    def _make(**overrides: object) -> ReplicateConfig:
        inputs: dict[str, object] = {
            "token": "test-token",
            "workflow_repo": WORKFLOW_REPO,
            "run_id": str(RUN_ID),
            "release_repo": RELEASE_REPO,
            "release_id": str(RELEASE_ID),
            "staging_root": tmp_path / "staging",
        }
        inputs.update(overrides)
        return build_config(**inputs)  # type: ignore[arg-type]

    return _make
