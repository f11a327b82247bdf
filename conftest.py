"""Pytest configuration shared by the action tests.

Provides :class:`FakeGithub`, a routing double for the GitHub REST API that
plugs into :class:`github_rest.GithubClient` through ``httpx.MockTransport``.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import sys
import typing as typ
from pathlib import Path

import httpx
import pytest
from syspath_hack import prepend_to_syspath

prepend_to_syspath(Path(__file__).resolve().parent)

from github_rest import GithubClient  # noqa: E402

sys.modules.setdefault("release_actions_conftest", sys.modules[__name__])

Handler = cabc.Callable[[httpx.Request], httpx.Response]


@dc.dataclass(slots=True)
class _Route:
    handlers: list[Handler]
    calls: int = 0

    def next_handler(self) -> Handler:
        index = min(self.calls, len(self.handlers) - 1)
        self.calls += 1
        return self.handlers[index]


def json_response(
    status: int = 200,
    payload: object = None,
    *,
    headers: typ.Mapping[str, str] | None = None,
) -> Handler:
    """Return a handler answering with ``payload`` encoded as JSON."""

    def _handler(request: httpx.Request) -> httpx.Response:
        if payload is None:
            return httpx.Response(status, headers=headers, request=request)
        return httpx.Response(status, json=payload, headers=headers, request=request)

    return _handler


def bytes_response(
    content: bytes,
    status: int = 200,
    *,
    headers: typ.Mapping[str, str] | None = None,
) -> Handler:
    """Return a handler answering with a raw body."""

    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=content, headers=headers, request=request)

    return _handler


def redirect_response(location: str, status: int = 302) -> Handler:
    """Return a handler that redirects to ``location``."""
    return bytes_response(b"", status, headers={"Location": location})


class FakeGithub:
    """Answer requests from registered routes and record everything sent.

    Routes are keyed on ``(METHOD, host, path)``; the host defaults to
    ``api.github.com``. When several handlers are registered for one route
    they are used in order and the last one repeats. Unknown routes answer
    ``404 Not Found``.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str, str], _Route] = {}

    def add(
        self,
        method: str,
        path: str,
        *handlers: Handler,
        host: str = "api.github.com",
    ) -> None:
        """Register ``handlers`` for ``method`` requests to ``host``/``path``."""
        if not handlers:
            msg = "at least one handler is required"
            raise ValueError(msg)
        self._routes[(method.upper(), host, path)] = _Route(list(handlers))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._routes.get((request.method, request.url.host, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"}, request=request)
        return route.next_handler()(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        """Return the recorded requests matching ``method`` and ``path``."""
        return [
            request
            for request in self.requests
            if request.method == method.upper() and request.url.path == path
        ]

    @property
    def transport(self) -> httpx.MockTransport:
        """Transport that routes through this fake."""
        return httpx.MockTransport(self)


@pytest.fixture
def fake_github() -> FakeGithub:
    """Provide an empty :class:`FakeGithub`."""
    return FakeGithub()


@pytest.fixture
def github_client(fake_github: FakeGithub) -> cabc.Iterator[GithubClient]:
    """Provide a client wired to ``fake_github`` that never sleeps."""
    with GithubClient(
        "test-token", transport=fake_github.transport, sleep=lambda _delay: None
    ) as client:
        yield client


@pytest.fixture
def github_output(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> cabc.Callable[[], dict[str, str]]:
    """Point ``GITHUB_OUTPUT`` at a temp file and return a reader for it."""
    output_file = tmp_path / "github_output"
    monkeypatch.setenv("GITHUB_OUTPUT", str(output_file))

    def _read() -> dict[str, str]:
        if not output_file.exists():
            return {}
        values: dict[str, str] = {}
        lines = iter(output_file.read_text(encoding="utf-8").splitlines())
        for line in lines:
            if "<<" in line and "=" not in line.split("<<", 1)[0]:
                key, delimiter = line.split("<<", 1)
                body: list[str] = []
                for inner in lines:
                    if inner == delimiter:
                        break
                    body.append(inner)
                values[key] = "\n".join(body)
            else:
                key, _, value = line.partition("=")
                values[key] = value
        return values

    return _read


@pytest.fixture(autouse=True)
def _isolate_runner_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the host's runner variables out of the tests."""
    for name in ("GITHUB_OUTPUT", "GITHUB_API_URL", "RUNNER_DEBUG", "RUNNER_TEMP"):
        monkeypatch.delenv(name, raising=False)

