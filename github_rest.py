"""Minimal GitHub REST client shared by the action scripts.

Wraps :class:`httpx.Client` with the headers GitHub expects, classifies error
responses into :class:`ErrorKind` values and retries idempotent JSON reads on
transient failures. Writes, uploads and archive downloads are never retried.
"""

from __future__ import annotations

import contextlib
import datetime as dt
import enum
import logging
import time
import typing as typ
from email.utils import parsedate_to_datetime

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

__all__ = [
    "DEFAULT_API_URL",
    "ErrorKind",
    "GithubClient",
    "JsonValue",
    "UpstreamError",
    "error_from_response",
]

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
USER_AGENT = "release-artifact-actions"

_MAX_ATTEMPTS = 3
_INITIAL_DELAY = 1.0
_BACKOFF_FACTOR = 2.0
_MAX_BACKOFF_WAIT = 60.0
_ERROR_DETAIL_LIMIT = 1024
_UPLOAD_CHUNK_SIZE = 64 * 1024

# Type alias for JSON-compatible values (parsed from response.json())
type JsonValue = (
    str | int | float | bool | None | list[JsonValue] | dict[str, JsonValue]
)


class ErrorKind(enum.StrEnum):
    """Classification of a failed GitHub API interaction."""

    NOT_FOUND = "not-found"
    FORBIDDEN = "forbidden"
    UNAUTHENTICATED = "unauthenticated"
    CONFLICT = "conflict"
    UNPROCESSABLE = "unprocessable"
    EXPIRED = "expired"
    RATE_LIMITED = "rate-limited"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    GENERIC = "generic"


class UpstreamError(RuntimeError):
    """Raised when a GitHub API call fails.

    The :attr:`kind` is decided once, from the HTTP status and response body,
    at the point the failure is classified.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        status: int | None = None,
        detail: str = "",
        error_codes: cabc.Iterable[str] = (),
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status
        self.detail = detail
        self.error_codes = frozenset(error_codes)
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        """Return True when repeating the same request may succeed."""
        if self.kind in {ErrorKind.RATE_LIMITED, ErrorKind.TRANSPORT}:
            return True
        if self.kind is ErrorKind.TIMEOUT:
            return True
        return self.status is not None and self.status >= 500


def _truncate_text(value: str, limit: int, *, suffix: str = "…") -> str:
    """Return ``value`` truncated to ``limit`` characters with ``suffix``."""
    if limit <= 0:
        return ""
    if len(value) <= limit:
        return value
    return value[:limit] + suffix


def _parse_error_body(response: httpx.Response) -> tuple[str, list[str]]:
    """Return the error message and ``errors[].code`` values of a response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        try:
            text = response.text
        except httpx.StreamError:  # pragma: no cover - unexpected streaming failure
            text = ""
        detail = text.strip() or response.reason_phrase or ""
        return _truncate_text(detail, _ERROR_DETAIL_LIMIT), []

    message = str(payload.get("message") or response.reason_phrase or "")
    codes: list[str] = []
    errors = payload.get("errors")
    if isinstance(errors, list):
        for item in errors:
            if isinstance(item, dict) and isinstance(item.get("code"), str):
                codes.append(item["code"])
            elif isinstance(item, str):
                codes.append(item)
    return _truncate_text(message, _ERROR_DETAIL_LIMIT), codes


def _parse_retry_after_header(value: str | None) -> float | None:
    """Return a parsed ``Retry-After`` delay in seconds when available."""
    if value is None:
        return None
    retry_after = value.strip()
    if not retry_after:
        return None
    if retry_after.isdigit():
        seconds = int(retry_after, base=10)
        if seconds <= 0:
            return None
        return min(float(seconds), _MAX_BACKOFF_WAIT)
    with contextlib.suppress(TypeError, ValueError, OverflowError):
        parsed = parsedate_to_datetime(retry_after)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=dt.UTC)
        delay = (parsed - dt.datetime.now(dt.UTC)).total_seconds()
        if delay > 0:
            return min(delay, _MAX_BACKOFF_WAIT)
    return None


def _is_rate_limited(response: httpx.Response) -> bool:
    """Check if a 403/429 response indicates rate limiting."""
    if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
        return True
    if response.status_code != httpx.codes.FORBIDDEN:
        return False
    if "retry-after" in response.headers:
        return True
    return response.headers.get("x-ratelimit-remaining") == "0"


def _classify(response: httpx.Response, codes: list[str]) -> ErrorKind:
    status = response.status_code
    if _is_rate_limited(response):
        return ErrorKind.RATE_LIMITED
    kinds = {
        httpx.codes.UNAUTHORIZED: ErrorKind.UNAUTHENTICATED,
        httpx.codes.FORBIDDEN: ErrorKind.FORBIDDEN,
        httpx.codes.NOT_FOUND: ErrorKind.NOT_FOUND,
        httpx.codes.CONFLICT: ErrorKind.CONFLICT,
        httpx.codes.GONE: ErrorKind.EXPIRED,
    }
    if status in kinds:
        return kinds[status]
    if status == httpx.codes.UNPROCESSABLE_ENTITY:
        if "already_exists" in codes:
            return ErrorKind.CONFLICT
        return ErrorKind.UNPROCESSABLE
    return ErrorKind.GENERIC


_KIND_HINTS: dict[ErrorKind, str] = {
    ErrorKind.UNAUTHENTICATED: (
        "GitHub rejected the token (401 Unauthorized). "
        "Verify that the token is correct and has not expired."
    ),
    ErrorKind.FORBIDDEN: "The token lacks permission for this operation.",
    ErrorKind.RATE_LIMITED: "GitHub API rate limit exceeded.",
}


def error_from_response(response: httpx.Response, *, context: str) -> UpstreamError:
    """Build an :class:`UpstreamError` describing a failed ``response``.

    Parameters
    ----------
    response
        Non-success response returned by GitHub. Streaming responses must be
        read before calling this helper.
    context
        Short description of the attempted operation, used as the message
        prefix (for example ``"list artifacts for run 42"``).
    """
    detail, codes = _parse_error_body(response)
    kind = _classify(response, codes)
    retry_after = _parse_retry_after_header(response.headers.get("Retry-After"))
    message = f"Failed to {context}: HTTP {response.status_code}"
    if hint := _KIND_HINTS.get(kind):
        message = f"{message}. {hint}"
    if detail:
        message = f"{message} ({detail})"
    return UpstreamError(
        message,
        kind=kind,
        status=response.status_code,
        detail=detail,
        error_codes=codes,
        retry_after=retry_after,
    )


def error_from_transport(exc: httpx.TransportError, *, context: str) -> UpstreamError:
    """Wrap a transport failure (connection, timeout) in an UpstreamError."""
    if isinstance(exc, httpx.TimeoutException):
        kind = ErrorKind.TIMEOUT
        message = f"Failed to {context}: request timed out ({exc!s})"
    else:
        kind = ErrorKind.TRANSPORT
        message = f"Failed to {context}: {exc!s}"
    return UpstreamError(message, kind=kind, detail=str(exc))


class _RetryWait(wait_base):
    """Exponential backoff that honours ``Retry-After`` when GitHub sends it."""

    def __init__(self, *, initial_delay: float, backoff_factor: float, max_delay: float):
        super().__init__()
        self._initial_delay = max(initial_delay, 0.0)
        self._backoff_factor = max(backoff_factor, 1.0)
        self._max_delay = max(max_delay, 0.0)

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            exception = outcome.exception()
            if isinstance(exception, UpstreamError) and exception.retry_after:
                return min(exception.retry_after, self._max_delay)
        exponent = max(retry_state.attempt_number - 1, 0)
        return min(
            self._initial_delay * (self._backoff_factor**exponent), self._max_delay
        )


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and exc.transient


def _log_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Retrying in %.1fs after attempt %d: %s",
        delay,
        retry_state.attempt_number,
        error,
    )


def _iter_file_chunks(handle: typ.BinaryIO) -> cabc.Iterator[bytes]:
    while chunk := handle.read(_UPLOAD_CHUNK_SIZE):
        yield chunk


class GithubClient:
    """Authenticated GitHub REST client.

    The token is only attached to requests addressed to the API host (and
    ``uploads.github.com`` for github.com), never to the blob storage URLs
    that artifact downloads redirect to.

    Parameters
    ----------
    token
        Token sent as ``Authorization: Bearer``.
    api_url
        API base URL; GitHub Enterprise Server uses ``https://HOST/api/v3``.
    timeout
        Default timeout in seconds for API calls.
    max_attempts
        Attempts for idempotent JSON reads (``1`` disables retrying).
    transport
        Optional httpx transport, used by tests to stub the API.
    sleep
        Sleep function used between retries.
    """

    def __init__(
        self,
        token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        max_attempts: int = _MAX_ATTEMPTS,
        transport: httpx.BaseTransport | None = None,
        sleep: cabc.Callable[[float], None] = time.sleep,
    ) -> None:
        self._token = token
        base_url = httpx.URL(api_url.rstrip("/") + "/")
        self._trusted_hosts = {base_url.host}
        if base_url.host == "api.github.com":
            self._trusted_hosts.add("uploads.github.com")
        self._max_attempts = max(max_attempts, 1)
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=base_url,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
                "User-Agent": USER_AGENT,
            },
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            transport=transport,
        )

    def __enter__(self) -> typ.Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the underlying connection pool."""
        self._http.close()

    def _headers_for(
        self, url: str | httpx.URL, extra: typ.Mapping[str, str] | None = None
    ) -> dict[str, str]:
        """Return per-request headers, adding auth for trusted hosts only."""
        headers = dict(extra or {})
        if self.is_trusted(url):
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def is_trusted(self, url: str | httpx.URL) -> bool:
        """Return True when ``url`` receives the token."""
        host = httpx.URL(url).host
        return not host or host in self._trusted_hosts

    def request(
        self,
        method: str,
        url: str,
        *,
        context: str,
        params: typ.Mapping[str, str | int] | None = None,
        json: JsonValue = None,
        content: cabc.Iterable[bytes] | bytes | None = None,
        headers: typ.Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request and return the response when it is a 2xx.

        Raises
        ------
        UpstreamError
            For non-success statuses and transport failures.
        """
        try:
            response = self._http.request(
                method,
                url,
                params=params,
                json=json,
                content=content,
                headers=self._headers_for(url, headers),
            )
        except httpx.TransportError as exc:
            raise error_from_transport(exc, context=context) from exc
        if response.is_success:
            return response
        raise error_from_response(response, context=context)

    def _get_json_once(
        self, url: str, *, context: str, params: typ.Mapping[str, str | int] | None
    ) -> JsonValue:
        response = self.request("GET", url, context=context, params=params)
        return _decode_json(response, context=context)

    def get_json(
        self,
        url: str,
        *,
        context: str,
        params: typ.Mapping[str, str | int] | None = None,
    ) -> JsonValue:
        """GET ``url`` and return the decoded JSON body, retrying transients."""
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=_RetryWait(
                initial_delay=_INITIAL_DELAY,
                backoff_factor=_BACKOFF_FACTOR,
                max_delay=_MAX_BACKOFF_WAIT,
            ),
            retry=retry_if_exception(_is_transient),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(self._get_json_once, url, context=context, params=params)

    def send_json(
        self, method: str, url: str, *, context: str, payload: JsonValue
    ) -> JsonValue:
        """Send ``payload`` as JSON with ``method`` and return the decoded body."""
        response = self.request(method, url, context=context, json=payload)
        return _decode_json(response, context=context)

    def delete(self, url: str, *, context: str) -> None:
        """Send a DELETE request."""
        self.request("DELETE", url, context=context)

    def paginate(
        self,
        url: str,
        *,
        context: str,
        key: str | None = None,
        params: typ.Mapping[str, str | int] | None = None,
        per_page: int = 100,
    ) -> cabc.Iterator[dict[str, JsonValue]]:
        """Yield objects from a paginated list endpoint.

        ``key`` names the list inside a wrapper object (``{"total_count": ...,
        "artifacts": [...]}``); endpoints returning a bare list use ``None``.
        Iteration stops on a short page or once ``total_count`` items arrived.
        """
        page = 1
        seen = 0
        while True:
            page_params = {**(params or {}), "per_page": per_page, "page": page}
            payload = self.get_json(url, context=context, params=page_params)
            total: int | None = None
            if key is None:
                items = payload
            elif isinstance(payload, dict):
                items = payload.get(key)
                raw_total = payload.get("total_count")
                total = raw_total if isinstance(raw_total, int) else None
            else:
                items = None
            if not isinstance(items, list):
                msg = f"Failed to {context}: unexpected response shape"
                raise UpstreamError(msg, kind=ErrorKind.GENERIC)
            for item in items:
                if isinstance(item, dict):
                    yield item
            seen += len(items)
            if len(items) < per_page or (total is not None and seen >= total):
                return
            page += 1

    @contextlib.contextmanager
    def stream(
        self,
        url: str | httpx.URL,
        *,
        context: str,
        timeout: httpx.Timeout | None = None,
        headers: typ.Mapping[str, str] | None = None,
    ) -> cabc.Iterator[httpx.Response]:
        """Open a streaming GET without following redirects.

        The response is yielded whatever its status so callers can follow
        redirects themselves. Transport failures raised while the body is
        consumed are converted to :class:`UpstreamError`.
        """
        request_timeout = timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT
        try:
            with self._http.stream(
                "GET",
                url,
                headers=self._headers_for(url, headers),
                timeout=request_timeout,
                follow_redirects=False,
            ) as response:
                yield response
        except httpx.TransportError as exc:
            raise error_from_transport(exc, context=context) from exc

    def upload_file(
        self,
        url: str,
        path: Path,
        *,
        name: str,
        content_type: str,
        context: str,
    ) -> JsonValue:
        """Upload the file at ``path`` as the raw request body."""
        size = path.stat().st_size
        headers = {"Content-Type": content_type, "Content-Length": str(size)}
        with path.open("rb") as handle:
            response = self.request(
                "POST",
                url,
                context=context,
                params={"name": name},
                content=_iter_file_chunks(handle),
                headers=headers,
            )
        return _decode_json(response, context=context)


def _decode_json(response: httpx.Response, *, context: str) -> JsonValue:
    if response.status_code == httpx.codes.NO_CONTENT or not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        preview = _truncate_text(response.text, 500, suffix="...")
        msg = f"Failed to {context}: GitHub API returned invalid JSON ({preview})"
        raise UpstreamError(msg, kind=ErrorKind.GENERIC) from exc
