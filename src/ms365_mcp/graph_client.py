"""Thin async HTTP transport for Microsoft Graph API."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from ms365_mcp.auth import AuthError, AuthManager

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

logger = logging.getLogger(__name__)

# Retry configuration for transient errors (429, 503, 504).
_MAX_RETRIES = 3
_RETRY_STATUS_CODES = {429, 503, 504}
_BASE_BACKOFF_SECONDS = 1.0

# Error codes that indicate an expired/invalid token (as opposed to a genuine
# permission error).  A 401 is always an auth failure.  A 403 with one of the
# codes below is how personal Microsoft accounts signal an expired token;
# other 403 codes (e.g. from org-only endpoints) are real permission errors
# and should NOT trigger a token refresh.
_AUTH_FAILURE_CODES = {"invalidauthenticationtoken", "unauthorized"}

_TEXTUAL_CONTENT_TYPES = ("text/", "application/json", "application/xml")

EMPTY_RESPONSE_TEXT = json.dumps({"message": "OK!"})


@dataclass(slots=True)
class GraphRequest:
    """A Graph call ready to send: relative path, query, headers and body."""

    method: str
    path: str
    query: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    raw: bool = False

    @property
    def target(self) -> str:
        """The path with the encoded query string appended."""
        if not self.query:
            return self.path
        separator = "&" if "?" in self.path else "?"
        return f"{self.path}{separator}{urlencode(self.query, quote_via=quote)}"

    def encoded_body(self) -> str | None:
        if self.method == "GET" or self.body is None or self.body == "":
            return None
        if isinstance(self.body, str):
            return self.body
        return json.dumps(self.body)


@dataclass(slots=True)
class TextBlock:
    text: str
    type: str = "text"


@dataclass(slots=True)
class GraphResponse:
    """Transport result: text content blocks plus an error flag."""

    content: list[TextBlock] = field(default_factory=list)
    is_error: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class GraphApiError(Exception):
    """Normalized Graph API failure with structured metadata."""

    status_code: int
    message: str
    code: str | None = None
    request_id: str | None = None
    retry_after_seconds: int | None = None

    def __str__(self) -> str:
        code = f" [{self.code}]" if self.code else ""
        return f"Graph API error {self.status_code}{code}: {self.message}"


class GraphClient:
    """Async wrapper around the Microsoft Graph REST API.

    Tokens come from the ``AuthManager`` on every request so that expired
    tokens are refreshed transparently.  Transient errors (429, 503, 504)
    are retried with exponential backoff.
    """

    def __init__(self, auth: AuthManager) -> None:
        self._auth = auth
        # Drive content downloads answer with a redirect to the file URL.
        self._http = httpx.AsyncClient(
            base_url=GRAPH_BASE_URL, timeout=30.0, follow_redirects=True
        )

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    async def _auth_headers(self, force_refresh: bool = False) -> dict[str, str]:
        # MSAL is synchronous and may hit the network, so keep it off the
        # event loop.
        token = await asyncio.to_thread(self._auth.get_token, force_refresh)
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _parse_retry_after(value: str | None) -> int | None:
        if value is None:
            return None
        try:
            # RFC 9110: delay-seconds is a non-negative decimal integer.
            return max(int(value), 0)
        except ValueError:
            pass
        # RFC 9110 also allows an HTTP-date Retry-After value.
        try:
            retry_at = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=UTC)
        now = datetime.now(UTC)
        return max(int((retry_at - now).total_seconds()), 0)

    def _raise_graph_error(self, resp: httpx.Response) -> None:
        code: str | None = None
        message = f"HTTP {resp.status_code}"
        request_id = resp.headers.get("request-id") or resp.headers.get("x-ms-request-id")
        retry_after_seconds = self._parse_retry_after(resp.headers.get("Retry-After"))

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            err = payload.get("error")
            if isinstance(err, dict):
                code = err.get("code")
                message = err.get("message") or message
            elif isinstance(payload.get("message"), str):
                message = payload["message"]

        raise GraphApiError(
            status_code=resp.status_code,
            code=code,
            message=message,
            request_id=request_id,
            retry_after_seconds=retry_after_seconds,
        )

    @staticmethod
    def _is_auth_failure(resp: httpx.Response) -> bool:
        """Return True if the response indicates an expired/invalid token."""
        if resp.status_code == 401:
            return True
        if resp.status_code != 403:
            return False
        try:
            payload = resp.json()
        except ValueError:
            return False
        error = payload.get("error", {}) if isinstance(payload, dict) else {}
        code = (error.get("code", "") if isinstance(error, dict) else "").lower()
        return code in _AUTH_FAILURE_CODES

    def _ensure_success(self, resp: httpx.Response) -> None:
        if resp.is_error:
            self._raise_graph_error(resp)

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        extra_headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Execute an HTTP request with retry on transient failures.

        An auth failure on the first attempt forces one token refresh
        before giving up.
        """
        headers = {**await self._auth_headers(), **(extra_headers or {})}
        resp: httpx.Response | None = None

        for attempt in range(_MAX_RETRIES):
            resp = await self._http.request(method, path, headers=headers, **kwargs)

            if attempt == 0 and self._is_auth_failure(resp):
                logger.warning("Got %d, refreshing access token", resp.status_code)
                try:
                    headers = {
                        **await self._auth_headers(force_refresh=True),
                        **(extra_headers or {}),
                    }
                except AuthError:
                    # The refresh token is gone too; the user has to sign in
                    # again.  Return the original response so the caller gets
                    # a proper GraphApiError.
                    logger.warning("Token refresh requires user sign-in, returning original error")
                    return resp
                continue

            if resp.status_code not in _RETRY_STATUS_CODES:
                return resp

            retry_after = self._parse_retry_after(resp.headers.get("Retry-After"))
            if retry_after is not None:
                delay = retry_after
            else:
                delay = _BASE_BACKOFF_SECONDS * (2**attempt)

            logger.warning(
                "Graph API %s %s returned %d (attempt %d/%d), retrying in %.1fs",
                method,
                path,
                resp.status_code,
                attempt + 1,
                _MAX_RETRIES,
                delay,
            )
            await asyncio.sleep(delay)

        if resp is None:  # pragma: no cover (unreachable when _MAX_RETRIES > 0)
            raise RuntimeError("No response received after retries")
        logger.error(
            "Graph API %s %s failed after %d retries with status %d",
            method,
            path,
            _MAX_RETRIES,
            resp.status_code,
        )
        return resp

    @staticmethod
    def _to_graph_response(resp: httpx.Response, raw: bool) -> GraphResponse:
        if resp.status_code == 204 or not resp.content:
            return GraphResponse(content=[TextBlock(EMPTY_RESPONSE_TEXT)])

        if not raw:
            return GraphResponse(content=[TextBlock(resp.text)])

        content_type = resp.headers.get("content-type", "application/octet-stream")
        if content_type.startswith(_TEXTUAL_CONTENT_TYPES):
            return GraphResponse(
                content=[TextBlock(resp.text)],
                metadata={"contentType": content_type, "encoding": "utf-8"},
            )
        return GraphResponse(
            content=[TextBlock(base64.b64encode(resp.content).decode("ascii"))],
            metadata={"contentType": content_type, "encoding": "base64"},
        )

    async def send(self, request: GraphRequest) -> GraphResponse:
        """Send *request* and return its body as text content.

        Raises:
            GraphApiError: For any non-2xx response after retries.
            AuthError: If no access token can be obtained.
        """
        logger.debug("%s %s", request.method, request.target)
        resp = await self._request_with_retry(
            request.method,
            request.target,
            extra_headers=request.headers,
            content=request.encoded_body(),
        )
        self._ensure_success(resp)
        return self._to_graph_response(resp, request.raw)
