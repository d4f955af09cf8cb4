"""HTTP client for business tools backed by an external API."""

from __future__ import annotations

import logging
import re
import time
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from .catalog import ToolRoute

_LOGGER = logging.getLogger(__name__)
_PATH_PARAM = re.compile(r":([A-Za-z0-9_]+)")
_BODYLESS_METHODS = frozenset({"GET", "HEAD"})


class ToolArgumentError(ValueError):
    """Raised when call arguments cannot fill a route's path template."""


class ToolApiError(RuntimeError):
    """Raised when a tool endpoint answers with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by the endpoint.
        body: Raw response body.
    """

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"External API request failed ({status_code}): {body}")
        self.status_code = status_code
        self.body = body


def build_url_with_params(
    base_url: str,
    path_template: str,
    args: dict[str, Any],
) -> tuple[str, dict[str, Any]]:
    """Substitutes ``:param`` placeholders from ``args``.

    Args:
        base_url: API base URL without a trailing slash.
        path_template: Route path such as ``/bookings/:locator``.
        args: Tool call arguments.

    Raises:
        ToolArgumentError: If a placeholder has no matching argument.

    Returns:
        Absolute URL and the arguments not consumed by the path.
    """
    used: set[str] = set()

    def _substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in args:
            raise ToolArgumentError(f'Missing required path param "{key}" for {path_template}')
        used.add(key)
        return quote(str(args[key]), safe="")

    path = _PATH_PARAM.sub(_substitute, path_template)
    if not path.startswith("/"):
        path = f"/{path}"
    remaining = {key: value for key, value in args.items() if key not in used}
    return f"{base_url.rstrip('/')}{path}", remaining


def append_query_params(url: str, params: dict[str, Any]) -> str:
    """Appends non-null params to ``url`` as a query string."""
    pairs = [(key, _query_value(value)) for key, value in params.items() if value is not None]
    if not pairs:
        return url
    connector = "&" if "?" in url else "?"
    return f"{url}{connector}{urlencode(pairs)}"


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ToolApiClient:
    """Calls tool routes on the external API with an optional bearer token."""

    def __init__(self, base_url: str, token: str | None = None, timeout: float = 15.0) -> None:
        """Initializes the tool API client.

        Args:
            base_url: External API base URL.
            token: Optional bearer token.
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = httpx.AsyncClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self, method: str) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if method not in _BODYLESS_METHODS:
            headers["Content-Type"] = "application/json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def call(self, route: ToolRoute, args: dict[str, Any]) -> Any:
        """Executes one tool route.

        GET requests carry unused arguments as query parameters; methods with a
        body send the unused arguments as a JSON object.

        Args:
            route: Method and path template.
            args: Parsed call arguments.

        Raises:
            ToolArgumentError: If a path parameter is missing.
            ToolApiError: If the endpoint returns a non-2xx status.

        Returns:
            Parsed JSON for JSON responses, otherwise response text.
        """
        method = route.method.upper()
        url, remaining = build_url_with_params(self.base_url, route.path, args)
        if method in _BODYLESS_METHODS:
            url = append_query_params(url, remaining)

        started = time.monotonic()
        _LOGGER.debug("Starting tool HTTP request.", extra={"method": method, "url": url})
        response = await self._client.request(
            method,
            url,
            headers=self._headers(method),
            json=remaining if method not in _BODYLESS_METHODS else None,
        )
        latency_ms = int((time.monotonic() - started) * 1000)
        _LOGGER.debug(
            "Tool HTTP response received.",
            extra={"method": method, "url": url, "status_code": response.status_code, "latency_ms": latency_ms},
        )
        if not response.is_success:
            raise ToolApiError(response.status_code, response.text)
        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return response.text

    async def close(self) -> None:
        """Closes the underlying HTTP client."""
        await self._client.aclose()
