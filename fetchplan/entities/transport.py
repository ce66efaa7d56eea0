"""HTTP transport: a single ``request(url, options)`` primitive over httpx.

Entities build the url and the options; the transport only encodes them,
sends the request and decodes the JSON body. A body that is not valid JSON
(an empty 204, a plain-text error page) is treated as an empty payload.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any, Protocol
from urllib.parse import urlencode

import httpx
import structlog

from fetchplan.errors import TransportError

_log = structlog.get_logger(component="entities.transport")

MIME_TYPE_JSON = "application/json"
_BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")


class Transport(Protocol):
    async def request(self, url: str, options: Mapping[str, Any]) -> tuple[Any, httpx.Response]: ...


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}


class HttpTransport:
    """Sends entity requests with a shared ``httpx.AsyncClient``.

    Args:
        base_url:  Prefix for relative entity urls.
        timeout:   Request timeout in seconds.
        headers:   Headers sent with every request.
        stringify: Encodes GET params into a query string (default: urlencode).
        prefilter: Rewrites the request options before sending; may return
                   a partial mapping that is merged over the options.
        client:    Pre-built client (tests pass one with ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 10.0,
        headers: Mapping[str, str] | None = None,
        stringify: Callable[[Any], str] | None = None,
        prefilter: Callable[[dict[str, Any]], dict[str, Any] | None] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._headers = dict(headers or {})
        self._stringify = stringify
        self._prefilter = prefilter
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    def _encode_query(self, params: Mapping[str, Any]) -> str:
        if self._stringify is not None:
            return self._stringify(dict(params))
        return urlencode(params, doseq=True)

    async def request(self, url: str, options: Mapping[str, Any]) -> tuple[Any, httpx.Response]:
        """Send one request. Returns ``(body, response)`` on 2xx.

        Raises:
            TransportError: non-2xx response (status set) or network failure (status 0).
        """
        opts: dict[str, Any] = {
            "url": url,
            "method": "GET",
            "params": {},
            "headers": {},
            **options,
        }
        if self._prefilter is not None:
            opts = {**opts, **(self._prefilter(opts) or {})}

        method = str(opts["method"]).upper()
        params = opts["params"] or {}
        target = str(opts["url"])
        content: bytes | None = None
        headers = {"Accept": MIME_TYPE_JSON, **self._headers}

        if method in _BODY_METHODS:
            if params:
                content = json.dumps(params).encode()
                headers["Content-Type"] = MIME_TYPE_JSON
        elif params:
            target += ("&" if "?" in target else "?") + self._encode_query(params)
        headers.update(opts["headers"] or {})

        try:
            response = await self._get_client().request(method, target, headers=headers, content=content)
        except httpx.TimeoutException as exc:
            _log.warning("transport_timeout", url=target, method=method)
            raise TransportError(0, message=f"request to {target} timed out") from exc
        except httpx.HTTPError as exc:
            _log.warning("transport_http_error", url=target, method=method, error=str(exc))
            raise TransportError(0, message=str(exc)) from exc

        body = _decode(response)
        if not response.is_success:
            _log.info("transport_non_2xx_response", url=target, status_code=response.status_code)
            raise TransportError(response.status_code, body)
        return body, response

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
