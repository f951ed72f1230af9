"""HTTP transport for the remote store's PostgREST interface."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

import aiohttp

from gridstate._redact import redact_for_log, redact_params
from gridstate.config import GridStateConfig
from gridstate.exceptions import RemoteApiError, RemoteTransportError

_logger = logging.getLogger(__name__)

USER_AGENT = "gridstate/0.1"


class Transport(Protocol):
    """Structural transport interface used by the remote client.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`RestTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Sequence[tuple[str, str]] = (),
        json_body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        ...


def _api_error(status: int, text: str, endpoint: str) -> RemoteApiError | RemoteTransportError:
    """Map an error response to an exception, preferring the structured body."""
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        body = None

    if isinstance(body, dict) and ("code" in body or "message" in body):
        code = str(body.get("code") or "")
        message = str(body.get("message") or "")
        return RemoteApiError(
            f"Remote store rejected {endpoint}: code={code} message={message}",
            code=code,
            endpoint=endpoint,
            status_code=status,
        )
    return RemoteTransportError(
        f"HTTP {status} from {endpoint}: {text[:200]}",
        status_code=status,
        endpoint=endpoint,
    )


class RestTransport:
    """Sends authenticated PostgREST requests and decodes their JSON bodies."""

    def __init__(self, config: GridStateConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self, method: str, prefer: str | None) -> dict[str, str]:
        key = self._config.remote_key or ""
        headers: dict[str, str] = {
            "apikey": key,
            "authorization": f"Bearer {key}",
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if method == "GET":
            headers["accept-profile"] = self._config.schema
        else:
            headers["content-profile"] = self._config.schema
            headers["content-type"] = "application/json"
        if prefer:
            headers["prefer"] = prefer
        return headers

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Sequence[tuple[str, str]] = (),
        json_body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Perform one request against ``/rest/v1/<table>``.

        Returns the decoded JSON body, or ``None`` for an empty body.
        """
        endpoint = f"/rest/v1/{table}"
        url = f"{self._config.remote_url}{endpoint}"
        headers = self._headers(method, prefer)
        data = None if json_body is None else json.dumps(json_body, separators=(",", ":"))

        _logger.debug(
            "%s %s params=%s headers=%s",
            method,
            url,
            redact_params(params),
            redact_for_log(headers),
        )

        try:
            async with self._http.request(
                method,
                url,
                params=list(params),
                data=data,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise RemoteTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc
        except asyncio.TimeoutError as exc:
            raise RemoteTransportError(
                f"Request to {endpoint} timed out after {self._config.request_timeout}s",
                endpoint=endpoint,
            ) from exc

        if status >= 400:
            raise _api_error(status, text, endpoint)

        if not text.strip():
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise RemoteTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from exc
