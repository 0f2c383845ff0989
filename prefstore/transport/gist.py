"""GitHub gist transport for the preference document."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from ..errors import (
    ErrorCategory,
    MalformedDocumentError,
    RemoteStatusError,
    TransientError,
    TransportError,
)

GIST_API_URL = "https://api.github.com/gists"
GIST_FILENAME = "preferences.json"
DEFAULT_TIMEOUT_S = 15.0


def _headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"token {token}",
        "Accept": "application/vnd.github.v3+json",
    }


async def _send(
    client: httpx.AsyncClient, operation: str, method: str, url: str, **kwargs: Any
) -> httpx.Response:
    """Issue a request, mapping transport failures to store errors.

    Response bodies are never copied into error messages or logs.
    """
    log = logging.getLogger(__name__)
    try:
        return await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        log.warning(
            "gist_timeout",
            extra={"event_type": operation, "error_category": ErrorCategory.NETWORK.value},
        )
        raise TransientError(f"{operation} timed out") from exc
    except httpx.HTTPError as exc:
        log.warning(
            "gist_transport_error",
            extra={"event_type": operation, "error_category": ErrorCategory.NETWORK.value},
        )
        raise TransportError(f"{operation} failed: {type(exc).__name__}") from exc


def _check_status(response: httpx.Response, operation: str, expected: int) -> None:
    if response.status_code != expected:
        logging.getLogger(__name__).warning(
            "gist_bad_status",
            extra={
                "event_type": operation,
                "status_code": response.status_code,
                "error_category": ErrorCategory.PROTOCOL.value,
            },
        )
        raise RemoteStatusError(operation, response.status_code)


def _json(response: httpx.Response, operation: str) -> Any:
    try:
        return response.json()
    except ValueError:
        raise MalformedDocumentError(f"{operation}: response is not valid JSON") from None


class GistTransport:
    """Read and overwrite one file of a private gist.

    Every write is a blind overwrite of the whole file: the gist API offers no
    conditional update here, so two processes saving concurrently lose one
    side's changes.
    """

    def __init__(
        self,
        gist_id: str,
        token: str,
        *,
        filename: str = GIST_FILENAME,
        api_url: str = GIST_API_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not gist_id:
            raise ValueError("gist ID is required")
        if not token:
            raise ValueError("GitHub token is required")
        self.gist_id = gist_id
        self.filename = filename
        self.url = f"{api_url.rstrip('/')}/{gist_id}"
        self.timeout_s = timeout_s
        self._token = token
        self._client = client

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            yield client

    async def fetch(self) -> str | None:
        async with self._session() as client:
            response = await _send(
                client, "load", "GET", self.url, headers=_headers(self._token),
                timeout=self.timeout_s,
            )
            _check_status(response, "load", 200)
            payload = _json(response, "load")
            files = payload.get("files") if isinstance(payload, dict) else None
            if not isinstance(files, dict):
                raise MalformedDocumentError("load: gist response has no files")
            entry = files.get(self.filename)
            if entry is None:
                return None
            if not isinstance(entry, dict):
                raise MalformedDocumentError("load: unexpected gist file entry")
            if entry.get("truncated") and entry.get("raw_url"):
                # Large files are cut off in the API response; fetch the raw blob.
                raw = await _send(
                    client, "load", "GET", entry["raw_url"], headers=_headers(self._token),
                    timeout=self.timeout_s,
                )
                _check_status(raw, "load", 200)
                return raw.text
            content = entry.get("content")
            if not isinstance(content, str):
                raise MalformedDocumentError("load: gist file has no content")
            return content

    async def put(self, content: str) -> None:
        payload = {"files": {self.filename: {"content": content}}}
        async with self._session() as client:
            response = await _send(
                client, "save", "PATCH", self.url, headers=_headers(self._token),
                json=payload, timeout=self.timeout_s,
            )
            _check_status(response, "save", 200)


async def create_gist(
    token: str,
    description: str,
    content: str,
    *,
    filename: str = GIST_FILENAME,
    api_url: str = GIST_API_URL,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Create a private gist holding ``content`` and return its id."""

    if not token:
        raise ValueError("GitHub token is required")
    payload = {
        "description": description,
        "public": False,
        "files": {filename: {"content": content}},
    }

    async def _create(http: httpx.AsyncClient) -> str:
        response = await _send(
            http, "create", "POST", api_url.rstrip("/"), headers=_headers(token),
            json=payload, timeout=timeout_s,
        )
        _check_status(response, "create", 201)
        data = _json(response, "create")
        gist_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(gist_id, str) or not gist_id:
            raise MalformedDocumentError("create: response has no gist id")
        return gist_id

    if client is not None:
        return await _create(client)
    async with httpx.AsyncClient(timeout=timeout_s) as http:
        return await _create(http)
