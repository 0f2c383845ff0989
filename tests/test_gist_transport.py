import asyncio
import json

import httpx
import pytest

from prefstore.errors import (
    MalformedDocumentError,
    RemoteStatusError,
    TransientError,
    TransportError,
)
from prefstore.transport.gist import GistTransport, create_gist

API = "https://gist.test/gists"


def _transport(handler, **kwargs) -> GistTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GistTransport("g1", "secret-token", api_url=API, client=client, **kwargs)


def _gist(files: dict) -> httpx.Response:
    return httpx.Response(200, json={"id": "g1", "files": files})


def test_fetch_returns_file_content_with_auth_headers():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _gist({"preferences.json": {"content": '{"u1": {}}'}})

    assert asyncio.run(_transport(handler).fetch()) == '{"u1": {}}'
    request = seen[0]
    assert request.method == "GET"
    assert str(request.url) == f"{API}/g1"
    assert request.headers["Authorization"] == "token secret-token"
    assert request.headers["Accept"] == "application/vnd.github.v3+json"


def test_fetch_missing_file_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return _gist({"other.json": {"content": "{}"}})

    assert asyncio.run(_transport(handler).fetch()) is None


def test_fetch_truncated_file_reads_raw_url():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/raw"):
            return httpx.Response(200, text='{"big": {}}')
        return _gist(
            {
                "preferences.json": {
                    "content": '{"bi',
                    "truncated": True,
                    "raw_url": "https://gist.test/raw",
                }
            }
        )

    assert asyncio.run(_transport(handler).fetch()) == '{"big": {}}'


def test_bad_status_does_not_leak_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="secret-token not found")

    with pytest.raises(RemoteStatusError) as exc_info:
        asyncio.run(_transport(handler).fetch())
    assert exc_info.value.status_code == 404
    assert "secret-token" not in str(exc_info.value)


def test_timeout_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransientError):
        asyncio.run(_transport(handler).fetch())


def test_connection_failure_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(_transport(handler).put("{}"))
    assert not isinstance(exc_info.value, TransientError)


def test_non_json_response_is_malformed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>")

    with pytest.raises(MalformedDocumentError):
        asyncio.run(_transport(handler).fetch())


def test_put_overwrites_whole_file():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _gist({})

    asyncio.run(_transport(handler, filename="prefs.json").put('{"u1": {}}'))
    request = seen[0]
    assert request.method == "PATCH"
    assert json.loads(request.content) == {"files": {"prefs.json": {"content": '{"u1": {}}'}}}


def test_put_rejects_unexpected_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={})

    with pytest.raises(RemoteStatusError):
        asyncio.run(_transport(handler).put("{}"))


def test_transport_requires_credentials():
    with pytest.raises(ValueError):
        GistTransport("", "tok")
    with pytest.raises(ValueError):
        GistTransport("g1", "")


def test_create_gist_returns_id():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "new-gist"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    gist_id = asyncio.run(create_gist("tok", "prefs", "{}", api_url=API, client=client))
    assert gist_id == "new-gist"
    payload = json.loads(seen[0].content)
    assert seen[0].method == "POST"
    assert payload["public"] is False
    assert payload["files"] == {"preferences.json": {"content": "{}"}}
