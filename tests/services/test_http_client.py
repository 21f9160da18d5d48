from types import SimpleNamespace

import httpx
import pytest

from pt_aggregator.errors import HTTPStatusError, InvalidCredentialsError, RequestError
from pt_aggregator.services.http_client import HTTPResponse, SiteHTTPClient, check_status


class DummyClient:
    """Minimal async context manager standing in for ``httpx.AsyncClient``."""

    last_kwargs: dict = {}
    last_request: dict = {}
    error: Exception | None = None

    def __init__(self, **kwargs):
        DummyClient.last_kwargs = kwargs

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def request(self, method, url, **kwargs):
        DummyClient.last_request = {"method": method, "url": url, **kwargs}
        if DummyClient.error is not None:
            raise DummyClient.error
        return SimpleNamespace(
            status_code=200,
            content=b"<html>ok</html>",
            url=url,
            headers={"content-type": "text/html"},
        )


@pytest.fixture
def dummy_client(monkeypatch):
    DummyClient.error = None
    monkeypatch.setattr(httpx, "AsyncClient", DummyClient)
    return DummyClient


@pytest.mark.asyncio
async def test_request_merges_headers_and_wraps_response(dummy_client):
    client = SiteHTTPClient("demo", headers={"Cookie": "uid=1"}, timeout=5)

    response = await client.get(
        "https://demo.example/torrents.php",
        params={"search": "dune"},
        headers={"Accept": "text/html"},
    )

    assert response.status_code == 200
    assert response.text == "<html>ok</html>"
    assert response.headers == {"content-type": "text/html"}
    assert dummy_client.last_kwargs == {"timeout": 5, "follow_redirects": True}
    sent = dummy_client.last_request
    assert sent["method"] == "GET"
    assert sent["params"] == {"search": "dune"}
    assert sent["headers"]["Cookie"] == "uid=1"
    assert sent["headers"]["Accept"] == "text/html"
    assert "User-Agent" in sent["headers"]


@pytest.mark.asyncio
async def test_post_sends_json_body(dummy_client):
    client = SiteHTTPClient("demo")
    await client.post("https://demo.example/api", json={"keyword": "dune"})

    assert dummy_client.last_request["method"] == "POST"
    assert dummy_client.last_request["json"] == {"keyword": "dune"}


@pytest.mark.asyncio
async def test_transport_errors_become_request_errors(dummy_client):
    dummy_client.error = httpx.ConnectError("boom")
    client = SiteHTTPClient("demo")

    with pytest.raises(RequestError, match="boom"):
        await client.get("https://demo.example/")


@pytest.mark.parametrize("status", [401, 403])
def test_check_status_rejects_auth_failures(status):
    with pytest.raises(InvalidCredentialsError):
        check_status(HTTPResponse(status_code=status, content=b"", url="https://x"))


def test_check_status_rejects_other_statuses():
    with pytest.raises(HTTPStatusError) as excinfo:
        check_status(HTTPResponse(status_code=502, content=b"", url="https://x/y"))
    assert excinfo.value.status_code == 502
    assert excinfo.value.url == "https://x/y"


def test_check_status_passes_ok_response():
    response = HTTPResponse(status_code=200, content=b"{}", url="https://x")
    assert check_status(response) is response
