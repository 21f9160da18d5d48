import json
import sys
import urllib.parse
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

# Ensure root path is available for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from pt_aggregator.services.failover import FailoverExecutor  # noqa: E402
from pt_aggregator.services.http_client import HTTPResponse  # noqa: E402


class FakeSiteHTTP:
    """
    Stand-in for ``SiteHTTPClient`` that answers from a route table.

    Routes are keyed by URL path or by ``scheme://host/path``. A value may be
    an ``HTTPResponse``, an exception to raise, or a list consumed in order.
    """

    def __init__(self, routes: dict[str, Any] | None = None):
        self.routes = dict(routes or {})
        self.calls: list[SimpleNamespace] = []

    async def request(self, method, url, *, params=None, data=None, json=None, headers=None):
        self.calls.append(
            SimpleNamespace(
                method=method, url=url, params=params, data=data, json=json, headers=headers
            )
        )
        parts = urllib.parse.urlsplit(url)
        full = f"{parts.scheme}://{parts.netloc}{parts.path}"
        handler = self.routes.get(full, self.routes.get(parts.path))
        if isinstance(handler, list):
            handler = handler.pop(0) if handler else None
        if handler is None:
            return HTTPResponse(status_code=404, content=b"", url=url)
        if isinstance(handler, BaseException):
            raise handler
        return handler

    def paths(self) -> list[str]:
        return [urllib.parse.urlsplit(call.url).path for call in self.calls]


def html_response(body: str, status_code: int = 200, url: str = "https://example.org/") -> HTTPResponse:
    return HTTPResponse(status_code=status_code, content=body.encode("utf-8"), url=url)


def json_response(payload: Any, status_code: int = 200, url: str = "https://example.org/") -> HTTPResponse:
    return HTTPResponse(
        status_code=status_code, content=json.dumps(payload).encode("utf-8"), url=url
    )


@pytest.fixture
def fake_http():
    """Factory building a ``FakeSiteHTTP`` from a route mapping."""
    return FakeSiteHTTP


@pytest.fixture
def html():
    return html_response


@pytest.fixture
def json_payload():
    return json_response


@pytest.fixture
def failover():
    def _make(site_id: str = "test", urls: list[str] | None = None) -> FailoverExecutor:
        return FailoverExecutor(site_id, urls or ["https://example.org"])

    return _make
