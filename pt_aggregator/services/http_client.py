# pt_aggregator/services/http_client.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import DEFAULT_TIMEOUT, USER_AGENT, logger
from ..errors import HTTPStatusError, InvalidCredentialsError, RequestError


@dataclass
class HTTPResponse:
    status_code: int
    content: bytes
    url: str
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


def check_status(response: HTTPResponse) -> HTTPResponse:
    """Map authentication failures and non-200 statuses onto site errors."""
    if response.status_code in (401, 403):
        raise InvalidCredentialsError(
            f"authentication rejected with HTTP {response.status_code}"
        )
    if response.status_code != 200:
        raise HTTPStatusError(response.status_code, response.url)
    return response


class SiteHTTPClient:
    """
    Thin async transport used by the drivers for every request.

    Each call opens a short-lived ``httpx.AsyncClient`` so the class holds no
    connection state of its own; headers passed to the constructor are sent
    with every request and may be overridden per call.
    """

    def __init__(
        self,
        site_name: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.site_name = site_name
        self.timeout = timeout
        self.default_headers: dict[str, str] = {
            "User-Agent": USER_AGENT,
            "Accept-Language": "zh-CN,zh;q=0.9,en-US;q=0.8,en;q=0.7",
        }
        if headers:
            self.default_headers.update(headers)

    async def get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        return await self.request("GET", url, params=params, headers=headers)

    async def post(
        self,
        url: str,
        *,
        data: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        return await self.request("POST", url, data=data, json=json, headers=headers)

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        merged_headers = {**self.default_headers, **(headers or {})}
        logger.debug(f"[HTTP] {self.site_name}: {method} {url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True
            ) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    json=json,
                    headers=merged_headers,
                )
        except httpx.HTTPError as exc:
            logger.error(f"[HTTP] {self.site_name}: Request error for {url}: {exc}")
            raise RequestError(f"{method} {url} failed: {exc}") from exc

        logger.debug(
            f"[HTTP] {self.site_name}: {method} {url} -> {response.status_code}"
        )
        return HTTPResponse(
            status_code=response.status_code,
            content=response.content,
            url=str(response.url),
            headers=dict(response.headers),
        )
