# pt_aggregator/services/drivers/base.py

from __future__ import annotations

import asyncio
import urllib.parse
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Generic, TypeVar

from bs4 import BeautifulSoup

from ...config import logger
from ...errors import UnsupportedOperationError
from ...models import SearchQuery, TorrentItem, UserInfo
from ..definitions import SiteDefinition
from ..failover import FailoverExecutor
from ..http_client import HTTPResponse, SiteHTTPClient, check_status

T = TypeVar("T")


@dataclass
class SiteRequest:
    """Schema independent description of one HTTP call."""

    path: str
    method: str = "GET"
    params: dict[str, Any] = field(default_factory=dict)
    # Form-encoded body
    data: dict[str, Any] | None = None
    json: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    response_type: str = "document"


@dataclass
class SiteResponse:
    status_code: int
    content: bytes
    url: str
    document: BeautifulSoup | None = None
    data: Any = None

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


def join_url(base_url: str, path: str) -> str:
    if path.startswith(("http://", "https://")):
        return path
    return urllib.parse.urljoin(f"{base_url.rstrip('/')}/", path.lstrip("/"))


class Driver(ABC):
    """
    Adapter between one site schema family and the normalised models.

    ``prepare_*`` builds a request, ``execute`` performs it through the
    failover executor and ``parse_*`` turns the response into models. The
    high level coroutines at the bottom chain the three together.
    """

    schema: ClassVar[str] = ""

    def __init__(
        self,
        site_id: str,
        http: SiteHTTPClient,
        failover: FailoverExecutor,
        definition: SiteDefinition | None = None,
    ) -> None:
        self.site_id = site_id
        self.http = http
        self.failover = failover
        self.definition = definition

    @property
    def base_url(self) -> str:
        return self.failover.current_base_url

    # --- Request execution -------------------------------------------------

    async def execute(self, request: SiteRequest) -> SiteResponse:
        async def _attempt(base_url: str) -> SiteResponse:
            return await self._execute_once(base_url, request)

        return await self.failover.execute(_attempt)

    async def _execute_once(self, base_url: str, request: SiteRequest) -> SiteResponse:
        url = join_url(base_url, request.path)
        raw = await self.http.request(
            request.method,
            url,
            params=request.params or None,
            data=request.data,
            json=request.json,
            headers=request.headers or None,
        )
        check_status(raw)
        return self.decode(raw, request)

    @abstractmethod
    def decode(self, raw: HTTPResponse, request: SiteRequest) -> SiteResponse:
        """Turn a raw 200 response into a ``SiteResponse`` or raise."""

    # --- Capability set ------------------------------------------------------

    @abstractmethod
    def prepare_search(self, query: SearchQuery) -> SiteRequest: ...

    @abstractmethod
    def parse_search(self, response: SiteResponse) -> list[TorrentItem]: ...

    @abstractmethod
    def prepare_user_info(self) -> SiteRequest: ...

    @abstractmethod
    def parse_user_info(self, response: SiteResponse) -> UserInfo: ...

    @abstractmethod
    def prepare_download(self, torrent_id: str) -> SiteRequest: ...

    @abstractmethod
    def parse_download(self, response: SiteResponse) -> bytes: ...

    async def get_torrent_detail(self, torrent_id: str) -> TorrentItem:
        raise UnsupportedOperationError(f"{self.schema} driver has no torrent detail support")

    # --- Composite operations ----------------------------------------------

    async def search(self, query: SearchQuery) -> list[TorrentItem]:
        response = await self.execute(self.prepare_search(query))
        return self.parse_search(response)

    async def get_user_info(self) -> UserInfo:
        response = await self.execute(self.prepare_user_info())
        return self.parse_user_info(response)

    async def download(self, torrent_id: str) -> bytes:
        response = await self.execute(self.prepare_download(torrent_id))
        return self.parse_download(response)


@dataclass
class CompositeFetch(Generic[T]):
    """A fetch coroutine factory plus the function that stores its result."""

    name: str
    fetch: Callable[[], Awaitable[T]]
    apply: Callable[[T], None]


async def fetch_composite(
    critical: CompositeFetch[Any],
    best_effort: list[CompositeFetch[Any]],
    *,
    site_id: str = "",
) -> None:
    """
    Run one critical fetch and several best-effort fetches concurrently.

    A best-effort failure is logged and leaves its fields untouched. A
    critical failure, or cancellation of the caller, cancels every fetch still
    in flight and propagates. Results are applied one at a time under a single
    lock, so ``apply`` callbacks never interleave.
    """
    lock = asyncio.Lock()

    async def _run_critical() -> None:
        value = await critical.fetch()
        async with lock:
            critical.apply(value)

    async def _run_best_effort(item: CompositeFetch[Any]) -> None:
        try:
            value = await item.fetch()
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"[SITE] {site_id}: Optional fetch '{item.name}' failed: {exc}")
            return
        async with lock:
            item.apply(value)

    tasks = [asyncio.create_task(_run_critical())]
    tasks.extend(asyncio.create_task(_run_best_effort(item)) for item in best_effort)
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
