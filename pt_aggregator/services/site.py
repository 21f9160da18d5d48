# pt_aggregator/services/site.py

from __future__ import annotations

import time

from ..config import logger
from ..models import SearchQuery, TorrentItem, UserInfo
from .definitions import LevelRequirement
from .drivers.base import Driver
from .level import LevelProgress, calculate_level_progress, guess_user_level_id
from .rate_limit import AsyncRateLimiter


class Site:
    """
    Public face of one configured site.

    Validates input, waits for the site's rate limiter and then delegates to
    the schema driver. Results are stamped with the site id so callers never
    depend on a driver remembering to do it.
    """

    def __init__(
        self,
        site_id: str,
        name: str,
        driver: Driver,
        rate_limiter: AsyncRateLimiter,
    ) -> None:
        self.id = site_id
        self.name = name or site_id
        self.driver = driver
        self.rate_limiter = rate_limiter

    @property
    def schema(self) -> str:
        return self.driver.schema

    def __repr__(self) -> str:
        return f"Site(id={self.id!r}, schema={self.schema!r})"

    @property
    def level_requirements(self) -> tuple[LevelRequirement, ...]:
        definition = self.driver.definition
        return definition.level_requirements if definition is not None else ()

    def level_progress(self, info: UserInfo) -> LevelProgress | None:
        """Progress of ``info`` towards the next level of this site."""
        return calculate_level_progress(info, self.level_requirements)

    async def search(self, query: SearchQuery) -> list[TorrentItem]:
        query.validate()
        await self.rate_limiter.acquire()
        logger.info(f"[SITE] {self.id}: Searching for '{query.keyword}'")
        items = await self.driver.search(query)
        for item in items:
            item.source_site = self.id
        logger.info(f"[SITE] {self.id}: Search returned {len(items)} items")
        return items

    async def get_user_info(self) -> UserInfo:
        await self.rate_limiter.acquire()
        info = await self.driver.get_user_info()
        info.site = self.id
        info.last_update = int(time.time())
        levels = self.level_requirements
        if levels and not info.level_id:
            guessed = guess_user_level_id(info, levels, info.last_update)
            if guessed > 0:
                info.level_id = guessed
        logger.info(f"[SITE] {self.id}: Fetched user info for '{info.username}'")
        return info

    async def download(self, torrent_id: str) -> bytes:
        if not torrent_id:
            raise ValueError("torrent id must not be empty")
        await self.rate_limiter.acquire()
        data = await self.driver.download(torrent_id)
        logger.info(f"[SITE] {self.id}: Downloaded torrent {torrent_id} ({len(data)} bytes)")
        return data

    async def get_torrent_detail(self, torrent_id: str) -> TorrentItem:
        if not torrent_id:
            raise ValueError("torrent id must not be empty")
        await self.rate_limiter.acquire()
        item = await self.driver.get_torrent_detail(torrent_id)
        item.source_site = self.id
        return item
