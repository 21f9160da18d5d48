# pt_aggregator/services/search_orchestrator.py

from __future__ import annotations

import asyncio
import time

from ..config import logger
from ..models import (
    MultiSiteSearchQuery,
    MultiSiteSearchResult,
    SearchError,
    SearchQuery,
    TorrentItem,
)
from .deduper import deduplicate
from .normalizer import normalize_title
from .ranker import Ranker
from .site import Site


def apply_filters(items: list[TorrentItem], query: MultiSiteSearchQuery) -> list[TorrentItem]:
    """Drops items below the seeder floor, outside the size bounds or not free."""
    filtered: list[TorrentItem] = []
    for item in items:
        if query.min_seeders > 0 and item.seeders < query.min_seeders:
            continue
        if query.max_size_bytes > 0 and item.size_bytes > query.max_size_bytes:
            continue
        if query.min_size_bytes > 0 and item.size_bytes < query.min_size_bytes:
            continue
        if query.free_only and not item.is_free():
            continue
        filtered.append(item)
    return filtered


class SearchOrchestrator:
    """
    Searches several sites at once and merges the results.

    A site that fails or runs past the timeout is reported in
    ``MultiSiteSearchResult.errors``; the others still contribute.
    """

    def __init__(self, ranker: Ranker | None = None) -> None:
        self._sites: dict[str, Site] = {}
        self.ranker = ranker or Ranker()

    def register_site(self, site: Site) -> None:
        self._sites[site.id] = site
        logger.info(f"[SEARCH] Registered site '{site.id}' for search")

    def unregister_site(self, site_id: str) -> None:
        if self._sites.pop(site_id, None) is not None:
            logger.info(f"[SEARCH] Unregistered site '{site_id}'")

    def list_sites(self) -> list[str]:
        return list(self._sites)

    def get_site(self, site_id: str) -> Site | None:
        return self._sites.get(site_id)

    def _sites_to_search(self, requested: list[str]) -> list[Site]:
        if not requested:
            return list(self._sites.values())
        missing = [site_id for site_id in requested if site_id not in self._sites]
        if missing:
            logger.warning(f"[SEARCH] Ignoring unknown sites: {', '.join(missing)}")
        return [self._sites[site_id] for site_id in requested if site_id in self._sites]

    async def search(self, query: MultiSiteSearchQuery) -> MultiSiteSearchResult:
        query.validate()
        started = time.monotonic()
        sites = self._sites_to_search(query.sites)
        if not sites:
            return MultiSiteSearchResult(duration=time.monotonic() - started)

        items, errors = await self._search_concurrently(sites, query)
        for item in items:
            item.title = normalize_title(item.title)

        items = apply_filters(items, query)
        total_before_dedup = len(items)
        items = self.ranker.rank(deduplicate(items))

        site_results: dict[str, int] = {}
        for item in items:
            site_results[item.source_site] = site_results.get(item.source_site, 0) + 1

        return MultiSiteSearchResult(
            items=items,
            total_results=total_before_dedup,
            site_results=site_results,
            errors=errors,
            duration=time.monotonic() - started,
        )

    async def _search_concurrently(
        self, sites: list[Site], query: MultiSiteSearchQuery
    ) -> tuple[list[TorrentItem], list[SearchError]]:
        logger.info(
            f"[SEARCH] Searching {len(sites)} site(s) for '{query.keyword}'"
        )
        started = time.monotonic()
        site_query = SearchQuery(
            keyword=query.keyword,
            category=query.category,
            free_only=query.free_only,
            page=query.page,
            page_size=query.page_size,
        )
        tasks = {site.id: asyncio.create_task(site.search(site_query)) for site in sites}

        try:
            _, pending = await asyncio.wait(
                tasks.values(), timeout=query.timeout if query.timeout and query.timeout > 0 else None
            )
        except BaseException:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        items: list[TorrentItem] = []
        errors: list[SearchError] = []
        for site_id, task in tasks.items():
            if task in pending:
                logger.warning(f"[SEARCH] {site_id}: Search timed out")
                errors.append(SearchError(site=site_id, error="search timed out"))
                continue
            if task.cancelled():
                logger.warning(f"[SEARCH] {site_id}: Search was cancelled")
                errors.append(SearchError(site=site_id, error="search cancelled"))
                continue
            exc = task.exception()
            if exc is not None:
                logger.warning(f"[SEARCH] {site_id}: Search failed: {exc}")
                errors.append(SearchError(site=site_id, error=str(exc) or type(exc).__name__))
                continue
            site_items = task.result()
            logger.info(f"[SEARCH] {site_id}: {len(site_items)} result(s)")
            items.extend(site_items)

        logger.info(
            f"[SEARCH] All site searches completed: {len(items)} result(s), "
            f"{len(errors)} error(s) in {time.monotonic() - started:.2f}s"
        )
        return items, errors
