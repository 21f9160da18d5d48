# pt_aggregator/models.py

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any

from .services.discount import DiscountLevel


@dataclass
class TorrentItem:
    """One torrent listing as normalised from any site schema.

    ``info_hash`` is the cross-site identity key when present. Without it the
    normalised title is the only way to recognise the same release.
    """

    id: str = ""
    title: str = ""
    subtitle: str = ""
    info_hash: str = ""
    size_bytes: int = 0
    seeders: int = 0
    leechers: int = 0
    snatched: int = 0
    uploaded_at: int = 0
    source_site: str = ""
    category: str = ""
    discount_level: DiscountLevel = DiscountLevel.NONE
    # Zero means permanent or no discount
    discount_end_time: int = 0
    has_hr: bool = False
    url: str = ""
    download_url: str = ""
    magnet: str = ""
    tags: list[str] = field(default_factory=list)

    def is_free(self) -> bool:
        return self.discount_level.is_free

    def copy(self) -> TorrentItem:
        """Return an independent copy; the tag list is not shared."""
        return dataclasses.replace(self, tags=list(self.tags))


@dataclass
class PeerStatistics:
    seeder_count: int = 0
    seeder_size: int = 0
    leecher_count: int = 0
    leecher_size: int = 0


@dataclass
class UserInfo:
    """Account snapshot for one site.

    Extended statistics stay at zero when their source request fails.
    """

    site: str = ""
    user_id: str = ""
    username: str = ""
    uploaded: int = 0
    downloaded: int = 0
    ratio: float = 0.0
    bonus: float = 0.0
    seeding: int = 0
    leeching: int = 0
    rank: str = ""
    level_id: int = 0
    join_date: int = 0
    last_access: int = 0
    last_update: int = 0
    uploads: int = 0
    # Extended statistics
    bonus_per_hour: float = 0.0
    seeding_bonus: float = 0.0
    unread_message_count: int = 0
    total_message_count: int = 0
    seeder_count: int = 0
    seeder_size: int = 0
    leecher_count: int = 0
    leecher_size: int = 0
    hnr_unsatisfied: int = 0
    hnr_pre_warning: int = 0

    def apply_peer_statistics(self, stats: PeerStatistics) -> None:
        self.seeder_count = stats.seeder_count
        self.seeder_size = stats.seeder_size
        self.leecher_count = stats.leecher_count
        self.leecher_size = stats.leecher_size


@dataclass
class SearchQuery:
    keyword: str = ""
    category: str = ""
    free_only: bool = False
    page: int = 1
    page_size: int = 50

    def validate(self) -> None:
        if self.page < 0:
            raise ValueError("page must not be negative")
        if self.page_size < 0:
            raise ValueError("page_size must not be negative")


@dataclass
class MultiSiteSearchQuery(SearchQuery):
    # Empty means every registered site
    sites: list[str] = field(default_factory=list)
    timeout: float | None = None
    min_seeders: int = 0
    max_size_bytes: int = 0
    min_size_bytes: int = 0


@dataclass
class SearchError:
    site: str
    error: str


@dataclass
class MultiSiteSearchResult:
    items: list[TorrentItem] = field(default_factory=list)
    total_results: int = 0
    site_results: dict[str, int] = field(default_factory=dict)
    errors: list[SearchError] = field(default_factory=list)
    duration: float = 0.0


@dataclass
class SiteConfig:
    """Per-site runtime configuration.

    ``options`` is schema specific: NexusPHP sites need a ``cookie`` and may
    override ``selectors``; mTorrent sites need an ``apiKey``.
    """

    type: str
    id: str
    name: str = ""
    base_urls: list[str] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)
    # Zero means "use the site definition or the global default".
    rate_limit: float = 0.0
    rate_burst: int = 0
