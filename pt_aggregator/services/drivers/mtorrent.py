# pt_aggregator/services/drivers/mtorrent.py

from __future__ import annotations

import json
from typing import Any

from ...config import SITE_TIMEZONE_OFFSET, logger
from ...errors import ParseError, UpstreamAPIError
from ...models import PeerStatistics, SearchQuery, TorrentItem, UserInfo
from ...utils import parse_time
from ..definitions import SiteDefinition
from ..discount import DiscountLevel, PromotionRule, resolve_discount
from ..failover import FailoverExecutor
from ..http_client import HTTPResponse, SiteHTTPClient
from .base import CompositeFetch, Driver, SiteRequest, SiteResponse, fetch_composite
from .flexible import FlexibleCode, flex_float, flex_int, flex_str

DEFAULT_WEB_URL = "https://kp.m-team.cc"
DEFAULT_PAGE_SIZE = 100

CATEGORY_NAMES = {
    "401": "电影/SD",
    "419": "电影/HD",
    "420": "电影/DVDiSo",
    "421": "电影/Blu-Ray",
    "439": "电影/Remux",
    "403": "影剧/综艺/SD",
    "402": "影剧/综艺/HD",
    "438": "影剧/综艺/BD",
    "435": "影剧/综艺/DVDiSo",
    "404": "纪录片",
    "434": "音乐(无损)",
    "406": "演唱会",
    "423": "PC游戏",
    "448": "TV游戏",
    "405": "动画",
    "407": "运动",
    "427": "电子书",
    "422": "软件",
    "442": "有声书",
    "409": "其他",
}

ROLE_NAMES = {
    "1": "User",
    "2": "Power User",
    "3": "Elite User",
    "4": "Crazy User",
    "5": "Insane User",
    "6": "Veteran User",
    "7": "Extreme User",
    "8": "Ultimate User",
    "9": "Nexus Master",
    "10": "VIP",
    "11": "Retiree",
    "12": "Uploader",
    "13": "Moderator",
    "14": "Administrator",
    "15": "Sysop",
}


def parse_mtorrent_discount(value: str) -> DiscountLevel:
    """Map the API's discount strings ("FREE", "PERCENT_50", "_2X_FREE"...)."""
    normalized = value.strip().upper()
    if not normalized or normalized == "NORMAL":
        return DiscountLevel.NONE
    exact = {
        "FREE": DiscountLevel.FREE,
        "2XFREE": DiscountLevel.TWO_X_FREE,
        "_2X_FREE": DiscountLevel.TWO_X_FREE,
        "PERCENT_50": DiscountLevel.PERCENT_50,
        "50%": DiscountLevel.PERCENT_50,
        "PERCENT_30": DiscountLevel.PERCENT_30,
        "30%": DiscountLevel.PERCENT_30,
        "PERCENT_70": DiscountLevel.PERCENT_70,
        "70%": DiscountLevel.PERCENT_70,
        "2XUP": DiscountLevel.TWO_X_UP,
        "_2X_UP": DiscountLevel.TWO_X_UP,
        "_2X_PERCENT_50": DiscountLevel.TWO_X_50,
        "2X50%": DiscountLevel.TWO_X_50,
    }
    if normalized in exact:
        return exact[normalized]
    if "50" in normalized:
        return DiscountLevel.PERCENT_50
    if "30" in normalized:
        return DiscountLevel.PERCENT_30
    if "70" in normalized:
        return DiscountLevel.PERCENT_70
    return DiscountLevel.NONE


class MTorrentDriver(Driver):
    """Driver for the M-Team JSON API. Every endpoint is a POST."""

    schema = "mTorrent"

    def __init__(
        self,
        site_id: str,
        http: SiteHTTPClient,
        failover: FailoverExecutor,
        definition: SiteDefinition | None = None,
        web_url: str = DEFAULT_WEB_URL,
    ) -> None:
        super().__init__(site_id, http, failover, definition)
        self.web_url = web_url.rstrip("/")
        self.tz_offset = (
            definition.timezone_offset if definition is not None else SITE_TIMEZONE_OFFSET
        )

    def decode(self, raw: HTTPResponse, request: SiteRequest) -> SiteResponse:
        response = SiteResponse(
            status_code=raw.status_code, content=raw.content, url=raw.url
        )
        if request.response_type == "raw":
            return response

        try:
            payload = json.loads(raw.content)
        except ValueError as exc:
            raise ParseError("invalid JSON response", raw.content) from exc
        if not isinstance(payload, dict):
            raise ParseError("unexpected JSON envelope", raw.content)

        code = FlexibleCode.decode(payload.get("code", ""))
        if not code.is_success():
            message = flex_str(payload.get("message"))
            logger.warning(f"[MTORRENT] {self.site_id}: API error {code}: {message}")
            raise UpstreamAPIError(str(code), message)
        response.data = payload.get("data")
        return response

    def _api(self, path: str, body: Any = None, *, form: dict[str, Any] | None = None) -> SiteRequest:
        headers = {"Accept": "application/json"}
        if form is not None:
            return SiteRequest(path=path, method="POST", data=form, headers=headers, response_type="json")
        return SiteRequest(
            path=path, method="POST", json=body if body is not None else {}, headers=headers,
            response_type="json",
        )

    # --- Search --------------------------------------------------------------

    def prepare_search(self, query: SearchQuery) -> SiteRequest:
        body: dict[str, Any] = {
            "mode": "normal",
            "keyword": query.keyword,
            "pageNumber": query.page if query.page > 0 else 1,
            "pageSize": query.page_size if query.page_size > 0 else DEFAULT_PAGE_SIZE,
        }
        if query.category:
            body["categories"] = [query.category]
        if query.free_only:
            body["discount"] = "FREE"
        return self._api("/api/torrent/search", body)

    def parse_search(self, response: SiteResponse) -> list[TorrentItem]:
        data = response.data
        if not isinstance(data, dict):
            raise ParseError("search response has no data object", response.content)
        rows = data.get("data") or []
        if not isinstance(rows, list):
            raise ParseError("search data is not a list", response.content)
        items = [self.parse_torrent(row) for row in rows if isinstance(row, dict)]
        logger.info(
            f"[MTORRENT] {self.site_id}: Parsed {len(items)} of "
            f"{flex_int(data.get('total'), 'total')} torrents"
        )
        return items

    def parse_torrent(self, raw: dict[str, Any]) -> TorrentItem:
        status = raw.get("status") or {}
        torrent_id = flex_str(raw.get("id"))
        category = flex_str(raw.get("category"))

        level = parse_mtorrent_discount(flex_str(status.get("discount")))
        end_time = parse_time(flex_str(status.get("discountEndTime")), self.tz_offset)
        level, end_time = resolve_discount(
            level, end_time, self._promotion(status.get("promotionRule"))
        )

        labels = raw.get("labelsNew") or []
        return TorrentItem(
            id=torrent_id,
            title=flex_str(raw.get("name")),
            subtitle=flex_str(raw.get("smallDescr")),
            size_bytes=flex_int(raw.get("size"), "size"),
            seeders=flex_int(status.get("seeders"), "seeders"),
            leechers=flex_int(status.get("leechers"), "leechers"),
            snatched=flex_int(status.get("timesCompleted"), "timesCompleted"),
            uploaded_at=parse_time(flex_str(raw.get("createdDate")), self.tz_offset),
            source_site=self.site_id,
            category=CATEGORY_NAMES.get(category, category),
            discount_level=level,
            discount_end_time=end_time,
            url=f"{self.web_url}/detail/{torrent_id}",
            tags=list(dict.fromkeys(str(label) for label in labels if label))
            if isinstance(labels, list)
            else [],
        )

    def _promotion(self, raw: Any) -> PromotionRule | None:
        if not isinstance(raw, dict) or not raw.get("discount"):
            return None
        return PromotionRule(
            discount=parse_mtorrent_discount(flex_str(raw.get("discount"))),
            start_time=parse_time(flex_str(raw.get("startTime")), self.tz_offset),
            end_time=parse_time(flex_str(raw.get("endTime")), self.tz_offset),
        )

    # --- User info -----------------------------------------------------------

    def prepare_user_info(self) -> SiteRequest:
        return self._api("/api/member/profile")

    def parse_user_info(self, response: SiteResponse) -> UserInfo:
        data = response.data
        if not isinstance(data, dict):
            raise ParseError("profile response has no data object", response.content)
        counts = data.get("memberCount") or {}
        status = data.get("memberStatus") or {}
        role = flex_str(data.get("role"))

        info = UserInfo(
            site=self.site_id,
            user_id=flex_str(data.get("id")),
            username=flex_str(data.get("username")),
            uploaded=flex_int(counts.get("uploaded"), "uploaded"),
            downloaded=flex_int(counts.get("downloaded"), "downloaded"),
            ratio=flex_float(counts.get("shareRate")),
            bonus=flex_float(counts.get("bonus")),
            rank=ROLE_NAMES.get(role, "User"),
            level_id=flex_int(role, "role") if role.isdigit() else 0,
            join_date=parse_time(flex_str(data.get("createdDate")), self.tz_offset),
            last_access=parse_time(flex_str(status.get("lastBrowse")), self.tz_offset),
        )
        if not info.user_id and not info.username:
            raise ParseError("profile carries no user identity", response.content)
        return info

    async def fetch_bonus_per_hour(self) -> float:
        response = await self.execute(self._api("/api/tracker/mybonus"))
        data = response.data if isinstance(response.data, dict) else {}
        params = data.get("formulaParams") or {}
        return flex_float(params.get("finalBs"))

    async def fetch_message_counts(self) -> tuple[int, int]:
        """Returns ``(unread, total)``."""
        response = await self.execute(self._api("/api/msg/notify/statistic"))
        data = response.data if isinstance(response.data, dict) else {}
        return flex_int(data.get("unMake"), "unMake"), flex_int(data.get("count"), "count")

    async def fetch_peer_statistics(self) -> PeerStatistics:
        response = await self.execute(self._api("/api/tracker/myPeerStatistics"))
        data = response.data if isinstance(response.data, dict) else {}
        return PeerStatistics(
            seeder_count=flex_int(data.get("seederCount"), "seederCount"),
            seeder_size=flex_int(data.get("seederSize"), "seederSize"),
            leecher_count=flex_int(data.get("leecherCount"), "leecherCount"),
            leecher_size=flex_int(data.get("leecherSize"), "leecherSize"),
        )

    async def get_user_info(self) -> UserInfo:
        info = UserInfo(site=self.site_id)

        async def _fetch_profile() -> UserInfo:
            return self.parse_user_info(await self.execute(self.prepare_user_info()))

        def _apply_profile(profile: UserInfo) -> None:
            nonlocal info
            # Copy over fields set by optional fetches that finished first.
            profile.bonus_per_hour = info.bonus_per_hour
            profile.unread_message_count = info.unread_message_count
            profile.total_message_count = info.total_message_count
            profile.apply_peer_statistics(
                PeerStatistics(info.seeder_count, info.seeder_size, info.leecher_count, info.leecher_size)
            )
            profile.seeding = info.seeding
            profile.leeching = info.leeching
            info = profile

        def _apply_bonus(value: float) -> None:
            info.bonus_per_hour = value

        def _apply_messages(value: tuple[int, int]) -> None:
            info.unread_message_count, info.total_message_count = value

        def _apply_peers(stats: PeerStatistics) -> None:
            info.apply_peer_statistics(stats)
            info.seeding = stats.seeder_count
            info.leeching = stats.leecher_count

        await fetch_composite(
            CompositeFetch("profile", _fetch_profile, _apply_profile),
            [
                CompositeFetch("bonus", self.fetch_bonus_per_hour, _apply_bonus),
                CompositeFetch("messages", self.fetch_message_counts, _apply_messages),
                CompositeFetch("peers", self.fetch_peer_statistics, _apply_peers),
            ],
            site_id=self.site_id,
        )
        return info

    # --- Detail and download -------------------------------------------------

    def prepare_detail(self, torrent_id: str) -> SiteRequest:
        return self._api("/api/torrent/detail", form={"id": torrent_id})

    async def get_torrent_detail(self, torrent_id: str) -> TorrentItem:
        response = await self.execute(self.prepare_detail(torrent_id))
        if not isinstance(response.data, dict):
            raise ParseError("detail response has no data object", response.content)
        return self.parse_torrent(response.data)

    def prepare_download(self, torrent_id: str) -> SiteRequest:
        return self._api("/api/torrent/genDlToken", form={"id": torrent_id})

    def parse_download(self, response: SiteResponse) -> bytes:
        return response.content

    async def download(self, torrent_id: str) -> bytes:
        token = await self.execute(self.prepare_download(torrent_id))
        url = flex_str(token.data).strip()
        if not url:
            raise ParseError("download token response carried no URL", token.content)
        logger.info(f"[MTORRENT] {self.site_id}: Fetching torrent {torrent_id}")
        response = await self.execute(SiteRequest(path=url, response_type="raw"))
        return self.parse_download(response)
