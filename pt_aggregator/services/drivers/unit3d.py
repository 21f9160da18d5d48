# pt_aggregator/services/drivers/unit3d.py

from __future__ import annotations

import json
from typing import Any

from ...config import logger
from ...errors import ParseError
from ...models import SearchQuery, TorrentItem, UserInfo
from ...utils import parse_time
from ..discount import DiscountLevel
from ..http_client import HTTPResponse
from .base import Driver, SiteRequest, SiteResponse
from .flexible import flex_float, flex_int, flex_str

_FREE_VALUES = {"100", "1", "true"}


def parse_unit3d_discount(freeleech: str, double_upload: bool) -> DiscountLevel:
    """Map Unit3D's ``freeleech`` percentage and ``double_upload`` flag."""
    value = freeleech.strip().lower()
    if value in _FREE_VALUES:
        return DiscountLevel.TWO_X_FREE if double_upload else DiscountLevel.FREE
    if value == "50":
        return DiscountLevel.TWO_X_50 if double_upload else DiscountLevel.PERCENT_50
    if value in ("25", "30"):
        return DiscountLevel.PERCENT_30
    if value in ("70", "75"):
        return DiscountLevel.PERCENT_70
    if double_upload:
        return DiscountLevel.TWO_X_UP
    return DiscountLevel.NONE


def _resource(raw: dict[str, Any]) -> dict[str, Any]:
    # JSON:API style resources nest their fields under "attributes".
    attributes = raw.get("attributes")
    if isinstance(attributes, dict):
        return {"id": raw.get("id"), **attributes}
    return raw


def _name(value: Any) -> str:
    if isinstance(value, dict):
        return flex_str(value.get("name"))
    return flex_str(value)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


class Unit3DDriver(Driver):
    """Driver for Unit3D trackers through their ``/api`` endpoints.

    Requests authenticate with the account's API token as a bearer token.
    """

    schema = "Unit3D"

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
        if not isinstance(payload, dict) or "data" not in payload:
            raise ParseError("response has no data member", raw.content)
        response.data = payload["data"]
        return response

    def prepare_search(self, query: SearchQuery) -> SiteRequest:
        params: dict[str, Any] = {}
        if query.keyword:
            params["name"] = query.keyword
        if query.category:
            params["categories[]"] = query.category
        if query.free_only:
            params["freeleech"] = "1"
        if query.page > 0:
            params["page"] = str(query.page)
        if query.page_size > 0:
            params["perPage"] = str(query.page_size)
        return SiteRequest(
            path="/api/torrents/filter",
            params=params,
            headers={"Accept": "application/json"},
            response_type="json",
        )

    def parse_search(self, response: SiteResponse) -> list[TorrentItem]:
        rows = response.data
        if not isinstance(rows, list):
            raise ParseError("torrent data is not a list", response.content)
        items = [self.parse_torrent(_resource(row)) for row in rows if isinstance(row, dict)]
        logger.info(f"[UNIT3D] {self.site_id}: Parsed {len(items)} torrents")
        return items

    def parse_torrent(self, raw: dict[str, Any]) -> TorrentItem:
        double_upload = _truthy(raw.get("double_upload"))
        return TorrentItem(
            id=flex_str(raw.get("id")),
            title=flex_str(raw.get("name")),
            info_hash=flex_str(raw.get("info_hash")).lower(),
            size_bytes=flex_int(raw.get("size"), "size"),
            seeders=flex_int(raw.get("seeders"), "seeders"),
            leechers=flex_int(raw.get("leechers"), "leechers"),
            snatched=flex_int(raw.get("times_completed"), "times_completed"),
            uploaded_at=parse_time(flex_str(raw.get("created_at")), "+00:00"),
            source_site=self.site_id,
            category=_name(raw.get("category")),
            discount_level=parse_unit3d_discount(flex_str(raw.get("freeleech")), double_upload),
            discount_end_time=parse_time(flex_str(raw.get("freeleech_ends")), "+00:00"),
            url=flex_str(raw.get("details_link")),
            download_url=flex_str(raw.get("download_link")),
        )

    def prepare_user_info(self) -> SiteRequest:
        return SiteRequest(
            path="/api/user", headers={"Accept": "application/json"}, response_type="json"
        )

    def parse_user_info(self, response: SiteResponse) -> UserInfo:
        data = response.data
        if not isinstance(data, dict):
            raise ParseError("profile response has no data object", response.content)
        data = _resource(data)
        seeding = flex_int(data.get("seeding"), "seeding")
        leeching = flex_int(data.get("leeching"), "leeching")
        info = UserInfo(
            site=self.site_id,
            user_id=flex_str(data.get("id")),
            username=flex_str(data.get("username")),
            uploaded=flex_int(data.get("uploaded"), "uploaded"),
            downloaded=flex_int(data.get("downloaded"), "downloaded"),
            ratio=flex_float(data.get("ratio")),
            bonus=flex_float(data.get("seedbonus")),
            seeding=seeding,
            leeching=leeching,
            seeder_count=seeding,
            leecher_count=leeching,
            rank=_name(data.get("group")),
            join_date=parse_time(flex_str(data.get("created_at")), "+00:00"),
        )
        if not info.user_id and not info.username:
            raise ParseError("profile carries no user identity", response.content)
        return info

    def prepare_download(self, torrent_id: str) -> SiteRequest:
        return SiteRequest(path=f"/api/torrents/{torrent_id}/download", response_type="raw")

    def parse_download(self, response: SiteResponse) -> bytes:
        if not response.content:
            raise ParseError("empty torrent download")
        return response.content
