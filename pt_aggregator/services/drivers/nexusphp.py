# pt_aggregator/services/drivers/nexusphp.py

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any

from bs4 import BeautifulSoup, Tag

from ...config import SITE_TIMEZONE_OFFSET, logger
from ...errors import InvalidCredentialsError, ParseError, SessionExpiredError, SiteError
from ...models import SearchQuery, TorrentItem, UserInfo
from ...utils import parse_size, parse_time, parse_tz_offset
from ..definitions import DetailParserConfig, SiteDefinition, SiteSelectors
from ..discount import DiscountLevel
from ..extraction.userinfo import (
    RequestConfig,
    UserInfoConfig,
    apply_user_info_fields,
    extract_step_fields,
    independent_step_count,
    run_user_info_process,
)
from ..failover import FailoverExecutor
from ..http_client import HTTPResponse, SiteHTTPClient
from .base import (
    CompositeFetch,
    Driver,
    SiteRequest,
    SiteResponse,
    fetch_composite,
    join_url,
)

DEFAULT_SELECTORS = SiteSelectors(
    table_rows="table.torrents > tbody > tr:not(:first-child)",
    title="td:nth-child(2) a[href*='details.php']",
    title_link="td:nth-child(2) a[href*='details.php']",
    subtitle="td:nth-child(2) br + *",
    size="td:nth-child(5)",
    seeders="td:nth-child(6)",
    leechers="td:nth-child(7)",
    snatched="td:nth-child(8)",
    discount_icon=(
        "img.pro_free, img.pro_free2up, img.pro_50pctdown, "
        "img.pro_30pctdown, img.pro_2up"
    ),
    discount_end_time="span.free_end_time, span[title*='结束']",
    category="td:nth-child(1) img",
    upload_time="td:nth-child(4) span",
    hr_icon="img.hitandrun, img[alt*='H&R'], img[title*='H&R']",
    download_link="a[href*='download.php']",
    detail_download_link=(
        "td.rowhead:-soup-contains('下载链接') + td a[href*='download.php'], "
        "form[action*='download.php']"
    ),
    detail_subtitle=(
        "td.rowhead:-soup-contains('副标题') + td, "
        "td.rowhead:-soup-contains('小标题') + td"
    ),
)

# Used when a site definition carries no user info recipe of its own.
DEFAULT_USER_INFO = UserInfoConfig.from_dict(
    {
        "pick_last": ["id"],
        "process": [
            {
                "request_config": {"url": "/index.php"},
                "fields": ["id", "name"],
            },
            {
                "request_config": {"url": "/userdetails.php"},
                "assertion": {"id": "params.id"},
                "fields": ["uploaded", "downloaded", "ratio", "levelName", "bonus", "joinTime"],
            },
        ],
        "selectors": {
            "id": {
                "selector": ["#info_block a.User_Name", "#info_block a[href*='userdetails.php']", "a[href*='userdetails.php']"],
                "attr": "href",
                "filters": [{"name": "querystring", "args": ["id"]}],
            },
            "name": {"selector": ["#info_block a.User_Name", "#info_block a[href*='userdetails.php']", "a.User_Name"]},
            "uploaded": {
                "selector": ["td.rowhead:-soup-contains('上传量') + td", "td.rowhead:-soup-contains('Uploaded') + td"],
                "filters": [{"name": "parseSize"}],
            },
            "downloaded": {
                "selector": ["td.rowhead:-soup-contains('下载量') + td", "td.rowhead:-soup-contains('Downloaded') + td"],
                "filters": [{"name": "parseSize"}],
            },
            "ratio": {
                "selector": ["td.rowhead:-soup-contains('分享率') + td", "td.rowhead:-soup-contains('Ratio') + td"],
                "filters": [{"name": "parseNumber"}],
            },
            "levelName": {
                "selector": ["td.rowhead:-soup-contains('等级') + td img", "td.rowhead:-soup-contains('Class') + td img"],
                "attr": "title",
            },
            "bonus": {
                "selector": ["td.rowhead:-soup-contains('魔力值') + td", "td.rowhead:-soup-contains('Bonus') + td"],
                "filters": [{"name": "parseNumber"}],
            },
            "joinTime": {
                "selector": ["td.rowhead:-soup-contains('加入日期') + td", "td.rowhead:-soup-contains('Join') + td"],
                "filters": [{"name": "split", "args": [" (", 0]}, {"name": "parseTime"}],
            },
        },
    }
)

_ONMOUSEOVER_END_TIME = re.compile(
    r"title=(?:&quot;|\")(\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2})(?:&quot;|\")"
)
_TORRENT_ID = re.compile(r"id=(\d+)")
_INFO_HASH = re.compile(r"^[0-9a-fA-F]{40}$")
_SEEDING_SUMMARY = re.compile(
    r"<b>(\d+)</b>\s*条记录[^<]*共计\s*<b>([\d.]+\s*[KMGTP]?i?B)</b>"
)

_DOWNLOAD_LINK_SELECTORS = (
    "td.rowhead:-soup-contains('下载链接') + td a[href*='download.php']",
    "td.rowhead:-soup-contains('下載連結') + td a[href*='download.php']",
    "td.rowhead:-soup-contains('下载') + td a[href*='download.php']",
    "a[href*='download.php?id=']",
    "a[href*='download.php?hash=']",
    "a.download[href*='download']",
)
_DOWNLOAD_FORM_SELECTORS = (
    "form[action*='download.php']",
    "td.rowhead:-soup-contains('下载') + td form[action*='download.php']",
)
_SUBTITLE_SELECTORS = (
    "td.rowhead:-soup-contains('副标题') + td",
    "td.rowhead:-soup-contains('副標題') + td",
    "td.rowhead:-soup-contains('小标题') + td",
)
_HASH_SELECTORS = (
    "td:-soup-contains('Hash码') + td",
    "td:-soup-contains('Hash码:') ~ td",
    "td.no_border_wide:-soup-contains('Hash码')",
)


def is_login_page(soup: BeautifulSoup) -> bool:
    """Detect the login page a site serves when the cookie is no longer valid."""
    if soup.select_one("form[action*='takelogin']") is not None:
        return True
    if soup.select_one(".login-panel, .login-form") is not None:
        return True
    title_tag = soup.find("title")
    title = title_tag.get_text().lower() if isinstance(title_tag, Tag) else ""
    if ("登录" in title or "login" in title) and (
        soup.select_one("input[name='username']") is not None
        and soup.select_one("input[name='password']") is not None
    ):
        return True
    refresh = soup.select_one("meta[http-equiv='refresh']")
    if isinstance(refresh, Tag):
        content = str(refresh.get("content") or "")
        if "login.php" in content or "takelogin" in content:
            return True
    return False


def parse_discount_from_element(
    element: Tag, custom_mapping: dict[str, DiscountLevel] | None = None
) -> DiscountLevel:
    """Classify a promotion icon by its class, src and alt text."""
    classes = element.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    combined = " ".join(
        [" ".join(classes), str(element.get("src") or ""), str(element.get("alt") or "")]
    ).lower()

    for keyword, level in (custom_mapping or {}).items():
        if keyword.lower() in combined:
            return level

    if "2xfree" in combined or "free2up" in combined:
        return DiscountLevel.TWO_X_FREE
    if "free" in combined:
        return DiscountLevel.FREE
    if "50pct" in combined or "50%" in combined:
        return DiscountLevel.PERCENT_50
    if "30pct" in combined or "30%" in combined:
        return DiscountLevel.PERCENT_30
    if "70pct" in combined or "70%" in combined:
        return DiscountLevel.PERCENT_70
    if "2xup" in combined or "2up" in combined:
        return DiscountLevel.TWO_X_UP
    return DiscountLevel.NONE


def parse_end_time_from_onmouseover(value: str, tz_offset: str = SITE_TIMEZONE_OFFSET) -> int:
    match = _ONMOUSEOVER_END_TIME.search(value)
    return parse_time(match.group(1), tz_offset) if match else 0


def extract_torrent_id(href: str) -> str:
    match = _TORRENT_ID.search(href)
    return match.group(1) if match else ""


def _text(root: Tag, selector: str) -> str:
    tag = root.select_one(selector) if selector else None
    return tag.get_text(" ", strip=True) if isinstance(tag, Tag) else ""


def _int(root: Tag, selector: str) -> int:
    # Counts may carry thousand separators such as "1,927".
    cleaned = re.sub(r"[^\d]", "", _text(root, selector))
    return int(cleaned) if cleaned else 0


class NexusPHPDriver(Driver):
    """Driver for HTML sites running NexusPHP, configured through selectors."""

    schema = "NexusPHP"

    def __init__(
        self,
        site_id: str,
        http: SiteHTTPClient,
        failover: FailoverExecutor,
        definition: SiteDefinition | None = None,
        selectors: SiteSelectors | None = None,
    ) -> None:
        super().__init__(site_id, http, failover, definition)
        merged = DEFAULT_SELECTORS
        if definition is not None:
            merged = definition.selectors.merged_over(merged)
        if selectors is not None:
            merged = selectors.merged_over(merged)
        self.selectors = merged
        self.detail_config: DetailParserConfig = (
            definition.detail_parser if definition is not None else DetailParserConfig()
        )
        self.user_info_config: UserInfoConfig = (
            definition.user_info
            if definition is not None and definition.user_info is not None
            else DEFAULT_USER_INFO
        )
        self.tz_offset = (
            definition.timezone_offset if definition is not None else SITE_TIMEZONE_OFFSET
        )

    # --- Transport ---------------------------------------------------------

    def decode(self, raw: HTTPResponse, request: SiteRequest) -> SiteResponse:
        response = SiteResponse(
            status_code=raw.status_code, content=raw.content, url=raw.url
        )
        if request.response_type == "raw":
            return response
        if request.response_type == "json":
            try:
                response.data = json.loads(raw.content)
            except ValueError as exc:
                raise ParseError("invalid JSON response", raw.content) from exc
            return response

        soup = BeautifulSoup(raw.text, "lxml")
        if is_login_page(soup):
            logger.warning(f"[NEXUSPHP] {self.site_id}: Login page returned for {raw.url}")
            raise SessionExpiredError(f"{self.site_id}: session expired")
        response.document = soup
        return response

    # --- Search --------------------------------------------------------------

    def prepare_search(self, query: SearchQuery) -> SiteRequest:
        params: dict[str, Any] = {"search": query.keyword}
        if query.category:
            params["cat"] = query.category
        if query.free_only:
            params["spstate"] = "2"
        if query.page > 0:
            # NexusPHP pages are zero based
            params["page"] = str(query.page - 1)
        return SiteRequest(path="/torrents.php", params=params)

    def parse_search(self, response: SiteResponse) -> list[TorrentItem]:
        soup = response.document
        if soup is None:
            raise ParseError("search response is not an HTML document", response.content)

        rows = [row for row in soup.select(self.selectors.table_rows) if isinstance(row, Tag)]
        logger.debug(
            f"[NEXUSPHP] {self.site_id}: Found {len(rows)} rows using selector "
            f"'{self.selectors.table_rows}'"
        )
        items: list[TorrentItem] = []
        for row in rows:
            try:
                item = self._parse_row(row)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"[NEXUSPHP] {self.site_id}: Failed to parse row: {exc}")
                continue
            if item is not None:
                items.append(item)
        logger.info(f"[NEXUSPHP] {self.site_id}: Parsed {len(items)} torrents")
        return items

    def _parse_row(self, row: Tag) -> TorrentItem | None:
        sel = self.selectors
        title_tag = row.select_one(sel.title)
        if not isinstance(title_tag, Tag):
            return None
        title = title_tag.get("title") or title_tag.get_text(" ", strip=True)
        title = str(title).strip()
        if not title:
            return None

        href = str(title_tag.get("href") or "")
        item = TorrentItem(
            id=extract_torrent_id(href),
            title=title,
            subtitle=_text(row, sel.subtitle),
            size_bytes=parse_size(_text(row, sel.size)),
            seeders=_int(row, sel.seeders),
            leechers=_int(row, sel.leechers),
            snatched=_int(row, sel.snatched),
            source_site=self.site_id,
        )
        if href:
            item.url = join_url(self.base_url, href)

        icon = row.select_one(sel.discount_icon) if sel.discount_icon else None
        if isinstance(icon, Tag):
            item.discount_level = parse_discount_from_element(icon, sel.discount_mapping)

        end_tag = row.select_one(sel.discount_end_time) if sel.discount_end_time else None
        if isinstance(end_tag, Tag):
            raw_end = end_tag.get("title") or end_tag.get_text(strip=True)
            item.discount_end_time = parse_time(str(raw_end), self.tz_offset)
        if not item.discount_end_time and isinstance(icon, Tag):
            # Some sites only expose the end time inside the icon tooltip.
            item.discount_end_time = parse_end_time_from_onmouseover(
                str(icon.get("onmouseover") or ""), self.tz_offset
            )

        if item.id:
            item.download_url = join_url(self.base_url, f"download.php?id={item.id}")
        else:
            link = row.select_one(sel.download_link) if sel.download_link else None
            if isinstance(link, Tag) and link.get("href"):
                item.download_url = join_url(self.base_url, str(link["href"]))

        category = row.select_one(sel.category) if sel.category else None
        if isinstance(category, Tag):
            item.category = str(category.get("alt") or category.get("title") or "")

        uploaded = row.select_one(sel.upload_time) if sel.upload_time else None
        if isinstance(uploaded, Tag):
            stamp = parse_time(str(uploaded.get("title") or ""), self.tz_offset)
            if not stamp:
                stamp = parse_time(uploaded.get_text(" ", strip=True), self.tz_offset)
            item.uploaded_at = stamp

        item.has_hr = bool(sel.hr_icon) and row.select_one(sel.hr_icon) is not None
        return item

    # --- User info -----------------------------------------------------------

    def prepare_user_info(self) -> SiteRequest:
        return self._request_from_config(self.user_info_config.process[0].request_config)

    def parse_user_info(self, response: SiteResponse) -> UserInfo:
        """Parse only the fields the first configured step provides."""
        document = response.document if response.document is not None else response.data
        first = self.user_info_config.process[0]
        values = extract_step_fields(document, first, self.user_info_config.selectors)
        return apply_user_info_fields(UserInfo(site=self.site_id), values)

    async def get_user_info(self) -> UserInfo:
        config = self.user_info_config
        # Leading steps establish the user id; the steps that depend on it
        # run alongside the optional seeding summary.
        split = independent_step_count(config)
        result = await run_user_info_process(config, self._fetch_step, stop=split)
        user_id = result.values.get("id", "")
        seeding: list[tuple[int, int]] = []

        async def _dependent_steps() -> None:
            await run_user_info_process(config, self._fetch_step, start=split, result=result)

        async def _seeding_status() -> tuple[int, int]:
            return await self.fetch_seeding_status(user_id)

        best_effort: list[CompositeFetch[Any]] = []
        if user_id and not {"seederSize", "seedingSize"} & config.selectors.keys():
            best_effort.append(CompositeFetch("seeding status", _seeding_status, seeding.append))
        await fetch_composite(
            CompositeFetch("user info steps", _dependent_steps, lambda _: None),
            best_effort,
            site_id=self.site_id,
        )

        info = apply_user_info_fields(UserInfo(site=self.site_id), result.values)
        if not info.user_id and not info.username:
            raise ParseError(f"{self.site_id}: no user identity found in user info pages")
        if seeding:
            count, size = seeding[0]
            if size > 0:
                info.seeder_size = size
            if count > 0 and info.seeding == 0:
                info.seeding = count
                info.seeder_count = count
        return info

    def _request_from_config(self, request: RequestConfig) -> SiteRequest:
        return SiteRequest(
            path=request.url,
            method=request.method,
            params=dict(request.params),
            data=dict(request.data) if request.data else None,
            headers=dict(request.headers),
            response_type=request.response_type,
        )

    async def _fetch_step(self, request: RequestConfig) -> Any:
        response = await self.execute(self._request_from_config(request))
        return response.data if request.response_type == "json" else response.document

    async def fetch_seeding_status(self, user_id: str) -> tuple[int, int]:
        response = await self.execute(
            SiteRequest(
                path="/getusertorrentlistajax.php",
                params={"userid": user_id, "type": "seeding"},
            )
        )
        return self.parse_seeding_status(response)

    def parse_seeding_status(self, response: SiteResponse) -> tuple[int, int]:
        body = response.text
        if "<table" not in body:
            return 0, 0
        summary = _SEEDING_SUMMARY.search(body)
        if summary:
            return int(summary.group(1)), parse_size(summary.group(2))

        soup = response.document
        if soup is None:
            return 0, 0
        table = soup.select("table")[-1]
        rows = [row for row in table.select("tr") if isinstance(row, Tag)]
        if len(rows) < 2:
            return 0, 0
        header = [cell.get_text(strip=True) for cell in rows[0].find_all(["td", "th"])]
        size_index = next(
            (i for i, name in enumerate(header) if "大小" in name or "Size" in name), -1
        )
        if size_index < 0:
            return len(rows) - 1, 0
        total = 0
        for row in rows[1:]:
            cells = row.find_all("td", recursive=False)
            if len(cells) > size_index:
                total += parse_size(cells[size_index].get_text(" ", strip=True))
        return len(rows) - 1, total

    # --- Detail and download -------------------------------------------------

    def prepare_detail(self, torrent_id: str) -> SiteRequest:
        return SiteRequest(path="/details.php", params={"id": torrent_id, "hit": "1"})

    async def get_torrent_detail(self, torrent_id: str) -> TorrentItem:
        response = await self.execute(self.prepare_detail(torrent_id))
        return self.parse_detail(response, torrent_id)

    def parse_detail(self, response: SiteResponse, torrent_id: str) -> TorrentItem:
        soup = response.document
        if soup is None:
            raise ParseError("detail response is not an HTML document", response.content)
        cfg = self.detail_config

        item = TorrentItem(
            id=torrent_id,
            source_site=self.site_id,
            url=join_url(self.base_url, f"details.php?id={torrent_id}"),
        )

        name_input = soup.select_one(cfg.title_selector) if cfg.title_selector else None
        if isinstance(name_input, Tag) and name_input.get("value"):
            item.title = str(name_input["value"]).strip()
        else:
            item.title = _text(soup, "h1")
        id_input = soup.select_one(cfg.id_selector) if cfg.id_selector else None
        if isinstance(id_input, Tag) and id_input.get("value"):
            item.id = str(id_input["value"]).strip()

        item.discount_level, item.discount_end_time = self._parse_detail_discount(soup)
        html = str(soup)
        item.has_hr = any(keyword in html for keyword in cfg.hr_keywords)
        item.size_bytes = self._parse_detail_size(soup)
        item.subtitle = self._first_text(
            soup, [*self.selectors.detail_subtitle.split(","), *_SUBTITLE_SELECTORS]
        )
        item.info_hash = self._parse_info_hash(soup)
        link = self.find_download_link(soup)
        if link:
            item.download_url = join_url(self.base_url, link)
        return item

    def _parse_detail_discount(self, soup: BeautifulSoup) -> tuple[DiscountLevel, int]:
        cfg = self.detail_config
        level = DiscountLevel.NONE
        for font in soup.select(cfg.discount_selector):
            classes = font.get("class") or []
            if isinstance(classes, str):
                classes = [classes]
            matched = next((cfg.discount_mapping[c] for c in classes if c in cfg.discount_mapping), None)
            if matched is not None:
                level = matched
                break

        end_time = 0
        end_tag = soup.select_one(cfg.end_time_selector) if cfg.end_time_selector else None
        if isinstance(end_tag, Tag):
            end_time = self._parse_layout_time(str(end_tag.get("title") or ""))
        return level, end_time

    def _parse_layout_time(self, value: str) -> int:
        value = value.strip()
        if not value:
            return 0
        try:
            parsed = datetime.strptime(value, self.detail_config.time_layout)
        except ValueError:
            return parse_time(value, self.tz_offset)
        return int(parsed.replace(tzinfo=parse_tz_offset(self.tz_offset)).timestamp())

    def _parse_detail_size(self, soup: BeautifulSoup) -> int:
        cfg = self.detail_config
        pattern = re.compile(cfg.size_regex)
        candidates = [_text(soup, cfg.size_selector)] if cfg.size_selector else []
        candidates.append(soup.get_text(" ", strip=True))
        for text in candidates:
            match = pattern.search(text)
            if match and match.lastindex and match.lastindex >= 2:
                return parse_size(f"{match.group(1)} {match.group(2)}")
        return 0

    def _first_text(self, soup: BeautifulSoup, selectors: list[str]) -> str:
        for selector in selectors:
            selector = selector.strip()
            if not selector:
                continue
            value = _text(soup, selector)
            if value:
                return value
        return ""

    def _parse_info_hash(self, soup: BeautifulSoup) -> str:
        for selector in _HASH_SELECTORS:
            text = _text(soup, selector)
            if "Hash码" in text:
                text = re.split(r"[:：]", text)[-1].strip()
            if _INFO_HASH.match(text):
                return text.lower()
        return ""

    def find_download_link(self, soup: BeautifulSoup) -> str:
        """Locate the .torrent link on a detail page, ignoring zip bundles."""
        for selector in _DOWNLOAD_LINK_SELECTORS:
            tag = soup.select_one(selector)
            href = str(tag.get("href") or "") if isinstance(tag, Tag) else ""
            if href and "type=zip" not in href:
                return href

        for selector in _DOWNLOAD_FORM_SELECTORS:
            for form in soup.select(selector):
                action = str(form.get("action") or "")
                if action and "type=zip" not in action:
                    return action

        anchors = [
            str(a.get("href") or "")
            for a in soup.select("a[href*='download.php']")
            if "type=zip" not in str(a.get("href") or "")
        ]
        for marker in (("passkey=", "hash="), ("id=",)):
            for href in anchors:
                if any(token in href for token in marker):
                    return href

        for selector in self.selectors.detail_download_link.split(","):
            selector = selector.strip()
            tag = soup.select_one(selector) if selector else None
            if not isinstance(tag, Tag):
                continue
            target = tag.get("action") if tag.name == "form" else tag.get("href")
            if target:
                return str(target)
        return ""

    def prepare_download(self, torrent_id: str) -> SiteRequest:
        return SiteRequest(
            path="/download.php", params={"id": torrent_id}, response_type="raw"
        )

    def parse_download(self, response: SiteResponse) -> bytes:
        # Bencoded torrent files always start with a dictionary.
        if not response.content.startswith(b"d"):
            raise ParseError("download did not return a torrent file", response.content)
        return response.content

    async def download(self, torrent_id: str) -> bytes:
        request = self.prepare_download(torrent_id)
        try:
            detail = await self.get_torrent_detail(torrent_id)
        except (InvalidCredentialsError, SessionExpiredError):
            raise
        except SiteError as exc:
            logger.warning(
                f"[NEXUSPHP] {self.site_id}: Detail page for {torrent_id} unavailable "
                f"({exc}); using direct download link"
            )
        else:
            if detail.download_url:
                request = SiteRequest(path=detail.download_url, response_type="raw")
        response = await self.execute(request)
        return self.parse_download(response)
