import asyncio

import pytest
from bs4 import BeautifulSoup

from pt_aggregator.errors import ParseError, RequestError, SessionExpiredError
from pt_aggregator.models import SearchQuery
from pt_aggregator.services.discount import DiscountLevel
from pt_aggregator.services.drivers import NexusPHPDriver
from pt_aggregator.services.drivers.nexusphp import (
    extract_torrent_id,
    is_login_page,
    parse_discount_from_element,
    parse_end_time_from_onmouseover,
)
from pt_aggregator.services.http_client import HTTPResponse

# 2024-01-02 11:04:05 and 2024-01-09 11:04:05 at +08:00
UPLOADED_AT = 1704164645
FREE_UNTIL = 1704769445

SEARCH_PAGE = """
<html><body>
<table class="torrents"><tbody>
  <tr><td>类型</td><td>标题</td><td>评论</td><td>存活时间</td><td>大小</td><td>种子</td><td>下载</td><td>完成</td></tr>
  <tr>
    <td><img alt="Movies" src="pic/cattrans.gif"></td>
    <td>
      <a href="details.php?id=101&amp;hit=1" title="Dune Part Two 2024 2160p UHD"><b>Dune Part Two</b></a><br/>
      <span>沙丘2 | 中字</span>
      <img class="pro_free" src="pic/trans.gif" alt="Free"
           onmouseover="domTT_activate(this, event, 'content', '&lt;span title=&quot;2024-01-09 11:04:05&quot;&gt;6天&lt;/span&gt;')">
      <img class="hitandrun" src="pic/hit_run.gif" alt="H&amp;R">
    </td>
    <td>0</td>
    <td><span title="2024-01-02 11:04:05">1天</span></td>
    <td>15.5 GB</td>
    <td>1,927</td>
    <td>12</td>
    <td>3,456</td>
  </tr>
  <tr>
    <td><img alt="TV" src="pic/cattrans.gif"></td>
    <td>
      <a href="details.php?id=102" title="Shogun S01 1080p"><b>Shogun</b></a><br/>
      <span>幕府将军</span>
      <img class="pro_50pctdown" src="pic/trans.gif" alt="50%">
    </td>
    <td>3</td>
    <td><span title="2024-01-02 11:04:05">1天</span></td>
    <td>700 MB</td>
    <td>0</td>
    <td>5</td>
    <td>9</td>
  </tr>
  <tr><td colspan="8">sponsored</td></tr>
</tbody></table>
</body></html>
"""

LOGIN_PAGE = """
<html><head><title>登录</title></head><body>
<form method="post" action="takelogin.php">
  <input name="username"><input name="password" type="password">
</form>
</body></html>
"""

INDEX_PAGE = """
<html><body><div id="info_block">
  <a class="User_Name" href="userdetails.php?id=42"><b>alice</b></a>
</div></body></html>
"""

USERDETAILS_PAGE = """
<html><body><table>
  <tr><td class="rowhead">加入日期</td><td>2024-01-02 11:04:05 (1年前)</td></tr>
  <tr><td class="rowhead">上传量</td><td>1.5 TB</td></tr>
  <tr><td class="rowhead">下载量</td><td>500 GB</td></tr>
  <tr><td class="rowhead">分享率</td><td>3.072</td></tr>
  <tr><td class="rowhead">等级</td><td><img title="Elite User" src="pic/elite.gif"></td></tr>
  <tr><td class="rowhead">魔力值</td><td>12,345.6</td></tr>
</table></body></html>
"""

SEEDING_TABLE = """
<table>
  <tr><td>类型</td><td>标题</td><td>大小</td></tr>
  <tr><td>Movie</td><td>a</td><td>10 GB</td></tr>
  <tr><td>TV</td><td>b</td><td>5 GB</td></tr>
</table>
"""

DETAIL_PAGE = """
<html><body>
<h1 id="top">Dune Part Two 2024 <b>[<font class="free">免费</font>]</b>
  <span title="2024-01-09 11:04:05">剩余 6天</span></h1>
<input type="hidden" name="torrent_name" value="Dune.Part.Two.2024.2160p.UHD.BluRay">
<input type="hidden" name="detail_torrent_id" value="101">
<table>
  <tr><td class="rowhead">下载链接</td><td>
    <a href="download.php?id=101&amp;type=zip">zip</a>
    <a href="download.php?id=101&amp;passkey=abc">Dune.torrent</a>
  </td></tr>
  <tr><td class="rowhead">副标题</td><td>沙丘2 | 中字</td></tr>
  <tr><td class="rowhead">基本信息</td><td>大小：58.31 GB 类型: Movie</td></tr>
  <tr><td class="no_border_wide">Hash码: ABCDEF0123456789ABCDEF0123456789ABCDEF01</td></tr>
</table>
<img src="pic/hit_run.gif">
</body></html>
"""


@pytest.fixture
def make_driver(fake_http, failover):
    def _make(routes):
        http = fake_http(routes)
        return NexusPHPDriver("demo", http, failover("demo")), http

    return _make


def test_prepare_search_params(make_driver):
    driver, _ = make_driver({})
    request = driver.prepare_search(
        SearchQuery(keyword="dune", category="401", free_only=True, page=2)
    )

    assert request.path == "/torrents.php"
    assert request.params == {"search": "dune", "cat": "401", "spstate": "2", "page": "1"}


@pytest.mark.asyncio
async def test_search_parses_rows(make_driver, html):
    driver, http = make_driver({"/torrents.php": html(SEARCH_PAGE)})

    items = await driver.search(SearchQuery(keyword="dune"))

    assert [item.id for item in items] == ["101", "102"]
    dune, shogun = items
    assert dune.title == "Dune Part Two 2024 2160p UHD"
    assert dune.subtitle == "沙丘2 | 中字"
    assert dune.size_bytes == int(15.5 * 1024**3)
    assert (dune.seeders, dune.leechers, dune.snatched) == (1927, 12, 3456)
    assert dune.category == "Movies"
    assert dune.discount_level is DiscountLevel.FREE
    assert dune.discount_end_time == FREE_UNTIL
    assert dune.uploaded_at == UPLOADED_AT
    assert dune.has_hr is True
    assert dune.url == "https://example.org/details.php?id=101&hit=1"
    assert dune.download_url == "https://example.org/download.php?id=101"
    assert dune.source_site == "demo"

    assert shogun.discount_level is DiscountLevel.PERCENT_50
    assert shogun.has_hr is False
    assert shogun.seeders == 0
    assert http.calls[0].params == {"search": "dune", "page": "0"}


@pytest.mark.asyncio
async def test_login_page_means_session_expired(make_driver, html):
    driver, _ = make_driver({"/torrents.php": html(LOGIN_PAGE)})

    with pytest.raises(SessionExpiredError):
        await driver.search(SearchQuery(keyword="dune"))


@pytest.mark.asyncio
async def test_get_user_info_runs_steps_and_seeding_status(make_driver, html):
    driver, http = make_driver(
        {
            "/index.php": html(INDEX_PAGE),
            "/userdetails.php": html(USERDETAILS_PAGE),
            "/getusertorrentlistajax.php": html(SEEDING_TABLE),
        }
    )

    info = await driver.get_user_info()

    assert http.paths()[0] == "/index.php"
    assert sorted(http.paths()[1:]) == ["/getusertorrentlistajax.php", "/userdetails.php"]
    params = {path: call.params for path, call in zip(http.paths(), http.calls)}
    assert params["/userdetails.php"] == {"id": "42"}
    assert params["/getusertorrentlistajax.php"] == {"userid": "42", "type": "seeding"}
    assert info.site == "demo"
    assert info.user_id == "42"
    assert info.username == "alice"
    assert info.uploaded == int(1.5 * 1024**4)
    assert info.downloaded == 500 * 1024**3
    assert info.ratio == pytest.approx(3.072)
    assert info.rank == "Elite User"
    assert info.bonus == pytest.approx(12345.6)
    assert info.join_date == UPLOADED_AT
    assert info.seeding == 2
    assert info.seeder_size == 15 * 1024**3


@pytest.mark.asyncio
async def test_get_user_info_survives_missing_seeding_status(make_driver, html):
    driver, _ = make_driver(
        {
            "/index.php": html(INDEX_PAGE),
            "/userdetails.php": html(USERDETAILS_PAGE),
            "/getusertorrentlistajax.php": html("", status_code=500),
        }
    )

    info = await driver.get_user_info()

    assert info.username == "alice"
    assert info.seeder_size == 0


@pytest.mark.asyncio
async def test_seeding_status_runs_alongside_dependent_steps(make_driver, html, mocker):
    driver, _ = make_driver(
        {"/index.php": html(INDEX_PAGE), "/userdetails.php": html(USERDETAILS_PAGE)}
    )
    seeding_started = asyncio.Event()

    async def seeding_status(user_id):
        seeding_started.set()
        return 3, 2048

    fetch_step = driver._fetch_step

    async def gated_fetch_step(request):
        if request.url == "/userdetails.php":
            # Only completes if the seeding fetch is already in flight.
            await asyncio.wait_for(seeding_started.wait(), 1)
        return await fetch_step(request)

    seeding_mock = mocker.patch.object(driver, "fetch_seeding_status", side_effect=seeding_status)
    mocker.patch.object(driver, "_fetch_step", side_effect=gated_fetch_step)

    info = await driver.get_user_info()

    seeding_mock.assert_awaited_once_with("42")
    assert info.uploaded == int(1.5 * 1024**4)
    assert (info.seeding, info.seeder_size) == (3, 2048)


@pytest.mark.asyncio
async def test_seeding_status_error_leaves_seeding_fields_at_zero(make_driver, html, mocker, caplog):
    driver, _ = make_driver(
        {"/index.php": html(INDEX_PAGE), "/userdetails.php": html(USERDETAILS_PAGE)}
    )
    mocker.patch.object(
        driver, "fetch_seeding_status", side_effect=RequestError("seeding page down")
    )

    info = await driver.get_user_info()

    assert info.username == "alice"
    assert info.bonus == pytest.approx(12345.6)
    assert (info.seeding, info.seeder_count, info.seeder_size) == (0, 0, 0)
    assert "Optional fetch 'seeding status' failed" in caplog.text


@pytest.mark.asyncio
async def test_expired_session_in_dependent_step_fails_user_info(make_driver, html):
    driver, _ = make_driver(
        {
            "/index.php": html(INDEX_PAGE),
            "/userdetails.php": html(LOGIN_PAGE),
            "/getusertorrentlistajax.php": html(SEEDING_TABLE),
        }
    )

    with pytest.raises(SessionExpiredError):
        await driver.get_user_info()


@pytest.mark.asyncio
async def test_get_user_info_without_identity_is_a_parse_error(make_driver, html):
    driver, http = make_driver({"/index.php": html("<html><body>maintenance</body></html>")})

    with pytest.raises(ParseError):
        await driver.get_user_info()
    assert http.paths() == ["/index.php"]


def test_parse_seeding_status_prefers_summary(make_driver):
    driver, _ = make_driver({})
    body = "<p><b>12</b> 条记录，共计 <b>1.5 TB</b></p><table><tr><td>x</td></tr></table>"
    response = driver.decode(
        HTTPResponse(status_code=200, content=body.encode("utf-8"), url="https://example.org/"),
        driver.prepare_detail("1"),
    )

    assert driver.parse_seeding_status(response) == (12, int(1.5 * 1024**4))


@pytest.mark.asyncio
async def test_get_torrent_detail(make_driver, html):
    driver, http = make_driver({"/details.php": html(DETAIL_PAGE)})

    item = await driver.get_torrent_detail("101")

    assert http.calls[0].params == {"id": "101", "hit": "1"}
    assert item.id == "101"
    assert item.title == "Dune.Part.Two.2024.2160p.UHD.BluRay"
    assert item.discount_level is DiscountLevel.FREE
    assert item.discount_end_time == FREE_UNTIL
    assert item.has_hr is True
    assert item.size_bytes == int(58.31 * 1024**3)
    assert item.subtitle == "沙丘2 | 中字"
    assert item.info_hash == "abcdef0123456789abcdef0123456789abcdef01"
    assert item.download_url == "https://example.org/download.php?id=101&passkey=abc"
    assert item.url == "https://example.org/details.php?id=101"


@pytest.mark.asyncio
async def test_download_prefers_detail_page_link(make_driver, html):
    driver, http = make_driver(
        {
            "/details.php": html(DETAIL_PAGE),
            "/download.php": html("d8:announce5:helloe"),
        }
    )

    content = await driver.download("101")

    assert content == b"d8:announce5:helloe"
    assert http.calls[-1].url == "https://example.org/download.php?id=101&passkey=abc"


@pytest.mark.asyncio
async def test_download_falls_back_to_direct_link(make_driver, html, caplog):
    driver, http = make_driver(
        {
            "/details.php": html("", status_code=500),
            "/download.php": html("d4:infoe"),
        }
    )

    assert await driver.download("7") == b"d4:infoe"
    assert http.calls[-1].params == {"id": "7"}
    assert "using direct download link" in caplog.text


@pytest.mark.asyncio
async def test_download_rejects_non_torrent_payload(make_driver, html):
    driver, _ = make_driver(
        {
            "/details.php": html("", status_code=500),
            "/download.php": html("<html>not allowed</html>"),
        }
    )

    with pytest.raises(ParseError):
        await driver.download("7")


def _tag(markup):
    return BeautifulSoup(markup, "lxml").select_one("img")


@pytest.mark.parametrize(
    "markup, expected",
    [
        ('<img class="pro_free2up">', DiscountLevel.TWO_X_FREE),
        ('<img class="pro_free">', DiscountLevel.FREE),
        ('<img class="pro_30pctdown">', DiscountLevel.PERCENT_30),
        ('<img src="pic/70pct.png">', DiscountLevel.PERCENT_70),
        ('<img class="pro_2up">', DiscountLevel.TWO_X_UP),
        ('<img class="sticky">', DiscountLevel.NONE),
    ],
)
def test_parse_discount_from_element(markup, expected):
    assert parse_discount_from_element(_tag(markup)) is expected


def test_custom_discount_mapping_wins():
    tag = _tag('<img class="pro_50pctdown2up">')
    mapping = {"pro_50pctdown2up": DiscountLevel.TWO_X_50}
    assert parse_discount_from_element(tag, mapping) is DiscountLevel.TWO_X_50


def test_parse_end_time_from_onmouseover():
    value = 'domTT(\'<span title=&quot;2024-01-09 11:04:05&quot;>\')'
    assert parse_end_time_from_onmouseover(value) == FREE_UNTIL
    assert parse_end_time_from_onmouseover("nothing here") == 0


@pytest.mark.parametrize(
    "markup, expected",
    [
        (LOGIN_PAGE, True),
        ('<meta http-equiv="refresh" content="0; url=login.php">', True),
        ('<div class="login-panel"></div>', True),
        (INDEX_PAGE, False),
    ],
)
def test_is_login_page(markup, expected):
    assert is_login_page(BeautifulSoup(markup, "lxml")) is expected


def test_extract_torrent_id():
    assert extract_torrent_id("details.php?id=123&hit=1") == "123"
    assert extract_torrent_id("details.php") == ""
