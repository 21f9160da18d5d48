import pytest

from pt_aggregator.models import TorrentItem
from pt_aggregator.services import deduper
from pt_aggregator.services.deduper import deduplicate, deduplicate_by_title, merge_duplicates
from pt_aggregator.services.discount import DiscountLevel


def _item(**kwargs):
    return TorrentItem(**kwargs)


def test_merge_duplicates_combines_fields_without_mutating_inputs():
    first = _item(
        id="1",
        source_site="a",
        info_hash="h1",
        seeders=10,
        leechers=5,
        snatched=1,
        uploaded_at=100,
        tags=["x"],
        magnet="magnet:?xt=urn:btih:h1",
    )
    second = _item(
        id="2",
        source_site="b",
        info_hash="h1",
        seeders=5,
        leechers=9,
        snatched=7,
        uploaded_at=200,
        discount_level=DiscountLevel.FREE,
        discount_end_time=999,
        tags=["y", "x"],
        download_url="https://b.example/download.php?id=2",
    )

    merged = merge_duplicates([first, second])

    assert merged.source_site == "a"
    assert merged.id == "1"
    assert (merged.seeders, merged.leechers, merged.snatched) == (10, 9, 7)
    assert merged.uploaded_at == 200
    assert merged.discount_level is DiscountLevel.FREE
    assert merged.discount_end_time == 999
    assert merged.tags == ["x", "y"]
    assert merged.download_url == "https://b.example/download.php?id=2"
    assert merged.magnet == "magnet:?xt=urn:btih:h1"

    assert first.tags == ["x"]
    assert first.discount_level is DiscountLevel.NONE
    assert merged is not first


@pytest.mark.parametrize(
    "base, other, expected",
    [
        (DiscountLevel.PERCENT_50, DiscountLevel.TWO_X_UP, DiscountLevel.PERCENT_50),
        (DiscountLevel.FREE, DiscountLevel.TWO_X_FREE, DiscountLevel.TWO_X_FREE),
        (DiscountLevel.TWO_X_50, DiscountLevel.FREE, DiscountLevel.FREE),
        (DiscountLevel.PERCENT_70, DiscountLevel.PERCENT_30, DiscountLevel.PERCENT_30),
    ],
)
def test_merge_keeps_best_discount(base, other, expected):
    merged = merge_duplicates(
        [_item(discount_level=base), _item(discount_level=other)]
    )
    assert merged.discount_level is expected


def test_merge_ranks_discounts_with_shared_comparison(mocker):
    spy = mocker.spy(deduper, "is_better_discount")

    merge_duplicates([_item(), _item(discount_level=DiscountLevel.PERCENT_30)])

    spy.assert_called_once_with(DiscountLevel.PERCENT_30, DiscountLevel.NONE)


def test_merge_duplicates_is_idempotent():
    a = _item(
        info_hash="h1",
        seeders=4,
        leechers=12,
        snatched=30,
        uploaded_at=500,
        discount_level=DiscountLevel.PERCENT_50,
        discount_end_time=700,
        tags=["a", "b"],
    )
    b = _item(
        info_hash="h1",
        seeders=9,
        leechers=2,
        snatched=3,
        uploaded_at=900,
        discount_level=DiscountLevel.FREE,
        discount_end_time=800,
        tags=["b", "c"],
    )

    once = merge_duplicates([a, b])
    twice = merge_duplicates([a, b, a, b])

    for merged in (once, twice):
        assert (merged.seeders, merged.leechers, merged.snatched) == (9, 12, 30)
        assert merged.uploaded_at == 900
        assert merged.discount_level is DiscountLevel.FREE
        assert merged.discount_end_time == 800
    assert sorted(once.tags) == sorted(twice.tags) == ["a", "b", "c"]


def test_merge_duplicates_requires_items():
    with pytest.raises(ValueError):
        merge_duplicates([])


def test_deduplicate_groups_by_hash_and_keeps_hashless_items():
    a = _item(id="a", info_hash="h1", seeders=1)
    b = _item(id="b", info_hash="h1", seeders=9)
    c = _item(id="c")
    d = _item(id="d", info_hash="h2")

    result = deduplicate([a, c, b, d])

    assert [item.id for item in result] == ["a", "d", "c"]
    assert result[0].seeders == 9
    assert result[2] is not c


def test_deduplicate_by_title_uses_normalised_titles():
    items = [
        _item(id="1", title="Dune 2024 4K", seeders=3),
        _item(id="2", title="[HDS] Dune 2024 2160p", seeders=8),
        _item(id="3", title="Shogun S01 1080p"),
    ]

    result = deduplicate_by_title(items)

    assert [item.id for item in result] == ["1", "3"]
    assert result[0].seeders == 8


def test_deduplicate_by_title_fuzzy_threshold():
    items = [
        _item(id="1", title="Dune Part Two 2024 2160p"),
        _item(id="2", title="Part Two Dune 2024 2160p"),
    ]

    assert len(deduplicate_by_title(items)) == 2
    assert len(deduplicate_by_title(items, threshold=90)) == 1
