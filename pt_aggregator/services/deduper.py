# pt_aggregator/services/deduper.py

from __future__ import annotations

from typing import Callable

from thefuzz import fuzz

from ..config import logger
from ..models import TorrentItem
from .discount import is_better_discount
from .normalizer import normalize_title


def _merge_tags(first: list[str], second: list[str]) -> list[str]:
    merged: list[str] = []
    for tag in (*first, *second):
        if tag not in merged:
            merged.append(tag)
    return merged


def merge_duplicates(items: list[TorrentItem]) -> TorrentItem:
    """
    Collapses listings of one release into a single item.

    The first item seeds the result. Peer counts and upload time take the
    maximum, the best discount wins, tags are unioned and a missing
    download link or magnet is filled from later items. Inputs are copied,
    never modified.
    """
    if not items:
        raise ValueError("merge_duplicates needs at least one item")

    best = items[0].copy()
    for item in items[1:]:
        best.seeders = max(best.seeders, item.seeders)
        best.leechers = max(best.leechers, item.leechers)
        best.snatched = max(best.snatched, item.snatched)
        best.uploaded_at = max(best.uploaded_at, item.uploaded_at)

        if item.is_free() and not best.is_free():
            best.discount_level = item.discount_level
            best.discount_end_time = item.discount_end_time
        if is_better_discount(item.discount_level, best.discount_level):
            best.discount_level = item.discount_level
            best.discount_end_time = item.discount_end_time

        best.tags = _merge_tags(best.tags, item.tags)

        if not best.download_url and item.download_url:
            best.download_url = item.download_url
        if not best.magnet and item.magnet:
            best.magnet = item.magnet
    return best


def deduplicate(items: list[TorrentItem]) -> list[TorrentItem]:
    """Merges items sharing an info hash; items without one pass through."""
    groups: dict[str, list[TorrentItem]] = {}
    without_hash: list[TorrentItem] = []
    for item in items:
        if not item.info_hash:
            without_hash.append(item.copy())
            continue
        groups.setdefault(item.info_hash, []).append(item)

    result = [merge_duplicates(group) for group in groups.values()]
    result.extend(without_hash)
    if len(result) < len(items):
        logger.debug(f"[SEARCH] Deduplicated {len(items)} items into {len(result)}")
    return result


def deduplicate_by_title(
    items: list[TorrentItem],
    normalize: Callable[[str], str] = normalize_title,
    *,
    threshold: int = 100,
) -> list[TorrentItem]:
    """
    Merges items whose normalised titles match.

    With the default ``threshold`` of 100 titles must be identical after
    normalisation. A lower threshold joins a title to the first existing
    group whose key scores at least that much with
    ``fuzz.token_sort_ratio``.
    """
    groups: dict[str, list[TorrentItem]] = {}
    for item in items:
        key = normalize(item.title)
        if key not in groups and threshold < 100:
            key = next(
                (
                    existing
                    for existing in groups
                    if fuzz.token_sort_ratio(key, existing) >= threshold
                ),
                key,
            )
        groups.setdefault(key, []).append(item)
    return [merge_duplicates(group) for group in groups.values()]
