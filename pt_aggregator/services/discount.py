# pt_aggregator/services/discount.py

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum


class DiscountLevel(str, Enum):
    """Promotional multiplier a site applies to a torrent's transfer accounting."""

    NONE = "NONE"
    FREE = "FREE"
    TWO_X_FREE = "2XFREE"
    PERCENT_30 = "PERCENT_30"
    PERCENT_50 = "PERCENT_50"
    PERCENT_70 = "PERCENT_70"
    TWO_X_UP = "2XUP"
    TWO_X_50 = "2X50"

    @property
    def download_ratio(self) -> float:
        return _DOWNLOAD_RATIOS.get(self, 1.0)

    @property
    def upload_ratio(self) -> float:
        return _UPLOAD_RATIOS.get(self, 1.0)

    @property
    def priority(self) -> int:
        """Total order of goodness; higher is better."""
        return _PRIORITIES[self]

    @property
    def is_free(self) -> bool:
        return self in (DiscountLevel.FREE, DiscountLevel.TWO_X_FREE)


_DOWNLOAD_RATIOS = {
    DiscountLevel.FREE: 0.0,
    DiscountLevel.TWO_X_FREE: 0.0,
    DiscountLevel.PERCENT_30: 0.3,
    DiscountLevel.PERCENT_50: 0.5,
    DiscountLevel.PERCENT_70: 0.7,
    DiscountLevel.TWO_X_50: 0.5,
}

_UPLOAD_RATIOS = {
    DiscountLevel.TWO_X_FREE: 2.0,
    DiscountLevel.TWO_X_UP: 2.0,
    DiscountLevel.TWO_X_50: 2.0,
}

# Percent30 outranks Percent50/70 because a smaller share is counted.
_PRIORITIES = {
    DiscountLevel.TWO_X_FREE: 100,
    DiscountLevel.FREE: 90,
    DiscountLevel.TWO_X_50: 70,
    DiscountLevel.PERCENT_30: 60,
    DiscountLevel.PERCENT_50: 50,
    DiscountLevel.PERCENT_70: 40,
    DiscountLevel.TWO_X_UP: 30,
    DiscountLevel.NONE: 0,
}


def parse_discount_level(value: str | None) -> DiscountLevel:
    """Map a stored enum value back to a level; unknown strings mean NONE."""
    if not value:
        return DiscountLevel.NONE
    try:
        return DiscountLevel(value.strip().upper())
    except ValueError:
        return DiscountLevel.NONE


@dataclass(frozen=True)
class PromotionRule:
    """Time-bounded override discount. Zero bounds are unconstrained."""

    discount: DiscountLevel
    start_time: int = 0
    end_time: int = 0

    def is_active(self, now: int) -> bool:
        if self.start_time and now < self.start_time:
            return False
        if self.end_time and now >= self.end_time:
            return False
        return True


def resolve_discount(
    base_level: DiscountLevel,
    base_end_time: int,
    promotion: PromotionRule | None,
    now: int | None = None,
) -> tuple[DiscountLevel, int]:
    """
    Returns the effective ``(level, end_time)`` for a listing.

    An active promotion wins when it is strictly better than the base level,
    or equally good but lasting longer. Otherwise the base stands.
    """
    if promotion is None:
        return base_level, base_end_time
    if now is None:
        now = int(time.time())
    if not promotion.is_active(now):
        return base_level, base_end_time

    order = compare_discounts(promotion.discount, base_level)
    if order > 0:
        return promotion.discount, promotion.end_time
    if order == 0 and promotion.end_time > base_end_time:
        return promotion.discount, promotion.end_time
    return base_level, base_end_time


def compare_discounts(a: DiscountLevel, b: DiscountLevel) -> int:
    """Returns 1 if ``a`` is better, -1 if worse, 0 if equal."""
    if a.priority > b.priority:
        return 1
    if a.priority < b.priority:
        return -1
    return 0


def is_better_discount(candidate: DiscountLevel, current: DiscountLevel) -> bool:
    return compare_discounts(candidate, current) > 0


def effective_download(size_bytes: int, level: DiscountLevel) -> int:
    """Bytes that count against the download quota."""
    return int(size_bytes * level.download_ratio)


def effective_upload(size_bytes: int, level: DiscountLevel) -> int:
    """Bytes credited as upload when ``size_bytes`` are seeded."""
    return int(size_bytes * level.upload_ratio)


def ratio_impact(size_bytes: int, level: DiscountLevel) -> tuple[int, int]:
    return effective_download(size_bytes, level), effective_upload(size_bytes, level)


def estimate_download_time(size_bytes: int, speed_bps: float) -> float:
    """Seconds needed to transfer ``size_bytes``; 0 when the rate is unknown."""
    if speed_bps <= 0:
        return 0.0
    return size_bytes / speed_bps
