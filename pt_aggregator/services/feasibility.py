# pt_aggregator/services/feasibility.py

from __future__ import annotations

import time
from dataclasses import dataclass

from .discount import DiscountLevel, estimate_download_time


@dataclass
class Feasibility:
    can_complete: bool
    # All durations are in seconds
    estimated_time: float = 0.0
    time_remaining: float = 0.0
    effective_size: int = 0
    margin: float = 0.0


def can_download_in_time(
    size_bytes: int,
    speed_bps: float,
    level: DiscountLevel,
    end_time: int,
    now: float | None = None,
) -> Feasibility:
    """
    Decides whether a download can finish before its discount expires.

    Permanent discounts, free downloads and undiscounted torrents are always
    feasible. Otherwise the transfer must fit into the remaining window at
    ``speed_bps``; an unknown rate is treated as infeasible.
    """
    if level is DiscountLevel.NONE:
        return Feasibility(can_complete=True, effective_size=size_bytes)

    effective_size = int(size_bytes * level.download_ratio)
    if level.download_ratio == 0 or end_time == 0:
        return Feasibility(can_complete=True, effective_size=effective_size)

    if now is None:
        now = time.time()
    time_remaining = end_time - now
    if time_remaining <= 0:
        return Feasibility(
            can_complete=False,
            time_remaining=time_remaining,
            effective_size=effective_size,
        )
    if speed_bps <= 0:
        return Feasibility(
            can_complete=False,
            time_remaining=time_remaining,
            effective_size=effective_size,
        )

    # The transfer itself moves every byte, regardless of quota accounting.
    estimated = estimate_download_time(size_bytes, speed_bps)
    margin = time_remaining - estimated
    return Feasibility(
        can_complete=margin >= 0,
        estimated_time=estimated,
        time_remaining=time_remaining,
        effective_size=effective_size,
        margin=margin,
    )
