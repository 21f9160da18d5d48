# pt_aggregator/services/ranker.py

from __future__ import annotations

from dataclasses import dataclass, field, replace

from ..config import DEFAULT_SITE_RELIABILITY
from ..models import TorrentItem


@dataclass
class RankerConfig:
    seeder_weight: float = 1.0
    leecher_weight: float = 0.5
    free_bonus: float = 100.0
    site_reliability: dict[str, float] = field(default_factory=dict)


def log_score(value: float) -> float:
    # Linear despite the name.
    if value <= 0:
        return 0.0
    return 1 + value / 10


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


class Ranker:
    """Scores search results by swarm health, discount and site trust."""

    def __init__(self, config: RankerConfig | None = None) -> None:
        config = config or RankerConfig()
        # Own copy so set_site_reliability never leaks into the caller.
        self.config = replace(
            config,
            site_reliability={
                site: _clamp(value) for site, value in config.site_reliability.items()
            },
        )

    def set_site_reliability(self, site_id: str, reliability: float) -> None:
        self.config.site_reliability[site_id] = _clamp(reliability)

    def get_site_reliability(self, site_id: str) -> float:
        return self.config.site_reliability.get(site_id, DEFAULT_SITE_RELIABILITY)

    def score(self, item: TorrentItem) -> float:
        cfg = self.config
        score = cfg.seeder_weight * log_score(item.seeders)
        score += cfg.leecher_weight * log_score(item.leechers)
        if item.is_free():
            score += cfg.free_bonus
        score += cfg.free_bonus * (1 - item.discount_level.download_ratio)
        return score * (1 + self.get_site_reliability(item.source_site))

    def rank(self, items: list[TorrentItem]) -> list[TorrentItem]:
        """Returns a new list ordered by descending score."""
        return sorted(items, key=self.score, reverse=True)
