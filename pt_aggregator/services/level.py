# pt_aggregator/services/level.py

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Sequence

from ..models import UserInfo
from ..utils import parse_size
from .definitions import AlternativeRequirement, LevelRequirement

GROUP_USER = "user"
GROUP_VIP = "vip"
GROUP_MANAGER = "manager"

# Fallback ids for special groups a definition does not list.
MIN_VIP_LEVEL_ID = 100
MIN_MANAGER_LEVEL_ID = 200

_MANAGER_KEYWORDS = (
    "retiree", "养老", "退休",
    "uploader", "发布", "发种", "上传", "种子",
    "helper", "assistant", "助手", "助理",
    "seeder", "保种",
    "transferrer", "转载",
    "forum", "版主",
    "moderator", "admin", "管理",
    "sys", "coder", "开发",
    "staff", "主管",
)
_VIP_KEYWORDS = ("vip", "贵宾", "honor", "荣誉")

_DURATION_PART = re.compile(r"(\d+)([YMWD])")
_DAYS_PER_UNIT = {"Y": 365, "M": 30, "W": 7, "D": 1}
_DAY = 24 * 3600


@dataclass
class LevelProgress:
    """Where an account stands relative to the site's level table.

    ``unmet`` maps a requirement name to how much is still missing: bytes for
    sizes, seconds for ``interval`` and plain amounts otherwise.
    """

    current_level: LevelRequirement | None = None
    next_level: LevelRequirement | None = None
    unmet: dict[str, float] = field(default_factory=dict)
    progress_percent: float = 100.0


def _clean(name: str) -> str:
    return re.sub(r"[\s_]+", "", name).lower()


def _group(requirement: LevelRequirement) -> str:
    return requirement.group_type or GROUP_USER


def guess_group_type(level_name: str) -> str:
    lowered = level_name.lower()
    if any(keyword in lowered for keyword in _MANAGER_KEYWORDS):
        return GROUP_MANAGER
    if any(keyword in lowered for keyword in _VIP_KEYWORDS):
        return GROUP_VIP
    return GROUP_USER


def match_level_name(level_name: str, requirement: LevelRequirement) -> bool:
    cleaned = _clean(level_name)
    return any(cleaned in _clean(name) for name in (requirement.name, *requirement.name_aka))


def parse_iso_duration(duration: str) -> int:
    """Seconds in an ISO 8601 date duration (``P1Y2M3W4D``); 0 if invalid.

    Months count as 30 days and years as 365.
    """
    value = duration.strip().upper()
    if not value.startswith("P"):
        return 0
    days = sum(
        int(amount) * _DAYS_PER_UNIT[unit] for amount, unit in _DURATION_PART.findall(value[1:])
    )
    return days * _DAY


def interval_remaining(join_date: int, interval: str, now: int) -> int:
    """Seconds until an account registered at ``join_date`` satisfies ``interval``."""
    if not join_date:
        # Unknown join date counts as met.
        return 0
    required = parse_iso_duration(interval)
    if not required:
        return 0
    return max(join_date + required - now, 0)


def _alternative_met(info: UserInfo, alt: AlternativeRequirement) -> bool:
    if alt.seeding_bonus > 0 and info.seeding_bonus < alt.seeding_bonus:
        return False
    if alt.uploads > 0 and info.uploads < alt.uploads:
        return False
    if alt.bonus > 0 and info.bonus < alt.bonus:
        return False
    if alt.downloaded and info.downloaded < parse_size(alt.downloaded):
        return False
    if alt.ratio > 0 and info.ratio < alt.ratio:
        return False
    return True


def requirement_met(info: UserInfo, requirement: LevelRequirement, now: int) -> bool:
    req = requirement
    if req.interval and interval_remaining(info.join_date, req.interval, now) > 0:
        return False
    if req.downloaded and info.downloaded < parse_size(req.downloaded):
        return False
    if req.uploaded and info.uploaded < parse_size(req.uploaded):
        return False
    if req.ratio > 0 and info.ratio < req.ratio:
        return False
    if req.bonus > 0 and info.bonus < req.bonus:
        return False
    if req.seeding_bonus > 0 and info.seeding_bonus < req.seeding_bonus:
        return False
    if req.uploads > 0 and info.uploads < req.uploads:
        return False
    if req.seeding > 0 and info.seeding < req.seeding:
        return False
    if req.seeding_size and info.seeder_size < parse_size(req.seeding_size):
        return False
    if req.alternative and not any(_alternative_met(info, alt) for alt in req.alternative):
        return False
    return True


def guess_user_level_id(
    info: UserInfo, requirements: Sequence[LevelRequirement], now: int | None = None
) -> int:
    """
    Work out the account's level id, or -1 when it cannot be placed.

    The rank name is tried first against level names and aliases, then
    against the staff and VIP keyword lists. Without a usable name the
    highest user level whose requirements (and those of every level below
    it) are met wins.
    """
    if not info.rank and not requirements:
        return -1
    if now is None:
        now = int(time.time())

    if info.rank:
        for req in requirements:
            if match_level_name(info.rank, req):
                return req.id
        group = guess_group_type(info.rank)
        if group != GROUP_USER:
            for req in requirements:
                if req.group_type == group:
                    return req.id
            return MIN_VIP_LEVEL_ID if group == GROUP_VIP else MIN_MANAGER_LEVEL_ID

    user_levels = [req for req in requirements if _group(req) == GROUP_USER]
    reached = -1
    for req in user_levels:
        if not requirement_met(info, req, now):
            return reached
        reached = req.id
    return max((req.id for req in user_levels), default=0)


def _next_user_level(
    requirements: Sequence[LevelRequirement], current_id: int
) -> tuple[LevelRequirement | None, LevelRequirement | None]:
    for index, req in enumerate(requirements):
        if req.id != current_id:
            continue
        following = (r for r in requirements[index + 1:] if _group(r) == GROUP_USER)
        return req, next(following, None)
    return None, None


def next_level_unmet(
    info: UserInfo, next_level: LevelRequirement, now: int
) -> dict[str, float]:
    unmet: dict[str, float] = {}
    if next_level.downloaded:
        required = parse_size(next_level.downloaded)
        if info.downloaded < required:
            unmet["downloaded"] = required - info.downloaded
    if next_level.uploaded:
        required = parse_size(next_level.uploaded)
        if info.uploaded < required:
            unmet["uploaded"] = required - info.uploaded
    if next_level.ratio > 0 and info.ratio < next_level.ratio:
        unmet["ratio"] = next_level.ratio - info.ratio
    if next_level.bonus > 0 and info.bonus < next_level.bonus:
        missing = next_level.bonus - info.bonus
        unmet["bonus"] = missing
        if info.bonus_per_hour > 0:
            unmet["bonus_needed_hours"] = missing / info.bonus_per_hour
    if next_level.seeding_bonus > 0 and info.seeding_bonus < next_level.seeding_bonus:
        unmet["seeding_bonus"] = next_level.seeding_bonus - info.seeding_bonus
    if next_level.interval:
        remaining = interval_remaining(info.join_date, next_level.interval, now)
        if remaining > 0:
            unmet["interval"] = remaining
    return unmet


def calculate_level_progress(
    info: UserInfo, requirements: Sequence[LevelRequirement], now: int | None = None
) -> LevelProgress | None:
    """Progress towards the next user level, or ``None`` without a level table.

    ``progress_percent`` is the share of the next level's download, ratio,
    bonus, seeding bonus and interval requirements already met.
    """
    if not requirements:
        return None
    if now is None:
        now = int(time.time())

    current_id = info.level_id or guess_user_level_id(info, requirements, now)
    current, following = _next_user_level(requirements, current_id)
    progress = LevelProgress(current_level=current, next_level=following)
    if following is None:
        return progress

    progress.unmet = next_level_unmet(info, following, now)
    checks: list[bool] = []
    if following.downloaded:
        checks.append(info.downloaded >= parse_size(following.downloaded))
    if following.ratio > 0:
        checks.append(info.ratio >= following.ratio)
    if following.bonus > 0:
        checks.append(info.bonus >= following.bonus)
    if following.seeding_bonus > 0:
        checks.append(info.seeding_bonus >= following.seeding_bonus)
    if following.interval:
        checks.append(interval_remaining(info.join_date, following.interval, now) == 0)
    if checks:
        progress.progress_percent = sum(checks) / len(checks) * 100
    return progress
