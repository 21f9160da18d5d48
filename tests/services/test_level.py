import pytest

from pt_aggregator.models import UserInfo
from pt_aggregator.services.definitions import AlternativeRequirement, LevelRequirement
from pt_aggregator.services.level import (
    MIN_MANAGER_LEVEL_ID,
    MIN_VIP_LEVEL_ID,
    calculate_level_progress,
    guess_group_type,
    guess_user_level_id,
    interval_remaining,
    parse_iso_duration,
    requirement_met,
)

DAY = 24 * 3600
NOW = 1_700_000_000
GB = 1024**3

LEVELS = (
    LevelRequirement(id=1, name="User", name_aka=("新人",)),
    LevelRequirement(
        id=2, name="Power User", name_aka=("配角",), interval="P5W", downloaded="200GB",
        ratio=2.0, bonus=600000,
    ),
    LevelRequirement(
        id=3, name="Elite User", name_aka=("主角",), interval="P10W", downloaded="500GB",
        ratio=2.5, bonus=800000,
    ),
    LevelRequirement(id=10, name="VIP", group_type="vip"),
    LevelRequirement(id=4, name="Crazy User", interval="P15W", downloaded="1TB", ratio=3.0),
)


@pytest.mark.parametrize(
    "duration, days",
    [("P5W", 35), ("P1Y2M", 425), ("p3d", 3), ("P1Y1M1W1D", 403), ("5W", 0), ("", 0)],
)
def test_parse_iso_duration(duration, days):
    assert parse_iso_duration(duration) == days * DAY


def test_interval_remaining():
    joined = NOW - 10 * DAY
    assert interval_remaining(joined, "P2W", NOW) == 4 * DAY
    assert interval_remaining(joined, "P1W", NOW) == 0
    assert interval_remaining(0, "P2W", NOW) == 0
    assert interval_remaining(joined, "bogus", NOW) == 0


@pytest.mark.parametrize(
    "name, expected",
    [("Moderator", "manager"), ("退休", "manager"), ("贵宾", "vip"), ("Honor Member", "vip"), ("Elite User", "user")],
)
def test_guess_group_type(name, expected):
    assert guess_group_type(name) == expected


@pytest.mark.parametrize(
    "rank, expected",
    [
        ("Power User", 2),
        ("power_user", 2),
        ("主角", 3),
        ("VIP", 10),
        ("贵宾", 10),
        ("Administrator", MIN_MANAGER_LEVEL_ID),
    ],
)
def test_guess_user_level_id_by_name(rank, expected):
    assert guess_user_level_id(UserInfo(rank=rank), LEVELS, NOW) == expected


def test_guess_vip_without_vip_level_uses_default_id():
    assert guess_user_level_id(UserInfo(rank="VIP"), LEVELS[:3], NOW) == MIN_VIP_LEVEL_ID


def test_guess_user_level_id_from_statistics():
    info = UserInfo(
        join_date=NOW - 40 * DAY, downloaded=300 * GB, ratio=2.2, bonus=700000
    )
    assert guess_user_level_id(info, LEVELS, NOW) == 2

    veteran = UserInfo(join_date=NOW - 200 * DAY, downloaded=2048 * GB, ratio=5, bonus=10**6)
    assert guess_user_level_id(veteran, LEVELS, NOW) == 4

    assert guess_user_level_id(UserInfo(), (), NOW) == -1


def test_requirement_alternatives_are_any_of():
    requirement = LevelRequirement(
        id=5,
        name="Insane User",
        alternative=(
            AlternativeRequirement(seeding_bonus=1000),
            AlternativeRequirement(uploads=10, ratio=2.0),
        ),
    )

    assert requirement_met(UserInfo(seeding_bonus=1500), requirement, NOW)
    assert requirement_met(UserInfo(uploads=12, ratio=2.5), requirement, NOW)
    assert not requirement_met(UserInfo(uploads=12, ratio=1.0), requirement, NOW)


def test_requirement_checks_seeding_size_and_count():
    requirement = LevelRequirement(id=6, name="Keeper", seeding=5, seeding_size="1TB")

    assert requirement_met(UserInfo(seeding=5, seeder_size=1024 * GB), requirement, NOW)
    assert not requirement_met(UserInfo(seeding=4, seeder_size=1024 * GB), requirement, NOW)
    assert not requirement_met(UserInfo(seeding=5, seeder_size=GB), requirement, NOW)


def test_calculate_level_progress_reports_unmet_requirements():
    info = UserInfo(
        rank="Power User",
        join_date=NOW - 50 * DAY,
        downloaded=600 * GB,
        ratio=2.0,
        bonus=700000,
        bonus_per_hour=1000,
    )

    progress = calculate_level_progress(info, LEVELS, NOW)

    assert progress.current_level.id == 2
    assert progress.next_level.id == 3
    assert progress.unmet == {
        "ratio": pytest.approx(0.5),
        "bonus": 100000,
        "bonus_needed_hours": pytest.approx(100.0),
        "interval": 20 * DAY,
    }
    # downloaded met, ratio, bonus and interval not
    assert progress.progress_percent == pytest.approx(25.0)


def test_next_level_skips_special_groups():
    info = UserInfo(level_id=3, downloaded=2048 * GB, ratio=3.5, join_date=NOW - 200 * DAY)

    progress = calculate_level_progress(info, LEVELS, NOW)

    assert progress.next_level.name == "Crazy User"
    assert progress.unmet == {}
    assert progress.progress_percent == pytest.approx(100.0)


def test_top_level_has_nothing_left():
    progress = calculate_level_progress(UserInfo(level_id=4), LEVELS, NOW)

    assert progress.current_level.id == 4
    assert progress.next_level is None
    assert progress.progress_percent == 100.0


def test_no_requirements_means_no_progress():
    assert calculate_level_progress(UserInfo(level_id=2), (), NOW) is None
