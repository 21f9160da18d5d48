# pt_aggregator/services/definitions.py

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from ..config import SITE_TIMEZONE_OFFSET, logger
from ..errors import DefinitionError
from .discount import DiscountLevel
from .extraction.userinfo import UserInfoConfig

BUILTIN_DEFINITIONS_DIR = Path(__file__).resolve().parent.parent / "definitions"

# Cache for site definitions to avoid repeated disk reads.
_definition_cache: dict[Path, SiteDefinition] = {}


@dataclass(frozen=True)
class SiteSelectors:
    """CSS selectors for NexusPHP listing and detail pages.

    Any selector left empty falls back to the schema default.
    """

    table_rows: str = ""
    title: str = ""
    title_link: str = ""
    subtitle: str = ""
    size: str = ""
    seeders: str = ""
    leechers: str = ""
    snatched: str = ""
    discount_icon: str = ""
    discount_end_time: str = ""
    category: str = ""
    upload_time: str = ""
    hr_icon: str = ""
    download_link: str = ""
    detail_download_link: str = ""
    detail_subtitle: str = ""
    discount_mapping: dict[str, DiscountLevel] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> SiteSelectors:
        if not raw:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise DefinitionError(f"unknown selector keys: {', '.join(sorted(unknown))}")
        values = {key: str(value) for key, value in raw.items() if key != "discount_mapping"}
        mapping = _discount_mapping(raw.get("discount_mapping"))
        return cls(**values, discount_mapping=mapping)

    def merged_over(self, defaults: SiteSelectors) -> SiteSelectors:
        """Return a copy where empty selectors are taken from ``defaults``."""
        merged: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            merged[item.name] = value if value else getattr(defaults, item.name)
        return SiteSelectors(**merged)


@dataclass(frozen=True)
class DetailParserConfig:
    time_layout: str = "%Y-%m-%d %H:%M:%S"
    discount_mapping: dict[str, DiscountLevel] = field(
        default_factory=lambda: {
            "free": DiscountLevel.FREE,
            "twoup": DiscountLevel.TWO_X_UP,
            "twoupfree": DiscountLevel.TWO_X_FREE,
            "thirtypercent": DiscountLevel.PERCENT_30,
            "halfdown": DiscountLevel.PERCENT_50,
            "twouphalfdown": DiscountLevel.TWO_X_50,
            "pro_custom": DiscountLevel.NONE,
        }
    )
    hr_keywords: tuple[str, ...] = ("hitandrun", "hit_run.gif", "Hit and Run", "Hit & Run")
    title_selector: str = "input[name='torrent_name']"
    id_selector: str = "input[name='detail_torrent_id']"
    discount_selector: str = "h1 font[class]"
    end_time_selector: str = "h1 span[title]"
    size_selector: str = "td.rowhead:-soup-contains('基本信息') + td"
    size_regex: str = r"大小[：:]\s*([\d.]+)\s*(TB|GB|MB|KB)"

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> DetailParserConfig:
        if not raw:
            return cls()
        values: dict[str, Any] = {}
        for item in fields(cls):
            if item.name not in raw:
                continue
            if item.name == "discount_mapping":
                values[item.name] = _discount_mapping(raw[item.name])
            elif item.name == "hr_keywords":
                values[item.name] = tuple(raw[item.name] or ())
            else:
                values[item.name] = str(raw[item.name])
        return cls(**values)


@dataclass(frozen=True)
class AlternativeRequirement:
    """One of several requirement sets of which any may be met."""

    seeding_bonus: float = 0.0
    uploads: int = 0
    bonus: float = 0.0
    downloaded: str = ""
    ratio: float = 0.0


@dataclass(frozen=True)
class LevelRequirement:
    id: int
    name: str
    name_aka: tuple[str, ...] = ()
    group_type: str = "user"
    # ISO 8601 duration such as "P5W"
    interval: str = ""
    downloaded: str = ""
    uploaded: str = ""
    ratio: float = 0.0
    bonus: float = 0.0
    seeding_bonus: float = 0.0
    uploads: int = 0
    seeding: int = 0
    seeding_size: str = ""
    alternative: tuple[AlternativeRequirement, ...] = ()
    privilege: str = ""


@dataclass(frozen=True)
class SiteDefinition:
    id: str
    name: str
    schema: str
    urls: tuple[str, ...]
    aka: tuple[str, ...] = ()
    description: str = ""
    legacy_urls: tuple[str, ...] = ()
    favicon_url: str = ""
    timezone_offset: str = SITE_TIMEZONE_OFFSET
    rate_limit: float = 0.0
    rate_burst: int = 0
    user_info: UserInfoConfig | None = None
    selectors: SiteSelectors = field(default_factory=SiteSelectors)
    detail_parser: DetailParserConfig = field(default_factory=DetailParserConfig)
    level_requirements: tuple[LevelRequirement, ...] = ()

    @property
    def all_urls(self) -> list[str]:
        return [*self.urls, *self.legacy_urls]


def _discount_mapping(raw: Any) -> dict[str, DiscountLevel]:
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise DefinitionError("discount_mapping must be a mapping")
    mapping: dict[str, DiscountLevel] = {}
    for key, value in raw.items():
        try:
            mapping[str(key)] = DiscountLevel(str(value).upper())
        except ValueError as exc:
            raise DefinitionError(f"unknown discount level: {value}") from exc
    return mapping


def _string_tuple(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    return tuple(str(item) for item in raw)


def _level_requirement(raw: dict[str, Any]) -> LevelRequirement:
    try:
        return LevelRequirement(
            id=int(raw["id"]),
            name=str(raw["name"]),
            name_aka=_string_tuple(raw.get("name_aka")),
            group_type=str(raw.get("group_type", "user")),
            interval=str(raw.get("interval", "")),
            downloaded=str(raw.get("downloaded", "")),
            uploaded=str(raw.get("uploaded", "")),
            ratio=float(raw.get("ratio", 0)),
            bonus=float(raw.get("bonus", 0)),
            seeding_bonus=float(raw.get("seeding_bonus", 0)),
            uploads=int(raw.get("uploads", 0)),
            seeding=int(raw.get("seeding", 0)),
            seeding_size=str(raw.get("seeding_size", "")),
            alternative=tuple(
                AlternativeRequirement(
                    seeding_bonus=float(alt.get("seeding_bonus", 0)),
                    uploads=int(alt.get("uploads", 0)),
                    bonus=float(alt.get("bonus", 0)),
                    downloaded=str(alt.get("downloaded", "")),
                    ratio=float(alt.get("ratio", 0)),
                )
                for alt in raw.get("alternative") or []
            ),
            privilege=str(raw.get("privilege", "")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise DefinitionError(f"invalid level requirement {raw!r}: {exc}") from exc


def parse_definition(data: dict[str, Any]) -> SiteDefinition:
    """Build a ``SiteDefinition`` from its mapping form, validating it."""
    required = {"id", "name", "schema", "urls"}
    missing = required - data.keys()
    if missing:
        raise DefinitionError(f"Definition missing keys: {', '.join(sorted(missing))}")

    urls = _string_tuple(data["urls"])
    if not urls:
        raise DefinitionError(f"Definition '{data['id']}' needs at least one URL")

    user_info_raw = data.get("user_info")
    levels = tuple(_level_requirement(level) for level in data.get("level_requirements") or [])

    return SiteDefinition(
        id=str(data["id"]),
        name=str(data["name"]),
        schema=str(data["schema"]),
        urls=urls,
        aka=_string_tuple(data.get("aka")),
        description=str(data.get("description", "")),
        legacy_urls=_string_tuple(data.get("legacy_urls")),
        favicon_url=str(data.get("favicon_url", "")),
        timezone_offset=str(data.get("timezone_offset") or SITE_TIMEZONE_OFFSET),
        rate_limit=float(data.get("rate_limit") or 0),
        rate_burst=int(data.get("rate_burst") or 0),
        user_info=UserInfoConfig.from_dict(user_info_raw) if user_info_raw else None,
        selectors=SiteSelectors.from_dict(data.get("selectors")),
        detail_parser=DetailParserConfig.from_dict(data.get("detail_parser")),
        level_requirements=levels,
    )


def load_definition(definition_path: Path) -> SiteDefinition:
    """Load a YAML site definition.

    Definitions are cached in-memory after the first load; later calls for the
    same path return the cached object.
    """
    resolved_path = definition_path.resolve()
    cached = _definition_cache.get(resolved_path)
    if cached is not None:
        return cached

    if not resolved_path.exists():
        raise FileNotFoundError(f"Site definition not found: {resolved_path}")

    with resolved_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    try:
        definition = parse_definition(data)
    except DefinitionError as exc:
        raise DefinitionError(f"{resolved_path.name}: {exc}") from exc

    logger.debug(f"[REGISTRY] Loaded definition '{definition.id}' from {resolved_path}")
    _definition_cache[resolved_path] = definition
    return definition


def load_builtin_definitions(directory: Path = BUILTIN_DEFINITIONS_DIR) -> list[SiteDefinition]:
    return [load_definition(path) for path in sorted(directory.glob("*.yaml"))]
