# pt_aggregator/services/extraction/filters.py

from __future__ import annotations

import functools
import math
import re
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Callable

from ...errors import DefinitionError, UnknownFilterError
from ...utils import parse_number, parse_size, parse_time

FilterFunc = Callable[..., str]


@functools.lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error:
        return None


def _format_number(value: float) -> str:
    if math.isinf(value) or math.isnan(value):
        return str(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any) -> float:
    try:
        return float(str(value).replace(",", ""))
    except (TypeError, ValueError):
        return 0.0


def parse_number_filter(value: str) -> str:
    stripped = value.strip().lower()
    if stripped in {"∞", "inf", "infinity", "---"}:
        return "inf"
    return _format_number(parse_number(value))


def parse_size_filter(value: str) -> str:
    return str(parse_size(value))


def parse_time_filter(value: str, tz_offset: str | None = None) -> str:
    if tz_offset:
        return str(parse_time(value, tz_offset))
    return str(parse_time(value))


def querystring_filter(value: str, key: str = "") -> str:
    if not key:
        return ""
    parsed = urllib.parse.urlsplit(value)
    query = parsed.query
    if not query and "=" in value and "?" not in value:
        query = value
    values = urllib.parse.parse_qs(query)
    return values.get(key, [""])[0]


def split_filter(value: str, separator: str = "", index: Any = 0) -> str:
    if not separator:
        return value
    parts = value.split(separator)
    position = _as_int(index)
    if position < 0:
        position += len(parts)
    if position < 0 or position >= len(parts):
        return ""
    return parts[position].strip()


def regex_filter(value: str, pattern: str = "") -> str:
    """First capture group, else the whole match, else empty."""
    if not pattern:
        return value
    compiled = _compile(pattern)
    if compiled is None:
        return ""
    match = compiled.search(value)
    if not match:
        return ""
    if compiled.groups >= 1:
        return match.group(1) or ""
    return match.group(0)


def regex_replace_filter(value: str, pattern: str = "", replacement: str = "") -> str:
    compiled = _compile(pattern) if pattern else None
    if compiled is None:
        return value
    return compiled.sub(replacement, value)


def sum_regex_matches_filter(value: str, pattern: str = "") -> str:
    compiled = _compile(pattern) if pattern else None
    if compiled is None or compiled.groups < 1:
        return "0"
    total = 0
    for match in compiled.finditer(value):
        total += _as_int(match.group(1))
    return str(total)


def ext_imdb_id_filter(value: str) -> str:
    match = re.search(r"(?:imdb\.com/title/|imdb=)(tt\d+)", value)
    if match:
        return match.group(1)
    return value if re.fullmatch(r"tt\d+", value) else ""


def ext_douban_id_filter(value: str) -> str:
    match = re.search(r"(?:douban\.com/subject/|douban=)(\d+)", value)
    if match:
        return match.group(1)
    return value if re.fullmatch(r"\d+", value) else ""


def parse_int_filter(value: str) -> str:
    try:
        return str(int(value.replace(",", "").strip()))
    except ValueError:
        return "0"


def parse_float_filter(value: str) -> str:
    return _format_number(_as_float(value))


def multiply_filter(value: str, factor: Any = 1) -> str:
    return _format_number(_as_float(value) * _as_float(factor))


def divide_filter(value: str, divisor: Any = 1) -> str:
    amount = _as_float(divisor)
    if amount == 0:
        return _format_number(_as_float(value))
    return _format_number(_as_float(value) / amount)


def trim_filter(value: str, chars: str | None = None) -> str:
    return value.strip(chars) if chars else value.strip()


# Closed name -> function table. Definitions can only reference these.
FILTERS: dict[str, FilterFunc] = {
    "parseNumber": parse_number_filter,
    "parseSize": parse_size_filter,
    "parseTime": parse_time_filter,
    "querystring": querystring_filter,
    "split": split_filter,
    "regex": regex_filter,
    "regexReplace": regex_replace_filter,
    "sumRegexMatches": sum_regex_matches_filter,
    "prepend": lambda value, prefix="": f"{prefix}{value}",
    "append": lambda value, suffix="": f"{value}{suffix}",
    "replace": lambda value, old="", new="": value.replace(old, new) if old else value,
    "trim": trim_filter,
    "toLowerCase": lambda value: value.lower(),
    "toUpperCase": lambda value: value.upper(),
    "default": lambda value, fallback="": value if value else str(fallback),
    "multiply": multiply_filter,
    "divide": divide_filter,
    "parseInt": parse_int_filter,
    "parseFloat": parse_float_filter,
    "extImdbId": ext_imdb_id_filter,
    "extDoubanId": ext_douban_id_filter,
}


@dataclass(frozen=True)
class Filter:
    """A filter reference resolved against ``FILTERS`` when constructed."""

    name: str
    args: tuple[Any, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.name not in FILTERS:
            raise UnknownFilterError(self.name)

    def apply(self, value: str) -> str:
        return FILTERS[self.name](value, *self.args)


def build_filters(raw: Any) -> tuple[Filter, ...]:
    """
    Build a filter chain from its declarative form.

    Accepts a list whose entries are either a bare filter name or a mapping
    ``{"name": ..., "args": [...]}``.
    """
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise DefinitionError("filters must be a list")
    chain: list[Filter] = []
    for entry in raw:
        if isinstance(entry, str):
            chain.append(Filter(entry))
        elif isinstance(entry, dict) and isinstance(entry.get("name"), str):
            args = entry.get("args") or []
            if not isinstance(args, list):
                args = [args]
            chain.append(Filter(entry["name"], tuple(args)))
        else:
            raise DefinitionError(f"invalid filter entry: {entry!r}")
    return tuple(chain)


def apply_filters(value: str, filters: tuple[Filter, ...] | list[Filter]) -> str:
    for item in filters:
        value = item.apply(value)
    return value
