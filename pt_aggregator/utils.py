# pt_aggregator/utils.py

import math
import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

from .config import SITE_TIMEZONE_OFFSET

_SIZE_UNITS = {"": 0, "B": 0, "K": 1, "M": 2, "G": 3, "T": 4, "P": 5}
_SIZE_PATTERN = re.compile(r"(-?[\d.]+)\s*([KMGTP]?)(?:I?B)?\b", re.IGNORECASE)
_NUMBER_PATTERN = re.compile(r"-?[\d.]+")

_TIME_LAYOUTS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y-%m-%d",
)


def parse_size(text: str) -> int:
    """
    Converts a human readable size such as ``'1.5 GB'``, ``'500MiB'`` or
    ``'1,024 KB'`` into bytes using 1024-based units.

    Returns 0 when no size can be found.
    """
    if not text:
        return 0
    cleaned = text.replace(",", "").strip()
    match = _SIZE_PATTERN.search(cleaned)
    if not match:
        return 0
    try:
        value = float(match.group(1))
    except ValueError:
        return 0
    exponent = _SIZE_UNITS.get(match.group(2).upper(), 0)
    return int(value * 1024**exponent)


def parse_number(text: str) -> float:
    """Locale tolerant numeric parse; thousand separators are ignored."""
    if not text:
        return 0.0
    cleaned = text.replace(",", "").replace(" ", "")
    match = _NUMBER_PATTERN.search(cleaned)
    if not match:
        return 0.0
    try:
        return float(match.group(0))
    except ValueError:
        return 0.0


def parse_tz_offset(offset: str) -> timezone:
    """Accepts ``+08:00``, ``+0800`` or ``-05``; falls back to UTC."""
    match = re.fullmatch(r"([+-])(\d{2}):?(\d{2})?", (offset or "").strip())
    if not match:
        return timezone.utc
    sign = -1 if match.group(1) == "-" else 1
    hours = int(match.group(2))
    minutes = int(match.group(3) or 0)
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def parse_time(text: str, tz_offset: str = SITE_TIMEZONE_OFFSET) -> int:
    """
    Parses a site timestamp into Unix epoch seconds.

    Naive timestamps are interpreted in the site's local offset (China
    Standard Time unless told otherwise). Unix timestamps in seconds or
    milliseconds are accepted as-is. Returns 0 when nothing matches.
    """
    value = (text or "").strip()
    if not value:
        return 0

    if re.fullmatch(r"\d{9,13}", value):
        stamp = int(value)
        if stamp > 1_000_000_000_000:
            stamp //= 1000
        return stamp

    tz = parse_tz_offset(tz_offset)
    for layout in _TIME_LAYOUTS:
        try:
            parsed = datetime.strptime(value, layout)
        except ValueError:
            continue
        return int(parsed.replace(tzinfo=tz).timestamp())

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
    if parsed is not None:
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=tz)
        return int(parsed.timestamp())

    # RFC 1123, e.g. "Mon, 02 Jan 2006 15:04:05 GMT"
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return int(parsed.timestamp())


def format_bytes(size_bytes: int) -> str:
    """Converts bytes into a human-readable string (e.g., KB, MB, GB)."""
    if size_bytes <= 0:
        return "0B"
    size_name = ("B", "KB", "MB", "GB", "TB", "PB")
    i = min(int(math.floor(math.log(size_bytes, 1024))), len(size_name) - 1)
    p = math.pow(1024, i)
    s = round(size_bytes / p, 2)
    return f"{s} {size_name[i]}"
