# pt_aggregator/services/normalizer.py

from __future__ import annotations

import re

RESOLUTION_PATTERNS = {
    "2160p": re.compile(r"\b(2160p|4k|uhd)\b", re.IGNORECASE),
    "1080p": re.compile(r"\b(1080p|1080i)\b", re.IGNORECASE),
    "720p": re.compile(r"\b720p\b", re.IGNORECASE),
    "480p": re.compile(r"\b(480p|sd)\b", re.IGNORECASE),
}

ENCODING_PATTERNS = {
    "H.264": re.compile(r"\b(h\.?264|x264|avc)\b", re.IGNORECASE),
    "H.265": re.compile(r"\b(h\.?265|x265|hevc)\b", re.IGNORECASE),
    "AV1": re.compile(r"\bav1\b", re.IGNORECASE),
    "VP9": re.compile(r"\bvp9\b", re.IGNORECASE),
}

FORMAT_PATTERNS = {
    "BluRay": re.compile(r"\b(blu-?ray|bdrip|bdremux)\b", re.IGNORECASE),
    "WEB-DL": re.compile(r"\b(web-?dl|webdl)\b", re.IGNORECASE),
    "WEBRip": re.compile(r"\bwebrip\b", re.IGNORECASE),
    "HDTV": re.compile(r"\bhdtv\b", re.IGNORECASE),
    "DVDRip": re.compile(r"\b(dvdrip|dvd-?r)\b", re.IGNORECASE),
}

# Leading "[Site]" style prefix some trackers add to release names.
_SITE_PREFIX = re.compile(r"^\s*\[[^\]]+\]\s*")
_WHITESPACE = re.compile(r"\s+")


def _first_match(title: str, patterns: dict[str, re.Pattern[str]]) -> str:
    for standard, pattern in patterns.items():
        if pattern.search(title):
            return standard
    return ""


def _standardize(title: str, patterns: dict[str, re.Pattern[str]]) -> str:
    for standard, pattern in patterns.items():
        if pattern.search(title):
            return pattern.sub(standard, title)
    return title


def normalize_title(title: str) -> str:
    """
    Canonicalises a release name so the same release from different sites
    compares equal: strips a leading ``[Site]`` tag, rewrites the first
    resolution/encoding/format token found to its standard spelling and
    collapses whitespace.
    """
    title = _SITE_PREFIX.sub("", title)
    for patterns in (RESOLUTION_PATTERNS, ENCODING_PATTERNS, FORMAT_PATTERNS):
        title = _standardize(title, patterns)
    return _WHITESPACE.sub(" ", title.strip())


def normalize_tags(tags: list[str]) -> list[str]:
    """Lower-case, trim and de-duplicate tags, keeping first-seen order."""
    normalized: list[str] = []
    for tag in tags:
        cleaned = tag.strip().lower()
        if cleaned and cleaned not in normalized:
            normalized.append(cleaned)
    return normalized


def extract_resolution(title: str) -> str:
    return _first_match(title, RESOLUTION_PATTERNS)


def extract_encoding(title: str) -> str:
    return _first_match(title, ENCODING_PATTERNS)


def extract_format(title: str) -> str:
    return _first_match(title, FORMAT_PATTERNS)
