# pt_aggregator/services/extraction/selectors.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from ...config import logger
from ...errors import DefinitionError, FieldNotFoundError
from .filters import Filter, apply_filters, build_filters

# Attribute names that select serialized inner HTML instead of an attribute.
_HTML_ATTRS = {"html", "innerHTML"}


@dataclass(frozen=True)
class FieldSelector:
    """Declarative recipe for one field.

    ``selectors`` are tried in order; the first one producing a non-empty
    value wins. ``text`` is the fallback used when nothing matches, and
    ``filters`` post-process whatever value was found.
    """

    selectors: tuple[str, ...]
    text: str | None = None
    attr: str | None = None
    filters: tuple[Filter, ...] = ()

    @classmethod
    def from_dict(cls, raw: Any) -> FieldSelector:
        if not isinstance(raw, dict):
            raise DefinitionError(f"field selector must be a mapping, got {raw!r}")
        selector = raw.get("selector", [])
        if isinstance(selector, str):
            selectors = (selector,)
        elif isinstance(selector, list) and all(isinstance(s, str) for s in selector):
            selectors = tuple(selector)
        else:
            raise DefinitionError("selector must be a string or list of strings")
        text = raw.get("text")
        attr = raw.get("attr")
        return cls(
            selectors=selectors,
            text=str(text) if text is not None else None,
            attr=str(attr) if attr else None,
            filters=build_filters(raw.get("filters")),
        )


def _node_value(node: Tag, attr: str | None) -> str:
    if attr in _HTML_ATTRS:
        return node.decode_contents().strip()
    if attr:
        value = node.get(attr)
        if isinstance(value, list):
            return " ".join(value)
        return (value or "").strip()
    return node.get_text(" ", strip=True)


def _finish(value: str, field: FieldSelector, name: str) -> str:
    if not value:
        if field.text is None:
            raise FieldNotFoundError(name)
        value = field.text
    if value and field.filters:
        value = apply_filters(value, field.filters)
    return value


def extract_field(
    root: BeautifulSoup | Tag, field: FieldSelector, name: str = ""
) -> str:
    """Extract ``field`` from an HTML tree or raise ``FieldNotFoundError``."""
    value = ""
    for selector in field.selectors:
        try:
            node = root.select_one(selector)
        except SelectorSyntaxError as exc:
            logger.warning(f"[EXTRACT] Invalid selector '{selector}' for {name}: {exc}")
            continue
        if not isinstance(node, Tag):
            continue
        value = _node_value(node, field.attr)
        if value:
            break
    return _finish(value, field, name)


def lookup_path(data: Any, path: str) -> Any:
    """Walk a dotted path such as ``data.memberCount.uploaded``.

    Integer segments index into lists. Returns ``None`` when any segment is
    missing.
    """
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.lstrip("-").isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _json_scalar(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def extract_json_field(data: Any, field: FieldSelector, name: str = "") -> str:
    """JSON counterpart of ``extract_field``; selectors are dotted paths."""
    value = ""
    for selector in field.selectors:
        value = _json_scalar(lookup_path(data, selector))
        if value:
            break
    return _finish(value, field, name)


def build_selector_map(raw: Any) -> dict[str, FieldSelector]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise DefinitionError("selectors must be a mapping of field name to selector")
    return {str(key): FieldSelector.from_dict(value) for key, value in raw.items()}
