# pt_aggregator/services/drivers/flexible.py

"""Decoding helpers for JSON fields that arrive as either strings or numbers."""

from __future__ import annotations

from typing import Any

from ...errors import ParseError

_SUCCESS_CODES = {"0", "SUCCESS", "200"}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class FlexibleCode(str):
    """Response code tolerant of ``"0"``, ``0`` and ``"SUCCESS"`` alike."""

    @classmethod
    def decode(cls, value: Any) -> FlexibleCode:
        # Order matters: strings are taken verbatim before numbers are rendered.
        if isinstance(value, str):
            return cls(value)
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(str(value))
        if isinstance(value, float):
            return cls(str(int(value)) if value.is_integer() else str(value))
        raise ParseError(f"cannot decode {value!r} as a response code", repr(value))

    def is_success(self) -> bool:
        return self.upper() in _SUCCESS_CODES


def flex_int(value: Any, field: str = "") -> int:
    """Decode an integer that may be sent as a JSON string ("" means 0)."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return 0
        try:
            return int(stripped)
        except ValueError as exc:
            raise ParseError(f"cannot parse integer field {field!r}", value) from exc
    if value is None:
        return 0
    raise ParseError(f"cannot decode {value!r} as integer field {field!r}", repr(value))


def flex_float(value: Any) -> float:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip() or 0)
        except ValueError:
            return 0.0
    return 0.0


def flex_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
