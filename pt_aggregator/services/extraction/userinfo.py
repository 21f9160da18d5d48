# pt_aggregator/services/extraction/userinfo.py

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ...config import logger
from ...errors import (
    AssertionFailedError,
    DefinitionError,
    FieldNotFoundError,
    InvalidCredentialsError,
    SessionExpiredError,
    SiteError,
)
from ...models import UserInfo
from ...utils import parse_number, parse_size, parse_time
from .selectors import FieldSelector, build_selector_map, extract_field, extract_json_field

_RESPONSE_TYPES = {"document", "json"}
_PARAM_PREFIX = "params."


@dataclass(frozen=True)
class RequestConfig:
    url: str
    method: str = "GET"
    params: dict[str, str] = field(default_factory=dict)
    data: dict[str, str] = field(default_factory=dict)
    response_type: str = "document"
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RequestConfig:
        url = raw.get("url")
        if not isinstance(url, str) or not url:
            raise DefinitionError("request_config.url is required")
        response_type = raw.get("response_type", "document")
        if response_type not in _RESPONSE_TYPES:
            raise DefinitionError(f"unsupported response_type: {response_type}")
        return cls(
            url=url,
            method=str(raw.get("method", "GET")).upper(),
            params={str(k): str(v) for k, v in (raw.get("params") or {}).items()},
            data={str(k): str(v) for k, v in (raw.get("data") or {}).items()},
            response_type=response_type,
            headers={str(k): str(v) for k, v in (raw.get("headers") or {}).items()},
        )

    def with_params(self, extra: dict[str, str]) -> RequestConfig:
        if not extra:
            return self
        return RequestConfig(
            url=self.url,
            method=self.method,
            params={**self.params, **extra},
            data=dict(self.data),
            response_type=self.response_type,
            headers=dict(self.headers),
        )


@dataclass(frozen=True)
class UserInfoProcess:
    """One fetch step.

    ``assertion`` maps a query parameter to a value captured by an earlier
    step, written as ``params.<field>``. The value is sent with the request
    and, if this step extracts the same field again, both must agree.
    """

    request_config: RequestConfig
    fields: tuple[str, ...] = ()
    assertion: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class UserInfoConfig:
    process: tuple[UserInfoProcess, ...]
    selectors: dict[str, FieldSelector]
    pick_last: frozenset[str] = frozenset()
    # Milliseconds to wait between steps
    request_delay: int = 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> UserInfoConfig:
        selectors = build_selector_map(raw.get("selectors"))
        steps: list[UserInfoProcess] = []
        for entry in raw.get("process") or []:
            fields = tuple(entry.get("fields") or [])
            unknown = [name for name in fields if name not in selectors]
            if unknown:
                raise DefinitionError(
                    f"fields without selectors: {', '.join(unknown)}"
                )
            assertion = {str(k): str(v) for k, v in (entry.get("assertion") or {}).items()}
            for ref in assertion.values():
                if not ref.startswith(_PARAM_PREFIX):
                    raise DefinitionError(f"assertion must reference params.<field>: {ref}")
            steps.append(
                UserInfoProcess(
                    request_config=RequestConfig.from_dict(entry.get("request_config") or {}),
                    fields=fields,
                    assertion=assertion,
                )
            )
        if not steps:
            raise DefinitionError("user_info.process must contain at least one step")
        return cls(
            process=tuple(steps),
            selectors=selectors,
            pick_last=frozenset(raw.get("pick_last") or []),
            request_delay=int(raw.get("request_delay") or 0),
        )


@dataclass
class UserInfoResult:
    values: dict[str, str] = field(default_factory=dict)
    failed_assertion: AssertionFailedError | None = None


StepFetcher = Callable[[RequestConfig], Awaitable[Any]]


def extract_step_fields(
    document: Any, process: UserInfoProcess, selectors: dict[str, FieldSelector]
) -> dict[str, str]:
    """Extract the fields a step declares; missing ones are simply absent."""
    is_json = process.request_config.response_type == "json"
    values: dict[str, str] = {}
    for name in process.fields:
        selector = selectors[name]
        try:
            if is_json:
                values[name] = extract_json_field(document, selector, name)
            else:
                values[name] = extract_field(document, selector, name)
        except FieldNotFoundError:
            logger.debug(f"[EXTRACT] Field '{name}' not found")
    return values


def _bind_assertions(
    process: UserInfoProcess, captured: dict[str, str]
) -> tuple[RequestConfig, dict[str, str]]:
    params: dict[str, str] = {}
    expected: dict[str, str] = {}
    for param, ref in process.assertion.items():
        source = ref[len(_PARAM_PREFIX):]
        value = captured.get(source)
        if not value:
            raise AssertionFailedError(source, "<captured value>", "")
        params[param] = value
        expected[source] = value
    return process.request_config.with_params(params), expected


async def run_user_info_process(
    config: UserInfoConfig,
    fetch: StepFetcher,
    *,
    start: int = 0,
    stop: int | None = None,
    result: UserInfoResult | None = None,
) -> UserInfoResult:
    """
    Execute the configured fetch steps in order and collect field values.

    Authentication failures propagate. Other request failures only skip the
    step. An assertion mismatch stops the remaining steps but keeps every
    value captured before it.

    ``start`` and ``stop`` select a slice of the steps; passing the
    ``result`` of an earlier call resumes from the values it captured.
    """
    if result is None:
        result = UserInfoResult()
    if result.failed_assertion is not None:
        return result
    captured = result.values

    for index, process in enumerate(config.process[start:stop], start):
        if index and config.request_delay > 0:
            await asyncio.sleep(config.request_delay / 1000)

        try:
            request, expected = _bind_assertions(process, captured)
        except AssertionFailedError as exc:
            logger.warning(f"[EXTRACT] Aborting user info steps: {exc}")
            result.failed_assertion = exc
            break

        try:
            document = await fetch(request)
        except (InvalidCredentialsError, SessionExpiredError):
            raise
        except SiteError as exc:
            logger.warning(
                f"[EXTRACT] User info step {request.url} failed, skipping: {exc}"
            )
            continue

        values = extract_step_fields(document, process, config.selectors)

        try:
            for name, want in expected.items():
                got = values.get(name)
                if got is not None and got != want:
                    raise AssertionFailedError(name, want, got)
        except AssertionFailedError as exc:
            logger.warning(f"[EXTRACT] Aborting user info steps: {exc}")
            result.failed_assertion = exc
            break

        for name, value in values.items():
            if name in captured and name not in config.pick_last:
                continue
            captured[name] = value

    return result


def independent_step_count(config: UserInfoConfig) -> int:
    """Number of leading steps that need nothing captured by another step."""
    for index, process in enumerate(config.process):
        if process.assertion:
            return index
    return len(config.process)


def _to_int(value: str) -> int | None:
    try:
        return int(float(value.replace(",", "")))
    except (ValueError, OverflowError):
        return None


def _to_epoch(value: str) -> int:
    if value.isdigit():
        return int(value)
    return parse_time(value)


def _parse_ratio(value: str) -> float:
    lowered = value.strip().lower()
    if lowered in {"inf", "infinity", "∞", "---"}:
        return -1.0
    return parse_number(value)


def apply_user_info_fields(info: UserInfo, values: dict[str, str]) -> UserInfo:
    """Copy extracted string values onto ``info`` by field name."""
    for name, value in values.items():
        if name == "id":
            info.user_id = value
        elif name in ("name", "username"):
            info.username = value
        elif name == "uploaded":
            info.uploaded = parse_size(value)
        elif name == "downloaded":
            info.downloaded = parse_size(value)
        elif name == "ratio":
            info.ratio = _parse_ratio(value)
        elif name == "bonus":
            info.bonus = parse_number(value)
        elif name in ("levelName", "rank", "class"):
            info.rank = value
        elif name == "levelId":
            info.level_id = _to_int(value) or 0
        elif name == "seedingBonus":
            info.seeding_bonus = parse_number(value)
        elif name == "bonusPerHour":
            info.bonus_per_hour = parse_number(value)
        elif name in ("joinTime", "joinDate"):
            info.join_date = _to_epoch(value)
        elif name in ("lastAccess", "lastAccessAt"):
            info.last_access = _to_epoch(value)
        elif name in ("seederSize", "seedingSize"):
            info.seeder_size = parse_size(value)
        elif name == "leecherSize":
            info.leecher_size = parse_size(value)
        else:
            count = _to_int(value)
            if count is None:
                continue
            if name in ("messageCount", "unreadMessageCount"):
                info.unread_message_count = count
            elif name == "totalMessageCount":
                info.total_message_count = count
            elif name == "hnrUnsatisfied":
                info.hnr_unsatisfied = count
            elif name == "hnrPreWarning":
                info.hnr_pre_warning = count
            elif name in ("seeding", "seederCount"):
                info.seeding = count
                info.seeder_count = count
            elif name in ("leeching", "leecherCount"):
                info.leeching = count
                info.leecher_count = count
            elif name == "uploads":
                info.uploads = count

    if info.ratio == 0 and info.downloaded > 0:
        info.ratio = info.uploaded / info.downloaded
    return info
