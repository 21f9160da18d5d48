# pt_aggregator/services/failover.py

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from ..config import logger
from ..errors import (
    AllURLsFailedError,
    InvalidCredentialsError,
    NoURLsError,
    SessionExpiredError,
)

T = TypeVar("T")

# Errors that would fail identically on every mirror.
_NON_RETRYABLE = (InvalidCredentialsError, SessionExpiredError)


def build_base_url_rotation(base_urls: list[str] | tuple[str, ...]) -> list[str]:
    """Normalize base URLs into a unique list, preserving declared order."""

    def _normalize(url: str) -> str:
        return url.strip().rstrip("/")

    normalized: list[str] = []
    for candidate in base_urls:
        if not isinstance(candidate, str):
            continue
        cleaned = _normalize(candidate)
        if cleaned and cleaned not in normalized:
            normalized.append(cleaned)
    return normalized


class FailoverExecutor:
    """Runs an operation against a site's base URLs until one succeeds.

    The URL that last succeeded is tried first; the others follow in declared
    order. Each URL gets exactly one attempt per call.
    """

    def __init__(self, site_id: str, base_urls: list[str] | tuple[str, ...]) -> None:
        self.site_id = site_id
        self.base_url_candidates = build_base_url_rotation(base_urls)
        if not self.base_url_candidates:
            raise NoURLsError(site_id)
        self._last_successful_base_url: str | None = None

    @property
    def current_base_url(self) -> str:
        return self._last_successful_base_url or self.base_url_candidates[0]

    def iter_base_url_candidates(self) -> list[str]:
        """Return base URLs ordered with the last success first."""
        ordered: list[str] = []
        seen: set[str] = set()
        if isinstance(self._last_successful_base_url, str):
            ordered.append(self._last_successful_base_url)
            seen.add(self._last_successful_base_url)
        for candidate in self.base_url_candidates:
            if candidate not in seen:
                ordered.append(candidate)
                seen.add(candidate)
        return ordered

    async def execute(self, attempt: Callable[[str], Awaitable[T]]) -> T:
        """
        Call ``attempt(base_url)`` for each candidate until one returns.

        Authentication errors are raised immediately. When every URL fails,
        ``AllURLsFailedError`` wraps the last error.
        """
        candidates = self.iter_base_url_candidates()
        if len(candidates) == 1:
            return await self._execute_direct(candidates[0], attempt)

        last_error: Exception | None = None
        for base_url in candidates:
            try:
                result = await attempt(base_url)
            except _NON_RETRYABLE:
                raise
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(
                    f"[FAILOVER] {self.site_id}: {base_url} failed ({exc}); trying next mirror"
                )
                continue

            if base_url != self._last_successful_base_url:
                if self._last_successful_base_url is not None:
                    logger.info(f"[FAILOVER] {self.site_id}: Switched to {base_url}")
                self._last_successful_base_url = base_url
            return result

        assert last_error is not None
        logger.error(
            f"[FAILOVER] {self.site_id}: All {len(candidates)} base URLs failed"
        )
        raise AllURLsFailedError(last_error, len(candidates)) from last_error

    async def _execute_direct(
        self, base_url: str, attempt: Callable[[str], Awaitable[T]]
    ) -> T:
        result = await attempt(base_url)
        self._last_successful_base_url = base_url
        return result
