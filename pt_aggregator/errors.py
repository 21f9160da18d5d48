# pt_aggregator/errors.py

from __future__ import annotations

RAW_SNIPPET_LIMIT = 500


class SiteError(Exception):
    """Base class for every error raised while talking to a tracker site."""


class InvalidCredentialsError(SiteError):
    """Authentication was rejected (HTTP 401/403). Never retried."""

    def __init__(self, message: str = "invalid credentials") -> None:
        super().__init__(message)


class SessionExpiredError(SiteError):
    """The site answered an authenticated request with its login page."""

    def __init__(self, message: str = "session expired") -> None:
        super().__init__(message)


class FieldNotFoundError(SiteError):
    def __init__(self, field: str) -> None:
        super().__init__(f"field not found: {field}")
        self.field = field


class AssertionFailedError(SiteError):
    """A value extracted in one step disagrees with one captured earlier."""

    def __init__(self, field: str, expected: str, actual: str) -> None:
        super().__init__(
            f"assertion failed for '{field}': expected {expected!r}, got {actual!r}"
        )
        self.field = field
        self.expected = expected
        self.actual = actual


class ParseError(SiteError):
    """Malformed or unexpectedly shaped payload.

    ``raw`` keeps a bounded snippet of the offending payload for diagnosis.
    """

    def __init__(
        self, message: str, raw: str | bytes = "", limit: int = RAW_SNIPPET_LIMIT
    ) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        self.raw = raw[:limit]
        super().__init__(f"{message} (raw: {self.raw!r})" if self.raw else message)


class UpstreamAPIError(SiteError):
    """The remote API reported a non-success application code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"API error {code}: {message}")
        self.code = code
        self.message = message


class HTTPStatusError(SiteError):
    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"unexpected HTTP status {status_code} for {url}")
        self.status_code = status_code
        self.url = url


class AllURLsFailedError(SiteError):
    """Every candidate base URL failed; wraps the last attempt's error."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"all {attempts} URL(s) failed, last error: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class NoURLsError(SiteError):
    def __init__(self, site_id: str = "") -> None:
        super().__init__(f"no base URLs configured for site '{site_id}'")


class UnsupportedOperationError(SiteError):
    pass


class DefinitionError(ValueError):
    """A declarative site definition is malformed."""


class UnknownFilterError(DefinitionError):
    def __init__(self, name: str) -> None:
        super().__init__(f"unknown filter: {name}")
        self.name = name


class ConfigError(ValueError):
    """A site configuration entry is invalid."""


class RequestError(SiteError):
    """The transport failed before any HTTP status was received."""
