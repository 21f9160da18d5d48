import pytest

from pt_aggregator.errors import (
    AllURLsFailedError,
    InvalidCredentialsError,
    NoURLsError,
    RequestError,
    SessionExpiredError,
)
from pt_aggregator.services.failover import FailoverExecutor, build_base_url_rotation


def test_build_base_url_rotation_normalizes_and_dedupes():
    urls = [" https://a.example/ ", "https://a.example", "", None, "https://b.example/"]
    assert build_base_url_rotation(urls) == ["https://a.example", "https://b.example"]


def test_executor_requires_urls():
    with pytest.raises(NoURLsError):
        FailoverExecutor("demo", ["", "  "])


@pytest.mark.asyncio
async def test_execute_falls_through_to_next_mirror_and_remembers_it(caplog):
    executor = FailoverExecutor("demo", ["https://a.example", "https://b.example"])
    attempts = []

    async def attempt(base_url):
        attempts.append(base_url)
        if base_url == "https://a.example":
            raise RequestError("down")
        return f"ok from {base_url}"

    with caplog.at_level("WARNING"):
        assert await executor.execute(attempt) == "ok from https://b.example"

    assert attempts == ["https://a.example", "https://b.example"]
    assert executor.current_base_url == "https://b.example"
    assert "[FAILOVER]" in caplog.text

    attempts.clear()
    await executor.execute(attempt)
    assert attempts == ["https://b.example"]


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [InvalidCredentialsError(), SessionExpiredError()])
async def test_execute_does_not_retry_auth_errors(error):
    executor = FailoverExecutor("demo", ["https://a.example", "https://b.example"])
    attempts = []

    async def attempt(base_url):
        attempts.append(base_url)
        raise error

    with pytest.raises(type(error)):
        await executor.execute(attempt)
    assert attempts == ["https://a.example"]


@pytest.mark.asyncio
async def test_execute_wraps_last_error_when_all_fail():
    executor = FailoverExecutor("demo", ["https://a.example", "https://b.example"])

    async def attempt(base_url):
        raise RequestError(f"{base_url} down")

    with pytest.raises(AllURLsFailedError) as excinfo:
        await executor.execute(attempt)

    assert excinfo.value.attempts == 2
    assert "https://b.example down" in str(excinfo.value.last_error)


@pytest.mark.asyncio
async def test_single_url_errors_pass_through_unwrapped():
    executor = FailoverExecutor("demo", ["https://a.example"])

    async def attempt(base_url):
        raise RequestError("down")

    with pytest.raises(RequestError):
        await executor.execute(attempt)
