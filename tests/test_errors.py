import pytest

from pt_aggregator.errors import RAW_SNIPPET_LIMIT, ParseError


@pytest.mark.parametrize("raw", ["x" * 2000, b"x" * 2000])
def test_parse_error_keeps_bounded_snippet(raw):
    error = ParseError("bad payload", raw)

    assert error.raw == "x" * RAW_SNIPPET_LIMIT
    assert str(error).startswith("bad payload (raw: 'xxx")


def test_parse_error_without_payload_is_just_the_message():
    assert str(ParseError("bad payload")) == "bad payload"
    assert ParseError("bad", "abcdef", limit=3).raw == "abc"
