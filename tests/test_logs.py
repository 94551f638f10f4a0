import io
import json
from unittest import mock

import pytest

import verify_logs as vl
from verify_config import AuthConfig
from verify_errors import UnauthorizedError
from verify_http import Response

AUTH = AuthConfig(tenant="t.example.com", token="tok")
NOW = 10_000_000


def _logs(*entries):
    return Response(status_code=200, body=json.dumps({"logs": list(entries)}).encode("utf-8"))


# Test intent: trace, span, severity and custom pairs become AND-ed equality
# matches.
def test_build_filter():
    f = vl.build_filter(trace_id="t1", severity="error", custom="component=oauth&tenant=abc")
    assert f == {
        "op": "AND",
        "match": [
            {"key": "traceID", "op": "eq", "value": "t1"},
            {"key": "severity", "op": "eq", "value": "error"},
            {"key": "component", "op": "eq", "value": "oauth"},
            {"key": "tenant", "op": "eq", "value": "abc"},
        ],
    }
    assert vl.build_filter() == {"op": "AND", "match": []}


# Test intent: a custom filter that is not key=value pairs is rejected.
@pytest.mark.parametrize("custom", ["component", "a=b&c", "a=b=c"])
def test_build_filter_invalid_custom(custom):
    with pytest.raises(ValueError) as exc:
        vl.build_filter(custom=custom)
    assert str(exc.value) == "custom filter string is invalid."


# Test intent: a single query covers the last thirty minutes in ascending
# order and prints a header plus one row per entry.
def test_print_logs_once():
    http = mock.Mock()
    http.post.return_value = _logs({"timestamp": NOW - 5, "traceID": "t1", "spanID": "s1", "message": "hello", "severity": "info"})
    out = io.StringIO()

    vl.LogsClient(http=http).print_logs(AUTH, out, now=lambda: NOW)

    url, headers, body = http.post.call_args.args
    assert url == "https://t.example.com/v1.0/logs/query"
    assert headers["Content-Type"] == "application/json"
    req = json.loads(body)
    assert req["limit"] == 500
    assert req["sort"] == "asc"
    assert req["end"] == NOW
    assert req["start"] == NOW - 30 * 60 * 1000
    lines = out.getvalue().splitlines()
    assert lines[0].startswith("Timestamp")
    assert "hello" in lines[1] and "t1" in lines[1]


# Test intent: without follow, a failed query is returned to the caller.
def test_print_logs_once_propagates_errors():
    http = mock.Mock()
    http.post.return_value = Response(status_code=401)
    with pytest.raises(UnauthorizedError):
        vl.LogsClient(http=http).print_logs(AUTH, io.StringIO(), now=lambda: NOW)


# Test intent: while following, a failed poll is skipped, the loop sleeps ten
# seconds between polls and the next window starts after the last printed
# entry.
def test_follow_continues_after_errors():
    http = mock.Mock()
    http.post.side_effect = [
        _logs({"timestamp": NOW - 10, "message": "first"}),
        Response(status_code=500, body=b"oops"),
        _logs({"timestamp": NOW + 5, "message": "second"}),
    ]
    sleeps = []
    out = io.StringIO()

    vl.LogsClient(http=http).print_logs(AUTH, out, follow=True, sleep=sleeps.append, now=lambda: NOW, max_polls=3)

    assert sleeps == [10, 10]
    text = out.getvalue()
    assert "first" in text and "second" in text
    assert text.count("Timestamp") == 1
    third = json.loads(http.post.call_args_list[2].args[2])
    assert third["start"] == NOW - 9
