from unittest import mock

import pytest
import requests

import verify_http as vh
from verify_errors import SerializationError, TransportError


def _requests_response(code, content=b"", headers=None):
    r = requests.models.Response()
    r.status_code = code
    r._content = content
    r._content_consumed = True
    for k, v in (headers or {}).items():
        r.headers[k] = v
    return r


# Test intent: a plain GET is buffered into a Response, redirects are never
# followed and the configured timeout is passed through.
def test_get_buffers_body_and_disables_redirects():
    session = mock.Mock()
    session.request.return_value = _requests_response(200, b'{"a": 1}', {"Content-Type": "application/json"})
    client = vh.HTTPClient(session=session, timeout=12)

    out = client.get("https://t.example.com/v2.0/Users", vh.bearer_headers("tok"))

    assert out.status_code == 200
    assert out.json() == {"a": 1}
    _, kwargs = session.request.call_args
    assert kwargs["allow_redirects"] is False
    assert kwargs["timeout"] == 12
    assert kwargs["headers"]["Authorization"] == "Bearer tok"


# Test intent: a redirect response is a transport failure.
def test_redirect_is_rejected():
    session = mock.Mock()
    session.request.return_value = _requests_response(302, b"", {"Location": "https://elsewhere/"})
    client = vh.HTTPClient(session=session)

    with pytest.raises(TransportError) as exc:
        client.get("https://t.example.com/v2.0/Users", {})
    assert exc.value.message == "redirects not allowed"


# Test intent: any 3xx is refused even when the service sends no Location
# header; 304 is not a redirect.
@pytest.mark.parametrize("code", [301, 302, 303, 307, 308])
def test_redirect_without_location_is_rejected(code):
    session = mock.Mock()
    session.request.return_value = _requests_response(code)
    client = vh.HTTPClient(session=session)

    with pytest.raises(TransportError):
        client.get("https://t.example.com/v2.0/Users", {})


def test_not_modified_is_returned():
    session = mock.Mock()
    session.request.return_value = _requests_response(304)
    assert vh.HTTPClient(session=session).get("https://t/x", {}).status_code == 304


# Test intent: response headers keep case-insensitive lookup.
def test_response_headers_case_insensitive():
    session = mock.Mock()
    session.request.return_value = _requests_response(201, b"", {"Location": "https://t/v2.0/Groups/g-1"})
    out = vh.HTTPClient(session=session).post("https://t/v2.0/Groups", {}, "{}")
    assert out.headers["location"] == "https://t/v2.0/Groups/g-1"
    assert out.headers["LOCATION"] == "https://t/v2.0/Groups/g-1"


# Test intent: connection failures are reported as transport errors.
def test_connection_error_is_transport_error():
    session = mock.Mock()
    session.request.side_effect = requests.ConnectionError("dns failure")
    client = vh.HTTPClient(session=session)

    with pytest.raises(TransportError):
        client.delete("https://t.example.com/v2.0/Users/u-1", {})


# Test intent: multipart uploads hand the files mapping to requests.
def test_put_multipart_passes_files():
    session = mock.Mock()
    session.request.return_value = _requests_response(204)
    client = vh.HTTPClient(session=session)
    files = {"files": ("theme.zip", b"PK", "application/zip")}

    out = client.put_multipart("https://t/x", {}, files)

    assert out.status_code == 204
    args, kwargs = session.request.call_args
    assert args[0] == "PUT"
    assert kwargs["files"] == files


# Test intent: a body that is not JSON raises a serialization error on json().
def test_response_json_invalid():
    with pytest.raises(SerializationError):
        vh.Response(status_code=200, body=b"not json").json()


# Test intent: URL building quotes path segments and drops empty query values.
def test_build_url():
    url = vh.build_url("t.example.com", "/v1.0/branding/themes/", "abc", "templates/en/page.html",
                       query={"customized_only": "true", "skip": None, "empty": ""})
    assert url == "https://t.example.com/v1.0/branding/themes/abc/templates/en/page.html?customized_only=true"
    assert vh.build_url("t", "v2.0/Users", "a b") == "https://t/v2.0/Users/a%20b"
