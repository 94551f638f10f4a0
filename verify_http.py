# MIT License
# Copyright (c) 2025 Gordon Trevorrow
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import requests
from requests.structures import CaseInsensitiveDict

from verify_errors import SerializationError, TransportError, body_text

LOG = logging.getLogger("verifyctl")

# Generous ceiling so slow log queries are not cut off
DEFAULT_TIMEOUT = 30 * 60
JSON = "application/json"
SCIM_JSON = "application/scim+json"
OCTET_STREAM = "application/octet-stream"


@dataclass
class Response:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def text(self) -> str:
        return body_text(self.body)

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except ValueError as e:
            raise SerializationError(f"failed to parse response: {e}")


def bearer_headers(token: str, accept: Optional[str] = JSON, content_type: Optional[str] = None) -> Dict[str, str]:
    headers = {"Authorization": f"Bearer {token}"}
    if accept:
        headers["Accept"] = accept
    if content_type:
        headers["Content-Type"] = content_type
    return headers


def build_url(tenant: str, path: str, *segments, query: Optional[Dict[str, Any]] = None) -> str:
    url = f"https://{tenant}/{path.strip('/')}"
    for seg in segments:
        url += "/" + quote(str(seg), safe="/")
    if query:
        params = {k: v for k, v in query.items() if v not in (None, "")}
        if params:
            url += "?" + urlencode(params)
    return url


class HTTPClient:
    """Thin wrapper over a shared requests.Session.

    Every call returns a fully buffered Response. Redirects are never followed
    and headers are supplied per call.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT):
        self.session = session or requests.Session()
        self.timeout = timeout

    def get(self, url: str, headers: Dict[str, str]) -> Response:
        return self._do("GET", url, headers)

    def post(self, url: str, headers: Dict[str, str], body=None) -> Response:
        return self._do("POST", url, headers, data=body)

    def put(self, url: str, headers: Dict[str, str], body=None) -> Response:
        return self._do("PUT", url, headers, data=body)

    def patch(self, url: str, headers: Dict[str, str], body=None) -> Response:
        return self._do("PATCH", url, headers, data=body)

    def delete(self, url: str, headers: Dict[str, str]) -> Response:
        return self._do("DELETE", url, headers)

    def post_multipart(self, url: str, headers: Dict[str, str], files: Dict[str, Any], fields: Optional[Dict[str, str]] = None) -> Response:
        return self._do("POST", url, headers, data=fields, files=files)

    def put_multipart(self, url: str, headers: Dict[str, str], files: Dict[str, Any], fields: Optional[Dict[str, str]] = None) -> Response:
        return self._do("PUT", url, headers, data=fields, files=files)

    def _do(self, method: str, url: str, headers: Dict[str, str], data=None, files=None) -> Response:
        LOG.debug("%s %s", method, url)
        try:
            resp = self.session.request(
                method,
                url,
                headers=dict(headers or {}),
                data=data,
                files=files,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.RequestException as e:
            LOG.error("%s %s failed: %s", method, url, e)
            raise TransportError(f"unable to reach {url}: {e}")
        try:
            # 304 is a cache validation answer, not a redirect
            if 300 <= resp.status_code < 400 and resp.status_code != 304:
                LOG.error("%s %s returned a redirect to %s", method, url, resp.headers.get("Location"))
                raise TransportError("redirects not allowed")
            try:
                content = resp.content
            except requests.RequestException as e:
                raise TransportError(f"unable to extract the body: {e}")
            out = Response(status_code=resp.status_code, headers=CaseInsensitiveDict(resp.headers), body=content or b"")
        finally:
            resp.close()
        LOG.debug("%s %s -> %d", method, url, out.status_code)
        return out


_DEFAULT_CLIENT: Optional[HTTPClient] = None


def default_client() -> HTTPClient:
    global _DEFAULT_CLIENT
    if _DEFAULT_CLIENT is None:
        _DEFAULT_CLIENT = HTTPClient()
    return _DEFAULT_CLIENT
