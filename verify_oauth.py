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

"""OAuth 2.0 token acquisition against the tenant authorization server.

Two grants are supported: client credentials (API clients) and the device
authorization grant (interactive users). Nothing here touches local storage;
callers persist the returned token.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import requests

from verify_errors import AuthenticationError, SerializationError
from verify_resources import RESOURCE_KIND_PREFIX, load_resource_file

LOG = logging.getLogger("verifyctl")

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
DEFAULT_POLL_INTERVAL = 5
# RFC 8628 section 3.5
SLOW_DOWN_INCREMENT = 5
TOKEN_REQUEST_TIMEOUT = 60
AUTH_RESOURCE_KIND = RESOURCE_KIND_PREFIX + "Auth"


def token_url(tenant: str) -> str:
    return f"https://{tenant}/oauth2/token"


def device_authorization_url(tenant: str) -> str:
    return f"https://{tenant}/oauth2/device_authorization"


def client_params(client_id: str, client_secret: Optional[str]) -> dict:
    # client_secret_post; public clients send the id alone
    params = {"client_id": client_id}
    if client_secret:
        params["client_secret"] = client_secret
    return params


def _post_form(url: str, data: dict) -> requests.Response:
    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }
    try:
        return requests.post(url, data=data, headers=headers, timeout=TOKEN_REQUEST_TIMEOUT, allow_redirects=False)
    except requests.RequestException as e:
        LOG.error("Token request to %s failed: %s", url, e)
        raise AuthenticationError(f"unable to reach the authorization server: {e}")


def _json_body(resp) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _oauth_error(data: dict) -> str:
    err = data.get("error") or "unknown_error"
    desc = data.get("error_description")
    return f"{err}: {desc}" if desc else err


def token_with_client_credentials(tenant: str, client_id: str, client_secret: Optional[str] = None,
                                  scopes: Optional[Sequence[str]] = None) -> str:
    data = {"grant_type": "client_credentials"}
    data.update(client_params(client_id, client_secret))
    if scopes:
        data["scope"] = " ".join(scopes)
    url = token_url(tenant)
    LOG.debug("Requesting client_credentials token from %s for client %s", url, client_id)
    resp = _post_form(url, data)
    body = _json_body(resp)
    if resp.status_code != 200:
        LOG.error("Token endpoint rejected the client credentials; status=%d", resp.status_code)
        raise AuthenticationError(f"unable to authenticate the client; {_oauth_error(body)} (status={resp.status_code})")
    token = body.get("access_token")
    if not isinstance(token, str) or not token:
        raise AuthenticationError("token endpoint did not return an access_token")
    return token


@dataclass
class DeviceAuthorization:
    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: Optional[str] = None
    expires_in: int = 0
    interval: int = DEFAULT_POLL_INTERVAL

    @property
    def login_url(self) -> str:
        return self.verification_uri_complete or self.verification_uri


def authorize_with_device_flow(tenant: str, client_id: str, client_secret: Optional[str] = None,
                               scopes: Optional[Sequence[str]] = None) -> DeviceAuthorization:
    data = client_params(client_id, client_secret)
    if scopes:
        data["scope"] = " ".join(scopes)
    url = device_authorization_url(tenant)
    LOG.debug("Starting device authorization at %s for client %s", url, client_id)
    resp = _post_form(url, data)
    body = _json_body(resp)
    if resp.status_code != 200:
        raise AuthenticationError(f"device authorization failed; {_oauth_error(body)} (status={resp.status_code})")
    missing = [k for k in ("device_code", "user_code", "verification_uri") if not body.get(k)]
    if missing:
        raise AuthenticationError(f"device authorization response is missing {', '.join(missing)}")
    return DeviceAuthorization(
        device_code=body["device_code"],
        user_code=body["user_code"],
        verification_uri=body["verification_uri"],
        verification_uri_complete=body.get("verification_uri_complete"),
        expires_in=int(body.get("expires_in") or 0),
        interval=int(body.get("interval") or DEFAULT_POLL_INTERVAL),
    )


def token_with_device_flow(tenant: str, client_id: str, client_secret: Optional[str], device_auth: DeviceAuthorization,
                           sleep: Callable[[float], None] = time.sleep,
                           clock: Callable[[], float] = time.monotonic) -> str:
    """Poll the token endpoint until the operator finishes the browser step.

    Fails on denial, on expiry of the device code (reported by the server or
    past ``expires_in`` locally) and on any other OAuth error.
    """
    data = {"grant_type": DEVICE_CODE_GRANT, "device_code": device_auth.device_code}
    data.update(client_params(client_id, client_secret))
    url = token_url(tenant)
    interval = max(1, device_auth.interval)
    deadline = clock() + device_auth.expires_in if device_auth.expires_in > 0 else None

    while True:
        if deadline is not None and clock() >= deadline:
            raise AuthenticationError("device code expired before the login was completed")
        sleep(interval)
        resp = _post_form(url, data)
        body = _json_body(resp)
        if resp.status_code == 200:
            token = body.get("access_token")
            if not isinstance(token, str) or not token:
                raise AuthenticationError("token endpoint did not return an access_token")
            return token
        error = body.get("error")
        if error == "authorization_pending":
            LOG.debug("Authorization pending; polling again in %ds", interval)
            continue
        if error == "slow_down":
            interval += SLOW_DOWN_INCREMENT
            LOG.debug("Server asked to slow down; interval now %ds", interval)
            continue
        if error == "access_denied":
            raise AuthenticationError("the login request was denied")
        if error == "expired_token":
            raise AuthenticationError("device code expired before the login was completed")
        LOG.error("Device token request failed; status=%d", resp.status_code)
        raise AuthenticationError(f"unable to complete the device login; {_oauth_error(body)} (status={resp.status_code})")


# ---------- Auth properties file ----------

@dataclass
class AuthResource:
    client_id: str
    client_secret: Optional[str] = None
    user: bool = False
    grant_type: Optional[str] = None
    auth_type: Optional[str] = None


def str2bool(v) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).lower() in ("yes", "true", "t", "1")


def load_auth_resource(path: str) -> AuthResource:
    obj = load_resource_file(path)
    if obj.kind != AUTH_RESOURCE_KIND:
        raise SerializationError(f"invalid resource kind '{obj.kind}'; expected {AUTH_RESOURCE_KIND}")
    data = obj.data or {}
    if not isinstance(data, dict):
        raise SerializationError("auth resource 'data' must be a mapping")
    res = AuthResource(
        client_id=str(data.get("client_id") or ""),
        client_secret=data.get("client_secret") or None,
        user=str2bool(data.get("user", False)),
        grant_type=data.get("grant_type") or None,
        auth_type=data.get("auth_type") or None,
    )
    if res.auth_type and res.auth_type != "client_secret_post":
        raise AuthenticationError(f"client authentication '{res.auth_type}' is not supported")
    if res.user and res.grant_type not in (None, "device_code"):
        raise AuthenticationError(f"user grant type '{res.grant_type}' is not supported; use device_code")
    return res


def acquire_token(tenant: str, client_id: str, client_secret: Optional[str], user: bool,
                  notify: Callable[[str], None], sleep: Callable[[float], None] = time.sleep) -> str:
    if not user:
        return token_with_client_credentials(tenant, client_id, client_secret)
    device_auth = authorize_with_device_flow(tenant, client_id, client_secret)
    if device_auth.verification_uri_complete:
        notify(f"Complete login by accessing the URL: {device_auth.verification_uri_complete}")
    else:
        notify(f"Complete login by accessing the URL: {device_auth.verification_uri} and entering the code {device_auth.user_code}")
    return token_with_device_flow(tenant, client_id, client_secret, device_auth, sleep=sleep)
