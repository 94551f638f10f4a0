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

"""Local credential file: one bearer token per tenant plus the current tenant.

Layout (YAML) at ``$VERIFY_HOME/config`` or ``~/.verify/config``::

    apiVersion: "1.0"
    kind: Config
    tenant: abc.verify.ibm.com
    auth:
      - tenant: abc.verify.ibm.com
        token: ...
        isUser: false
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import List, Optional

import yaml

from verify_errors import FilesystemError, SerializationError, SessionError

LOG = logging.getLogger("verifyctl")

API_VERSION = "1.0"
KIND = "Config"
CONFIG_FILENAME = "config"
DEFAULT_DIRNAME = ".verify"
HOME_ENV = "VERIFY_HOME"
NO_SESSION_MESSAGE = "No login session available. Use:\n  verifyctl auth -h"


def get_dir() -> str:
    configured = os.environ.get(HOME_ENV)
    if configured:
        return configured
    return os.path.join(os.path.expanduser("~"), DEFAULT_DIRNAME)


def create_or_get_dir() -> str:
    path = get_dir()
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"unable to create config directory {path}: {e}")
    try:
        os.chmod(path, 0o700)
    except Exception:
        pass
    return path


def config_path() -> str:
    return os.path.join(get_dir(), CONFIG_FILENAME)


@dataclass
class AuthConfig:
    tenant: str
    token: str
    user: bool = False

    def merge(self, other: "AuthConfig") -> None:
        self.tenant = other.tenant
        self.token = other.token
        self.user = other.user

    def to_dict(self) -> dict:
        return {"tenant": self.tenant, "token": self.token, "isUser": self.user}


@dataclass
class CLIConfig:
    api_version: str = API_VERSION
    kind: str = KIND
    current_tenant: str = ""
    auth: List[AuthConfig] = field(default_factory=list)

    def add_auth(self, auth: AuthConfig) -> None:
        for existing in self.auth:
            if existing.tenant == auth.tenant:
                existing.merge(auth)
                return
        self.auth.append(auth)

    def remove_auth(self, tenant: str) -> bool:
        before = len(self.auth)
        self.auth = [a for a in self.auth if a.tenant != tenant]
        if self.current_tenant == tenant:
            self.current_tenant = ""
        return len(self.auth) != before

    def set_current_tenant(self, tenant: str) -> None:
        self.current_tenant = tenant

    def get_current_auth(self) -> AuthConfig:
        if self.current_tenant:
            for a in self.auth:
                if a.tenant == self.current_tenant:
                    return a
        raise SessionError(NO_SESSION_MESSAGE)

    def to_dict(self) -> dict:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "tenant": self.current_tenant,
            "auth": [a.to_dict() for a in self.auth],
        }

    def load(self, path: Optional[str] = None) -> "CLIConfig":
        path = path or config_path()
        if not os.path.exists(path):
            # First run; the file is created on the first persist
            LOG.debug("No config file at %s; starting empty", path)
            return self
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise FilesystemError(f"unable to read config file {path}: {e}")
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise SerializationError(f"unable to parse config file {path}: {e}")
        self._apply(data or {}, path)
        return self

    def _apply(self, data, path: str) -> None:
        if not isinstance(data, dict):
            raise SerializationError(f"unable to parse config file {path}: expected a mapping")
        entries = data.get("auth") or []
        if not isinstance(entries, list):
            raise SerializationError(f"unable to parse config file {path}: 'auth' must be a list")
        sessions = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("tenant"):
                raise SerializationError(f"unable to parse config file {path}: invalid auth entry")
            sessions.append(AuthConfig(
                tenant=str(entry["tenant"]),
                token=str(entry.get("token") or ""),
                user=_parse_bool(entry.get("isUser", False), path),
            ))
        self.api_version = str(data.get("apiVersion") or API_VERSION)
        self.kind = str(data.get("kind") or KIND)
        self.current_tenant = str(data.get("tenant") or "")
        self.auth = []
        for s in sessions:
            self.add_auth(s)

    def persist(self, path: Optional[str] = None) -> "CLIConfig":
        try:
            content = yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)
        except yaml.YAMLError as e:
            raise SerializationError(f"unable to serialize config: {e}")
        if path is None:
            path = os.path.join(create_or_get_dir(), CONFIG_FILENAME)
        else:
            ensure_dir(path)
        write_secret_file(path, content.encode("utf-8"))
        LOG.debug("Persisted config with %d session(s) to %s", len(self.auth), path)
        return self


def _parse_bool(value, path: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise SerializationError(f"unable to parse config file {path}: isUser must be true or false")


def ensure_dir(path: str) -> None:
    directory = os.path.dirname(path) or "."
    try:
        os.makedirs(directory, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"unable to create directory {directory}: {e}")
    try:
        os.chmod(directory, 0o700)
    except Exception:
        pass


def write_secret_file(path: str, content: bytes) -> None:
    # temp file + rename so a failed write never leaves a truncated config
    directory = os.path.dirname(path) or "."
    try:
        fd, tmp = tempfile.mkstemp(prefix=".config-", dir=directory)
    except OSError as e:
        raise FilesystemError(f"unable to write {path}: {e}")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        try:
            os.chmod(tmp, 0o600)
        except Exception:
            pass
        os.replace(tmp, path)
    except OSError as e:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise FilesystemError(f"unable to write {path}: {e}")


def load_config(path: Optional[str] = None) -> CLIConfig:
    return CLIConfig().load(path)
