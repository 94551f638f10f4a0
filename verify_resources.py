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

"""Generic resource client, name-to-ID resolution and resource files.

Each resource type on the tenant is described by a ResourceType; a single
ResourceClient performs list/get/create/replace/patch/delete against it.
Operations that take a name first resolve it to the opaque identifier with a
filtered list call, then operate on that identifier.
"""

import io
import json
import logging
import os
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import toml
import yaml

from verify_errors import (
    FilesystemError,
    InvalidIdentifierError,
    NotFoundResolutionError,
    SerializationError,
    check_response,
    handle_common_errors,
)
from verify_http import JSON, OCTET_STREAM, SCIM_JSON, bearer_headers, build_url, default_client

LOG = logging.getLogger("verifyctl")

RESOURCE_API_VERSION = "1.0"
RESOURCE_KIND_PREFIX = "IBMVerify"
SCIM_PATCH_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"


# ---------- Resource types ----------

class FilterStyle(Enum):
    SCIM = "scim"
    SEARCH = "search"
    SEARCH_CONTAINS = "search_contains"

    @property
    def param(self) -> str:
        return "filter" if self is FilterStyle.SCIM else "search"

    def expression(self, name_field: str, value: str) -> str:
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        if self is FilterStyle.SCIM:
            return f'{name_field} eq "{escaped}"'
        if self is FilterStyle.SEARCH_CONTAINS:
            return f'{name_field} contains "{escaped}"'
        return f'{name_field} = "{escaped}"'


@dataclass(frozen=True)
class ResourceType:
    kind: str
    path: str
    list_key: Optional[str]
    name_field: Optional[str]
    filter_style: FilterStyle = FilterStyle.SEARCH
    id_type: type = str
    media_type: str = JSON
    create_status: int = 201
    update_method: str = "PUT"
    update_status: int = 204
    # page and limit travel urlencoded inside a single "pagination" parameter
    packed_pagination: bool = False

    @property
    def resource_kind(self) -> str:
        return RESOURCE_KIND_PREFIX + self.kind

    @property
    def resolvable(self) -> bool:
        return self.name_field is not None


RESOURCE_TYPES: Dict[str, ResourceType] = {
    "user": ResourceType("User", "v2.0/Users", "Resources", "userName", FilterStyle.SCIM, str, SCIM_JSON, update_method="PATCH"),
    "group": ResourceType("Group", "v2.0/Groups", "Resources", "displayName", FilterStyle.SCIM, str, SCIM_JSON, update_method="PATCH"),
    "identitysource": ResourceType("IdentitySource", "v2.0/identitysources", "identitySources", "instanceName"),
    "accesspolicy": ResourceType("AccessPolicy", "v5.0/policyvault/accesspolicy", "policies", "name", id_type=int),
    "apiclient": ResourceType("APIClient", "v1.0/apiclients", "apiClients", "clientName", FilterStyle.SEARCH_CONTAINS, packed_pagination=True),
    "attribute": ResourceType("Attribute", "v1.0/attributes", None, "name", packed_pagination=True),
    "application": ResourceType("Application", "v1.0/applications", None, None),
}

RESOURCE_ALIASES = {
    "users": "user",
    "groups": "group",
    "identitysources": "identitysource",
    "identity_source": "identitysource",
    "accesspolicies": "accesspolicy",
    "policy": "accesspolicy",
    "apiclients": "apiclient",
    "api_client": "apiclient",
    "attributes": "attribute",
    "applications": "application",
    "app": "application",
}


def get_resource_type(name: str) -> ResourceType:
    key = name.lower()
    key = RESOURCE_ALIASES.get(key, key)
    if key not in RESOURCE_TYPES:
        raise KeyError(f"unknown resource type '{name}'; choose from {', '.join(sorted(RESOURCE_TYPES))}")
    return RESOURCE_TYPES[key]


def resource_type_for_kind(kind: str) -> ResourceType:
    for rt in RESOURCE_TYPES.values():
        if rt.resource_kind == kind:
            return rt
    raise SerializationError(f"unsupported resource kind '{kind}'")


def extract_items(resource_type: ResourceType, data: Any) -> List[Any]:
    if resource_type.list_key is None:
        items = data
    else:
        items = data
        for part in resource_type.list_key.split("."):
            items = items.get(part) if isinstance(items, dict) else None
    if items is None:
        return []
    if not isinstance(items, list):
        raise SerializationError(f"unexpected {resource_type.kind} list format")
    return items


def extract_id(entry: Any, id_type: type) -> str:
    if not isinstance(entry, dict):
        raise InvalidIdentifierError("invalid resource format")
    value = entry.get("id")
    # bool is an int subclass; never accept it as a numeric id
    if value is None or isinstance(value, bool) or not isinstance(value, id_type):
        raise InvalidIdentifierError("ID not found or invalid type")
    return str(value)


# ---------- Name resolution ----------

def resolve_id(http, auth, resource_type: ResourceType, name: str) -> str:
    """Resolve a human-readable name to the resource identifier.

    Takes the first entry the service returns for the filter. Several
    directories allow duplicate names, in which case the result depends on
    server ordering; a warning is logged when that happens.
    """
    if not resource_type.resolvable:
        raise NotFoundResolutionError(f"{resource_type.kind} cannot be looked up by name; use its ID")
    field_name = resource_type.name_field
    style = resource_type.filter_style
    url = build_url(auth.tenant, resource_type.path, query={style.param: style.expression(field_name, name)})
    response = http.get(url, bearer_headers(auth.token, accept=resource_type.media_type))

    if response.status_code != 200:
        err = handle_common_errors(response, f"unable to get {resource_type.kind}")
        if err is not None:
            LOG.error("unable to get the %s with %s %s; err=%s", resource_type.kind, field_name, name, err.message)
        else:
            LOG.error("unable to get the %s ID; code=%d, body=%s", resource_type.kind, response.status_code, response.text)
        raise NotFoundResolutionError(f"no {resource_type.kind} found with {field_name} {name}")

    items = extract_items(resource_type, response.json())
    if style is FilterStyle.SEARCH_CONTAINS:
        items = [i for i in items if isinstance(i, dict) and i.get(field_name) == name]
    if not items:
        LOG.info("no %s found with %s %s", resource_type.kind, field_name, name)
        raise NotFoundResolutionError(f"no {resource_type.kind} found with {field_name} {name}")
    if len(items) > 1:
        LOG.warning("%d %s entries match %s %s; using the first", len(items), resource_type.kind, field_name, name)

    resource_id = extract_id(items[0], resource_type.id_type)
    LOG.debug("Resolved %s %s to ID %s", field_name, name, resource_id)
    return resource_id


# ---------- Generic client ----------

class ResourceClient:
    def __init__(self, resource_type: ResourceType, http=None):
        self.resource_type = resource_type
        self.http = http or default_client()

    @property
    def _kind(self) -> str:
        return self.resource_type.kind

    def _headers(self, auth, with_body: bool = False) -> Dict[str, str]:
        mt = self.resource_type.media_type
        return bearer_headers(auth.token, accept=mt, content_type=mt if with_body else None)

    def resolve_id(self, auth, name: str) -> str:
        return resolve_id(self.http, auth, self.resource_type, name)

    def list(self, auth, search: Optional[str] = None, sort: Optional[str] = None,
             count: Optional[int] = None, page: Optional[int] = None, limit: Optional[int] = None) -> Tuple[Any, str]:
        query: Dict[str, Any] = {}
        if search:
            query[self.resource_type.filter_style.param] = search
        if sort:
            query["sortBy" if self.resource_type.filter_style is FilterStyle.SCIM else "sort"] = sort
        if count:
            query["count"] = count
        pagination = {k: v for k, v in (("limit", limit), ("page", page)) if v}
        if pagination and self.resource_type.packed_pagination:
            query["pagination"] = urlencode(pagination)
        else:
            query.update(pagination)
        url = build_url(auth.tenant, self.resource_type.path, query=query)
        response = self.http.get(url, self._headers(auth))
        check_response(response, 200, f"get the {self._kind}s")
        return response.json(), url

    def get(self, auth, resource_id: str) -> Tuple[Any, str]:
        url = build_url(auth.tenant, self.resource_type.path, resource_id)
        response = self.http.get(url, self._headers(auth))
        check_response(response, 200, f"get the {self._kind}")
        return response.json(), url

    def get_by_name(self, auth, name: str) -> Tuple[Any, str]:
        return self.get(auth, self.resolve_id(auth, name))

    def create(self, auth, payload: Any) -> str:
        url = build_url(auth.tenant, self.resource_type.path)
        response = self.http.post(url, self._headers(auth, True), json.dumps(payload))
        check_response(response, self.resource_type.create_status, f"create the {self._kind}")
        location = response.headers.get("Location") or response.headers.get("location")
        if location:
            return location
        try:
            created = response.json()
        except SerializationError:
            return url
        if isinstance(created, dict) and created.get("id") is not None:
            return build_url(auth.tenant, self.resource_type.path, created["id"])
        return url

    def replace(self, auth, resource_id: str, payload: Any) -> None:
        url = build_url(auth.tenant, self.resource_type.path, resource_id)
        response = self.http.put(url, self._headers(auth, True), json.dumps(payload))
        check_response(response, self.resource_type.update_status, f"update the {self._kind}")

    def patch(self, auth, resource_id: str, operations: List[Dict[str, Any]]) -> None:
        url = build_url(auth.tenant, self.resource_type.path, resource_id)
        body = {"schemas": [SCIM_PATCH_SCHEMA], "Operations": operations}
        response = self.http.patch(url, self._headers(auth, True), json.dumps(body))
        check_response(response, self.resource_type.update_status, f"update the {self._kind}")

    def delete(self, auth, resource_id: str) -> None:
        url = build_url(auth.tenant, self.resource_type.path, resource_id)
        response = self.http.delete(url, self._headers(auth))
        check_response(response, 204, f"delete the {self._kind}")

    def replace_by_name(self, auth, name: str, payload: Any) -> None:
        self.replace(auth, self.resolve_id(auth, name), payload)

    def patch_by_name(self, auth, name: str, operations: List[Dict[str, Any]]) -> None:
        self.patch(auth, self.resolve_id(auth, name), operations)

    def delete_by_name(self, auth, name: str) -> None:
        self.delete(auth, self.resolve_id(auth, name))


# ---------- Resource files ----------

@dataclass
class ResourceObject:
    kind: str
    data: Any
    api_version: str = RESOURCE_API_VERSION
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        out = {"kind": self.kind, "apiVersion": self.api_version}
        if self.metadata:
            out["metadata"] = self.metadata
        out["data"] = self.data
        return out


def parse_document(text: str, ext: str) -> Any:
    ext = ext.lower()
    try:
        if ext == ".json":
            return json.loads(text)
        if ext in (".yml", ".yaml"):
            return yaml.safe_load(text)
        if ext == ".toml":
            return toml.loads(text)
    except (ValueError, yaml.YAMLError, toml.TomlDecodeError) as e:
        raise SerializationError(f"unable to parse {ext} content: {e}")
    raise SerializationError(f"unsupported file extension '{ext}'; use json, yml, yaml or toml")


def load_resource_file(path: str) -> ResourceObject:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise FilesystemError(f"unable to read {path}: {e}")
    doc = parse_document(text, os.path.splitext(path)[1])
    if not isinstance(doc, dict) or "kind" not in doc:
        raise SerializationError(f"{path} is not a resource file; 'kind' is required")
    return ResourceObject(
        kind=str(doc["kind"]),
        data=doc.get("data"),
        api_version=str(doc.get("apiVersion") or RESOURCE_API_VERSION),
        metadata=doc.get("metadata") or {},
    )


def dump_resource(obj: Any, fmt: str = "yaml") -> str:
    if isinstance(obj, ResourceObject):
        obj = obj.to_dict()
    if fmt == "json":
        return json.dumps(obj, indent=2)
    if fmt in ("yaml", "yml"):
        return yaml.safe_dump(obj, indent=2, sort_keys=False, allow_unicode=True)
    raise ValueError(f"unsupported output format '{fmt}'")


# ---------- Themes ----------

THEMES_PATH = "v1.0/branding/themes"


class ThemeClient:
    def __init__(self, http=None):
        self.http = http or default_client()

    def list(self, auth, count: int = 0, page: int = 0, limit: int = 0) -> Any:
        pagination = {k: v for k, v in (("count", count), ("page", page), ("limit", limit)) if v and v > 0}
        query = None
        if pagination:
            query = {"pagination": urlencode(pagination)}
        url = build_url(auth.tenant, THEMES_PATH, query=query)
        response = self.http.get(url, bearer_headers(auth.token))
        check_response(response, 200, "get the themes")
        return response.json()

    def get(self, auth, theme_id: str, customized_only: bool = False) -> bytes:
        url = build_url(auth.tenant, THEMES_PATH, theme_id, query={"customized_only": str(customized_only).lower()})
        response = self.http.get(url, bearer_headers(auth.token, accept=OCTET_STREAM))
        check_response(response, 200, "get the theme")
        return response.body

    def update(self, auth, theme_id: str, zip_bytes: bytes) -> None:
        url = build_url(auth.tenant, THEMES_PATH, theme_id)
        files = {"files": ("theme.zip", zip_bytes, "application/zip")}
        response = self.http.put_multipart(url, bearer_headers(auth.token), files)
        check_response(response, 204, "update the theme")

    def update_file(self, auth, theme_id: str, path: str, content: bytes) -> None:
        url = build_url(auth.tenant, THEMES_PATH, theme_id, path)
        files = {"file": (os.path.basename(path), content, OCTET_STREAM)}
        response = self.http.put_multipart(url, bearer_headers(auth.token), files)
        check_response(response, 204, "update the theme file")


def zip_directory(source_dir: str) -> bytes:
    if not os.path.isdir(source_dir):
        raise FilesystemError(f"{source_dir} is not a directory")
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for root, dirs, files in os.walk(source_dir):
            dirs.sort()
            for name in sorted(files):
                full = os.path.join(root, name)
                arcname = os.path.relpath(full, source_dir).replace(os.sep, "/")
                zf.write(full, arcname)
                LOG.debug("File added: %s", arcname)
    return buf.getvalue()


def unzip_to_directory(zip_bytes: bytes, output_dir: str) -> List[str]:
    os.makedirs(output_dir, exist_ok=True)
    root = os.path.realpath(output_dir)
    written = []
    try:
        zf = zipfile.ZipFile(io.BytesIO(zip_bytes))
    except zipfile.BadZipFile as e:
        raise SerializationError(f"theme archive is not a valid zip: {e}")
    with zf:
        for info in zf.infolist():
            target = os.path.realpath(os.path.join(root, info.filename))
            if target != root and not target.startswith(root + os.sep):
                raise FilesystemError(f"refusing to extract {info.filename} outside {output_dir}")
            if info.is_dir():
                os.makedirs(target, exist_ok=True)
                continue
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "wb") as f:
                f.write(zf.read(info))
            written.append(info.filename)
    return written
