import io
import json
import logging
import zipfile
from unittest import mock

import pytest

import verify_resources as res
from verify_config import AuthConfig
from verify_errors import (
    FilesystemError,
    InvalidIdentifierError,
    NotFoundResolutionError,
    SerializationError,
    UnauthorizedError,
)
from verify_http import Response

AUTH = AuthConfig(tenant="t.example.com", token="tok")


def _json(code, payload, headers=None):
    return Response(status_code=code, headers=headers or {}, body=json.dumps(payload).encode("utf-8"))


def _http(*responses):
    http = mock.Mock()
    http.get.side_effect = list(responses)
    return http


# Test intent: a SCIM user name resolves through a userName filter on the
# Users endpoint and returns the first entry's id.
def test_resolve_user_by_name():
    http = _http(_json(200, {"Resources": [{"id": "u-1", "userName": "alice"}]}))

    uid = res.resolve_id(http, AUTH, res.get_resource_type("user"), "alice")

    assert uid == "u-1"
    url, headers = http.get.call_args.args
    assert url.startswith("https://t.example.com/v2.0/Users?")
    assert "filter=userName+eq+%22alice%22" in url
    assert headers["Authorization"] == "Bearer tok"
    assert headers["Accept"] == "application/scim+json"


# Test intent: when several entries share the name, the first one wins and a
# warning is logged.
def test_resolve_takes_first_match_and_warns(caplog):
    caplog.set_level(logging.WARNING, logger="verifyctl")
    http = _http(_json(200, {"Resources": [{"id": "g-1"}, {"id": "g-2"}]}))

    gid = res.resolve_id(http, AUTH, res.get_resource_type("group"), "admins")

    assert gid == "g-1"
    assert any("using the first" in r.getMessage() for r in caplog.records)


# Test intent: an empty result set is a not-found resolution error naming the
# resource and the name.
def test_resolve_no_match():
    http = _http(_json(200, {"Resources": []}))
    with pytest.raises(NotFoundResolutionError) as exc:
        res.resolve_id(http, AUTH, res.get_resource_type("user"), "bob")
    assert exc.value.message == "no User found with userName bob"


# Test intent: a failed lookup call is reported as not found.
def test_resolve_http_failure_is_not_found():
    http = _http(Response(status_code=401, body=b""))
    with pytest.raises(NotFoundResolutionError):
        res.resolve_id(http, AUTH, res.get_resource_type("identitysource"), "ldap")


# Test intent: access policies carry integer ids; a string id is rejected as
# an invalid identifier while an int is rendered as text.
def test_resolve_access_policy_integer_id():
    rt = res.get_resource_type("accesspolicy")
    http = _http(_json(200, {"policies": [{"id": 42, "name": "mfa"}]}))
    assert res.resolve_id(http, AUTH, rt, "mfa") == "42"
    assert 'search=name+%3D+%22mfa%22' in http.get.call_args.args[0]

    http = _http(_json(200, {"policies": [{"id": "42", "name": "mfa"}]}))
    with pytest.raises(InvalidIdentifierError):
        res.resolve_id(http, AUTH, rt, "mfa")


# Test intent: identifiers must be present and of the declared type.
@pytest.mark.parametrize("entry", [{"id": 5}, {"name": "x"}, {"id": True}, "not-a-dict"])
def test_extract_id_rejects_bad_entries(entry):
    with pytest.raises(InvalidIdentifierError):
        res.extract_id(entry, str)


# Test intent: API clients are searched with "contains", so only an exact
# clientName match may be picked.
def test_resolve_api_client_requires_exact_name():
    rt = res.get_resource_type("apiclient")
    payload = {"apiClients": [{"id": "a1", "clientName": "cli-dev"}, {"id": "a2", "clientName": "cli"}]}
    http = _http(_json(200, payload))
    assert res.resolve_id(http, AUTH, rt, "cli") == "a2"

    http = _http(_json(200, {"apiClients": [{"id": "a1", "clientName": "cli-dev"}]}))
    with pytest.raises(NotFoundResolutionError):
        res.resolve_id(http, AUTH, rt, "cli")


# Test intent: resource types without a name field are id-only.
def test_application_cannot_be_resolved_by_name():
    http = _http()
    with pytest.raises(NotFoundResolutionError):
        res.resolve_id(http, AUTH, res.get_resource_type("app"), "portal")
    http.get.assert_not_called()


# Test intent: delete by name resolves first, then deletes that id and
# expects 204.
def test_delete_by_name():
    http = _http(_json(200, {"Resources": [{"id": "g 1"}]}))
    http.delete.return_value = Response(status_code=204)
    client = res.ResourceClient(res.get_resource_type("groups"), http=http)

    client.delete_by_name(AUTH, "admins")

    url, _ = http.delete.call_args.args
    assert url == "https://t.example.com/v2.0/Groups/g%201"


# Test intent: a failing delete surfaces the classified error.
def test_delete_unauthorized():
    http = mock.Mock()
    http.delete.return_value = Response(status_code=401)
    client = res.ResourceClient(res.get_resource_type("user"), http=http)
    with pytest.raises(UnauthorizedError):
        client.delete(AUTH, "u-1")


# Test intent: create returns the Location header when present, otherwise a
# URL built from the returned id.
def test_create_returns_location():
    http = mock.Mock()
    http.post.return_value = _json(201, {"id": "g-9"}, headers={"Location": "https://t.example.com/v2.0/Groups/g-9"})
    client = res.ResourceClient(res.get_resource_type("group"), http=http)
    assert client.create(AUTH, {"displayName": "ops"}) == "https://t.example.com/v2.0/Groups/g-9"
    url, headers, body = http.post.call_args.args
    assert json.loads(body) == {"displayName": "ops"}
    assert headers["Content-Type"] == "application/scim+json"

    http.post.return_value = _json(201, {"id": "c-1"})
    client = res.ResourceClient(res.get_resource_type("apiclient"), http=http)
    assert client.create(AUTH, {"clientName": "x"}) == "https://t.example.com/v1.0/apiclients/c-1"


# Test intent: SCIM resources are updated with a PatchOp envelope.
def test_patch_sends_scim_patch_op():
    http = mock.Mock()
    http.patch.return_value = Response(status_code=204)
    client = res.ResourceClient(res.get_resource_type("user"), http=http)
    ops = [{"op": "replace", "path": "active", "value": False}]

    client.patch(AUTH, "u-1", ops)

    url, _, body = http.patch.call_args.args
    assert url.endswith("/v2.0/Users/u-1")
    assert json.loads(body) == {"schemas": [res.SCIM_PATCH_SCHEMA], "Operations": ops}


# Test intent: listing passes search, sort and count using the resource's
# parameter names.
def test_list_query_parameters():
    http = _http(_json(200, {"Resources": []}))
    client = res.ResourceClient(res.get_resource_type("user"), http=http)
    data, url = client.list(AUTH, search='userName sw "a"', sort="userName", count=10)
    assert data == {"Resources": []}
    assert "filter=" in url and "sortBy=userName" in url and "count=10" in url

    http = _http(_json(200, {"Resources": []}))
    _, url = res.ResourceClient(res.get_resource_type("user"), http=http).list(AUTH, page=2, limit=10)
    assert "page=2" in url and "limit=10" in url and "pagination" not in url


# Test intent: attributes and API clients take page and limit packed into a
# single pagination parameter.
@pytest.mark.parametrize("kind,path", [("attribute", "v1.0/attributes"), ("apiclient", "v1.0/apiclients")])
def test_list_packs_pagination(kind, path):
    http = _http(_json(200, []))
    _, url = res.ResourceClient(res.get_resource_type(kind), http=http).list(AUTH, search="x", page=2, limit=10)
    assert url.startswith(f"https://t.example.com/{path}?")
    assert "pagination=limit%3D10%26page%3D2" in url
    assert "&page=" not in url and "?page=" not in url
    assert "&limit=" not in url and "?limit=" not in url


# Test intent: resource files load from json, yaml and toml.
@pytest.mark.parametrize("name,content", [
    ("g.json", '{"kind": "IBMVerifyGroup", "apiVersion": "1.0", "data": {"displayName": "ops"}}'),
    ("g.yaml", "kind: IBMVerifyGroup\napiVersion: '1.0'\ndata:\n  displayName: ops\n"),
    ("g.toml", 'kind = "IBMVerifyGroup"\napiVersion = "1.0"\n[data]\ndisplayName = "ops"\n'),
])
def test_load_resource_file_formats(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")

    obj = res.load_resource_file(str(path))

    assert obj.kind == "IBMVerifyGroup"
    assert obj.data == {"displayName": "ops"}
    assert res.resource_type_for_kind(obj.kind).path == "v2.0/Groups"


# Test intent: files without a kind, with an unknown extension or that are
# missing are rejected with the matching error kind.
def test_load_resource_file_errors(tmp_path):
    no_kind = tmp_path / "x.json"
    no_kind.write_text('{"data": {}}', encoding="utf-8")
    with pytest.raises(SerializationError):
        res.load_resource_file(str(no_kind))

    txt = tmp_path / "x.txt"
    txt.write_text("kind: x", encoding="utf-8")
    with pytest.raises(SerializationError):
        res.load_resource_file(str(txt))

    with pytest.raises(FilesystemError):
        res.load_resource_file(str(tmp_path / "missing.yaml"))


# Test intent: the output envelope keeps kind and apiVersion first.
def test_dump_resource_yaml_and_json():
    obj = res.ResourceObject(kind="IBMVerifyUser", data={"userName": "alice"}, metadata={"resourceUri": "u"})
    out = res.dump_resource(obj, "yaml")
    assert out.splitlines()[0] == "kind: IBMVerifyUser"
    assert json.loads(res.dump_resource(obj, "json"))["data"] == {"userName": "alice"}


# Test intent: a theme directory zipped and unpacked again yields the same
# files.
def test_theme_zip_and_unzip(tmp_path):
    src = tmp_path / "theme"
    (src / "templates" / "en").mkdir(parents=True)
    (src / "templates" / "en" / "login.html").write_text("<p>hi</p>", encoding="utf-8")
    (src / "custom.css").write_text("body{}", encoding="utf-8")

    data = res.zip_directory(str(src))
    written = res.unzip_to_directory(data, str(tmp_path / "out"))

    assert sorted(written) == ["custom.css", "templates/en/login.html"]
    assert (tmp_path / "out" / "templates" / "en" / "login.html").read_text(encoding="utf-8") == "<p>hi</p>"


# Test intent: archive entries escaping the target directory are refused.
def test_unzip_refuses_path_traversal(tmp_path):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("../evil.txt", "x")
    with pytest.raises(FilesystemError):
        res.unzip_to_directory(buf.getvalue(), str(tmp_path / "out"))
    assert not (tmp_path / "evil.txt").exists()

    with pytest.raises(SerializationError):
        res.unzip_to_directory(b"not a zip", str(tmp_path / "out2"))


# Test intent: theme download asks for octet-stream and passes the
# customized_only flag.
def test_theme_get_and_update():
    http = mock.Mock()
    http.get.return_value = Response(status_code=200, body=b"PKzip")
    http.put_multipart.return_value = Response(status_code=204)
    client = res.ThemeClient(http=http)

    assert client.get(AUTH, "th-1", customized_only=True) == b"PKzip"
    url, headers = http.get.call_args.args
    assert url == "https://t.example.com/v1.0/branding/themes/th-1?customized_only=true"
    assert headers["Accept"] == "application/octet-stream"

    client.update(AUTH, "th-1", b"PKzip")
    url, _, files = http.put_multipart.call_args.args
    assert url.endswith("/themes/th-1")
    assert files["files"][0] == "theme.zip"


# Test intent: theme listing packs pagination into a single parameter.
def test_theme_list_pagination():
    http = _http(_json(200, {"themeRegistrations": []}))
    res.ThemeClient(http=http).list(AUTH, count=5, page=2)
    url = http.get.call_args.args[0]
    assert "pagination=count%3D5%26page%3D2" in url


# Test intent: unknown resource type names are rejected.
def test_unknown_resource_type():
    with pytest.raises(KeyError):
        res.get_resource_type("widgets")
