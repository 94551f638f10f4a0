#!/usr/bin/env python3
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

"""
verifyctl: command-line client for an IBM Verify style identity tenant.

Authenticate once per tenant, then manage resources with the stored token:

  verifyctl auth abc.verify.ibm.com --clientId=cli_api_client --clientSecret=secret
  verifyctl auth abc.verify.ibm.com -u --clientId=cli_user_client
  verifyctl get users --count 10
  verifyctl get user alice -o json
  verifyctl delete group admins
  verifyctl create -f ./group.yaml
  verifyctl logs --follow

The token is saved to ~/.verify/config (or $VERIFY_HOME/config). Tokens are
never refreshed; when a command reports "Login again." run `auth` again.
"""

import argparse
import logging
import os
import sys

from verify_config import CLIConfig, AuthConfig, create_or_get_dir
from verify_errors import FilesystemError, SerializationError, SessionError, VerifyError
from verify_logs import LogsClient
from verify_oauth import acquire_token, load_auth_resource
from verify_resources import (
    ResourceClient,
    ResourceObject,
    ThemeClient,
    dump_resource,
    get_resource_type,
    load_resource_file,
    resource_type_for_kind,
    unzip_to_directory,
    zip_directory,
)

LOG = logging.getLogger("verifyctl")
TRACE_LOG_FILENAME = "trace.log"
LOG_LEVEL_ENV = "LOG_LEVEL"
THEME_TYPES = ("theme", "themes")


class UsageError(Exception):
    pass


# ---------- Utils ----------

def setup_logging(level_str: str, log_file: str = None) -> None:
    level = getattr(logging, level_str.upper(), logging.INFO)
    for h in list(LOG.handlers):
        LOG.removeHandler(h)
        h.close()
    fmt = logging.Formatter("%(asctime)s %(levelname)s: %(message)s")
    if log_file:
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
        except OSError:
            log_file = None
        else:
            fh.setFormatter(fmt)
            LOG.addHandler(fh)
    # Errors are already printed to stderr by main; only echo the log there when debugging
    if not log_file or level <= logging.DEBUG:
        h = logging.StreamHandler(sys.stderr)
        h.setFormatter(fmt)
        LOG.addHandler(h)
    LOG.setLevel(level)


def trace_log_path():
    try:
        return os.path.join(create_or_get_dir(), TRACE_LOG_FILENAME)
    except FilesystemError:
        return None


def pick(cli_val, file_val, default=None):
    if cli_val not in (None, ""):
        return cli_val
    if file_val not in (None, ""):
        return file_val
    return default


def read_bytes(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise FilesystemError(f"unable to read {path}: {e}")


def write_line(out, text: str) -> None:
    out.write(text + "\n")


# ---------- Commands ----------

def cmd_auth(args, config: CLIConfig, out) -> None:
    file_res = load_auth_resource(args.file) if args.file else None
    client_id = pick(args.client_id, file_res.client_id if file_res else None)
    client_secret = pick(args.client_secret, file_res.client_secret if file_res else None)
    user = bool(args.user or (file_res.user if file_res else False))
    if not client_id:
        raise UsageError("'clientId' is required.")
    if not args.file:
        LOG.debug("Authenticating with flags; an auth file (-f) can hold the same properties")

    token = acquire_token(args.tenant, client_id, client_secret, user, notify=lambda m: write_line(out, m))

    if args.print_only:
        write_line(out, token)
        return

    config.add_auth(AuthConfig(tenant=args.tenant, token=token, user=user))
    config.set_current_tenant(args.tenant)
    config.persist()
    LOG.info("Stored session for tenant %s (user=%s)", args.tenant, user)
    write_line(out, "Login succeeded.")


def cmd_logout(args, config: CLIConfig, out) -> None:
    tenant = args.tenant or config.current_tenant
    if not tenant:
        raise SessionError("No login session available.")
    if not config.remove_auth(tenant):
        raise SessionError(f"No login session available for {tenant}.")
    config.persist()
    write_line(out, f"Logged out of {tenant}.")


def _resource_type(name: str):
    try:
        return get_resource_type(name)
    except KeyError as e:
        raise UsageError(e.args[0])


def cmd_get(args, config: CLIConfig, out) -> None:
    auth = config.get_current_auth()
    if args.resource.lower() in THEME_TYPES:
        _get_theme(args, auth, out)
        return

    rt = _resource_type(args.resource)
    client = ResourceClient(rt)
    if args.id:
        data, uri = client.get(auth, args.id)
        kind = rt.resource_kind
    elif args.name:
        data, uri = client.get_by_name(auth, args.name)
        kind = rt.resource_kind
    else:
        data, uri = client.list(auth, search=args.search, sort=args.sort, count=args.count,
                                page=args.page, limit=args.limit)
        kind = rt.resource_kind + "List"
    obj = ResourceObject(kind=kind, data=data, metadata={"resourceUri": uri})
    out.write(dump_resource(obj, args.output))


def _get_theme(args, auth, out) -> None:
    client = ThemeClient()
    if not args.id:
        data = client.list(auth, count=args.count or 0, page=args.page or 0, limit=args.limit or 0)
        out.write(dump_resource(ResourceObject(kind="IBMVerifyThemeList", data=data), args.output))
        return
    zip_bytes = client.get(auth, args.id, customized_only=args.customized_only)
    if args.dir:
        written = unzip_to_directory(zip_bytes, args.dir)
        for name in written:
            LOG.debug("Extracted %s", name)
        write_line(out, f"Theme {args.id} unpacked to {args.dir} ({len(written)} files).")
        return
    target = args.out or f"{args.id}.zip"
    try:
        with open(target, "wb") as f:
            f.write(zip_bytes)
    except OSError as e:
        raise FilesystemError(f"unable to write {target}: {e}")
    write_line(out, f"Theme {args.id} saved to {target}.")


def cmd_create(args, config: CLIConfig, out) -> None:
    obj = load_resource_file(args.file)
    rt = resource_type_for_kind(obj.kind)
    auth = config.get_current_auth()
    uri = ResourceClient(rt).create(auth, obj.data)
    write_line(out, f"Resource created: {uri}")


def cmd_replace(args, config: CLIConfig, out) -> None:
    obj = load_resource_file(args.file)
    rt = resource_type_for_kind(obj.kind)
    auth = config.get_current_auth()
    client = ResourceClient(rt)
    data = obj.data if isinstance(obj.data, dict) else {}
    if not data:
        raise SerializationError(f"{args.file} has no data to apply")

    if rt.update_method == "PATCH":
        patch = data.get("scimPatch") or {}
        operations = patch.get("Operations") if isinstance(patch, dict) else None
        if not isinstance(operations, list) or not operations:
            raise SerializationError("'scimPatch.Operations' is required to update this resource")
        if args.id:
            client.patch(auth, args.id, operations)
        else:
            name = data.get(rt.name_field)
            if not name:
                raise SerializationError(f"'{rt.name_field}' is required")
            client.patch_by_name(auth, name, operations)
    else:
        metadata = obj.metadata if isinstance(obj.metadata, dict) else {}
        resource_id = args.id or data.get("id") or metadata.get("UID")
        if resource_id is not None:
            client.replace(auth, str(resource_id), data)
        elif rt.resolvable and data.get(rt.name_field):
            client.replace_by_name(auth, data[rt.name_field], data)
        else:
            raise SerializationError("'id' is required")
    write_line(out, "Resource updated successfully")


def cmd_delete(args, config: CLIConfig, out) -> None:
    rt = _resource_type(args.resource)
    if not args.id and not args.name:
        raise UsageError("either a name or '--id' is required.")
    auth = config.get_current_auth()
    client = ResourceClient(rt)
    if args.id:
        client.delete(auth, args.id)
    else:
        client.delete_by_name(auth, args.name)
    write_line(out, "Resource deleted successfully")


def cmd_logs(args, config: CLIConfig, out) -> None:
    auth = config.get_current_auth()
    try:
        LogsClient().print_logs(auth, out, follow=args.follow, trace_id=args.trace or "",
                                span_id=args.span or "", severity=args.severity or "",
                                custom_filter=args.filter or "")
    except ValueError as e:
        raise UsageError(str(e))


def cmd_set(args, config: CLIConfig, out) -> None:
    if args.resource.lower() not in THEME_TYPES:
        raise UsageError(f"'set' supports: {', '.join(THEME_TYPES)}")
    if args.path and not args.file:
        raise UsageError("'file' flag is required.")
    if not args.dir and not args.file:
        raise UsageError("Either 'dir' or 'file' flag is required.")
    auth = config.get_current_auth()
    client = ThemeClient()
    if args.path:
        client.update_file(auth, args.id, args.path, read_bytes(args.file))
        write_line(out, f"Theme file {args.path} updated.")
        return
    zip_bytes = zip_directory(os.path.abspath(args.dir)) if args.dir else read_bytes(args.file)
    client.update(auth, args.id, zip_bytes)
    write_line(out, f"Theme {args.id} updated.")


# ---------- CLI ----------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="verifyctl", description="Manage an identity tenant from the command line", allow_abbrev=False)
    p.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ERROR; default $LOG_LEVEL or INFO)")
    sub = p.add_subparsers(dest="command", required=True)

    a = sub.add_parser("auth", aliases=["login"], help="Log in to your tenant and save the connection for subsequent use.")
    a.add_argument("tenant", help="Tenant hostname, e.g. abc.verify.ibm.com")
    a.add_argument("-u", "--user", action="store_true", help="Log in as a user with the device flow grant")
    a.add_argument("--clientId", dest="client_id", default=None, help="Client ID of the API client or application")
    a.add_argument("--clientSecret", dest="client_secret", default=None, help="Client secret; optional for public clients")
    a.add_argument("-f", "--file", default=None, help="Auth properties file (json, yml, yaml or toml)")
    a.add_argument("--print", dest="print_only", action="store_true", help="Only print the token; do not persist it")
    a.set_defaults(func=cmd_auth)

    lo = sub.add_parser("logout", help="Remove a stored login session.")
    lo.add_argument("tenant", nargs="?", default=None, help="Tenant hostname (default: current tenant)")
    lo.set_defaults(func=cmd_logout)

    g = sub.add_parser("get", help="Get a resource or list resources.")
    g.add_argument("resource", help="Resource type, e.g. user, group, apiclient, accesspolicy, theme")
    g.add_argument("name", nargs="?", default=None, help="Resource name; omitted to list")
    g.add_argument("--id", default=None, help="Resource identifier")
    g.add_argument("-o", "--output", choices=["yaml", "json"], default="yaml", help="Output format")
    g.add_argument("--search", default=None, help="Search or filter expression when listing")
    g.add_argument("--sort", default=None, help="Sort attribute when listing")
    g.add_argument("--count", type=int, default=None, help="Number of results when listing")
    g.add_argument("--page", type=int, default=None, help="Page number when listing")
    g.add_argument("--limit", type=int, default=None, help="Page size when listing")
    g.add_argument("--dir", default=None, help="Theme: unpack the theme into this directory")
    g.add_argument("--out", default=None, help="Theme: write the theme zip to this file")
    g.add_argument("--customized-only", dest="customized_only", action="store_true", help="Theme: only customized files")
    g.set_defaults(func=cmd_get)

    c = sub.add_parser("create", help="Create a resource from a file.")
    c.add_argument("-f", "--file", required=True, help="Resource file (json, yml, yaml or toml)")
    c.set_defaults(func=cmd_create)

    r = sub.add_parser("replace", help="Replace or update a resource from a file.")
    r.add_argument("-f", "--file", required=True, help="Resource file (json, yml, yaml or toml)")
    r.add_argument("--id", default=None, help="Resource identifier; otherwise taken from the file")
    r.set_defaults(func=cmd_replace)

    d = sub.add_parser("delete", help="Delete a resource.")
    d.add_argument("resource", help="Resource type")
    d.add_argument("name", nargs="?", default=None, help="Resource name")
    d.add_argument("--id", default=None, help="Resource identifier")
    d.set_defaults(func=cmd_delete)

    lg = sub.add_parser("logs", help="Print logs from your tenant.")
    lg.add_argument("-f", "--follow", action="store_true", help="Keep printing logs until the process is terminated")
    lg.add_argument("--filter", default=None, help="Custom filter, e.g. key1=value1&key2=value2")
    lg.add_argument("--trace", default=None, help="TraceID to filter")
    lg.add_argument("--span", default=None, help="SpanID to filter")
    lg.add_argument("-s", "--severity", default=None, help="Severity of logs")
    lg.set_defaults(func=cmd_logs)

    s = sub.add_parser("set", help="Update a theme or a single theme file.")
    s.add_argument("resource", help="Resource type (theme)")
    s.add_argument("--id", required=True, help="Identifier of the theme")
    s.add_argument("--dir", default=None, help="Directory holding the unpacked theme")
    s.add_argument("-f", "--file", default=None, help="Theme zip, or the single file when --path is used")
    s.add_argument("--path", default=None, help="Template file path, including the locale")
    s.set_defaults(func=cmd_set)
    return p


def main(argv=None):
    p = build_parser()
    args = p.parse_args(argv)

    level = pick(args.log_level, os.environ.get(LOG_LEVEL_ENV), "INFO")
    setup_logging(level, trace_log_path())

    rc = 0
    try:
        config = CLIConfig().load()
        args.func(args, config, sys.stdout)
    except UsageError as e:
        print(str(e), file=sys.stderr)
        rc = 2
    except VerifyError as e:
        LOG.debug("Command %s failed: %s", args.command, e)
        print(e.message, file=sys.stderr)
        rc = 1
    except KeyboardInterrupt:
        rc = 130
    sys.exit(rc)


if __name__ == "__main__":
    main()
