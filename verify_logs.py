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
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from verify_errors import SerializationError, VerifyError, check_response
from verify_http import bearer_headers, build_url, default_client

LOG = logging.getLogger("verifyctl")

LOGS_QUERY_PATH = "v1.0/logs/query"
POLL_INTERVAL = 10
QUERY_LIMIT = 500
LOOKBACK = timedelta(minutes=30)
COLUMNS = ("Timestamp", "Trace ID", "Span ID", "Message", "Severity")


def now_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def build_filter(trace_id: str = "", span_id: str = "", severity: str = "", custom: str = "") -> dict:
    matches = []
    if trace_id:
        matches.append({"key": "traceID", "op": "eq", "value": trace_id})
    if span_id:
        matches.append({"key": "spanID", "op": "eq", "value": span_id})
    if severity:
        matches.append({"key": "severity", "op": "eq", "value": severity})
    if custom:
        for part in custom.split("&"):
            kv = part.split("=")
            if len(kv) != 2:
                raise ValueError("custom filter string is invalid.")
            matches.append({"key": kv[0], "op": "eq", "value": kv[1]})
    return {"op": "AND", "match": matches}


def format_rows(logs: List[dict], header: bool) -> str:
    rows = []
    if header:
        rows.append(COLUMNS)
    for entry in logs:
        rows.append((
            str(entry.get("timestamp", "")),
            str(entry.get("traceID", "")),
            str(entry.get("spanID", "")),
            str(entry.get("message", "")),
            str(entry.get("severity", "")),
        ))
    if not rows:
        return ""
    widths = [max(len(r[i]) for r in rows) for i in range(len(COLUMNS))]
    lines = []
    for r in rows:
        lines.append(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(r)).rstrip())
    return "\n".join(lines) + "\n"


class LogsClient:
    def __init__(self, http=None):
        self.http = http or default_client()

    def query(self, auth, request: dict) -> List[dict]:
        url = build_url(auth.tenant, LOGS_QUERY_PATH)
        headers = bearer_headers(auth.token, content_type="application/json")
        response = self.http.post(url, headers, json.dumps(request))
        check_response(response, 200, "get the logs")
        data = response.json()
        if not isinstance(data, dict):
            raise SerializationError("unable to get the logs; unexpected response format")
        logs = data.get("logs") or []
        if not isinstance(logs, list):
            raise SerializationError("unable to get the logs; unexpected response format")
        return logs

    def print_logs(self, auth, out, follow: bool = False, trace_id: str = "", span_id: str = "",
                   severity: str = "", custom_filter: str = "",
                   sleep: Callable[[float], None] = time.sleep,
                   now: Callable[[], int] = now_millis,
                   max_polls: Optional[int] = None) -> None:
        """Print recent logs; with ``follow`` keep polling until the process is killed.

        While following, a failed poll is logged and skipped so a transient
        error does not end the session. ``max_polls`` bounds the loop for tests.
        """
        end = now()
        request = {
            "limit": QUERY_LIMIT,
            "start": end - int(LOOKBACK.total_seconds() * 1000),
            "end": end,
            "sort": "asc",
            "filter": build_filter(trace_id, span_id, severity, custom_filter),
        }
        first = True
        polls = 0
        while True:
            polls += 1
            try:
                logs = self.query(auth, request)
            except VerifyError as e:
                if not follow:
                    raise
                LOG.warning("unable to get logs; err=%s", e)
                logs = []
            if logs:
                out.write(format_rows(logs, first))
                out.flush()
                first = False
                last = logs[-1].get("timestamp")
                if isinstance(last, int):
                    request["start"] = last + 1
            if not follow or (max_polls is not None and polls >= max_polls):
                return
            sleep(POLL_INTERVAL)
            request["end"] = now()
