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

"""Error kinds raised by verifyctl and the shared HTTP status classifier."""

import json
import logging
from typing import Optional

LOG = logging.getLogger("verifyctl")

UNAUTHORIZED_MESSAGE = "Login again."
FORBIDDEN_MESSAGE = "You are not allowed to make this request. Check the client or application entitlements."
NOT_FOUND_MESSAGE = "Resource not found"


class VerifyError(Exception):
    """Base class for every failure surfaced to the operator."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransportError(VerifyError):
    """Network, DNS or TLS failure, or a redirect the client refused to follow."""


class SerializationError(VerifyError):
    pass


class AuthenticationError(VerifyError):
    pass


class SessionError(VerifyError):
    pass


class FilesystemError(VerifyError):
    pass


class ResolutionError(VerifyError):
    pass


class NotFoundResolutionError(ResolutionError):
    pass


class InvalidIdentifierError(ResolutionError):
    pass


class HTTPStatusError(VerifyError):
    """Non-success response from the service.

    Attributes:
        status_code: HTTP status code returned by the service
        body: raw response body, kept verbatim for debugging
    """

    def __init__(self, message: str, status_code: int, body: bytes = b""):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class UnauthorizedError(HTTPStatusError):
    pass


class ForbiddenError(HTTPStatusError):
    pass


class NotFoundError(HTTPStatusError):
    pass


class BadRequestError(HTTPStatusError):
    def __init__(self, message_id: str, message_description: str, body: bytes = b""):
        self.message_id = message_id
        self.message_description = message_description
        super().__init__(f"{message_id} {message_description}", 400, body)


class OpaqueBadRequestError(HTTPStatusError):
    pass


def body_text(body: bytes) -> str:
    if isinstance(body, str):
        return body
    return (body or b"").decode("utf-8", errors="replace")


def handle_common_errors(response, default_message: str) -> Optional[HTTPStatusError]:
    """Map the status codes every endpoint shares to an error kind.

    Returns None for any other status; the caller then builds its own generic
    error from ``default_message``, the status code and the raw body.
    """
    code = response.status_code
    body = response.body
    if code == 401:
        return UnauthorizedError(UNAUTHORIZED_MESSAGE, code, body)
    if code == 403:
        return ForbiddenError(FORBIDDEN_MESSAGE, code, body)
    if code == 400:
        try:
            payload = json.loads(body_text(body))
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            message_id = payload.get("messageId") or ""
            description = payload.get("messageDescription") or ""
            if isinstance(message_id, str) and isinstance(description, str) and (message_id or description):
                return BadRequestError(message_id, description, body)
        LOG.debug("Bad request body did not carry messageId/messageDescription (%s)", default_message)
        return OpaqueBadRequestError(f"bad request: {body_text(body)}", code, body)
    if code == 404:
        return NotFoundError(NOT_FOUND_MESSAGE, code, body)
    return None


def check_response(response, expected_status: int, operation: str) -> None:
    if response.status_code == expected_status:
        return
    err = handle_common_errors(response, f"unable to {operation}")
    if err is not None:
        LOG.error("unable to %s; err=%s", operation, err.message)
        raise err
    LOG.error("unable to %s; code=%d, body=%s", operation, response.status_code, body_text(response.body))
    raise HTTPStatusError(
        f"unable to {operation}; code={response.status_code}, body={body_text(response.body)}",
        response.status_code,
        response.body,
    )
