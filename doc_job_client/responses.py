"""Classification of raw HTTP responses from the document API.

One contract for every operation:

* 200 with a body is the final artifact. ``text/plain`` bodies carry the
  artifact as base64 text and are decoded.
* 202 means the job was accepted and is still running; the ``Location``
  header points at the URL to poll.
* 4xx and 5xx are terminal failures.
* Anything else, or a 200 that cannot be read, is a malformed response.
"""

import base64
import binascii
import json
from typing import Optional, Union
from urllib.parse import urljoin

from doc_job_client.errors import MalformedResponse
from doc_job_client.models import (
    Completed,
    Failed,
    Pending,
    PollOutcome,
    StillPending,
    SubmissionResult,
)

MESSAGE_KEYS = ("message", "error", "detail")
MAX_MESSAGE_LENGTH = 200


def media_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def error_message(status: int, body: bytes) -> str:
    """Pull a readable message out of an error body"""
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except ValueError:
        data = None

    if isinstance(data, dict):
        for key in MESSAGE_KEYS:
            if data.get(key):
                return str(data[key])

    if not text:
        return f"HTTP {status}"
    return f"HTTP {status}: {text[:MAX_MESSAGE_LENGTH]}"


def _completed(
    body: bytes, content_type: Optional[str], url: str, status: int
) -> Completed:
    if not body:
        raise MalformedResponse("empty body on a completed response", url, status)

    if media_type(content_type) == "text/plain":
        try:
            body = base64.b64decode(b"".join(body.split()), validate=True)
        except binascii.Error:
            raise MalformedResponse(
                f"text response is not a base64 artifact: {body[:100]!r}", url, status
            )
        if not body:
            raise MalformedResponse("base64 artifact decoded to nothing", url, status)

    return Completed(body=body, content_type=content_type)


def _classify(
    status: int,
    body: bytes,
    content_type: Optional[str],
    location: Optional[str],
    url: str,
) -> Union[Completed, Failed, Optional[str]]:
    if status == 200:
        return _completed(body, content_type, url, status)
    if status == 202:
        return urljoin(url, location) if location else None
    if 400 <= status < 600:
        return Failed(status=status, message=error_message(status, body))
    raise MalformedResponse(f"unexpected status {status}", url, status)


def classify_submission(
    status: int,
    body: bytes,
    content_type: Optional[str],
    location: Optional[str],
    url: str,
) -> SubmissionResult:
    result = _classify(status, body, content_type, location, url)
    if isinstance(result, (Completed, Failed)):
        return result
    if result is None:
        raise MalformedResponse("accepted without a Location to poll", url, status)
    return Pending(poll_url=result)


def classify_poll(
    status: int,
    body: bytes,
    content_type: Optional[str],
    location: Optional[str],
    url: str,
) -> PollOutcome:
    result = _classify(status, body, content_type, location, url)
    if isinstance(result, (Completed, Failed)):
        return result
    return StillPending(poll_url=result)
