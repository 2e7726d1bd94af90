"""Request-line recognition for the single-file server.

Only the leading bytes of a connection are inspected. The path, headers and
body of the request are never parsed: any GET or HEAD targets the configured
file.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Protocol

from config import RECV_BUFFER_SIZE

logger = logging.getLogger(__name__)

GET_PREFIX = b"GET "
HEAD_PREFIX = b"HEAD "


class Readable(Protocol):
    def recv(self, size: int) -> bytes: ...


class RequestKind(enum.Enum):
    GET = "GET"
    HEAD = "HEAD"
    UNSUPPORTED = "UNSUPPORTED"
    EMPTY = "EMPTY"


@dataclass(frozen=True, slots=True)
class RecognizedRequest:
    kind: RequestKind
    bytes_read: int = 0

    @property
    def method(self) -> str:
        if self.kind in (RequestKind.GET, RequestKind.HEAD):
            return self.kind.value
        return "-"


def classify_request(data: bytes) -> RequestKind:
    if not data:
        return RequestKind.EMPTY
    if data.startswith(GET_PREFIX):
        return RequestKind.GET
    if data.startswith(HEAD_PREFIX):
        return RequestKind.HEAD
    return RequestKind.UNSUPPORTED


def recognize_request(connection: Readable, buffer_size: int = RECV_BUFFER_SIZE) -> RecognizedRequest:
    """Read once from the connection and classify what arrived."""
    try:
        data = connection.recv(buffer_size)
    except OSError as exc:
        logger.debug("Initial read failed: %s", exc)
        return RecognizedRequest(kind=RequestKind.EMPTY)

    return RecognizedRequest(kind=classify_request(data), bytes_read=len(data))
