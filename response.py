"""HTTP response framing and delivery."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

REASON_PHRASES: dict[int, str] = {
    200: "OK",
    405: "Method Not Allowed",
    500: "Internal Server Error",
}

OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain"
ALLOWED_METHODS = "GET, HEAD"

PEER_GONE_ERRORS = (BrokenPipeError, ConnectionResetError)


class Writable(Protocol):
    def sendall(self, payload: bytes) -> None: ...


class SendOutcome(enum.Enum):
    SENT = "sent"
    PEER_GONE = "peer_gone"
    FAILED = "failed"


@dataclass(slots=True)
class ResponseHeader:
    status_code: int
    reason_phrase: str | None = None
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes | str = b""

    def __post_init__(self) -> None:
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")

    @property
    def reason(self) -> str:
        return self.reason_phrase or REASON_PHRASES.get(self.status_code, "Unknown")

    def to_bytes(self) -> bytes:
        """Serialize the status line, headers and optional body."""
        lines = [f"HTTP/1.1 {self.status_code} {self.reason}"]
        lines.extend(f"{name}: {value}" for name, value in self.headers)
        if self.body:
            lines.append(f"Content-Length: {len(self.body)}")
        lines.append("Connection: close")
        head = "\r\n".join(lines).encode("iso-8859-1") + b"\r\n\r\n"
        return head + self.body


def ok_response(content_length: int) -> ResponseHeader:
    # Body is streamed separately, so the length travels as a header line.
    return ResponseHeader(
        status_code=200,
        headers=[
            ("Content-Type", OCTET_STREAM),
            ("Content-Length", str(content_length)),
        ],
    )


def method_not_allowed_response() -> ResponseHeader:
    return ResponseHeader(
        status_code=405,
        headers=[("Content-Type", TEXT_PLAIN), ("Allow", ALLOWED_METHODS)],
        body="405 Method Not Allowed\n",
    )


def internal_error_response() -> ResponseHeader:
    return ResponseHeader(
        status_code=500,
        headers=[("Content-Type", TEXT_PLAIN)],
        body="500 Internal Server Error\n",
    )


def send_response(connection: Writable, response: ResponseHeader) -> SendOutcome:
    """Write a framed response; send failures are reported, never raised."""
    try:
        connection.sendall(response.to_bytes())
    except PEER_GONE_ERRORS:
        logger.debug("Peer went away while sending %s response", response.status_code)
        return SendOutcome.PEER_GONE
    except OSError:
        logger.warning("Failed to send %s response", response.status_code, exc_info=True)
        return SendOutcome.FAILED
    return SendOutcome.SENT
