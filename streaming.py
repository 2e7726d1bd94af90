"""Chunked zero-copy transfer of the served file to a client socket."""

from __future__ import annotations

import enum
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from config import CHUNK_SIZE, MAX_TRANSIENT_RETRIES
from file_source import FileHandle

logger = logging.getLogger(__name__)

SendfileFunc = Callable[[int, int, int, int], int]

TRANSIENT_ERRORS = (BlockingIOError, InterruptedError)
PEER_DISCONNECT_ERRORS = (BrokenPipeError, ConnectionResetError)


class StreamTarget(Protocol):
    def fileno(self) -> int: ...

    def sendall(self, payload: bytes) -> None: ...


class StreamOutcome(enum.Enum):
    COMPLETE = "complete"
    PEER_DISCONNECTED = "peer_disconnected"
    FAILED = "failed"


@dataclass(slots=True)
class StreamResult:
    outcome: StreamOutcome
    bytes_sent: int
    transient_retries: int = 0
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """True unless the transfer hit an unrecoverable error."""
        return self.outcome is not StreamOutcome.FAILED


class TransferStalledError(OSError):
    """File ended before the size captured when it was opened."""


class TooManyRetriesError(OSError):
    """Consecutive transient retries exceeded the configured ceiling."""


class StreamingEngine:
    """Sends a FileHandle's bytes in chunks of at most ``chunk_size``.

    Would-block and interrupted transfers are retried in place without
    touching the offset. A peer that hangs up ends the transfer early but is
    not treated as a failure. Any other transport error aborts the transfer.
    """

    def __init__(
        self,
        chunk_size: int = CHUNK_SIZE,
        *,
        max_transient_retries: int | None = MAX_TRANSIENT_RETRIES,
        sendfile: SendfileFunc | None = None,
        use_sendfile: bool = True,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if max_transient_retries is not None and max_transient_retries < 0:
            raise ValueError("max_transient_retries cannot be negative")
        self.chunk_size = chunk_size
        self.max_transient_retries = max_transient_retries
        self._sendfile: SendfileFunc | None = None
        if use_sendfile:
            self._sendfile = sendfile if sendfile is not None else getattr(os, "sendfile", None)

    @property
    def zero_copy(self) -> bool:
        return self._sendfile is not None

    def stream(self, connection: StreamTarget, file_handle: FileHandle) -> StreamResult:
        if self._sendfile is None:
            return self._stream_buffered(connection, file_handle)
        return self._stream_sendfile(connection, file_handle, self._sendfile)

    def _stream_sendfile(
        self,
        connection: StreamTarget,
        file_handle: FileHandle,
        sendfile: SendfileFunc,
    ) -> StreamResult:
        out_fd = connection.fileno()
        in_fd = file_handle.fileno()
        offset = 0
        remaining = file_handle.size
        retries = 0
        consecutive_retries = 0

        while remaining > 0:
            count = min(remaining, self.chunk_size)
            try:
                sent = sendfile(out_fd, in_fd, offset, count)
            except TRANSIENT_ERRORS as exc:
                retries += 1
                consecutive_retries += 1
                if self._retries_exhausted(consecutive_retries):
                    return self._failed(offset, retries, TooManyRetriesError(str(exc)))
                continue
            except PEER_DISCONNECT_ERRORS:
                return self._peer_disconnected(offset, retries)
            except OSError as exc:
                return self._failed(offset, retries, exc)

            if sent <= 0:
                return self._failed(
                    offset,
                    retries,
                    TransferStalledError(
                        f"{file_handle.path} ended at byte {offset} of {file_handle.size}"
                    ),
                )

            consecutive_retries = 0
            offset += sent
            remaining -= sent

        return StreamResult(StreamOutcome.COMPLETE, bytes_sent=offset, transient_retries=retries)

    def _stream_buffered(self, connection: StreamTarget, file_handle: FileHandle) -> StreamResult:
        offset = 0
        remaining = file_handle.size

        while remaining > 0:
            try:
                chunk = file_handle.read(min(remaining, self.chunk_size), offset)
            except OSError as exc:
                return self._failed(offset, 0, exc)
            if not chunk:
                return self._failed(
                    offset,
                    0,
                    TransferStalledError(
                        f"{file_handle.path} ended at byte {offset} of {file_handle.size}"
                    ),
                )
            try:
                connection.sendall(chunk)
            except PEER_DISCONNECT_ERRORS:
                return self._peer_disconnected(offset, 0)
            except OSError as exc:
                return self._failed(offset, 0, exc)
            offset += len(chunk)
            remaining -= len(chunk)

        return StreamResult(StreamOutcome.COMPLETE, bytes_sent=offset)

    def _retries_exhausted(self, consecutive_retries: int) -> bool:
        if self.max_transient_retries is None:
            return False
        return consecutive_retries > self.max_transient_retries

    def _peer_disconnected(self, offset: int, retries: int) -> StreamResult:
        logger.info("Peer disconnected after %s bytes", offset)
        return StreamResult(
            StreamOutcome.PEER_DISCONNECTED,
            bytes_sent=offset,
            transient_retries=retries,
        )

    def _failed(self, offset: int, retries: int, error: BaseException) -> StreamResult:
        logger.error("Streaming aborted after %s bytes: %s", offset, error)
        return StreamResult(
            StreamOutcome.FAILED,
            bytes_sent=offset,
            transient_retries=retries,
            error=error,
        )
