"""Per-connection lifecycle: recognise, respond, stream, close."""

from __future__ import annotations

import enum
import json
import logging
import time
from collections.abc import Callable

from acceptor import PeerConnection
from config import LOG_FORMAT
from file_source import FileHandle, open_file
from metrics import MetricsRegistry
from request import RecognizedRequest, RequestKind, recognize_request
from response import (
    ResponseHeader,
    SendOutcome,
    internal_error_response,
    method_not_allowed_response,
    ok_response,
    send_response,
)
from streaming import StreamingEngine, StreamResult

logger = logging.getLogger(__name__)

FileOpener = Callable[[str], FileHandle]


class WorkerState(enum.Enum):
    START = "start"
    RECOGNIZING = "recognizing"
    SERVING = "serving"
    REJECTING = "rejecting"
    ERRORING = "erroring"
    CLOSED = "closed"


class ConnectionWorker:
    """Handles exactly one accepted connection and always closes it.

    Every path through ``run`` ends in ``WorkerState.CLOSED``: the
    per-request file handle (when one was opened) and the connection are
    each released once, whatever happened before.
    """

    def __init__(
        self,
        connection: PeerConnection,
        file_path: str,
        engine: StreamingEngine,
        *,
        metrics: MetricsRegistry | None = None,
        opener: FileOpener = open_file,
        log_format: str = LOG_FORMAT,
    ) -> None:
        self.connection = connection
        self.file_path = file_path
        self.engine = engine
        self.metrics = metrics
        self.opener = opener
        self.log_format = log_format
        self.states: list[WorkerState] = [WorkerState.START]
        self.request: RecognizedRequest | None = None
        self.status_code: int | None = None
        self.stream_result: StreamResult | None = None
        self.file_handle: FileHandle | None = None
        self._response_started = False

    @property
    def state(self) -> WorkerState:
        return self.states[-1]

    def run(self) -> None:
        started_at = time.perf_counter()
        if self.metrics is not None:
            self.metrics.connection_opened()
        try:
            try:
                self._handle()
            except Exception:
                logger.exception("Unhandled error on connection from %s:%s", *self.connection.address)
                if not self._response_started:
                    self._enter(WorkerState.ERRORING)
                    self._send(internal_error_response())
        finally:
            try:
                if self.file_handle is not None:
                    self.file_handle.close()
            finally:
                self.connection.close()
                self._enter(WorkerState.CLOSED)
                if self.metrics is not None:
                    self.metrics.connection_closed()
                self._log_access(started_at)

    def _handle(self) -> None:
        self._enter(WorkerState.RECOGNIZING)
        self.request = recognize_request(self.connection)
        kind = self.request.kind
        if self.metrics is not None:
            self.metrics.record_request_kind(kind.value)

        if kind is RequestKind.EMPTY:
            return

        if kind is RequestKind.UNSUPPORTED:
            self._enter(WorkerState.REJECTING)
            self._send(method_not_allowed_response())
            return

        self._enter(WorkerState.SERVING)
        try:
            file_handle = self.opener(self.file_path)
        except OSError as exc:
            logger.error("Cannot open %s for request: %s", self.file_path, exc)
            self._enter(WorkerState.ERRORING)
            self._send(internal_error_response())
            return

        self.file_handle = file_handle
        self._serve(file_handle, head_only=kind is RequestKind.HEAD)

    def _serve(self, file_handle: FileHandle, *, head_only: bool) -> None:
        outcome = self._send(ok_response(file_handle.size))
        if head_only or outcome is not SendOutcome.SENT:
            return

        result = self.engine.stream(self.connection, file_handle)
        self.stream_result = result
        if self.metrics is not None:
            self.metrics.record_stream(
                result.outcome.value,
                result.bytes_sent,
                result.transient_retries,
            )

    def _send(self, response: ResponseHeader) -> SendOutcome:
        self._response_started = True
        self.status_code = response.status_code
        outcome = send_response(self.connection, response)
        if self.metrics is not None:
            self.metrics.record_response(response.status_code)
            if outcome is SendOutcome.FAILED:
                self.metrics.record_write_error("send_failed")
        return outcome

    def _enter(self, state: WorkerState) -> None:
        self.states.append(state)

    def _log_access(self, started_at: float) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        if self.metrics is not None:
            self.metrics.record_latency(duration_ms)

        result = self.stream_result
        event = {
            "client": self.connection.address[0],
            "port": self.connection.address[1],
            "method": self.request.method if self.request is not None else "-",
            "kind": self.request.kind.value if self.request is not None else "-",
            "status": self.status_code if self.status_code is not None else "-",
            "bytes_out": result.bytes_sent if result is not None else 0,
            "stream": result.outcome.value if result is not None else "-",
            "latency_ms": round(duration_ms, 3),
        }
        if self.log_format == "json":
            logger.info(json.dumps(event, sort_keys=True))
            return

        logger.info(
            "client=%s:%s method=%s kind=%s status=%s bytes_out=%s stream=%s duration_ms=%.2f",
            event["client"],
            event["port"],
            event["method"],
            event["kind"],
            event["status"],
            event["bytes_out"],
            event["stream"],
            duration_ms,
        )
