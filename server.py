"""Single-file streaming server entry point and accept loop."""

from __future__ import annotations

import argparse
import errno
import itertools
import logging
import signal
import socket
import threading
import time

from acceptor import ConnectionAcceptor, ListenerError, PeerConnection
from config import (
    CHUNK_SIZE,
    FILE_PATH,
    HOST,
    LISTEN_BACKLOG,
    LOG_FORMAT,
    MAX_TRANSIENT_RETRIES,
    PORT,
)
from file_source import FileHandle, open_file
from metrics import MetricsRegistry
from streaming import StreamingEngine
from worker import ConnectionWorker

logger = logging.getLogger(__name__)

ACCEPT_POLL_SECS = 0.2
ACCEPT_BACKOFF_SECS = 0.05
# Out of descriptors or buffers: pause before accepting again.
RESOURCE_EXHAUSTED_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM})


def ignore_broken_pipe_signal() -> None:
    """Make writes to a closed peer fail with EPIPE instead of killing the process."""
    if not hasattr(signal, "SIGPIPE"):
        return
    if threading.current_thread() is not threading.main_thread():
        return
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)


class StreamServer:
    """Accepts connections and serves one file per connection, one thread each.

    There is no cap on concurrent workers: every accepted connection gets its
    own daemon thread, which is never joined.
    """

    def __init__(
        self,
        host: str = HOST,
        port: int = PORT,
        file_path: str = FILE_PATH,
        chunk_size: int = CHUNK_SIZE,
        *,
        backlog: int = LISTEN_BACKLOG,
        max_transient_retries: int | None = MAX_TRANSIENT_RETRIES,
        log_format: str = LOG_FORMAT,
        engine: StreamingEngine | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.file_path = file_path
        self.backlog = backlog
        self.log_format = log_format
        self.engine = engine or StreamingEngine(
            chunk_size,
            max_transient_retries=max_transient_retries,
        )
        self.metrics = MetricsRegistry()

        self._acceptor: ConnectionAcceptor | None = None
        self._startup_handle: FileHandle | None = None
        self._connection_ids = itertools.count(1)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Open the file, start listening and accept until stopped.

        Raises OSError when the file cannot be opened and ListenerError when
        the port cannot be bound; both happen before any client is served.
        """
        ignore_broken_pipe_signal()
        self._startup_handle = open_file(self.file_path)
        logger.info("Serving %s (%s bytes)", self.file_path, self._startup_handle.size)

        acceptor = ConnectionAcceptor(
            self.host,
            self.port,
            self.backlog,
            poll_interval=ACCEPT_POLL_SECS,
        )
        try:
            acceptor.open()
        except ListenerError:
            self._close_startup_handle()
            raise

        self._acceptor = acceptor
        self._running = True
        self.port = acceptor.port
        try:
            while self._running:
                try:
                    connection = acceptor.accept()
                except socket.timeout:
                    continue
                except ListenerError:
                    break
                except OSError as exc:
                    if not self._running or acceptor.closed:
                        break
                    logger.warning("Accept failed, still listening: %s", exc)
                    if exc.errno in RESOURCE_EXHAUSTED_ERRNOS:
                        time.sleep(ACCEPT_BACKOFF_SECS)
                    continue

                self._spawn_worker(connection)
        finally:
            self._running = False
            acceptor.close()
            self._acceptor = None
            self._close_startup_handle()

    def stop(self) -> None:
        self._running = False
        if self._acceptor is not None:
            self._acceptor.close()

    def _spawn_worker(self, connection: PeerConnection) -> None:
        worker = ConnectionWorker(
            connection,
            self.file_path,
            self.engine,
            metrics=self.metrics,
            log_format=self.log_format,
        )
        thread = threading.Thread(
            target=worker.run,
            name=f"streamix-conn-{next(self._connection_ids)}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError:
            logger.exception("Cannot start worker for %s:%s", *connection.address)
            connection.close()

    def _close_startup_handle(self) -> None:
        if self._startup_handle is not None:
            self._startup_handle.close()
            self._startup_handle = None


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stream a single file over HTTP")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--file", dest="file_path", default=FILE_PATH)
    parser.add_argument("--chunk-size", type=int, default=CHUNK_SIZE)
    parser.add_argument("--max-transient-retries", type=int, default=MAX_TRANSIENT_RETRIES)
    parser.add_argument("--log-format", choices=["plain", "json"], default=LOG_FORMAT)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    try:
        server = StreamServer(
            host=args.host,
            port=args.port,
            file_path=args.file_path,
            chunk_size=args.chunk_size,
            max_transient_retries=args.max_transient_retries,
            log_format=args.log_format,
        )
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    try:
        server.start()
    except KeyboardInterrupt:
        server.stop()
    except ListenerError as exc:
        logger.error("%s", exc)
        return 1
    except OSError as exc:
        logger.error("Cannot open %s: %s", args.file_path, exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
