"""Listening socket ownership and accepted peer connections."""

from __future__ import annotations

import logging
import socket
import threading

from config import HOST, LISTEN_BACKLOG, PORT

logger = logging.getLogger(__name__)

PeerAddress = tuple[str, int]


class ListenerError(Exception):
    """Raised when the listening socket cannot be established."""


class PeerConnection:
    """Accepted client socket, exclusively owned by one worker."""

    def __init__(self, sock: socket.socket, address: PeerAddress) -> None:
        self.sock = sock
        self.address = address
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        return self.sock.fileno()

    def recv(self, size: int) -> bytes:
        return self.sock.recv(size)

    def sendall(self, payload: bytes) -> None:
        self.sock.sendall(payload)

    def close(self) -> None:
        """Shut down both directions and release the descriptor once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already reset or never fully connected.
            pass
        self.sock.close()

    def __enter__(self) -> "PeerConnection":
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()


class ConnectionAcceptor:
    """Binds, listens and hands out one PeerConnection per accept()."""

    def __init__(
        self,
        host: str = HOST,
        port: int = PORT,
        backlog: int = LISTEN_BACKLOG,
        *,
        poll_interval: float | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.backlog = backlog
        self.poll_interval = poll_interval
        self._sock: socket.socket | None = None

    @property
    def closed(self) -> bool:
        return self._sock is None

    def open(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.listen(self.backlog)
            sock.settimeout(self.poll_interval)
        except OSError as exc:
            sock.close()
            raise ListenerError(f"Cannot listen on {self.host}:{self.port}: {exc}") from exc

        self._sock = sock
        self.port = sock.getsockname()[1]
        logger.info("Listening on %s:%s", self.host, self.port)

    def accept(self) -> PeerConnection:
        """Block until a peer connects.

        With a poll interval set, raises socket.timeout when nobody connected
        in time so the caller can check whether it should keep accepting.
        """
        sock = self._sock
        if sock is None:
            raise ListenerError("Listener is not open")
        client_socket, address = sock.accept()
        client_socket.settimeout(None)
        return PeerConnection(client_socket, (address[0], address[1]))

    def close(self) -> None:
        sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()

    def __enter__(self) -> "ConnectionAcceptor":
        self.open()
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()
