"""Tests for the listening socket and accepted peer connections."""

import socket

import pytest

from acceptor import ConnectionAcceptor, ListenerError


def test_acceptor_binds_ephemeral_port_and_accepts() -> None:
    with ConnectionAcceptor("127.0.0.1", 0, 16) as acceptor:
        assert acceptor.port != 0
        with socket.create_connection(("127.0.0.1", acceptor.port), timeout=2) as client:
            connection = acceptor.accept()
            try:
                assert connection.address[0] == "127.0.0.1"
                assert connection.address[1] == client.getsockname()[1]
                client.sendall(b"ping")
                assert connection.recv(16) == b"ping"
            finally:
                connection.close()


def test_peer_connection_close_is_idempotent() -> None:
    with ConnectionAcceptor("127.0.0.1", 0) as acceptor:
        with socket.create_connection(("127.0.0.1", acceptor.port), timeout=2) as client:
            connection = acceptor.accept()
            connection.close()
            connection.close()

            assert connection.closed
            assert connection.sock.fileno() == -1
            assert client.recv(16) == b""


def test_accepted_socket_is_blocking_even_with_poll_interval() -> None:
    with ConnectionAcceptor("127.0.0.1", 0, poll_interval=0.05) as acceptor:
        with socket.create_connection(("127.0.0.1", acceptor.port), timeout=2):
            with acceptor.accept() as connection:
                assert connection.sock.gettimeout() is None


def test_accept_times_out_when_poll_interval_is_set() -> None:
    with ConnectionAcceptor("127.0.0.1", 0, poll_interval=0.05) as acceptor:
        with pytest.raises(socket.timeout):
            acceptor.accept()


def test_bind_failure_raises_listener_error() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]

        acceptor = ConnectionAcceptor("127.0.0.1", port)
        with pytest.raises(ListenerError):
            acceptor.open()


def test_accept_before_open_raises_listener_error() -> None:
    with pytest.raises(ListenerError):
        ConnectionAcceptor("127.0.0.1", 0).accept()


def test_accept_after_close_raises_listener_error() -> None:
    acceptor = ConnectionAcceptor("127.0.0.1", 0, poll_interval=0.05)
    acceptor.open()
    assert not acceptor.closed

    acceptor.close()
    acceptor.close()

    assert acceptor.closed
    with pytest.raises(ListenerError):
        acceptor.accept()
