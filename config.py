"""Configuration constants for the streamix file server."""

import socket

HOST: str = "0.0.0.0"
PORT: int = 8080
FILE_PATH: str = "/var/www/big_file"
CHUNK_SIZE: int = 8 * 1024 * 1024
RECV_BUFFER_SIZE: int = 4095
LISTEN_BACKLOG: int = socket.SOMAXCONN
# None keeps retrying would-block/interrupted transfers indefinitely.
MAX_TRANSIENT_RETRIES: int | None = None
LOG_FORMAT: str = "plain"
