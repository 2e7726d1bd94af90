"""Read-only access to the single servable file."""

from __future__ import annotations

import os
import stat
import threading


class FileHandle:
    """Open read-only descriptor plus the byte length seen at open time."""

    def __init__(self, path: str, fd: int, size: int) -> None:
        self.path = path
        self.size = size
        self._fd = fd
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._fd < 0

    def fileno(self) -> int:
        if self._fd < 0:
            raise ValueError("I/O operation on closed file handle")
        return self._fd

    def read(self, size: int, offset: int) -> bytes:
        return os.pread(self.fileno(), size, offset)

    def close(self) -> None:
        with self._close_lock:
            if self._fd < 0:
                return
            fd, self._fd = self._fd, -1
        os.close(fd)

    def __enter__(self) -> "FileHandle":
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"FileHandle(path={self.path!r}, size={self.size}, closed={self.closed})"


def open_file(path: str) -> FileHandle:
    """Open ``path`` read-only and capture its size.

    Raises FileNotFoundError, PermissionError, IsADirectoryError or OSError
    when the file cannot be served.
    """
    fd = os.open(path, os.O_RDONLY)
    try:
        file_stat = os.fstat(fd)
    except OSError:
        os.close(fd)
        raise
    if stat.S_ISDIR(file_stat.st_mode):
        os.close(fd)
        raise IsADirectoryError(f"Is a directory: {path}")
    return FileHandle(path=path, fd=fd, size=file_stat.st_size)

