"""Reads hosts to test, line by line, from a host file in large chunks."""

from __future__ import annotations

import os
from collections import deque
from typing import BinaryIO

from .config import HostfileConfig

DEFAULT_READ = 1024 * 100


class HostFile:
    """Hands out the hosts of a file, one per line, in batches."""

    def __init__(self, conf: HostfileConfig) -> None:
        if conf.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.path = conf.host_file
        self.max_concurrent = conf.max_concurrent
        self._file: BinaryIO | None = None
        self._size = 0
        self._total_read = 0
        self._pending = b""
        self._hosts: deque[str] = deque()
        self._file_over = False
        self._available = False

    def open(self, start_from: int) -> None:
        """Open the file (creating it if missing) and skip the first ``start_from`` hosts."""
        if self._file is not None:
            return
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
        stream = os.fdopen(fd, "r+b")
        size = os.fstat(stream.fileno()).st_size
        if size == 0:
            stream.close()
            raise ValueError("empty file")
        self._file = stream
        self._size = size
        self._available = True
        self.skip(start_from)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def next_batch(self) -> list[str]:
        """Up to ``max_concurrent`` hosts; the final batch ends availability."""
        while True:
            if len(self._hosts) > self.max_concurrent:
                return [self._hosts.popleft() for _ in range(self.max_concurrent)]
            if self._file_over:
                self._available = False
                batch = list(self._hosts)
                self._hosts.clear()
                return batch
            self._fill()

    def next_one(self) -> str | None:
        """The next host, or None when the file is exhausted."""
        while True:
            if self._hosts:
                return self._hosts.popleft()
            if self._file_over:
                return None
            self._fill()

    def skip(self, count: int) -> None:
        """Drop the next ``count`` hosts."""
        if count < 0:
            raise ValueError("invalid check count")
        while len(self._hosts) < count:
            if self._file_over:
                raise ValueError("no more data: may be host file change")
            count -= len(self._hosts)
            self._hosts.clear()
            self._fill()
        for _ in range(count):
            self._hosts.popleft()

    def available(self) -> bool:
        return self._available

    def _fill(self) -> None:
        if self._file is None:
            raise RuntimeError("host file is not open")
        size = min(DEFAULT_READ, self._size - self._total_read)
        chunk = self._file.read(size)
        self._total_read += len(chunk)
        if self._total_read >= self._size or not chunk:
            self._file_over = True
        lines = (self._pending + chunk).split(b"\n")
        self._pending = lines.pop()
        self._hosts.extend(_decode(line) for line in lines)
        if self._file_over and self._pending:
            self._hosts.append(_decode(self._pending))
            self._pending = b""


def _decode(line: bytes) -> str:
    if line.endswith(b"\r"):
        line = line[:-1]
    return line.decode("utf-8", errors="replace")