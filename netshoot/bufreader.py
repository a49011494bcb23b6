"""Readers and sockets that hand out already-consumed bytes before the rest."""

from __future__ import annotations

from typing import Any


class PrefixedReader:
    """A reader that serves ``prefix`` first, then reads from ``reader``.

    A read that takes prefix bytes returns only those bytes and does not touch
    the underlying reader.
    """

    def __init__(self, prefix: bytes, reader: Any) -> None:
        self._prefix = bytes(prefix)
        self.reader = reader

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            head, self._prefix = self._prefix, b""
            return head + self.reader.read()
        if self._prefix:
            head, self._prefix = self._prefix[:size], self._prefix[size:]
            return head
        return self.reader.read(size)


class PrefixedSocket:
    """A socket wrapper whose ``recv`` returns ``prefix`` before socket data.

    Everything other than ``recv`` is passed to the wrapped socket.
    """

    def __init__(self, prefix: bytes, sock: Any) -> None:
        self._prefix = bytes(prefix)
        self.sock = sock

    def recv(self, bufsize: int) -> bytes:
        if self._prefix:
            head, self._prefix = self._prefix[:bufsize], self._prefix[bufsize:]
            return head
        return self.sock.recv(bufsize)

    def __getattr__(self, name: str) -> Any:
        if name in ("sock", "_prefix"):
            raise AttributeError(name)
        return getattr(self.sock, name)

    def __enter__(self) -> PrefixedSocket:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.sock.close()


def unwrap_reader(reader: Any) -> Any:
    """Strip every PrefixedReader layer, dropping any unread prefix bytes."""
    while isinstance(reader, PrefixedReader):
        reader = reader.reader
    return reader