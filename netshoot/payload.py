"""Payload definitions and the binary payload file format.

A payload file is laid out, big-endian, as::

    count:u16, then for each payload
    name_len:u8  name  payload_len:u32  response_len:u32  payload  response

The payload bytes may contain ``PAYLOAD_DELIM`` markers; each marker is where
the client puts the host name it is testing.
"""

from __future__ import annotations

import os
import struct
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, BinaryIO

from .bufreader import PrefixedReader, unwrap_reader

PAYLOAD_DELIM = b"<--netshoot-->"

_DISCARD_CHUNK = 64 * 1024


class PayloadFileError(ValueError):
    """A payload file could not be opened, read or written."""


class _RecvReader:
    """Gives a socket-like object a ``read`` method."""

    def __init__(self, sock: Any) -> None:
        self.sock = sock

    def read(self, size: int) -> bytes:
        return self.sock.recv(size)


def _read_chunk(reader: Any, size: int) -> bytes:
    recv = getattr(reader, "recv", None)
    if recv is not None:
        return recv(size)
    return reader.read(size)


def _read_exact(reader: Any, size: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < size:
        chunk = _read_chunk(reader, size - len(chunks))
        if not chunk:
            raise EOFError(f"unexpected end of data: wanted {size} bytes, got {len(chunks)}")
        chunks += chunk
    return bytes(chunks)


def _read_upto(reader: Any, size: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < size:
        chunk = _read_chunk(reader, size - len(chunks))
        if not chunk:
            break
        chunks += chunk
    return bytes(chunks)


def _discard(reader: Any, count: int) -> None:
    while count > 0:
        chunk = _read_chunk(reader, min(count, _DISCARD_CHUNK))
        if not chunk:
            raise EOFError(f"unexpected end of data: {count} bytes still expected")
        count -= len(chunk)


def _send(writer: Any, data: bytes) -> None:
    sendall = getattr(writer, "sendall", None)
    if sendall is not None:
        sendall(data)
    else:
        writer.write(data)


@dataclass
class Payload:
    """One payload: its parts, split where the host goes, and its response."""

    payload_name: str
    parts: list[bytes]
    response: bytes = b""
    _full_length: int = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.parts:
            raise ValueError("a payload needs at least one part")
        self.parts = [bytes(part) for part in self.parts]
        self.response = bytes(self.response)
        self._full_length = sum(len(part) for part in self.parts)

    @property
    def full_length(self) -> int:
        """Length of all parts together, without hosts."""
        return self._full_length

    def name(self) -> str:
        return self.payload_name

    def write_to(self, writer: Any, host: str) -> None:
        """Send the payload with ``host`` placed between consecutive parts."""
        host_bytes = host.encode()
        last = len(self.parts) - 1
        for index, part in enumerate(self.parts):
            _send(writer, part)
            if index == last:
                break
            _send(writer, host_bytes)

    def read_response(self, reader: Any) -> bytes:
        """Read exactly as many bytes as the expected response holds."""
        return _read_exact(reader, len(self.response))

    def write_response(self, writer: Any) -> int:
        """Send the whole response and return its length."""
        _send(writer, self.response)
        return len(self.response)

    def read_after_first(self, reader: Any) -> str:
        """Read the rest of a payload whose first part was already consumed.

        Returns the host found between the first and second parts.
        """
        if len(self.parts) == 1:
            return ""
        marker = self.parts[1][:5]
        if not marker:
            raise ValueError("payload has an empty part after the first")

        source: Any = _RecvReader(reader) if hasattr(reader, "recv") else reader
        host = bytearray()
        while True:
            byte = _read_exact(source, 1)
            if byte[0] == marker[0]:
                rest = _read_upto(source, len(marker) - 1)
                if rest == marker[1:]:
                    break
                source = PrefixedReader(rest, source)
            host += byte

        source = unwrap_reader(source)
        hosts_left = max(len(self.parts) - 2, 0)
        remaining = self.full_length - (len(self.parts[0]) + len(marker)) + hosts_left * len(host)
        _discard(source, remaining)
        return host.decode("utf-8", errors="replace")


def split_payload(data: bytes) -> list[bytes]:
    """Split raw payload bytes at each delimiter.

    One leading delimiter is dropped and empty pieces between delimiters are
    skipped; the piece after the last delimiter is always kept.
    """
    data = bytes(data)
    if data.startswith(PAYLOAD_DELIM):
        data = data[len(PAYLOAD_DELIM):]
    parts: list[bytes] = []
    last = 0
    pos = data.find(PAYLOAD_DELIM)
    while pos != -1:
        start = last + len(PAYLOAD_DELIM) if last > 0 else last
        if pos > start:
            parts.append(data[start:pos])
        last = pos
        pos = data.find(PAYLOAD_DELIM, pos + 1)
    parts.append(data[last + len(PAYLOAD_DELIM):] if last > 0 else data)
    return parts


def _read_one(stream: BinaryIO) -> Payload:
    (name_length,) = struct.unpack(">B", _read_exact(stream, 1))
    name = _read_exact(stream, name_length).decode("utf-8", errors="replace")
    payload_length, response_length = struct.unpack(">II", _read_exact(stream, 8))
    raw = _read_exact(stream, payload_length)
    response = _read_exact(stream, response_length)
    return Payload(payload_name=name, parts=split_payload(raw), response=response)


def read_payloads(stream: BinaryIO) -> list[Payload]:
    """Read every payload from ``stream``, sorted by the length of the first part."""
    try:
        (count,) = struct.unpack(">H", _read_exact(stream, 2))
        payloads = [_read_one(stream) for _ in range(count)]
    except (EOFError, struct.error) as exc:
        raise PayloadFileError(f"payload file read err: {exc}") from exc
    return sorted(payloads, key=lambda payload: len(payload.parts[0]))


def read_payload_file(path: str | os.PathLike[str]) -> list[Payload]:
    """Read and sort the payloads stored in the file at ``path``."""
    try:
        stream = open(path, "rb")
    except OSError as exc:
        raise PayloadFileError(f"payload file open error: {exc}") from exc
    with stream:
        return read_payloads(stream)


def create_payload_file(
    payloads: Sequence[bytes],
    responses: Sequence[bytes],
    names: Sequence[str],
    stream: BinaryIO,
) -> None:
    """Write payloads, their responses and names to ``stream`` in payload file form."""
    if not len(payloads) == len(responses) == len(names):
        raise PayloadFileError("payload and response count missmatch")
    if len(payloads) > 0xFFFF:
        raise PayloadFileError("too many payloads for one file")
    stream.write(struct.pack(">H", len(payloads)))
    for payload, response, name in zip(payloads, responses, names):
        name_bytes = name.encode()
        if len(name_bytes) > 0xFF:
            raise PayloadFileError(f"payload name too long: {name!r}")
        stream.write(struct.pack(">B", len(name_bytes)))
        stream.write(name_bytes)
        stream.write(struct.pack(">II", len(payload), len(response)))
        stream.write(bytes(payload))
        stream.write(bytes(response))


def first_parts(payloads: Sequence[Payload]) -> list[bytes]:
    """The first part of each payload, in the given order."""
    return [payload.parts[0] for payload in payloads]