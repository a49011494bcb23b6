"""Payload servers: recognise incoming payloads, answer them and serve speed tests."""

from __future__ import annotations

import logging
import socket
import ssl
import struct
import threading
import time
import warnings
from typing import Any, Protocol

from .config import (
    NODE_HTTP,
    NODE_PAYLOAD,
    PayloadServerConfig,
    ServerConfig,
    ServerNodeConfig,
    TlsServerConfig,
)
from .payload import Payload, first_parts, read_payload_file

MEGABYTE = 1024 * 1024
SPEEDTEST_SIZE_TIMEOUT = 1.0
SECONDS_PER_MEGABYTE = 20

_ACCEPT_POLL = 0.2
_TLS_HANDSHAKE_RECORD = 0x16
_TLS_MAJOR_VERSION = 0x03


class PayloadNotFoundError(Exception):
    """The bytes received match the start of no known payload."""


class ServerNode(Protocol):
    def start(self) -> None: ...

    def close(self) -> None: ...


def _read_exact(reader: Any, size: int) -> bytes:
    recv = getattr(reader, "recv", None)
    data = bytearray()
    while len(data) < size:
        wanted = size - len(data)
        chunk = recv(wanted) if recv is not None else reader.read(wanted)
        if not chunk:
            raise EOFError(f"unexpected end of data: wanted {size} bytes, got {len(data)}")
        data += chunk
    return bytes(data)


def _split_host_port(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address}: missing port in address")
    return host.strip("[]"), int(port)


def speedtest(conn: Any) -> None:
    """Serve one speed test: read the size in megabytes, answer ``done``, then send the data."""
    conn.settimeout(SPEEDTEST_SIZE_TIMEOUT)
    (size,) = struct.unpack(">H", _read_exact(conn, 2))
    deadline = time.monotonic() + size * SECONDS_PER_MEGABYTE

    def arm() -> None:
        left = deadline - time.monotonic()
        if left <= 0:
            raise TimeoutError("speedtest deadline exceeded")
        conn.settimeout(left)

    arm()
    conn.sendall(b"done")
    must_write = size * MEGABYTE
    block = memoryview(b"\xff" * min(MEGABYTE, must_write))
    while must_write > 0:
        count = min(must_write, len(block))
        arm()
        conn.sendall(block[:count])
        must_write -= count


class MixedHandler:
    """Accepts plain and TLS connections on one port, telling them apart by the first bytes."""

    def __init__(self, conf: TlsServerConfig) -> None:
        self.context: ssl.SSLContext | None = None
        self.timeout = 0.0
        if conf.enabled:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            context.load_cert_chain(conf.cert, conf.key)
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", DeprecationWarning)
                try:
                    context.minimum_version = ssl.TLSVersion.TLSv1
                except ValueError:
                    pass
            context.maximum_version = ssl.TLSVersion.TLSv1_3
            self.context = context
            self.timeout = conf.tls_timeout()

    def handle(self, conn: Any) -> Any:
        """Return ``conn``, or a TLS socket over it when the client starts a TLS handshake."""
        if self.context is None:
            return conn
        conn.settimeout(self.timeout)
        try:
            head = conn.recv(5, socket.MSG_PEEK)
        except OSError:
            conn.close()
            raise
        if not head:
            conn.close()
            raise EOFError("connection closed before any data")
        if len(head) >= 2 and head[0] == _TLS_HANDSHAKE_RECORD and head[1] == _TLS_MAJOR_VERSION:
            tls_conn = self.context.wrap_socket(conn, server_side=True, do_handshake_on_connect=False)
            try:
                tls_conn.settimeout(self.timeout)
                tls_conn.do_handshake()
            except BaseException:
                tls_conn.close()
                raise
            return tls_conn
        return conn


class PayloadServer:
    """Listens for payloads, reports the host inside each and answers with its response."""

    def __init__(self, conf: PayloadServerConfig, logger: logging.Logger | None = None) -> None:
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.write_timeout = conf.write_timeout()
        self.read_timeout = conf.read_timeout()
        self.payloads: list[Payload] = read_payload_file(conf.payload_file)
        self.first_parts: list[bytes] = first_parts(self.payloads)
        self._listener = socket.create_server(_split_host_port(conf.listen.listen_addr))
        try:
            self.mixed_handler = MixedHandler(conf.listen.tls) if conf.listen.tls.enabled else None
        except BaseException:
            self._listener.close()
            raise
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int]:
        """The address the server listens on."""
        host, port = self._listener.getsockname()[:2]
        return host, port

    def start(self) -> None:
        self.logger.debug("payload server started")
        self._listener.settimeout(_ACCEPT_POLL)
        self._thread = threading.Thread(target=self._accept_loop, name="payload-server", daemon=True)
        self._thread.start()

    def close(self) -> None:
        self._stopped.set()
        self._listener.close()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _accept_loop(self) -> None:
        while not self._stopped.is_set():
            try:
                conn, peer = self._listener.accept()
            except OSError:
                continue
            self.logger.debug("connection recived %s", peer)
            threading.Thread(target=self.handle_connection, args=(conn,), daemon=True).start()

    def handle_connection(self, conn: Any) -> None:
        """Serve one client: detect its payload, answer it and run the speed test."""
        if self.mixed_handler is not None:
            try:
                conn = self.mixed_handler.handle(conn)
            except (OSError, EOFError, ValueError) as exc:
                self.logger.error("connection prehandle err mixed handler err: %s", exc)
                return
        try:
            conn.settimeout(self.read_timeout)
            try:
                number = self.detect_payload_strict(conn)
            except (OSError, EOFError, PayloadNotFoundError) as exc:
                self.logger.error("payload detect failed: %s", exc)
                return
            self.logger.debug("payload detected succesfully")

            payload = self.payloads[number]
            try:
                host = payload.read_after_first(conn)
            except (OSError, EOFError, ValueError) as exc:
                self.logger.error("payload read error after detect payload: %s", exc)
                return
            self.logger.info("received host in payload host=%s payload=%d", host, number)

            conn.settimeout(self.write_timeout)
            try:
                payload.write_response(conn)
            except OSError as exc:
                self.logger.error("payload response write err: %s", exc)
                return
            try:
                speedtest(conn)
            except (OSError, EOFError, struct.error) as exc:
                self.logger.error("speedtest failed: %s", exc)
        finally:
            conn.close()

    def detect_payload_strict(self, reader: Any) -> int:
        """Index of the payload whose whole first part the client sent."""
        cache = bytearray()
        for index, first in enumerate(self.first_parts):
            cache += _read_exact(reader, len(first) - len(cache))
            if cache == first:
                return index
        raise PayloadNotFoundError("not valid payload")

    def detect_payload_easy(self, reader: Any) -> int:
        """Index of the last payload whose own stretch of the first-part bytes matched."""
        number = 0
        previous = 0
        for index, first in enumerate(self.first_parts):
            chunk = _read_exact(reader, len(first) - previous)
            if chunk == first[previous:]:
                number = index
            previous = len(first)
        return number


def new_node(conf: ServerNodeConfig, logger: logging.Logger | None = None) -> ServerNode:
    """Build the server node that ``conf.type`` names."""
    if conf.type == NODE_PAYLOAD:
        return PayloadServer(conf.payload_server, logger)
    if conf.type == NODE_HTTP:
        raise ValueError("this feature is not developed yet, it may be available in the future")
    raise ValueError(f"Unknown Server Type: {conf.type}")


class Server:
    """All enabled server nodes."""

    def __init__(self, conf: ServerConfig, logger: logging.Logger | None = None) -> None:
        self.nodes: list[ServerNode] = []
        try:
            for node_conf in conf.nodes:
                if node_conf.disabled:
                    continue
                self.nodes.append(new_node(node_conf, logger))
        except BaseException:
            self.close()
            raise

    def start(self) -> None:
        for node in self.nodes:
            node.start()

    def close(self) -> None:
        for node in self.nodes:
            try:
                node.close()
            except OSError:
                pass

    def node_count(self) -> int:
        return len(self.nodes)