"""Client nodes: send payloads to a payload server and measure the link speed."""

from __future__ import annotations

import logging
import socket
import ssl
import struct
import time
import warnings
from typing import Any, Protocol

from .collector import ResultCollector
from .config import NODE_HTTP, NODE_PAYLOAD, ClientConfig, ClientNodeConfig, PayloadSenderConfig, TlsConf
from .payload import Payload, read_payload_file
from .results import PayloadResult, Result, SinglePayload, TlsInfo

MEGABYTE = 1024 * 1024

ERR_SPEEDTEST_RESPONSE = "speedtest response not recived"
ERR_SPEEDTEST_NO_TIME = "no time elpsed speedtest"


class ClientNode(Protocol):
    def test(self, host: str) -> Result: ...

    def start(self) -> None: ...

    def close(self) -> None: ...


class SpeedTestError(Exception):
    """The speed test exchange went wrong."""


class TcpRetryError(Exception):
    """Every TCP connection attempt failed."""

    def __init__(self, cause: BaseException | None) -> None:
        self.cause = cause
        detail = str(cause) if cause is not None else "no connection attempt was made"
        super().__init__(f"all tcp handshake retry failed: {detail}")


def speedtest(conn: Any, size_mb: int) -> float:
    """Ask the server for ``size_mb`` megabytes and return the speed in Mbps."""
    if not 0 <= size_mb <= 0xFFFF:
        raise ValueError(f"speedtest size out of range: {size_mb}")
    deadline = time.monotonic() + 20 * size_mb

    def arm() -> None:
        left = deadline - time.monotonic()
        if left <= 0:
            raise TimeoutError("speedtest deadline exceeded")
        conn.settimeout(left)

    arm()
    conn.sendall(struct.pack(">H", size_mb))
    reply = bytearray()
    while len(reply) < 4:
        arm()
        chunk = conn.recv(4 - len(reply))
        if not chunk:
            raise EOFError("connection closed before speedtest response")
        reply += chunk
    if reply != b"done":
        raise SpeedTestError(ERR_SPEEDTEST_RESPONSE)

    must_read = size_mb * MEGABYTE
    start = time.perf_counter()
    while must_read > 0:
        arm()
        chunk = conn.recv(min(must_read, MEGABYTE))
        if not chunk:
            raise EOFError(f"connection closed with {must_read} speedtest bytes missing")
        must_read -= len(chunk)
    elapsed = time.perf_counter() - start
    if elapsed <= 0:
        raise SpeedTestError(ERR_SPEEDTEST_NO_TIME)
    return size_mb / elapsed * 8


def _split_host_port(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address}: missing port in address")
    host = host.strip("[]") or "localhost"
    return host, int(port)


def _client_tls_context(conf: TlsConf) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    if conf.insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    else:
        context.load_default_certs()
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DeprecationWarning)
        try:
            context.minimum_version = conf.min_version()
        except ValueError:
            pass
        context.maximum_version = conf.max_version()
    if conf.next_proto:
        context.set_alpn_protocols(conf.next_proto)
    return context


class PayloadSender:
    """Sends every payload to the server on behalf of a host and records the outcome."""

    def __init__(self, conf: PayloadSenderConfig, logger: logging.Logger | None = None) -> None:
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.server_addr = conf.server_addr
        self.handshake_retry = conf.handshake_retry
        self.dial_timeout = conf.dial_timeout()
        self.local_address = conf.local_address()
        self.speedtest_size = conf.speedtest_size()
        self.tls_timeout = conf.tls_auth_timeout()
        self.write_timeout = conf.write_timeout()
        self.read_timeout = conf.read_timeout()
        self.payloads: list[Payload] = read_payload_file(conf.payload_file)
        self.tls_context = _client_tls_context(conf.tls) if conf.tls.enabled else None

    def test(self, host: str) -> PayloadResult:
        result = PayloadResult(host=host)
        for payload in self.payloads:
            result.payload_info.append(self._try_payload(payload, host))
        result.preprocess()
        return result

    def _try_payload(self, payload: Payload, host: str) -> SinglePayload:
        outcome = SinglePayload(payload_name=payload.name())
        try:
            conn: Any = self.dial()
        except TcpRetryError as exc:
            outcome.tcp_failed = True
            outcome.error = str(exc)
            return outcome
        self.logger.debug("tcp dialing success host=%s", host)
        try:
            if self.tls_context is not None:
                outcome.tls = TlsInfo(servername=host)
                try:
                    conn = self._tls_handshake(conn, host)
                except (OSError, ValueError) as exc:
                    outcome.tls.failed = True
                    outcome.tls.error = str(exc)
                    return outcome

            conn.settimeout(self.write_timeout)
            try:
                payload.write_to(conn, host)
            except OSError as exc:
                outcome.error = f"payload write err: {exc}"
                return outcome
            self.logger.debug("payload write success host=%s", host)

            conn.settimeout(self.read_timeout)
            try:
                payload.read_response(conn)
            except (OSError, EOFError) as exc:
                outcome.error = f"payload response read err: {exc}"
                return outcome
            self.logger.debug("payload read success host=%s", host)

            outcome.maybe = True
            try:
                outcome.max_speed = speedtest(conn, self.speedtest_size)
            except (OSError, EOFError, SpeedTestError, ValueError) as exc:
                outcome.error = f"speedtest err: {exc}"
                return outcome
            self.logger.debug("speedtest success speed=%f host=%s", outcome.max_speed, host)
            outcome.success = True
            return outcome
        finally:
            conn.close()

    def _tls_handshake(self, sock: socket.socket, host: str) -> ssl.SSLSocket:
        assert self.tls_context is not None
        tls_sock = self.tls_context.wrap_socket(
            sock, server_hostname=host, do_handshake_on_connect=False
        )
        try:
            tls_sock.settimeout(self.tls_timeout)
            tls_sock.do_handshake()
        except BaseException:
            tls_sock.close()
            raise
        return tls_sock

    def dial(self) -> socket.socket:
        """Connect to the server, retrying up to ``handshake_retry`` times."""
        last: BaseException | None = None
        for _ in range(self.handshake_retry):
            try:
                return socket.create_connection(
                    _split_host_port(self.server_addr),
                    timeout=self.dial_timeout,
                    source_address=self.local_address,
                )
            except (OSError, ValueError) as exc:
                last = exc
        raise TcpRetryError(last)

    def start(self) -> None:
        return None

    def close(self) -> None:
        return None


def new_node(conf: ClientNodeConfig, logger: logging.Logger | None = None) -> ClientNode:
    """Build the client node that ``conf.type`` names."""
    if conf.type == NODE_PAYLOAD:
        return PayloadSender(conf.payload_sender, logger)
    if conf.type == NODE_HTTP:
        raise ValueError("no available yet")
    raise ValueError(f"Unknown Type: {conf.type}")


class Client:
    """All enabled client nodes; each host is tested by every node."""

    def __init__(self, conf: ClientConfig, logger: logging.Logger | None = None) -> None:
        self.nodes: list[ClientNode] = []
        for node_conf in conf.nodes:
            if node_conf.disabled:
                continue
            try:
                self.nodes.append(new_node(node_conf, logger))
            except ValueError as exc:
                raise ValueError(f"node create failed: {exc}") from exc

    def start(self) -> None:
        for node in self.nodes:
            node.start()

    def close(self) -> None:
        for node in self.nodes:
            node.close()

    def node_count(self) -> int:
        return len(self.nodes)

    def make_test(self, host: str, collector: ResultCollector) -> None:
        """Test ``host`` with every node and upload the results to ``collector``."""
        results: list[Result] = []
        try:
            for node in self.nodes:
                results.append(node.test(host))
        finally:
            collector.upload(results)