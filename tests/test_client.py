import socket
import struct
import threading

import pytest

from netshoot.client import (
    Client,
    PayloadSender,
    SpeedTestError,
    TcpRetryError,
    new_node,
    speedtest,
)
from netshoot.collector import ResultCollector
from netshoot.config import ClientConfig, ClientNodeConfig, PayloadSenderConfig
from netshoot.payload import PAYLOAD_DELIM, create_payload_file


def _recv_exact(conn, size):
    data = bytearray()
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            raise EOFError
        data += chunk
    return bytes(data)


def _serve_speedtest(conn):
    (size,) = struct.unpack(">H", _recv_exact(conn, 2))
    conn.sendall(b"done")
    conn.sendall(b"\xff" * (size * 1024 * 1024))


class _Server:
    def __init__(self, handler):
        self.handler = handler
        self.listener = socket.create_server(("127.0.0.1", 0))
        self.port = self.listener.getsockname()[1]
        self.address = f"127.0.0.1:{self.port}"
        threading.Thread(target=self._serve, daemon=True).start()

    def _serve(self):
        while True:
            try:
                conn, _ = self.listener.accept()
            except OSError:
                return
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn):
        with conn:
            try:
                self.handler(conn)
            except (OSError, EOFError):
                pass

    def close(self):
        self.listener.close()


@pytest.fixture
def serve():
    servers = []

    def start(handler):
        server = _Server(handler)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()


def _closed_port_address():
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]
    return f"127.0.0.1:{port}"


@pytest.fixture
def payload_file(tmp_path):
    path = tmp_path / "payload.dt"
    with open(path, "wb") as stream:
        create_payload_file([b"GET /" + PAYLOAD_DELIM + b" HTTP/1.1"], [b"OK"], ["get"], stream)
    return path


def test_speedtest_against_server(serve):
    server = serve(_serve_speedtest)
    for _ in range(10):
        with socket.create_connection(("127.0.0.1", server.port)) as conn:
            speed = speedtest(conn, 2)
        assert speed > 0


def test_speedtest_bad_response(serve):
    server = serve(lambda conn: conn.sendall(b"nope"))
    with socket.create_connection(("127.0.0.1", server.port)) as conn:
        with pytest.raises(SpeedTestError, match="speedtest response not recived"):
            speedtest(conn, 1)


def test_speedtest_short_data(serve):
    def handler(conn):
        _recv_exact(conn, 2)
        conn.sendall(b"done" + b"\xff" * 100)

    server = serve(handler)
    with socket.create_connection(("127.0.0.1", server.port)) as conn:
        with pytest.raises(EOFError):
            speedtest(conn, 1)


def test_speedtest_zero_size_times_out():
    left, right = socket.socketpair()
    with left, right:
        with pytest.raises(TimeoutError):
            speedtest(left, 0)


def test_payload_sender_success(serve, payload_file):
    received = []
    expected = b"GET /example.com HTTP/1.1"

    def handler(conn):
        received.append(_recv_exact(conn, len(expected)))
        conn.sendall(b"OK")
        _serve_speedtest(conn)

    server = serve(handler)
    sender = PayloadSender(
        PayloadSenderConfig(
            server_addr=server.address,
            handshake_retry=2,
            payload_file=str(payload_file),
            test_buf_size=1,
        )
    )
    result = sender.test("example.com")
    assert received == [expected]
    assert result.host == "example.com"
    assert (result.success, result.maybe, result.total_tcp_fail) == (1, 1, 0)
    single = result.payload_info[0]
    assert single.payload_name == "get"
    assert single.error == ""
    assert single.max_speed > 0
    assert result.max_speed == single.max_speed


def test_payload_sender_response_missing(serve, payload_file):
    expected = b"GET /example.com HTTP/1.1"
    server = serve(lambda conn: _recv_exact(conn, len(expected)))
    sender = PayloadSender(
        PayloadSenderConfig(
            server_addr=server.address,
            handshake_retry=1,
            payload_file=str(payload_file),
            test_buf_size=1,
        )
    )
    result = sender.test("example.com")
    single = result.payload_info[0]
    assert single.error.startswith("payload response read err: ")
    assert single.maybe is False
    assert result.success == 0


def test_payload_sender_tcp_failure(payload_file):
    sender = PayloadSender(
        PayloadSenderConfig(
            server_addr=_closed_port_address(),
            handshake_retry=2,
            payload_file=str(payload_file),
        )
    )
    result = sender.test("example.com")
    assert result.total_tcp_fail == 1
    assert result.payload_info[0].tcp_failed is True
    assert result.payload_info[0].error.startswith("all tcp handshake retry failed: ")


def test_dial_without_retries_fails(payload_file):
    sender = PayloadSender(
        PayloadSenderConfig(server_addr="127.0.0.1:1", handshake_retry=0, payload_file=str(payload_file))
    )
    with pytest.raises(TcpRetryError, match="all tcp handshake retry failed"):
        sender.dial()


def test_new_node_unknown_type():
    with pytest.raises(ValueError, match="Unknown Type: ftp"):
        new_node(ClientNodeConfig(type="ftp"))


def test_new_node_http_not_available():
    with pytest.raises(ValueError, match="no available yet"):
        new_node(ClientNodeConfig(type="http"))


def test_client_skips_disabled_nodes():
    client = Client(ClientConfig(nodes=[ClientNodeConfig(type="ftp", disabled=True)]))
    assert client.node_count() == 0


def test_client_wraps_node_errors():
    with pytest.raises(ValueError, match="node create failed: Unknown Type: ftp"):
        Client(ClientConfig(nodes=[ClientNodeConfig(type="ftp")]))


def test_client_missing_payload_file(tmp_path):
    node = ClientNodeConfig(
        type="payload",
        payload_sender=PayloadSenderConfig(payload_file=str(tmp_path / "none.dt")),
    )
    with pytest.raises(ValueError, match="node create failed: payload file open error"):
        Client(ClientConfig(nodes=[node]))


def test_make_test_uploads_to_collector(payload_file):
    node = ClientNodeConfig(
        type="payload",
        payload_sender=PayloadSenderConfig(
            server_addr=_closed_port_address(),
            handshake_retry=1,
            payload_file=str(payload_file),
        ),
    )
    client = Client(ClientConfig(nodes=[node]))
    assert client.node_count() == 1
    collector = ResultCollector()
    collector.reset(1)
    thread = threading.Thread(target=client.make_test, args=("example.com", collector))
    thread.start()
    results = collector.wait()
    thread.join()
    assert [result.host for result in results] == ["example.com"]
    assert results[0].tcp_fail_count() == 1