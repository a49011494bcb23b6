import json
import logging
import ssl

import pytest

from netshoot.config import (
    Config,
    HostManagerConfig,
    LogConfig,
    PayloadSenderConfig,
    PayloadServerConfig,
    TlsConf,
    TlsServerConfig,
    parse_duration,
)


def test_interface_select_and_read_timeout():
    conf = PayloadSenderConfig(net_iface="Ethernet 4", read_timeout_text="100ms")
    assert conf.read_timeout() == pytest.approx(0.1)
    assert conf.local_address() is None


@pytest.mark.parametrize(
    "text, seconds",
    [
        ("300ms", 0.3),
        ("1.5s", 1.5),
        ("1h2m3s", 3723.0),
        ("-2s", -2.0),
        ("+4m", 240.0),
        ("0", 0.0),
        ("2us", 2e-6),
        ("100ns", 1e-7),
        (".5s", 0.5),
    ],
)
def test_parse_duration(text, seconds):
    assert parse_duration(text) == pytest.approx(seconds)


@pytest.mark.parametrize("text", ["", "10", "5x", ".s", "1.2.3s", "s", "-"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_sender_defaults_when_empty_or_invalid():
    conf = PayloadSenderConfig(dialer_timeout="bogus", write_timeout_text="nope")
    assert conf.dial_timeout() == pytest.approx(0.3)
    assert conf.write_timeout() == pytest.approx(0.3)
    assert conf.read_timeout() == pytest.approx(0.3)
    assert conf.tls_auth_timeout() == pytest.approx(0.3)


def test_sender_parsed_timeouts():
    conf = PayloadSenderConfig(
        dialer_timeout="2s",
        write_timeout_text="750ms",
        tls=TlsConf(auth_timeout="1m"),
        test_buf_size=4,
    )
    assert conf.dial_timeout() == pytest.approx(2.0)
    assert conf.write_timeout() == pytest.approx(0.75)
    assert conf.tls_auth_timeout() == pytest.approx(60.0)
    assert conf.speedtest_size() == 4


def test_local_address_from_literal_ip():
    conf = PayloadSenderConfig(local_addr="127.0.0.1")
    assert conf.local_address() == ("127.0.0.1", 0)


def test_tls_versions():
    tls = TlsConf()
    assert tls.max_version() == ssl.TLSVersion.TLSv1_2
    assert tls.min_version() == ssl.TLSVersion.TLSv1_1


def test_server_timeouts():
    conf = PayloadServerConfig(read_timeout_text="5s")
    assert conf.read_timeout() == pytest.approx(5.0)
    assert conf.write_timeout() == pytest.approx(0.3)


@pytest.mark.parametrize("text, seconds", [("", 0.3), ("bad", 0.3), ("2s", 2.0)])
def test_tls_server_timeout(text, seconds):
    assert TlsServerConfig(timeout=text).tls_timeout() == pytest.approx(seconds)


@pytest.mark.parametrize(
    "level, expected",
    [
        ("debug", logging.DEBUG),
        ("warn", logging.WARNING),
        ("info", logging.INFO),
        ("error", logging.ERROR),
        ("", logging.WARNING),
        ("verbose", logging.WARNING),
    ],
)
def test_logging_level(level, expected):
    assert LogConfig(level=level).logging_level() == expected


SAMPLE = {
    "client": {
        "nodes": [
            {
                "type": "payload",
                "handshake_retry": 3,
                "payload_file": "payload.dt",
                "speedtest_size": 4,
                "server_addr": "127.0.0.1:90",
                "tls": {"enabled": True, "insecure": True, "next_proto": ["h2"]},
                "read_timeout": "1s",
            },
            {"type": "http", "disabled": True},
        ]
    },
    "server": {
        "nodes": [
            {
                "type": "payload",
                "payload_file": "payload.dt",
                "listen_conf": {"listen": "127.0.0.1:90", "tls": {"enabled": False}},
            }
        ]
    },
    "result": {"output_file": "out.json", "progress_file": "prog.json", "tcp_fail_threshold": 50},
    "host": {"max_concurrent": 1, "host_file": "host.txt", "interval": 1500000000},
    "log": {"level": "debug", "paths": ["stdout"], "encode": "console"},
}


def test_from_dict_full():
    conf = Config.from_dict(SAMPLE)
    first = conf.client.nodes[0]
    assert first.type == "payload"
    assert first.payload_sender.handshake_retry == 3
    assert first.payload_sender.server_addr == "127.0.0.1:90"
    assert first.payload_sender.tls.enabled is True
    assert first.payload_sender.tls.next_proto == ["h2"]
    assert first.payload_sender.read_timeout() == pytest.approx(1.0)
    assert conf.client.nodes[1].disabled is True
    server_node = conf.server.nodes[0]
    assert server_node.payload_server.listen.listen_addr == "127.0.0.1:90"
    assert conf.result.tcp_fail_threshold == 50
    assert conf.host.hostfile.host_file == "host.txt"
    assert conf.host.hostfile.max_concurrent == 1
    assert conf.host.interval == pytest.approx(1.5)
    assert conf.log.paths == ["stdout"]
    assert conf.log.logging_level() == logging.DEBUG


def test_from_dict_empty_gives_defaults():
    conf = Config.from_dict({})
    assert conf == Config()
    assert conf.host == HostManagerConfig()


def test_load_from_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(SAMPLE), encoding="utf-8")
    assert Config.load(path) == Config.from_dict(SAMPLE)


def test_load_rejects_bad_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        Config.load(path)


def test_load_missing_file(tmp_path):
    with pytest.raises(OSError):
        Config.load(tmp_path / "missing.json")


@pytest.mark.parametrize(
    "data",
    [
        [],
        {"client": []},
        {"result": {"tcp_fail_threshold": "ten"}},
        {"result": {"tcp_fail_threshold": True}},
        {"log": {"paths": "stdout"}},
        {"client": {"nodes": [{"disabled": "yes"}]}},
    ],
)
def test_from_dict_rejects_wrong_types(data):
    with pytest.raises(ValueError):
        Config.from_dict(data)