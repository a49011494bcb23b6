"""Configuration model: JSON loading, duration parsing and derived settings."""

from __future__ import annotations

import json
import logging
import re
import socket
import ssl
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

NODE_PAYLOAD = "payload"
NODE_HTTP = "http"

DEFAULT_DIAL_TIMEOUT = 0.3
DEFAULT_TLS_AUTH_TIMEOUT = 0.3
DEFAULT_CLIENT_WRITE_TIMEOUT = 0.3
DEFAULT_CLIENT_READ_TIMEOUT = 0.3
DEFAULT_SERVER_WRITE_TIMEOUT = 0.3
DEFAULT_SERVER_READ_TIMEOUT = 0.3

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_PART = r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_PART_RE = re.compile(_PART)
_DURATION_RE = re.compile(rf"(?:{_PART})+")


def parse_duration(text: str) -> float:
    """Parse a duration such as ``"1h2m3.5s"`` or ``"300ms"`` into seconds."""
    body = text
    sign = 1.0
    if body[:1] in ("+", "-"):
        sign = -1.0 if body[0] == "-" else 1.0
        body = body[1:]
    if body == "0":
        return 0.0
    if not body or not _DURATION_RE.fullmatch(body):
        raise ValueError(f"invalid duration {text!r}")
    total = sum(float(number) * _UNIT_SECONDS[unit] for number, unit in _PART_RE.findall(body))
    return sign * total


def _duration_or(text: str, default: float) -> float:
    if not text:
        return default
    try:
        return parse_duration(text)
    except ValueError:
        return default


def _obj(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key!r} must be an object")
    return value


def _str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key!r} must be a string")
    return value


def _bool(data: dict[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{key!r} must be a boolean")
    return value


def _int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key!r} must be an integer")
    return value


def _str_list(data: dict[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key!r} must be a list of strings")
    return list(value)


def _obj_list(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ValueError(f"{key!r} must be a list of objects")
    return value


def _interface_ipv4(name: str) -> str | None:
    """Return the IPv4 address bound to a network interface, if it can be found."""
    try:
        import fcntl
    except ImportError:
        return None
    siocgifaddr = 0x8915
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
        try:
            packed = fcntl.ioctl(
                probe.fileno(), siocgifaddr, struct.pack("256s", name.encode()[:15])
            )
        except OSError:
            return None
    return socket.inet_ntoa(packed[20:24])


@dataclass
class TlsConf:
    """Client-side TLS settings."""

    enabled: bool = False
    min: str = ""
    max: str = ""
    auth_timeout: str = ""
    insecure: bool = False
    next_proto: list[str] = field(default_factory=list)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> TlsConf:
        return cls(
            enabled=_bool(data, "enabled"),
            min=_str(data, "min_version"),
            max=_str(data, "max_version"),
            auth_timeout=_str(data, "auth_timeout"),
            insecure=_bool(data, "insecure"),
            next_proto=_str_list(data, "next_proto"),
        )

    def max_version(self) -> ssl.TLSVersion:
        return ssl.TLSVersion.TLSv1_2

    def min_version(self) -> ssl.TLSVersion:
        return ssl.TLSVersion.TLSv1_1


@dataclass
class PayloadSenderConfig:
    """Settings of a client node that sends payloads to a server."""

    dialer_timeout: str = ""
    handshake_retry: int = 0
    server_addr: str = ""
    tls: TlsConf = field(default_factory=TlsConf)
    payload_file: str = ""
    test_buf_size: int = 0
    net_iface: str = ""
    local_addr: str = ""
    read_timeout_text: str = ""
    write_timeout_text: str = ""

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> PayloadSenderConfig:
        return cls(
            dialer_timeout=_str(data, "dialer_timeout"),
            handshake_retry=_int(data, "handshake_retry"),
            server_addr=_str(data, "server_addr"),
            tls=TlsConf._from_dict(_obj(data, "tls")),
            payload_file=_str(data, "payload_file"),
            test_buf_size=_int(data, "speedtest_size"),
            net_iface=_str(data, "net_iface"),
            local_addr=_str(data, "local_addr"),
            read_timeout_text=_str(data, "read_timeout"),
            write_timeout_text=_str(data, "write_timeout"),
        )

    def dial_timeout(self) -> float:
        return _duration_or(self.dialer_timeout, DEFAULT_DIAL_TIMEOUT)

    def local_address(self) -> tuple[str, int] | None:
        """Source address for outgoing connections, or None to let the system choose."""
        if self.local_addr:
            try:
                infos = socket.getaddrinfo(self.local_addr, 0, type=socket.SOCK_STREAM)
            except (socket.gaierror, UnicodeError):
                infos = []
            if infos:
                return (infos[0][4][0], 0)
        if self.net_iface:
            address = _interface_ipv4(self.net_iface)
            if address:
                return (address, 0)
        return None

    def speedtest_size(self) -> int:
        """Speed test size in megabytes."""
        return self.test_buf_size

    def tls_auth_timeout(self) -> float:
        return _duration_or(self.tls.auth_timeout, DEFAULT_TLS_AUTH_TIMEOUT)

    def write_timeout(self) -> float:
        return _duration_or(self.write_timeout_text, DEFAULT_CLIENT_WRITE_TIMEOUT)

    def read_timeout(self) -> float:
        return _duration_or(self.read_timeout_text, DEFAULT_CLIENT_READ_TIMEOUT)


@dataclass
class ClientNodeConfig:
    type: str = ""
    disabled: bool = False
    payload_sender: PayloadSenderConfig = field(default_factory=PayloadSenderConfig)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ClientNodeConfig:
        return cls(
            type=_str(data, "type"),
            disabled=_bool(data, "disabled"),
            payload_sender=PayloadSenderConfig._from_dict(data),
        )


@dataclass
class ClientConfig:
    nodes: list[ClientNodeConfig] = field(default_factory=list)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        return cls(nodes=[ClientNodeConfig._from_dict(item) for item in _obj_list(data, "nodes")])


@dataclass
class ResultConfig:
    output_file: str = ""
    progress_file: str = ""
    tcp_fail_threshold: int = 0

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ResultConfig:
        return cls(
            output_file=_str(data, "output_file"),
            progress_file=_str(data, "progress_file"),
            tcp_fail_threshold=_int(data, "tcp_fail_threshold"),
        )


@dataclass
class HostfileConfig:
    max_concurrent: int = 0
    host_file: str = ""

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> HostfileConfig:
        return cls(max_concurrent=_int(data, "max_concurrent"), host_file=_str(data, "host_file"))


@dataclass
class HostManagerConfig:
    """Host file settings plus the pause, in seconds, between batches."""

    hostfile: HostfileConfig = field(default_factory=HostfileConfig)
    interval: float = 0.0

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> HostManagerConfig:
        # The interval is stored as an integer count of nanoseconds.
        return cls(
            hostfile=HostfileConfig._from_dict(data),
            interval=_int(data, "interval") / 1e9,
        )


@dataclass
class TlsServerConfig:
    enabled: bool = False
    cert: str = ""
    key: str = ""
    timeout: str = ""

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> TlsServerConfig:
        return cls(
            enabled=_bool(data, "enabled"),
            cert=_str(data, "cert"),
            key=_str(data, "key"),
            timeout=_str(data, "timeout"),
        )

    def tls_timeout(self) -> float:
        if not self.timeout:
            return DEFAULT_TLS_AUTH_TIMEOUT
        return _duration_or(self.timeout, DEFAULT_SERVER_READ_TIMEOUT)


@dataclass
class ListenConfig:
    listen_addr: str = ""
    tls: TlsServerConfig = field(default_factory=TlsServerConfig)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ListenConfig:
        return cls(
            listen_addr=_str(data, "listen"),
            tls=TlsServerConfig._from_dict(_obj(data, "tls")),
        )


@dataclass
class PayloadServerConfig:
    payload_file: str = ""
    listen: ListenConfig = field(default_factory=ListenConfig)
    read_timeout_text: str = ""
    write_timeout_text: str = ""

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> PayloadServerConfig:
        return cls(
            payload_file=_str(data, "payload_file"),
            listen=ListenConfig._from_dict(_obj(data, "listen_conf")),
            read_timeout_text=_str(data, "read_timeout"),
            write_timeout_text=_str(data, "write_timeout"),
        )

    def write_timeout(self) -> float:
        return _duration_or(self.write_timeout_text, DEFAULT_SERVER_WRITE_TIMEOUT)

    def read_timeout(self) -> float:
        return _duration_or(self.read_timeout_text, DEFAULT_SERVER_READ_TIMEOUT)


@dataclass
class ServerNodeConfig:
    type: str = ""
    disabled: bool = False
    payload_server: PayloadServerConfig = field(default_factory=PayloadServerConfig)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ServerNodeConfig:
        return cls(
            type=_str(data, "type"),
            disabled=_bool(data, "disabled"),
            payload_server=PayloadServerConfig._from_dict(data),
        )


@dataclass
class ServerConfig:
    nodes: list[ServerNodeConfig] = field(default_factory=list)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ServerConfig:
        return cls(nodes=[ServerNodeConfig._from_dict(item) for item in _obj_list(data, "nodes")])


@dataclass
class LogConfig:
    level: str = ""
    paths: list[str] = field(default_factory=list)
    encode: str = ""

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> LogConfig:
        return cls(
            level=_str(data, "level"),
            paths=_str_list(data, "paths"),
            encode=_str(data, "encode"),
        )

    def logging_level(self) -> int:
        """The logging level named by ``level``; warnings when unknown."""
        return {
            "debug": logging.DEBUG,
            "warn": logging.WARNING,
            "info": logging.INFO,
            "error": logging.ERROR,
        }.get(self.level, logging.WARNING)


@dataclass
class Config:
    client: ClientConfig = field(default_factory=ClientConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    result: ResultConfig = field(default_factory=ResultConfig)
    host: HostManagerConfig = field(default_factory=HostManagerConfig)
    log: LogConfig = field(default_factory=LogConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        if not isinstance(data, dict):
            raise ValueError("configuration must be a JSON object")
        return cls(
            client=ClientConfig._from_dict(_obj(data, "client")),
            server=ServerConfig._from_dict(_obj(data, "server")),
            result=ResultConfig._from_dict(_obj(data, "result")),
            host=HostManagerConfig._from_dict(_obj(data, "host")),
            log=LogConfig._from_dict(_obj(data, "log")),
        )

    @classmethod
    def load(cls, path: str | Path) -> Config:
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
        return cls.from_dict(data)