"""Per-host test results and their JSON form."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Result(Protocol):
    """What a result writer needs from a host's result."""

    host: str

    def to_json(self) -> bytes: ...

    def tcp_fail_count(self) -> int: ...

    def success_count(self) -> int: ...


@dataclass
class TlsInfo:
    failed: bool = False
    error: str = ""
    servername: str = ""


@dataclass
class SinglePayload:
    """Outcome of sending one payload to one host."""

    payload_name: str = ""
    success: bool = False
    maybe: bool = False
    error: str = ""
    tcp_failed: bool = False
    tls: TlsInfo = field(default_factory=TlsInfo)
    max_speed: float = 0.0


def _single_to_dict(item: SinglePayload) -> dict[str, Any]:
    return {
        "Success": item.success,
        "Maybe": item.maybe,
        "Error": item.error,
        "PayloadName": item.payload_name,
        "TpcFailed": item.tcp_failed,
        "Tls": {
            "Failed": item.tls.failed,
            "Error": item.tls.error,
            "Servername": item.tls.servername,
        },
        "MaxSpeed": round(item.max_speed, 6),
    }


@dataclass
class PayloadResult:
    """Results of every payload sent to one host, with totals."""

    host: str
    total_tcp_fail: int = 0
    success: int = 0
    maybe: int = 0
    max_speed: float = 0.0
    err: str = ""
    payload_info: list[SinglePayload] = field(default_factory=list)
    _preprocessed: bool = field(default=False, init=False, repr=False, compare=False)

    def to_json(self) -> bytes:
        doc: dict[str, Any] = {
            "Host": self.host,
            "TotalTcpFail": self.total_tcp_fail,
            "Success": self.success,
            "Maybe": self.maybe,
            "MaxSpeed": round(self.max_speed, 6),
            "Err": self.err,
        }
        if self.payload_info:
            doc["PayloadInfo"] = [_single_to_dict(item) for item in self.payload_info]
        return json.dumps(doc).encode()

    def tcp_fail_count(self) -> int:
        return self.total_tcp_fail

    def success_count(self) -> int:
        return self.success

    def preprocess(self) -> None:
        """Fold the per-payload outcomes into the totals; runs once."""
        if self._preprocessed:
            return
        for item in self.payload_info:
            self.max_speed = max(self.max_speed, item.max_speed)
            self.total_tcp_fail += item.tcp_failed
            self.success += item.success
            self.maybe += item.maybe
        self._preprocessed = True