"""Persistent scan progress: hosts checked, failures and successes so far."""

from __future__ import annotations

import dataclasses
import json
import os
from collections.abc import Sequence
from dataclasses import dataclass
from typing import BinaryIO

from .results import Result

DEFAULT_FLUSH = 3
MIN_TCP_FAIL_THRESHOLD = 20


@dataclass
class ProgressState:
    checked_host: int = 0
    total_tcp_fail: int = 0
    last_host: str = ""
    total_success: int = 0


class Progress:
    """Tracks progress and writes it to a JSON file every few updates."""

    def __init__(self, path: str | os.PathLike[str], tcp_fail_threshold: int) -> None:
        self.path = path
        self.tcp_fail_threshold = max(tcp_fail_threshold, MIN_TCP_FAIL_THRESHOLD)
        self._state = ProgressState()
        self._flush_counter = DEFAULT_FLUSH
        self._file: BinaryIO | None = None

    def start(self) -> None:
        """Open (creating if needed) the progress file and load saved progress."""
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
        self._file = os.fdopen(fd, "r+b")
        self._load()

    def close(self) -> None:
        self.flush()
        if self._file is not None:
            self._file.close()
            self._file = None

    def current(self) -> ProgressState:
        return dataclasses.replace(self._state)

    def update(self, results: Sequence[Result], order: Sequence[str]) -> bool:
        """Record a finished batch; False once the TCP failure threshold is reached."""
        if self._state.total_tcp_fail >= self.tcp_fail_threshold:
            return False
        if not order:
            return True
        self._state.checked_host += len(order)
        for result in results:
            self._state.total_tcp_fail += result.tcp_fail_count()
            self._state.total_success += result.success_count()
        self._state.last_host = order[-1]
        self._flush_counter -= 1
        if self._flush_counter == 0:
            self.flush()
        return True

    def flush(self) -> None:
        """Overwrite the progress file with the current state."""
        self._flush_counter = DEFAULT_FLUSH
        if self._file is None:
            return
        state = self._state
        text = (
            f'{{"checked_host": {state.checked_host}, '
            f'"total_tcp_fail": {state.total_tcp_fail}, '
            f'"last_host": {json.dumps(state.last_host)}, '
            f'"total_success": {state.total_success}}}'
        )
        data = text.encode()
        self._file.seek(0)
        written = self._file.write(data)
        self._file.truncate(written)
        self._file.flush()

    def _load(self) -> None:
        assert self._file is not None
        self._file.seek(0)
        raw = self._file.read()
        if not raw:
            return
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("progress file must hold a JSON object")
        state = self._state
        for name, kind in (
            ("checked_host", int),
            ("total_tcp_fail", int),
            ("last_host", str),
            ("total_success", int),
        ):
            if name not in data:
                continue
            value = data[name]
            if not isinstance(value, kind) or isinstance(value, bool):
                raise ValueError(f"progress field {name!r} has the wrong type")
            setattr(state, name, value)