"""Gathers results from concurrent host tests."""

from __future__ import annotations

import threading
from collections.abc import Iterable

from .results import Result


class ResultCollector:
    """Collects results from a known number of uploads and waits for all of them."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._pending = 0
        self._results: list[Result] = []

    def reset(self, expected: int) -> None:
        """Clear collected results and expect ``expected`` more uploads."""
        if expected < 0:
            raise ValueError("expected upload count cannot be negative")
        with self._cond:
            self._pending += expected
            self._results = []
            if self._pending == 0:
                self._cond.notify_all()

    def upload(self, results: Iterable[Result]) -> None:
        """Add one test's results and count it as done."""
        with self._cond:
            if self._pending == 0:
                raise ValueError("upload without a pending test")
            self._results.extend(results)
            self._pending -= 1
            if self._pending == 0:
                self._cond.notify_all()

    def wait(self) -> list[Result]:
        """Block until every expected upload arrived; return what was collected."""
        with self._cond:
            self._cond.wait_for(lambda: self._pending == 0)
            return list(self._results)