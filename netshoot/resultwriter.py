"""Streams host results into a JSON array file and keeps scan progress."""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections.abc import Sequence
from typing import BinaryIO

from .config import ResultConfig
from .progress import Progress, ProgressState
from .results import Result

WRITE_QUEUE_SIZE = 200


class JsonArrayFile:
    """Appends JSON documents to a file holding one JSON array.

    Each document is followed by a comma; closing the file turns the last
    comma into the closing bracket. An existing file is reopened for appending.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream
        self.initiated = False

    def initialize(self) -> None:
        """Position the stream where the next document goes."""
        stream = self.stream
        size = stream.seek(0, os.SEEK_END)
        if size == 0:
            stream.write(b"[")
            stream.flush()
            self.initiated = True
            return
        stream.seek(size - 1)
        last = stream.read(1)
        if last == b"}":
            stream.seek(size)
            stream.write(b",")
            stream.flush()
        elif last != b",":
            self._reopen_array(size)
        self.initiated = True

    def _reopen_array(self, size: int) -> None:
        stream = self.stream
        for pos in range(size - 1, 0, -1):
            stream.seek(pos)
            byte = stream.read(1)
            if byte == b",":
                end = pos + 1
                break
            if byte == b"}":
                stream.seek(pos + 1)
                stream.write(b",")
                end = pos + 2
                break
            if byte == b"]":
                stream.seek(pos)
                stream.write(b",")
                end = pos + 1
                break
        else:
            raise ValueError("malformed output file")
        stream.seek(end)
        stream.truncate(end)
        stream.flush()

    def write(self, data: bytes) -> int:
        """Append one document and return its length."""
        if not self.initiated:
            self.initialize()
        self.stream.write(data)
        self.stream.write(b",")
        self.stream.flush()
        return len(data)

    def close(self) -> None:
        """Close the array with ``]`` and close the stream."""
        if self.initiated:
            self.stream.seek(-1, os.SEEK_END)
            self.stream.write(b"]")
        self.stream.close()


class ResultWriter:
    """Writes results on a background thread and stops the scan on too many TCP failures."""

    def __init__(
        self,
        conf: ResultConfig,
        stop_signal: threading.Event,
        logger: logging.Logger | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.path = conf.output_file
        self.stop_signal = stop_signal
        self.cancel = cancel if cancel is not None else threading.Event()
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._progress = Progress(conf.progress_file, conf.tcp_fail_threshold)
        self._queue: queue.Queue[Result | None] = queue.Queue(maxsize=WRITE_QUEUE_SIZE)
        self._lock = threading.Lock()
        self._closed = False
        self._finished = False
        self._array: JsonArrayFile | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Load progress, open the output file and start the writer thread."""
        try:
            self._progress.start()
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"progress start failed: {exc}") from exc
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
        array = JsonArrayFile(os.fdopen(fd, "r+b"))
        try:
            array.initialize()
        except (OSError, ValueError) as exc:
            array.stream.close()
            raise RuntimeError(f"result writer initialize failed: {exc}") from exc
        self._array = array
        self._thread = threading.Thread(target=self._write_loop, name="result-writer", daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Write everything queued, then close the progress and output files."""
        with self._lock:
            if self._finished:
                return
            self._finished = True
            self._closed = True
            if self._thread is not None and self._thread.is_alive():
                self._queue.put(None)
        if self._thread is not None:
            self._thread.join()
        self._progress.close()
        if self._array is not None:
            self._array.close()
            self._array = None

    def write(self, results: Sequence[Result | None], host_order: Sequence[str]) -> None:
        """Record a finished batch of hosts and queue its results for writing."""
        with self._lock:
            if self._closed:
                return
        proceed = self._progress.update([r for r in results if r is not None], host_order)
        with self._lock:
            if not proceed:
                self.logger.info("program stopping due to exceeding TCP fail threshold")
                self.stop_signal.set()
                self._closed = True
            for result in results:
                if result is not None:
                    self._queue.put(result)

    def progress(self) -> ProgressState:
        return self._progress.current()

    def _write_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            if self.cancel.is_set() and self._queue.empty():
                self.logger.debug("context canceled or closed result writer, closing writer loop")
                return
            try:
                data = item.to_json()
                assert self._array is not None
                self._array.write(data)
            except (OSError, ValueError) as exc:
                self.logger.error("result writing failed for %s: %s", item.host, exc)