"""Feeds hosts from the host file to the client in batches and records the results."""

from __future__ import annotations

import logging
import threading

from .client import Client
from .collector import ResultCollector
from .config import HostManagerConfig
from .hostfile import HostFile
from .resultwriter import ResultWriter


class HostManager:
    """Runs the scan: one batch of hosts at a time, each host tested on its own thread.

    ``stop_signal`` is set when the host file is exhausted; ``cancel`` stops the
    scan without setting it.
    """

    def __init__(
        self,
        client: Client,
        result_writer: ResultWriter,
        conf: HostManagerConfig,
        stop_signal: threading.Event,
        logger: logging.Logger | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.client = client
        self.result_writer = result_writer
        self.stop_signal = stop_signal
        self.cancel = cancel if cancel is not None else threading.Event()
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.interval = conf.interval
        self._file = HostFile(conf.hostfile)
        self._collector = ResultCollector()
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Open the host file past the hosts already checked and start scanning."""
        self._file.open(self.result_writer.progress().checked_host)
        self._thread = threading.Thread(target=self._run, name="host-manager", daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Stop after the batch in progress and close the host file."""
        self._done.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        with self._lock:
            self._file.close()

    def _run(self) -> None:
        while True:
            with self._lock:
                if not self._file.available():
                    break
            if self._done.is_set():
                self.logger.debug("done signal recived closing hostmanager run loop")
                return
            if self.cancel.is_set():
                self.logger.warning("force context canceled closing run loop")
                return
            if self.interval > 0 and self._done.wait(self.interval):
                self.logger.debug("done signal recived closing hostmanager run loop")
                return
            with self._lock:
                if self._done.is_set():
                    return
                batch = self._file.next_batch()
            self._collector.reset(len(batch))
            for host in batch:
                threading.Thread(
                    target=self.client.make_test, args=(host, self._collector), daemon=True
                ).start()
            self.result_writer.write(self._collector.wait(), batch)
        self._done.set()
        self.stop_signal.set()