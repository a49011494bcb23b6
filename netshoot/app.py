"""Ties the client, result writer, host manager and server into one scan."""

from __future__ import annotations

import logging
import threading

from .client import Client
from .config import Config
from .hostmanager import HostManager
from .resultwriter import ResultWriter
from .server import Server

_WATCH_POLL = 0.1


class Netshoot:
    """A scan built from a configuration: client side, server side or both.

    The client side is kept only when it has enabled nodes, and so is the
    server side; a configuration that yields neither is rejected. Once
    started, the scan closes itself when ``stop_signal`` is set (host file
    exhausted or too many TCP failures), unless ``cancel`` was set first.
    """

    def __init__(
        self,
        conf: Config,
        logger: logging.Logger | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.logger = logger if logger is not None else logging.getLogger("netshoot")
        self.cancel = cancel if cancel is not None else threading.Event()
        self.stop_signal = threading.Event()
        self.client: Client | None = None
        self.result_writer: ResultWriter | None = None
        self.host_manager: HostManager | None = None
        self.server: Server | None = None
        self._lock = threading.Lock()
        self._started = False
        self._closing = False
        self._closed = threading.Event()

        client = Client(conf.client, self.logger)
        if client.node_count() > 0:
            try:
                self.result_writer = ResultWriter(
                    conf.result, self.stop_signal, self.logger, self.cancel
                )
            except (OSError, ValueError) as exc:
                raise ValueError(f"result write create failed: {exc}") from exc
            try:
                self.host_manager = HostManager(
                    client,
                    self.result_writer,
                    conf.host,
                    self.stop_signal,
                    self.logger,
                    self.cancel,
                )
            except (OSError, ValueError) as exc:
                raise ValueError(f"host manager create failed: {exc}") from exc
            self.client = client

        server = Server(conf.server, self.logger)
        if server.node_count() > 0:
            self.server = server

        if self.server is None and self.client is None:
            raise ValueError("no client or server created, should recheck config")

    def start(self) -> None:
        """Start the server, then the client side, then watch for the stop signal."""
        with self._lock:
            if self._started:
                return
            self._started = True
        if self.server is not None:
            self.server.start()
        if self.client is not None:
            assert self.result_writer is not None and self.host_manager is not None
            self.client.start()
            self.result_writer.start()
            self.host_manager.start()
        threading.Thread(target=self._watch, name="netshoot-watch", daemon=True).start()
        self.logger.debug("Netshoot Started")

    def close(self) -> None:
        """Close every part; later calls wait for the first to finish."""
        self.logger.debug("closing Netshoot...")
        with self._lock:
            if self._closing:
                wait_needed = True
            else:
                self._closing = True
                wait_needed = False
        if wait_needed:
            self._closed.wait()
            return
        try:
            if self.client is not None:
                assert self.result_writer is not None and self.host_manager is not None
                self.host_manager.close()
                self.logger.debug("hostmanager closed")
                self.client.close()
                self.logger.debug("client closed")
                self.result_writer.close()
                self.logger.debug("result closed")
            if self.server is not None:
                self.server.close()
        finally:
            self._closed.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the scan is closed; False if ``timeout`` ran out first."""
        return self._closed.wait(timeout)

    def _watch(self) -> None:
        while not self._closed.is_set():
            if self.stop_signal.wait(_WATCH_POLL):
                self.logger.debug("stop signal received")
                try:
                    self.close()
                except (OSError, ValueError, RuntimeError) as exc:
                    self.logger.error("netshoot closing err: %s", exc)
                return
            if self.cancel.is_set():
                return