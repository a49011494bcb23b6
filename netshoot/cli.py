"""Command line entry point: run a scan from a JSON configuration."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from collections.abc import Sequence
from importlib.metadata import PackageNotFoundError, version

from .app import Netshoot
from .config import Config, LogConfig

LOGGER_NAME = "netshoot"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
_WAIT_POLL = 0.2


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        doc = {
            "ts": self.formatTime(record, TIME_FORMAT),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            doc["error"] = self.formatException(record.exc_info)
        return json.dumps(doc)


def _formatter(encoding: str) -> logging.Formatter:
    if encoding == "json":
        return _JsonFormatter()
    if encoding == "console":
        return logging.Formatter("%(asctime)s\t%(levelname)s\t%(message)s", TIME_FORMAT)
    raise ValueError(f"no encoder registered for name {encoding!r}")


def _handler(path: str) -> logging.Handler:
    if path == "stdout":
        return logging.StreamHandler(sys.stdout)
    if path == "stderr":
        return logging.StreamHandler(sys.stderr)
    return logging.FileHandler(path, encoding="utf-8")


def build_logger(log_config: LogConfig) -> logging.Logger:
    """Configure the package logger from the ``log`` section of the configuration."""
    formatter = _formatter(log_config.encode)
    handlers = [_handler(path) for path in log_config.paths]
    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    if not handlers:
        handlers = [logging.NullHandler()]
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(log_config.logging_level())
    logger.propagate = False
    return logger


def run(config_path: str) -> None:
    """Run a scan until it finishes or the process is interrupted."""
    try:
        with open(config_path, "rb") as handle:
            raw = handle.read()
    except OSError as exc:
        raise SystemExit(f"config file open err: {exc}") from exc
    try:
        conf = Config.from_dict(json.loads(raw))
    except ValueError as exc:
        raise SystemExit(f"config Unmarshal Err: {exc}") from exc
    try:
        logger = build_logger(conf.log)
    except (OSError, ValueError) as exc:
        raise SystemExit(f"logger build fail: {exc}") from exc

    cancel = threading.Event()
    try:
        shoot = Netshoot(conf, logger, cancel)
    except (OSError, ValueError, RuntimeError) as exc:
        logger.critical("%s", exc)
        raise SystemExit(1) from exc
    try:
        shoot.start()
    except (OSError, ValueError, RuntimeError) as exc:
        logger.critical("%s", exc)
        shoot.close()
        raise SystemExit(1) from exc

    interrupted = threading.Event()

    def _on_signal(signum: int, frame: object) -> None:
        interrupted.set()

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, _on_signal)
    try:
        while not interrupted.is_set() and not shoot.wait(_WAIT_POLL):
            pass
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        shoot.close()
        cancel.set()


def _version() -> str:
    try:
        return version("netshoot")
    except PackageNotFoundError:
        return ""


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netshoot",
        description="A versatile tool for discovering hosts and identifying tunnelable "
        "ones with many customizable options.",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    run_parser = commands.add_parser("run", help="run netshoot")
    run_parser.add_argument("-c", "--config", default="config.json", help="config path")
    commands.add_parser("version", help="netshoot version")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    if args.command == "run":
        run(args.config)
    elif args.command == "version":
        print(_version())
    return 0


if __name__ == "__main__":
    sys.exit(main())