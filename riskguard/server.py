"""Command that starts the content check HTTP service."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from socketserver import ThreadingMixIn
from typing import Any, Optional
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from riskguard.config import ConfigError, load
from riskguard.content_check import ContentCheckError, create_content_check_service
from riskguard.http_api import create_app
from riskguard.model_server import ModelServer

DEFAULT_CONFIG_PATH = "config/config.yaml"
MODEL_SERVER_STARTUP_WAIT = 3.0
SHUTDOWN_TIMEOUT = 5.0

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}
_LOGGER_LEVELS = {**_LEVELS, "fatal": logging.CRITICAL}
_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}


class _JSONFormatter(logging.Formatter):
    """Formats each record as one JSON object per line."""

    def __init__(self, message_key: str, include_name: bool = False) -> None:
        super().__init__()
        self.message_key = message_key
        self.include_name = include_name

    @staticmethod
    def _timestamp(created: float) -> str:
        moment = datetime.fromtimestamp(created).astimezone()
        offset = moment.strftime("%z")
        zone = "Z" if offset in ("+0000", "-0000") else offset
        return f"{moment:%Y-%m-%dT%H:%M:%S}.{moment.microsecond // 1000:03d}{zone}"

    def format(self, record: logging.LogRecord) -> str:
        path = Path(record.pathname)
        entry: dict[str, Any] = {
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "time": self._timestamp(record.created),
        }
        if self.include_name:
            entry["logger"] = record.name
        entry["caller"] = f"{path.parent.name}/{path.name}:{record.lineno}"
        entry[self.message_key] = record.getMessage()
        if record.exc_info:
            entry["stacktrace"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _reset(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = False


def init_logger(level: str) -> logging.Logger:
    """Service logger writing JSON lines to stdout; unknown levels mean info."""
    logger = logging.getLogger("riskguard.server")
    _reset(logger)
    logger.setLevel(_LEVELS.get(level, logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JSONFormatter("message"))
    logger.addHandler(handler)
    return logger


def new_logger(level: str) -> logging.Logger:
    """Logger sending errors and above to stderr and the rest, from ``level``, to stdout."""
    threshold = _LOGGER_LEVELS.get(level, logging.INFO)
    logger = logging.getLogger("riskguard.app")
    _reset(logger)
    logger.setLevel(min(threshold, logging.ERROR))

    formatter = _JSONFormatter("msg", include_name=True)

    high = logging.StreamHandler(sys.stderr)
    high.setLevel(logging.ERROR)
    high.setFormatter(formatter)

    low = logging.StreamHandler(sys.stdout)
    low.setLevel(threshold)
    low.addFilter(lambda record: record.levelno < logging.ERROR)
    low.setFormatter(formatter)

    logger.addHandler(high)
    logger.addHandler(low)
    return logger


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logging.getLogger("riskguard.server").debug(format, *args)


def _install_signal_handlers(stop: threading.Event) -> dict[int, Any]:
    previous: dict[int, Any] = {}

    def handle(_signum: int, _frame: Any) -> None:
        stop.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[signum] = signal.signal(signum, handle)
        except ValueError:
            # Not on the main thread: signals cannot be caught here.
            break
    return previous


def _restore_signal_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def _run_model_server(server: ModelServer, logger: logging.Logger) -> None:
    try:
        server.start()
    except Exception as exc:  # the service keeps running without the model server
        logger.error("Failed to start NLP model server: %s", exc)


def _run(config_path: str, stop: threading.Event) -> int:
    try:
        cfg = load(config_path)
    except (ConfigError, OSError, ValueError) as exc:
        print(f"Failed to load config: {exc}", file=sys.stderr)
        return 1

    logger = init_logger(cfg.server.log_level)
    logger.info("Starting content risk control service...")

    model_server: Optional[ModelServer] = None
    if cfg.nlp_service.enabled:
        model_server = ModelServer(
            logger, config_path, cfg.nlp_service.model_path, cfg.nlp_service.server_port
        )
        threading.Thread(
            target=_run_model_server, args=(model_server, logger), daemon=True
        ).start()
        time.sleep(MODEL_SERVER_STARTUP_WAIT)
        if model_server.is_ready():
            logger.info("NLP model server is ready")
        else:
            logger.warning("NLP model server is not ready yet, proceeding without it")

    try:
        service = create_content_check_service(cfg, logger)
    except ContentCheckError as exc:
        logger.critical("Failed to initialize content check service: %s", exc)
        if model_server is not None:
            model_server.stop()
        return 1

    try:
        http_server = make_server(
            "",
            cfg.server.port,
            create_app(service),
            server_class=_ThreadingWSGIServer,
            handler_class=_QuietHandler,
        )
    except OSError as exc:
        logger.critical("Failed to start HTTP server: %s", exc)
        service.close()
        if model_server is not None:
            model_server.stop()
        return 1

    http_thread = threading.Thread(target=http_server.serve_forever, daemon=True)
    http_thread.start()
    logger.info("HTTP server started on port %d", http_server.server_port)

    while not stop.wait(0.2):
        pass

    logger.info("Shutting down server...")
    http_server.shutdown()
    http_server.server_close()
    http_thread.join(SHUTDOWN_TIMEOUT)
    service.close()
    if model_server is not None:
        model_server.stop()
    logger.info("Server exiting")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Run the service until SIGINT or SIGTERM; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="riskguard-server", description="Run the content risk control service."
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG_PATH, help="path of the YAML configuration file"
    )
    args = parser.parse_args(argv)

    stop = threading.Event()
    previous = _install_signal_handlers(stop)
    try:
        return _run(args.config, stop)
    finally:
        _restore_signal_handlers(previous)


if __name__ == "__main__":
    sys.exit(main())