from __future__ import annotations

import argparse
import logging
import socket
import sys

import uvicorn
from fastapi import FastAPI

from debugserver.app import create_app
from debugserver.config import LOG_LEVELS, ServerConfig
from debugserver.telemetry import Telemetry

logger = logging.getLogger("debugserver")

LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"
SHUTDOWN_GRACE_SECONDS = 1


class StartupError(RuntimeError):
    """The listener could not be opened."""


def open_listener(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(socket.SOMAXCONN)
    except OSError as exc:
        sock.close()
        raise StartupError(f"Failed to start server on {host}:{port}: {exc}") from exc
    sock.set_inheritable(True)
    return sock


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stdout,
    )


def build_server(app: FastAPI, log_level: str = "INFO") -> uvicorn.Server:
    """Shutdown cancels responses still held after ``SHUTDOWN_GRACE_SECONDS``."""
    return uvicorn.Server(
        uvicorn.Config(
            app,
            log_level=log_level.lower(),
            access_log=False,
            timeout_graceful_shutdown=SHUTDOWN_GRACE_SECONDS,
        )
    )


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "HTTP server that holds every response body until ENTER is pressed, "
            "then releases all pending requests at once."
        )
    )
    parser.add_argument("--host", default=defaults.host)
    parser.add_argument(
        "--port",
        type=int,
        default=defaults.port,
        help="Listen port (default: $PORT or 8080)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=defaults.metrics_port,
        help="Serve Prometheus metrics on this port (default: $METRICS_PORT, disabled)",
    )
    parser.add_argument(
        "--log-level",
        default=defaults.log_level,
        choices=LOG_LEVELS,
        type=str.upper,
    )
    return parser


def parse_config(argv: list[str] | None = None) -> ServerConfig:
    defaults = ServerConfig.from_env()
    args = build_parser(defaults).parse_args(argv)
    return ServerConfig(
        host=args.host,
        port=args.port,
        metrics_port=args.metrics_port,
        log_level=args.log_level,
    )


def main(argv: list[str] | None = None) -> int:
    try:
        config = parse_config(argv)
    except ValueError as exc:
        configure_logging("INFO")
        logger.critical("Invalid configuration: %s", exc)
        return 1

    configure_logging(config.log_level)

    try:
        sock = open_listener(config.host, config.port)
    except StartupError as exc:
        logger.critical("%s", exc)
        return 1

    if config.metrics_port is not None:
        try:
            Telemetry.start_exporter(config.metrics_port, host=config.host)
        except OSError as exc:
            sock.close()
            logger.critical(
                "Failed to start metrics exporter on port %d: %s", config.metrics_port, exc
            )
            return 1
        logger.info("Serving metrics on port %d", config.metrics_port)

    logger.info("Starting server on http://localhost:%d", sock.getsockname()[1])
    logger.info("The server can hold multiple requests.")
    logger.info("Press ENTER to release ALL pending requests at once.")
    server = build_server(create_app(config), log_level=config.log_level)
    server.run(sockets=[sock])
    return 0


if __name__ == "__main__":
    sys.exit(main())
