from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_value(environ: Mapping[str, str], name: str) -> str | None:
    value = environ.get(name, "").strip()
    return value or None


def _parse_port(name: str, raw: str) -> int:
    try:
        port = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if not 0 <= port <= 65535:
        raise ValueError(f"{name} must be between 0 and 65535, got {port}")
    return port


@dataclass
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    metrics_port: int | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ServerConfig":
        """Read ``PORT``, ``HOST``, ``METRICS_PORT`` and ``LOG_LEVEL``.

        Unset and empty variables fall back to the defaults.
        """
        env = os.environ if environ is None else environ
        config = cls()

        host = _env_value(env, "HOST")
        if host is not None:
            config.host = host

        port = _env_value(env, "PORT")
        if port is not None:
            config.port = _parse_port("PORT", port)

        metrics_port = _env_value(env, "METRICS_PORT")
        if metrics_port is not None:
            config.metrics_port = _parse_port("METRICS_PORT", metrics_port)

        log_level = _env_value(env, "LOG_LEVEL")
        if log_level is not None:
            if log_level.upper() not in LOG_LEVELS:
                raise ValueError(
                    f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}"
                )
            config.log_level = log_level.upper()

        return config
