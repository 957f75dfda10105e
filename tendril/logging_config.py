"""
Logging setup for the agent process.

Agent modules log under ``tendril.<module>``. uvicorn access lines for the
orchestrator's liveness and health probes are dropped, everything else goes
to stdout.
"""

import logging
import logging.config
from typing import Any, Dict

# Paths polled by the orchestrator
PROBE_PATHS = frozenset({"/health", "/healthz"})

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class HealthCheckFilter(logging.Filter):
    """Filter to suppress probe requests in uvicorn access logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name != "uvicorn.access":
            return True

        # uvicorn passes (client_addr, method, full_path, http_version, status_code)
        args = record.args
        if not isinstance(args, tuple) or len(args) < 3:
            return True

        method, full_path = args[1], str(args[2])
        path = full_path.split("?", 1)[0]
        return not (method == "GET" and path in PROBE_PATHS)


def _logger(handler: str, level: str) -> Dict[str, Any]:
    return {"handlers": [handler], "level": level, "propagate": False}


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """Get the dictConfig for the agent, with probe access lines suppressed."""
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "health_check_filter": {"()": HealthCheckFilter},
        },
        "formatters": {
            "default": {"format": LOG_FORMAT},
            "access": {"format": "%(message)s"},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": "ext://sys.stdout",
                "filters": ["health_check_filter"],
            },
        },
        "loggers": {
            "tendril": _logger("default", level),
            "uvicorn": _logger("default", "INFO"),
            "uvicorn.error": _logger("default", "INFO"),
            "uvicorn.access": _logger("access", "INFO"),
            # Request lines from httpx would repeat every heartbeat
            "httpx": _logger("default", "WARNING"),
        },
        "root": {"level": level, "handlers": ["default"]},
    }


def configure_logging(level: str = "INFO") -> None:
    """Apply the agent logging configuration. Call once at process startup."""
    logging.config.dictConfig(get_logging_config(level))
