from __future__ import annotations

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """
    One stdout handler on the root logger.

    Authorization events are written as `authz.<event> key=value ...` so outages
    (`authz.resolution_failed`) can be filtered apart from access-control
    denials (`authz.denied`).
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    handler.setFormatter(formatter)

    # Replace existing handlers to avoid duplicates under reload.
    root.handlers = [handler]


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
