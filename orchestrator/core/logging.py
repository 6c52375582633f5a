from __future__ import annotations

import logging
import sys


class _ExtraDefaultFilter(logging.Filter):
    """Guarantee the structured ``orch_extra`` field exists on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "orch_extra"):
            record.orch_extra = "{}"
        return True


def configure_logging(json: bool, level: int = logging.INFO) -> None:
    """Configure application-wide logging.

    Args:
        json: Whether to emit JSON-formatted logs.
        level: Root logger level.
    """

    root = logging.getLogger()
    root.setLevel(level)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json:
        formatter = logging.Formatter(
            fmt='{"level":"%(levelname)s","time":"%(asctime)s","name":"%(name)s",'
            '"message":"%(message)s","extra":%(orch_extra)s}',
        )
    else:
        formatter = logging.Formatter(
            fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
        )

    handler.setFormatter(formatter)
    handler.addFilter(_ExtraDefaultFilter())
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; structured fields go in ``extra={"orch_extra": ...}``."""

    return logging.getLogger(name)
