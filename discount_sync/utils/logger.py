# discount_sync/utils/logger.py
import logging
import sys

LEVELS = {"ERROR": 40, "WARN": 30, "WARNING": 30, "INFO": 20, "DEBUG": 10, "NONE": 100}

FORMAT = "[%(asctime)s][%(levelname)s] %(message)s"
DATEFMT = "%H:%M:%S"


def level_from_name(name: str | None) -> int:
    return LEVELS.get((name or "INFO").upper(), 20)


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach a single stdout handler to the package logger.

    Safe to call more than once (the scheduler and the Flask app both do).
    """
    root = logging.getLogger("discount_sync")
    root.setLevel(level_from_name(level))
    if not any(getattr(h, "_discount_sync", False) for h in root.handlers):
        sh = logging.StreamHandler(sys.stdout)
        sh.setFormatter(logging.Formatter(FORMAT, DATEFMT))
        sh._discount_sync = True
        root.addHandler(sh)
    return root

