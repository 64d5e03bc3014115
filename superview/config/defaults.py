# superview/config/defaults.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def _env_float(name: str, fallback: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return fallback
    try:
        return float(raw)
    except ValueError:
        return fallback


@dataclass
class Default:
    """
    Process-wide settings, read once from the environment (and ``.env``).

    Attribute names are upper-case so call sites read like constants:
    ``default.SQL_TEMPLATE_DELIMITER``.
    """
    SQL_TEMPLATE_DELIMITER: str = field(
        default_factory=lambda: os.getenv("SUPERVIEW_SQL_TEMPLATE_DELIMITER", "$") or "$"
    )
    AUTH_FETCH_WORKERS: int = field(default_factory=lambda: _env_int("SUPERVIEW_AUTH_FETCH_WORKERS", 7))
    AUTH_FETCH_TIMEOUT_SEC: float = field(
        default_factory=lambda: _env_float("SUPERVIEW_AUTH_FETCH_TIMEOUT_SEC", 30.0)
    )
    LOCK_BACKEND: str = field(default_factory=lambda: os.getenv("SUPERVIEW_LOCK_BACKEND", "local"))
    DEFAULT_TIMEOUT_SEC: int = field(default_factory=lambda: _env_int("SUPERVIEW_DEFAULT_TIMEOUT_SEC", 60))
    DEFAULT_LOCK_DURATION_SEC: int = field(
        default_factory=lambda: _env_int("SUPERVIEW_DEFAULT_LOCK_DURATION_SEC", 30)
    )
    CACHE_PREFIX: str = field(default_factory=lambda: os.getenv("SUPERVIEW_CACHE_PREFIX", "superview:cache:"))
    DUCKDB_MEMORY_LIMIT: str = field(default_factory=lambda: os.getenv("SUPERVIEW_DUCKDB_MEMORY_LIMIT", "2GB"))
    DUCKDB_THREADS: int = field(default_factory=lambda: _env_int("SUPERVIEW_DUCKDB_THREADS", 0))
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("SUPERVIEW_LOG_LEVEL", "INFO").upper())


default = Default()

logger = logging.getLogger("superview")
logger.setLevel(getattr(logging, default.LOG_LEVEL, logging.INFO))
if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)-7s [%(threadName)s] %(message)s",
        datefmt="%H:%M:%S",
    ))
    logger.addHandler(_handler)

# Business operation log (who did what), kept apart from diagnostics.
operation_logger = logging.getLogger("superview.operation")
