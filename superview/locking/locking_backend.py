# superview/locking/locking_backend.py

from __future__ import annotations
from enum import Enum
from typing import Optional


class LockingBackend(Enum):
    LOCAL = "local"  # threading locks, one worker process
    REDIS = "redis"  # SET NX EX tokens, shared by every process on the catalog

    @classmethod
    def from_str(cls, value: str | None, default: Optional["LockingBackend"] = None) -> "LockingBackend":
        """Unknown or empty values fall back to ``default`` (LOCAL if not given)."""
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return default or cls.LOCAL
