# superview/errors.py

from __future__ import annotations

from typing import Optional


class ViewServiceError(Exception):
    """Base class for every error raised by the view query pipeline."""


class NotFoundError(ViewServiceError):
    """A referenced view, source or grant does not exist."""


class UnauthorizedError(ViewServiceError, PermissionError):
    """The caller's permission level is below what the operation requires."""


class ParseError(ViewServiceError):
    """Malformed SQL template, variable syntax or caller-supplied clause."""


class ExecutionError(ViewServiceError):
    """A statement failed in the relational executor."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class LockTimeoutError(ViewServiceError, TimeoutError):
    """A name lock could not be acquired within the configured timeout."""


class CacheError(ViewServiceError):
    """Cache store failure. Never surfaced to callers of the view service."""
