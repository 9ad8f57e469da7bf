"""Error taxonomy and classification for structured error handling.

Domain errors are distinguishable by type so callers can choose retry vs
abort. Classification enables:
- Structured logging (which storage errors are transient vs permanent)
- Retry logic (only retry transient/timeout)
- Degraded mode (corruption never trips a retry loop)
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum

from sqlalchemy.exc import DBAPIError, OperationalError


class ShadowRegistryError(Exception):
    """Base class for every error raised by the registry."""


class ValidationError(ShadowRegistryError):
    """Malformed atom, DNA or argument. Rejected before any persistence."""


class StorageError(ShadowRegistryError):
    """Stored data is corrupt or was written by an incompatible schema."""


class StorageUnavailable(StorageError):
    """Storage did not answer within its timeout, or writes are suspended."""


class InvalidStatusTransition(ShadowRegistryError):
    """Attempted to move a Shadow out of a terminal status."""

    def __init__(
        self, shadow_id: str, current: str, requested: str
    ) -> None:
        super().__init__(
            f"Shadow {shadow_id} is {current}; "
            f"cannot transition to {requested}"
        )
        self.shadow_id = shadow_id
        self.current = current
        self.requested = requested


class ErrorClass(Enum):
    TRANSIENT = "transient"  # database locked or busy, retryable
    TIMEOUT = "timeout"  # deadline exceeded, retryable with backoff
    CORRUPTION = "corruption"  # unreadable record, do NOT retry
    PERMANENT = "permanent"  # everything else, do NOT retry


def classify_error(error: BaseException) -> ErrorClass:
    """Classify a storage error to determine handling strategy.

    Checks exception types first, falls back to string matching for
    driver errors that only carry a message.
    """
    # 1. Typed domain and decode errors
    if isinstance(error, StorageUnavailable):
        return ErrorClass.TIMEOUT
    if isinstance(error, (StorageError, json.JSONDecodeError)):
        return ErrorClass.CORRUPTION
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorClass.TIMEOUT

    # 2. SQLite reports contention as OperationalError
    msg = str(error).lower()
    if isinstance(error, OperationalError):
        if "locked" in msg or "busy" in msg:
            return ErrorClass.TRANSIENT
        if "malformed" in msg or "not a database" in msg:
            return ErrorClass.CORRUPTION
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return ErrorClass.TRANSIENT

    # 3. Fall back to string matching for untyped exceptions
    if "timeout" in msg or "timed out" in msg:
        return ErrorClass.TIMEOUT
    if "database is locked" in msg:
        return ErrorClass.TRANSIENT

    return ErrorClass.PERMANENT


_RETRYABLE = frozenset({
    ErrorClass.TRANSIENT,
    ErrorClass.TIMEOUT,
})


def is_retryable(error: BaseException) -> bool:
    """Return True if the error category supports retry."""
    return classify_error(error) in _RETRYABLE
