"""Tests for error classification."""

from __future__ import annotations

import asyncio
import json

from sqlalchemy.exc import OperationalError

from shadow_registry.resilience.errors import (
    ErrorClass,
    InvalidStatusTransition,
    ShadowRegistryError,
    StorageError,
    StorageUnavailable,
    ValidationError,
    classify_error,
    is_retryable,
)


def _op_error(message: str) -> OperationalError:
    return OperationalError("INSERT INTO shadows", {}, Exception(message))


# ── classify_error ───────────────────────────────────────────


def test_classify_database_locked_as_transient() -> None:
    assert classify_error(_op_error("database is locked")) == ErrorClass.TRANSIENT


def test_classify_database_busy_as_transient() -> None:
    assert classify_error(_op_error("database busy")) == ErrorClass.TRANSIENT


def test_classify_malformed_image_as_corruption() -> None:
    err = _op_error("database disk image is malformed")
    assert classify_error(err) == ErrorClass.CORRUPTION


def test_classify_disk_io_as_permanent() -> None:
    assert classify_error(_op_error("disk I/O error")) == ErrorClass.PERMANENT


def test_classify_timeout_error() -> None:
    assert classify_error(TimeoutError()) == ErrorClass.TIMEOUT
    assert classify_error(asyncio.TimeoutError()) == ErrorClass.TIMEOUT


def test_classify_storage_unavailable_as_timeout() -> None:
    assert classify_error(StorageUnavailable("down")) == ErrorClass.TIMEOUT


def test_classify_storage_error_as_corruption() -> None:
    assert classify_error(StorageError("bad record")) == ErrorClass.CORRUPTION


def test_classify_json_decode_as_corruption() -> None:
    err = json.JSONDecodeError("Expecting value", "{", 1)
    assert classify_error(err) == ErrorClass.CORRUPTION


def test_classify_timeout_message_fallback() -> None:
    assert classify_error(RuntimeError("Request timed out")) == ErrorClass.TIMEOUT


def test_classify_unknown_as_permanent() -> None:
    assert classify_error(ValueError("something else")) == ErrorClass.PERMANENT


# ── is_retryable ─────────────────────────────────────────────


def test_transient_and_timeout_are_retryable() -> None:
    assert is_retryable(_op_error("database is locked")) is True
    assert is_retryable(TimeoutError()) is True


def test_corruption_and_permanent_not_retryable() -> None:
    assert is_retryable(StorageError("bad")) is False
    assert is_retryable(ValueError("nope")) is False


# ── taxonomy ─────────────────────────────────────────────────


def test_domain_errors_share_base() -> None:
    for err in (
        ValidationError("x"),
        StorageError("x"),
        StorageUnavailable("x"),
        InvalidStatusTransition("shadow_1", "REPLACED", "REPLACED"),
    ):
        assert isinstance(err, ShadowRegistryError)


def test_invalid_transition_message() -> None:
    err = InvalidStatusTransition("shadow_1", "MERGED", "REPLACED")
    assert err.shadow_id == "shadow_1"
    assert "MERGED" in str(err)
    assert "REPLACED" in str(err)
