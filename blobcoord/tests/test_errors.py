"""
Unit Tests: Error Hierarchy and Core Types

Tests:
    - Error constructors, codes and serialization
    - Cause chaining
    - ByteRange header round trip
    - ManualClock
"""

import pytest

from blobcoord.core.errors import (
    CoordinationError,
    ErrorCode,
    InvalidConfig,
    LockNotAcquiredError,
    RateLimitError,
    ReliabilityError,
    StorageError,
)
from blobcoord.core.types import ByteRange, ManualClock


class TestErrors:
    """Tests for the error hierarchy."""

    def test_to_dict(self):
        error = StorageError.oversized_payload("images/a.png", 100, 10)
        data = error.to_dict()

        assert data["code"] == "STORAGE_OVERSIZED_PAYLOAD"
        assert data["code_value"] == 1001
        assert data["context"] == {"key": "images/a.png", "size_bytes": 100, "limit_bytes": 10}
        assert len(data["error_id"]) == 36

    def test_str_includes_code(self):
        error = StorageError.read_only("state/a.json")

        assert str(error).startswith("[STORAGE_READ_ONLY]")
        assert error.code is ErrorCode.STORAGE_READ_ONLY

    def test_not_configured_lists_missing(self):
        error = StorageError.not_configured(["S3_BUCKET", "S3_ACCESS_KEY_ID"])

        assert error.code is ErrorCode.STORAGE_NOT_CONFIGURED
        assert "S3_BUCKET, S3_ACCESS_KEY_ID" in error.message

    def test_cause_chained(self):
        cause = ConnectionError("reset")
        error = StorageError.write_failed("a.json", cause)

        assert error.__cause__ is cause
        assert error.cause is cause

    def test_timeout(self):
        error = ReliabilityError.timeout("cdn_fetch", 10_000)

        assert error.code is ErrorCode.RELIABILITY_TIMEOUT
        assert "10000ms" in error.message

    def test_hierarchy_and_aliases(self):
        assert InvalidConfig is RateLimitError
        assert issubclass(LockNotAcquiredError, CoordinationError)
        with pytest.raises(CoordinationError):
            raise RateLimitError.invalid_config("maxRequests", 0)


class TestCoreTypes:
    """Tests for ByteRange and ManualClock."""

    def test_byte_range_header(self):
        byte_range = ByteRange(10, 19)

        assert byte_range.length == 10
        assert byte_range.to_http_header() == "bytes=10-19"
        assert ByteRange.from_http_header("bytes=10-19").unwrap() == byte_range

    def test_byte_range_bad_header(self):
        assert ByteRange.from_http_header("items=1-2").is_err()
        assert ByteRange.from_http_header("bytes=a-b").is_err()

    def test_byte_range_validation(self):
        with pytest.raises(ValueError):
            ByteRange(5, 4)
        with pytest.raises(ValueError):
            ByteRange(-1, 4)

    def test_manual_clock(self):
        clock = ManualClock(start_ms=100)
        clock.advance(50)
        assert clock.now_ms() == 150

        clock.set(10)
        assert clock.now_ms() == 10

        with pytest.raises(ValueError):
            clock.advance(-1)
