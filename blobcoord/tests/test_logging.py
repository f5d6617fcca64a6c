"""
Unit Tests: Structured Logging

Tests:
    - JSON output with extras and context fields
    - Once-per-process warnings
    - setup_logging handler installation
"""

import io
import json
import logging

import pytest

from blobcoord.core.types import ManualClock
from blobcoord.locking.distributed_lock import DistributedLock
from blobcoord.locking.lock_store import InMemoryLockStore
from blobcoord.observability.logging import (
    JsonFormatter,
    LogLevel,
    log_context,
    log_once,
    reset_log_once,
    setup_logging,
)


def capture(name):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    base = logging.getLogger(name)
    base.handlers = [handler]
    base.setLevel(logging.DEBUG)
    base.propagate = False
    return stream


def lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestJsonFormatter:
    """Tests for JSON output."""

    def test_extras_in_json(self):
        stream = capture("blobcoord.tests.json")

        logging.getLogger("blobcoord.tests.json").info(
            "acquired", extra={"lock_key": "export-job"}
        )

        [record] = lines(stream)
        assert record["message"] == "acquired"
        assert record["level"] == "INFO"
        assert record["logger"] == "blobcoord.tests.json"
        assert record["lock_key"] == "export-job"

    def test_context_fields_scoped(self):
        stream = capture("blobcoord.tests.context")
        logger = logging.getLogger("blobcoord.tests.context")

        with log_context(instance_id="p1"):
            logger.warning("inside")
        logger.warning("outside")

        inside, outside = lines(stream)
        assert inside["instance_id"] == "p1"
        assert "instance_id" not in outside

    @pytest.mark.asyncio
    async def test_lock_records_carry_lock_fields(self):
        name = "blobcoord.locking.distributed_lock"
        base = logging.getLogger(name)
        saved_handlers, saved_level = base.handlers[:], base.level
        stream = capture(name)
        store = InMemoryLockStore()
        store.entries["locks/job.json"] = "garbage"
        try:
            assert await DistributedLock(store, clock=ManualClock()).acquire("job", "p1", "export")
        finally:
            base.handlers = saved_handlers
            base.setLevel(saved_level)
            base.propagate = True

        records = lines(stream)
        assert records
        assert all(r["lock_key"] == "job" and r["instance_id"] == "p1" for r in records)


class TestLogOnce:
    """Tests for log_once."""

    def test_emits_once_per_key(self, caplog):
        logger = logging.getLogger("blobcoord.tests.once")

        with caplog.at_level(logging.WARNING, logger="blobcoord.tests.once"):
            assert log_once(logger, "k", "first")
            assert not log_once(logger, "k", "second")
            assert log_once(logger, "other", "third")

        assert [r.getMessage() for r in caplog.records] == ["first", "third"]

    def test_reset(self):
        logger = logging.getLogger("blobcoord.tests.once")
        log_once(logger, "k", "first")
        reset_log_once()

        assert log_once(logger, "k", "again")


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_installs_json_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        stream = io.StringIO()
        try:
            setup_logging(LogLevel.INFO, json_output=True, stream=stream)
            logging.getLogger("blobcoord.tests.setup").info("hello")
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)

        assert json.loads(stream.getvalue())["message"] == "hello"
        assert logging.getLogger("botocore").level == logging.WARNING
