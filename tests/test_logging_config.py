"""Tests for structured logging and operation ids."""

import io
import json
import logging

import pytest

from continuity_conductor.logging_config import (
    StructuredFormatter,
    configure_logging,
    current_operation_id,
    operation_id_var,
    with_operation_id,
)


def make_record(message="hello", **extra):
    record = logging.LogRecord("continuity_conductor.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_basic_fields(self):
        data = json.loads(StructuredFormatter().format(make_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "continuity_conductor.test"
        assert data["message"] == "hello"
        assert data["operation_id"] == ""
        assert "duration_ms" not in data

    def test_extra_fields(self):
        record = make_record(duration_ms=1.5, operation="sync", collaborator="knowledge")
        data = json.loads(StructuredFormatter().format(record))
        assert data["duration_ms"] == 1.5
        assert data["operation"] == "sync"
        assert data["collaborator"] == "knowledge"

    def test_includes_active_operation_id(self):
        token = operation_id_var.set("abcd1234")
        try:
            data = json.loads(StructuredFormatter().format(make_record()))
        finally:
            operation_id_var.reset(token)
        assert data["operation_id"] == "abcd1234"


class TestOperationId:
    @pytest.mark.asyncio
    async def test_set_during_call_and_reset_after(self):
        seen = []

        @with_operation_id
        async def work():
            seen.append(current_operation_id())
            return "done"

        assert await work() == "done"
        assert seen[0] is not None and len(seen[0]) == 8
        assert current_operation_id() is None

    @pytest.mark.asyncio
    async def test_reset_on_error(self):
        @with_operation_id
        async def broken():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await broken()
        assert current_operation_id() is None


class TestConfigureLogging:
    def test_writes_json_lines(self):
        stream = io.StringIO()
        handler = configure_logging("debug", stream)
        try:
            logging.getLogger("continuity_conductor.sample").debug("configured")
        finally:
            logging.getLogger("continuity_conductor").removeHandler(handler)

        line = stream.getvalue().strip().splitlines()[-1]
        assert json.loads(line)["message"] == "configured"
