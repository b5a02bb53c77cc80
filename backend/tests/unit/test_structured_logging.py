"""
Unit tests for correlation logging
"""

import asyncio
import json
import logging

import pytest

from acquirarr.services.structured_logging import (
    CorrelationContext,
    CorrelationFilter,
    JSONLogFormatter,
    clear_context,
    get_download_id,
    get_job,
    set_request_id,
)


def make_record(msg="Grabbed release"):
    return logging.LogRecord("acquirarr.test", logging.INFO, __file__, 10, msg, None, None)


@pytest.fixture(autouse=True)
def clean_context():
    clear_context()
    yield
    clear_context()


class TestCorrelationContext:

    def test_nested_contexts_restore(self):
        with CorrelationContext(job="download_sync"):
            with CorrelationContext(download_id=42):
                assert get_job() == "download_sync"
                assert get_download_id() == 42
            assert get_download_id() is None
        assert get_job() is None

    @pytest.mark.asyncio
    async def test_context_is_per_task(self):
        seen = {}

        async def worker(download_id):
            with CorrelationContext(download_id=download_id):
                await asyncio.sleep(0)
                seen[download_id] = get_download_id()

        await asyncio.gather(worker(1), worker(2))
        assert seen == {1: 1, 2: 2}


class TestFormatting:

    def test_json_formatter_includes_ids(self):
        set_request_id("1a2b3c4d")
        with CorrelationContext(download_id=7, stage="import"):
            data = json.loads(JSONLogFormatter().format(make_record()))

        assert data["message"] == "Grabbed release"
        assert data["request_id"] == "1a2b3c4d"
        assert data["download_id"] == 7
        assert data["context"] == {"stage": "import"}

    def test_json_formatter_without_context(self):
        data = json.loads(JSONLogFormatter().format(make_record()))
        assert "request_id" not in data and "download_id" not in data

    def test_plain_filter_suffix(self):
        record = make_record()
        with CorrelationContext(job="rss_sync", download_id=3):
            assert CorrelationFilter().filter(record)
        assert record.correlation == " [job=rss_sync download=3]"

        CorrelationFilter().filter(record)
        assert record.correlation == ""
