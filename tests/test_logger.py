"""Tests for logging setup."""

import json
import logging

import pytest

from politecrawler.utils.config import LoggingConfig
from politecrawler.utils.logger import (
    JSONFormatter,
    PerformanceFilter,
    get_crawler_logger,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(name="politecrawler.test", msg="hello", **extra):
    record = logging.LogRecord(name, logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSetupLogging:

    def test_creates_log_files(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "crawler.log"

        setup_logging(LoggingConfig(level="DEBUG", file=str(log_file)))
        logging.getLogger("politecrawler.test").error("something broke")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert "something broke" in log_file.read_text()
        assert "something broke" in (tmp_path / "logs" / "errors.log").read_text()
        assert restore_root_logger.level == logging.DEBUG


class TestFormatting:

    def test_json_formatter(self):
        output = json.loads(JSONFormatter().format(make_record(url="http://a.com/")))

        assert output['message'] == "hello"
        assert output['level'] == "INFO"
        assert output['url'] == "http://a.com/"

    def test_performance_filter(self):
        log_filter = PerformanceFilter()

        assert not log_filter.filter(make_record(name="aiohttp.access"))
        assert log_filter.filter(make_record(name="politecrawler.crawler.fetcher"))

    def test_url_event_context(self, caplog):
        logger = get_crawler_logger("politecrawler.test", worker="main")

        with caplog.at_level(logging.INFO, logger="politecrawler.test"):
            logger.log_url_event(logging.INFO, "http://a.com/", "Request: 'http://a.com/'")

        record = caplog.records[-1]
        assert record.url == "http://a.com/"
        assert record.event_type == "url_event"
        assert record.worker == "main"
