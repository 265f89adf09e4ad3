import io
import json
import logging

from profile_harvest.core.logging_config import (
    PlaywrightPipeFilter,
    ScrapeContextFilter,
    configure_logging,
    scrape_context,
)
from profile_harvest.middleware.request_id import request_id_var, resolve_request_id
from tests.fakes import make_settings


class TestSettings:
    def test_defaults(self):
        config = make_settings()
        assert config.VIEWPORT_WIDTH == 1200
        assert config.VIEWPORT_HEIGHT == 800
        assert config.DEFAULT_SEARCH_RESULTS == 5

    def test_non_positive_capacity_clamped(self):
        assert make_settings(MAX_CONCURRENT_PAGES=0).MAX_CONCURRENT_PAGES == 1
        assert make_settings(MAX_CONCURRENT_PAGES=-3).MAX_CONCURRENT_PAGES == 1
        assert make_settings(MAX_CONCURRENT_PAGES=7).MAX_CONCURRENT_PAGES == 7


def _record(msg):
    return logging.LogRecord("test", logging.WARNING, __file__, 1, msg, None, None)


class TestLogFilters:
    def test_context_empty_outside_request(self):
        record = _record("hello")
        assert ScrapeContextFilter().filter(record)
        assert record.request_id == ""
        assert record.operation == ""
        assert record.target == ""

    def test_scrape_context_tags_records(self):
        token = request_id_var.set("req-1")
        try:
            with scrape_context("search", "dance"):
                record = _record("Found 3 users")
                ScrapeContextFilter().filter(record)
        finally:
            request_id_var.reset(token)
        assert (record.request_id, record.operation, record.target) == ("req-1", "search", "dance")

        after = _record("later")
        ScrapeContextFilter().filter(after)
        assert after.operation == ""

    def test_pipe_noise_dropped(self):
        assert not PlaywrightPipeFilter().filter(_record("write EPIPE: pipe closed by peer"))
        assert PlaywrightPipeFilter().filter(_record("Navigation timed out"))


class TestConfigureLogging:
    def test_json_lines_carry_scrape_context(self, monkeypatch):
        stream = io.StringIO()
        monkeypatch.setattr("sys.stdout", stream)
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging("json", "INFO")
            with scrape_context("profile", "dancequeen"):
                logging.getLogger("profile_harvest.test").info("Fetched profile")
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        line = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert line["message"] == "Fetched profile"
        assert line["level"] == "INFO"
        assert line["operation"] == "profile"
        assert line["target"] == "dancequeen"


class TestRequestIdResolution:
    def test_safe_id_kept(self):
        assert resolve_request_id("trace-01:a.b_c") == "trace-01:a.b_c"

    def test_missing_or_unsafe_id_replaced(self):
        for incoming in (None, "", "has space", "x" * 129, "line\nbreak"):
            rid = resolve_request_id(incoming)
            assert rid != incoming
            assert len(rid) == 32
