"""Tests for the numeric logging levels, formatters and request id context."""
from __future__ import annotations

import asyncio
import json
import logging


class _Collect(logging.Handler):
    def __init__(self):
        super().__init__(level=0)
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _collecting_logger(name: str):
    from edge_tts_proxy.core.logging import get_logger

    logger = get_logger(name)
    handler = _Collect()
    logger.addHandler(handler)
    return logger, handler


class TestLogLevelEnum:
    """Test LogLevel enum values."""

    def test_level_enum_values(self):
        from edge_tts_proxy.core.logging import LogLevel

        assert LogLevel.MINIMAL == 1
        assert LogLevel.NORMAL == 2
        assert LogLevel.VERBOSE == 3
        assert LogLevel.DEBUG == 4

    def test_level_enum_ordering(self):
        from edge_tts_proxy.core.logging import LogLevel

        assert LogLevel.MINIMAL < LogLevel.NORMAL < LogLevel.VERBOSE < LogLevel.DEBUG


class TestLevelCoercion:
    """Test level coercion from various input types."""

    def test_from_int(self):
        from edge_tts_proxy.core.logging import LogLevel, coerce_level

        assert coerce_level(1) == LogLevel.MINIMAL
        assert coerce_level(4) == LogLevel.DEBUG

    def test_from_names(self):
        from edge_tts_proxy.core.logging import LogLevel, coerce_level

        assert coerce_level("minimal") == LogLevel.MINIMAL
        assert coerce_level("VERBOSE") == LogLevel.VERBOSE
        assert coerce_level("info") == LogLevel.NORMAL
        assert coerce_level("3") == LogLevel.VERBOSE

    def test_from_stdlib_levels(self):
        from edge_tts_proxy.core.logging import LogLevel, coerce_level

        assert coerce_level(logging.ERROR) == LogLevel.MINIMAL
        assert coerce_level(logging.INFO) == LogLevel.NORMAL

    def test_unknown_falls_back_to_normal(self):
        from edge_tts_proxy.core.logging import LogLevel, coerce_level

        assert coerce_level("loud") == LogLevel.NORMAL


class TestLevelGating:
    """Helpers only emit at or below the configured level."""

    def test_verbose_hidden_at_normal(self):
        from edge_tts_proxy.core.logging import LogLevel, get_level, info, set_level, verbose

        logger, handler = _collecting_logger("edge-tts-proxy.test.gating")
        previous = get_level()
        try:
            set_level(LogLevel.NORMAL)
            verbose(logger, "batch_done", batch=1)
            info(logger, "speech_request", chars=5)
            assert [r.getMessage() for r in handler.records] == ["speech_request"]

            set_level(LogLevel.VERBOSE)
            verbose(logger, "batch_done", batch=2)
            assert handler.records[-1].getMessage() == "batch_done"
        finally:
            set_level(previous)
            logger.removeHandler(handler)

    def test_fail_shown_at_minimal(self):
        from edge_tts_proxy.core.logging import LogLevel, fail, get_level, set_level, warn

        logger, handler = _collecting_logger("edge-tts-proxy.test.minimal")
        previous = get_level()
        try:
            set_level(LogLevel.MINIMAL)
            warn(logger, "token_attempt_failed")
            fail(logger, "request_failed", code="UPSTREAM_SYNTHESIS_FAILED")
            assert [r.tag for r in handler.records] == ["FAIL"]
            assert handler.records[0].extra_data == {"code": "UPSTREAM_SYNTHESIS_FAILED"}
        finally:
            set_level(previous)
            logger.removeHandler(handler)


class TestFormatters:
    def test_jsonl_record(self):
        from edge_tts_proxy.core.logging import JsonlFormatter

        record = logging.LogRecord("x", logging.INFO, __file__, 1, "token_refreshed", None, None)
        record.tag = "SUCCESS"
        record.numeric_level = 2
        record.request_id = "abc123"
        record.seconds = 0.41
        record.event = None
        record.extra_data = {"region": "eastasia"}

        payload = json.loads(JsonlFormatter().format(record))
        assert payload["message"] == "token_refreshed"
        assert payload["tag"] == "SUCCESS"
        assert payload["request_id"] == "abc123"
        assert payload["seconds"] == 0.41
        assert payload["extra"] == {"region": "eastasia"}
        assert "event" not in payload

    def test_console_plain_without_colors(self, monkeypatch):
        from edge_tts_proxy.core.logging import ColoredConsoleFormatter, colors

        monkeypatch.setattr(colors, "USE_COLORS", False)
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "synth_rejected", None, None)
        record.tag = "WARN"
        record.request_id = "rid1"
        record.seconds = None
        record.event = None
        record.extra_data = {"status": 500, "chunk": 2}

        line = ColoredConsoleFormatter().format(record)
        assert "\033[" not in line
        assert "(rid1)" in line
        assert "synth_rejected status=500 chunk=2" in line


class TestRequestId:
    def test_propagates_to_tasks(self):
        from edge_tts_proxy.core.logging import get_request_id, set_request_id

        async def child():
            await asyncio.sleep(0)
            return get_request_id()

        async def run():
            set_request_id("req-42")
            return await asyncio.gather(child(), child())

        assert asyncio.run(run()) == ["req-42", "req-42"]

    def test_default_outside_request(self):
        import contextvars

        from edge_tts_proxy.core.logging import get_request_id

        assert contextvars.Context().run(get_request_id) == "-"


class TestJsonlFile:
    def test_log_dir_writes_jsonl(self, tmp_path, monkeypatch):
        from edge_tts_proxy.core.logging import configure_logging, get_logger, info, set_request_id

        monkeypatch.setenv("EDGE_TTS_LOG_DIR", str(tmp_path))
        monkeypatch.setenv("EDGE_TTS_JSONL_FILE", "proxy.jsonl")
        monkeypatch.setenv("EDGE_TTS_LOG_LEVEL", "2")
        try:
            configure_logging(force=True)
            set_request_id("file-test")
            info(get_logger("edge-tts-proxy.test.file"), "token_refreshed", region="eastasia")
            for handler in logging.getLogger().handlers:
                handler.flush()

            lines = (tmp_path / "proxy.jsonl").read_text(encoding="utf-8").splitlines()
            entries = [json.loads(line) for line in lines]
            match = [e for e in entries if e["message"] == "token_refreshed"]
            assert match and match[-1]["request_id"] == "file-test"
            assert match[-1]["extra"] == {"region": "eastasia"}
        finally:
            monkeypatch.delenv("EDGE_TTS_LOG_DIR")
            for handler in logging.getLogger().handlers:
                handler.close()
            configure_logging(force=True)
