"""Tests for Prometheus metrics."""
from __future__ import annotations


def _value(m, name, labels=None):
    return m.registry.get_sample_value(name, labels or {}) or 0.0


class TestMetricsModule:
    """Test metrics module functionality."""

    def test_metrics_instance_exists(self):
        from edge_tts_proxy.core.metrics import metrics

        assert metrics is not None

    def test_instances_do_not_collide(self):
        """Each instance owns a private registry."""
        from edge_tts_proxy.core.metrics import ProxyMetrics

        a = ProxyMetrics()
        b = ProxyMetrics()
        a.record_chunk()
        assert _value(a, "speech_chunks_total") == 1.0
        assert _value(b, "speech_chunks_total") == 0.0

    def test_record_request(self):
        from edge_tts_proxy.core.metrics import ProxyMetrics

        m = ProxyMetrics()
        m.record_request(mode="buffered", status="success", duration=0.5, audio_bytes=1000)
        m.record_request(mode="stream", status="error", duration=-1)

        assert _value(m, "speech_requests_total", {"mode": "buffered", "status": "success"}) == 1.0
        assert _value(m, "speech_requests_total", {"mode": "stream", "status": "error"}) == 1.0
        assert _value(m, "speech_audio_bytes_total") == 1000.0
        assert _value(m, "speech_request_duration_seconds_count", {"mode": "buffered"}) == 1.0
        assert _value(m, "speech_request_duration_seconds_count", {"mode": "stream"}) == 0.0

    def test_upstream_and_token_counters(self):
        from edge_tts_proxy.core.metrics import ProxyMetrics

        m = ProxyMetrics()
        m.record_upstream_call(200)
        m.record_upstream_call("error")
        m.record_token_refresh("stale_fallback")
        m.record_batch("pool")

        assert _value(m, "upstream_synthesis_calls_total", {"status": "200"}) == 1.0
        assert _value(m, "upstream_synthesis_calls_total", {"status": "error"}) == 1.0
        assert _value(m, "upstream_token_refresh_total", {"outcome": "stale_fallback"}) == 1.0
        assert _value(m, "speech_batches_total", {"mode": "pool"}) == 1.0

    def test_exposition(self):
        from edge_tts_proxy.core.metrics import ProxyMetrics

        m = ProxyMetrics()
        m.record_chunk()
        content, content_type = m.get_metrics_response()
        assert b"speech_chunks_total 1.0" in content
        assert content_type.startswith("text/plain")


class TestMetricsFromPipeline:
    def test_service_records_chunks_and_requests(self, make_service):
        import asyncio

        from edge_tts_proxy.core.metrics import metrics
        from edge_tts_proxy.services.speech_service import SpeechJobRequest

        chunks_before = _value(metrics, "speech_chunks_total")
        ok_before = _value(metrics, "speech_requests_total", {"mode": "buffered", "status": "success"})

        asyncio.run(make_service().synthesize(SpeechJobRequest(text="One. Two. Three.", max_chunk_len=7)))

        assert _value(metrics, "speech_chunks_total") == chunks_before + 3
        assert _value(metrics, "speech_requests_total", {"mode": "buffered", "status": "success"}) == ok_before + 1
