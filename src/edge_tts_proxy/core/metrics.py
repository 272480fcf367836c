"""
Prometheus Metrics for the Speech Proxy.

Metrics Exposed:
    speech_requests_total             - Jobs by output mode and status
    speech_request_duration_seconds   - End-to-end job latency
    speech_chunks_total               - Text chunks synthesized
    speech_batches_total              - Batches dispatched by the scheduler
    upstream_synthesis_calls_total    - Upstream synthesis calls by HTTP status
    upstream_token_refresh_total      - Token refreshes by outcome
    speech_audio_bytes_total          - Audio bytes returned to clients

Usage:
    from edge_tts_proxy.core.metrics import metrics

    metrics.record_request(mode="buffered", status="success", duration=1.2, audio_bytes=48000)
    metrics.record_token_refresh("stale_fallback")

    content, content_type = metrics.get_metrics_response()
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


class ProxyMetrics:
    """
    Metric collection for the proxy.

    Uses a private CollectorRegistry so that creating several instances
    (tests, multiple apps in one process) never collides on metric names.
    """

    def __init__(self) -> None:
        self._registry = CollectorRegistry()

        self._requests_total = Counter(
            "speech_requests_total",
            "Speech jobs handled",
            ["mode", "status"],
            registry=self._registry,
        )
        self._request_duration = Histogram(
            "speech_request_duration_seconds",
            "Speech job duration in seconds",
            ["mode"],
            buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )
        self._chunks_total = Counter(
            "speech_chunks_total",
            "Text chunks synthesized",
            registry=self._registry,
        )
        self._batches_total = Counter(
            "speech_batches_total",
            "Batches dispatched by the scheduler",
            ["mode"],
            registry=self._registry,
        )
        self._upstream_calls = Counter(
            "upstream_synthesis_calls_total",
            "Upstream synthesis calls",
            ["status"],
            registry=self._registry,
        )
        self._token_refresh = Counter(
            "upstream_token_refresh_total",
            "Session token refreshes",
            ["outcome"],
            registry=self._registry,
        )
        self._audio_bytes = Counter(
            "speech_audio_bytes_total",
            "Audio bytes returned to clients",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_request(self, mode: str, status: str, duration: float, audio_bytes: int = 0) -> None:
        """
        Record a finished speech job.

        Args:
            mode: "buffered" or "stream".
            status: "success" or "error".
            duration: Job duration in seconds (negative values are not observed).
            audio_bytes: Bytes delivered to the client.
        """
        self._requests_total.labels(mode=mode, status=status).inc()
        if duration >= 0:
            self._request_duration.labels(mode=mode).observe(duration)
        if audio_bytes > 0:
            self._audio_bytes.inc(audio_bytes)

    def record_chunk(self) -> None:
        self._chunks_total.inc()

    def record_batch(self, mode: str) -> None:
        self._batches_total.labels(mode=mode).inc()

    def record_upstream_call(self, status: int | str) -> None:
        """Record one upstream synthesis call; use "error" for transport failures."""
        self._upstream_calls.labels(status=str(status)).inc()

    def record_token_refresh(self, outcome: str) -> None:
        """Outcome is "success", "failed" or "stale_fallback"."""
        self._token_refresh.labels(outcome=outcome).inc()

    def get_metrics_response(self) -> tuple[bytes, str]:
        """Exposition payload and content type for the /metrics endpoint."""
        return generate_latest(self._registry), CONTENT_TYPE_LATEST


metrics = ProxyMetrics()
