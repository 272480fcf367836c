"""
Service Routes.

Operational endpoints next to the OpenAI-compatible API.

Endpoints:
    GET /health   - Token cache state and scheduler configuration
    GET /metrics  - Prometheus metrics

See Also:
    - api/openai_compat.py: /v1/audio/speech and /v1/models
    - services/speech_service.py: get_health_info()
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from edge_tts_proxy.api.dependencies import get_speech_service
from edge_tts_proxy.core.metrics import metrics
from edge_tts_proxy.services.speech_service import SpeechService

# FastAPI router for operational endpoints
router = APIRouter()


@router.get("/health")
def health(service: SpeechService = Depends(get_speech_service)):
    """
    Health check endpoint for load balancers and orchestration.

    Returns:
        dict with:
            - ok: Always true while the process serves requests
            - token: has_token, region, seconds_to_expiry, fresh, handshakes,
              last_error
            - scheduler: mode and concurrency
            - chunking: max_chunk_len
            - default_voice

    The health check never triggers a handshake; a missing token is normal
    until the first speech request.
    """
    return service.get_health_info()


@router.get("/metrics")
def prometheus_metrics():
    """
    Prometheus metrics endpoint.

    Exposes:
        - speech_requests_total / speech_request_duration_seconds
        - speech_chunks_total / speech_batches_total
        - upstream_synthesis_calls_total / upstream_token_refresh_total
        - speech_audio_bytes_total
    """
    content, content_type = metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
