"""
OpenAI-Compatible Speech Endpoint.

This module provides `/v1/audio/speech` and `/v1/models` in OpenAI's
format, so existing OpenAI TTS clients can point their base URL here.

OpenAI Compatibility:
    - model: "tts-1" / "tts-1-hd" select voices through `voice`;
      "tts-1-<alias>" selects the aliased voice directly; any other value
      is taken as an upstream voice name
    - input: Text to synthesize
    - voice: OpenAI alias (alloy, echo, fable, onyx, nova, shimmer) or an
      upstream voice name such as "zh-CN-XiaoxiaoNeural"
    - speed: Speaking speed multiplier, sent upstream as a rate percentage

Extensions (ignored by OpenAI clients):
    - pitch, style, role, styleDegree: voice expression controls
    - stream: stream MP3 bytes as each batch completes
    - cleaning_options: partial override of the text-cleaning defaults
    - concurrency, max_chunk_len: per-request scheduler/chunker overrides

Voice Mapping:
    Aliases map to upstream voices through `voices.openai` in
    settings.yaml; unknown aliases fall back to `voices.default`.

Error Responses:
    {
        "error": {
            "message": "Error description",
            "type": "invalid_request_error",
            "code": "invalid_input"
        }
    }

Example Usage:
    from openai import OpenAI
    client = OpenAI(base_url="http://localhost:8000/v1", api_key="unused")
    response = client.audio.speech.create(model="tts-1", voice="alloy", input="你好")
    response.stream_to_file("speech.mp3")
"""
from __future__ import annotations

import math
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from edge_tts_proxy.api.dependencies import get_speech_service
from edge_tts_proxy.core.config import VoicesConfig
from edge_tts_proxy.core.logging import debug, fail, get_logger, info, set_request_id
from edge_tts_proxy.services.speech_service import (
    ErrorCode,
    ProxyError,
    SpeechJobRequest,
    SpeechService,
)

# FastAPI router for OpenAI-compatible endpoints
router = APIRouter()

_LOG = get_logger("edge-tts-proxy.openai")

_STANDARD_MODELS = ("tts-1", "tts-1-hd")
_ALIAS_MODEL_PREFIX = "tts-1-"

_STATUS_MAP = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.TOKEN_ACQUISITION_FAILED: 502,
    ErrorCode.UPSTREAM_SYNTHESIS_FAILED: 502,
}


class OpenAISpeechRequest(BaseModel):
    """
    OpenAI-compatible speech synthesis request.

    `input` is optional at the schema level so that a missing value gets
    the same 400 envelope as a blank one instead of a 422.

    Example:
        >>> req = OpenAISpeechRequest(input="Hello", voice="nova", styleDegree=1.5)
        >>> req.style_degree
        1.5
    """
    model_config = ConfigDict(populate_by_name=True)

    model: str = Field(default="tts-1", description="tts-1, tts-1-hd, tts-1-<alias> or a voice name.")
    input: Optional[str] = Field(default=None, description="The text to generate audio for.")
    voice: Optional[str] = Field(default=None, description="OpenAI alias or upstream voice name.")
    speed: float = Field(default=1.0, description="Speed multiplier; 1.0 is unchanged.")
    pitch: float = Field(default=1.0, description="Pitch multiplier; 1.0 is unchanged.")
    style: str = Field(default="general", description="Speaking style.")
    role: str = Field(default="", description="Role-play persona.")
    style_degree: float = Field(default=1.0, alias="styleDegree", description="Style intensity.")
    stream: bool = Field(default=False, description="Stream audio as it is synthesized.")
    cleaning_options: Dict[str, Any] = Field(default_factory=dict, description="Cleaning overrides.")
    concurrency: Optional[int] = Field(default=None, description="Max in-flight upstream calls.")
    max_chunk_len: Optional[int] = Field(default=None, description="Max characters per chunk.")


def resolve_voice(model: str, voice: Optional[str], voices: VoicesConfig) -> str:
    """
    Pick the upstream voice for a request.

    Resolution:
        tts-1 / tts-1-hd   alias map on `voice`, else `voice`, else default
        tts-1-<alias>      alias map on the suffix, else default
        anything else      `voice`, else `model` itself, else default

    Example:
        >>> resolve_voice("tts-1", "alloy", VoicesConfig())
        'zh-CN-YunyangNeural'
        >>> resolve_voice("tts-1-nova", None, VoicesConfig())
        'zh-CN-YunxiNeural'
    """
    if model in _STANDARD_MODELS:
        return voices.openai.get(voice or "") or voice or voices.default
    if model.startswith(_ALIAS_MODEL_PREFIX):
        return voices.openai.get(model[len(_ALIAS_MODEL_PREFIX):]) or voices.default
    return voice or model or voices.default


def percent_change(multiplier: float) -> int:
    """
    Convert a multiplier to a whole percentage change, halves away from zero.

    Example:
        >>> percent_change(1.5), percent_change(0.8), percent_change(1.125)
        (50, -20, 13)
    """
    delta = (float(multiplier) - 1.0) * 100.0
    return int(math.copysign(math.floor(abs(delta) + 0.5), delta))


def _openai_error_response(
    message: str,
    error_type: str,
    code: str,
    status_code: int = 500,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """
    Create an error response in OpenAI's error format.

    Args:
        message: Human-readable error description.
        error_type: Error category (e.g., "api_error", "invalid_request_error").
        code: Machine-readable error code (e.g., "upstream_synthesis_failed").
        status_code: HTTP status code (default: 500).
        details: Extra fields, e.g. the upstream status and body. Omitted when empty.
    """
    error = {
        "message": message,
        "type": error_type,
        "code": code,
    }
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


def error_response_for(error: ProxyError) -> JSONResponse:
    """Map a ProxyError onto its HTTP status and OpenAI envelope."""
    error_type = "invalid_request_error" if error.code == ErrorCode.INVALID_INPUT else "api_error"
    return _openai_error_response(
        message=error.message,
        error_type=error_type,
        code=error.code.lower(),
        status_code=_STATUS_MAP.get(error.code, 500),
        details=error.details,
    )


@router.post("/v1/audio/speech", response_class=Response)
async def openai_speech(
    req: OpenAISpeechRequest,
    request: Request,
    service: SpeechService = Depends(get_speech_service),
):
    """
    OpenAI-compatible text-to-speech endpoint.

    Returns:
        audio/mpeg body, buffered or streamed, with headers:
            - X-Request-Id: Unique request identifier
            - X-Voice: Upstream voice used

    Raises:
        400: Missing/blank input or invalid overrides
        502: Session token unavailable, or upstream rejected a chunk
        500: Unexpected error

    Example:
        curl -X POST http://localhost:8000/v1/audio/speech \\
            -H "Content-Type: application/json" \\
            -d '{"model": "tts-1", "input": "你好", "voice": "alloy"}' \\
            --output speech.mp3
    """
    rid = str(uuid.uuid4())[:12]
    set_request_id(rid)

    voice = resolve_voice(req.model, req.voice, service.config.voices)
    info(_LOG, "openai_request", model=req.model, voice=req.voice, resolved_voice=voice,
         chars=len(req.input or ""), stream=req.stream)
    debug(_LOG, "openai_request_full", text=req.input, speed=req.speed, pitch=req.pitch,
          style=req.style, role=req.role, cleaning=req.cleaning_options)

    job = SpeechJobRequest(
        text=req.input or "",
        voice=voice,
        rate=percent_change(req.speed),
        pitch=percent_change(req.pitch),
        style=req.style,
        role=req.role,
        style_degree=req.style_degree,
        cleaning=req.cleaning_options,
        concurrency=req.concurrency,
        max_chunk_len=req.max_chunk_len,
        stream=req.stream,
        client_context=request.url.hostname,
    )
    headers = {"X-Request-Id": rid, "X-Voice": voice}

    try:
        if req.stream:
            body = await service.synthesize_stream(job)
            return StreamingResponse(body, media_type="audio/mpeg", headers=headers)

        audio = await service.synthesize(job)
        return Response(content=audio, media_type="audio/mpeg", headers=headers)

    except ProxyError as e:
        return error_response_for(e)

    except Exception as e:
        # Don't expose internal details
        fail(_LOG, "openai_request_failed", error=str(e), error_type=type(e).__name__)
        return _openai_error_response(
            message="Internal server error",
            error_type="api_error",
            code="internal_error",
            status_code=500,
        )


@router.get("/v1/models")
async def list_models(service: SpeechService = Depends(get_speech_service)):
    """
    List the model ids this endpoint accepts, in OpenAI list format.

    tts-1 and tts-1-hd, plus one tts-1-<alias> per configured voice alias.
    """
    created = int(time.time())
    ids = list(_STANDARD_MODELS) + [f"{_ALIAS_MODEL_PREFIX}{alias}" for alias in service.config.voices.openai]
    return {
        "object": "list",
        "data": [{"id": model_id, "object": "model", "created": created, "owned_by": "openai"} for model_id in ids],
    }
