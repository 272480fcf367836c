"""
SpeechService - Speech Job Orchestrator.

This module provides the SpeechService class, the single entry point for
speech jobs. The OpenAI-compatible endpoint and the CLI both go through it.

Architecture:
    Request → Validate → Normalize → Chunk → Token → Schedule → Assemble → Response

Key Components:
    - SessionTokenManager: process-wide session token, single-flight refresh
    - SynthesisClient: one upstream call per chunk
    - BatchScheduler: ordered, concurrency-bounded fan-out (one per job)
    - StreamAssembler: buffered payload or live byte stream (one per job)

    The token manager and the synthesis client share one httpx.AsyncClient.

Error Handling:
    - InvalidInputError: blank text or malformed overrides
    - TokenAcquisitionError: handshake exhausted with nothing cached
    - UpstreamSynthesisError: a chunk was rejected; aborts the job
    - ProxyError(INTERNAL_ERROR): anything unexpected, wrapped

    In streaming mode the token is obtained before the stream is returned,
    so handshake failures still produce a clean error response. Failures
    after that abort the byte stream.

Example:
    >>> from edge_tts_proxy.core.config import Settings
    >>> from edge_tts_proxy.services import SpeechJobRequest, SpeechService
    >>>
    >>> service = SpeechService(Settings(raw={}))
    >>> audio = await service.synthesize(SpeechJobRequest(text="你好，世界。"))
    >>> print(f"Generated {len(audio)} bytes")
"""
from __future__ import annotations

import asyncio
import threading
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional

import httpx

from edge_tts_proxy.core.config import CleaningConfig, ServiceConfig, Settings
from edge_tts_proxy.core.errors import (
    ErrorCode,
    InvalidInputError,
    ProxyError,
    TokenAcquisitionError,
    UpstreamSynthesisError,
)
from edge_tts_proxy.core.logging import debug, fail, get_logger, info, success, verbose, warn
from edge_tts_proxy.core.metrics import metrics
from edge_tts_proxy.services.validators import (
    ValidationError,
    validate_positive,
    validate_style,
    validate_text,
    validate_voice,
)
from edge_tts_proxy.tts.assembler import StreamAssembler
from edge_tts_proxy.tts.chunker import TextChunk, chunk_text
from edge_tts_proxy.tts.client import AudioSegment, SynthesisClient, VoiceParams
from edge_tts_proxy.tts.scheduler import BatchScheduler
from edge_tts_proxy.tts.token_manager import SessionTokenManager
from edge_tts_proxy.utils.text import normalize
from edge_tts_proxy.utils.timeit import timeit

_LOG = get_logger("edge-tts-proxy.service")

__all__ = [
    "ErrorCode",
    "ProxyError",
    "InvalidInputError",
    "TokenAcquisitionError",
    "UpstreamSynthesisError",
    "SpeechJobRequest",
    "SpeechJob",
    "SpeechService",
    "get_service",
    "peek_service",
    "set_service",
    "reset_service",
]


# =============================================================================
# Request/Job Dataclasses
# =============================================================================

@dataclass
class SpeechJobRequest:
    """
    Inbound speech job.

    Attributes:
        text: Raw text to speak (required).
        voice: Upstream voice name; the configured default when None.
        rate: Rate change in percent.
        pitch: Pitch change in percent.
        style: Speaking style, "general" for none.
        role: Role-play persona, empty for none.
        style_degree: Style intensity.
        cleaning: Partial override of the cleaning defaults.
        concurrency: Override of the scheduler width.
        max_chunk_len: Override of the chunk size bound.
        stream: Stream the audio instead of buffering it.
        client_context: Hostname the upstream client id is derived from.
    """
    text: str
    voice: Optional[str] = None
    rate: int = 0
    pitch: int = 0
    style: str = "general"
    role: str = ""
    style_degree: float = 1.0
    cleaning: Optional[Mapping[str, Any]] = None
    concurrency: Optional[int] = None
    max_chunk_len: Optional[int] = None
    stream: bool = False
    client_context: Optional[str] = None


@dataclass
class SpeechJob:
    """
    A validated, normalized and chunked job, ready to schedule.

    Attributes:
        chunks: Ordered chunks; may be empty when cleaning removed everything.
        params: Voice parameters shared by every chunk.
        cleaning: Effective cleaning configuration.
        concurrency: Effective scheduler width.
        max_chunk_len: Effective chunk size bound.
        normalized: Cleaned text the chunks were cut from.
        client_context: Hostname for the upstream client id.
        timings: Per-stage timing breakdown.
    """
    chunks: List[TextChunk]
    params: VoiceParams
    cleaning: CleaningConfig
    concurrency: int
    max_chunk_len: int
    normalized: str
    client_context: Optional[str] = None
    timings: Dict[str, float] = field(default_factory=dict)


# =============================================================================
# Main Service Class
# =============================================================================

class SpeechService:
    """
    Speech job orchestration over the upstream engine.

    Both buffered and streamed jobs share one SessionTokenManager, so the
    session token survives across requests until it nears expiry.

    Usage:
        service = SpeechService(load_settings())

        audio = await service.synthesize(SpeechJobRequest(text="Hello"))

        body = await service.synthesize_stream(SpeechJobRequest(text="Hello", stream=True))
        async for data in body:
            ...

        await service.aclose()
    """

    def __init__(
        self,
        settings: Settings,
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the service.

        Args:
            settings: Application settings loaded from YAML/environment.
            http: AsyncClient for all upstream traffic. Created (and owned)
                when omitted; tests pass one built on httpx.MockTransport.
            clock: Epoch clock for token expiry checks.
            sleep: Sleep used for handshake backoff.

        Raises:
            ConfigValidationError: If the settings are invalid.
        """
        self._settings = settings
        self._config = ServiceConfig.from_settings(settings)

        # ─────────────────────────────────────────────────────────────────────
        # Upstream: one HTTP client for handshake and synthesis
        # ─────────────────────────────────────────────────────────────────────
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=self._config.upstream.request_timeout_s)

        self._tokens = SessionTokenManager(
            self._config.upstream,
            self._config.token,
            http=self._http,
            clock=clock,
            sleep=sleep,
        )
        self._client = SynthesisClient(self._config.upstream, http=self._http)

        # ─────────────────────────────────────────────────────────────────────
        # Logging Configuration
        # ─────────────────────────────────────────────────────────────────────
        self._text_preview_chars = self._config.logging.text_preview_chars

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def config(self) -> ServiceConfig:
        return self._config

    @property
    def tokens(self) -> SessionTokenManager:
        return self._tokens

    @property
    def client(self) -> SynthesisClient:
        return self._client

    # =========================================================================
    # Job Preparation
    # =========================================================================

    def prepare(self, request: SpeechJobRequest) -> SpeechJob:
        """
        Validate, normalize and chunk a request. No network access.

        Raises:
            InvalidInputError: If any field fails validation.
        """
        try:
            text = validate_text(request.text)
            voice = validate_voice(request.voice) or self._config.voices.default
            style = validate_style(request.style, "style") or "general"
            role = validate_style(request.role, "role")
            concurrency = validate_positive(request.concurrency, "concurrency") or self._config.scheduler.concurrency
            max_chunk_len = validate_positive(request.max_chunk_len, "max_chunk_len") or self._config.chunking.max_chunk_len
        except ValidationError as e:
            warn(_LOG, "invalid_input", code=e.code, error=e.message)
            raise InvalidInputError(e.message, {"field_code": e.code})

        timings: Dict[str, float] = {}
        cleaning = self._config.cleaning.merged(request.cleaning)

        # ─────────────────────────────────────────────────────────────────────
        # Stage 1: Normalize text
        # ─────────────────────────────────────────────────────────────────────
        with timeit("normalize") as t_norm:
            normalized = normalize(text, cleaning)
        timings["normalize"] = t_norm.seconds
        verbose(_LOG, "stage", event="normalize", seconds=round(t_norm.seconds, 4),
                chars_in=len(text), chars_out=len(normalized))

        # ─────────────────────────────────────────────────────────────────────
        # Stage 2: Chunk text
        # ─────────────────────────────────────────────────────────────────────
        with timeit("chunk") as t_chunk:
            chunks = chunk_text(normalized, max_chunk_len)
        timings["chunk"] = t_chunk.seconds
        verbose(_LOG, "stage", event="chunk", seconds=round(t_chunk.seconds, 4),
                chunks=len(chunks), max_chunk_len=max_chunk_len)

        params = VoiceParams(
            voice=voice,
            rate=int(request.rate),
            pitch=int(request.pitch),
            style=style,
            role=role,
            style_degree=float(request.style_degree),
        )
        debug(_LOG, "prepared", voice=voice, style=style, role=role, concurrency=concurrency,
              normalized_text=normalized)

        return SpeechJob(
            chunks=chunks,
            params=params,
            cleaning=cleaning,
            concurrency=concurrency,
            max_chunk_len=max_chunk_len,
            normalized=normalized,
            client_context=request.client_context,
            timings=timings,
        )

    def _scheduler(self, job: SpeechJob) -> BatchScheduler:
        async def synthesize_chunk(chunk: TextChunk) -> AudioSegment:
            token = await self._tokens.get_token(job.client_context)
            return await self._client.synthesize(chunk, job.params, token)

        return BatchScheduler(synthesize_chunk, concurrency=job.concurrency, mode=self._config.scheduler.mode)

    def _log_request(self, request: SpeechJobRequest, mode: str) -> None:
        preview = request.text[:self._text_preview_chars] if self._text_preview_chars > 0 and request.text else ""
        info(_LOG, "speech_request", mode=mode, chars=len(request.text or ""),
             voice=request.voice, text_preview=preview)

    # =========================================================================
    # Public API: synthesize()
    # =========================================================================

    async def synthesize(self, request: SpeechJobRequest) -> bytes:
        """
        Run a job to completion and return the concatenated audio.

        Pipeline:
            1. Validate, normalize, chunk
            2. Ensure a session token (refresh if stale)
            3. Schedule chunk synthesis
            4. Join segments in chunk order

        Returns:
            MP3 bytes; empty when cleaning left no text.

        Raises:
            ProxyError: Any failure; no partial audio is returned.
        """
        self._log_request(request, "buffered")
        with timeit("request_total") as total_t:
            try:
                job = self.prepare(request)
                if job.chunks:
                    await self._tokens.get_token(job.client_context)
                assembler = StreamAssembler()
                scheduler = self._scheduler(job)
                audio = await assembler.collect(scheduler.iter_segments(job.chunks))
            except ProxyError as e:
                fail(_LOG, "request_failed", code=e.code, error=e.message)
                metrics.record_request(mode="buffered", status="error", duration=-1)
                raise
            except Exception as e:
                fail(_LOG, "request_failed", error=str(e), error_type=type(e).__name__)
                metrics.record_request(mode="buffered", status="error", duration=-1)
                raise ProxyError(f"Unexpected error: {e}", ErrorCode.INTERNAL_ERROR,
                                 {"error_type": type(e).__name__})

        success(_LOG, "done", mode="buffered", chunks=len(job.chunks), batches=scheduler.stats.batches,
                bytes=len(audio), seconds=round(total_t.seconds, 3))
        metrics.record_request(mode="buffered", status="success", duration=total_t.seconds,
                               audio_bytes=len(audio))
        return audio

    # =========================================================================
    # Public API: synthesize_stream()
    # =========================================================================

    async def synthesize_stream(self, request: SpeechJobRequest) -> AsyncIterator[bytes]:
        """
        Prepare a job and return its live byte stream.

        Validation and the token handshake happen before this returns, so
        their errors can still become a regular error response. Errors
        during iteration abort the stream after the bytes already yielded.

        Raises:
            InvalidInputError: Validation failed.
            TokenAcquisitionError: No session token available.
        """
        self._log_request(request, "stream")
        try:
            job = self.prepare(request)
            if job.chunks:
                await self._tokens.get_token(job.client_context)
        except ProxyError as e:
            fail(_LOG, "request_failed", code=e.code, error=e.message)
            metrics.record_request(mode="stream", status="error", duration=-1)
            raise
        return self._stream(job)

    async def _stream(self, job: SpeechJob) -> AsyncIterator[bytes]:
        assembler = StreamAssembler()
        scheduler = self._scheduler(job)
        status = "error"
        t0 = time.perf_counter()
        try:
            async with aclosing(assembler.stream(scheduler.iter_segments(job.chunks))) as body:
                async for data in body:
                    yield data
            status = "success"
        except (asyncio.CancelledError, GeneratorExit):
            status = "cancelled"
            raise
        except ProxyError as e:
            fail(_LOG, "stream_failed", code=e.code, error=e.message, bytes_sent=assembler.bytes_out)
            raise
        except Exception as e:
            fail(_LOG, "stream_failed", error=str(e), error_type=type(e).__name__,
                 bytes_sent=assembler.bytes_out)
            raise ProxyError(f"Unexpected error: {e}", ErrorCode.INTERNAL_ERROR,
                             {"error_type": type(e).__name__})
        finally:
            seconds = time.perf_counter() - t0
            metrics.record_request(mode="stream", status=status, duration=seconds,
                                   audio_bytes=assembler.bytes_out)
            if status == "success":
                success(_LOG, "done", mode="stream", chunks=len(job.chunks), batches=scheduler.stats.batches,
                        bytes=assembler.bytes_out, seconds=round(seconds, 3))
            elif status == "cancelled":
                warn(_LOG, "stream_closed_early", bytes_sent=assembler.bytes_out,
                     chunks_done=scheduler.stats.chunks_done, chunks=len(job.chunks))

    # =========================================================================
    # Health Check
    # =========================================================================

    def get_health_info(self) -> Dict[str, Any]:
        """
        Service status for the health endpoint.

        Returns a dictionary with:
            - Token cache state (has token, region, seconds to expiry)
            - Scheduler config (mode, concurrency)
            - Chunking config
            - Default voice
        """
        return {
            "ok": True,
            "token": self._tokens.state(),
            "scheduler": {
                "mode": self._config.scheduler.mode,
                "concurrency": self._config.scheduler.concurrency,
            },
            "chunking": {
                "max_chunk_len": self._config.chunking.max_chunk_len,
            },
            "default_voice": self._config.voices.default,
        }

    async def aclose(self) -> None:
        """Close the upstream HTTP client if this service created it."""
        if self._owns_http:
            await self._http.aclose()


# =============================================================================
# Global Service Singleton
# =============================================================================

_service: Optional[SpeechService] = None
_service_lock = threading.Lock()


def get_service(settings: Settings) -> SpeechService:
    """
    Get or create the global SpeechService instance.

    Thread-safe lazy singleton; the session token cache lives on it.
    """
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = SpeechService(settings)
    return _service


def set_service(service: Optional[SpeechService]) -> None:
    """Install a specific instance (tests inject one with a mock transport)."""
    global _service
    with _service_lock:
        _service = service


def reset_service() -> None:
    """
    Reset the global service instance.

    Used primarily for testing to ensure clean state between tests.
    """
    set_service(None)


def peek_service() -> Optional[SpeechService]:
    """The global instance if one was created, without creating it."""
    return _service
