"""
edge-tts-proxy: OpenAI-compatible front for the Edge neural TTS engine.

The service speaks the mobile-client dialect of the upstream speech engine
(signed handshake, short-lived session token, SSML synthesis calls) and
exposes it behind an OpenAI-style `/v1/audio/speech` endpoint.

Pipeline:
    raw text -> normalize -> chunk -> schedule (token + synthesis per chunk)
             -> assemble (buffered MP3 or live byte stream)

Key Features:
    - OpenAI-compatible endpoint (/v1/audio/speech, /v1/models)
    - Markdown / emoji / URL / citation cleaning before synthesis
    - Sentence-aware chunking with fixed-width fallback
    - Batched or pooled fan-out with strict output ordering
    - Single-flight session token refresh with stale-token fallback
    - Prometheus metrics and structured logging

Example Usage:
    >>> import asyncio
    >>> from edge_tts_proxy.core.config import Settings
    >>> from edge_tts_proxy.services import SpeechJobRequest, SpeechService
    >>>
    >>> service = SpeechService(Settings(raw={}))
    >>> audio = asyncio.run(service.synthesize(SpeechJobRequest(text="Hello")))
    >>> with open("hello.mp3", "wb") as f:
    ...     f.write(audio)
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
