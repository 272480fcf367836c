"""
FastAPI Dependency Injection Providers.

Dependencies are functions injected into route handlers with Depends().

Architecture:
    1. get_settings() - Loads and caches application configuration
    2. get_speech_service() - Creates/returns the singleton SpeechService
    3. shutdown_service() - Closes the singleton's HTTP client on shutdown

    The service is a singleton because it owns the session token cache
    and the pooled upstream connections; a per-request instance would
    repeat the handshake on every request.

Usage in Route Handlers:
    from fastapi import Depends
    from edge_tts_proxy.api.dependencies import get_speech_service

    @router.post("/v1/audio/speech")
    async def speech(req: OpenAISpeechRequest, service: SpeechService = Depends(get_speech_service)):
        return await service.synthesize(...)

See Also:
    - core/config.py: Settings class and load_settings()
    - services/speech_service.py: SpeechService class and get_service()
    - main.py: Application lifespan
"""
from __future__ import annotations

from functools import lru_cache

from edge_tts_proxy.core.config import Settings, load_settings
from edge_tts_proxy.services.speech_service import SpeechService, get_service, peek_service, reset_service


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from EDGE_TTS_SETTINGS, defaulting to
    config/settings.yaml. A missing file means defaults plus environment
    overrides.
    """
    return load_settings()


def get_speech_service() -> SpeechService:
    """Get the singleton SpeechService instance."""
    return get_service(get_settings())


async def shutdown_service() -> None:
    """Close and drop the singleton, if one was created."""
    service = peek_service()
    if service is not None:
        await service.aclose()
    reset_service()
