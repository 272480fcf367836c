"""
FastAPI REST API Layer for edge-tts-proxy.

This package defines all HTTP endpoints:
    - openai_compat.py: OpenAI-compatible endpoints (/v1/audio/speech, /v1/models)
    - routes.py: Operational endpoints (/health, /metrics)
    - dependencies.py: FastAPI dependency injection
"""
