"""
edge-tts-proxy Services Layer.

This package provides the business logic layer that orchestrates speech
jobs. It sits between the API layer and the pipeline components in `tts/`.

Components:
    - speech_service.py: SpeechService class (job orchestrator)
    - validators.py: Input validation functions

The SpeechService class handles:
    - Request validation and normalization
    - Session token reuse across jobs
    - Ordered fan-out and reassembly
    - Error handling and reporting
"""
from .speech_service import (
    ErrorCode,
    InvalidInputError,
    ProxyError,
    SpeechJob,
    SpeechJobRequest,
    SpeechService,
    TokenAcquisitionError,
    UpstreamSynthesisError,
)

__all__ = [
    "SpeechService",
    "SpeechJobRequest",
    "SpeechJob",
    "ProxyError",
    "InvalidInputError",
    "TokenAcquisitionError",
    "UpstreamSynthesisError",
    "ErrorCode",
]
