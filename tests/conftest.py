"""Shared fixtures: a SpeechService wired to the scripted upstream."""
from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import pytest

from fakes import FakeUpstream


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def sleeps() -> List[float]:
    """Records backoff sleeps instead of sleeping."""
    return []


@pytest.fixture
def make_service(fake_upstream, sleeps):
    """Factory for a SpeechService wired to the fake upstream."""
    from edge_tts_proxy.core.config import Settings
    from edge_tts_proxy.services.speech_service import SpeechService

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    def _make(raw: Optional[Dict[str, Any]] = None, clock=time.time):
        return SpeechService(Settings(raw=raw or {}), http=fake_upstream.client(), clock=clock, sleep=fake_sleep)

    return _make
