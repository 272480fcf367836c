"""
Scripted stand-ins for the upstream translator endpoints.

FakeUpstream answers the token handshake with a JWT-shaped bearer and
answers synthesis calls by echoing the chunk text back as the "audio", so
the joined output of a job is the joined text of its chunks in the order
they were emitted.
"""
from __future__ import annotations

import asyncio
import base64
import json
import re
import time
from typing import Any, Dict, List, Optional, Set

import httpx

_PROSODY_RE = re.compile(r"<prosody[^>]*>(.*)</prosody>", re.S)


def make_jwt(exp: float) -> str:
    """Unsigned JWT whose payload carries only `exp`."""
    def segment(obj: Dict[str, Any]) -> str:
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()

    return f"{segment({'alg': 'HS256', 'typ': 'JWT'})}.{segment({'exp': exp})}.signature"


class Clock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 1_800_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeUpstream:
    """
    Scripted token and synthesis endpoints.

    Attributes:
        token_failures: Number of upcoming handshakes to answer with 500.
        fail_texts: Chunk texts whose synthesis is answered with 500.
        delays: Per-text synthesis delay in seconds.
    """

    def __init__(self, expires_at: Optional[float] = None, region: str = "eastasia"):
        self.expires_at = expires_at if expires_at is not None else time.time() + 600
        self.region = region
        self.token_failures = 0
        self.fail_texts: Set[str] = set()
        self.delays: Dict[str, float] = {}
        self.token_requests: List[httpx.Request] = []
        self.synth_requests: List[httpx.Request] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/apps/endpoint":
            return await self._token(request)
        return await self._synthesize(request)

    async def _token(self, request: httpx.Request) -> httpx.Response:
        self.token_requests.append(request)
        if self.token_failures > 0:
            self.token_failures -= 1
            return httpx.Response(500, text="handshake unavailable")
        return httpx.Response(200, json={"r": self.region, "t": make_jwt(self.expires_at)})

    async def _synthesize(self, request: httpx.Request) -> httpx.Response:
        self.synth_requests.append(request)
        markup = request.content.decode("utf-8")
        m = _PROSODY_RE.search(markup)
        text = m.group(1) if m else ""

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(text, 0))
        finally:
            self.in_flight -= 1

        if text in self.fail_texts:
            return httpx.Response(500, text="synthesis backend error")
        return httpx.Response(200, content=text.encode("utf-8"), headers={"Content-Type": "audio/mpeg"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


