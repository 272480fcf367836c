"""
Session Token Manager.

Every synthesis call needs a short-lived bearer token plus the region code
of the endpoint it is valid for. Both come from a signed handshake against
the translator app endpoint, presenting ourselves as the Android client.

Token Lifecycle:
    Valid       now < expires_at - refresh_margin: cached token returned,
                no network call
    Refreshing  missing or near expiry: one coroutine performs the
                handshake while the others wait on the lock, then reuse
                its result
    Exhausted   every attempt failed: a previously cached token (even an
                expired one) is returned with a warning, otherwise
                TokenAcquisitionError is raised

Handshake Signature:
    X-MT-Signature = "{app_id}::{b64 hmac}::{date}::{trace_id}" where the
    HMAC-SHA256 (key: base64-decoded signing key) covers
    lower("{app_id}{encodeURIComponent(host+path+query)}{date}{trace_id}")
    and date is the RFC 1123 form, e.g. "Mon, 19 Oct 2026 14:30:05 GMT".

Example:
    >>> manager = SessionTokenManager(UpstreamConfig(), TokenConfig())
    >>> token = await manager.get_token("tts.example.com")
    >>> token.region
    'southeastasia'
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from email.utils import formatdate
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

import httpx

from edge_tts_proxy.core.config import TokenConfig, UpstreamConfig
from edge_tts_proxy.core.errors import TokenAcquisitionError
from edge_tts_proxy.core.logging import debug, fail, get_logger, info, success, warn
from edge_tts_proxy.core.metrics import metrics

_LOG = get_logger("edge-tts-proxy.token")

# Used when no hostname is available to derive an installation id from
FALLBACK_CLIENT_ID = "0f04d16a175c411e"

# Characters encodeURIComponent leaves alone besides alphanumerics
_URI_COMPONENT_SAFE = "-_.!~*'()"


@dataclass(frozen=True)
class SessionToken:
    """
    Upstream authorization credential.

    Attributes:
        region: Region code of the synthesis endpoint (e.g. "eastasia").
        bearer: Token sent verbatim as the Authorization header.
        expires_at: Expiry as epoch seconds, from the JWT `exp` claim.
    """
    region: str
    bearer: str
    expires_at: float

    def seconds_to_expiry(self, now: float) -> float:
        return self.expires_at - now

    def is_fresh(self, now: float, margin_s: float) -> bool:
        return now < self.expires_at - margin_s


# =============================================================================
# Handshake Helpers
# =============================================================================

def encode_uri_component(value: str) -> str:
    """Percent-encode like JavaScript's encodeURIComponent."""
    return quote(value, safe=_URI_COMPONENT_SAFE)


def http_date(timestamp: Optional[float] = None) -> str:
    """RFC 1123 date in GMT."""
    return formatdate(timeval=timestamp, usegmt=True)


def new_trace_id() -> str:
    """Random 32-char hex id (a UUID4 without dashes)."""
    return uuid.uuid4().hex


def sign_request(url: str, app_id: str, signing_key: str, trace_id: str, date: str) -> str:
    """
    Build the X-MT-Signature header value for a handshake request.

    Args:
        url: Full handshake URL; the scheme is dropped before signing.
        app_id: Client application id, also the signature prefix.
        signing_key: Base64-encoded HMAC key.
        trace_id: Per-call random id.
        date: RFC 1123 timestamp.

    Returns:
        "{app_id}::{signature}::{date}::{trace_id}"
    """
    target = url.split("://", 1)[1] if "://" in url else url
    message = f"{app_id}{encode_uri_component(target)}{date}{trace_id}".lower()
    digest = hmac.new(base64.b64decode(signing_key), message.encode("utf-8"), hashlib.sha256).digest()
    signature = base64.b64encode(digest).decode("ascii")
    return f"{app_id}::{signature}::{date}::{trace_id}"


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def client_id_from_host(host: Optional[str]) -> str:
    """
    Derive a stable client installation id from a hostname.

    Each deployment presents its own id upstream instead of all of them
    sharing one. Uses the 31-multiplier string hash kept in signed 32-bit
    range per character; the id is the hex of |h| followed by the hex of
    |h * 31|, each zero-padded to 8 digits.

    Example:
        >>> client_id_from_host("")
        '0f04d16a175c411e'
    """
    if not host:
        return FALLBACK_CLIENT_ID
    h = 0
    for ch in host:
        h = _to_int32((h << 5) - h + ord(ch))
    return format(abs(h), "x").zfill(8) + format(abs(h * 31), "x").zfill(8)


def parse_jwt_expiry(token: str) -> float:
    """
    Read the `exp` claim from a JWT without verifying it.

    Raises:
        ValueError: If the token is not a JWT or carries no numeric `exp`.
    """
    parts = token.split(".")
    if len(parts) < 2:
        raise ValueError("bearer token is not a JWT")
    payload = parts[1]
    raw = base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4))
    claims = json.loads(raw)
    if not isinstance(claims, dict) or not isinstance(claims.get("exp"), (int, float)):
        raise ValueError("JWT payload has no numeric exp claim")
    return float(claims["exp"])


# =============================================================================
# Token Manager
# =============================================================================

class SessionTokenManager:
    """
    Owns the process-wide session token.

    Refreshes are single-flight: the first caller that finds the cache
    stale performs the handshake under an asyncio.Lock. Callers that queued
    behind it reuse that refresh's outcome, whether a new token, the stale
    token or the same TokenAcquisitionError. After a stale fallback the old
    token is served without handshakes until token.failure_cooldown_s passes.

    Args:
        upstream: Endpoint and client identity settings.
        token: Refresh margin and retry policy.
        http: Shared AsyncClient. One is created (and closed by aclose())
            when omitted.
        clock: Epoch-seconds clock, injectable for tests.
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        upstream: UpstreamConfig,
        token: TokenConfig,
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._upstream = upstream
        self._config = token
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=upstream.request_timeout_s)
        self._clock = clock
        self._sleep = sleep

        self._token: Optional[SessionToken] = None
        self._lock = asyncio.Lock()
        self._handshakes = 0
        self._last_error: Optional[str] = None

        # Bumped after every refresh so queued callers can tell one finished
        self._generation = 0
        self._last_failure: Optional[TokenAcquisitionError] = None
        self._stale_until = 0.0

    @property
    def cached(self) -> Optional[SessionToken]:
        return self._token

    @property
    def handshakes(self) -> int:
        """Number of handshake requests sent, including failed attempts."""
        return self._handshakes

    def _is_fresh(self, token: Optional[SessionToken]) -> bool:
        return token is not None and token.is_fresh(self._clock(), self._config.refresh_margin_s)

    async def get_token(self, client_context: Optional[str] = None) -> SessionToken:
        """
        Return a usable token, refreshing it first if needed.

        Args:
            client_context: Hostname the client installation id is derived from.

        Raises:
            TokenAcquisitionError: All attempts failed and nothing is cached.
        """
        if self._is_fresh(self._token) or self._in_cooldown():
            return self._token  # type: ignore[return-value]

        generation = self._generation
        async with self._lock:
            if generation != self._generation:
                # A refresh finished while this caller waited on the lock
                if self._last_failure is not None:
                    raise TokenAcquisitionError(self._last_failure.message, dict(self._last_failure.details))
                debug(_LOG, "token_refresh_coalesced", region=self._token.region)  # type: ignore[union-attr]
                return self._token  # type: ignore[return-value]
            if self._is_fresh(self._token) or self._in_cooldown():
                return self._token  # type: ignore[return-value]
            try:
                return await self._refresh(client_context)
            finally:
                self._generation += 1

    def _in_cooldown(self) -> bool:
        return self._token is not None and self._clock() < self._stale_until

    async def _refresh(self, client_context: Optional[str]) -> SessionToken:
        max_attempts = self._config.max_attempts
        client_id = client_id_from_host(client_context)
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                token = await self._handshake(client_id)
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                self._last_error = str(e)
                warn(_LOG, "token_attempt_failed", attempt=attempt, max_attempts=max_attempts,
                     error=str(e), error_type=type(e).__name__)
                if attempt < max_attempts:
                    await self._sleep(attempt * self._config.backoff_ms / 1000.0)
                continue

            self._token = token
            self._last_error = None
            self._last_failure = None
            self._stale_until = 0.0
            metrics.record_token_refresh("success")
            success(_LOG, "token_refreshed", region=token.region, attempt=attempt,
                    expires_in_s=int(token.seconds_to_expiry(self._clock())))
            return token

        if self._token is not None:
            self._last_failure = None
            self._stale_until = self._clock() + self._config.failure_cooldown_s
            metrics.record_token_refresh("stale_fallback")
            warn(_LOG, "token_stale_fallback", region=self._token.region,
                 seconds_to_expiry=int(self._token.seconds_to_expiry(self._clock())))
            return self._token

        metrics.record_token_refresh("failed")
        fail(_LOG, "token_acquisition_failed", attempts=max_attempts, error=str(last_error))
        self._last_failure = TokenAcquisitionError(
            f"Failed to get endpoint after {max_attempts} attempts: {last_error}",
            {"attempts": max_attempts},
        )
        raise self._last_failure

    async def _handshake(self, client_id: str) -> SessionToken:
        """One signed handshake request; raises on any failure."""
        up = self._upstream
        headers = {
            "Accept-Language": up.accept_language,
            "X-ClientVersion": up.client_version,
            "X-UserId": client_id,
            "X-HomeGeographicRegion": up.home_region,
            "X-ClientTraceId": new_trace_id(),
            "X-MT-Signature": sign_request(
                up.token_url, up.app_id, up.signing_key, new_trace_id(), http_date(self._clock())
            ),
            "User-Agent": up.user_agent,
            "Content-Type": "application/json; charset=utf-8",
            "Accept-Encoding": "gzip",
        }

        self._handshakes += 1
        info(_LOG, "token_handshake", client_id=client_id)
        response = await self._http.post(up.token_url, headers=headers, content=b"")
        response.raise_for_status()

        data = response.json()
        if not isinstance(data, dict) or not data.get("t") or not data.get("r"):
            raise ValueError("handshake response has no region or token")

        bearer = str(data["t"])
        return SessionToken(region=str(data["r"]), bearer=bearer, expires_at=parse_jwt_expiry(bearer))

    def state(self) -> Dict[str, Any]:
        """Token cache state for the health endpoint."""
        token = self._token
        now = self._clock()
        return {
            "has_token": token is not None,
            "region": token.region if token else None,
            "seconds_to_expiry": int(token.seconds_to_expiry(now)) if token else None,
            "fresh": self._is_fresh(token),
            "handshakes": self._handshakes,
            "last_error": self._last_error,
        }

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
