"""
Upstream Synthesis Client.

Turns one TextChunk into one AudioSegment: wraps the chunk text in a
speech markup document, POSTs it to the region-qualified synthesis
endpoint with the session bearer token, and returns the raw audio bytes.

Markup Structure (innermost first):
    <prosody rate="R%" pitch="P%">text</prosody>
    <mstts:express-as style=".." [styledegree=".."]>   only for a non-"general" style
    <mstts:express-as role="..">                       only when a role is set
    <voice name=".."> inside <speak xml:lang="..">

Only `&`, `<` and `>` in the chunk text are escaped; everything else is
sent verbatim.

There is no retry here. A failed chunk fails the job.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from xml.sax.saxutils import escape

import httpx

from edge_tts_proxy.core.config import UpstreamConfig
from edge_tts_proxy.core.errors import UpstreamSynthesisError
from edge_tts_proxy.core.logging import debug, get_logger, verbose, warn
from edge_tts_proxy.core.metrics import metrics
from edge_tts_proxy.tts.chunker import TextChunk
from edge_tts_proxy.tts.token_manager import SessionToken
from edge_tts_proxy.utils.timeit import timeit

_LOG = get_logger("edge-tts-proxy.client")

_SPEAK_OPEN = (
    '<speak xmlns="http://www.w3.org/2001/10/synthesis" '
    'xmlns:mstts="http://www.w3.org/2001/mstts" version="1.0" xml:lang="{lang}">'
)

# "zh-CN-XiaoxiaoNeural", "zh-CN-liaoning-XiaobeiNeural" -> "zh-CN"
_VOICE_LOCALE_RE = re.compile(r"^([a-z]{2,3}-[A-Z]{2})-")


@dataclass(frozen=True)
class VoiceParams:
    """
    Voice configuration shared by every chunk of a job.

    Attributes:
        voice: Upstream neural voice name.
        rate: Speaking rate change in percent (0 = unchanged).
        pitch: Pitch change in percent (0 = unchanged).
        style: Speaking style; "general" means no style element.
        role: Role-play persona, empty for none.
        style_degree: Style intensity; only emitted when not 1.0.
    """
    voice: str
    rate: int = 0
    pitch: int = 0
    style: str = "general"
    role: str = ""
    style_degree: float = 1.0


@dataclass(frozen=True)
class AudioSegment:
    """Synthesized audio for one chunk."""
    index: int
    data: bytes


def voice_locale(voice: str, default: str) -> str:
    """Locale prefix of a voice name, or `default` if it has none."""
    m = _VOICE_LOCALE_RE.match(voice)
    return m.group(1) if m else default


def _format_degree(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def build_markup(text: str, params: VoiceParams, lang: str) -> str:
    """
    Build the markup document for one chunk.

    Example:
        >>> doc = build_markup("a < b", VoiceParams(voice="zh-CN-XiaoxiaoNeural"), "zh-CN")
        >>> doc.endswith('<prosody rate="0%" pitch="0%">a &lt; b</prosody></voice></speak>')
        True
    """
    body = f'<prosody rate="{params.rate}%" pitch="{params.pitch}%">{escape(text)}</prosody>'

    if params.style and params.style != "general":
        degree = ""
        if float(params.style_degree) != 1.0:
            degree = f' styledegree="{_format_degree(params.style_degree)}"'
        body = f'<mstts:express-as style="{params.style}"{degree}>{body}</mstts:express-as>'

    if params.role:
        body = f'<mstts:express-as role="{params.role}">{body}</mstts:express-as>'

    return f'{_SPEAK_OPEN.format(lang=lang)}<voice name="{params.voice}">{body}</voice></speak>'


class SynthesisClient:
    """
    Calls the upstream synthesis endpoint, one chunk per request.

    Args:
        upstream: Endpoint template, output format and client identity.
        http: Shared AsyncClient. One is created (and closed by aclose())
            when omitted.
    """

    def __init__(self, upstream: UpstreamConfig, http: Optional[httpx.AsyncClient] = None):
        self._upstream = upstream
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=upstream.request_timeout_s)

    def endpoint(self, region: str) -> str:
        return self._upstream.synthesis_url.format(region=region)

    async def synthesize(self, chunk: TextChunk, params: VoiceParams, token: SessionToken) -> AudioSegment:
        """
        Synthesize one chunk.

        Raises:
            UpstreamSynthesisError: Non-2xx response (status and body
                attached) or transport failure (status None).
        """
        lang = voice_locale(params.voice, self._upstream.markup_language)
        markup = build_markup(chunk.content, params, lang)
        headers = {
            "Authorization": token.bearer,
            "Content-Type": "application/ssml+xml",
            "User-Agent": self._upstream.user_agent,
            "X-Microsoft-OutputFormat": self._upstream.output_format,
        }
        debug(_LOG, "synth_request", chunk=chunk.index, region=token.region, markup=markup)

        with timeit("synth_chunk") as t:
            try:
                response = await self._http.post(
                    self.endpoint(token.region),
                    headers=headers,
                    content=markup.encode("utf-8"),
                )
            except httpx.HTTPError as e:
                metrics.record_upstream_call("error")
                warn(_LOG, "synth_transport_error", chunk=chunk.index,
                     error=str(e), error_type=type(e).__name__)
                raise UpstreamSynthesisError(None, str(e) or type(e).__name__, {"chunk": chunk.index})

        metrics.record_upstream_call(response.status_code)
        if not response.is_success:
            warn(_LOG, "synth_rejected", chunk=chunk.index, status=response.status_code)
            raise UpstreamSynthesisError(response.status_code, response.text, {"chunk": chunk.index})

        metrics.record_chunk()
        verbose(_LOG, "synth_chunk_done", chunk=chunk.index, chars=len(chunk.content),
                bytes=len(response.content), seconds=round(t.seconds, 4))
        return AudioSegment(index=chunk.index, data=response.content)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
