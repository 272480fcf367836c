"""
Command-Line Interface for edge-tts-proxy.

Runs the speech pipeline without the HTTP server, or starts the server.

Usage Examples:
    # Synthesize to speech.mp3
    edge-tts-proxy "你好，世界。"

    # Explicit text, voice alias and output path
    edge-tts-proxy --text "Hello there." --voice nova --out hello.mp3

    # A whole document, written to disk as it streams in
    edge-tts-proxy --file chapter.md --stream --out chapter.mp3

    # Dry-run mode (normalize and chunk only, no network)
    edge-tts-proxy --file chapter.md --dry-run --json

    # Start the HTTP server
    edge-tts-proxy --serve --host 0.0.0.0 --port 8000

Environment Variables:
    EDGE_TTS_SETTINGS: Settings file (default config/settings.yaml)
    EDGE_TTS_CONCURRENCY: Scheduler width
    EDGE_TTS_MAX_CHUNK_LEN: Chunk size bound
    EDGE_TTS_LOG_LEVEL: Log level (1-4 or name)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import math
import socket
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from edge_tts_proxy.core.config import load_settings
from edge_tts_proxy.core.errors import ProxyError
from edge_tts_proxy.core.logging import configure_logging, fail, get_logger, info, set_request_id


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: Optional list of arguments (defaults to sys.argv).

    Returns:
        Parsed argument namespace with all CLI options.
    """
    parser = argparse.ArgumentParser(description="edge-tts-proxy CLI (speech synthesis without the server)")

    # Input options (text vs file)
    parser.add_argument("text_pos", nargs="?", help="Text to synthesize (positional)")
    parser.add_argument("--text", help="Text to synthesize")
    parser.add_argument("--file", help="Read the text to synthesize from a file")

    # Output options
    parser.add_argument("--out", default="speech.mp3", help="Output MP3 path (default: speech.mp3)")

    # Voice options
    parser.add_argument("--voice", help="Upstream voice name or OpenAI alias")
    parser.add_argument("--speed", type=float, default=1.0, help="Speed multiplier (1.0 = unchanged)")
    parser.add_argument("--pitch", type=float, default=1.0, help="Pitch multiplier (1.0 = unchanged)")
    parser.add_argument("--style", default="general", help="Speaking style")
    parser.add_argument("--role", default="", help="Role-play persona")
    parser.add_argument("--style-degree", type=float, default=1.0, help="Style intensity")

    # Pipeline overrides
    parser.add_argument("--concurrency", type=int, help="Max in-flight upstream calls")
    parser.add_argument("--max-chunk-len", type=int, help="Max characters per chunk")
    parser.add_argument("--stream", action="store_true", help="Write audio to disk as it arrives")

    # Cleaning switches
    parser.add_argument("--no-markdown", action="store_true", help="Keep markdown syntax")
    parser.add_argument("--no-emoji", action="store_true", help="Keep emoji")
    parser.add_argument("--no-urls", action="store_true", help="Keep URLs")
    parser.add_argument("--no-citations", action="store_true", help="Keep [n] citation markers")
    parser.add_argument("--remove-line-breaks", action="store_true", help="Delete line breaks")
    parser.add_argument("--keywords", help="Comma-separated literals to delete")

    # Execution modes
    parser.add_argument("--dry-run", action="store_true",
                        help="Normalize and chunk without synthesis")
    parser.add_argument("--json", action="store_true",
                        help="Print JSON summary")

    # Server mode
    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument("--host", default="127.0.0.1", help="Server bind address")
    parser.add_argument("--port", type=int, default=8000, help="Server port")

    return parser.parse_args(argv)


def _load_text(args: argparse.Namespace) -> str:
    """
    Load the input text from arguments or file.

    Raises:
        SystemExit: If no input provided or conflicting options used.
    """
    text = args.text or args.text_pos

    if args.file:
        if text:
            raise SystemExit("Use --file without --text or positional text.")
        content = Path(args.file).read_text(encoding="utf-8")
        if not content.strip():
            raise SystemExit("Input file is empty.")
        return content

    if not text:
        raise SystemExit("Provide --text, --file or a positional text.")
    return text


def _cleaning_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map the cleaning switches onto CleaningConfig field overrides."""
    overrides: Dict[str, Any] = {}
    if args.no_markdown:
        overrides["remove_markdown"] = False
    if args.no_emoji:
        overrides["remove_emoji"] = False
    if args.no_urls:
        overrides["remove_urls"] = False
    if args.no_citations:
        overrides["remove_citation_numbers"] = False
    if args.remove_line_breaks:
        overrides["remove_line_breaks"] = True
    if args.keywords is not None:
        overrides["custom_keywords"] = args.keywords
    return overrides


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("edge_tts_proxy.main:app", host=args.host, port=args.port)
    return 0


async def _synthesize(service, job, out_path: Path, stream: bool) -> int:
    """Run one job and write the audio; returns bytes written."""
    try:
        if not stream:
            audio = await service.synthesize(job)
            out_path.write_bytes(audio)
            return len(audio)

        written = 0
        body = await service.synthesize_stream(job)
        with out_path.open("wb") as f:
            async for data in body:
                f.write(data)
                written += len(data)
        return written
    finally:
        await service.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Orchestrates the CLI workflow:
        1. Parse arguments
        2. Start the server (--serve) and stop there
        3. Load settings and build the job
        4. Dry-run: summarize normalization and chunking
        5. Otherwise synthesize and write the MP3

    Returns:
        Exit code (0 for success, 1 for a failed job).
    """
    args = _parse_args(argv)

    if args.serve:
        return _serve(args)

    configure_logging()
    log = get_logger("edge-tts-proxy.cli")
    set_request_id(str(uuid4())[:12])

    from edge_tts_proxy.api.openai_compat import percent_change, resolve_voice
    from edge_tts_proxy.services.speech_service import SpeechJobRequest, SpeechService

    text = _load_text(args)
    settings = load_settings()
    service = SpeechService(settings)
    voice = resolve_voice("tts-1", args.voice, service.config.voices)

    job = SpeechJobRequest(
        text=text,
        voice=voice,
        rate=percent_change(args.speed),
        pitch=percent_change(args.pitch),
        style=args.style,
        role=args.role,
        style_degree=args.style_degree,
        cleaning=_cleaning_overrides(args),
        concurrency=args.concurrency,
        max_chunk_len=args.max_chunk_len,
        stream=args.stream,
        client_context=socket.gethostname(),
    )

    # Handle dry-run mode: analyze without synthesis
    if args.dry_run:
        try:
            prepared = service.prepare(job)
        except ProxyError as e:
            payload: Dict[str, Any] = {"ok": False, "error": e.code, "message": e.message}
            print(json.dumps(payload, ensure_ascii=False) if args.json else payload)
            return 1
        finally:
            # Nothing goes upstream; release the unused HTTP client
            asyncio.run(service.aclose())
        batches = math.ceil(len(prepared.chunks) / prepared.concurrency) if prepared.chunks else 0
        payload = {
            "ok": True,
            "dry_run": True,
            "text_len": len(text),
            "normalized_len": len(prepared.normalized),
            "chunks": len(prepared.chunks),
            "chunk_lengths": [len(c.content) for c in prepared.chunks],
            "batches": batches,
            "mode": service.config.scheduler.mode,
            "concurrency": prepared.concurrency,
            "voice": prepared.params.voice,
        }
        if args.json:
            print(json.dumps(payload, ensure_ascii=False))
        else:
            info(log, "dry_run", chunks=payload["chunks"], batches=batches, voice=voice)
            print(payload)
        print("DRY_RUN_OK")
        return 0

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    info(log, "synth_start", chars=len(text), voice=voice, out=str(out_path), stream=args.stream)

    try:
        written = asyncio.run(_synthesize(service, job, out_path, args.stream))
    except ProxyError as e:
        fail(log, "synth_failed", code=e.code, error=e.message)
        payload = {"ok": False, "error": e.code, "message": e.message}
        print(json.dumps(payload, ensure_ascii=False) if args.json else payload)
        return 1

    payload = {"ok": True, "dry_run": False, "out": str(out_path), "bytes": written, "voice": voice}
    if args.json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        print(payload)
    print("CLI_OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
