"""
Log Formatters.

    JsonlFormatter: one JSON object per line for the rotating log file.
    ColoredConsoleFormatter: HH:MM:SS [ TAG ] (rid) message k=v 0.123s

Console coloring of extra fields:
    - status / upstream_status: green for 2xx, yellow for 4xx, red otherwise
    - attempt: yellow once a retry is happening
    - seconds: green < 0.5s, yellow < 2s, red beyond (upstream calls are slow)
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict

from . import colors
from .colors import Colors, get_tag_color


def _paint(text: str, color: str) -> str:
    if not colors.USE_COLORS:
        return text
    return f"{color}{text}{Colors.RESET}"


class JsonlFormatter(logging.Formatter):
    """
    Format records as JSON Lines.

    Output Format:
        {"ts": "...", "level": 2, "tag": "INFO", "message": "token_refreshed",
         "request_id": "abc123", "seconds": 0.41, "extra": {"region": "eastasia"}}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }

        event = getattr(record, "event", None)
        if event:
            payload["event"] = event

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Human-readable single-line console output."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        rid = getattr(record, "request_id", "-")

        parts = [
            _paint(ts, Colors.DIM),
            _paint(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if rid != "-":
            parts.append(_paint(f"({rid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(_paint(f"event={event}", Colors.BLUE))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            if seconds < 0.5:
                time_color = Colors.GREEN
            elif seconds < 2.0:
                time_color = Colors.YELLOW
            else:
                time_color = Colors.RED
            parts.append(_paint(f"{seconds:.3f}s", time_color))

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for key, value in extra_data.items():
                parts.append(_paint(f"{key}={value}", self._field_color(key, value)))

        return " ".join(parts)

    @staticmethod
    def _field_color(key: str, value: Any) -> str:
        if key in ("status", "upstream_status") and isinstance(value, int):
            if 200 <= value < 300:
                return Colors.GREEN
            if 400 <= value < 500:
                return Colors.YELLOW
            return Colors.RED
        if key == "attempt" and isinstance(value, int):
            return Colors.YELLOW if value > 1 else Colors.CYAN
        if key in ("region", "voice"):
            return Colors.MAGENTA
        return Colors.DIM
