"""
Stage Timing.

`timeit` is a context manager around perf_counter() used to time pipeline
stages (normalize, chunk, schedule) for verbose logs.

Example:
    with timeit("normalize") as t:
        text = normalize(raw, cleaning)
    verbose(_LOG, "stage", event="normalize", seconds=round(t.seconds, 4))
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    """Duration of one named stage."""
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """
    Time the body of a `with` block.

    `timing` is set on exit, also when the block raises. `seconds` is a
    shortcut that reads -1.0 before the block has finished.
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=perf_counter() - self._t0, meta=self.meta)

    @property
    def seconds(self) -> float:
        return self.timing.seconds if self.timing else -1.0
