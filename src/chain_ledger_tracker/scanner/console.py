"""Single-line TTY progress for long block scans (no external deps).

An initial scan can walk millions of blocks. Output stays on one
in-place line, renders at most a few times per second, and is disabled
entirely when stderr is not a terminal.
"""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from typing import TextIO


def format_rate(blocks_per_s: float) -> str:
    if blocks_per_s <= 0:
        return "0 blk/s"
    if blocks_per_s >= 1_000:
        return f"{blocks_per_s/1_000:.1f}k blk/s"
    return f"{blocks_per_s:.1f} blk/s"


def format_eta(seconds: float | None) -> str:
    if seconds is None or seconds < 0 or seconds == float("inf"):
        return "ETA ?"
    m, s = divmod(int(seconds), 60)
    h, m = divmod(m, 60)
    return f"ETA {h:d}:{m:02d}:{s:02d}" if h else f"ETA {m:d}:{s:02d}"


def _bar(fraction: float, width: int = 24) -> str:
    filled = round(max(0.0, min(1.0, fraction)) * width)
    return f"[{'=' * filled:<{width}}]"


@dataclass
class ProgressLine:
    """Renders `scan [====    ]  50.0% block=... txs=... deferred=...` in place."""

    enabled: bool
    min_interval_s: float = 0.25
    stream: TextIO = field(default_factory=lambda: sys.stderr)

    def __post_init__(self) -> None:
        self.begin()

    def begin(self) -> None:
        """Reset timing for a new scan."""
        self._start = time.monotonic()
        self._last_render = 0.0
        self._width = 0

    def _emit(self, text: str, end: str = "") -> None:
        # Pad over whatever the previous render left behind.
        self.stream.write("\r" + text.ljust(self._width) + end)
        self.stream.flush()
        self._width = 0 if end else len(text)

    def update(self, *, scanned: int, total: int, found: int, block: int, deferred: int = 0) -> None:
        if not self.enabled:
            return
        now = time.monotonic()
        if now - self._last_render < self.min_interval_s:
            return
        self._last_render = now

        rate = scanned / max(1e-6, now - self._start)
        frac = scanned / max(1, total)
        eta = (total - scanned) / rate if rate > 0 else None
        text = f"scan {_bar(frac)} {frac*100:5.1f}% block={block:,} txs={found:,}"
        if deferred:
            text += f" deferred={deferred:,}"
        self._emit(f"{text} {format_rate(rate)} {format_eta(eta)}")

    def close(self, *, final_line: str | None = None) -> None:
        if self.enabled:
            self._emit(final_line or "", end="\n")


def default_progress_enabled() -> bool:
    return bool(getattr(sys.stderr, "isatty", lambda: False)())
