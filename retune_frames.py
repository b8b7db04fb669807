"""
retune_frames.py

Frame scheduling + overlap-add reconstruction, and the global peak normalizer.

Schedule for n input samples, frame size N, hop H:
- full frames at 0, H, 2H, ... while offset + N <= n
- then at most one partial frame at the next offset (< n), zero-padded to N;
  only its first (n - offset) output samples are kept

Reconstruction sums every processed frame into the accumulator. Summing is
only unity-gain if the engine's windowing already compensates for overlap,
which is the engine's job; this module never averages.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Generator, Iterator, Optional, Tuple

import numpy as np

from retune_engine import EngineAdapter, check_sizes
from retune_errors import Cancelled, ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameEvent:
    index: int
    offset: int
    fraction: float
    partial: bool = False


def iter_offsets(n: int, frame_size: int, hop_size: int) -> Iterator[Tuple[int, int]]:
    """Yield (offset, valid_length) for every frame of the schedule."""
    check_sizes(frame_size, hop_size)
    offset = 0
    while offset + frame_size <= n:
        yield offset, frame_size
        offset += hop_size
    if offset < n:
        yield offset, n - offset


def expected_frames(n: int, hop_size: int) -> int:
    return max(1, math.ceil(n / hop_size))


class FrameScheduler:
    def __init__(self, frame_size: int, hop_size: int):
        check_sizes(frame_size, hop_size)
        self.frame_size = int(frame_size)
        self.hop_size = int(hop_size)

    def frames(self, x: np.ndarray, adapter: EngineAdapter, cancel=None) -> Generator[FrameEvent, None, np.ndarray]:
        """
        Generator form of run(): yields a FrameEvent after each frame and
        returns the (unnormalized) accumulator.
        """
        x = np.asarray(x, dtype=np.float32).reshape(-1)
        n = int(x.size)
        N = self.frame_size
        total = expected_frames(n, self.hop_size)

        # Arena sized once; `high` is the furthest index any frame wrote to.
        acc = np.zeros(n + N, dtype=np.float32)
        high = 0
        frame = np.zeros(N, dtype=np.float32)

        for i, (offset, valid) in enumerate(iter_offsets(n, N, self.hop_size)):
            if cancel is not None and cancel.is_set():
                raise Cancelled()

            partial = valid < N
            frame[:valid] = x[offset:offset + valid]
            if partial:
                frame[valid:] = 0.0

            out = adapter.process(frame)
            if out.shape[0] != N:
                raise ConfigError(f"Frame {i}: expected {N} samples back, got {out.shape[0]}")

            acc[offset:offset + valid] += out[:valid]
            high = max(high, offset + valid)

            yield FrameEvent(index=i, offset=offset, fraction=min(1.0, (i + 1) / total), partial=partial)

        logger.debug("Scheduled %d samples, high-water mark %d", n, high)
        return acc[:high]

    def run(
        self,
        x: np.ndarray,
        adapter: EngineAdapter,
        on_frame: Optional[Callable[[FrameEvent], None]] = None,
        cancel=None,
    ) -> np.ndarray:
        gen = self.frames(x, adapter, cancel=cancel)
        while True:
            try:
                ev = next(gen)
            except StopIteration as stop:
                return stop.value
            if on_frame is not None:
                on_frame(ev)


def normalize_peak(x: np.ndarray, headroom: float = 0.95) -> Tuple[np.ndarray, float]:
    """
    Global anti-clip pass: if |x| peaks above 1.0, scale everything by
    headroom / peak. Returns (y, scale).
    """
    x = np.asarray(x, dtype=np.float32)
    peak = float(np.max(np.abs(x))) if x.size else 0.0
    if peak > 1.0:
        scale = float(headroom) / peak
        return (x * np.float32(scale)).astype(np.float32), scale
    return x, 1.0
