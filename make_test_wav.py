#!/usr/bin/env python3
"""
make_test_wav.py

Writes two 16-bit mono 44.1 kHz test files for trying out retune:
- test_audio.wav:           C4..C5 scale, 3 harmonics, 10 s
- test_audio_off_pitch.wav: same scale alternately 25 cents sharp/flat,
                            4 harmonics + vibrato, 8 s (the correction is
                            easy to hear on this one)
"""

from __future__ import annotations

import argparse
import os
from typing import List, Optional, Sequence

import numpy as np
import soundfile as sf

SCALE_HZ = (261.63, 293.66, 329.63, 349.23, 392.00, 440.00, 493.88, 523.25)


def _envelope(n: int, ramp: float) -> np.ndarray:
    pos = np.arange(n, dtype=np.float64) / max(1, n)
    env = np.ones(n, dtype=np.float64)
    env = np.where(pos < ramp, pos / ramp, env)
    env = np.where(pos > 1.0 - ramp, (1.0 - pos) / ramp, env)
    return env


def render_notes(
    freqs: Sequence[float],
    duration_s: float,
    sr: int,
    harmonics: Sequence[float],
    ramp: float,
    gain: float,
    vibrato_depth: float = 0.0,
    vibrato_hz: float = 4.5,
) -> np.ndarray:
    total = int(duration_s * sr)
    per_note = int(duration_s / len(freqs) * sr)
    y = np.zeros(total, dtype=np.float64)
    for i, f in enumerate(freqs):
        s0 = i * per_note
        s1 = min(total, (i + 1) * per_note)
        t = np.arange(s0, s1, dtype=np.float64) / sr
        tone = sum(a * np.sin(2.0 * np.pi * f * (h + 1) * t) for h, a in enumerate(harmonics))
        if vibrato_depth > 0.0:
            tone = tone * (1.0 + vibrato_depth * np.sin(2.0 * np.pi * vibrato_hz * t))
        y[s0:s1] = tone * _envelope(s1 - s0, ramp) * gain
    return y


def make_in_tune(sr: int = 44100) -> np.ndarray:
    return render_notes(SCALE_HZ, 10.0, sr, harmonics=(1.0, 0.3, 0.15), ramp=0.1, gain=0.7)


def make_off_pitch(sr: int = 44100, cents: float = 25.0) -> np.ndarray:
    freqs = [f * 2.0 ** ((cents if i % 2 == 0 else -cents) / 1200.0) for i, f in enumerate(SCALE_HZ)]
    return render_notes(freqs, 8.0, sr, harmonics=(1.0, 0.4, 0.2, 0.1), ramp=0.15, gain=0.6, vibrato_depth=0.02)


def _write16(path: str, y: np.ndarray, sr: int) -> None:
    # same truncation toward zero as a plain int cast
    codes = np.trunc(np.clip(y, -1.0, 1.0) * 32767.0).astype(np.int16)
    sf.write(path, codes, sr, subtype="PCM_16")
    print(f"Wrote {path} ({codes.size / sr:.1f}s, {sr}Hz)")


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Generate WAV files for trying out retune.")
    ap.add_argument("--outdir", default=".")
    ap.add_argument("--sr", type=int, default=44100)
    args = ap.parse_args(argv)

    os.makedirs(args.outdir, exist_ok=True)
    _write16(os.path.join(args.outdir, "test_audio.wav"), make_in_tune(args.sr), args.sr)
    _write16(os.path.join(args.outdir, "test_audio_off_pitch.wav"), make_off_pitch(args.sr), args.sr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
