"""
retune_autotune.py

Default correction engine: per-frame pitch snapping + formant shift.

Per frame (frame_size N, hop H):
- Hann-window the frame, estimate f0 by normalized autocorrelation
- pick a target note (snap to the key's scale, or a fixed note)
- move the applied shift toward strength * (target - f0) at transition_speed
- phase-vocoder bin remap by the shift ratio, keeping the spectral envelope
  in place (warped only by the formant setting)
- synthesis window + division by the overlap gain sum(win^2)/H, so the
  overlap-added frames come back at unity gain

All cross-frame memory (phases, smoothed shift) lives in AutotuneState, so
frames must be fed in time order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.ndimage import uniform_filter1d
from scipy.signal import get_window

from retune_engine import Engine, EngineConfig, MusicalSettings
from retune_errors import EngineError


MAJOR_STEPS = (0, 2, 4, 5, 7, 9, 11)
MINOR_STEPS = (0, 2, 3, 5, 7, 8, 10)

# Tonic pitch class for each entry of KEY_NAMES (12 majors, then 12 minors)
KEY_ROOTS = (0, 7, 2, 9, 4, 11, 6, 1, 5, 10, 3, 8,
             9, 4, 11, 6, 1, 8, 3, 10, 2, 7, 0, 5)

MAX_SHIFT_SEMITONES = 24.0


# -----------------------------
# Pitch helpers
# -----------------------------
def hz_to_midi(f: float) -> float:
    return 69.0 + 12.0 * math.log2(float(f) / 440.0)


def midi_to_hz(m: float) -> float:
    return 440.0 * 2.0 ** ((float(m) - 69.0) / 12.0)


def scale_pitch_classes(key: int) -> Sequence[int]:
    root = KEY_ROOTS[int(key)]
    steps = MAJOR_STEPS if int(key) < 12 else MINOR_STEPS
    return sorted((root + s) % 12 for s in steps)


def snap_to_scale(midi: float, key: int) -> int:
    """Nearest MIDI note whose pitch class belongs to the key's scale."""
    octave = int(math.floor(midi / 12.0))
    pcs = scale_pitch_classes(key)
    candidates = [12 * o + pc for o in (octave - 1, octave, octave + 1) for pc in pcs]
    return min(candidates, key=lambda m: abs(m - midi))


def target_midi(midi: float, settings: MusicalSettings) -> float:
    if settings.note == 0:
        return float(snap_to_scale(midi, settings.key))
    # fixed note in the reference octave (octave 2 -> C4 = 60)
    return float(12 * (settings.octave + 3) + (settings.note - 1))


def detect_pitch(xw: np.ndarray, sr: float, min_hz: float, max_hz: float, threshold: float) -> Optional[float]:
    """
    f0 of an already-windowed frame, or None when unvoiced/silent.
    Autocorrelation via FFT; the search starts after the first negative lobe
    so the zero-lag peak can't win.
    """
    n = int(xw.size)
    energy = float(np.dot(xw, xw))
    if energy < 1e-10:
        return None

    spec = np.fft.rfft(xw, n=2 * n)
    ac = np.fft.irfft(np.abs(spec) ** 2)[:n]
    ac = ac / max(float(ac[0]), 1e-12)

    lo = max(1, int(sr / max_hz))
    hi = min(n - 1, int(sr / min_hz))
    if hi <= lo + 1:
        return None

    neg = np.where(ac[lo:hi] < 0.0)[0]
    if neg.size == 0:
        return None
    start = lo + int(neg[0])
    if start >= hi:
        return None

    k = start + int(np.argmax(ac[start:hi]))
    if ac[k] < threshold:
        return None

    lag = float(k)
    if 0 < k < n - 1:
        a, b, c = float(ac[k - 1]), float(ac[k]), float(ac[k + 1])
        denom = a - 2.0 * b + c
        if abs(denom) > 1e-12:
            lag += 0.5 * (a - c) / denom
    if lag <= 0:
        return None
    return float(sr) / lag


# -----------------------------
# Engine
# -----------------------------
@dataclass
class AutotuneState:
    config: EngineConfig
    window: np.ndarray
    ola_gain: float
    last_phase: np.ndarray
    sum_phase: np.ndarray
    shift: float = 0.0
    last_f0: Optional[float] = None
    frames: int = 0


class AutotuneEngine(Engine):
    name = "autotune"

    def __init__(self, envelope_bins: Optional[int] = None):
        self.envelope_bins = envelope_bins

    def create_state(self, config: EngineConfig) -> AutotuneState:
        config.validate()
        N = int(config.frame_size)
        win = get_window("hann", N, fftbins=True).astype(np.float64)
        nb = N // 2 + 1
        return AutotuneState(
            config=config,
            window=win,
            ola_gain=float(np.sum(win ** 2) / config.hop_size),
            last_phase=np.zeros(nb, dtype=np.float64),
            sum_phase=np.zeros(nb, dtype=np.float64),
        )

    def process(self, frame: np.ndarray, state: AutotuneState, settings: MusicalSettings) -> np.ndarray:
        cfg = state.config
        N = int(cfg.frame_size)
        H = int(cfg.hop_size)
        x = np.asarray(frame, dtype=np.float64)
        if x.shape != (N,):
            raise EngineError(f"expected a frame of {N} samples, got {x.shape}")
        if not np.all(np.isfinite(x)):
            raise EngineError("non-finite input samples")

        win = state.window
        xw = x * win

        f0 = detect_pitch(xw, cfg.sample_rate, cfg.min_hz, cfg.max_hz, cfg.voicing_threshold)
        desired = 0.0
        if f0 is not None:
            m = hz_to_midi(f0)
            desired = float(cfg.correction_strength) * (target_midi(m, settings) - m)
            desired = float(np.clip(desired, -MAX_SHIFT_SEMITONES, MAX_SHIFT_SEMITONES))
        state.shift += float(cfg.transition_speed) * (desired - state.shift)
        state.last_f0 = f0

        X = np.fft.rfft(xw)
        mag = np.abs(X)
        phase = np.angle(X)

        nb = mag.size
        k = np.arange(nb, dtype=np.float64)
        expected = 2.0 * np.pi * H * k / N
        delta = phase - state.last_phase - expected
        delta = np.mod(delta + np.pi, 2.0 * np.pi) - np.pi
        true_bin = k + delta * N / (2.0 * np.pi * H)
        state.last_phase = phase

        ratio = 2.0 ** (state.shift / 12.0)
        formant_ratio = 2.0 ** (float(settings.formant) / 12.0)

        if abs(state.shift) < 1e-4 and settings.formant == 0:
            # identity: keep the analysis phase so a later shift continues smoothly
            state.sum_phase = phase.copy()
            Y = X
        else:
            size = self.envelope_bins or max(3, N // 64)
            env = uniform_filter1d(mag, size=int(size), mode="nearest") + 1e-12
            flat = mag / env

            dst = np.rint(k * ratio).astype(np.int64)
            ok = (dst >= 0) & (dst < nb)
            syn_flat = np.zeros(nb, dtype=np.float64)
            syn_bin = k.copy()
            np.add.at(syn_flat, dst[ok], flat[ok])
            syn_bin[dst[ok]] = true_bin[ok] * ratio

            env_out = np.interp(k / formant_ratio, k, env, right=0.0)
            syn_mag = syn_flat * env_out

            state.sum_phase = np.mod(state.sum_phase + 2.0 * np.pi * H * syn_bin / N, 2.0 * np.pi)
            Y = syn_mag * np.exp(1j * state.sum_phase)

        y = np.fft.irfft(Y, n=N) * win / state.ola_gain
        if not np.all(np.isfinite(y)):
            raise EngineError("non-finite output samples")
        state.frames += 1
        return y.astype(np.float32)
