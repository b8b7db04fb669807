"""
retune_pcm.py

PCM boundary of the pipeline:
- decode(): interleaved integer samples (16/24/32-bit, mono/stereo) -> mono float32 in [-1, 1]
- encode(): mono float32 -> interleaved integer samples in the input layout
- read_pcm()/write_pcm()/probe(): WAV container I/O via soundfile

The canonical domain is mono. Stereo input is downmixed by averaging L/R, and
stereo output carries the same processed signal in both channels.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import soundfile as sf

from retune_errors import AudioIOError, FormatError

logger = logging.getLogger(__name__)

SUPPORTED_BIT_DEPTHS = (16, 24, 32)
SUPPORTED_CHANNELS = (1, 2)

_SUBTYPE_BITS = {"PCM_16": 16, "PCM_24": 24, "PCM_32": 32}


@dataclass(frozen=True)
class WavSpec:
    sample_rate: int
    channels: int
    bit_depth: int
    frames: int = 0

    @property
    def duration_s(self) -> float:
        return float(self.frames) / float(self.sample_rate) if self.sample_rate > 0 else 0.0

    @property
    def subtype(self) -> str:
        return f"PCM_{self.bit_depth}"


def check_format(bit_depth: int, channels: int) -> None:
    if bit_depth not in SUPPORTED_BIT_DEPTHS:
        raise FormatError(f"Unsupported bit depth: {bit_depth}. Only 16, 24, and 32-bit are supported.")
    if channels not in SUPPORTED_CHANNELS:
        raise FormatError(f"Unsupported channel count: {channels}. Only mono and stereo are supported.")


def full_scale(bit_depth: int) -> int:
    """Magnitude of the most negative code, 2**(bits-1)."""
    return 1 << (int(bit_depth) - 1)


# -----------------------------
# Sample conversion
# -----------------------------
def decode(raw: np.ndarray, bit_depth: int, channels: int) -> np.ndarray:
    check_format(bit_depth, channels)
    x = np.asarray(raw).reshape(-1).astype(np.float64) / float(full_scale(bit_depth))
    if channels == 2:
        if x.size % 2:
            # malformed stream: pair the dangling sample with silence
            x = np.append(x, 0.0)
        x = 0.5 * (x[0::2] + x[1::2])
    return x.astype(np.float32)


def encode(canonical: np.ndarray, bit_depth: int, channels: int) -> np.ndarray:
    check_format(bit_depth, channels)
    fs = float(full_scale(bit_depth))
    y = np.rint(np.asarray(canonical, dtype=np.float64).reshape(-1) * fs)
    y = np.clip(y, -fs, fs - 1.0).astype(np.int32)
    if channels == 2:
        y = np.repeat(y, 2)
    return y


# -----------------------------
# Container I/O
# -----------------------------
def _spec_from_info(info) -> WavSpec:
    bits = _SUBTYPE_BITS.get(str(info.subtype))
    if bits is None:
        raise FormatError(f"Unsupported sample format: {info.subtype}. Only 16, 24, and 32-bit integer PCM is supported.")
    spec = WavSpec(
        sample_rate=int(info.samplerate),
        channels=int(info.channels),
        bit_depth=bits,
        frames=int(info.frames),
    )
    check_format(spec.bit_depth, spec.channels)
    return spec


def probe(path: str) -> WavSpec:
    try:
        info = sf.info(str(path))
    except (sf.SoundFileError, OSError) as e:
        raise AudioIOError(f"Failed to open input file: {e}") from e
    return _spec_from_info(info)


def read_pcm(path: str) -> Tuple[np.ndarray, WavSpec]:
    """
    Read a WAV file as interleaved integer codes at the file's own bit depth.

    soundfile hands out int32 left-justified samples for every PCM subtype;
    shifting right by (32 - bits) recovers the stored codes.
    """
    spec = probe(path)
    try:
        data, _ = sf.read(str(path), dtype="int32", always_2d=True)
    except (sf.SoundFileError, OSError) as e:
        raise AudioIOError(f"Failed to read samples: {e}") from e

    raw = data.reshape(-1) >> (32 - spec.bit_depth)
    logger.info("Read %d samples (%d Hz, %d ch, %d-bit)", raw.size, spec.sample_rate, spec.channels, spec.bit_depth)
    return raw.astype(np.int32, copy=False), spec


def write_pcm(path: str, raw: np.ndarray, spec: WavSpec) -> None:
    check_format(spec.bit_depth, spec.channels)
    codes = np.asarray(raw, dtype=np.int32).reshape(-1)
    if codes.size % spec.channels:
        raise FormatError(f"Sample count {codes.size} is not a multiple of {spec.channels} channels")
    data = (codes << (32 - spec.bit_depth)).reshape(-1, spec.channels)
    try:
        sf.write(str(path), data, int(spec.sample_rate), subtype=spec.subtype, format="WAV")
    except (sf.SoundFileError, OSError) as e:
        raise AudioIOError(f"Failed to create output file: {e}") from e
    logger.info("Wrote %d samples to %s", codes.size, path)


# -----------------------------
# Display helpers
# -----------------------------
def format_duration(seconds: float) -> str:
    minutes = int(seconds / 60.0)
    rest = seconds % 60.0
    if minutes > 0:
        return f"{minutes}m {rest:.1f}s"
    return f"{rest:.1f}s"


def format_file_size(n_bytes: int) -> str:
    units = ("B", "KB", "MB", "GB")
    size = float(n_bytes)
    i = 0
    while size >= 1024.0 and i < len(units) - 1:
        size /= 1024.0
        i += 1
    if i == 0:
        return f"{int(n_bytes)} {units[0]}"
    return f"{size:.1f} {units[i]}"


def format_sample_rate(sample_rate: float) -> str:
    if sample_rate >= 1000.0:
        return f"{sample_rate / 1000.0:.1f}kHz"
    return f"{int(sample_rate)}Hz"


def describe(spec: WavSpec) -> str:
    return f"Loaded: {spec.duration_s:.1f}s, {spec.sample_rate}Hz, {spec.channels} ch"
