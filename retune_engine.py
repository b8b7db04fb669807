"""
retune_engine.py

Correction-engine boundary:
- EngineConfig / MusicalSettings: immutable settings forwarded to every frame
- Engine: the capability interface (create_state + process)
- PassthroughEngine: returns each frame untouched (tests, bypass)
- EngineAdapter: one engine call per frame; on failure the input frame is
  returned so the run keeps going
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

import numpy as np

from retune_errors import ConfigError, EngineError

logger = logging.getLogger(__name__)


KEY_NAMES = (
    "C Major", "G Major", "D Major", "A Major", "E Major", "B Major", "F# Major", "C# Major",
    "F Major", "Bb Major", "Eb Major", "Ab Major", "A Minor", "E Minor", "B Minor", "F# Minor",
    "C# Minor", "G# Minor", "D# Minor", "A# Minor", "D Minor", "G Minor", "C Minor", "F Minor",
)

NOTE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")


def key_name(index: int) -> str:
    return KEY_NAMES[index] if 0 <= int(index) < len(KEY_NAMES) else "Unknown"


def note_name(index: int) -> str:
    return NOTE_NAMES[index] if 0 <= int(index) < len(NOTE_NAMES) else "Unknown"


def check_sizes(frame_size: int, hop_size: int) -> None:
    if int(frame_size) <= 0 or int(hop_size) <= 0:
        raise ConfigError(f"Frame size and hop size must be positive (got {frame_size}/{hop_size})")
    if int(hop_size) > int(frame_size):
        raise ConfigError(f"Hop size {hop_size} must not exceed frame size {frame_size}")


# -----------------------------
# Settings
# -----------------------------
@dataclass(frozen=True)
class EngineConfig:
    frame_size: int = 1024
    hop_size: int = 256
    sample_rate: float = 44100.0

    # 0..1, how far a detected pitch is pulled toward its target
    correction_strength: float = 0.8
    # 0.01..1, per-frame approach rate of the applied shift (1 = instant)
    transition_speed: float = 0.1

    # Pitch tracker range / voicing gate
    min_hz: float = 70.0
    max_hz: float = 1000.0
    voicing_threshold: float = 0.3

    def with_sample_rate(self, sample_rate: float) -> "EngineConfig":
        return replace(self, sample_rate=float(sample_rate))

    def validate(self) -> None:
        check_sizes(self.frame_size, self.hop_size)
        if not self.sample_rate > 0:
            raise ConfigError(f"Sample rate must be positive (got {self.sample_rate})")
        if not 0.0 <= self.correction_strength <= 1.0:
            raise ConfigError("Pitch correction strength must be between 0.0 and 1.0")
        if not 0.01 <= self.transition_speed <= 1.0:
            raise ConfigError("Transition speed must be between 0.01 and 1.0")
        if not 0.0 < self.min_hz < self.max_hz:
            raise ConfigError("Pitch range must satisfy 0 < min_hz < max_hz")


@dataclass(frozen=True)
class MusicalSettings:
    key: int = 0       # index into KEY_NAMES
    note: int = 0      # 0 = auto snap to key, 1..12 = fixed note (C..B)
    octave: int = 2    # 0..4, reference octave for fixed notes
    formant: int = 0   # semitones, -12..+12

    def validate(self) -> None:
        if not 0 <= self.key < len(KEY_NAMES):
            raise ConfigError("Key must be between 0 and 23. Use --list-keys to see available keys.")
        if not 0 <= self.note <= 12:
            raise ConfigError("Note mode must be 0 (auto) or 1-12")
        if not 0 <= self.octave <= 4:
            raise ConfigError("Octave must be between 0 and 4")
        if not -12 <= self.formant <= 12:
            raise ConfigError("Formant shift must be between -12 and +12 semitones")


# -----------------------------
# Engine interface
# -----------------------------
class Engine(ABC):
    """Stateful per-frame transform. Frames must arrive in time order."""

    name = "engine"

    def create_state(self, config: EngineConfig) -> Any:
        return None

    @abstractmethod
    def process(self, frame: np.ndarray, state: Any, settings: MusicalSettings) -> np.ndarray:
        """Return the transformed frame (same length); raise EngineError on failure."""


class PassthroughEngine(Engine):
    name = "passthrough"

    def process(self, frame, state, settings):
        return frame


class EngineAdapter:
    def __init__(
        self,
        engine: Engine,
        config: EngineConfig,
        settings: MusicalSettings,
        on_error: Optional[Callable[[int, str], None]] = None,
    ):
        self.engine = engine
        self.config = config
        self.settings = settings
        self.on_error = on_error
        self.state: Any = None
        self.frame_index = 0
        self.failures = 0

    def start(self) -> None:
        """Fresh engine state for a new run."""
        self.state = self.engine.create_state(self.config)
        self.frame_index = 0
        self.failures = 0

    def process(self, frame: np.ndarray) -> np.ndarray:
        i = self.frame_index
        self.frame_index += 1
        try:
            out = self.engine.process(frame.copy(), self.state, self.settings)
            out = np.asarray(out, dtype=np.float32)
            if out.shape != frame.shape:
                raise EngineError(f"engine returned {out.shape[0] if out.ndim else 0} samples, expected {frame.shape[0]}")
            if not np.all(np.isfinite(out)):
                raise EngineError("engine returned non-finite samples")
            return out
        except Exception as e:
            # any engine-side failure costs this frame's correction, nothing more
            self.failures += 1
            msg = str(e) or type(e).__name__
            logger.warning("Engine error at frame %d: %s", i, msg)
            if self.on_error is not None:
                self.on_error(i, msg)
            return frame
