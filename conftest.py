import numpy as np
import pytest
import soundfile as sf

from retune_engine import Engine
from retune_errors import EngineError


class FailOnFrames(Engine):
    """Engine stub: mutes every frame except the listed ones, which fail."""

    name = "fail-on-frames"

    def __init__(self, fail=(3,), mute=True):
        self.fail = set(fail)
        self.mute = mute
        self.calls = 0

    def create_state(self, config):
        return {"frames": 0}

    def process(self, frame, state, settings):
        i = state["frames"]
        state["frames"] += 1
        self.calls += 1
        if i in self.fail:
            raise EngineError(f"no pitch lock on frame {i}")
        return np.zeros_like(frame) if self.mute else frame


@pytest.fixture
def write_wav(tmp_path):
    """write_wav(name, codes(frames, ch) int, sr, bits) -> path"""

    def _write(name, codes, sr=44100, bits=16):
        codes = np.asarray(codes, dtype=np.int64)
        if codes.ndim == 1:
            codes = codes[:, None]
        path = tmp_path / name
        data = (codes << (32 - bits)).astype(np.int32)
        sf.write(str(path), data, sr, subtype=f"PCM_{bits}")
        return str(path)

    return _write


@pytest.fixture
def sine16():
    sr = 44100
    t = np.arange(sr // 2) / sr
    return np.round(0.5 * np.sin(2 * np.pi * 220.0 * t) * 32767).astype(np.int64)
