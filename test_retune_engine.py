import dataclasses

import numpy as np
import pytest

from retune_engine import (
    KEY_NAMES,
    NOTE_NAMES,
    Engine,
    EngineAdapter,
    EngineConfig,
    MusicalSettings,
    PassthroughEngine,
    key_name,
    note_name,
)
from retune_errors import ConfigError, EngineError


class Scripted(Engine):
    """Returns whatever the script says for each call."""

    def __init__(self, script):
        self.script = list(script)

    def process(self, frame, state, settings):
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step(frame)


def _adapter(engine, **kw):
    a = EngineAdapter(engine, EngineConfig(frame_size=4, hop_size=2), MusicalSettings(), **kw)
    a.start()
    return a


def test_key_and_note_tables():
    assert len(KEY_NAMES) == 24
    assert key_name(0) == "C Major"
    assert key_name(12) == "A Minor"
    assert key_name(100) == "Unknown"
    assert len(NOTE_NAMES) == 12
    assert note_name(0) == "C"
    assert note_name(11) == "B"
    assert note_name(-1) == "Unknown"
    assert note_name(12) == "Unknown"


def test_defaults_validate():
    EngineConfig().validate()
    MusicalSettings().validate()


@pytest.mark.parametrize(
    "kw",
    [
        {"correction_strength": 1.5},
        {"correction_strength": -0.1},
        {"transition_speed": 0.0},
        {"transition_speed": 1.01},
        {"sample_rate": 0.0},
        {"frame_size": 256, "hop_size": 512},
        {"hop_size": 0},
        {"min_hz": 500.0, "max_hz": 100.0},
    ],
)
def test_engine_config_rejects_out_of_range(kw):
    with pytest.raises(ConfigError):
        EngineConfig(**kw).validate()


@pytest.mark.parametrize(
    "kw",
    [{"key": 24}, {"key": -1}, {"note": 13}, {"octave": 5}, {"formant": 13}, {"formant": -13}],
)
def test_musical_settings_reject_out_of_range(kw):
    with pytest.raises(ConfigError):
        MusicalSettings(**kw).validate()


def test_config_is_immutable():
    cfg = EngineConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        cfg.sample_rate = 48000.0  # type: ignore[misc]
    cfg2 = cfg.with_sample_rate(48000)
    assert cfg2.sample_rate == 48000.0
    assert cfg.sample_rate == 44100.0


def test_adapter_returns_engine_output_on_success():
    a = _adapter(Scripted([lambda f: f * 2.0]))
    out = a.process(np.ones(4, dtype=np.float32))
    np.testing.assert_array_equal(out, [2, 2, 2, 2])
    assert a.failures == 0


@pytest.mark.parametrize(
    "step",
    [
        EngineError("lost lock"),
        RuntimeError("boom"),
        lambda f: f[:2],
        lambda f: f * np.nan,
    ],
)
def test_adapter_falls_back_to_input(step):
    errors = []
    a = _adapter(Scripted([step]), on_error=lambda i, msg: errors.append((i, msg)))
    frame = np.array([0.1, 0.2, 0.3, 0.4], dtype=np.float32)
    out = a.process(frame)
    np.testing.assert_array_equal(out, np.array([0.1, 0.2, 0.3, 0.4], dtype=np.float32))
    assert a.failures == 1
    assert errors and errors[0][0] == 0


def test_adapter_fallback_is_not_corrupted_by_engine_mutation():
    def mutate_then_fail(frame):
        frame[:] = 99.0
        raise EngineError("late failure")

    class Mutating(Engine):
        def process(self, frame, state, settings):
            return mutate_then_fail(frame)

    a = _adapter(Mutating())
    out = a.process(np.zeros(4, dtype=np.float32))
    np.testing.assert_array_equal(out, np.zeros(4))


def test_adapter_counts_frames_and_resets_on_start():
    a = _adapter(PassthroughEngine())
    for _ in range(3):
        a.process(np.zeros(4, dtype=np.float32))
    assert a.frame_index == 3
    a.start()
    assert a.frame_index == 0 and a.failures == 0


def test_engine_base_is_abstract():
    class NoProcess(Engine):
        pass

    with pytest.raises(TypeError):
        NoProcess()
    assert PassthroughEngine().create_state(EngineConfig()) is None
