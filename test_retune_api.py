import os
import threading
import time

import numpy as np
import pytest
import soundfile as sf

from conftest import FailOnFrames
from retune_api import process_file, process_samples, start_background
from retune_engine import EngineConfig, MusicalSettings, PassthroughEngine
from retune_errors import ConfigError, FormatError
from retune_pcm import WavSpec, read_pcm
from retune_progress import Failure, Progress, ProgressChannel, Status, Success

NO_OVERLAP = EngineConfig(frame_size=256, hop_size=256)


def test_passthrough_file_is_bit_exact(write_wav, sine16, tmp_path):
    src = write_wav("in.wav", sine16)
    dst = str(tmp_path / "out.wav")
    ch = ProgressChannel()

    outcome = process_file(src, dst, NO_OVERLAP, engine=PassthroughEngine(), channel=ch)

    assert isinstance(outcome, Success)
    assert outcome.samples_processed == sine16.size
    raw, spec = read_pcm(dst)
    assert (spec.sample_rate, spec.channels, spec.bit_depth) == (44100, 1, 16)
    np.testing.assert_array_equal(raw, sine16)

    msgs = ch.drain()
    assert msgs[-1] == outcome
    assert sum(isinstance(m, Success) for m in msgs) == 1
    fracs = [m.fraction for m in msgs if isinstance(m, Progress)]
    assert fracs == sorted(fracs) and fracs[-1] == 1.0
    texts = [m.text for m in msgs if isinstance(m, Status)]
    assert texts[0] == "Opening input file..."
    assert "Normalizing audio..." in texts
    assert texts[-1] == "Complete!"


def test_stereo_24bit_comes_back_as_dual_mono(write_wav, tmp_path):
    rng = np.random.default_rng(3)
    codes = rng.integers(-(1 << 21), 1 << 21, size=(3000, 2))
    src = write_wav("st.wav", codes, sr=48000, bits=24)
    dst = str(tmp_path / "st_out.wav")

    outcome = process_file(src, dst, NO_OVERLAP, engine=PassthroughEngine())

    assert isinstance(outcome, Success)
    assert outcome.samples_processed == codes.size
    raw, spec = read_pcm(dst)
    assert (spec.channels, spec.bit_depth, spec.sample_rate) == (2, 24, 48000)
    lr = raw.reshape(-1, 2)
    np.testing.assert_array_equal(lr[:, 0], lr[:, 1])
    np.testing.assert_allclose(lr[:, 0], codes.mean(axis=1), atol=1.0)


def test_engine_failure_on_one_frame_still_succeeds(write_wav, sine16, tmp_path):
    src = write_wav("in.wav", sine16)
    dst = str(tmp_path / "out.wav")
    ch = ProgressChannel()

    outcome = process_file(src, dst, NO_OVERLAP, engine=FailOnFrames(fail=(3,)), channel=ch)

    assert isinstance(outcome, Success)
    raw, _ = read_pcm(dst)
    # frame 3 is the only one that kept its input; the stub muted the rest
    np.testing.assert_array_equal(raw[3 * 256:4 * 256], sine16[3 * 256:4 * 256])
    assert not np.any(raw[:3 * 256])
    assert not np.any(raw[4 * 256:])
    assert any(isinstance(m, Status) and m.text.startswith("Frame 3 fell back") for m in ch.drain())


def test_overlapping_passthrough_is_normalized(write_wav, sine16, tmp_path):
    src = write_wav("in.wav", sine16)
    dst = str(tmp_path / "out.wav")
    # four overlapping unwindowed copies sum to ~2.0 peak -> scaled back under 1.0
    outcome = process_file(src, dst, EngineConfig(frame_size=1024, hop_size=256), engine=PassthroughEngine())
    assert isinstance(outcome, Success)
    raw, _ = read_pcm(dst)
    assert np.max(np.abs(raw)) == pytest.approx(0.95 * 32768, abs=2)


def test_unsupported_bit_depth_fails_before_processing(tmp_path):
    src = str(tmp_path / "u8.wav")
    sf.write(src, np.zeros(1000, dtype=np.float32), 8000, subtype="PCM_U8")
    dst = str(tmp_path / "out.wav")

    outcome = process_file(src, dst, engine=PassthroughEngine())

    assert isinstance(outcome, Failure)
    assert "Unsupported" in outcome.message
    assert not os.path.exists(dst)


def test_missing_input_fails_with_cause(tmp_path):
    outcome = process_file(str(tmp_path / "missing.wav"), str(tmp_path / "out.wav"))
    assert isinstance(outcome, Failure)
    assert outcome.message.startswith("Failed to open input file")


def test_bad_hop_fails_without_output(write_wav, sine16, tmp_path):
    src = write_wav("in.wav", sine16)
    dst = str(tmp_path / "out.wav")
    ch = ProgressChannel()

    outcome = process_file(src, dst, EngineConfig(frame_size=256, hop_size=512), channel=ch)

    assert isinstance(outcome, Failure)
    assert not os.path.exists(dst)
    assert not any(isinstance(m, Progress) for m in ch.drain())


def test_cancelled_run_writes_nothing(write_wav, sine16, tmp_path):
    src = write_wav("in.wav", sine16)
    dst = str(tmp_path / "out.wav")
    cancel = threading.Event()
    cancel.set()

    outcome = process_file(src, dst, NO_OVERLAP, engine=PassthroughEngine(), cancel=cancel)

    assert outcome == Failure("Cancelled")
    assert not os.path.exists(dst)


def test_process_samples_raises_fatal_errors():
    spec = WavSpec(sample_rate=44100, channels=1, bit_depth=16)
    with pytest.raises(ConfigError):
        process_samples(np.zeros(100, dtype=np.int32), spec, EngineConfig(frame_size=0))
    with pytest.raises(ConfigError):
        process_samples(np.zeros(100, dtype=np.int32), spec, settings=MusicalSettings(key=30))
    with pytest.raises(FormatError):
        process_samples(np.zeros(100, dtype=np.int32), WavSpec(sample_rate=44100, channels=4, bit_depth=16))


def test_process_samples_info():
    spec = WavSpec(sample_rate=22050, channels=1, bit_depth=16)
    out, info = process_samples(np.zeros(1000, dtype=np.int32), spec, NO_OVERLAP, engine=PassthroughEngine())
    assert out.shape == (1000,)
    assert info["frames"] == 4
    assert info["engine_failures"] == 0
    assert info["config"]["sample_rate"] == 22050.0
    assert info["engine"] == "passthrough"


def test_default_engine_end_to_end(write_wav, sine16, tmp_path):
    src = write_wav("in.wav", sine16[:8192])
    dst = str(tmp_path / "out.wav")
    outcome = process_file(src, dst, settings=MusicalSettings(key=0))
    assert isinstance(outcome, Success)
    raw, spec = read_pcm(dst)
    assert raw.size == 8192
    assert np.max(np.abs(raw)) < 32768


def test_background_run_is_polled_to_completion(write_wav, sine16, tmp_path):
    src = write_wav("in.wav", sine16)
    dst = str(tmp_path / "bg.wav")

    run = start_background(src, dst, NO_OVERLAP, engine=PassthroughEngine())
    run.join(timeout=30)
    assert not run.is_alive()

    msgs = run.channel.drain()
    assert isinstance(msgs[-1], Success)
    assert run.channel.done
    assert os.path.exists(dst)


def test_failing_foreground_consumer_does_not_abort_the_run(write_wav, sine16, tmp_path):
    src = write_wav("in.wav", sine16)
    dst = str(tmp_path / "out.wav")
    seen = []

    def consumer(msg):
        seen.append(msg)
        raise BrokenPipeError("stdout closed")

    ch = ProgressChannel(consumer=consumer)
    outcome = process_file(src, dst, NO_OVERLAP, engine=PassthroughEngine(), channel=ch)

    assert isinstance(outcome, Success)
    assert ch.outcome == outcome
    assert os.path.exists(dst)
    assert seen == [Status("Opening input file...")]


class SlowEngine(PassthroughEngine):
    """Passthrough that pauses on every frame so a run can be cancelled mid-way."""

    def __init__(self, delay=0.005):
        self.delay = delay
        self.started = threading.Event()

    def process(self, frame, state, settings):
        self.started.set()
        time.sleep(self.delay)
        return frame


def test_cancelling_a_background_run(write_wav, sine16, tmp_path):
    src = write_wav("in.wav", sine16)
    dst = str(tmp_path / "cancelled.wav")
    engine = SlowEngine()

    run = start_background(src, dst, NO_OVERLAP, engine=engine)
    assert engine.started.wait(timeout=10)
    run.cancel()
    run.join(timeout=30)
    assert not run.is_alive()

    msgs = run.channel.drain()
    assert msgs[-1] == Failure("Cancelled")
    assert not any(isinstance(m, Success) for m in msgs)
    assert not os.path.exists(dst)
