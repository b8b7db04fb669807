import numpy as np
import soundfile as sf

import make_test_wav
from retune_pcm import probe


def test_in_tune_scale_is_ten_seconds_and_in_range():
    y = make_test_wav.make_in_tune(sr=8000)
    assert y.size == 80000
    assert np.all(np.isfinite(y))
    assert y[0] == 0.0


def test_off_pitch_melody_is_eight_seconds():
    assert make_test_wav.make_off_pitch(sr=8000).size == 64000


def test_main_writes_both_files(tmp_path):
    assert make_test_wav.main(["--outdir", str(tmp_path), "--sr", "8000"]) == 0
    for name, seconds in (("test_audio.wav", 10.0), ("test_audio_off_pitch.wav", 8.0)):
        spec = probe(str(tmp_path / name))
        assert (spec.sample_rate, spec.channels, spec.bit_depth) == (8000, 1, 16)
        assert spec.duration_s == seconds
    data, _ = sf.read(str(tmp_path / "test_audio.wav"), dtype="int16")
    assert np.any(data)
