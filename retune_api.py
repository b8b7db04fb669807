"""
retune_api.py

Callable pipeline shared by the CLI and the UI:

  raw PCM -> decode -> FrameScheduler(+EngineAdapter) -> normalize_peak -> encode -> raw PCM

- process_samples(): in-memory, raises the fatal RetuneError subclasses
- process_file(): WAV in/out, never raises for fatal errors; the outcome is
  returned and sent as the last channel message
- start_background(): process_file on a worker thread, polled via its channel
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict
from typing import Any, Dict, Optional, Tuple

import numpy as np

from retune_autotune import AutotuneEngine
from retune_engine import Engine, EngineAdapter, EngineConfig, MusicalSettings
from retune_errors import RetuneError
from retune_frames import FrameScheduler, normalize_peak
from retune_pcm import WavSpec, check_format, decode, encode, read_pcm, write_pcm
from retune_progress import Failure, Outcome, ProgressChannel, Success

logger = logging.getLogger(__name__)


def process_samples(
    raw: np.ndarray,
    spec: WavSpec,
    config: Optional[EngineConfig] = None,
    settings: Optional[MusicalSettings] = None,
    *,
    engine: Optional[Engine] = None,
    channel: Optional[ProgressChannel] = None,
    cancel: Optional[threading.Event] = None,
) -> Tuple[np.ndarray, Dict[str, Any]]:
    """
    Run the pipeline on interleaved integer samples and return (raw_out, info).

    Every check that can reject the run happens before the first frame.
    """
    ch = channel if channel is not None else ProgressChannel()
    cfg = (config if config is not None else EngineConfig()).with_sample_rate(spec.sample_rate)
    ms = settings if settings is not None else MusicalSettings()
    eng = engine if engine is not None else AutotuneEngine()

    check_format(spec.bit_depth, spec.channels)
    cfg.validate()
    ms.validate()
    scheduler = FrameScheduler(cfg.frame_size, cfg.hop_size)

    ch.status("Converting audio format...")
    if spec.channels == 2:
        ch.status("Converting stereo to mono...")
    ch.pump()
    x = decode(raw, spec.bit_depth, spec.channels)
    logger.info("Processing %d mono samples", x.size)

    ch.status("Initializing autotune...")
    adapter = EngineAdapter(
        eng,
        cfg,
        ms,
        on_error=lambda i, msg: ch.status(f"Frame {i} fell back to input: {msg}"),
    )
    adapter.start()

    ch.status("Processing audio...")
    ch.pump()

    def on_frame(ev):
        ch.progress(ev.fraction)
        ch.pump()

    acc = scheduler.run(x, adapter, on_frame=on_frame, cancel=cancel)

    ch.status("Normalizing audio...")
    y, scale = normalize_peak(acc)
    if scale != 1.0:
        logger.info("Applied normalization: %.2fx", scale)

    if spec.channels == 2:
        ch.status("Converting to stereo...")
    out = encode(y, spec.bit_depth, spec.channels)
    ch.progress(1.0)
    ch.pump()

    info: Dict[str, Any] = {
        "sr": int(spec.sample_rate),
        "channels": int(spec.channels),
        "bit_depth": int(spec.bit_depth),
        "mono_samples": int(x.size),
        "frames": int(adapter.frame_index),
        "engine_failures": int(adapter.failures),
        "peak_in": float(np.max(np.abs(acc))) if acc.size else 0.0,
        "norm_scale": float(scale),
        "engine": getattr(eng, "name", type(eng).__name__),
        "config": asdict(cfg),
        "settings": asdict(ms),
    }
    return out, info


def process_file(
    input_path: str,
    output_path: str,
    config: Optional[EngineConfig] = None,
    settings: Optional[MusicalSettings] = None,
    *,
    engine: Optional[Engine] = None,
    channel: Optional[ProgressChannel] = None,
    cancel: Optional[threading.Event] = None,
) -> Outcome:
    t0 = time.perf_counter()
    ch = channel if channel is not None else ProgressChannel()

    try:
        ch.status("Opening input file...")
        ch.pump()
        raw, spec = read_pcm(input_path)
        logger.info("Input file spec: %s", spec)

        out, info = process_samples(raw, spec, config, settings, engine=engine, channel=ch, cancel=cancel)

        ch.status("Writing output file...")
        ch.pump()
        write_pcm(output_path, out, spec)
    except RetuneError as e:
        logger.error("Processing failed: %s", e)
        outcome: Outcome = Failure(str(e))
    except MemoryError:
        logger.error("Processing failed: out of memory")
        outcome = Failure("Out of memory")
    else:
        if info["engine_failures"]:
            logger.warning("%d of %d frames fell back to the unprocessed input", info["engine_failures"], info["frames"])
        ch.status("Complete!")
        outcome = Success(
            samples_processed=int(out.size),
            duration_ms=(time.perf_counter() - t0) * 1000.0,
        )

    ch.finish(outcome)
    return outcome


class BackgroundRun:
    def __init__(self, thread: threading.Thread, channel: ProgressChannel, cancel_event: threading.Event):
        self.thread = thread
        self.channel = channel
        self._cancel = cancel_event

    def cancel(self) -> None:
        self._cancel.set()

    def is_alive(self) -> bool:
        return self.thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        self.thread.join(timeout)


def start_background(
    input_path: str,
    output_path: str,
    config: Optional[EngineConfig] = None,
    settings: Optional[MusicalSettings] = None,
    *,
    engine: Optional[Engine] = None,
    maxsize: int = 0,
) -> BackgroundRun:
    channel = ProgressChannel(maxsize=maxsize)
    cancel = threading.Event()

    def _worker():
        try:
            process_file(input_path, output_path, config, settings, engine=engine, channel=channel, cancel=cancel)
        except Exception as e:
            # the poller waits for an outcome; never leave it hanging
            logger.exception("Background run crashed")
            channel.finish(Failure(f"Internal error: {e}"))

    t = threading.Thread(target=_worker, name="retune-run", daemon=True)
    t.start()
    return BackgroundRun(t, channel, cancel)
