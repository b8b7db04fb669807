#!/usr/bin/env python3
"""
retune.py

Command-line autotune processor.

- Reads a 16/24/32-bit PCM WAV (mono or stereo)
- Snaps the pitch to a key (or a fixed note), optional formant shift
- Writes the result with the input's sample rate / channels / bit depth

Examples:
  python retune.py -i take.wav -o tuned.wav -k 0 -s 0.8
  python retune.py -i take.wav -o robot.wav -s 1.0 -t 0.01
  python retune.py -i take.wav -o shifted.wav -k 12 -f 5 --verbose
  python retune.py --list-keys
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import asdict
from typing import List, Optional

from retune_api import process_file
from retune_engine import KEY_NAMES, EngineConfig, MusicalSettings, note_name
from retune_errors import RetuneError
from retune_pcm import probe
from retune_progress import Failure, Progress, ProgressChannel, Status


class CliPrinter:
    """Foreground consumer: prints channel messages as the run produces them."""

    def __init__(self, verbose: bool = False, step: float = 0.1):
        self.verbose = bool(verbose)
        self.step = float(step)
        self._next = self.step
        self.outcome = None

    def __call__(self, msg) -> None:
        if isinstance(msg, Status):
            if self.verbose:
                print(f"   {msg.text}")
        elif isinstance(msg, Progress):
            if self.verbose and msg.fraction + 1e-9 >= self._next:
                print(f"   Progress: {100.0 * msg.fraction:.1f}%")
                while self._next <= msg.fraction + 1e-9:
                    self._next += self.step
        else:
            self.outcome = msg


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="retune", description="Command-line autotune processor.")
    ap.add_argument("-i", "--input", metavar="FILE", default=None, help="Input WAV file path")
    ap.add_argument("-o", "--output", metavar="FILE", default=None, help="Output WAV file path")

    ap.add_argument("-k", "--key", type=int, default=0, metavar="KEY", help="Musical key (0-23, see --list-keys)")
    ap.add_argument("-n", "--note", type=int, default=0, metavar="NOTE", help="Note mode (0 = auto snap to key, 1-12 = specific note)")
    ap.add_argument("--octave", type=int, default=2, metavar="OCTAVE", help="Octave reference (0-4)")
    ap.add_argument("-f", "--formant", type=int, default=0, metavar="SEMITONES", help="Formant shift in semitones (-12 to +12)")

    ap.add_argument("-s", "--strength", type=float, default=0.8, metavar="STRENGTH", help="Pitch correction strength (0.0 to 1.0)")
    ap.add_argument("-t", "--transition", type=float, default=0.1, metavar="SPEED", help="Transition speed (0.01 to 1.0)")

    ap.add_argument("--fft-size", type=int, default=1024, metavar="SIZE", help="Analysis frame size")
    ap.add_argument("--hop-size", type=int, default=256, metavar="SIZE", help="Hop size between frames")

    ap.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    ap.add_argument("--list-keys", action="store_true", help="List available keys and exit")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.list_keys:
        print("Available Keys:")
        for i, name in enumerate(KEY_NAMES):
            print(f"  {i}: {name}")
        return 0

    if not args.input or not args.output:
        ap.error("the following arguments are required: -i/--input, -o/--output")

    config = EngineConfig(
        frame_size=int(args.fft_size),
        hop_size=int(args.hop_size),
        correction_strength=float(args.strength),
        transition_speed=float(args.transition),
    )
    settings = MusicalSettings(
        key=int(args.key),
        note=int(args.note),
        octave=int(args.octave),
        formant=int(args.formant),
    )

    try:
        config.validate()
        settings.validate()
        spec = probe(args.input)
    except RetuneError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.verbose:
        print("Autotune CLI Processor")
        print("========================")
        print(f"Input: {args.input}")
        print(f"Output: {args.output}")
        print(f"Key: {settings.key} ({KEY_NAMES[settings.key]})")
        print(f"Note Mode: {'Auto' if settings.note == 0 else 'Note ' + note_name(settings.note - 1)}")
        print(f"Octave: {settings.octave}")
        print(f"Formant Shift: {settings.formant} semitones")
        print(f"Pitch Correction: {config.correction_strength * 100.0:.1f}%")
        print(f"Transition Speed: {config.transition_speed:.2f}")
        print()
        print("Input File Info:")
        print(f"   Sample Rate: {spec.sample_rate}Hz")
        print(f"   Channels: {spec.channels}")
        print(f"   Bit Depth: {spec.bit_depth}")
        print(f"   Duration: {spec.duration_s:.2f}s")
        print()
        print("Processing Configuration:")
        for k, v in asdict(config.with_sample_rate(spec.sample_rate)).items():
            print(f"   {k}: {v}")
        print()

    printer = CliPrinter(verbose=args.verbose)

    channel = ProgressChannel(consumer=printer)
    t0 = time.perf_counter()
    outcome = process_file(args.input, args.output, config, settings, channel=channel)

    if isinstance(outcome, Failure):
        print(f"Error: {outcome.message}", file=sys.stderr)
        return 1

    if args.verbose:
        elapsed = max(1e-9, time.perf_counter() - t0)
        print()
        print("Processing complete!")
        print(f"   Processed {outcome.samples_processed} samples in {outcome.duration_ms / 1000.0:.2f}s")
        print(f"   Output saved to: {args.output}")
        print(f"   Processing speed: {spec.duration_s / elapsed:.1f}x real-time")
    else:
        print(f"Autotune processing complete: {args.input} -> {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
