#!/usr/bin/env python3
"""
Gradio UI for retune

Goals:
- Load a WAV, see its sample rate / duration / channels
- Pick key / note mode / octave / formant / strength / transition
- Render on a background thread; a timer polls the run's progress channel
- Download the result and compare input/output spectrograms

Run:
  pip install -e ".[ui]"
  python ui_gradio.py
"""

from __future__ import annotations

import os
import time
from typing import Any, Dict, Optional, Tuple

from retune_api import start_background
from retune_engine import KEY_NAMES, NOTE_NAMES, EngineConfig, MusicalSettings
from retune_errors import RetuneError
from retune_pcm import decode, describe, format_duration, format_file_size, format_sample_rate, probe, read_pcm
from retune_progress import Failure, Progress, Status, Success

POLL_SECONDS = 0.25


def _outdir() -> str:
    outdir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "ui_downloads")
    os.makedirs(outdir, exist_ok=True)
    return outdir


def _render_info_md(path: Optional[str]) -> str:
    if not path:
        return "No file selected"
    try:
        spec = probe(path)
    except RetuneError as e:
        return f"Error loading file: {e}"
    size = os.path.getsize(path) if os.path.exists(path) else 0
    return (
        f"{describe(spec)}\n\n"
        f"Duration: {format_duration(spec.duration_s)} | Sample Rate: {format_sample_rate(spec.sample_rate)} | "
        f"Channels: {spec.channels} | {spec.bit_depth}-bit | {format_file_size(size)}"
    )


def _render_outcome_md(outcome) -> str:
    if isinstance(outcome, Success):
        return f"Success: Processed {outcome.samples_processed} samples in {outcome.duration_ms / 1000.0:.2f}s"
    if isinstance(outcome, Failure):
        return f"Error: {outcome.message}"
    return ""


def _render_status_md(job: Dict[str, Any]) -> str:
    lines = [f"**Status:** {job.get('status', 'Ready')}"]
    if job.get("running"):
        pct = 100.0 * float(job.get("progress", 0.0))
        filled = int(round(pct / 5.0))
        lines.append(f"`[{'#' * filled}{'.' * (20 - filled)}]` {pct:.1f}%")
    if job.get("outcome") is not None:
        lines.append(_render_outcome_md(job["outcome"]))
    return "\n\n".join(lines)


def _spectrogram_png(in_path: str, out_path: str, png_path: str) -> Optional[str]:
    """Input/output spectrograms stacked in one PNG; None if matplotlib is missing."""
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError:
        return None

    fig = plt.figure(figsize=(9, 6))
    for i, (title, path) in enumerate((("Input", in_path), ("Output", out_path))):
        raw, spec = read_pcm(path)
        x = decode(raw, spec.bit_depth, spec.channels)
        ax = fig.add_subplot(2, 1, i + 1)
        if x.size >= 256:
            ax.specgram(x, NFFT=1024 if x.size >= 1024 else 256, Fs=spec.sample_rate, noverlap=0)
        ax.set_title(title)
        ax.set_ylabel("Hz")
        ax.set_ylim(0, min(4000.0, spec.sample_rate / 2.0))
    fig.axes[-1].set_xlabel("Time (s)")
    fig.tight_layout()
    fig.savefig(png_path, dpi=110)
    plt.close(fig)
    return png_path


def start_job(
    in_path: Optional[str],
    key: int,
    note: int,
    octave: int,
    formant: int,
    strength: float,
    transition: float,
    frame_size: int,
    hop_size: int,
    job: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    if job and job.get("running"):
        return job
    if not in_path:
        return {"running": False, "status": "Please select an input file"}

    try:
        config = EngineConfig(
            frame_size=int(frame_size),
            hop_size=int(hop_size),
            correction_strength=float(strength),
            transition_speed=float(transition),
        )
        settings = MusicalSettings(key=int(key), note=int(note), octave=int(octave), formant=int(formant))
        config.validate()
        settings.validate()
    except RetuneError as e:
        return {"running": False, "status": f"Error: {e}"}
    except (TypeError, ValueError):
        # cleared gr.Number / dropdown fields arrive as None
        return {"running": False, "status": "Error: every setting needs a value"}

    stamp = time.strftime("%Y%m%d-%H%M%S")
    out_path = os.path.join(_outdir(), f"autotuned-{stamp}.wav")
    run = start_background(in_path, out_path, config, settings)
    return {
        "running": True,
        "run": run,
        "in_path": in_path,
        "out_path": out_path,
        "progress": 0.0,
        "status": "Processing...",
        "outcome": None,
    }


def poll_job(job: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drain whatever the run queued since the last tick."""
    if not job or not job.get("running"):
        return job or {"running": False, "status": "Ready"}

    for msg in job["run"].channel.drain():
        if isinstance(msg, Progress):
            job["progress"] = msg.fraction
            job["status"] = f"Processing... {100.0 * msg.fraction:.1f}%"
        elif isinstance(msg, Status):
            job["status"] = msg.text
        else:
            job["outcome"] = msg
            job["running"] = False
            if isinstance(msg, Success):
                job["status"] = f"Completed in {msg.duration_ms / 1000.0:.2f}s!"
            else:
                job["status"] = f"Error: {msg.message}"
    return job


def cancel_job(job: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if job and job.get("running"):
        job["run"].cancel()
        job["status"] = "Cancelling..."
    return job or {"running": False, "status": "Ready"}


def build_ui() -> Any:
    import gradio as gr

    key_choices = [(name, i) for i, name in enumerate(KEY_NAMES)]
    note_choices = [("Auto (snap to key)", 0)] + [(name, i + 1) for i, name in enumerate(NOTE_NAMES)]
    defaults = EngineConfig()
    mdefaults = MusicalSettings()

    with gr.Blocks(title="retune") as demo:
        gr.Markdown("# retune\nPitch correction + formant shift for WAV files.")
        job = gr.State({"running": False, "status": "Ready"})

        with gr.Row():
            with gr.Column():
                audio_in = gr.Audio(label="Input WAV", type="filepath")
                info = gr.Markdown("No file selected")
            with gr.Column():
                key = gr.Dropdown(choices=key_choices, value=mdefaults.key, label="Key")
                note = gr.Dropdown(choices=note_choices, value=mdefaults.note, label="Note Mode")
                octave = gr.Slider(0, 4, value=mdefaults.octave, step=1, label="Octave")
                formant = gr.Slider(-12, 12, value=mdefaults.formant, step=1, label="Formant Shift (semitones)")

        with gr.Row():
            strength = gr.Slider(0.0, 1.0, value=defaults.correction_strength, step=0.01, label="Pitch Correction")
            transition = gr.Slider(0.01, 1.0, value=defaults.transition_speed, step=0.01, label="Transition Speed")
            frame_size = gr.Dropdown(choices=[512, 1024, 2048, 4096], value=defaults.frame_size, label="Frame size")
            hop_size = gr.Number(value=defaults.hop_size, precision=0, label="Hop size")

        with gr.Row():
            start_btn = gr.Button("Start Processing", variant="primary")
            cancel_btn = gr.Button("Cancel")

        status = gr.Markdown(_render_status_md({"status": "Ready"}))
        out_file = gr.File(label="Processed WAV")
        spec_img = gr.Image(label="Spectrograms (input / output)", type="filepath")

        audio_in.change(fn=_render_info_md, inputs=[audio_in], outputs=[info])

        def on_start(path, k, n, o, f, s, t, fs, hs, j):
            j = start_job(path, k, n, o, f, s, t, fs, hs, job=j)
            return j, _render_status_md(j)

        start_btn.click(
            fn=on_start,
            inputs=[audio_in, key, note, octave, formant, strength, transition, frame_size, hop_size, job],
            outputs=[job, status],
        )

        def on_cancel(j):
            j = cancel_job(j)
            return j, _render_status_md(j)

        cancel_btn.click(fn=on_cancel, inputs=[job], outputs=[job, status])

        def on_tick(j) -> Tuple[Dict[str, Any], str, Any, Any]:
            was_running = bool(j and j.get("running"))
            j = poll_job(j)
            out, img = gr.update(), gr.update()
            if was_running and not j.get("running") and isinstance(j.get("outcome"), Success):
                out = j["out_path"]
                png = os.path.splitext(j["out_path"])[0] + ".png"
                img = _spectrogram_png(j["in_path"], j["out_path"], png)
            return j, _render_status_md(j), out, img

        timer = gr.Timer(POLL_SECONDS)
        timer.tick(fn=on_tick, inputs=[job], outputs=[job, status, out_file, spec_img])

        with gr.Accordion("About", open=False):
            gr.Markdown(
                "- FFT-based pitch detection and correction, processed frame by frame with overlap-add\n"
                "- 16/24/32-bit PCM WAV, mono or stereo (stereo is processed as mono)\n"
                "- Same engine as the `retune` CLI: run it on batches with the values you like here"
            )

    return demo


def main() -> int:
    demo = build_ui()
    demo.queue()
    demo.launch()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
