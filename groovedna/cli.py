from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Iterable

import numpy as np
from rich.console import Console

from .audio import write_wav
from .dna import BASELINE_DNA, MasterDNA, load_dna_payload, merge_over_baseline
from .engine import AudioRuntime, PlaybackController, render_offline
from .logging_utils import configure_logging, debug_enabled, get_log_path, log_exception
from .output import load_backend, resolve_backend
from .providers import close_provider, resolve_provider
from .settings import DEBUG_ENV, EngineSettings
from .spinner import Spinner, render_error

_LOGGER = logging.getLogger("groovedna.cli")
_CONSOLE = Console()
_STATUS_REFRESH = 0.25


def _doctor_report(lines: Iterable[str]) -> None:
    for line in lines:
        _CONSOLE.print(line)


def _status_line(controller: PlaybackController) -> str:
    countdown = controller.seconds_until_recompose
    next_in = "--" if countdown is None else f"{countdown:4.1f}s"
    return (
        f"{controller.bpm:5.0f} BPM | section {controller.current_section} "
        f"| step {controller.current_step + 1:>2} | {controller.status} "
        f"| level {controller.audio_level:4.2f} | next {next_in}"
    )


async def _play(args: argparse.Namespace, settings: EngineSettings) -> None:
    backend = resolve_backend()
    runtime = AudioRuntime(settings, backend_loader=lambda: backend)
    controller = PlaybackController(args.model, settings=settings, runtime=runtime)
    async with controller:
        controller.set_tempo(args.bpm if args.bpm is not None else settings.initial_bpm)
        await controller.start()
        loop = asyncio.get_running_loop()
        deadline = None if args.seconds is None else loop.time() + args.seconds
        with Spinner(_status_line(controller), enabled=None) as spinner:
            while deadline is None or loop.time() < deadline:
                await asyncio.sleep(_STATUS_REFRESH)
                spinner.update(_status_line(controller))
        _CONSOLE.print(f"Last DNA: {controller.active_dna.label} ({controller.active_dna.scale})")


async def _generate_once(model: str, bpm: float, *, seed: int | None, pattern_length: int) -> MasterDNA:
    provider = resolve_provider(model, pattern_length=pattern_length, seed=seed)
    try:
        payload = await provider.generate(bpm)
    except Exception as exc:
        _LOGGER.warning("DNA generation failed, rendering baseline: %s", exc, exc_info=debug_enabled())
        return BASELINE_DNA
    finally:
        await close_provider(provider)
    return merge_over_baseline(BASELINE_DNA, payload)


def _render(args: argparse.Namespace, settings: EngineSettings) -> Path:
    bpm = settings.clamp_bpm(args.bpm if args.bpm is not None else settings.initial_bpm)
    if args.dna is not None:
        dna = merge_over_baseline(BASELINE_DNA, load_dna_payload(Path(args.dna).read_text("utf-8")))
    else:
        model = args.model or settings.model
        with Spinner(f"Composing DNA with {model}"):
            dna = asyncio.run(
                _generate_once(
                    model,
                    bpm,
                    seed=args.seed,
                    pattern_length=settings.pattern_length,
                )
            )
    with Spinner(f"Rendering {args.seconds:.1f}s of {dna.label}"):
        audio = render_offline(
            args.seconds,
            dna=dna,
            bpm=bpm,
            settings=settings,
            rng=np.random.default_rng(args.seed),
        )
    return write_wav(args.output, audio, sample_rate=settings.sample_rate)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="groovedna")
    sub = parser.add_subparsers(dest="command", required=True)

    play = sub.add_parser("play", help="Play live, recomposing on a fixed cadence.")
    play.add_argument("--bpm", type=float, default=None)
    play.add_argument("--model", type=str, default=None, help="'procedural' or a LiteLLM model name.")
    play.add_argument("--seconds", type=float, default=None, help="Stop after this long (default: until Ctrl+C).")

    render = sub.add_parser("render", help="Compose once and render to a wav file.")
    render.add_argument("output", type=str)
    render.add_argument("--bpm", type=float, default=None)
    render.add_argument("--seconds", type=float, default=20.0)
    render.add_argument("--seed", type=int, default=None)
    render.add_argument("--model", type=str, default=None)
    render.add_argument("--dna", type=str, default=None, help="Render a DNA JSON file instead of composing.")

    sub.add_parser("doctor", help="Check audio output and log paths.")
    return parser


def main(argv: list[str] | None = None) -> int:
    settings = EngineSettings.from_env()
    configure_logging(settings)
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        if args.command == "play":
            try:
                asyncio.run(_play(args, settings))
            except KeyboardInterrupt:
                _CONSOLE.print("Stopped.")
            return 0

        if args.command == "render":
            path = _render(args, settings)
            _CONSOLE.print(f"Wrote {args.seconds:.1f}s to {path} (sr={settings.sample_rate})")
            return 0

        if args.command == "doctor":
            backend = load_backend()
            report = [
                f"Audio output backend: {backend.name if backend is not None else 'unavailable'}",
                f"Default provider: {settings.model}",
                f"Sample rate: {settings.sample_rate} Hz, block {settings.block_size}",
                f"Log file: {get_log_path(settings)}",
                "Hints:",
                "- Install PortAudio if no backend is available; `groovedna render` works without one.",
                "- Set GROOVEDNA_MODEL to a LiteLLM model name to compose with an LLM.",
                f"- Set {DEBUG_ENV}=1 for debug console logs.",
            ]
            _doctor_report(report)
            return 0

        parser.print_help()
        return 1
    except Exception as exc:
        _LOGGER.warning("groovedna CLI failed: %s", exc, exc_info=debug_enabled())
        log_exception("groovedna CLI", exc, settings=settings)
        render_error("groovedna CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
