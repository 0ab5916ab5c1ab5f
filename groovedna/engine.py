"""Playback controller: the active/inactive state machine tying scheduler, graph and generation together."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable

import numpy as np
from numpy.typing import NDArray

from .dna import BASELINE_DNA, MasterDNA, SectionName
from .generation import DnaCell, GenerationController
from .graph import AudioGraph
from .output import OutputBackend, OutputStreamHandle, load_backend
from .providers import ProviderSpec, close_provider, resolve_provider
from .scheduler import StepEvent, StepObserver, StepScheduler, SynthTarget
from .settings import EngineSettings
from .synth import GraphSynth

_LOGGER = logging.getLogger("groovedna.engine")


class AudioRuntime:
    """Owns the output graph and device stream.

    Created lazily on the first `ensure_ready()` and kept for the life of the
    runtime; later calls only resume a stopped stream. When no backend can be
    opened the graph stays absent (synthesis becomes a no-op) and the clock
    falls back to monotonic time so scheduling remains well-defined.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        backend_loader: Callable[[], OutputBackend | None] = load_backend,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._backend_loader = backend_loader
        self._lock = threading.Lock()
        self._graph: AudioGraph | None = None
        self._stream: OutputStreamHandle | None = None
        self._fallback_origin: float | None = None

    @property
    def graph(self) -> AudioGraph | None:
        graph = self._graph
        if graph is None or graph.closed:
            return None
        return graph

    @property
    def current_time(self) -> float:
        graph = self.graph
        if graph is not None:
            return graph.current_time
        if self._fallback_origin is None:
            self._fallback_origin = time.monotonic()
        return time.monotonic() - self._fallback_origin

    @property
    def audio_level(self) -> float:
        graph = self.graph
        return graph.audio_level if graph is not None else 0.0

    def ensure_ready(self) -> bool:
        """Create the graph and stream once, resume a stopped stream. False when audio is unavailable."""
        with self._lock:
            if self._graph is None:
                self._open()
            stream = self._stream
            if stream is None:
                return False
            if not stream.active:
                stream.start()
                _LOGGER.debug("Audio output resumed.")
            return True

    def _open(self) -> None:
        backend = self._backend_loader()
        if backend is None:
            _LOGGER.warning("No audio output backend available; playing silently.")
            return
        graph = AudioGraph(self._settings)
        try:
            stream = backend.open_stream(
                graph.render,
                self._settings.sample_rate,
                self._settings.block_size,
            )
        except Exception as exc:
            _LOGGER.warning("Opening %s output failed: %s", backend.name, exc, exc_info=True)
            graph.close()
            return
        self._graph = graph
        self._stream = stream
        _LOGGER.info("Audio output ready (%s, %d Hz).", backend.name, self._settings.sample_rate)

    def suspend(self) -> None:
        with self._lock:
            if self._stream is not None and self._stream.active:
                self._stream.stop()

    def close(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
            graph, self._graph = self._graph, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as exc:
                _LOGGER.warning("Closing audio output failed: %s", exc, exc_info=True)
        if graph is not None:
            graph.close()


class PlaybackController:
    """Start/stop, tempo and read-only observers for the UI layer."""

    def __init__(
        self,
        provider: ProviderSpec | None = None,
        *,
        settings: EngineSettings | None = None,
        runtime: AudioRuntime | None = None,
        synth: SynthTarget | None = None,
        rng: np.random.Generator | None = None,
        baseline: MasterDNA = BASELINE_DNA,
    ) -> None:
        self._settings = settings or EngineSettings.from_env()
        self._provider = resolve_provider(
            provider if provider is not None else self._settings.model,
            pattern_length=self._settings.pattern_length,
        )
        self._runtime = runtime or AudioRuntime(self._settings)
        self._active = False
        self._bpm = self._settings.clamp_bpm(self._settings.initial_bpm)
        self._cell = DnaCell(baseline)
        self._current_step = 0
        self._current_section: SectionName = "A"
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._cadence_task: asyncio.Task[None] | None = None
        self._scheduler = StepScheduler(
            dna_source=self._cell.get,
            tempo_source=lambda: self._bpm,
            synth=synth or GraphSynth(lambda: self._runtime.graph, rng=rng),
            settings=self._settings,
            rng=rng,
            dispatcher=self._dispatch_at_onset,
        )
        self._scheduler.add_observer(self._on_step)
        self._generation = GenerationController(
            self._provider,
            self._cell,
            is_active=lambda: self._active,
            settings=self._settings,
            baseline=baseline,
        )

    # -- observers -------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def bpm(self) -> float:
        return self._bpm

    @property
    def current_step(self) -> int:
        return self._current_step

    @property
    def current_section(self) -> SectionName:
        return self._current_section

    @property
    def active_dna(self) -> MasterDNA:
        return self._cell.get()

    @property
    def status(self) -> str:
        return self._generation.status

    @property
    def audio_level(self) -> float:
        return self._runtime.audio_level

    @property
    def seconds_until_recompose(self) -> float | None:
        return self._generation.seconds_until_recompose

    @property
    def runtime(self) -> AudioRuntime:
        return self._runtime

    @property
    def scheduler(self) -> StepScheduler:
        return self._scheduler

    @property
    def generation(self) -> GenerationController:
        return self._generation

    def add_step_observer(self, observer: StepObserver) -> None:
        self._scheduler.add_observer(observer)

    def remove_step_observer(self, observer: StepObserver) -> None:
        self._scheduler.remove_observer(observer)

    # -- control ---------------------------------------------------------

    def set_tempo(self, bpm: float) -> float:
        """Clamp and apply; the next unscheduled step uses the new tempo."""
        self._bpm = self._settings.clamp_bpm(bpm)
        return self._bpm

    def nudge_tempo(self, delta: float) -> float:
        return self.set_tempo(self._bpm + delta)

    async def start(self) -> None:
        if self._active:
            return
        self._runtime.ensure_ready()
        self._loop = asyncio.get_running_loop()
        self._active = True
        self._generation.begin_session()
        self._scheduler.reset(self._runtime.current_time)
        self._tick_task = asyncio.create_task(self._run_scheduler(), name="groovedna-scheduler")
        self._cadence_task = asyncio.create_task(
            self._generation.run_cadence(lambda: self._bpm),
            name="groovedna-cadence",
        )
        _LOGGER.info("Playback started at %.0f BPM.", self._bpm)

    async def stop(self) -> None:
        """Stop scheduling; sounds already handed to the graph play out."""
        if not self._active:
            return
        self._active = False
        tasks = [task for task in (self._tick_task, self._cadence_task) if task is not None]
        self._tick_task = None
        self._cadence_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        _LOGGER.info("Playback stopped at step %d.", self._scheduler.step)

    async def toggle(self) -> bool:
        if self._active:
            await self.stop()
        else:
            await self.start()
        return self._active

    async def aclose(self) -> None:
        await self.stop()
        await self._generation.cancel_pending()
        await close_provider(self._provider)
        self._runtime.close()

    async def __aenter__(self) -> "PlaybackController":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    # -- internals -------------------------------------------------------

    async def _run_scheduler(self) -> None:
        interval = self._settings.tick_interval
        while self._active:
            self._scheduler.advance(self._runtime.current_time)
            await asyncio.sleep(interval)

    def _dispatch_at_onset(self, event: StepEvent, deliver: StepObserver) -> None:
        loop = self._loop
        if loop is None:
            deliver(event)
            return
        delay = max(0.0, event.onset - self._runtime.current_time)
        loop.call_later(delay, deliver, event)

    def _on_step(self, event: StepEvent) -> None:
        self._current_step = event.step_index
        self._current_section = event.section


def render_offline(
    duration: float,
    *,
    dna: MasterDNA = BASELINE_DNA,
    bpm: float | None = None,
    settings: EngineSettings | None = None,
    rng: np.random.Generator | None = None,
    observers: list[StepObserver] | None = None,
) -> NDArray[np.float32]:
    """Drive scheduler and graph block by block without an output device."""
    engine_settings = settings or EngineSettings()
    tempo = engine_settings.clamp_bpm(bpm if bpm is not None else engine_settings.initial_bpm)
    generator = rng or np.random.default_rng()
    graph = AudioGraph(engine_settings, rng=generator)
    cell = DnaCell(dna)
    scheduler = StepScheduler(
        dna_source=cell.get,
        tempo_source=lambda: tempo,
        synth=GraphSynth(lambda: graph, rng=generator),
        settings=engine_settings,
        rng=generator,
    )
    for observer in observers or ():
        scheduler.add_observer(observer)
    scheduler.reset(graph.current_time)

    total = max(0, int(round(duration * engine_settings.sample_rate)))
    blocks: list[NDArray[np.float32]] = []
    rendered = 0
    while rendered < total:
        scheduler.advance(graph.current_time)
        frames = min(engine_settings.block_size, total - rendered)
        blocks.append(graph.render(frames))
        rendered += frames
    graph.close()
    if not blocks:
        return np.zeros(0, dtype=np.float32)
    return np.concatenate(blocks)
