"""Generation cadence: when to ask the provider for new DNA and when to replay cached DNA."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from .dna import BASELINE_DNA, MasterDNA, merge_over_baseline
from .logging_utils import debug_enabled
from .providers import DnaProvider
from .settings import EngineSettings

_LOGGER = logging.getLogger("groovedna.generation")

STATUS_STANDBY = "STANDBY"
STATUS_CALCULATING = "CALCULATING..."
STATUS_RECALLING = "RECALLING..."
STATUS_FAILED = "THINKING_FAILED"
CACHED_SUFFIX = " (CACHED)"


class DnaCell:
    """Single shared DNA reference: one writer publishes whole values, readers just `get()`."""

    def __init__(self, initial: MasterDNA) -> None:
        self._value = initial
        self._version = 0
        self._lock = threading.Lock()

    def get(self) -> MasterDNA:
        return self._value

    @property
    def version(self) -> int:
        return self._version

    def publish(self, dna: MasterDNA) -> int:
        with self._lock:
            self._value = dna
            self._version += 1
            return self._version


@dataclass
class GenerationCache:
    """Recent generations for one tempo, replayed in rotation once full."""

    bpm: float
    max_samples: int = 3
    samples: list[MasterDNA] = field(default_factory=list)
    index: int = -1

    @property
    def is_full(self) -> bool:
        return len(self.samples) >= self.max_samples

    def reset(self, bpm: float) -> None:
        self.bpm = bpm
        self.samples = []
        self.index = -1

    def append(self, dna: MasterDNA) -> None:
        self.samples.append(dna)
        self.index = len(self.samples) - 1

    def next_sample(self) -> MasterDNA:
        if not self.samples:
            raise LookupError("generation cache is empty")
        self.index = (self.index + 1) % len(self.samples)
        return self.samples[self.index]


class GenerationController:
    """Owns the DNA request cadence and is the only writer of the DNA cell.

    Every playback session gets a number from `begin_session()`. A request
    only caches, publishes or updates the status while its own session is
    current and playback is active; anything else is discarded.
    """

    def __init__(
        self,
        provider: DnaProvider,
        cell: DnaCell,
        *,
        is_active: Callable[[], bool],
        settings: EngineSettings | None = None,
        baseline: MasterDNA = BASELINE_DNA,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._cell = cell
        self._is_active = is_active
        self._settings = settings or EngineSettings()
        self._baseline = baseline
        self._clock = clock
        self._cache = GenerationCache(
            bpm=self._settings.initial_bpm,
            max_samples=self._settings.cache_size,
        )
        self._status = STATUS_STANDBY
        self._session = 0
        self._in_flight: asyncio.Task[MasterDNA | None] | None = None
        self._in_flight_session = -1
        self._tasks: set[asyncio.Task[MasterDNA | None]] = set()
        self._next_recompose_at: float | None = None
        self._provider_calls = 0

    @property
    def status(self) -> str:
        return self._status

    @property
    def cache(self) -> GenerationCache:
        return self._cache

    @property
    def session(self) -> int:
        return self._session

    @property
    def provider_calls(self) -> int:
        return self._provider_calls

    @property
    def seconds_until_recompose(self) -> float | None:
        if self._next_recompose_at is None:
            return None
        return max(0.0, self._next_recompose_at - self._clock())

    def begin_session(self) -> int:
        self._session += 1
        return self._session

    def _is_current(self, session: int) -> bool:
        return session == self._session and self._is_active()

    async def request_dna(self, bpm: float) -> MasterDNA | None:
        """One cadence tick. Returns the published DNA, or None when nothing was published."""
        session = self._session
        if not self._is_current(session):
            return None
        if self._cache.bpm != bpm:
            _LOGGER.info(
                "Tempo changed (%.0f -> %.0f BPM); clearing generation cache.",
                self._cache.bpm,
                bpm,
            )
            self._cache.reset(bpm)
        previous = self._status
        if self._cache.is_full:
            return await self._recall(session, previous)
        return await self._generate(bpm, session, previous)

    def _discard(self, session: int, previous: str, reason: str) -> None:
        _LOGGER.info("Discarding DNA: %s.", reason)
        if session == self._session:
            self._status = previous

    async def _recall(self, session: int, previous: str) -> MasterDNA | None:
        dna = self._cache.next_sample()
        self._status = STATUS_RECALLING
        _LOGGER.info(
            "Recalling cached DNA %d/%d (%s).",
            self._cache.index + 1,
            len(self._cache.samples),
            dna.label,
        )
        await asyncio.sleep(self._settings.transition_delay)
        if not self._is_current(session):
            self._discard(session, previous, "playback stopped during recall")
            return None
        self._cell.publish(dna)
        self._status = f"{dna.label}{CACHED_SUFFIX}"
        return dna

    async def _generate(self, bpm: float, session: int, previous: str) -> MasterDNA | None:
        self._status = STATUS_CALCULATING
        self._provider_calls += 1
        try:
            payload = await self._provider.generate(bpm)
            dna = merge_over_baseline(self._baseline, payload)
        except Exception as exc:
            _LOGGER.warning("DNA generation failed: %s", exc, exc_info=debug_enabled())
            if session == self._session:
                self._status = STATUS_FAILED
            return None

        if not self._is_current(session):
            self._discard(session, previous, "it arrived after playback stopped")
            return None
        if self._cache.bpm == bpm:
            self._cache.append(dna)
        else:
            _LOGGER.debug("Tempo moved while generating; publishing without caching.")
        self._cell.publish(dna)
        self._status = dna.label
        _LOGGER.info("New DNA published: %s (%s).", dna.label, dna.scale)
        return dna

    async def run_cadence(self, bpm_source: Callable[[], float]) -> None:
        """Request immediately, then every recompose interval while playback is active."""
        interval = self._settings.recompose_interval
        try:
            while self._is_active():
                self._next_recompose_at = self._clock() + interval
                self._spawn_request(bpm_source())
                await asyncio.sleep(interval)
        finally:
            self._next_recompose_at = None

    def _spawn_request(self, bpm: float) -> None:
        in_flight = self._in_flight
        if (
            in_flight is not None
            and not in_flight.done()
            and self._in_flight_session == self._session
        ):
            _LOGGER.info("Previous DNA request still in flight; skipping this tick.")
            return
        task = asyncio.create_task(self.request_dna(bpm), name="groovedna-generate")
        task.add_done_callback(self._on_request_done)
        self._tasks.add(task)
        self._in_flight = task
        self._in_flight_session = self._session

    def _on_request_done(self, task: asyncio.Task[MasterDNA | None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.warning("DNA request task failed: %s", exc, exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait for the current session's request, if any."""
        task = self._in_flight
        if task is None or task.done():
            return
        await asyncio.wait({task})

    async def cancel_pending(self) -> None:
        """Cancel every outstanding request, including ones left over from earlier sessions."""
        tasks = [task for task in self._tasks if not task.done()]
        self._in_flight = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
