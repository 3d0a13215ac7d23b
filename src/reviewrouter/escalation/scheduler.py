"""Periodic escalation sweeps.

EscalationScheduler runs ``EscalationProcessor.run`` on a fixed interval
in a background task. Stopping the scheduler sets a stop event that the
running sweep checks between assignments, so shutdown never interrupts an
assignment mid-transition.
"""

from __future__ import annotations

import asyncio

import structlog

from reviewrouter.escalation.processor import EscalationProcessor, EscalationStats

logger = structlog.get_logger(__name__)


class EscalationScheduler:
    """Background loop that sweeps stale assignments periodically.

    Attributes:
        processor: Processor that performs each sweep.
        interval_seconds: Delay between the end of one sweep and the next.
        last_stats: Stats of the most recent completed sweep.
        sweeps: Number of completed sweeps.
    """

    def __init__(self, processor: EscalationProcessor, interval_seconds: float) -> None:
        self.processor = processor
        self.interval_seconds = interval_seconds
        self.last_stats: EscalationStats | None = None
        self.sweeps = 0
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._logger = logger.bind(component="escalation_scheduler")

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep loop. No-op if already running."""
        if self._running:
            self._logger.warning("scheduler_already_running")
            return

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._sweep_loop())
        self._logger.info("scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the loop, letting an in-flight sweep finish its current assignment."""
        if not self._running:
            self._logger.warning("scheduler_not_running")
            return

        self._running = False
        self._stop_event.set()

        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._logger.info("scheduler_stopped", sweeps=self.sweeps)

    async def wait(self) -> None:
        """Block until the loop exits."""
        if self._task is not None:
            await self._task

    async def run_once(self) -> EscalationStats:
        """Run a single sweep immediately."""
        stats = await self.processor.run(stop_event=self._stop_event)
        self.last_stats = stats
        self.sweeps += 1
        return stats

    async def _sweep_loop(self) -> None:
        self._logger.info("scheduler_loop_started")

        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                self._logger.info("scheduler_loop_cancelled")
                break
            except Exception as e:
                self._logger.error("scheduler_loop_error", error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), self.interval_seconds)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                self._logger.info("scheduler_loop_cancelled")
                break
