"""Probe scheduler — runs every check at its interval, forever.

One asyncio timer task per check fires on interval boundaries. Probes run in
a thread pool so a slow target never holds up the event loop or another
check's timer, and store writes go through one writer thread so a locked
database cannot stall the loop. A check never overlaps itself: a tick that
finds the previous probe still running is skipped, not queued.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any

from probewatch.health.models import ErrorKind, Failure, Observation, Outcome
from probewatch.health.probes import PROBES, ProbeFn, run_probe
from probewatch.health.store import ResultStore, StoreError
from probewatch.registry import Check, CheckKind, CheckRegistry

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class CheckRunState:
    """Mutable scheduling state for one check. Owned by the scheduler."""

    check: Check
    state: RunState = RunState.IDLE
    runs: int = 0
    skipped_ticks: int = 0
    store_failures: int = 0
    last_started: float | None = None
    last_finished: float | None = None
    last_outcome: Outcome | None = None
    timer: asyncio.Task[None] | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        outcome = self.last_outcome
        return {
            "state": self.state.value,
            "runs": self.runs,
            "skipped_ticks": self.skipped_ticks,
            "store_failures": self.store_failures,
            "last_started": self.last_started,
            "last_finished": self.last_finished,
            "last_ok": None if outcome is None else not isinstance(outcome, Failure),
        }


class ProbeScheduler:
    """Schedules and executes probes for every check in the registry."""

    def __init__(
        self,
        registry: CheckRegistry,
        store: ResultStore,
        max_workers: int = 0,
        probes: dict[CheckKind, ProbeFn] | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self._probes = {**PROBES, **(probes or {})}
        # room for one live probe per check plus one abandoned after a timeout
        self._max_workers = max_workers or max(4, 2 * len(registry))
        self._executor: ThreadPoolExecutor | None = None
        # single writer thread keeps SQLite busy-waits off the event loop
        self._writer: ThreadPoolExecutor | None = None
        self._states: dict[str, CheckRunState] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self._running = False

    async def start(self) -> None:
        """Start one timer per check."""
        if self._running:
            return
        self._running = True
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="probe",
        )
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store-writer")

        if not self.registry.checks:
            logger.info("No checks configured — scheduler idle")
            return

        for check in self.registry:
            state = CheckRunState(check=check)
            state.timer = asyncio.create_task(self._tick_loop(state), name=f"timer-{check.name}")
            self._states[check.name] = state

        logger.info(
            "Probe scheduler started: %d checks, %d workers",
            len(self._states), self._max_workers,
        )

    async def stop(self) -> None:
        """Cancel timers and in-flight probes, release the pool, drain the writer."""
        self._running = False
        tasks = [s.timer for s in self._states.values() if s.timer] + list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for state in self._states.values():
            state.timer = None
        self._inflight.clear()
        if self._executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        if self._writer:
            # let a write already under way finish before the store is closed
            writer, self._writer = self._writer, None
            await asyncio.get_running_loop().run_in_executor(
                None, partial(writer.shutdown, wait=True, cancel_futures=True),
            )
        logger.info("Probe scheduler stopped")

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Current run state per check name."""
        return {name: s.to_dict() for name, s in self._states.items()}

    # ── Timers ───────────────────────────────────────────────────────────

    async def _tick_loop(self, state: CheckRunState) -> None:
        """Fire on ``start + k * interval``; boundaries missed by a stall are dropped."""
        loop = asyncio.get_running_loop()
        interval = state.check.interval
        next_tick = loop.time()
        while self._running:
            self._on_tick(state)
            next_tick += interval
            now = loop.time()
            if next_tick < now:
                next_tick += ((now - next_tick) // interval + 1) * interval
            await asyncio.sleep(next_tick - now)

    def _on_tick(self, state: CheckRunState) -> None:
        if state.state is RunState.RUNNING:
            state.skipped_ticks += 1
            logger.debug("Tick skipped for %s: previous probe still running", state.check)
            return
        state.state = RunState.RUNNING
        state.last_started = time.time()
        task = asyncio.create_task(self._run_once(state), name=f"probe-{state.check.name}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    # ── Execution ────────────────────────────────────────────────────────

    async def _run_once(self, state: CheckRunState) -> None:
        check = state.check
        try:
            outcome = await self._probe(check)
            obs = Observation(check_name=check.name, kind=check.kind, outcome=outcome)
            state.last_outcome = outcome
            state.runs += 1
            try:
                await asyncio.get_running_loop().run_in_executor(self._writer, self.store.append, obs)
            except StoreError:
                state.store_failures += 1
                logger.exception("Dropping observation for %s", check)
            logger.debug("Check %s: %s", check, obs.to_dict())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Probe run error: %s", check)
        finally:
            state.last_finished = time.time()
            state.state = RunState.IDLE

    async def _probe(self, check: Check) -> Outcome:
        """Run the probe in the pool, abandoning it once the timeout expires."""
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, partial(run_probe, check, self._probes))
        try:
            return await asyncio.wait_for(future, timeout=check.timeout)
        except asyncio.TimeoutError:
            return Failure(ErrorKind.TIMEOUT, f"Probe exceeded {check.timeout:g}s timeout")
        except Exception as e:
            return Failure(_error_kind_for(check), f"Probe crashed: {type(e).__name__}: {e}")


def _error_kind_for(check: Check) -> ErrorKind:
    return ErrorKind.PROTOCOL if check.kind is CheckKind.HTTP else ErrorKind.UNREACHABLE
