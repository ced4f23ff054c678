"""In-memory per-identity, per-tier window request counter.

State is a cache for abuse detection, not a source of truth: it is never
persisted and is lost on restart. Counters are per process, so with several
instances behind a balancer the effective budget is per instance.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from ipgate.core.logging import get_logger
from ipgate.services.tiers import Tier, TierPolicy

logger = get_logger(__name__)

Clock = Callable[[], float]


@dataclass
class WindowState:
    """Request count of one (identity, tier) in the window starting at `window_start`."""

    count: int
    window_start: float


@dataclass(frozen=True)
class Admission:
    """Outcome of one `WindowCounter.admit` call."""

    allowed: bool
    count_in_window: int
    threshold_crossed: bool
    retry_after: float


class WindowCounter:
    """
    Fixed-window counter keyed by `(identity, tier)`.

    Args:
        policy: Tier limits.
        clock: Monotonic time source in seconds.
        sweep_interval: Seconds between background sweeps.
        grace_multiplier: Entries idle for longer than `grace_multiplier * window`
            are removed by `sweep`.
    """

    def __init__(
        self,
        policy: TierPolicy,
        clock: Clock | None = None,
        sweep_interval: float = 30.0,
        grace_multiplier: float = 10.0,
    ) -> None:
        self._policy = policy
        self._clock = clock or time.monotonic
        self._sweep_interval = sweep_interval
        self._grace_multiplier = grace_multiplier
        self._states: dict[tuple[str, Tier], WindowState] = {}
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def policy(self) -> TierPolicy:
        return self._policy

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def admit(self, identity: str, tier: Tier) -> Admission:
        """
        Count one request and decide whether it fits the tier budget.

        The request that first exceeds the budget reports `threshold_crossed=True`;
        later over-budget requests in the same window are denied without it.
        """
        limit = self._policy.limit_for(tier)
        now = self._clock()
        key = (identity, tier)

        with self._lock:
            state = self._states.get(key)
            if state is None or now - state.window_start >= limit.window_seconds:
                self._states[key] = WindowState(count=1, window_start=now)
                return Admission(
                    allowed=True,
                    count_in_window=1,
                    threshold_crossed=False,
                    retry_after=limit.window_seconds,
                )

            state.count += 1
            count = state.count
            retry_after = max(0.0, state.window_start + limit.window_seconds - now)

        if count > limit.budget:
            return Admission(
                allowed=False,
                count_in_window=count,
                threshold_crossed=count == limit.budget + 1,
                retry_after=retry_after,
            )
        return Admission(
            allowed=True,
            count_in_window=count,
            threshold_crossed=False,
            retry_after=retry_after,
        )

    def sweep(self, now: float | None = None) -> int:
        """Remove stale entries and return how many were dropped."""
        if now is None:
            now = self._clock()
        with self._lock:
            stale = [
                key
                for key, state in self._states.items()
                if now - state.window_start
                > self._policy.limit_for(key[1]).window_seconds * self._grace_multiplier
            ]
            for key in stale:
                del self._states[key]
        if stale:
            logger.debug("window_sweep", removed=len(stale), remaining=len(self))
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._states.clear()

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self.running:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()
