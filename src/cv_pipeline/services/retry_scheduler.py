"""Delayed sync attempts.

Attempts are entries in an in-process queue ordered by due time. A worker
task started with :meth:`RetryScheduler.start` sleeps until the earliest entry
is due and hands it to the registered handler; callers that schedule an entry
never wait for it. Tests drive the queue with :class:`ManualClock` and
:meth:`RetryScheduler.run_due` instead of the worker.
"""

import asyncio
import heapq
import itertools
import logging
import random
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class Clock(ABC):
    @abstractmethod
    def now(self) -> float:
        """Seconds on a monotonic scale."""
        ...


class MonotonicClock(Clock):
    def now(self) -> float:
        return time.monotonic()


class ManualClock(Clock):
    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    jitter_ms: int = 0

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Seconds to wait after failed attempt ``attempt`` (1-indexed)."""
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        delay_ms = self.base_delay_ms * 2 ** (attempt - 1)
        if self.jitter_ms:
            delay_ms += (rng or random).uniform(0, self.jitter_ms)
        return delay_ms / 1000

    def can_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


@dataclass(order=True, frozen=True)
class ScheduledAttempt:
    due_at: float
    seq: int
    cv_history_id: uuid.UUID = field(compare=False)
    expected_version: int = field(compare=False)


AttemptHandler = Callable[[ScheduledAttempt], Awaitable[None]]


class RetryScheduler:
    def __init__(
        self,
        policy: RetryPolicy,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy
        self.clock = clock or MonotonicClock()
        self._rng = rng or random.Random()
        self._queue: list[ScheduledAttempt] = []
        # Live entry per record; heap entries not in here were superseded
        self._entries: dict[uuid.UUID, ScheduledAttempt] = {}
        self._seq = itertools.count()
        self._handler: AttemptHandler | None = None
        self._wakeup = asyncio.Event()
        self._worker: asyncio.Task | None = None
        self._running: set[asyncio.Task] = set()

    def set_handler(self, handler: AttemptHandler) -> None:
        self._handler = handler

    def outstanding(self, cv_history_id: uuid.UUID) -> bool:
        return cv_history_id in self._entries

    def pending(self) -> list[ScheduledAttempt]:
        return sorted(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def schedule(self, cv_history_id: uuid.UUID, expected_version: int, delay: float) -> bool:
        """Queue an attempt ``delay`` seconds from now.

        A queued entry carrying an older version is replaced. Returns False
        when an attempt for the same or a newer version is already queued.
        """
        queued = self._entries.get(cv_history_id)
        if queued is not None:
            if queued.expected_version >= expected_version:
                logger.debug("Attempt for CV %s already queued", cv_history_id)
                return False
            logger.debug(
                "Replacing queued attempt for CV %s (version %d -> %d)",
                cv_history_id,
                queued.expected_version,
                expected_version,
            )
        entry = ScheduledAttempt(
            due_at=self.clock.now() + delay,
            seq=next(self._seq),
            cv_history_id=cv_history_id,
            expected_version=expected_version,
        )
        heapq.heappush(self._queue, entry)
        self._entries[cv_history_id] = entry
        self._wakeup.set()
        return True

    def schedule_retry(
        self, cv_history_id: uuid.UUID, expected_version: int, attempt: int
    ) -> float | None:
        """Apply the backoff policy after failed attempt ``attempt``.

        Returns the chosen delay in seconds, or None when no attempt budget is
        left or an attempt is already queued.
        """
        if not self.policy.can_retry(attempt):
            return None
        delay = self.policy.delay_for(attempt, self._rng)
        if not self.schedule(cv_history_id, expected_version, delay):
            return None
        return delay

    def _pop_due(self) -> list[ScheduledAttempt]:
        now = self.clock.now()
        due = []
        while self._queue and self._queue[0].due_at <= now:
            entry = heapq.heappop(self._queue)
            if self._entries.get(entry.cv_history_id) is not entry:
                continue
            del self._entries[entry.cv_history_id]
            due.append(entry)
        return due

    async def run_due(self) -> int:
        """Run every entry that is due and wait for all of them to finish."""
        if self._handler is None:
            raise RuntimeError("No attempt handler registered")
        due = self._pop_due()
        if due:
            await asyncio.gather(*(self._handler(entry) for entry in due))
        return len(due)

    def _spawn(self, entry: ScheduledAttempt) -> None:
        assert self._handler is not None
        task = asyncio.create_task(self._handler(entry))
        self._running.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Sync attempt task crashed", exc_info=task.exception())

    async def _run(self) -> None:
        while True:
            for entry in self._pop_due():
                self._spawn(entry)
            self._wakeup.clear()
            timeout = None
            if self._queue:
                timeout = max(self._queue[0].due_at - self.clock.now(), 0)
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except TimeoutError:
                pass

    def start(self) -> None:
        if self._handler is None:
            raise RuntimeError("No attempt handler registered")
        if self._worker is None or self._worker.done():
            self._wakeup = asyncio.Event()
            if self._queue:
                self._wakeup.set()
            self._worker = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
