"""
Stroop Trainer — Timer Services
Clock plus schedule/cancel capability injected into the session state machine.

    timer = ThreadingTimerService()        # real time, callbacks on timer threads
    timer = VirtualTimerService()          # tests: nothing fires until advance()

    handle = timer.schedule(5000, on_timeout)
    timer.cancel(handle)
"""

import heapq
# Imports heapq for the virtual service's due-time queue

import itertools
import threading
# Imports threading for real-time callbacks (threading.Timer) and the registry lock

import time
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger


class TimerHandle:
    """Opaque token returned by schedule(); pass it back to cancel()."""

    __slots__ = ('id', 'due_ms', 'cancelled')

    def __init__(self, handle_id: int, due_ms: float):
        self.id = handle_id
        self.due_ms = due_ms
        self.cancelled = False

    def __repr__(self) -> str:
        return f'TimerHandle(id={self.id}, due_ms={self.due_ms:.1f}, cancelled={self.cancelled})'


class TimerService:
    """Interface: a monotonic clock in milliseconds and one-shot callbacks."""

    def now(self) -> float:
        raise NotImplementedError

    def schedule(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        raise NotImplementedError


class ThreadingTimerService(TimerService):
    """Real-time service backed by threading.Timer (used by the Flask app)."""

    def __init__(self):
        self._ids = itertools.count(1)
        self._timers: Dict[int, threading.Timer] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return time.monotonic() * 1000.0
        # Monotonic, so wall-clock adjustments never stretch or shrink a round

    def schedule(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(next(self._ids), self.now() + max(0.0, delay_ms))

        def fire():
            with self._lock:
                self._timers.pop(handle.id, None)
            if not handle.cancelled:
                callback()
                # A cancel that races this check is caught by the caller's own staleness guard

        timer = threading.Timer(max(0.0, delay_ms) / 1000.0, fire)
        timer.daemon = True
        # Daemon threads never keep the server process alive

        with self._lock:
            self._timers[handle.id] = timer
        timer.start()
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is None:
            return
        handle.cancelled = True
        with self._lock:
            timer = self._timers.pop(handle.id, None)
        if timer is not None:
            timer.cancel()
            # Stops the thread if it has not fired yet


class VirtualTimerService(TimerService):
    """
    Manually advanced clock for deterministic tests and replays.

    Callbacks fire only inside advance(), in due-time order, with now()
    set to each callback's due time while it runs.
    """

    def __init__(self, start_ms: float = 0.0):
        self._now = float(start_ms)
        self._ids = itertools.count(1)
        self._queue: List[Tuple[float, int, TimerHandle, Callable[[], None]]] = []

    def now(self) -> float:
        return self._now

    def schedule(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(next(self._ids), self._now + max(0.0, delay_ms))
        heapq.heappush(self._queue, (handle.due_ms, handle.id, handle, callback))
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancelled = True

    @property
    def pending(self) -> int:
        """Number of scheduled callbacks that have neither fired nor been cancelled."""
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def advance(self, delta_ms: float) -> int:
        """Move the clock forward, firing every callback that falls due. Returns the count fired."""
        target = self._now + max(0.0, delta_ms)
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due_ms, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
                # Cancelled entries are dropped lazily as they reach the front

            self._now = max(self._now, due_ms)
            # The callback sees now() == its due time
            callback()
            fired += 1
            # Callbacks may schedule new ones; the loop picks them up if they fall due
        self._now = target
        if fired:
            logger.trace('virtual clock advanced to {}ms, fired {} callback(s)', self._now, fired)
        return fired
