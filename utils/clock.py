"""
Simulation clock for the Deadlock Handling Simulator.

SimulationClock counts ticks and runs deferred actions when their tick
comes due. RealtimeTicker drives a tick callback from a wall-clock timer.
"""

import heapq
import itertools
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional


@dataclass(order=True)
class DeferredAction:
    """
    A callback scheduled for a future tick.

    Cancelled actions stay in the queue but are skipped when due.
    """
    due_tick: int
    sequence: int
    label: str = field(compare=False)
    callback: Callable[[], None] = field(compare=False, repr=False)
    cancelled: bool = field(default=False, compare=False)
    fired: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)


class SimulationClock:
    """Discrete tick counter with cancelable deferred actions."""

    def __init__(self):
        self.tick = 0
        self._queue: List[DeferredAction] = []
        self._sequence = itertools.count()

    def advance(self) -> int:
        """Move to the next tick and return it."""
        self.tick += 1
        return self.tick

    def schedule(self, delay_ticks: int, callback: Callable[[], None], label: str = "") -> DeferredAction:
        """
        Schedule a callback delay_ticks after the current tick.

        A delay of 0 makes the action due on the next run_due() call.
        """
        if delay_ticks < 0:
            raise ValueError("delay_ticks cannot be negative")
        action = DeferredAction(self.tick + delay_ticks, next(self._sequence), label, callback)
        heapq.heappush(self._queue, action)
        return action

    def run_due(self) -> List[DeferredAction]:
        """
        Fire every pending action due at or before the current tick.

        Returns:
            The actions that fired, in due order
        """
        fired = []
        while self._queue and self._queue[0].due_tick <= self.tick:
            action = heapq.heappop(self._queue)
            if action.cancelled:
                continue
            action.fired = True
            action.callback()
            fired.append(action)
        return fired

    def pending(self) -> List[DeferredAction]:
        return sorted(a for a in self._queue if a.pending)

    def cancel_all(self) -> int:
        """Cancel and drop every pending action. Returns how many were dropped."""
        dropped = 0
        for action in self._queue:
            if action.pending:
                action.cancel()
                dropped += 1
        self._queue.clear()
        return dropped

    def reset(self) -> None:
        self.cancel_all()
        self.tick = 0


class RealtimeTicker:
    """
    Calls a tick function every `interval` seconds on a timer thread.

    The next timer is armed only after the current tick returns, so ticks
    never overlap. stop() cancels the armed timer.
    """

    def __init__(self, interval: float, on_tick: Callable[[], None],
                 on_error: Optional[Callable[[BaseException], None]] = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.on_tick = on_tick
        self.on_error = on_error
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._arm()

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _arm(self) -> None:
        self._timer = threading.Timer(self.interval, self._fire)
        self._timer.daemon = True
        self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            if not self._running:
                return
        try:
            self.on_tick()
        except Exception as e:
            self.stop()
            if self.on_error is None:
                raise
            self.on_error(e)
            return
        with self._lock:
            if self._running:
                self._arm()
