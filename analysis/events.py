"""
Event Model for the Deadlock Handling Simulator.

Defines event types for tracking simulation transitions and the bounded
log they are kept in.
"""

from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Deque, List, Optional


class EventType(Enum):
    """Types of events in the simulation."""
    REQUEST = "request"
    ALLOCATE = "allocate"
    BLOCK = "block"
    RELEASE = "release"
    DEADLOCK = "deadlock"
    RECOVERY = "recovery"
    PREVENTION = "prevention"
    AVOIDANCE = "avoidance"


EVENT_LABELS = {
    EventType.REQUEST: "Resource Request",
    EventType.ALLOCATE: "Resource Allocated",
    EventType.BLOCK: "Blocking Event",
    EventType.RELEASE: "Resource Released",
    EventType.DEADLOCK: "Deadlock Detected",
    EventType.RECOVERY: "Recovery Action",
    EventType.PREVENTION: "Prevention Decision",
    EventType.AVOIDANCE: "Avoidance Decision",
}


@dataclass(frozen=True)
class SimulationEvent:
    """
    Represents a single event in the simulation.

    Attributes:
        tick: Simulation tick when event occurred
        event_type: Type of event
        message: Human-readable description
        customer_id: Customer involved (if applicable)
        resource_id: Resource involved (if applicable)
        granted: Outcome of a prevention/avoidance decision (if applicable)
        event_id: Position in the global event sequence, assigned by EventLog
    """
    tick: int
    event_type: EventType
    message: str = ""
    customer_id: Optional[str] = None
    resource_id: Optional[str] = None
    granted: Optional[bool] = None
    event_id: int = -1

    @property
    def label(self) -> str:
        return EVENT_LABELS[self.event_type]

    def __str__(self) -> str:
        """Format event for logging."""
        return f"Tick {self.tick} #{self.event_id} [{self.event_type.value}] {self.message}"


class EventLog:
    """
    Append-only log with ring-buffer retention.

    Events get increasing ids as they are added; once max_entries is reached
    the oldest event is dropped for every new one.
    """

    def __init__(self, max_entries: int = 200):
        if max_entries < 1:
            raise ValueError("EventLog max_entries must be at least 1")
        self.max_entries = max_entries
        self._events: Deque[SimulationEvent] = deque(maxlen=max_entries)
        self._next_id = 0

    @property
    def total_recorded(self) -> int:
        """Number of events ever added, including evicted ones."""
        return self._next_id

    def add(self, event: SimulationEvent) -> SimulationEvent:
        """Add an event to the log and return it with its id assigned."""
        stored = replace(event, event_id=self._next_id)
        self._next_id += 1
        self._events.append(stored)
        return stored

    def extend(self, events: List[SimulationEvent]) -> List[SimulationEvent]:
        return [self.add(event) for event in events]

    def clear(self) -> None:
        self._events.clear()
        self._next_id = 0

    @property
    def events(self) -> List[SimulationEvent]:
        """Retained events, oldest first."""
        return list(self._events)

    def recent(self, limit: Optional[int] = None) -> List[SimulationEvent]:
        """Retained events, newest first."""
        newest_first = list(reversed(self._events))
        if limit is not None:
            return newest_first[:limit]
        return newest_first

    def get_events_by_type(self, event_type: EventType) -> list:
        """Get all retained events of a specific type."""
        return [e for e in self._events if e.event_type == event_type]

    def get_events_by_tick(self, tick: int) -> list:
        """Get all retained events from a specific tick."""
        return [e for e in self._events if e.tick == tick]

    def display(self) -> str:
        """Format all retained events for display."""
        return "\n".join(str(event) for event in self._events)

    def __len__(self) -> int:
        return len(self._events)
