"""
Customer model for the Deadlock Handling Simulator.

A customer stands in for a thread competing for exclusive resources.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from enum import Enum


class CustomerState(Enum):
    """Customer states in the simulation."""
    IDLE = "idle"
    RUNNING = "running"
    WAITING = "waiting"
    DEADLOCKED = "deadlocked"


@dataclass(frozen=True)
class CustomerSnapshot:
    """Read-only view of a customer handed to display collaborators."""
    id: str
    index: int
    name: str
    state: CustomerState
    holding: Tuple[str, ...]
    waiting: Optional[str]
    wait_ticks: int
    claim: Tuple[str, ...]


@dataclass
class Customer:
    """
    Represents a simulated concurrent actor.

    Attributes:
        index: Creation index (also the victim-selection key)
        name: Display name
        state: Current customer state
        holding: Resource ids currently owned, in acquisition order
        waiting: Resource id the customer is blocked on, if any
        wait_ticks: Ticks spent in WAITING or DEADLOCKED
        claim: Resource ids the customer may ever request under Banker's avoidance

    Invariant:
        WAITING/DEADLOCKED customers have a waiting target,
        IDLE customers hold nothing and wait on nothing.
    """
    index: int
    name: str
    state: CustomerState = CustomerState.IDLE
    holding: List[str] = field(default_factory=list)
    waiting: Optional[str] = None
    wait_ticks: int = 0
    claim: List[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        """Stable customer identifier ("C<index>")."""
        return f"C{self.index}"

    def is_active(self) -> bool:
        """True for customers taking part in allocation this tick."""
        return self.state in (CustomerState.RUNNING, CustomerState.WAITING)

    def is_blocked(self) -> bool:
        """True when the customer is waiting on a resource (deadlocked or not)."""
        return self.state in (CustomerState.WAITING, CustomerState.DEADLOCKED)

    def holds(self, resource_id: str) -> bool:
        return resource_id in self.holding

    def snapshot(self) -> CustomerSnapshot:
        return CustomerSnapshot(
            id=self.id,
            index=self.index,
            name=self.name,
            state=self.state,
            holding=tuple(self.holding),
            waiting=self.waiting,
            wait_ticks=self.wait_ticks,
            claim=tuple(self.claim),
        )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Customer(id={self.id}, state={self.state.value}, "
            f"holding={self.holding}, waiting={self.waiting})"
        )
