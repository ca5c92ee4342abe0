"""
Simulation status state machine for the Deadlock Handling Simulator.

The status is the authoritative system-wide summary read by every display
collaborator. Only the tick driver writes it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple


class SimulationStatus(Enum):
    """System-wide simulation condition."""
    IDLE = "idle"
    RUNNING = "running"
    DEADLOCK = "deadlock"
    RECOVERY = "recovery"


# IDLE is never a target here; only halt() reaches it.
ALLOWED_TRANSITIONS = {
    SimulationStatus.IDLE: {SimulationStatus.RUNNING, SimulationStatus.DEADLOCK},
    SimulationStatus.RUNNING: {SimulationStatus.DEADLOCK},
    SimulationStatus.DEADLOCK: {SimulationStatus.RECOVERY},
    SimulationStatus.RECOVERY: {SimulationStatus.RUNNING},
}


@dataclass
class StatusMachine:
    """
    Tracks the current status and every transition taken.

    Attributes:
        status: Current status
        history: (tick, from, to) for each transition, oldest first
    """
    status: SimulationStatus = SimulationStatus.IDLE
    history: List[Tuple[int, SimulationStatus, SimulationStatus]] = field(default_factory=list)

    def can_transition(self, target: SimulationStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition(self, target: SimulationStatus, tick: int) -> bool:
        """
        Move to a new status.

        Staying in the current status is a no-op (a stuck deadlock stays a
        deadlock tick after tick).

        Args:
            target: Status to move to
            tick: Tick the transition happens on

        Returns:
            True if the status changed

        Raises:
            ValueError: If the transition is not allowed
        """
        if target == self.status:
            return False
        if not self.can_transition(target):
            raise ValueError(
                f"Illegal status transition {self.status.value} -> {target.value}"
            )
        self.history.append((tick, self.status, target))
        self.status = target
        return True

    def halt(self, tick: int) -> bool:
        """Force IDLE. Used by explicit stop and reset only."""
        if self.status == SimulationStatus.IDLE:
            return False
        self.history.append((tick, self.status, SimulationStatus.IDLE))
        self.status = SimulationStatus.IDLE
        return True
