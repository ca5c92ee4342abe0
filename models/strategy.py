"""
Deadlock-handling strategy flags for the Deadlock Handling Simulator.
"""

from dataclasses import dataclass
from enum import Enum


class Strategy(Enum):
    """Independently toggleable deadlock-handling strategies."""
    PREVENTION = "prevention"
    AVOIDANCE = "avoidance"
    DETECTION = "detection"


class AllocationMode(Enum):
    """Effective allocation discipline for a tick."""
    PREVENTION = "prevention"
    AVOIDANCE = "avoidance"
    OPPORTUNISTIC = "opportunistic"


@dataclass
class StrategyFlags:
    """
    Strategy toggles as exposed on the control surface.

    Prevention and avoidance can both be on; prevention then decides
    allocation on its own because resource ordering already rules out
    circular wait.

    safety_check names the avoidance oracle ("bankers" or "capacity");
    only Banker's keeps the wait-for graph acyclic.
    """
    prevention: bool = False
    avoidance: bool = False
    detection: bool = True
    safety_check: str = "bankers"

    def set(self, kind: Strategy, enabled: bool) -> None:
        setattr(self, kind.value, bool(enabled))

    def is_enabled(self, kind: Strategy) -> bool:
        return getattr(self, kind.value)

    @property
    def allocation_mode(self) -> AllocationMode:
        if self.prevention:
            return AllocationMode.PREVENTION
        if self.avoidance:
            return AllocationMode.AVOIDANCE
        return AllocationMode.OPPORTUNISTIC

    @property
    def cycles_possible(self) -> bool:
        """False when prevention or Banker's avoidance keeps the wait-for graph acyclic."""
        if self.prevention:
            return False
        if self.avoidance:
            return self.safety_check != "bankers"
        return True

    def copy(self) -> "StrategyFlags":
        return StrategyFlags(self.prevention, self.avoidance, self.detection, self.safety_check)


def parse_strategy(kind) -> Strategy:
    """
    Accept a Strategy or its name.

    Raises:
        ValueError: For unknown strategy names
    """
    if isinstance(kind, Strategy):
        return kind
    try:
        return Strategy(str(kind).lower())
    except ValueError:
        valid = ", ".join(s.value for s in Strategy)
        raise ValueError(f"Unknown strategy '{kind}' (expected one of: {valid})")
