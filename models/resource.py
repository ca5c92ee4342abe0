"""
Resource model for the Deadlock Handling Simulator.

Represents an exclusively lockable resource (a mutex when max_instances == 1).
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class ResourceSnapshot:
    """Read-only view of a resource handed to display collaborators."""
    id: str
    index: int
    name: str
    max_instances: int
    current_instances: int
    owner: Optional[str]
    holders: Tuple[str, ...]
    wait_queue: Tuple[str, ...]

    @property
    def available(self) -> bool:
        return self.current_instances < self.max_instances


@dataclass
class Resource:
    """
    Represents a resource in the simulation.

    The creation index doubles as the resource's position in the global
    acquisition order used by the prevention strategy.

    Attributes:
        index: Creation index / global order value
        name: Display name
        max_instances: Capacity (1 for a classical mutex)
        holders: Customer ids currently holding an instance
        wait_queue: Customer ids blocked on this resource, in arrival order

    Invariant:
        len(holders) <= max_instances
        A free resource has an empty wait queue.
    """
    index: int
    name: str
    max_instances: int = 1
    holders: List[str] = field(default_factory=list)
    wait_queue: List[str] = field(default_factory=list)

    def __post_init__(self):
        """Validate resource state."""
        if self.max_instances < 1:
            raise ValueError(f"Resource {self.id}: max_instances must be at least 1")
        if len(self.holders) > self.max_instances:
            raise ValueError(
                f"Resource {self.id}: {len(self.holders)} holders "
                f"exceeds capacity ({self.max_instances})"
            )

    @property
    def id(self) -> str:
        """Stable resource identifier ("R<index>")."""
        return f"R{self.index}"

    @property
    def current_instances(self) -> int:
        """Number of instances currently held."""
        return len(self.holders)

    @property
    def available_instances(self) -> int:
        return self.max_instances - len(self.holders)

    @property
    def owner(self) -> Optional[str]:
        """Holding customer for a single-instance resource, else None."""
        if self.max_instances == 1 and self.holders:
            return self.holders[0]
        return None

    def is_available(self) -> bool:
        """True if at least one instance is free."""
        return len(self.holders) < self.max_instances

    def is_free(self) -> bool:
        """True if no instance is held at all."""
        return not self.holders

    def snapshot(self) -> ResourceSnapshot:
        return ResourceSnapshot(
            id=self.id,
            index=self.index,
            name=self.name,
            max_instances=self.max_instances,
            current_instances=self.current_instances,
            owner=self.owner,
            holders=tuple(self.holders),
            wait_queue=tuple(self.wait_queue),
        )
