"""
Deadlock Recovery Algorithm for the Deadlock Handling Simulator.

Breaks a detected cycle by preempting every resource of one victim.
The victim itself keeps running: this models a forced mutex unlock, not
a process kill.
"""

from typing import List, Sequence

from analysis.events import EventType, SimulationEvent
from models.customer import CustomerState
from models.system_state import SystemState


def select_victim(cycle_nodes: Sequence[str], system_state: SystemState) -> str:
    """
    Select the customer whose resources are preempted.

    Policy: lowest customer index among the cycle members.

    Args:
        cycle_nodes: Customer ids in the cycle
        system_state: Current system state

    Returns:
        Id of the selected victim

    Raises:
        ValueError: If the cycle is empty
    """
    if not cycle_nodes:
        raise ValueError("Cannot select a victim from an empty cycle")
    return min(cycle_nodes, key=lambda cid: system_state.customer(cid).index)


def preempt_victim(victim_id: str, system_state: SystemState) -> List[str]:
    """
    Force-release everything a victim holds.

    Resource preemption:
    - Drop the victim's wait pointer and wait-queue membership
    - Release every held resource (waking whoever queued on it)
    - Set the victim back to RUNNING

    Args:
        victim_id: Customer to preempt
        system_state: Current system state

    Returns:
        Ids of the resources taken from the victim
    """
    victim = system_state.customer(victim_id)

    system_state.clear_wait(victim_id)
    preempted = list(victim.holding)
    for resource_id in preempted:
        system_state.release(resource_id, victim_id)

    victim.state = CustomerState.RUNNING
    system_state.refresh_matrices()
    return preempted


def recover_from_deadlock(
    cycle_nodes: Sequence[str],
    system_state: SystemState,
    tick: int
) -> List[SimulationEvent]:
    """
    Recover from a deadlock by preempting the victim's resources.

    Cycle members other than the victim go back to WAITING if their target
    is still held, or were already woken to RUNNING by the release.

    Args:
        cycle_nodes: Customer ids in the cycle
        system_state: Current system state
        tick: Current tick (stamped on the events)

    Returns:
        One recovery event per forced release
    """
    victim_id = select_victim(cycle_nodes, system_state)
    victim = system_state.customer(victim_id)
    preempted = preempt_victim(victim_id, system_state)

    for member_id in cycle_nodes:
        member = system_state.customer(member_id)
        if member.state == CustomerState.DEADLOCKED:
            member.state = CustomerState.WAITING

    # SANITY CHECK: holds/waits symmetry after preemption
    system_state.assert_invariants(f"after preempting {victim_id}")

    events = []
    for resource_id in preempted:
        resource = system_state.resource(resource_id)
        events.append(SimulationEvent(
            tick=tick,
            event_type=EventType.RECOVERY,
            message=f"Recovery: preempted {resource.name} from {victim.name}",
            customer_id=victim_id,
            resource_id=resource_id,
        ))
    if not events:
        events.append(SimulationEvent(
            tick=tick,
            event_type=EventType.RECOVERY,
            message=f"Recovery: {victim.name} held nothing to preempt",
            customer_id=victim_id,
        ))
    return events
