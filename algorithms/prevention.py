"""
Deadlock Prevention (resource ordering) for the Deadlock Handling Simulator.

Every resource has a fixed position in a global total order (its creation
index). A customer may only acquire resources above everything it already
holds, which makes circular wait impossible.
"""

from typing import Iterable, List

from models.system_state import SystemState


def highest_held_order(system_state: SystemState, customer_id: str) -> int:
    """
    Order value of the highest resource a customer holds.

    Returns:
        Highest held index, or -1 when the customer holds nothing
    """
    customer = system_state.customer(customer_id)
    if not customer.holding:
        return -1
    return max(system_state.resource(rid).index for rid in customer.holding)


def is_order_admissible(system_state: SystemState, customer_id: str, resource_id: str) -> bool:
    """
    Check whether acquiring a resource keeps the customer inside the global order.

    Args:
        system_state: Current system state
        customer_id: Requesting customer
        resource_id: Candidate resource

    Returns:
        True iff the candidate's order strictly exceeds every held order
        (vacuously true when holding nothing)
    """
    candidate = system_state.resource(resource_id)
    return candidate.index > highest_held_order(system_state, customer_id)


def admissible_resources(
    system_state: SystemState,
    customer_id: str,
    resource_ids: Iterable[str]
) -> List[str]:
    """Filter candidates down to the ones the ordering rule allows."""
    floor = highest_held_order(system_state, customer_id)
    return [rid for rid in resource_ids if system_state.resource(rid).index > floor]
