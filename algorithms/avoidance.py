"""
Deadlock Avoidance Algorithm (Banker's Algorithm) for the Simulator.

Decides whether granting a request keeps the system in a safe state.
"""

import numpy as np
from typing import List, Optional, Tuple

from models.customer import CustomerState
from models.system_state import SystemState

BANKERS = "bankers"
CAPACITY = "capacity"
SAFETY_CHECKS = (BANKERS, CAPACITY)


def is_safe_state(system_state: SystemState) -> Tuple[bool, Optional[List[str]]]:
    """
    Check if system is in a safe state using Banker's Algorithm.

    Algorithm:
    1. Initialize Work = Available, Finish = [False] * num_customers
    2. Find customer i where Finish[i] == False and Need[i] <= Work
    3. If found: Finish[i] = True, Work += Allocation[i], add id to sequence
    4. Repeat step 2 until all customers finish (SAFE) or stuck (UNSAFE)

    Each customer's maximum demand is implicit: its claim plus whatever it
    holds or waits on.

    Time Complexity: O(C²×R)

    Args:
        system_state: Current system state

    Returns:
        Tuple of (is_safe, safe_sequence if exists else None)

    References:
        Silberschatz, A., Galvin, P. B., & Gagne, G. (2018).
        Operating System Concepts (10th ed.). Chapter 7.5: Deadlock Avoidance.
    """
    work = system_state.available_vector.copy()
    finish = np.zeros(system_state.num_customers, dtype=bool)
    need = system_state.need_matrix
    allocation = system_state.allocation_matrix
    safe_sequence = []

    made_progress = True
    while made_progress:
        made_progress = False

        for i, customer in enumerate(system_state.customers):
            if finish[i]:
                continue

            if np.all(need[i] <= work):
                work += allocation[i]
                finish[i] = True
                safe_sequence.append(customer.id)
                made_progress = True
                break  # Restart search from beginning for determinism

    if np.all(finish):
        return True, safe_sequence
    return False, None


def is_grant_safe(
    system_state: SystemState,
    customer_id: str,
    resource_id: str
) -> Tuple[bool, Optional[List[str]]]:
    """
    Evaluate a hypothetical grant with Banker's Algorithm.

    Steps:
    1. Tentatively grant the resource
    2. Run the safety algorithm on the new state
    3. Roll the grant back, whatever the outcome

    The caller commits the grant through SystemState.grant when it is safe.

    Args:
        system_state: Current system state
        customer_id: Requesting customer
        resource_id: Free resource being requested

    Returns:
        Tuple of (is_safe, safe_sequence if safe else None)
    """
    customer = system_state.customer(customer_id)
    resource = system_state.resource(resource_id)

    if not resource.is_available() or customer.holds(resource_id):
        return False, None

    # Save original wait target for rollback
    original_waiting = customer.waiting

    # Tentative allocation; a real grant drops the wait, so the target
    # leaves the customer's demand here too. Wait queues are untouched.
    resource.holders.append(customer_id)
    customer.holding.append(resource_id)
    customer.waiting = None
    system_state.refresh_matrices()

    try:
        return is_safe_state(system_state)
    finally:
        resource.holders.remove(customer_id)
        customer.holding.remove(resource_id)
        customer.waiting = original_waiting
        system_state.refresh_matrices()


def check_capacity(system_state: SystemState, customer_id: str) -> bool:
    """
    Simplified avoidance check.

    A grant is allowed only if, after it, free capacity still covers every
    other customer that is currently blocked. Cheaper than Banker's but does
    not guarantee an acyclic wait-for graph.

    Args:
        system_state: Current system state
        customer_id: Requesting customer

    Returns:
        True if the grant leaves enough free capacity
    """
    free_after = int(system_state.available_vector.sum()) - 1
    blocked = sum(
        1 for c in system_state.customers
        if c.id != customer_id and c.state in (CustomerState.WAITING, CustomerState.DEADLOCKED)
    )
    return free_after >= blocked


def evaluate_request(
    system_state: SystemState,
    customer_id: str,
    resource_id: str,
    method: str = BANKERS
) -> Tuple[bool, str]:
    """
    Run the configured safety check for a request.

    Returns:
        Tuple of (safe, reason_string)
    """
    if method == CAPACITY:
        if check_capacity(system_state, customer_id):
            return True, "SAFE (free capacity covers blocked customers)"
        return False, "UNSAFE (free capacity would not cover blocked customers)"

    if method != BANKERS:
        raise ValueError(f"Unknown safety check: {method}")

    safe, sequence = is_grant_safe(system_state, customer_id, resource_id)
    if safe:
        seq_str = " -> ".join(sequence)
        return True, f"SAFE (sequence: {seq_str})"
    return False, "UNSAFE (no completion sequence exists)"
