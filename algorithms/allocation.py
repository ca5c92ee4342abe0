"""
Allocation Policy for the Deadlock Handling Simulator.

Decides, once per tick and per customer, whether it arrives, acquires,
blocks or releases, under the active deadlock-handling strategy.
"""

from dataclasses import dataclass, field
from typing import Collection, List, Optional

import numpy as np

from algorithms.avoidance import BANKERS, evaluate_request
from algorithms.prevention import admissible_resources, highest_held_order
from analysis.events import EventType, SimulationEvent
from analysis.metrics import DEFAULT_INTENSITY
from models.customer import Customer, CustomerState
from models.strategy import AllocationMode, StrategyFlags
from models.system_state import SystemState
from utils.config_loader import SimulationConfig


@dataclass
class AllocationOutcome:
    """What one allocation pass did."""
    events: List[SimulationEvent] = field(default_factory=list)
    granted: int = 0
    denied: int = 0
    attempts: int = 0
    granted_to: List[str] = field(default_factory=list)
    denied_to: List[str] = field(default_factory=list)


def effective_request_probability(base: float, intensity: int) -> float:
    """Request probability scaled by load intensity (5 leaves it unchanged)."""
    return min(1.0, base * intensity / DEFAULT_INTENSITY)


def run_allocation(
    system_state: SystemState,
    strategies: StrategyFlags,
    config: SimulationConfig,
    rng: np.random.Generator,
    tick: int,
    participant_filter: Optional[Collection[str]] = None,
    intensity: int = DEFAULT_INTENSITY
) -> AllocationOutcome:
    """
    Run one allocation pass over every customer, in index order.

    Per customer:
    1. IDLE -> RUNNING with arrival_probability
    2. RUNNING/WAITING: try to acquire one wanted free resource
       (prevention: ordering rule, avoidance: safety check, otherwise grant)
    3. No grant: block on a wanted resource held by someone else
    4. Independently release one held resource with release_probability

    DEADLOCKED customers are frozen: they neither acquire nor release.

    Args:
        system_state: State to mutate
        strategies: Active strategy flags
        config: Probabilities and safety-check settings
        rng: Random source
        tick: Current tick (stamped on events)
        participant_filter: Resource ids eligible this tick; empty/None = all
        intensity: Load intensity scaling the request probability

    Returns:
        AllocationOutcome with the events in emission order
    """
    outcome = AllocationOutcome()
    mode = strategies.allocation_mode
    request_probability = effective_request_probability(config.request_probability, intensity)
    eligible = set(participant_filter) if participant_filter else None

    for customer in list(system_state.customers):
        if customer.state == CustomerState.DEADLOCKED:
            continue

        if customer.state == CustomerState.IDLE:
            if rng.random() < config.arrival_probability:
                customer.state = CustomerState.RUNNING

        if customer.is_active():
            granted = _attempt_acquire(
                system_state, customer, mode, config, rng, tick,
                eligible, request_probability, outcome
            )
            if not granted:
                _begin_wait(system_state, customer, mode, config, rng, tick, eligible, outcome)

        _maybe_release(system_state, customer, config, rng, tick, outcome)

    return outcome


def wanted_resources(
    system_state: SystemState,
    customer: Customer,
    mode: AllocationMode,
    config: SimulationConfig,
    eligible: Optional[Collection[str]] = None
) -> List[str]:
    """
    Resources a customer may ask for or block on this tick.

    Always: not already held and inside the participant filter. Prevention
    additionally keeps only order-admissible resources, Banker's avoidance
    only the customer's claim.
    """
    wanted = [
        r.id for r in system_state.resources
        if not customer.holds(r.id) and (eligible is None or r.id in eligible)
    ]
    if mode == AllocationMode.PREVENTION:
        wanted = admissible_resources(system_state, customer.id, wanted)
    elif mode == AllocationMode.AVOIDANCE and config.safety_check == BANKERS:
        claim = set(customer.claim)
        wanted = [rid for rid in wanted if rid in claim]
    return wanted


def _pick(rng: np.random.Generator, options: List[str]) -> str:
    return options[int(rng.integers(len(options)))]


def _attempt_acquire(
    system_state: SystemState,
    customer: Customer,
    mode: AllocationMode,
    config: SimulationConfig,
    rng: np.random.Generator,
    tick: int,
    eligible: Optional[Collection[str]],
    request_probability: float,
    outcome: AllocationOutcome
) -> bool:
    """Returns True if the customer was granted a resource."""
    wanted = wanted_resources(system_state, customer, mode, config, eligible)
    candidates = [rid for rid in wanted if system_state.resource(rid).is_available()]

    if not candidates:
        if mode == AllocationMode.PREVENTION:
            _deny_out_of_order(system_state, customer, rng, tick, eligible, request_probability, outcome)
        return False

    if rng.random() >= request_probability:
        return False

    outcome.attempts += 1
    resource = system_state.resource(_pick(rng, candidates))
    outcome.events.append(SimulationEvent(
        tick=tick,
        event_type=EventType.REQUEST,
        message=f"{customer.name} requested {resource.name}",
        customer_id=customer.id,
        resource_id=resource.id,
    ))

    if mode == AllocationMode.PREVENTION:
        outcome.events.append(SimulationEvent(
            tick=tick,
            event_type=EventType.PREVENTION,
            message=f"{resource.name} (order {resource.index}) follows the global order for {customer.name}",
            customer_id=customer.id,
            resource_id=resource.id,
            granted=True,
        ))

    elif mode == AllocationMode.AVOIDANCE:
        safe, reason = evaluate_request(system_state, customer.id, resource.id, config.safety_check)
        outcome.events.append(SimulationEvent(
            tick=tick,
            event_type=EventType.AVOIDANCE,
            message=f"{customer.name} -> {resource.name}: {reason}",
            customer_id=customer.id,
            resource_id=resource.id,
            granted=safe,
        ))
        if not safe:
            outcome.denied += 1
            outcome.denied_to.append(customer.id)
            return False

    system_state.grant(resource.id, customer.id)
    outcome.granted += 1
    outcome.granted_to.append(customer.id)
    outcome.events.append(SimulationEvent(
        tick=tick,
        event_type=EventType.ALLOCATE,
        message=f"{resource.name} allocated to {customer.name}",
        customer_id=customer.id,
        resource_id=resource.id,
    ))
    return True


def _deny_out_of_order(
    system_state: SystemState,
    customer: Customer,
    rng: np.random.Generator,
    tick: int,
    eligible: Optional[Collection[str]],
    request_probability: float,
    outcome: AllocationOutcome
) -> None:
    """Record a prevention denial when only out-of-order resources are free."""
    blocked = [
        r.id for r in system_state.resources
        if r.is_available() and not customer.holds(r.id)
        and (eligible is None or r.id in eligible)
    ]
    if not blocked or rng.random() >= request_probability:
        return

    outcome.attempts += 1
    resource = system_state.resource(_pick(rng, blocked))
    floor = highest_held_order(system_state, customer.id)
    outcome.events.append(SimulationEvent(
        tick=tick,
        event_type=EventType.REQUEST,
        message=f"{customer.name} requested {resource.name}",
        customer_id=customer.id,
        resource_id=resource.id,
    ))
    outcome.events.append(SimulationEvent(
        tick=tick,
        event_type=EventType.PREVENTION,
        message=(
            f"{resource.name} (order {resource.index}) denied to {customer.name}: "
            f"already holds order {floor}"
        ),
        customer_id=customer.id,
        resource_id=resource.id,
        granted=False,
    ))
    outcome.denied += 1
    outcome.denied_to.append(customer.id)


def _begin_wait(
    system_state: SystemState,
    customer: Customer,
    mode: AllocationMode,
    config: SimulationConfig,
    rng: np.random.Generator,
    tick: int,
    eligible: Optional[Collection[str]],
    outcome: AllocationOutcome
) -> None:
    """Block the customer on a wanted resource someone else holds."""
    wanted = wanted_resources(system_state, customer, mode, config, eligible)
    held_elsewhere = [rid for rid in wanted if not system_state.resource(rid).is_available()]

    if customer.waiting is not None:
        if customer.waiting in held_elsewhere:
            return
        # Target left the wanted set (e.g. filtered out)
        system_state.clear_wait(customer.id)
        customer.state = CustomerState.RUNNING

    if not held_elsewhere or rng.random() >= config.wait_probability:
        return

    resource = system_state.resource(_pick(rng, held_elsewhere))
    system_state.enqueue_wait(resource.id, customer.id)
    holders = ", ".join(system_state.customer(h).name for h in resource.holders)
    outcome.events.append(SimulationEvent(
        tick=tick,
        event_type=EventType.BLOCK,
        message=f"{customer.name} blocked waiting for {resource.name} (held by {holders})",
        customer_id=customer.id,
        resource_id=resource.id,
    ))


def _maybe_release(
    system_state: SystemState,
    customer: Customer,
    config: SimulationConfig,
    rng: np.random.Generator,
    tick: int,
    outcome: AllocationOutcome
) -> None:
    if not customer.holding or rng.random() >= config.release_probability:
        return

    resource = system_state.resource(_pick(rng, list(customer.holding)))
    woken = system_state.release(resource.id, customer.id)

    message = f"{customer.name} released {resource.name}"
    if woken:
        message += " (woke " + ", ".join(system_state.customer(w).name for w in woken) + ")"
    outcome.events.append(SimulationEvent(
        tick=tick,
        event_type=EventType.RELEASE,
        message=message,
        customer_id=customer.id,
        resource_id=resource.id,
    ))

    if not customer.holding and customer.waiting is None:
        if rng.random() < config.idle_probability:
            customer.state = CustomerState.IDLE
        else:
            customer.state = CustomerState.RUNNING
