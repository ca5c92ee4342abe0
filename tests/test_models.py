"""
Core Data Model Tests

Tests Customer, Resource, SystemState, the status machine and strategy flags.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from models.customer import Customer, CustomerState
from models.resource import Resource
from models.status import SimulationStatus, StatusMachine
from models.strategy import AllocationMode, Strategy, StrategyFlags, parse_strategy
from models.system_state import SystemState


def make_state(num_customers=3, num_resources=3, capacity=1):
    customers = [Customer(index=i, name=f"Customer_{i}") for i in range(num_customers)]
    resources = [
        Resource(index=j, name=f"Resource_{j}", max_instances=capacity)
        for j in range(num_resources)
    ]
    return SystemState(customers=customers, resources=resources)


def test_customer_model():
    """Test Customer identity and state predicates."""
    print("\n" + "="*60)
    print("TEST: Customer Model")
    print("="*60)

    customer = Customer(index=4, name="Customer_E")
    assert customer.id == "C4"
    assert customer.state == CustomerState.IDLE
    assert not customer.is_active()
    assert not customer.is_blocked()

    customer.state = CustomerState.WAITING
    assert customer.is_active()
    assert customer.is_blocked()

    customer.state = CustomerState.DEADLOCKED
    assert not customer.is_active()
    assert customer.is_blocked()

    snapshot = customer.snapshot()
    customer.holding.append("R1")
    assert snapshot.holding == ()
    print("  ✓ Customer predicates and snapshots work")


def test_resource_model():
    """Test Resource capacity accounting."""
    resource = Resource(index=2, name="Inventory_DB", max_instances=2)
    assert resource.id == "R2"
    assert resource.is_available() and resource.is_free()
    assert resource.owner is None

    resource.holders.append("C0")
    assert resource.is_available()
    assert not resource.is_free()
    assert resource.available_instances == 1
    assert resource.owner is None  # owner only reported for mutexes

    resource.holders.append("C1")
    assert not resource.is_available()
    assert resource.snapshot().available is False

    mutex = Resource(index=0, name="Cart_Lock", holders=["C3"])
    assert mutex.owner == "C3"

    with pytest.raises(ValueError):
        Resource(index=0, name="Broken", max_instances=0)
    with pytest.raises(ValueError):
        Resource(index=0, name="Broken", holders=["C0", "C1"])


def test_grant_and_release():
    """Test grant/release keep both sides of the relation in sync."""
    state = make_state()

    state.grant("R0", "C0")
    assert state.customer("C0").holding == ["R0"]
    assert state.resource("R0").holders == ["C0"]
    assert state.customer("C0").state == CustomerState.RUNNING
    assert state.allocation_matrix[0][0] == 1
    assert state.available_vector[0] == 0

    with pytest.raises(ValueError):
        state.grant("R0", "C0")  # already held
    with pytest.raises(ValueError):
        state.grant("R0", "C1")  # at capacity

    woken = state.release("R0", "C0")
    assert woken == []
    assert state.customer("C0").holding == []
    assert state.resource("R0").is_free()
    assert state.available_vector[0] == 1

    with pytest.raises(ValueError):
        state.release("R0", "C0")

    state.assert_invariants("after grant/release")
    print("  ✓ Grant/release symmetric")


def test_wait_and_wake():
    """A release wakes every customer queued on the resource."""
    state = make_state()
    state.grant("R0", "C0")
    state.customer("C1").state = CustomerState.RUNNING
    state.customer("C2").state = CustomerState.RUNNING

    state.enqueue_wait("R0", "C1")
    state.enqueue_wait("R0", "C2")
    assert state.customer("C1").state == CustomerState.WAITING
    assert state.resource("R0").wait_queue == ["C1", "C2"]
    state.assert_invariants("with two waiters")

    with pytest.raises(ValueError):
        state.enqueue_wait("R1", "C1")  # free resource
    with pytest.raises(ValueError):
        state.enqueue_wait("R0", "C0")  # own resource

    woken = state.release("R0", "C0")
    assert woken == ["C1", "C2"]
    for cid in woken:
        assert state.customer(cid).state == CustomerState.RUNNING
        assert state.customer(cid).waiting is None
    assert state.resource("R0").wait_queue == []
    state.assert_invariants("after wake")


def test_grant_clears_wait():
    state = make_state()
    state.grant("R0", "C0")
    state.customer("C1").state = CustomerState.RUNNING
    state.enqueue_wait("R0", "C1")

    state.grant("R1", "C1")
    assert state.customer("C1").waiting is None
    assert state.customer("C1").state == CustomerState.RUNNING
    assert state.resource("R0").wait_queue == []
    state.assert_invariants("after grant to a waiter")


def test_max_demand_includes_claim_and_wait():
    state = make_state()
    state.customer("C0").claim = ["R0", "R1"]
    state.grant("R0", "C0")
    state.grant("R2", "C1")
    state.enqueue_wait("R2", "C0")
    state.refresh_matrices()

    assert list(state.max_demand_matrix[0]) == [1, 1, 1]
    assert list(state.need_matrix[0]) == [0, 1, 1]


def test_invariant_violation_detected():
    """Corrupting the relation by hand trips assert_invariants."""
    state = make_state()
    state.resource("R1").holders.append("C2")  # customer side not updated

    with pytest.raises(AssertionError):
        state.assert_invariants("after corruption")

    state = make_state()
    state.customer("C0").state = CustomerState.WAITING  # no target
    with pytest.raises(AssertionError):
        state.assert_invariants("after corruption")


def test_lookup_errors():
    state = make_state()
    with pytest.raises(KeyError):
        state.customer("C9")
    with pytest.raises(KeyError):
        state.resource("R9")


def test_status_machine():
    """Test the allowed status transitions."""
    print("\n" + "="*60)
    print("TEST: Status Machine")
    print("="*60)

    machine = StatusMachine()
    assert machine.status == SimulationStatus.IDLE

    assert machine.transition(SimulationStatus.RUNNING, 1)
    assert not machine.transition(SimulationStatus.RUNNING, 2)  # no-op
    with pytest.raises(ValueError):
        machine.transition(SimulationStatus.RECOVERY, 2)

    assert machine.transition(SimulationStatus.DEADLOCK, 3)
    with pytest.raises(ValueError):
        machine.transition(SimulationStatus.RUNNING, 3)
    assert machine.transition(SimulationStatus.RECOVERY, 3)
    with pytest.raises(ValueError):
        machine.transition(SimulationStatus.DEADLOCK, 4)
    assert machine.transition(SimulationStatus.RUNNING, 5)

    with pytest.raises(ValueError):
        machine.transition(SimulationStatus.IDLE, 6)
    assert machine.halt(6)
    assert not machine.halt(6)
    assert machine.status == SimulationStatus.IDLE

    assert [to for _, _, to in machine.history] == [
        SimulationStatus.RUNNING, SimulationStatus.DEADLOCK, SimulationStatus.RECOVERY,
        SimulationStatus.RUNNING, SimulationStatus.IDLE,
    ]
    print("  ✓ Transitions enforced")


def test_strategy_flags():
    flags = StrategyFlags()
    assert flags.detection and not flags.prevention and not flags.avoidance
    assert flags.allocation_mode == AllocationMode.OPPORTUNISTIC
    assert flags.cycles_possible

    flags.set(Strategy.AVOIDANCE, True)
    assert flags.allocation_mode == AllocationMode.AVOIDANCE
    assert not flags.cycles_possible

    capacity = StrategyFlags(avoidance=True, safety_check="capacity")
    assert capacity.cycles_possible
    assert capacity.copy().safety_check == "capacity"
    capacity.set(Strategy.PREVENTION, True)
    assert not capacity.cycles_possible

    flags.set(Strategy.PREVENTION, True)
    assert flags.allocation_mode == AllocationMode.PREVENTION

    copy = flags.copy()
    flags.set(Strategy.PREVENTION, False)
    assert copy.prevention


def test_parse_strategy():
    assert parse_strategy("Prevention") == Strategy.PREVENTION
    assert parse_strategy(Strategy.DETECTION) == Strategy.DETECTION
    with pytest.raises(ValueError):
        parse_strategy("ostrich")
