"""
Simulator Tests

Tests the tick procedure, the status lifecycle and the control surface,
plus long seeded runs checking that prevention and avoidance never
deadlock.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from simulator import DeadlockSimulator, run_simulation
from algorithms.avoidance import is_safe_state
from algorithms.detection import detect_cycle
from analysis.events import EventType
from models.customer import CustomerState
from models.status import SimulationStatus
from utils.config_loader import SimulationConfig
from utils.logger import SimulatorLogger

ALLOCATION_EVENTS = {
    EventType.REQUEST, EventType.ALLOCATE, EventType.BLOCK, EventType.RELEASE,
    EventType.PREVENTION, EventType.AVOIDANCE,
}

# Every probability zero: the allocation pass leaves hand-built state alone
FROZEN = dict(
    arrival_probability=0.0, request_probability=0.0, wait_probability=0.0,
    release_probability=0.0, idle_probability=0.0,
)


def quiet_simulator(**overrides):
    config = SimulationConfig(**overrides)
    return DeadlockSimulator(config, logger=SimulatorLogger(console=False))


def force_deadlock(sim):
    """C0 holds R0 and waits on R1; C1 holds R1 and waits on R0."""
    state = sim.state
    state.grant("R0", "C0")
    state.grant("R1", "C1")
    state.enqueue_wait("R1", "C0")
    state.enqueue_wait("R0", "C1")


def test_first_tick_starts_running():
    sim = quiet_simulator(seed=1)
    assert sim.status == SimulationStatus.IDLE
    result = sim.step()
    assert result.tick == 1
    assert sim.status == SimulationStatus.RUNNING


def test_detection_and_recovery_cycle():
    """Deadlock found, victim preempted, settle returns to RUNNING."""
    print("\n" + "="*60)
    print("TEST: Detection with Recovery")
    print("="*60)

    sim = quiet_simulator(seed=1, **FROZEN)
    force_deadlock(sim)

    result = sim.step()
    assert result.cycle.found
    assert result.victim == "C0"
    assert sim.status == SimulationStatus.RECOVERY
    assert [e.event_type for e in result.events] == [EventType.DEADLOCK, EventType.RECOVERY]
    assert "Customer_A" in result.events[0].message
    assert sim.counters.deadlock_count == 1
    assert sim.counters.recovery_count == 1

    customers = {c.id: c for c in sim.customers}
    assert customers["C0"].holding == ()
    assert customers["C1"].state == CustomerState.RUNNING

    # Settle window: two ticks after the recovery
    sim.step()
    assert sim.status == SimulationStatus.RECOVERY
    sim.step()
    assert sim.status == SimulationStatus.RUNNING

    transitions = [(frm, to) for _, frm, to in sim.status_machine.history]
    assert transitions == [
        (SimulationStatus.IDLE, SimulationStatus.RUNNING),
        (SimulationStatus.RUNNING, SimulationStatus.DEADLOCK),
        (SimulationStatus.DEADLOCK, SimulationStatus.RECOVERY),
        (SimulationStatus.RECOVERY, SimulationStatus.RUNNING),
    ]
    print("  ✓ running -> deadlock -> recovery -> running")


def test_stuck_deadlock_without_detection():
    """With detection off the deadlock persists and is counted once."""
    sim = quiet_simulator(seed=2, detection=False, **FROZEN)
    force_deadlock(sim)

    sim.run(5)
    snapshot = sim.snapshot()
    assert snapshot.status == SimulationStatus.DEADLOCK
    assert snapshot.deadlock_stuck
    assert snapshot.counters.deadlock_count == 1
    assert snapshot.counters.recovery_count == 0
    deadlocked = {c.id for c in snapshot.customers if c.state == CustomerState.DEADLOCKED}
    assert deadlocked == {"C0", "C1"}
    assert len(snapshot.graph.cycle_edges()) == 4

    # Turning detection on resolves the standing deadlock without recounting it
    sim.set_strategy("detection", True)
    result = sim.step()
    assert sim.status == SimulationStatus.RECOVERY
    assert sim.counters.deadlock_count == 1
    assert sim.counters.recovery_count == 1
    assert [e.event_type for e in result.events] == [EventType.RECOVERY]


def test_second_deadlock_found_while_first_is_stuck():
    sim = quiet_simulator(seed=2, detection=False, **FROZEN)
    force_deadlock(sim)
    sim.step()

    state = sim.state
    state.grant("R2", "C2")
    state.grant("R3", "C3")
    state.enqueue_wait("R3", "C2")
    state.enqueue_wait("R2", "C3")
    sim.step()

    assert sim.counters.deadlock_count == 2
    assert sim.status == SimulationStatus.DEADLOCK


def test_stop_cancels_recovery_settle():
    sim = quiet_simulator(seed=3, **FROZEN)
    force_deadlock(sim)
    sim.start()
    sim.step()
    assert sim.status == SimulationStatus.RECOVERY
    assert sim.clock.pending()

    sim.stop()
    assert sim.status == SimulationStatus.IDLE
    assert not sim.is_running
    assert sim.clock.pending() == []

    sim.run(3)
    settled = [
        tick for tick, frm, to in sim.status_machine.history
        if frm == SimulationStatus.RECOVERY and to == SimulationStatus.RUNNING
    ]
    assert settled == []
    assert sim.status == SimulationStatus.RUNNING


def test_start_and_stop():
    sim = quiet_simulator(seed=3)
    sim.start()
    assert sim.is_running
    assert sim.status == SimulationStatus.RUNNING
    sim.start()  # already running: no-op
    sim.stop()
    assert sim.status == SimulationStatus.IDLE


def test_reset_is_idempotent():
    """Two resets in a row give identical snapshots."""
    sim = quiet_simulator(seed=4)
    sim.toggle_stress_mode()
    sim.set_strategy("prevention", True)
    sim.run(30)

    sim.reset()
    first = sim.snapshot()
    sim.reset()
    second = sim.snapshot()

    assert first == second
    assert first.tick == 0
    assert first.status == SimulationStatus.IDLE
    assert first.events == ()
    assert first.counters.deadlock_count == 0
    assert first.intensity == 5
    assert not first.stress_mode
    assert not first.prevention_enabled
    assert len(first.customers) == 6
    assert all(c.state == CustomerState.IDLE and not c.holding for c in first.customers)
    assert all(r.current_instances == 0 for r in first.resources)


def test_seeded_runs_are_reproducible():
    a = quiet_simulator(seed=11)
    b = quiet_simulator(seed=11)
    a.run(100)
    b.run(100)
    assert a.snapshot() == b.snapshot()


@pytest.mark.parametrize("seed", [1, 2, 3, 4])
def test_prevention_never_deadlocks(seed):
    """Resource ordering keeps the wait-for graph acyclic."""
    sim = quiet_simulator(seed=seed, prevention=True, request_probability=0.9, wait_probability=0.9)

    for _ in range(1000):
        sim.step()
        assert not detect_cycle(sim.graph).found
        for customer in sim.state.customers:
            if customer.waiting is not None:
                target = sim.state.resource(customer.waiting).index
                held = [sim.state.resource(r).index for r in customer.holding]
                assert all(target > h for h in held)

    assert sim.counters.deadlock_count == 0
    assert sim.status == SimulationStatus.RUNNING


@pytest.mark.parametrize("seed", [1, 2, 3])
def test_avoidance_keeps_state_safe(seed):
    """Banker's avoidance: every tick ends in a safe state."""
    sim = quiet_simulator(seed=seed, avoidance=True, request_probability=0.9, wait_probability=0.9)

    for _ in range(1000):
        sim.step()
        safe, _ = is_safe_state(sim.state)
        assert safe
        assert not detect_cycle(sim.graph).found

    assert sim.counters.deadlock_count == 0
    assert sim.counters.total_denied > 0


def test_prevention_wins_over_avoidance():
    sim = quiet_simulator(seed=5, prevention=True, avoidance=True)
    sim.run(50)
    kinds = {e.event_type for e in sim.event_log.events}
    assert EventType.AVOIDANCE not in kinds
    assert EventType.PREVENTION in kinds


def test_detection_runs_find_deadlocks():
    sim = quiet_simulator(seed=6, request_probability=0.9, wait_probability=0.9, release_probability=0.2)
    sim.run(500)
    assert sim.counters.deadlock_count > 0
    assert sim.counters.recovery_count == sim.counters.deadlock_count


def test_event_order_within_tick():
    """Allocation events precede detection events, which precede recovery."""
    sim = quiet_simulator(seed=7, request_probability=0.9, wait_probability=0.9)
    order = {EventType.DEADLOCK: 1, EventType.RECOVERY: 2}

    for _ in range(300):
        result = sim.step()
        ranks = [order.get(e.event_type, 0) for e in result.events]
        assert ranks == sorted(ranks)
        ids = [e.event_id for e in result.events]
        assert ids == sorted(ids)
        assert all(e.tick == result.tick for e in result.events)


def test_event_log_bounded():
    sim = quiet_simulator(seed=8, max_log_entries=25)
    sim.run(200)

    events = sim.events()
    assert len(events) == 25
    assert sim.event_log.total_recorded > 25
    ids = [e.event_id for e in events]
    assert ids == sorted(ids, reverse=True)  # newest first
    assert ids[0] == sim.event_log.total_recorded - 1
    assert len(sim.events(limit=5)) == 5


def test_participant_filter():
    sim = quiet_simulator(seed=9)
    with pytest.raises(ValueError):
        sim.set_participant_filter(["R0", "R42"])

    sim.set_participant_filter(["R0", "R1", "R2"])
    sim.run(100)
    for customer in sim.customers:
        assert set(customer.holding) <= {"R0", "R1", "R2"}

    sim.clear_participant_filter()
    assert sim.snapshot().participant_filter == frozenset()


def test_set_strategy_validation():
    sim = quiet_simulator()
    with pytest.raises(ValueError):
        sim.set_strategy("banking", True)
    sim.set_strategy("avoidance", True)
    assert sim.strategies.avoidance


def test_adjust_load_clamped():
    sim = quiet_simulator()
    assert sim.adjust_load(2) == 7
    assert sim.adjust_load(100) == 10
    assert sim.adjust_load(-100) == 1


def test_stress_mode_roster():
    """Stress mode fills the roster to the cap and never shrinks it."""
    sim = quiet_simulator(seed=10)
    config = sim.config

    assert sim.toggle_stress_mode()
    assert len(sim.customers) == config.stress_customer_cap
    assert all(c.state == CustomerState.RUNNING for c in sim.customers[6:])

    sim.adjust_load(-4)
    assert len(sim.customers) == config.stress_customer_cap

    assert not sim.toggle_stress_mode()
    assert len(sim.customers) == config.stress_customer_cap

    sim.toggle_stress_mode()
    sim.run(20)
    assert len(sim.metrics.stress_samples) == 20
    sim.state.assert_invariants("after stress run")


def test_wait_ticks_accumulate():
    sim = quiet_simulator(seed=2, detection=False, **FROZEN)
    force_deadlock(sim)
    sim.run(4)
    customers = {c.id: c for c in sim.customers}
    assert customers["C0"].wait_ticks == 4
    assert customers["C2"].wait_ticks == 0


def test_run_simulation_headless():
    config = SimulationConfig(seed=12, prevention=True)
    event_log, metrics, snapshot = run_simulation(config, 50)

    assert snapshot.tick == 50
    assert metrics.tick == 50
    assert metrics.deadlock_count == 0
    assert len(event_log) > 0
    assert snapshot.prevention_enabled


@pytest.mark.parametrize("seed", [0, 3, 7])
def test_capacity_avoidance_reports_every_cycle(seed):
    """The capacity check does not keep the graph acyclic; cycles still get reported."""
    sim = quiet_simulator(
        seed=seed, avoidance=True, safety_check="capacity", detection=False,
        request_probability=0.9, wait_probability=0.9,
    )
    assert sim.strategies.cycles_possible

    for _ in range(200):
        sim.step()
        deadlocked = sim._deadlocked_ids()
        assert not detect_cycle(sim.graph, deadlocked).found
        if deadlocked:
            assert sim.status == SimulationStatus.DEADLOCK

    assert sim.counters.deadlock_count > 0


def test_capacity_avoidance_recovers_with_detection():
    sim = quiet_simulator(
        seed=3, avoidance=True, safety_check="capacity",
        request_probability=0.9, wait_probability=0.9,
    )
    sim.run(300)
    assert sim.counters.deadlock_count > 0
    assert sim.counters.recovery_count == sim.counters.deadlock_count


def test_stale_realtime_callback_is_ignored():
    """A timer from before reset() or stop() must not run a tick."""
    config = SimulationConfig(seed=1, tick_interval=60.0)
    sim = DeadlockSimulator(config, logger=SimulatorLogger(console=False), realtime=True)

    sim.start()
    stale = sim._ticker.on_tick
    sim.reset()
    assert stale() is None
    assert sim.tick == 0

    sim.start()
    assert stale() is None
    assert sim.tick == 0

    result = sim._ticker.on_tick()
    assert result.tick == 1
    assert sim.tick == 1

    current = sim._ticker.on_tick
    sim.stop()
    assert current() is None
    assert sim.tick == 1


class CountingLogger(SimulatorLogger):
    def __init__(self, verbose):
        super().__init__(verbose=verbose, console=False)
        self.state_dumps = 0

    def log_system_state(self, tick, state_str):
        self.state_dumps += 1


@pytest.mark.parametrize("verbose, dumps", [(False, 0), (True, 3)])
def test_state_dump_only_when_verbose(verbose, dumps):
    logger = CountingLogger(verbose)
    sim = DeadlockSimulator(SimulationConfig(seed=1), logger=logger)
    sim.run(3)
    assert logger.state_dumps == dumps
