#!/usr/bin/env python3
"""
Deadlock Handling Simulator
Tick driver, control surface and command-line entry point.

Educational tool for demonstrating deadlock prevention, avoidance and
detection with recovery.
"""

import argparse
import sys
import threading
import time
from dataclasses import dataclass, replace
from functools import partial
from typing import FrozenSet, Iterable, List, Optional, Tuple

import numpy as np

from algorithms.allocation import run_allocation
from algorithms.detection import CycleResult, detect_cycle, should_run_detection
from algorithms.graph import WaitForGraph, build_wait_for_graph, mark_cycle, to_dot
from algorithms.recovery import recover_from_deadlock, select_victim
from analysis.analyzer import compare_strategies, generate_comparison_report, STRATEGY_PRESETS
from analysis.events import EventLog, EventType, SimulationEvent
from analysis.metrics import (
    DEFAULT_INTENSITY, CounterSnapshot, PerformanceSample, SimulationMetrics,
    StressSample, clamp_intensity, format_metrics_report,
)
from models.customer import CustomerSnapshot, CustomerState
from models.resource import ResourceSnapshot
from models.status import SimulationStatus, StatusMachine
from models.strategy import Strategy, StrategyFlags, parse_strategy
from utils.clock import DeferredAction, RealtimeTicker, SimulationClock
from utils.config_loader import (
    ConfigLoadError, SimulationConfig, build_customer, build_system_state,
    load_config,
)
from utils.logger import SimulatorLogger


@dataclass(frozen=True)
class SimulationSnapshot:
    """Immutable view of the whole simulation, safe to hand to display code."""
    tick: int
    status: SimulationStatus
    is_running: bool
    deadlock_stuck: bool
    customers: Tuple[CustomerSnapshot, ...]
    resources: Tuple[ResourceSnapshot, ...]
    events: Tuple[SimulationEvent, ...]  # newest first
    graph: WaitForGraph
    counters: CounterSnapshot
    prevention_enabled: bool
    avoidance_enabled: bool
    detection_enabled: bool
    participant_filter: FrozenSet[str]
    intensity: int
    stress_mode: bool
    perf_samples: Tuple[PerformanceSample, ...]
    stress_samples: Tuple[StressSample, ...]


@dataclass(frozen=True)
class TickResult:
    """What a single tick did."""
    tick: int
    status: SimulationStatus
    events: Tuple[SimulationEvent, ...]
    cycle: CycleResult
    victim: Optional[str] = None


class DeadlockSimulator:
    """
    Owns the simulation state and runs it one tick at a time.

    Step Ordering (for deterministic execution):
    1. Advance the clock and fire due deferred actions (recovery settle)
    2. Allocation pass over customers in index order
    3. Rebuild the wait-for graph
    4. Cycle scan unless prevention or Banker's avoidance rules cycles out
    5. If a cycle was found and detection is enabled, preempt a victim
    6. Update wait times, graph cycle flags and metrics

    Events are appended in that order, so allocation events of a tick
    always precede its detection and recovery events.
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        rng: Optional[np.random.Generator] = None,
        logger: Optional[SimulatorLogger] = None,
        realtime: bool = False
    ):
        self.config = config or SimulationConfig()
        self._injected_rng = rng
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self.logger = logger or SimulatorLogger(log_file=self.config.log_file)
        self.realtime = realtime

        self._lock = threading.RLock()
        self._ticker: Optional[RealtimeTicker] = None
        self._settle: Optional[DeferredAction] = None
        # Bumped on every halt; a ticker only steps for the run it was started in
        self._generation = 0
        self.clock = SimulationClock()
        self._initialize()

    def _initialize(self) -> None:
        """Put every piece of state back to its reset-time default."""
        self.state = build_system_state(self.config)
        self.status_machine = StatusMachine()
        self.strategies = StrategyFlags(
            prevention=self.config.prevention,
            avoidance=self.config.avoidance,
            detection=self.config.detection,
            safety_check=self.config.safety_check,
        )
        self.event_log = EventLog(self.config.max_log_entries)
        self.metrics = SimulationMetrics(
            max_perf_samples=self.config.max_perf_samples,
            max_stress_samples=self.config.max_stress_samples,
        )
        self.participant_filter: FrozenSet[str] = frozenset()
        self.intensity = DEFAULT_INTENSITY
        self.stress_mode = False
        self.is_running = False
        self.graph = build_wait_for_graph(self.state.customers, self.state.resources)

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin ticking. Status becomes RUNNING unless a deadlock is still standing."""
        with self._lock:
            if self.is_running:
                return
            self.is_running = True
            if self._deadlocked_ids():
                self._set_status(SimulationStatus.DEADLOCK)
            elif self.status == SimulationStatus.IDLE:
                self._set_status(SimulationStatus.RUNNING)

            if self.realtime:
                self._ticker = RealtimeTicker(
                    self.config.tick_interval,
                    partial(self._realtime_step, self._generation),
                    self._on_tick_error,
                )
                self._ticker.start()
            self.logger.log_tick(self.tick, "simulation started")

    def stop(self) -> None:
        """Halt ticking, cancel pending timers and deferred actions. Status becomes IDLE."""
        with self._lock:
            self._halt()
            self.logger.log_tick(self.tick, "simulation stopped")

    def reset(self) -> None:
        """Halt and reinitialize entities, log, counters, filters and strategies."""
        with self._lock:
            self._halt()
            self.clock.reset()
            if self._injected_rng is None and self.config.seed is not None:
                self.rng = np.random.default_rng(self.config.seed)
            self._initialize()
            self.logger.log("Simulation reset")

    def set_strategy(self, kind, enabled: bool) -> None:
        """
        Toggle prevention, avoidance or detection.

        Raises:
            ValueError: For unknown strategy names
        """
        strategy = parse_strategy(kind)
        with self._lock:
            self.strategies.set(strategy, enabled)
            self.logger.log_tick(
                self.tick, f"{strategy.value} {'enabled' if enabled else 'disabled'}"
            )

    def set_participant_filter(self, resource_ids: Iterable[str]) -> None:
        """
        Restrict allocation to the given resources. An empty filter means all.

        Raises:
            ValueError: If an id names no resource
        """
        ids = frozenset(resource_ids)
        with self._lock:
            unknown = sorted(ids - set(self.state.resource_ids()))
            if unknown:
                raise ValueError(f"Unknown resource ids in filter: {', '.join(unknown)}")
            self.participant_filter = ids

    def clear_participant_filter(self) -> None:
        with self._lock:
            self.participant_filter = frozenset()

    def adjust_load(self, delta: int) -> int:
        """
        Change load intensity, clamped to 1..10.

        Intensity scales the request probability.

        Returns:
            The new intensity
        """
        with self._lock:
            self.intensity = clamp_intensity(self.intensity + delta)
            return self.intensity

    def toggle_stress_mode(self) -> bool:
        """
        Switch stress mode. Enabling fills the roster up to
        stress_customer_cap (new customers start RUNNING); disabling keeps the
        customers already added.

        Returns:
            Whether stress mode is now on
        """
        with self._lock:
            self.stress_mode = not self.stress_mode
            if self.stress_mode:
                self.metrics.stress_samples.clear()
                self._grow_roster(self.config.stress_customer_cap)
            self.logger.log_tick(self.tick, f"stress mode {'on' if self.stress_mode else 'off'}")
            return self.stress_mode

    # ------------------------------------------------------------------
    # Tick procedure
    # ------------------------------------------------------------------

    def step(self) -> TickResult:
        """Process exactly one tick."""
        with self._lock:
            tick = self.clock.advance()
            self.clock.run_due()
            if self.status == SimulationStatus.IDLE and not self._deadlocked_ids():
                self._set_status(SimulationStatus.RUNNING)

            tick_events: List[SimulationEvent] = []

            # Allocation
            outcome = run_allocation(
                self.state, self.strategies, self.config, self.rng, tick,
                self.participant_filter, self.intensity
            )
            for customer_id in outcome.granted_to:
                self.metrics.record_allocation(customer_id)
            for customer_id in outcome.denied_to:
                self.metrics.record_denial(customer_id)
            tick_events.extend(outcome.events)

            # Detection and recovery
            graph = build_wait_for_graph(self.state.customers, self.state.resources)
            cycle, victim, detection_events = self._detection_phase(graph, tick)
            tick_events.extend(detection_events)

            for customer in self.state.customers:
                if customer.is_blocked():
                    customer.wait_ticks += 1

            self.graph = mark_cycle(
                build_wait_for_graph(self.state.customers, self.state.resources),
                self._deadlocked_ids(),
            )
            self.metrics.record_tick(
                tick, self.state, outcome.granted, outcome.denied, outcome.attempts,
                self.intensity, self.stress_mode
            )

            stored = self.event_log.extend(tick_events)
            for event in stored:
                self.logger.log_event(event)

            if self.config.check_invariants:
                self.state.assert_invariants(f"at end of tick {tick}")
            if self.logger.verbose:
                self.logger.log_system_state(tick, self.state.display())

            return TickResult(tick, self.status, tuple(stored), cycle, victim)

    def _realtime_step(self, generation: int) -> Optional[TickResult]:
        """
        Ticker callback. A timer that fires after stop() or reset() finds the
        generation moved on and does nothing.
        """
        with self._lock:
            if not self.is_running or generation != self._generation:
                return None
            return self.step()

    def run(self, ticks: int) -> List[TickResult]:
        """Process several ticks back to back."""
        return [self.step() for _ in range(ticks)]

    def _detection_phase(
        self,
        graph: WaitForGraph,
        tick: int
    ) -> Tuple[CycleResult, Optional[str], List[SimulationEvent]]:
        """
        Scan for a cycle and recover from it when detection is enabled.

        With detection disabled the already-deadlocked customers are left out
        of the scan so a second, independent deadlock can still be found.
        """
        events: List[SimulationEvent] = []
        cycle = CycleResult(False)
        victim = None
        stuck = self._deadlocked_ids()

        scan = (
            self.strategies.cycles_possible
            and self.status != SimulationStatus.RECOVERY
            and should_run_detection(tick, self.config.detect_interval)
        )
        if scan:
            exclude = () if self.strategies.detection else stuck
            cycle = detect_cycle(graph, exclude)

        if cycle.found:
            events.extend(self._enter_deadlock(cycle.cycle_nodes, tick))
            if self.strategies.detection:
                victim = select_victim(cycle.cycle_nodes, self.state)
                recovery_events = recover_from_deadlock(cycle.cycle_nodes, self.state, tick)
                events.extend(recovery_events)
                self.metrics.record_recovery()
                self.logger.log_recovery(
                    tick, victim, [e.resource_id for e in recovery_events if e.resource_id]
                )
                self._set_status(SimulationStatus.RECOVERY)
                self._schedule_settle()
            else:
                # Nobody recovers: mark every other independent deadlock too
                exclude = stuck + list(cycle.cycle_nodes)
                extra = detect_cycle(graph, exclude)
                while extra.found:
                    events.extend(self._enter_deadlock(extra.cycle_nodes, tick))
                    exclude.extend(extra.cycle_nodes)
                    extra = detect_cycle(graph, exclude)
        elif stuck and self.status in (SimulationStatus.IDLE, SimulationStatus.RUNNING):
            self._set_status(SimulationStatus.DEADLOCK)

        return cycle, victim, events

    def _enter_deadlock(self, members: Tuple[str, ...], tick: int) -> List[SimulationEvent]:
        new = any(self.state.customer(m).state != CustomerState.DEADLOCKED for m in members)
        for member_id in members:
            self.state.customer(member_id).state = CustomerState.DEADLOCKED

        self._set_status(SimulationStatus.DEADLOCK)
        if not new:
            return []

        self.metrics.record_deadlock()
        self.logger.log_deadlock(tick, members, self.strategies.detection)
        return [SimulationEvent(
            tick=tick,
            event_type=EventType.DEADLOCK,
            message=f"Deadlock cycle detected: {self._describe_cycle(members)}",
            customer_id=members[0],
            resource_id=self.state.customer(members[0]).waiting,
        )]

    def _describe_cycle(self, members: Tuple[str, ...]) -> str:
        parts = []
        for member_id in members:
            customer = self.state.customer(member_id)
            parts.append(customer.name)
            if customer.waiting is not None:
                parts.append(self.state.resource(customer.waiting).name)
        parts.append(self.state.customer(members[0]).name)
        return " → ".join(parts)

    def _schedule_settle(self) -> None:
        if self._settle is not None:
            self._settle.cancel()
        self._settle = self.clock.schedule(
            self.config.recovery_settle_ticks, self._finish_recovery, "recovery-settle"
        )

    def _finish_recovery(self) -> None:
        self._settle = None
        if self.status == SimulationStatus.RECOVERY:
            self._set_status(SimulationStatus.RUNNING)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _halt(self) -> None:
        self.is_running = False
        self._generation += 1
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None
        self.clock.cancel_all()
        self._settle = None
        old = self.status
        if self.status_machine.halt(self.tick):
            self.logger.log_status(self.tick, old.value, SimulationStatus.IDLE.value)

    def _set_status(self, target: SimulationStatus) -> None:
        old = self.status
        if self.status_machine.transition(target, self.tick):
            self.logger.log_status(self.tick, old.value, target.value)

    def _deadlocked_ids(self) -> List[str]:
        return [c.id for c in self.state.customers if c.state == CustomerState.DEADLOCKED]

    def _grow_roster(self, target: int) -> None:
        for index in range(self.state.num_customers, target):
            self.state.customers.append(build_customer(index, self.config, CustomerState.RUNNING))
        self.state.refresh_matrices()

    def _on_tick_error(self, error: BaseException) -> None:
        self.is_running = False
        self.logger.log(f"Tick failed, simulation halted: {error}", "error")

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    @property
    def tick(self) -> int:
        return self.clock.tick

    @property
    def status(self) -> SimulationStatus:
        return self.status_machine.status

    @property
    def deadlock_stuck(self) -> bool:
        """True while a deadlock stands with nobody recovering it."""
        return self.status == SimulationStatus.DEADLOCK

    @property
    def customers(self) -> Tuple[CustomerSnapshot, ...]:
        with self._lock:
            return tuple(c.snapshot() for c in self.state.customers)

    @property
    def resources(self) -> Tuple[ResourceSnapshot, ...]:
        with self._lock:
            return tuple(r.snapshot() for r in self.state.resources)

    @property
    def counters(self) -> CounterSnapshot:
        return self.metrics.counters()

    def events(self, limit: Optional[int] = None) -> Tuple[SimulationEvent, ...]:
        """Retained events, newest first."""
        with self._lock:
            return tuple(self.event_log.recent(limit))

    def snapshot(self) -> SimulationSnapshot:
        with self._lock:
            return SimulationSnapshot(
                tick=self.tick,
                status=self.status,
                is_running=self.is_running,
                deadlock_stuck=self.deadlock_stuck,
                customers=self.customers,
                resources=self.resources,
                events=self.events(),
                graph=self.graph,
                counters=self.counters,
                prevention_enabled=self.strategies.prevention,
                avoidance_enabled=self.strategies.avoidance,
                detection_enabled=self.strategies.detection,
                participant_filter=self.participant_filter,
                intensity=self.intensity,
                stress_mode=self.stress_mode,
                perf_samples=tuple(self.metrics.perf_samples),
                stress_samples=tuple(self.metrics.stress_samples),
            )


def run_simulation(
    config: SimulationConfig,
    ticks: int,
    rng: Optional[np.random.Generator] = None,
    logger: Optional[SimulatorLogger] = None,
    stress: bool = False,
    intensity: int = DEFAULT_INTENSITY
) -> Tuple[EventLog, SimulationMetrics, SimulationSnapshot]:
    """
    Run the simulation headless for a fixed number of ticks.

    Args:
        config: Simulation configuration (strategies included)
        ticks: Ticks to process
        rng: Optional random source; defaults to one seeded from config.seed
        logger: Optional logger; defaults to a console-less one
        stress: Turn stress mode on before the first tick
        intensity: Load intensity

    Returns:
        Tuple of (event_log, metrics, final snapshot)
    """
    if logger is None:
        logger = SimulatorLogger(console=False, log_file=config.log_file)
    simulator = DeadlockSimulator(config, rng=rng, logger=logger)
    simulator.adjust_load(intensity - simulator.intensity)
    if stress:
        simulator.toggle_stress_mode()

    simulator.start()
    simulator.run(ticks)
    snapshot = simulator.snapshot()
    simulator.stop()
    logger.close()
    return simulator.event_log, simulator.metrics, snapshot


def _strategy_label(config: SimulationConfig) -> str:
    enabled = [s.value for s in Strategy if getattr(config, s.value)]
    return "+".join(enabled) if enabled else "none"


def main():
    """Main entry point for the simulator."""
    parser = argparse.ArgumentParser(
        description='Deadlock Handling Simulator'
    )
    parser.add_argument('--ticks', type=int, default=100, help='Ticks to simulate (default: 100)')
    parser.add_argument('--seed', type=int, default=None, help='Random seed')
    parser.add_argument('--config', type=str, default=None, help='Path to configuration JSON file')
    parser.add_argument('--prevention', action='store_true', help='Enable resource-ordering prevention')
    parser.add_argument('--avoidance', action='store_true', help="Enable Banker's avoidance")
    parser.add_argument('--no-detection', action='store_true', help='Disable detection and recovery')
    parser.add_argument('--safety-check', choices=['bankers', 'capacity'], default=None,
                        help='Safety check used by avoidance')
    parser.add_argument('--stress', action='store_true', help='Enable stress mode')
    parser.add_argument('--intensity', type=int, default=DEFAULT_INTENSITY, help='Load intensity 1..10')
    parser.add_argument('--realtime', action='store_true', help='Tick on a wall-clock timer')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging')
    parser.add_argument('--log-file', type=str, default=None, help='Also write the log to this file')
    parser.add_argument('--dot', type=str, default=None, help='Write the final wait-for graph as DOT')
    parser.add_argument('--compare', action='store_true', help='Compare all strategy presets')
    parser.add_argument('--runs', type=int, default=10, help='Runs per strategy for --compare (default: 10)')

    args = parser.parse_args()

    if args.ticks < 1:
        parser.error('--ticks must be at least 1')

    overrides = {
        'seed': args.seed,
        'safety_check': args.safety_check,
        'log_file': args.log_file,
        'prevention': True if args.prevention else None,
        'avoidance': True if args.avoidance else None,
        'detection': False if args.no_detection else None,
    }
    try:
        if args.config:
            config = load_config(args.config, **overrides)
        else:
            config = replace(SimulationConfig(), **{k: v for k, v in overrides.items() if v is not None})
    except ConfigLoadError as e:
        print(f"[ERROR] Failed to load configuration: {e}")
        return 1

    if args.compare:
        results, _ = compare_strategies(
            list(STRATEGY_PRESETS), config, args.ticks, args.runs,
            run_simulation_func=run_simulation
        )
        print(generate_comparison_report(results, args.ticks, args.runs, config.safety_check))
        return 0

    logger = SimulatorLogger(verbose=args.verbose, log_file=config.log_file)
    simulator = DeadlockSimulator(config, logger=logger, realtime=args.realtime)
    simulator.adjust_load(args.intensity - simulator.intensity)
    if args.stress:
        simulator.toggle_stress_mode()

    logger.log(f"\n{'='*60}")
    logger.log(f"SIMULATION START: {_strategy_label(config).upper()}")
    logger.log(f"{'='*60}\n")

    simulator.start()
    try:
        if args.realtime:
            while simulator.tick < args.ticks and simulator.is_running:
                time.sleep(config.tick_interval / 4)
        else:
            simulator.run(args.ticks)
    except KeyboardInterrupt:
        logger.log("Interrupted", "warning")
    finally:
        snapshot = simulator.snapshot()
        simulator.stop()

    logger.log(format_metrics_report(
        simulator.metrics, simulator.state, _strategy_label(config), snapshot.status.value
    ))

    if args.dot:
        with open(args.dot, 'w', encoding='utf-8') as f:
            f.write(to_dot(snapshot.graph))
        logger.log(f"Wait-for graph written to {args.dot}")

    logger.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
