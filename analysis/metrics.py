"""
Metrics Tracking for the Deadlock Handling Simulator.

Tracks the aggregate counters and the per-tick performance samples shown
by the dashboard.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict
import statistics

from models.customer import CustomerState
from models.system_state import SystemState

MIN_INTENSITY = 1
MAX_INTENSITY = 10
DEFAULT_INTENSITY = 5


@dataclass(frozen=True)
class PerformanceSample:
    """Metrics for a single tick."""
    tick: int
    utilization: float  # % of resource instances held
    contention: float  # % of active customers blocked
    active_customers: int
    waiting_customers: int
    granted: int
    denied: int
    intensity: int


@dataclass(frozen=True)
class StressSample:
    """Extra per-tick figures recorded while stress mode is on."""
    tick: int
    lock_attempts: int
    lock_failures: int
    contention_level: float
    avg_wait_ticks: float
    resource_utilization: float


@dataclass(frozen=True)
class CounterSnapshot:
    """Aggregate counters as exposed on the query surface."""
    tick: int
    deadlock_count: int
    recovery_count: int
    total_granted: int
    total_denied: int


@dataclass
class SimulationMetrics:
    """
    Accumulated metrics for a simulation run.

    Counters:
    1. deadlock_count: Distinct deadlocks that formed
    2. recovery_count: Recovery actions taken
    3. total_granted / total_denied: Allocation decisions
    4. tick: Ticks processed
    """
    deadlock_count: int = 0
    recovery_count: int = 0
    total_granted: int = 0
    total_denied: int = 0
    tick: int = 0

    max_perf_samples: int = 60
    max_stress_samples: int = 40

    perf_samples: Deque[PerformanceSample] = field(default_factory=deque)
    stress_samples: Deque[StressSample] = field(default_factory=deque)

    # Per-customer tracking
    customer_granted_counts: Dict[str, int] = field(default_factory=dict)
    customer_denied_counts: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        self.perf_samples = deque(self.perf_samples, maxlen=self.max_perf_samples)
        self.stress_samples = deque(self.stress_samples, maxlen=self.max_stress_samples)

    def record_deadlock(self) -> None:
        """Record a deadlock occurrence."""
        self.deadlock_count += 1

    def record_recovery(self) -> None:
        self.recovery_count += 1

    def record_allocation(self, customer_id: str) -> None:
        """
        Record a granted request for a customer.

        Args:
            customer_id: Customer identifier
        """
        self.total_granted += 1
        self.customer_granted_counts[customer_id] = self.customer_granted_counts.get(customer_id, 0) + 1

    def record_denial(self, customer_id: str) -> None:
        """
        Record a denied request for a customer.

        Args:
            customer_id: Customer identifier
        """
        self.total_denied += 1
        self.customer_denied_counts[customer_id] = self.customer_denied_counts.get(customer_id, 0) + 1

    def record_tick(
        self,
        tick: int,
        system_state: SystemState,
        granted: int,
        denied: int,
        attempts: int,
        intensity: int,
        stress_mode: bool = False
    ) -> PerformanceSample:
        """
        Record metrics for a single tick.

        Args:
            tick: Current tick number
            system_state: State after the tick's mutations
            granted: Requests granted this tick
            denied: Requests denied this tick
            attempts: Acquisition attempts this tick
            intensity: Current load intensity (1..10)
            stress_mode: Whether stress mode is on

        Returns:
            The recorded performance sample
        """
        self.tick = tick

        total_instances = sum(r.max_instances for r in system_state.resources)
        held_instances = sum(r.current_instances for r in system_state.resources)
        utilization = (held_instances / total_instances) * 100 if total_instances else 0.0

        active = [c for c in system_state.customers if c.state != CustomerState.IDLE]
        blocked = [c for c in active if c.is_blocked()]
        contention = (len(blocked) / len(active)) * 100 if active else 0.0

        sample = PerformanceSample(
            tick=tick,
            utilization=utilization,
            contention=contention,
            active_customers=len(active),
            waiting_customers=len(blocked),
            granted=granted,
            denied=denied,
            intensity=intensity,
        )
        self.perf_samples.append(sample)

        if stress_mode:
            wait_ticks = [c.wait_ticks for c in system_state.customers]
            self.stress_samples.append(StressSample(
                tick=tick,
                lock_attempts=attempts,
                lock_failures=max(0, attempts - granted),
                contention_level=contention_level(contention, intensity),
                avg_wait_ticks=statistics.mean(wait_ticks) if wait_ticks else 0.0,
                resource_utilization=utilization,
            ))

        return sample

    def counters(self) -> CounterSnapshot:
        return CounterSnapshot(
            tick=self.tick,
            deadlock_count=self.deadlock_count,
            recovery_count=self.recovery_count,
            total_granted=self.total_granted,
            total_denied=self.total_denied,
        )

    def get_avg_utilization(self) -> float:
        """Average resource utilization over retained samples."""
        if not self.perf_samples:
            return 0.0
        return statistics.mean(s.utilization for s in self.perf_samples)

    def get_avg_contention(self) -> float:
        if not self.perf_samples:
            return 0.0
        return statistics.mean(s.contention for s in self.perf_samples)

    def get_denial_rate(self) -> float:
        """Denied / (granted + denied)."""
        decisions = self.total_granted + self.total_denied
        if decisions == 0:
            return 0.0
        return self.total_denied / decisions


def clamp_intensity(value: int) -> int:
    return max(MIN_INTENSITY, min(MAX_INTENSITY, int(value)))


def contention_level(contention: float, intensity: int) -> float:
    """Contention scaled by load intensity, capped at 100."""
    return min(100.0, contention * intensity / DEFAULT_INTENSITY)


def format_metrics_report(
    metrics: SimulationMetrics,
    system_state: SystemState = None,
    strategy: str = None,
    status: str = None
) -> str:
    """
    Format metrics for display at end of simulation.

    Args:
        metrics: SimulationMetrics instance with collected data
        system_state: Final state, for the per-customer summary
        strategy: Strategy description
        status: Final simulation status

    Returns:
        Formatted metrics report string
    """
    lines = []
    lines.append("\n" + "="*60)
    lines.append("SIMULATION METRICS")
    lines.append("="*60)

    if strategy:
        lines.append(f"Strategy: {strategy.upper()}")
    if status:
        lines.append(f"Final Status: {status}")
    if strategy or status:
        lines.append("")

    lines.append(f"Total Ticks: {metrics.tick}")
    lines.append("")

    lines.append("KEY PERFORMANCE METRICS:")
    lines.append("-" * 60)
    lines.append(f"1. Deadlocks: {metrics.deadlock_count}")
    lines.append(f"2. Recoveries: {metrics.recovery_count}")
    lines.append(f"3. Granted / Denied: {metrics.total_granted} / {metrics.total_denied} "
                 f"({metrics.get_denial_rate():.2%} denied)")
    lines.append(f"4. Average Resource Utilization: {metrics.get_avg_utilization():.2f}%")
    lines.append(f"5. Average Contention: {metrics.get_avg_contention():.2f}%")
    lines.append("   (Averages cover the retained sample window)")

    if system_state is not None and system_state.customers:
        lines.append("")
        lines.append("PER-CUSTOMER SUMMARY:")
        lines.append("-" * 60)
        for customer in system_state.customers:
            granted = metrics.customer_granted_counts.get(customer.id, 0)
            denied = metrics.customer_denied_counts.get(customer.id, 0)
            holding = ", ".join(customer.holding) if customer.holding else "none"
            lines.append(
                f"  {customer.id}: {customer.state.value:10} | wait={customer.wait_ticks:3} ticks | "
                f"grant={granted:3} deny={denied:3} | holding={holding}"
            )

    lines.append("="*60)
    return "\n".join(lines)
