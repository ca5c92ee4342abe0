"""
Performance Analysis Library for the Deadlock Handling Simulator.

Called by simulator.py --compare to compare deadlock-handling strategies.
This is a library module, not a standalone CLI tool.
"""

from typing import List, Dict, Tuple
from dataclasses import dataclass, replace
import statistics

from utils.config_loader import SimulationConfig

# Preset name -> (prevention, avoidance, detection)
STRATEGY_PRESETS = {
    "none": (False, False, False),
    "detection": (False, False, True),
    "prevention": (True, False, True),
    "avoidance": (False, True, True),
}


@dataclass
class RunResult:
    """Results from a single simulation run."""
    strategy: str
    run_number: int
    seed: int
    ticks: int
    final_status: str
    deadlock_count: int
    recovery_count: int
    total_granted: int
    total_denied: int
    avg_utilization: float
    avg_contention: float

    def had_deadlock(self) -> bool:
        """Check if run encountered a deadlock."""
        return self.deadlock_count > 0

    def ended_stuck(self) -> bool:
        """Check if run ended in an unrecovered deadlock."""
        return self.final_status == "deadlock"


@dataclass
class StrategyComparisonResult:
    """Aggregated results for one strategy preset."""
    strategy_name: str
    deadlock_frequency: float  # Runs with a deadlock / total runs
    avg_deadlocks_per_run: float
    avg_recoveries_per_run: float
    avg_resource_utilization: float  # Average % of instances held
    avg_contention: float  # Average % of active customers blocked
    denial_rate: float  # Denied / (granted + denied)
    total_runs: int
    stuck_count: int = 0  # Runs that ended in an unrecovered deadlock

    def display(self) -> str:
        """Format results for display."""
        result = f"\nStrategy: {self.strategy_name.upper()}\n"
        result += f"  Runs: {self.total_runs} total\n"
        result += (
            f"    Runs with deadlock: {self.deadlock_frequency:.2%} "
            f"(avg {self.avg_deadlocks_per_run:.2f} per run)\n"
        )
        result += f"    Recoveries: avg {self.avg_recoveries_per_run:.2f} per run\n"
        result += f"    Ended stuck in deadlock: {self.stuck_count}/{self.total_runs}\n"
        result += f"  Resource Utilization: {self.avg_resource_utilization:.2f}%\n"
        result += f"  Contention: {self.avg_contention:.2f}%\n"
        result += f"  Denial Rate: {self.denial_rate:.2%}"
        return result


def preset_config(strategy_name: str, config: SimulationConfig, seed: int) -> SimulationConfig:
    """
    Copy a configuration with a strategy preset and seed applied.

    Raises:
        ValueError: For unknown preset names
    """
    if strategy_name not in STRATEGY_PRESETS:
        raise ValueError(
            f"Unknown strategy preset '{strategy_name}' "
            f"(expected one of: {', '.join(STRATEGY_PRESETS)})"
        )
    prevention, avoidance, detection = STRATEGY_PRESETS[strategy_name]
    return replace(
        config, prevention=prevention, avoidance=avoidance, detection=detection,
        seed=seed, log_file=None
    )


def analyze_strategy(
    strategy_name: str,
    config: SimulationConfig,
    ticks: int,
    num_runs: int = 10,
    run_simulation_func=None
) -> Tuple[StrategyComparisonResult, List[RunResult]]:
    """
    Run multiple seeded simulations and collect metrics for a strategy preset.

    Run i uses seed base + i, where base is config.seed (0 if unset), so every
    preset sees the same sequence of seeds.

    Args:
        strategy_name: Preset to test (none, detection, prevention, avoidance)
        config: Base configuration
        ticks: Ticks per run
        num_runs: Number of simulation runs
        run_simulation_func: Function to run simulation (injected from simulator.py)

    Returns:
        Tuple of (StrategyComparisonResult, List[RunResult])
    """
    if run_simulation_func is None:
        raise ValueError("run_simulation_func must be provided")
    if num_runs < 1:
        raise ValueError("num_runs must be at least 1")

    base_seed = config.seed if config.seed is not None else 0
    run_results: List[RunResult] = []

    print(f"\nRunning {num_runs} simulations for strategy: {strategy_name.upper()}")

    for run_idx in range(num_runs):
        seed = base_seed + run_idx
        run_config = preset_config(strategy_name, config, seed)
        _, metrics, snapshot = run_simulation_func(run_config, ticks)

        run_results.append(RunResult(
            strategy=strategy_name,
            run_number=run_idx + 1,
            seed=seed,
            ticks=snapshot.tick,
            final_status=snapshot.status.value,
            deadlock_count=metrics.deadlock_count,
            recovery_count=metrics.recovery_count,
            total_granted=metrics.total_granted,
            total_denied=metrics.total_denied,
            avg_utilization=metrics.get_avg_utilization(),
            avg_contention=metrics.get_avg_contention(),
        ))

        if (run_idx + 1) % 10 == 0:
            print(f"  Progress: {run_idx + 1}/{num_runs} runs complete")

    granted = sum(r.total_granted for r in run_results)
    denied = sum(r.total_denied for r in run_results)

    return StrategyComparisonResult(
        strategy_name=strategy_name,
        deadlock_frequency=sum(1 for r in run_results if r.had_deadlock()) / len(run_results),
        avg_deadlocks_per_run=statistics.mean(r.deadlock_count for r in run_results),
        avg_recoveries_per_run=statistics.mean(r.recovery_count for r in run_results),
        avg_resource_utilization=statistics.mean(r.avg_utilization for r in run_results),
        avg_contention=statistics.mean(r.avg_contention for r in run_results),
        denial_rate=denied / (granted + denied) if granted + denied else 0.0,
        total_runs=num_runs,
        stuck_count=sum(1 for r in run_results if r.ended_stuck()),
    ), run_results


def compare_strategies(
    strategies: List[str],
    config: SimulationConfig,
    ticks: int,
    num_runs: int = 10,
    run_simulation_func=None
) -> Tuple[List[StrategyComparisonResult], Dict[str, List[RunResult]]]:
    """
    Compare multiple strategy presets under the same configuration.

    Args:
        strategies: Preset names to compare
        config: Base configuration
        ticks: Ticks per run
        num_runs: Number of runs per preset
        run_simulation_func: Function to run simulation (injected from simulator.py)

    Returns:
        Tuple of (List[StrategyComparisonResult], Dict[strategy_name -> List[RunResult]])
    """
    results = []
    all_run_results = {}

    for strategy in strategies:
        result, run_results = analyze_strategy(
            strategy, config, ticks, num_runs, run_simulation_func
        )
        results.append(result)
        all_run_results[strategy] = run_results

    return results, all_run_results


def generate_comparison_report(
    results: List[StrategyComparisonResult],
    ticks: int,
    num_runs: int,
    safety_check: str = "bankers"
) -> str:
    """
    Generate formatted comparison report.

    Args:
        results: List of strategy comparison results
        ticks: Ticks per run
        num_runs: Number of runs per strategy
        safety_check: Avoidance oracle the runs used

    Returns:
        Formatted string report
    """
    report = "\n" + "="*70 + "\n"
    report += "STRATEGY COMPARISON REPORT\n"
    report += "="*70 + "\n"
    report += f"Ticks per run: {ticks}\n"
    report += f"Runs per strategy: {num_runs}\n"
    report += f"Avoidance safety check: {safety_check}\n"
    report += "="*70 + "\n"

    for result in results:
        report += result.display()
        report += "\n" + "-"*70

    report += "\n\nEXPECTED PATTERNS:\n"
    report += "-"*70 + "\n"
    if safety_check == "bankers":
        report += "  PREVENTION / AVOIDANCE:\n"
        report += "    - Deadlocks: always 0 (cycles cannot form)\n"
    else:
        report += "  PREVENTION:\n"
        report += "    - Deadlocks: always 0 (cycles cannot form)\n"
        report += "  AVOIDANCE (capacity check):\n"
        report += "    - Fewer deadlocks, but cycles can still form and are detected\n"
    report += "    - Denial Rate: higher (out-of-order or unsafe requests refused)\n"
    report += "\n"
    report += "  DETECTION:\n"
    report += "    - Deadlocks form, are detected and recovered by preemption\n"
    report += "\n"
    report += "  NONE:\n"
    report += "    - The first deadlock is never broken; runs usually end stuck\n"
    report += "\n" + "="*70 + "\n"

    report += "\nKEY INSIGHTS:\n"
    report += "-"*70 + "\n"

    def format_best(metric_name: str, results_list: List[StrategyComparisonResult],
                    key_func, format_func, higher_is_better: bool = True):
        """Format best metric, handling ties. Returns empty string if all strategies tied."""
        if higher_is_better:
            target_value = max(key_func(r) for r in results_list)
        else:
            target_value = min(key_func(r) for r in results_list)

        winners = [r for r in results_list if key_func(r) == target_value]

        if len(winners) == len(results_list):
            return ""

        names = ", ".join(w.strategy_name.upper() for w in winners)
        if len(winners) == 1:
            return f"  {metric_name}: {names} ({format_func(target_value)})\n"
        return f"  {metric_name}: {names} (tie at {format_func(target_value)})\n"

    if len(results) > 1:
        insights = [
            format_best(
                "Best Resource Utilization", results,
                lambda r: r.avg_resource_utilization, lambda v: f"{v:.2f}%"
            ),
            format_best(
                "Lowest Deadlock Frequency", results,
                lambda r: r.deadlock_frequency, lambda v: f"{v:.2%}",
                higher_is_better=False
            ),
            format_best(
                "Lowest Contention", results,
                lambda r: r.avg_contention, lambda v: f"{v:.2f}%",
                higher_is_better=False
            ),
            format_best(
                "Lowest Denial Rate", results,
                lambda r: r.denial_rate, lambda v: f"{v:.2%}",
                higher_is_better=False
            ),
        ]
        insights = [i for i in insights if i]

        if insights:
            for insight in insights:
                report += insight
        else:
            report += "  All strategies showed identical performance.\n"

    report += "\n" + "="*70 + "\n"

    return report
