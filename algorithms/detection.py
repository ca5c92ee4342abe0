"""
Deadlock Detection Algorithm for the Deadlock Handling Simulator.

Finds a cycle in the customer wait-for graph with depth-first search.
"""

from dataclasses import dataclass
from typing import Iterable, List, Tuple

from algorithms.graph import WaitForGraph, waits_for_map


@dataclass(frozen=True)
class CycleResult:
    """Output of the cycle detector."""
    found: bool
    cycle_nodes: Tuple[str, ...] = ()


def detect_cycle(graph: WaitForGraph, exclude: Iterable[str] = ()) -> CycleResult:
    """
    Detect a cycle using DFS over the collapsed customer graph.

    Algorithm:
    1. Collapse every customer --waits--> resource --holds--> customer path
       into a customer -> customer edge
    2. DFS from each unvisited customer (index order) with an explicit stack,
       keeping visited and on-stack markers
    3. The first neighbour found on the recursion stack is a back edge: the
       stack from that neighbour to the top is the cycle

    Markers live in this call only, so scans never share state.

    Args:
        graph: Current wait-for graph
        exclude: Customers to leave out of the scan (e.g. an already known
            deadlock that nobody will recover)

    Returns:
        CycleResult with the cycle members in wait order
    """
    excluded = set(exclude)
    waits_for = waits_for_map(graph)

    visited = set()
    on_stack = set()

    for root in graph.customer_ids():
        if root in visited or root in excluded:
            continue

        # Each frame: (node, iterator over its successors)
        path: List[str] = [root]
        frames = [(root, iter(waits_for.get(root, [])))]
        visited.add(root)
        on_stack.add(root)

        while frames:
            node, successors = frames[-1]
            advanced = False

            for successor in successors:
                if successor in excluded:
                    continue
                if successor in on_stack:
                    start = path.index(successor)
                    return CycleResult(True, tuple(path[start:]))
                if successor not in visited:
                    visited.add(successor)
                    on_stack.add(successor)
                    path.append(successor)
                    frames.append((successor, iter(waits_for.get(successor, []))))
                    advanced = True
                    break

            if not advanced:
                frames.pop()
                path.pop()
                on_stack.discard(node)

    return CycleResult(False)


def should_run_detection(current_tick: int, detect_interval: int) -> bool:
    """
    Determine if detection should run at current simulation tick.

    Args:
        current_tick: Current simulation tick number
        detect_interval: Ticks between detection scans

    Returns:
        True if detection should run
    """
    return current_tick % detect_interval == 0
