"""
Wait-For Graph for the Deadlock Handling Simulator.

The graph is a pure projection of customer and resource state: it is
rebuilt every tick and never mutated on its own.
"""

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Tuple

from models.customer import Customer
from models.resource import Resource

CUSTOMER_NODE = "customer"
RESOURCE_NODE = "resource"
HOLDS = "holds"
WAITS = "waits"


@dataclass(frozen=True)
class GraphNode:
    id: str
    label: str
    kind: str
    state: str


@dataclass(frozen=True)
class GraphEdge:
    """
    Directed edge.

    holds: resource -> customer holding it
    waits: customer -> resource it is blocked on
    """
    source: str
    target: str
    kind: str
    cycle: bool = False


@dataclass(frozen=True)
class WaitForGraph:
    nodes: Tuple[GraphNode, ...] = ()
    edges: Tuple[GraphEdge, ...] = ()

    def customer_ids(self) -> List[str]:
        return [n.id for n in self.nodes if n.kind == CUSTOMER_NODE]

    def edges_of_kind(self, kind: str) -> List[GraphEdge]:
        return [e for e in self.edges if e.kind == kind]

    def cycle_edges(self) -> List[GraphEdge]:
        return [e for e in self.edges if e.cycle]


def build_wait_for_graph(customers: Iterable[Customer], resources: Iterable[Resource]) -> WaitForGraph:
    """
    Derive the wait-for graph from current entity state.

    Args:
        customers: All customers
        resources: All resources

    Returns:
        Graph with a holds edge per (resource, holder) pair and a waits edge
        per blocked customer. No edge is flagged as part of a cycle.
    """
    customers = list(customers)
    resources = list(resources)
    nodes = []
    edges = []

    for customer in customers:
        nodes.append(GraphNode(customer.id, customer.name, CUSTOMER_NODE, customer.state.value))

    for resource in resources:
        state = "available" if resource.is_available() else "held"
        nodes.append(GraphNode(resource.id, resource.name, RESOURCE_NODE, state))

    for resource in resources:
        for holder_id in resource.holders:
            edges.append(GraphEdge(resource.id, holder_id, HOLDS))

    for customer in customers:
        if customer.waiting is not None:
            edges.append(GraphEdge(customer.id, customer.waiting, WAITS))

    return WaitForGraph(tuple(nodes), tuple(edges))


def waits_for_map(graph: WaitForGraph) -> Dict[str, List[str]]:
    """
    Collapse customer -> resource -> customer paths into customer -> customer edges.

    Returns:
        Map from each customer id to the customers it waits for, in holder order
    """
    holders: Dict[str, List[str]] = {}
    for edge in graph.edges_of_kind(HOLDS):
        holders.setdefault(edge.source, []).append(edge.target)

    waits_for: Dict[str, List[str]] = {cid: [] for cid in graph.customer_ids()}
    for edge in graph.edges_of_kind(WAITS):
        for holder_id in holders.get(edge.target, []):
            if holder_id != edge.source and holder_id not in waits_for[edge.source]:
                waits_for[edge.source].append(holder_id)
    return waits_for


def mark_cycle(graph: WaitForGraph, members: Iterable[str]) -> WaitForGraph:
    """
    Flag the edges that run between cycle members.

    A waits edge is flagged when a member waits on a resource held by
    another member; the matching holds edge is flagged with it.

    Returns:
        New graph; the input is left untouched
    """
    members = set(members)
    if not members:
        return clear_cycle(graph)

    holders: Dict[str, List[str]] = {}
    for edge in graph.edges_of_kind(HOLDS):
        holders.setdefault(edge.source, []).append(edge.target)

    flagged = set()
    for edge in graph.edges_of_kind(WAITS):
        if edge.source not in members:
            continue
        for holder_id in holders.get(edge.target, []):
            if holder_id in members and holder_id != edge.source:
                flagged.add((edge.source, edge.target, WAITS))
                flagged.add((edge.target, holder_id, HOLDS))

    edges = tuple(
        replace(e, cycle=(e.source, e.target, e.kind) in flagged) for e in graph.edges
    )
    return replace(graph, edges=edges)


def clear_cycle(graph: WaitForGraph) -> WaitForGraph:
    return replace(graph, edges=tuple(replace(e, cycle=False) for e in graph.edges))


def to_dot(graph: WaitForGraph, name: str = "RAG") -> str:
    """
    Render the graph in Graphviz DOT format.

    Customers are circles, resources boxes; cycle edges are drawn red.
    """
    lines = [f"digraph {name} {{"]
    for node in graph.nodes:
        shape = "circle" if node.kind == CUSTOMER_NODE else "box"
        lines.append(f'  {node.id} [shape={shape}, label="{node.id}\\n{node.label}"];')
    for edge in graph.edges:
        attrs = [f'label="{edge.kind}"']
        if edge.kind == WAITS:
            attrs.append("style=dashed")
        if edge.cycle:
            attrs.append("color=red")
        lines.append(f"  {edge.source} -> {edge.target} [{', '.join(attrs)}];")
    lines.append("}")
    return "\n".join(lines) + "\n"
