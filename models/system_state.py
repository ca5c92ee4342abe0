"""
System State model for the Deadlock Handling Simulator.

Owns the customers and resources and exposes the invariant-preserving
mutators every strategy goes through. Also maintains the matrices and
vectors required by the Banker's safety check.
"""

import numpy as np
from typing import List, Dict, Optional
from dataclasses import dataclass, field

from models.customer import Customer, CustomerState
from models.resource import Resource


@dataclass
class SystemState:
    """
    Global simulation state: every customer and resource.

    Attributes:
        customers: All customers, in index order
        resources: All resources, in index (global order) order
        allocation_matrix: [C][R] 1 where the customer holds an instance
        max_demand_matrix: [C][R] claim + holding + waiting target
        available_vector: [R] free instances per resource
        need_matrix: [C][R] Max - Allocation (for Banker's safety check)
    """
    customers: List[Customer] = field(default_factory=list)
    resources: List[Resource] = field(default_factory=list)

    # Matrices and vectors (initialized as None, computed on first access)
    _allocation_matrix: Optional[np.ndarray] = None
    _max_demand_matrix: Optional[np.ndarray] = None
    _available_vector: Optional[np.ndarray] = None
    _need_matrix: Optional[np.ndarray] = None

    @property
    def num_customers(self) -> int:
        """Number of customers in the system."""
        return len(self.customers)

    @property
    def num_resources(self) -> int:
        """Number of resources in the system."""
        return len(self.resources)

    def customer(self, customer_id: str) -> Customer:
        """Look up a customer by id."""
        for customer in self.customers:
            if customer.id == customer_id:
                return customer
        raise KeyError(f"Unknown customer {customer_id}")

    def resource(self, resource_id: str) -> Resource:
        """Look up a resource by id."""
        for resource in self.resources:
            if resource.id == resource_id:
                return resource
        raise KeyError(f"Unknown resource {resource_id}")

    def resource_ids(self) -> List[str]:
        return [r.id for r in self.resources]

    # ------------------------------------------------------------------
    # Entity mutators
    # ------------------------------------------------------------------

    def grant(self, resource_id: str, customer_id: str) -> None:
        """
        Give one instance of a resource to a customer.

        Implements Mutual Exclusion: a full resource cannot be granted and a
        customer never holds the same resource twice. Any wait the customer
        had is dropped and it becomes RUNNING.

        Args:
            resource_id: Resource to grant
            customer_id: Receiving customer

        Raises:
            ValueError: If the resource is full or already held by the customer
        """
        resource = self.resource(resource_id)
        customer = self.customer(customer_id)

        if customer.holds(resource_id) or customer_id in resource.holders:
            raise ValueError(f"{customer_id}: already holds {resource_id}")
        if not resource.is_available():
            raise ValueError(
                f"{customer_id}: cannot grant {resource_id} - at capacity "
                f"({resource.current_instances}/{resource.max_instances})"
            )

        if customer.waiting is not None:
            self.clear_wait(customer_id)

        resource.holders.append(customer_id)
        customer.holding.append(resource_id)
        customer.state = CustomerState.RUNNING
        self.refresh_matrices()

    def release(self, resource_id: str, customer_id: str) -> List[str]:
        """
        Return a customer's instance of a resource.

        Once an instance is free again every customer queued on the resource
        is woken (wait cleared, state RUNNING) so a free resource never keeps
        a wait queue.

        Args:
            resource_id: Resource to release
            customer_id: Customer giving it up

        Returns:
            Ids of the customers woken by the release

        Raises:
            ValueError: If the customer does not hold the resource
        """
        resource = self.resource(resource_id)
        customer = self.customer(customer_id)

        if not customer.holds(resource_id) or customer_id not in resource.holders:
            raise ValueError(f"{customer_id}: cannot release {resource_id} - not held")

        resource.holders.remove(customer_id)
        customer.holding.remove(resource_id)

        woken = list(resource.wait_queue)
        for waiter_id in woken:
            self.clear_wait(waiter_id)
            self.customer(waiter_id).state = CustomerState.RUNNING

        self.refresh_matrices()
        return woken

    def enqueue_wait(self, resource_id: str, customer_id: str) -> None:
        """
        Block a customer on a resource held by someone else.

        Implements Hold and Wait: the customer keeps its holdings while blocked.

        Raises:
            ValueError: If the resource has a free instance, is held by the
                customer itself, or the customer already waits elsewhere
        """
        resource = self.resource(resource_id)
        customer = self.customer(customer_id)

        if resource.is_available():
            raise ValueError(f"{customer_id}: cannot wait on {resource_id} - it is free")
        if customer.holds(resource_id):
            raise ValueError(f"{customer_id}: cannot wait on {resource_id} - already holds it")
        if customer.waiting is not None and customer.waiting != resource_id:
            raise ValueError(
                f"{customer_id}: already waiting on {customer.waiting}, cannot wait on {resource_id}"
            )

        customer.waiting = resource_id
        if customer_id not in resource.wait_queue:
            resource.wait_queue.append(customer_id)
        if customer.state != CustomerState.DEADLOCKED:
            customer.state = CustomerState.WAITING
        self.refresh_matrices()

    def clear_wait(self, customer_id: str) -> Optional[str]:
        """
        Drop a customer's wait pointer and wait-queue membership.

        The customer's state is left to the caller.

        Returns:
            The resource id the customer was waiting on, if any
        """
        customer = self.customer(customer_id)
        target = customer.waiting
        if target is None:
            return None

        resource = self.resource(target)
        if customer_id in resource.wait_queue:
            resource.wait_queue.remove(customer_id)
        customer.waiting = None
        self.refresh_matrices()
        return target

    # ------------------------------------------------------------------
    # Banker's matrices
    # ------------------------------------------------------------------

    @property
    def allocation_matrix(self) -> np.ndarray:
        """Get allocation matrix [C][R]."""
        if self._allocation_matrix is None:
            self._build_allocation_matrix()
        return self._allocation_matrix

    @property
    def max_demand_matrix(self) -> np.ndarray:
        """Get implicit max demand matrix [C][R]."""
        if self._max_demand_matrix is None:
            self._build_max_demand_matrix()
        return self._max_demand_matrix

    @property
    def available_vector(self) -> np.ndarray:
        """Get available instances vector [R]."""
        if self._available_vector is None:
            self._available_vector = np.array(
                [r.available_instances for r in self.resources], dtype=int
            )
        return self._available_vector

    @property
    def need_matrix(self) -> np.ndarray:
        """
        Get need matrix [C][R].
        Computed as: Need = Max - Allocation
        """
        if self._need_matrix is None:
            self._need_matrix = self.max_demand_matrix - self.allocation_matrix
        return self._need_matrix

    def _resource_column(self) -> Dict[str, int]:
        return {r.id: j for j, r in enumerate(self.resources)}

    def _build_allocation_matrix(self) -> None:
        """Build allocation matrix from customer holdings."""
        columns = self._resource_column()
        self._allocation_matrix = np.zeros((self.num_customers, self.num_resources), dtype=int)
        for i, customer in enumerate(self.customers):
            for resource_id in customer.holding:
                self._allocation_matrix[i][columns[resource_id]] = 1

    def _build_max_demand_matrix(self) -> None:
        """
        Build the implicit max demand matrix.

        A customer may end up needing its whole claim, plus anything it already
        holds or is blocked on.
        """
        columns = self._resource_column()
        self._max_demand_matrix = np.zeros((self.num_customers, self.num_resources), dtype=int)
        for i, customer in enumerate(self.customers):
            demanded = set(customer.claim) | set(customer.holding)
            if customer.waiting is not None:
                demanded.add(customer.waiting)
            for resource_id in demanded:
                if resource_id in columns:
                    self._max_demand_matrix[i][columns[resource_id]] = 1

    def refresh_matrices(self) -> None:
        """Refresh all matrices and vectors from current customer/resource state."""
        self._allocation_matrix = None
        self._max_demand_matrix = None
        self._available_vector = None
        self._need_matrix = None

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def display(self) -> str:
        """
        Generate readable string representation of system state.

        Returns:
            Formatted string showing customers and resources
        """
        output = []
        output.append("\n" + "="*60)
        output.append("SYSTEM STATE")
        output.append("="*60)

        output.append("\nCustomers:")
        for customer in self.customers:
            holding = ", ".join(customer.holding) if customer.holding else "-"
            output.append(
                f"  {customer.id} {customer.name:14} {customer.state.value:10} "
                f"holding=[{holding}] waiting={customer.waiting or '-'}"
            )

        output.append("\nResources:")
        for resource in self.resources:
            queue = ", ".join(resource.wait_queue) if resource.wait_queue else "-"
            holders = ", ".join(resource.holders) if resource.holders else "free"
            output.append(
                f"  {resource.id} {resource.name:18} "
                f"{resource.current_instances}/{resource.max_instances} "
                f"holders=[{holders}] queue=[{queue}]"
            )

        output.append("\n" + "="*60)
        return "\n".join(output)

    def assert_invariants(self, context=""):
        """Verify exclusivity, holding/holder symmetry and wait consistency.

        Args:
            context: Description of when this check is being run (for error messages)

        Raises:
            AssertionError: If any invariant is violated
        """
        for resource in self.resources:
            assert resource.current_instances <= resource.max_instances, (
                f"Capacity violated for {resource.id} {context}\n"
                f"  Holders: {resource.holders}, Capacity: {resource.max_instances}"
            )
            assert len(set(resource.holders)) == len(resource.holders), (
                f"Duplicate holder on {resource.id} {context}: {resource.holders}"
            )
            if resource.is_available():
                assert not resource.wait_queue, (
                    f"Resource {resource.id} has a free instance but a wait queue {context}\n"
                    f"  Queue: {resource.wait_queue}"
                )
            for holder_id in resource.holders:
                assert resource.id in self.customer(holder_id).holding, (
                    f"Holder symmetry violated {context}: {resource.id} lists {holder_id} "
                    f"but {holder_id} does not hold it"
                )
            for waiter_id in resource.wait_queue:
                assert self.customer(waiter_id).waiting == resource.id, (
                    f"Wait symmetry violated {context}: {waiter_id} queued on {resource.id} "
                    f"but waiting on {self.customer(waiter_id).waiting}"
                )

        for customer in self.customers:
            assert len(set(customer.holding)) == len(customer.holding), (
                f"{customer.id} holds a resource twice {context}: {customer.holding}"
            )
            for resource_id in customer.holding:
                assert customer.id in self.resource(resource_id).holders, (
                    f"Holding symmetry violated {context}: {customer.id} holds {resource_id} "
                    f"but the resource does not list it"
                )

            if customer.state == CustomerState.IDLE:
                assert not customer.holding and customer.waiting is None, (
                    f"Idle customer {customer.id} holds or waits {context}: {customer!r}"
                )

            if customer.is_blocked():
                assert customer.waiting is not None, (
                    f"{customer.id} is {customer.state.value} without a target {context}"
                )
            if customer.waiting is not None:
                target = self.resource(customer.waiting)
                assert customer.is_blocked(), (
                    f"{customer.id} has a target but is {customer.state.value} {context}"
                )
                assert not target.is_available() and customer.id not in target.holders, (
                    f"{customer.id} waits on {target.id} which is not held by another customer {context}"
                )
                assert customer.id in target.wait_queue, (
                    f"{customer.id} waits on {target.id} but is not in its queue {context}"
                )
