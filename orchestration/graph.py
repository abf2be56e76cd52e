"""Dependency graph between components and the provisioning plan."""

from dataclasses import dataclass

from common.errors import DependencyResolutionError

# Declaration order; breaks ties between components that are ready together
DECLARATION_ORDER: tuple[str, ...] = ("network", "dns", "database", "bastion", "application")


@dataclass(frozen=True)
class DependencyEdge:
    """``consumer`` needs ``fields`` of ``producer``'s output before it can start."""

    consumer: str
    producer: str
    fields: tuple[str, ...]


DEPENDENCY_EDGES: tuple[DependencyEdge, ...] = (
    DependencyEdge("database", "network", ("vpc_id", "data_subnet_ids")),
    DependencyEdge("bastion", "network", ("vpc_id", "public_subnet_ids")),
    DependencyEdge("application", "network", ("vpc_id", "public_subnet_ids", "private_subnet_ids")),
    DependencyEdge("application", "dns", ("zone_id", "certificate_arn", "fqdn")),
    DependencyEdge("application", "database", ("endpoint", "port", "name", "secret_arn", "security_boundary")),
)


@dataclass(frozen=True)
class ProvisioningPlan:
    """Ordered component kinds; every producer precedes its consumers."""

    order: tuple[str, ...]
    edges: tuple[DependencyEdge, ...]

    def __iter__(self):
        return iter(self.order)

    def __len__(self) -> int:
        return len(self.order)

    def producers_of(self, consumer: str) -> tuple[DependencyEdge, ...]:
        return tuple(e for e in self.edges if e.consumer == consumer)


def topological_order(
    nodes: tuple[str, ...] | list[str],
    edges: tuple[DependencyEdge, ...] | list[DependencyEdge],
) -> ProvisioningPlan:
    """Kahn's algorithm; among ready nodes the earliest declared goes first.

    Raises:
        DependencyResolutionError: If an edge names an unknown component or
            the edges form a cycle.
    """
    nodes = tuple(nodes)
    rank = {node: i for i, node in enumerate(nodes)}
    for edge in edges:
        for node in (edge.consumer, edge.producer):
            if node not in rank:
                raise DependencyResolutionError(
                    f"Dependency edge {edge.producer} -> {edge.consumer} names unknown component '{node}'",
                    operation="plan",
                )

    indegree = {node: 0 for node in nodes}
    dependents: dict[str, set[str]] = {node: set() for node in nodes}
    for edge in edges:
        if edge.consumer not in dependents[edge.producer]:
            dependents[edge.producer].add(edge.consumer)
            indegree[edge.consumer] += 1

    order: list[str] = []
    ready = [node for node in nodes if indegree[node] == 0]
    while ready:
        ready.sort(key=rank.__getitem__)
        node = ready.pop(0)
        order.append(node)
        for dependent in dependents[node]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                ready.append(dependent)

    if len(order) != len(nodes):
        stuck = sorted((n for n in nodes if n not in order), key=rank.__getitem__)
        raise DependencyResolutionError(
            f"Dependency cycle between components: {', '.join(stuck)}",
            operation="plan",
        )
    return ProvisioningPlan(order=tuple(order), edges=tuple(edges))
