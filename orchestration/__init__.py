"""Stack orchestration: dependency graph, orchestrator and output set."""

from orchestration.graph import DEPENDENCY_EDGES, DependencyEdge, ProvisioningPlan, topological_order
from orchestration.orchestrator import OrchestrationState, Orchestrator
from orchestration.outputs import OutputSet

__all__ = [
    "DEPENDENCY_EDGES",
    "DependencyEdge",
    "OrchestrationState",
    "Orchestrator",
    "OutputSet",
    "ProvisioningPlan",
    "topological_order",
]
