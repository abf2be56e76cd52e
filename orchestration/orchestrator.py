"""Stack orchestrator.

One linear pass, no retries at this layer:

    validate(config) -> plan(graph) -> provision(plan) -> wire(grants) -> collect(outputs)

``validate`` is the only place user input is checked. Any failure moves the
orchestrator to ``FAILED``: the error is annotated with the component and the
operation, logged once, and re-raised. Resources already created stay in place
for the operator (or ``teardown``) to reconcile; no partial OutputSet is ever
produced.
"""

import logging
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from pydantic import ValidationError

from common.errors import ConfigurationError, DependencyResolutionError, ProviderError, ProvisioningError
from components import (
    ApplicationComponent,
    BastionComponent,
    Component,
    ComponentOutput,
    DatabaseComponent,
    DnsComponent,
    NetworkComponent,
    ReachabilityGrant,
    StackContext,
    StackOptions,
)
from orchestration.graph import DECLARATION_ORDER, DEPENDENCY_EDGES, ProvisioningPlan, topological_order
from orchestration.outputs import OutputSet
from providers.base import ResourceHandle, ResourceProvider

logger = logging.getLogger(__name__)

# ELB caps load balancer and target group names
ELB_NAME_LIMIT = 32

COMPONENT_TYPES: dict[str, type[Component]] = {
    "network": NetworkComponent,
    "dns": DnsComponent,
    "database": DatabaseComponent,
    "bastion": BastionComponent,
    "application": ApplicationComponent,
}

# (source, destination, description) created by wire(), in this order
WIRING: tuple[tuple[str, str, str], ...] = (
    ("bastion", "database", "PostgreSQL from bastion"),
    ("application", "database", "PostgreSQL from application tasks"),
)


class OrchestrationState(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    PLANNED = "planned"
    PROVISIONED = "provisioned"
    WIRED = "wired"
    COLLECTED = "collected"
    FAILED = "failed"


class Orchestrator:
    """Provision the five components of one stack against a provider.

    Args:
        context: Stack naming and tags.
        provider: Resource provider and secrets store.
    """

    def __init__(self, context: StackContext, provider: ResourceProvider):
        self.context = context
        self.provider = provider
        self.state = OrchestrationState.PENDING
        self.options: StackOptions | None = None
        self.provisioning_plan: ProvisioningPlan | None = None
        self.components: dict[str, Component] = {}
        self.outputs: dict[str, ComponentOutput] = {}
        self.grants: list[ReachabilityGrant] = []
        self.ledger: list[ResourceHandle] = []
        self.error: ProvisioningError | None = None
        self._output_set: OutputSet | None = None

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def validate(self, config: StackOptions | Mapping[str, Any]) -> StackOptions:
        """Check the configuration and fill in every default.

        Raises:
            ConfigurationError: Listing every offending field.
        """
        self._expect("validate", OrchestrationState.PENDING)
        try:
            if isinstance(config, StackOptions):
                options = config
            else:
                options = StackOptions.model_validate(dict(config), context={"project": self.context.project})
        except ValidationError as exc:
            errors = [
                f"{'.'.join(str(part) for part in err['loc']) or 'options'}: {err['msg']}"
                for err in exc.errors()
            ]
            self._fail(ConfigurationError("Invalid stack configuration", errors), None, "validate")

        too_long = [
            f"name: '{name}' exceeds {ELB_NAME_LIMIT} characters; shorten the project or environment"
            for name in (self.context.resource_name("alb"), self.context.resource_name("tg"))
            if len(name) > ELB_NAME_LIMIT
        ]
        if too_long:
            self._fail(ConfigurationError("Invalid stack configuration", too_long), None, "validate")
        self.options = options
        self.state = OrchestrationState.VALIDATED
        logger.info("Configuration validated", extra={"stack": self.context.prefix})
        return options

    def plan(self) -> ProvisioningPlan:
        """Order the components so every producer precedes its consumers."""
        self._expect("plan", OrchestrationState.VALIDATED)
        plan = self._guard(None, "plan", lambda: topological_order(DECLARATION_ORDER, DEPENDENCY_EDGES))
        self.provisioning_plan = plan
        self.state = OrchestrationState.PLANNED
        logger.info("Provisioning plan ready", extra={"order": list(plan.order)})
        return plan

    def provision(self) -> dict[str, ComponentOutput]:
        """Provision every component in plan order, threading outputs downstream.

        Raises:
            DependencyResolutionError: If a producer output a consumer needs is
                missing or empty.
            ProviderError: If the provider fails; remaining components are skipped.
            ResourceNotFoundError: If a pre-existing resource is missing.
        """
        self._expect("provision", OrchestrationState.PLANNED)
        for kind in self.provisioning_plan:
            inputs = self._guard(kind, "provision", lambda: self._inputs_for(kind))
            component = COMPONENT_TYPES[kind](
                self.context,
                getattr(self.options, kind),
                self.provider,
                ledger=self.ledger,
            )
            self.components[kind] = component
            logger.info("Provisioning component", extra={"component": kind})
            self.outputs[kind] = self._guard(kind, "provision", lambda: component.provision(inputs))
        self.state = OrchestrationState.PROVISIONED
        return dict(self.outputs)

    def wire(self) -> list[ReachabilityGrant]:
        """Create the reachability grants between provisioned components."""
        self._expect("wire", OrchestrationState.PROVISIONED)
        for source, destination, description in WIRING:
            self.grant(source, destination, description)
        self.state = OrchestrationState.WIRED
        return list(self.grants)

    def grant(self, source: str, destination: str, description: str) -> ReachabilityGrant:
        """Let ``source`` reach ``destination`` on its service port.

        Raises:
            DependencyResolutionError: If either endpoint has not produced its
                output yet, the source has no security group, or the
                destination does not accept grants.
        """
        for kind in (source, destination):
            if kind not in self.outputs:
                self._fail(
                    DependencyResolutionError(
                        f"Cannot grant {source} -> {destination}: {kind} has not been provisioned"
                    ),
                    destination,
                    "wire",
                )
        target = self.components[destination]
        if not hasattr(target, "grant_connection"):
            self._fail(
                DependencyResolutionError(f"{destination} does not accept reachability grants"),
                destination,
                "wire",
            )
        boundary = getattr(self.outputs[source], "security_boundary", None)
        if boundary is None:
            self._fail(
                DependencyResolutionError(f"{source} has no security boundary to grant from"),
                destination,
                "wire",
            )
        grant = self._guard(destination, "wire", lambda: target.grant_connection(boundary, description))
        self.grants.append(grant)
        return grant

    def collect(self) -> OutputSet:
        """Assemble the output set; repeated calls return the same set."""
        if self.state == OrchestrationState.COLLECTED:
            return self._output_set
        self._expect("collect", OrchestrationState.WIRED)

        def assemble() -> OutputSet:
            missing = [k for k in DECLARATION_ORDER if k not in self.outputs]
            if missing:
                raise DependencyResolutionError(f"Missing component outputs: {', '.join(missing)}")
            application = self.outputs["application"]
            database = self.outputs["database"]
            bastion = self.outputs["bastion"]
            return OutputSet(
                application_url=application.url,
                load_balancer_dns=application.load_balancer_dns,
                cluster_name=application.cluster_name,
                registry_uri=application.registry_uri,
                database_endpoint=database.endpoint,
                database_secret_ref=database.secret_arn,
                bastion_instance_id=bastion.instance_id,
                bastion_public_ip=bastion.public_ip,
                ssh_key_name=bastion.key_name,
            )

        self._output_set = self._guard(None, "collect", assemble)
        self.state = OrchestrationState.COLLECTED
        logger.info("Stack outputs collected", extra={"stack": self.context.prefix})
        return self._output_set

    def run(self, config: StackOptions | Mapping[str, Any]) -> OutputSet:
        """validate -> plan -> provision -> wire -> collect."""
        self.validate(config)
        self.plan()
        self.provision()
        self.wire()
        return self.collect()

    def teardown(self) -> list[ResourceHandle]:
        """Destroy every created resource in reverse creation order.

        Resources created with retain-on-delete (a protected database) leave the
        stack but survive. Returns the handles handed to the provider.
        """
        destroyed = []
        while self.ledger:
            handle = self.ledger[-1]
            self._guard(handle.component, "teardown", lambda: self.provider.destroy_resource(handle))
            # A handle leaves the ledger only once its resource is gone
            self.ledger.pop()
            destroyed.append(handle)
        logger.info("Stack torn down", extra={"stack": self.context.prefix, "resources": len(destroyed)})
        return destroyed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _inputs_for(self, kind: str) -> dict[str, ComponentOutput]:
        inputs = {}
        for edge in self.provisioning_plan.producers_of(kind):
            output = self.outputs.get(edge.producer)
            if output is None:
                raise DependencyResolutionError(
                    f"{kind} needs the {edge.producer} output, which has not been produced"
                )
            for field in edge.fields:
                value = getattr(output, field, None)
                if value is None or value == () or value == "":
                    raise DependencyResolutionError(
                        f"{edge.producer} output field '{field}' required by {kind} is missing or empty"
                    )
            inputs[edge.producer] = output
        return inputs

    def _expect(self, step: str, *allowed: OrchestrationState) -> None:
        if self.state not in allowed:
            raise DependencyResolutionError(
                f"Cannot {step} while the orchestrator is {self.state.value}",
                operation=step,
            )

    def _guard(self, component: str | None, operation: str, action: Callable[[], Any]) -> Any:
        try:
            return action()
        except ProvisioningError as exc:
            self._fail(exc, component, operation)
        except Exception as exc:
            error = ProviderError(f"Unexpected failure: {exc}")
            error.__cause__ = exc
            self._fail(error, component, operation)

    def _fail(self, exc: ProvisioningError, component: str | None, operation: str) -> None:
        exc.annotate(component, operation)
        if self.error is None:
            self.error = exc
            logger.error(
                "Provisioning failed: %s",
                exc,
                extra={"component": exc.component, "operation": exc.operation},
            )
        self.state = OrchestrationState.FAILED
        raise exc
