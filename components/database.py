"""Database component - PostgreSQL in the isolated data tier.

Creates:
- A credential secret (fixed username, generated password) in the secrets store
- A subnet group on the data subnets
- A default-deny security group: no inbound, no outbound
- An RDS PostgreSQL instance with 7-day backups and enhanced monitoring

Other components gain access only through :meth:`DatabaseComponent.grant_connection`,
which records a :class:`ReachabilityGrant` and opens exactly one ingress rule.

Deletion protection is a one-way ratchet: once the live instance carries it,
re-provisioning with ``deletion_protection: false`` keeps it on. Turning it
off is an out-of-band operator step.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from common.errors import DependencyResolutionError, ResourceNotFoundError
from components.base import (
    Component,
    ComponentOutput,
    ReachabilityGrant,
    SecurityBoundary,
)
from components.network import NetworkOutput
from components.options import DatabaseOptions
from providers.base import Json, ResourceHandle, SecretField, SecretKind

logger = logging.getLogger(__name__)

MONITORING_INTERVAL_SECONDS = 60


@dataclass(frozen=True)
class DatabaseOutput(ComponentOutput):
    instance: ResourceHandle
    identifier: str
    endpoint: Any
    port: int
    name: str
    username: str
    secret: ResourceHandle
    secret_arn: Any
    security_boundary: SecurityBoundary
    deletion_protection: bool


class DatabaseComponent(Component):
    """RDS PostgreSQL instance with a generated credential secret."""

    kind = "database"
    label = "Database"
    type_token = "appstack:database:PostgreSQL"

    options: DatabaseOptions

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._grants: list[ReachabilityGrant] = []

    @property
    def grants(self) -> tuple[ReachabilityGrant, ...]:
        """Grants applied to the database security group, in order."""
        return tuple(self._grants)

    def _provision(self, inputs: Mapping[str, ComponentOutput]) -> DatabaseOutput:
        opts = self.options
        network: NetworkOutput = self._input(inputs, "network")
        identifier = self.name

        protected = self._resolve_deletion_protection(identifier)

        secret = self._generate_secret(
            "credentials",
            secret_name=self.context.secret_name("db-credentials"),
            kind=SecretKind.PASSWORD,
            username=opts.username,
            length=opts.password_length,
            description=f"Database credentials for {self.context.prefix}",
        )

        # DB subnet group (uses data subnets)
        subnet_group = self._create(
            "subnet-group",
            "rds.SubnetGroup",
            name=f"{identifier}-subnets",
            subnet_ids=list(network.data_subnet_ids),
            description=f"Subnet group for {identifier} database",
        )

        # Default deny both ways; ingress only through grant_connection
        security_group = self._create(
            "sg",
            "ec2.SecurityGroup",
            vpc_id=network.vpc_id,
            description="Security group for RDS database",
            egress=[],
        )

        parameter_group = self._create(
            "params",
            "rds.ParameterGroup",
            family=opts.parameter_group_family,
            description=f"Parameter group for {identifier}",
            parameters=[{"name": "rds.force_ssl", "value": "1"}],
        )

        # Enhanced monitoring role
        monitoring_role = self._create(
            "monitoring-role",
            "iam.Role",
            assume_role_policy=Json(
                {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Principal": {"Service": "monitoring.rds.amazonaws.com"},
                            "Action": "sts:AssumeRole",
                        }
                    ],
                }
            ),
        )
        monitoring_policy = self._create(
            "monitoring-policy",
            "iam.RolePolicyAttachment",
            role=self._read(monitoring_role, "name"),
            policy_arn="arn:aws:iam::aws:policy/service-role/AmazonRDSEnhancedMonitoringRole",
        )

        instance = self._create(
            "instance",
            "rds.Instance",
            identifier=identifier,
            engine="postgres",
            engine_version=opts.engine_version,
            instance_class=opts.instance_class,
            allocated_storage=opts.allocated_storage,
            max_allocated_storage=opts.max_allocated_storage,
            storage_type="gp2",
            storage_encrypted=True,
            db_name=opts.name,
            username=opts.username,
            password=SecretField(secret, "password"),
            port=opts.port,
            db_subnet_group_name=self._read(subnet_group, "name"),
            vpc_security_group_ids=[self._read(security_group, "id")],
            parameter_group_name=self._read(parameter_group, "name"),
            publicly_accessible=False,
            backup_retention_period=opts.backup_retention_days,
            delete_automated_backups=True,
            deletion_protection=protected,
            skip_final_snapshot=not protected,
            final_snapshot_identifier=f"{identifier}-final" if protected else None,
            monitoring_interval=MONITORING_INTERVAL_SECONDS,
            monitoring_role_arn=self._read(monitoring_role, "arn"),
            performance_insights_enabled=not opts.instance_class.endswith(("micro", "small")),
            depends_on=[monitoring_policy],
            # The stored secret is authoritative once the instance exists
            ignore_changes=("password",),
            retain_on_delete=protected,
        )

        logger.info(
            "Database provisioned",
            extra={"identifier": identifier, "deletion_protection": protected},
        )

        return DatabaseOutput(
            instance=instance,
            identifier=identifier,
            endpoint=self._read(instance, "address"),
            port=opts.port,
            name=opts.name,
            username=opts.username,
            secret=secret,
            secret_arn=self._read(secret, "arn"),
            security_boundary=SecurityBoundary(
                component=self.kind,
                handle=security_group,
                group_id=self._read(security_group, "id"),
            ),
            deletion_protection=protected,
        )

    def grant_connection(self, source: SecurityBoundary, description: str) -> ReachabilityGrant:
        """Allow traffic from ``source`` to reach the database port.

        This is the only sanctioned way for another component to gain
        database access.

        Raises:
            DependencyResolutionError: If the database security group does not
                exist yet, or ``source`` already holds a grant.
        """
        if self.output is None:
            raise DependencyResolutionError(
                f"Cannot grant {source.component} access: the database security group does not exist yet",
                component=self.kind,
                operation="grant_connection",
            )

        output: DatabaseOutput = self.output
        grant = ReachabilityGrant(
            source=source.component,
            destination=self.kind,
            port=output.port,
            description=description,
        )
        if any(g.source == grant.source and g.port == grant.port for g in self._grants):
            raise DependencyResolutionError(
                f"{source.component} already holds a grant on port {grant.port}",
                component=self.kind,
                operation="grant_connection",
            )

        self._create(
            f"ingress-{source.component}",
            "ec2.SecurityGroupRule",
            type="ingress",
            protocol="tcp",
            from_port=grant.port,
            to_port=grant.port,
            security_group_id=output.security_boundary.group_id,
            source_security_group_id=source.group_id,
            description=description,
        )
        self._grants.append(grant)
        logger.info(
            "Granted database access",
            extra={"source": grant.source, "port": grant.port},
        )
        return grant

    def _resolve_deletion_protection(self, identifier: str) -> bool:
        if self.options.deletion_protection:
            return True
        try:
            existing = self.provider.lookup_resource("rds.Instance", db_instance_identifier=identifier)
        except ResourceNotFoundError:
            return False
        if not self._read(existing, "deletion_protection"):
            return False
        logger.warning(
            "Deletion protection stays enabled on existing database instance; "
            "disable it out-of-band before destroying",
            extra={"identifier": identifier},
        )
        return True
