"""In-memory resource provider and secrets store.

Keeps a fake AWS account in process memory: resources are records keyed by
logical name, output attributes are synthesised deterministically from the
properties, and a few pre-existing resources (availability zones, the public
Amazon Linux AMI parameter, registered hosted zones) can be looked up.

Used by the test-suite and by ``python -m orchestration simulate`` to run the
whole orchestration without touching a cloud account.
"""

import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from common.config import get_settings
from common.errors import ProviderError, ResourceNotFoundError
from providers.base import (
    Format,
    Json,
    ResourceHandle,
    ResourceProvider,
    ResourceSpec,
    SecretField,
    SecretKind,
    SecretSpec,
    walk_attribute,
)
from providers.credentials import generate_password, generate_ssh_key_pair

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_ID = "123456789012"

# Public SSM parameters present in every real account
PUBLIC_PARAMETERS = {
    "/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-default-x86_64": "ami-0a1b2c3d4e5f67890",
}

# Short id prefixes AWS uses per resource type
_ID_PREFIXES = {
    "ec2.Vpc": "vpc",
    "ec2.Subnet": "subnet",
    "ec2.InternetGateway": "igw",
    "ec2.NatGateway": "nat",
    "ec2.Eip": "eipalloc",
    "ec2.RouteTable": "rtb",
    "ec2.RouteTableAssociation": "rtbassoc",
    "ec2.SecurityGroup": "sg",
    "ec2.SecurityGroupRule": "sgrule",
    "ec2.Instance": "i",
    "ec2.KeyPair": "key",
}


@dataclass
class _Record:
    """One fake resource."""

    name: str
    resource_type: str
    props: dict[str, Any]
    generated: dict[str, Any]
    component: str | None = None
    tags: dict[str, str] = field(default_factory=dict)
    retain_on_delete: bool = False
    depends_on: list[str] = field(default_factory=list)
    destroyed: bool = False

    def outputs(self) -> dict[str, Any]:
        return {**self.generated, **self.props, "tags": dict(self.tags)}


class InMemoryProvider(ResourceProvider):
    """Provider that records resources instead of creating them.

    Attributes:
        resources: Live stack resources by logical name, in creation order.
        retained: Resources that left the stack but survive (retain on delete).
        destroyed: Logical names of resources that were deleted.
        operations: ``(operation, logical name)`` log of every mutating call.
    """

    def __init__(
        self,
        region: str | None = None,
        account_id: str = DEFAULT_ACCOUNT_ID,
        availability_zones: int = 3,
        hosted_zones: tuple[str, ...] | list[str] = (),
        fail_on: tuple[str, ...] | list[str] = (),
    ):
        self.region = region or get_settings().aws_region
        self.account_id = account_id
        self.fail_on = set(fail_on)

        self.resources: dict[str, _Record] = {}
        self.retained: list[_Record] = []
        self.destroyed: list[str] = []
        self.operations: list[tuple[str, str]] = []

        self._existing: list[_Record] = []
        self._secrets: dict[str, dict[str, str]] = {}
        self._counter = itertools.count(1)

        suffixes = "abcdef"[:availability_zones]
        self._register_existing(
            "availability-zones",
            "AvailabilityZones",
            {"state": "available"},
            {
                "names": [f"{self.region}{s}" for s in suffixes],
                "zone_ids": [f"use1-az{i + 1}" for i in range(len(suffixes))],
            },
        )
        for parameter, value in PUBLIC_PARAMETERS.items():
            self._register_existing(
                f"parameter-{parameter}", "ssm.Parameter", {"name": parameter}, {"value": value}
            )
        for domain in hosted_zones:
            self.register_hosted_zone(domain)

    # ------------------------------------------------------------------
    # Account state helpers
    # ------------------------------------------------------------------

    def register_hosted_zone(self, domain: str) -> None:
        """Make ``domain`` resolvable as a hosted zone of this account."""
        n = next(self._counter)
        self._register_existing(
            f"zone-{domain}",
            "route53.Zone",
            {"name": domain},
            {
                "zone_id": f"Z{n:012d}",
                "name_servers": [f"ns-{n}.awsdns-{i:02d}.net" for i in range(4)],
            },
        )

    def resources_of_type(self, resource_type: str) -> list[_Record]:
        """Live records of one resource type, in creation order."""
        return [r for r in self.resources.values() if r.resource_type == resource_type]

    def secret_payload(self, handle: ResourceHandle) -> dict[str, str]:
        """Plaintext of a generated secret, as the secrets store holds it."""
        try:
            return dict(self._secrets[handle.name])
        except KeyError as exc:
            raise ProviderError(f"Secret '{handle.name}' does not exist", resource=handle.name) from exc

    def _register_existing(
        self, name: str, resource_type: str, props: dict[str, Any], generated: dict[str, Any]
    ) -> None:
        self._existing.append(
            _Record(name=name, resource_type=resource_type, props=props, generated=generated)
        )

    # ------------------------------------------------------------------
    # ResourceProvider
    # ------------------------------------------------------------------

    def create_resource(self, spec: ResourceSpec) -> ResourceHandle:
        self._maybe_fail("create", spec.name, spec.resource_type)

        missing = [h.name for h in spec.depends_on if h.name not in self.resources]
        if missing:
            raise ProviderError(
                f"Cannot create '{spec.name}': depends on unknown resources {missing}",
                resource=spec.name,
            )

        props = self._resolve(spec.props)
        record = self.resources.get(spec.name)
        if record is not None and record.resource_type == spec.resource_type:
            record.props = props
            record.tags = dict(spec.tags)
            record.retain_on_delete = spec.retain_on_delete
            record.depends_on = [h.name for h in spec.depends_on]
            self.operations.append(("update", spec.name))
        else:
            record = _Record(
                name=spec.name,
                resource_type=spec.resource_type,
                props=props,
                generated=self._generate_outputs(spec.name, spec.resource_type, props),
                component=spec.component,
                tags=dict(spec.tags),
                retain_on_delete=spec.retain_on_delete,
                depends_on=[h.name for h in spec.depends_on],
            )
            self.resources[spec.name] = record
            self.operations.append(("create", spec.name))

        logger.debug(
            "Recorded resource",
            extra={"resource": spec.name, "resource_type": spec.resource_type},
        )
        return ResourceHandle(spec.name, spec.resource_type, spec.component, ref=record)

    def read_output(self, handle: ResourceHandle, attribute: str) -> Any:
        record = handle.ref if isinstance(handle.ref, _Record) else self.resources.get(handle.name)
        if record is None or record.destroyed:
            raise ProviderError(f"Resource '{handle.name}' does not exist", resource=handle.name)

        try:
            return walk_attribute(record.outputs(), attribute.split("."))
        except KeyError as exc:
            raise ProviderError(
                f"{handle.resource_type} '{handle.name}' has no output '{attribute}'",
                resource=handle.name,
            ) from exc

    def destroy_resource(self, handle: ResourceHandle) -> None:
        record = self.resources.get(handle.name)
        if record is None:
            raise ProviderError(f"Resource '{handle.name}' is not part of the stack", resource=handle.name)
        self._maybe_fail("destroy", handle.name, handle.resource_type)

        del self.resources[handle.name]
        if record.retain_on_delete:
            self.retained.append(record)
            self._existing.append(record)
            self.operations.append(("retain", handle.name))
            logger.info("Retained resource on delete", extra={"resource": handle.name})
        else:
            record.destroyed = True
            self.destroyed.append(handle.name)
            self._secrets.pop(handle.name, None)
            self.operations.append(("delete", handle.name))

    def generate_secret(self, spec: SecretSpec) -> ResourceHandle:
        self._maybe_fail("create", spec.name, "secretsmanager.Secret")

        record = self.resources.get(spec.name)
        if record is not None:
            # Existing credentials are never rotated by a re-run
            self.operations.append(("update", spec.name))
            return ResourceHandle(spec.name, "secretsmanager.Secret", spec.component, ref=record)

        n = next(self._counter)
        generated: dict[str, Any] = {
            "id": spec.secret_name,
            "arn": f"arn:aws:secretsmanager:{self.region}:{self.account_id}:secret:{spec.secret_name}-{n:06d}",
        }
        if spec.kind == SecretKind.SSH_KEY:
            private_key, public_key = generate_ssh_key_pair()
            self._secrets[spec.name] = {"private_key": private_key}
            generated["public_key"] = public_key
        else:
            password = generate_password(spec.length, spec.exclude_characters)
            self._secrets[spec.name] = {"username": spec.username or "", "password": password}

        record = _Record(
            name=spec.name,
            resource_type="secretsmanager.Secret",
            props={"name": spec.secret_name, "description": spec.description},
            generated=generated,
            component=spec.component,
            tags=dict(spec.tags),
        )
        self.resources[spec.name] = record
        self.operations.append(("create", spec.name))
        return ResourceHandle(spec.name, "secretsmanager.Secret", spec.component, ref=record)

    def lookup_resource(self, resource_type: str, **filters: Any) -> ResourceHandle:
        self._maybe_fail("lookup", resource_type, resource_type)

        candidates = [r for r in self._existing if r.resource_type == resource_type]
        candidates += self.resources_of_type(resource_type)
        for record in candidates:
            outputs = record.outputs()
            if all(key in outputs and outputs[key] == value for key, value in filters.items()):
                return ResourceHandle(record.name, resource_type, record.component, ref=record)
        raise ResourceNotFoundError(resource_type, filters)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _maybe_fail(self, operation: str, name: str, resource_type: str) -> None:
        if name in self.fail_on or resource_type in self.fail_on:
            raise ProviderError(
                f"Simulated provider failure during {operation} of {resource_type} '{name}'",
                resource=name,
            )

    def _resolve(self, value: Any) -> Any:
        if isinstance(value, Json):
            return json.dumps(self._resolve(value.value))
        if isinstance(value, Format):
            return value.template.format(*self._resolve(list(value.args)))
        if isinstance(value, SecretField):
            payload = self._secrets.get(value.secret.name)
            if payload is None or value.key not in payload:
                raise ProviderError(
                    f"Secret '{value.secret.name}' has no field '{value.key}'",
                    resource=value.secret.name,
                )
            return payload[value.key]
        if isinstance(value, ResourceHandle):
            raise ProviderError(
                f"Handle '{value.name}' passed as a property; read an output instead",
                resource=value.name,
            )
        if isinstance(value, dict):
            return {k: self._resolve(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._resolve(v) for v in value]
        return value

    def _generate_outputs(self, name: str, resource_type: str, props: dict[str, Any]) -> dict[str, Any]:
        n = next(self._counter)
        service, kind = resource_type.split(".", 1) if "." in resource_type else (resource_type, resource_type)
        prefix = _ID_PREFIXES.get(resource_type, service)
        physical = props.get("name") or props.get("identifier") or name
        outputs: dict[str, Any] = {
            "id": f"{prefix}-{n:08x}",
            "arn": f"arn:aws:{service}:{self.region}:{self.account_id}:{kind.lower()}/{physical}",
            "name": physical,
            "urn": f"urn:memory::{resource_type}::{name}",
        }

        if resource_type == "rds.Instance":
            address = f"{props.get('identifier', name)}.c0ffee{n:04d}.{self.region}.rds.amazonaws.com"
            port = props.get("port", 5432)
            outputs.update(
                address=address,
                port=port,
                endpoint=f"{address}:{port}",
                db_instance_identifier=props.get("identifier", name),
            )
        elif resource_type == "ec2.Instance":
            outputs.update(public_ip=f"203.0.113.{n % 250 + 1}", private_ip=f"10.0.0.{n % 250 + 1}")
        elif resource_type == "lb.LoadBalancer":
            outputs.update(
                dns_name=f"{physical}-{n:09d}.{self.region}.elb.amazonaws.com",
                zone_id="Z35SXDOTRQ7X7K",
                arn_suffix=f"app/{physical}/{n:016x}",
            )
        elif resource_type == "ecr.Repository":
            outputs["repository_url"] = (
                f"{self.account_id}.dkr.ecr.{self.region}.amazonaws.com/{physical}"
            )
        elif resource_type == "acm.Certificate":
            # One entry per distinct name, as ACM reports them
            requested = [props.get("domain_name", name), *props.get("subject_alternative_names", [])]
            domains = list(dict.fromkeys(requested))
            outputs["domain_validation_options"] = [
                {
                    "domain_name": domain,
                    "resource_record_name": f"_{n:08x}.{domain.removeprefix('*.')}.",
                    "resource_record_type": "CNAME",
                    "resource_record_value": f"_{n:08x}.acm-validations.aws.",
                }
                for domain in domains
            ]
        elif resource_type == "route53.Record":
            outputs["fqdn"] = props.get("name", name)
        elif resource_type == "ec2.KeyPair":
            outputs["key_pair_id"] = f"key-{n:017x}"
        return outputs
