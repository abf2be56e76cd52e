"""Pulumi + pulumi_aws resource provider.

Resource type tokens (``"ec2.Vpc"``) map onto ``pulumi_aws`` classes
(``aws.ec2.Vpc``); lookups map onto the matching ``get_<snake_case>`` invoke
(``aws.route53.get_zone``, ``aws.get_availability_zones``). Every resource is
parented to a ``pulumi.ComponentResource`` per component so ``pulumi preview``
shows the same grouping as the code.

Generated credentials are stored in Secrets Manager. A secret that already
exists is reused as-is, so re-running the program never rotates a password or
an SSH key behind the running database or bastion.

Values read from resources are ``pulumi.Output`` objects; components pass them
back in as properties without looking inside.
"""

import inspect
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import boto3
import pulumi
import pulumi_aws as aws
from botocore.exceptions import BotoCoreError, ClientError

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
from providers.credentials import generate_password, generate_ssh_key_pair, public_key_from_private

logger = logging.getLogger(__name__)

# How the AWS provider words an invoke that matched nothing
_NOT_FOUND = re.compile(r"no matching|not ?found", re.IGNORECASE)


def to_snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def resolve_resource_class(resource_type: str) -> type:
    """``"ec2.Vpc"`` -> ``pulumi_aws.ec2.Vpc``.

    Raises:
        ValueError: If the module or class does not exist.
    """
    if "." not in resource_type:
        raise ValueError(f"Resource type must look like 'module.Class', got '{resource_type}'")
    module_name, class_name = resource_type.rsplit(".", 1)
    module = getattr(aws, module_name, None)
    if module is None:
        raise ValueError(f"AWS module '{module_name}' not found")
    cls = getattr(module, class_name, None)
    if not isinstance(cls, type) or not issubclass(cls, pulumi.CustomResource):
        raise ValueError(f"Resource class '{class_name}' not found in module '{module_name}'")
    return cls


def resolve_lookup_function(resource_type: str):
    """``"route53.Zone"`` -> ``pulumi_aws.route53.get_zone``; no module means top level.

    Raises:
        ValueError: If there is no such invoke.
    """
    if "." in resource_type:
        module_name, class_name = resource_type.rsplit(".", 1)
        module = getattr(aws, module_name, None)
    else:
        module, class_name = aws, resource_type
    func_name = f"get_{to_snake_case(class_name)}"
    func = getattr(module, func_name, None) if module is not None else None
    if func is None:
        raise ValueError(f"Function '{func_name}' not found for '{resource_type}'")
    return func


def accepts_tags(cls: type) -> bool:
    """Whether the resource's Args class has a ``tags`` parameter."""
    args_cls = getattr(inspect.getmodule(cls), f"{cls.__name__}Args", None)
    if args_cls is None:
        return False
    return "tags" in inspect.signature(args_cls.__init__).parameters


class _ComponentGroup(pulumi.ComponentResource):
    """Parent of every resource one component creates."""

    def __init__(self, type_token: str, name: str):
        super().__init__(type_token, name, None, None)


@dataclass
class _StoredSecret:
    secret: Any
    payload: dict[str, str]
    public_key: str | None = None


class PulumiProvider(ResourceProvider):
    """Declares resources in the running Pulumi program.

    Args:
        region: Region for the boto3 lookups; defaults to the ``AWS_REGION`` setting.
        secrets_client: Optional Secrets Manager client (for testing).
        rds_client: Optional RDS client (for testing).
    """

    def __init__(self, region: str | None = None, secrets_client=None, rds_client=None):
        self.region = region or get_settings().aws_region
        self._secrets_client = secrets_client
        self._rds_client = rds_client
        self._groups: dict[str, _ComponentGroup] = {}
        self._current: _ComponentGroup | None = None
        self._resources: dict[str, pulumi.Resource] = {}

    # ------------------------------------------------------------------
    # ResourceProvider
    # ------------------------------------------------------------------

    def open_component(self, kind: str, name: str) -> None:
        group = self._groups.get(name)
        if group is None:
            group = _ComponentGroup(kind, name)
            self._groups[name] = group
        self._current = group

    def close_component(self, name: str, outputs: Mapping[str, Any]) -> None:
        group = self._groups.get(name)
        if group is not None:
            group.register_outputs(
                {key: _exportable(value) for key, value in outputs.items() if _exportable(value) is not None}
            )
        self._current = None
        pulumi.log.info(f"Declared component: {name}")

    def create_resource(self, spec: ResourceSpec) -> ResourceHandle:
        try:
            cls = resolve_resource_class(spec.resource_type)
        except ValueError as exc:
            raise ProviderError(str(exc), resource=spec.name) from exc

        args = {key: self._resolve(value) for key, value in spec.props.items() if value is not None}
        if spec.tags and accepts_tags(cls):
            args.setdefault("tags", dict(spec.tags))

        try:
            depends_on = [self._resources[h.name] for h in spec.depends_on]
        except KeyError as exc:
            raise ProviderError(
                f"Cannot create '{spec.name}': depends on unknown resource {exc.args[0]}",
                resource=spec.name,
            ) from exc

        opts = pulumi.ResourceOptions(
            parent=self._current,
            depends_on=depends_on or None,
            ignore_changes=list(spec.ignore_changes) or None,
            retain_on_delete=spec.retain_on_delete or None,
        )
        try:
            resource = cls(spec.name, **args, opts=opts)
        except Exception as exc:
            raise ProviderError(
                f"Failed to declare {spec.resource_type} '{spec.name}': {exc}",
                resource=spec.name,
            ) from exc

        self._resources[spec.name] = resource
        logger.debug("Declared resource", extra={"resource": spec.name, "resource_type": spec.resource_type})
        return ResourceHandle(spec.name, spec.resource_type, spec.component, ref=resource)

    def read_output(self, handle: ResourceHandle, attribute: str) -> Any:
        ref = handle.ref
        path = attribute.split(".")
        try:
            if isinstance(ref, _StoredSecret):
                if attribute == "public_key" and ref.public_key is not None:
                    return ref.public_key
                return _walk_output(ref.secret, path)
            if isinstance(ref, pulumi.Resource):
                return _walk_output(ref, path)
            # Invoke results and boto3 descriptions are plain values
            return walk_attribute(ref, path)
        except (AttributeError, KeyError, IndexError) as exc:
            raise ProviderError(
                f"{handle.resource_type} '{handle.name}' has no output '{attribute}'",
                resource=handle.name,
            ) from exc

    def destroy_resource(self, handle: ResourceHandle) -> None:
        raise ProviderError(
            f"Resources are removed by the Pulumi engine; run 'pulumi destroy' to delete '{handle.name}'",
            resource=handle.name,
            operation="destroy",
        )

    def generate_secret(self, spec: SecretSpec) -> ResourceHandle:
        payload = self._existing_secret_payload(spec.secret_name)
        if payload is None:
            if spec.kind == SecretKind.SSH_KEY:
                private_key, _ = generate_ssh_key_pair()
                payload = {"private_key": private_key}
            else:
                payload = {
                    "username": spec.username or "",
                    "password": generate_password(spec.length, spec.exclude_characters),
                }
            pulumi.log.info(f"Generated new credential for secret '{spec.secret_name}'")

        public_key = None
        if spec.kind == SecretKind.SSH_KEY:
            public_key = public_key_from_private(payload["private_key"])

        parent = pulumi.ResourceOptions(parent=self._current)
        secret_args = {
            "name": spec.secret_name,
            "description": spec.description or None,
            "tags": dict(spec.tags) or None,
        }
        try:
            secret = aws.secretsmanager.Secret(spec.name, **secret_args, opts=parent)
            aws.secretsmanager.SecretVersion(
                f"{spec.name}-version",
                secret_id=secret.id,
                secret_string=pulumi.Output.secret(json.dumps(payload)),
                # The stored value is authoritative once written
                opts=pulumi.ResourceOptions(parent=self._current, ignore_changes=["secret_string"]),
            )
        except Exception as exc:
            raise ProviderError(
                f"Failed to declare secret '{spec.secret_name}': {exc}",
                resource=spec.name,
            ) from exc

        self._resources[spec.name] = secret
        return ResourceHandle(
            spec.name,
            "secretsmanager.Secret",
            spec.component,
            ref=_StoredSecret(secret=secret, payload=payload, public_key=public_key),
        )

    def lookup_resource(self, resource_type: str, **filters: Any) -> ResourceHandle:
        if resource_type == "rds.Instance":
            return self._lookup_db_instance(**filters)

        try:
            func = resolve_lookup_function(resource_type)
        except ValueError as exc:
            raise ProviderError(str(exc), resource=resource_type) from exc

        try:
            result = func(**filters)
        except Exception as exc:
            logger.warning(
                "Lookup failed",
                extra={"resource_type": resource_type, "filters": filters, "error": str(exc)},
            )
            if _NOT_FOUND.search(str(exc)):
                raise ResourceNotFoundError(resource_type, filters) from exc
            raise ProviderError(
                f"Failed to look up {resource_type} with {filters}: {exc}",
                resource=resource_type,
            ) from exc

        pulumi.log.info(f"Fetched existing {resource_type} with {filters}")
        return ResourceHandle(f"existing-{resource_type}", resource_type, ref=result)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, value: Any) -> Any:
        if isinstance(value, Json):
            return pulumi.Output.from_input(self._resolve(value.value)).apply(json.dumps)
        if isinstance(value, Format):
            template = value.template
            return pulumi.Output.all(*[self._resolve(arg) for arg in value.args]).apply(
                lambda values: template.format(*values)
            )
        if isinstance(value, SecretField):
            stored = value.secret.ref
            if not isinstance(stored, _StoredSecret) or value.key not in stored.payload:
                raise ProviderError(
                    f"Secret '{value.secret.name}' has no field '{value.key}'",
                    resource=value.secret.name,
                )
            return pulumi.Output.secret(stored.payload[value.key])
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

    def _secrets(self):
        if self._secrets_client is None:
            self._secrets_client = boto3.client("secretsmanager", region_name=self.region)
        return self._secrets_client

    def _rds(self):
        if self._rds_client is None:
            self._rds_client = boto3.client("rds", region_name=self.region)
        return self._rds_client

    def _existing_secret_payload(self, secret_name: str) -> dict[str, str] | None:
        try:
            response = self._secrets().get_secret_value(SecretId=secret_name)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                return None
            raise ProviderError(
                f"Failed to read secret '{secret_name}': {e}", resource=secret_name
            ) from e
        except BotoCoreError as e:
            raise ProviderError(f"Failed to read secret '{secret_name}': {e}", resource=secret_name) from e
        logger.info("Reusing existing secret", extra={"secret_name": secret_name})
        return json.loads(response["SecretString"])

    def _lookup_db_instance(self, db_instance_identifier: str, **filters: Any) -> ResourceHandle:
        lookup = {"db_instance_identifier": db_instance_identifier, **filters}
        try:
            response = self._rds().describe_db_instances(DBInstanceIdentifier=db_instance_identifier)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "DBInstanceNotFound":
                raise ResourceNotFoundError("rds.Instance", lookup) from e
            raise ProviderError(
                f"Failed to describe database '{db_instance_identifier}': {e}",
                resource=db_instance_identifier,
            ) from e
        except BotoCoreError as e:
            raise ProviderError(
                f"Failed to describe database '{db_instance_identifier}': {e}",
                resource=db_instance_identifier,
            ) from e

        instances = response.get("DBInstances", [])
        if not instances:
            raise ResourceNotFoundError("rds.Instance", lookup)
        instance = instances[0]
        endpoint = instance.get("Endpoint") or {}
        description = {
            "db_instance_identifier": instance["DBInstanceIdentifier"],
            "deletion_protection": instance.get("DeletionProtection", False),
            "address": endpoint.get("Address"),
            "port": endpoint.get("Port"),
            "status": instance.get("DBInstanceStatus"),
        }
        for key, expected in filters.items():
            if description.get(key) != expected:
                raise ResourceNotFoundError("rds.Instance", lookup)
        return ResourceHandle(f"existing-{db_instance_identifier}", "rds.Instance", ref=description)


def _walk_output(value: Any, path: list[str]) -> Any:
    # Outputs lift indexing and attribute access onto the eventual value
    for segment in path:
        if segment.isdigit():
            value = value[int(segment)]
        else:
            value = getattr(value, segment)
    return value


def _exportable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool, pulumi.Output)):
        return value
    if isinstance(value, (list, tuple)):
        items = [_exportable(v) for v in value]
        return items if all(item is not None for item in items) else None
    return None
