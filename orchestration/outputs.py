"""The operator-facing output set."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class OutputSet(BaseModel):
    """Flat, immutable table published after a fully successful run.

    Keys are stable; ``as_dict()`` returns them in their camelCase form
    (``applicationUrl``, ``databaseSecretRef``, ...). Values are whatever the
    provider surfaces: plain strings in memory, ``pulumi.Output`` under Pulumi.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    application_url: str
    load_balancer_dns: Any
    cluster_name: str
    registry_uri: Any
    database_endpoint: Any
    database_secret_ref: Any
    bastion_instance_id: Any
    bastion_public_ip: Any
    ssh_key_name: str

    def as_dict(self) -> dict[str, Any]:
        # Built by hand: provider values must not be serialised or copied
        return {field.alias or name: getattr(self, name) for name, field in type(self).model_fields.items()}
