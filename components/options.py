"""Typed per-component options with defaults.

Every option is declared exactly once, with its default, on the model of the
component it belongs to. Caller overrides are merged key by key: a key that is
present replaces that one default wholesale (lists included), a key that is
absent keeps it. Unknown keys are rejected so a misspelt override can never be
silently ignored.

Field names are snake_case; the camelCase spelling (``azCount``,
``minCapacity``, ...) is accepted as well, matching the Pulumi stack config.

Derived defaults (``extra_names`` from ``domain``, ``key_name`` from the
project name) are filled in by validators; pass the project name as
validation context: ``StackOptions.model_validate(data, context={"project": p})``.
"""

import ipaddress
import re

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

# CPU units -> allowed memory (MiB) for Fargate tasks
FARGATE_MEMORY = {
    256: (512, 1024, 2048),
    512: tuple(range(1024, 4096 + 1, 1024)),
    1024: tuple(range(2048, 8192 + 1, 1024)),
    2048: tuple(range(4096, 16384 + 1, 1024)),
    4096: tuple(range(8192, 30720 + 1, 1024)),
}

DEFAULT_SOURCE_REPOSITORY = "https://github.com/integrationninjas/springboot-example.git"

_DOMAIN_PATTERN = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)(\.(?!-)[a-z0-9-]{1,63}(?<!-))+$")
_LABEL_PATTERN = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


class ComponentOptions(BaseModel):
    """Base for all option models: immutable, strict about keys, camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class NetworkOptions(ComponentOptions):
    """Network: an isolated VPC with public, private and data tiers."""

    az_count: int = Field(default=2, ge=1, le=6)
    nat_gateway_count: int = Field(default=1, ge=1)
    cidr_block: str = "10.0.0.0/16"

    @field_validator("cidr_block")
    @classmethod
    def _check_cidr(cls, value: str) -> str:
        try:
            network = ipaddress.ip_network(value)
        except ValueError as exc:
            raise ValueError(f"not a valid CIDR block: {value}") from exc
        if network.version != 4 or network.prefixlen > 18:
            raise ValueError("must be an IPv4 block of /18 or larger")
        return str(network)

    @model_validator(mode="after")
    def _check_gateways(self) -> "NetworkOptions":
        if self.nat_gateway_count > self.az_count:
            raise ValueError(
                f"nat_gateway_count ({self.nat_gateway_count}) cannot exceed "
                f"az_count ({self.az_count})"
            )
        return self


class DnsOptions(ComponentOptions):
    """DNS: an existing hosted zone and a certificate for ``subdomain.domain``."""

    domain: str = Field(min_length=1)
    subdomain: str = "app"
    extra_names: tuple[str, ...] | None = None

    @field_validator("domain")
    @classmethod
    def _check_domain(cls, value: str) -> str:
        value = value.strip().lower().rstrip(".")
        if not value:
            raise ValueError("domain must not be empty")
        if not _DOMAIN_PATTERN.match(value):
            raise ValueError(f"not a valid domain name: {value}")
        return value

    @field_validator("subdomain")
    @classmethod
    def _check_subdomain(cls, value: str) -> str:
        value = value.strip().lower()
        if not _LABEL_PATTERN.match(value):
            raise ValueError(f"not a valid DNS label: {value!r}")
        return value

    @model_validator(mode="after")
    def _default_extra_names(self) -> "DnsOptions":
        if self.extra_names is None:
            object.__setattr__(self, "extra_names", (f"*.{self.domain}",))
        return self

    @property
    def fqdn(self) -> str:
        return f"{self.subdomain}.{self.domain}"

    @property
    def certificate_names(self) -> list[str]:
        """``fqdn`` followed by the extra names, each name once."""
        return list(dict.fromkeys([self.fqdn, *self.extra_names]))


class DatabaseOptions(ComponentOptions):
    """Database: a managed PostgreSQL instance in the data tier."""

    name: str = Field(default="appdb", pattern=r"^[A-Za-z][A-Za-z0-9_]{0,62}$")
    username: str = Field(default="appuser", pattern=r"^[A-Za-z][A-Za-z0-9_]{0,15}$")
    engine_version: str = Field(default="15.4", pattern=r"^\d+(\.\d+)?$")
    instance_class: str = "db.t3.micro"
    allocated_storage: int = Field(default=20, ge=20)
    max_allocated_storage: int = Field(default=100, ge=20)
    port: int = Field(default=5432, ge=1150, le=65535)
    password_length: int = Field(default=16, ge=16, le=128)
    backup_retention_days: int = Field(default=7, ge=0, le=35)
    deletion_protection: bool = False

    @model_validator(mode="after")
    def _check_storage(self) -> "DatabaseOptions":
        if self.allocated_storage > self.max_allocated_storage:
            raise ValueError(
                f"allocated_storage ({self.allocated_storage}) cannot exceed "
                f"max_allocated_storage ({self.max_allocated_storage})"
            )
        return self

    @property
    def parameter_group_family(self) -> str:
        return f"postgres{self.engine_version.split('.')[0]}"


class BastionOptions(ComponentOptions):
    """Bastion: an administrative instance in the public tier."""

    instance_class: str = "t3.micro"
    key_name: str | None = None
    allow_ssh_from_anywhere: bool = True

    @model_validator(mode="after")
    def _default_key_name(self, info: ValidationInfo) -> "BastionOptions":
        if self.key_name is None:
            project = (info.context or {}).get("project", "appstack")
            object.__setattr__(self, "key_name", f"{project}-bastion-key")
        return self


class ApplicationOptions(ComponentOptions):
    """Application: the load-balanced, auto-scaled container service."""

    source_repository: str = DEFAULT_SOURCE_REPOSITORY
    desired_count: int = Field(default=2, ge=0)
    cpu: int = 512
    memory: int = 1024
    min_capacity: int = Field(default=1, ge=1)
    max_capacity: int = Field(default=10, ge=1)
    container_port: int = Field(default=8080, ge=1, le=65535)
    health_check_path: str = Field(default="/", pattern=r"^/")

    @model_validator(mode="after")
    def _check_capacity(self) -> "ApplicationOptions":
        if not self.min_capacity <= self.desired_count <= self.max_capacity:
            raise ValueError(
                f"capacity bounds violated: min_capacity ({self.min_capacity}) <= "
                f"desired_count ({self.desired_count}) <= max_capacity ({self.max_capacity})"
            )
        if self.cpu not in FARGATE_MEMORY:
            raise ValueError(f"cpu must be one of {sorted(FARGATE_MEMORY)}, got {self.cpu}")
        if self.memory not in FARGATE_MEMORY[self.cpu]:
            raise ValueError(f"memory {self.memory} MiB is not valid for cpu {self.cpu}")
        return self


class StackOptions(ComponentOptions):
    """All component options of one stack."""

    network: NetworkOptions = Field(default_factory=NetworkOptions)
    dns: DnsOptions
    database: DatabaseOptions = Field(default_factory=DatabaseOptions)
    bastion: BastionOptions = Field(default_factory=BastionOptions)
    application: ApplicationOptions = Field(default_factory=ApplicationOptions)

    @model_validator(mode="before")
    @classmethod
    def _fill_sections(cls, data):
        # Absent sections still go through validation so derived defaults see the context
        if isinstance(data, dict):
            data = dict(data)
            for section in ("network", "database", "bastion", "application"):
                if data.get(section) is None:
                    data[section] = {}
        return data
