"""Provisioning components.

Three-tier topology:
- NetworkComponent: VPC with public, private and isolated data subnets
- DnsComponent: existing hosted zone and a DNS-validated certificate
- DatabaseComponent: PostgreSQL in the data tier with a generated credential
- BastionComponent: administrative host in the public tier
- ApplicationComponent: container service behind an HTTPS load balancer
"""

from components.application import ApplicationComponent, ApplicationOutput
from components.base import (
    Component,
    ComponentOutput,
    ReachabilityGrant,
    SecurityBoundary,
    StackContext,
)
from components.bastion import BastionComponent, BastionOutput
from components.database import DatabaseComponent, DatabaseOutput
from components.dns import DnsComponent, DnsOutput
from components.network import NetworkComponent, NetworkOutput
from components.options import StackOptions

__all__ = [
    "ApplicationComponent",
    "ApplicationOutput",
    "BastionComponent",
    "BastionOutput",
    "Component",
    "ComponentOutput",
    "DatabaseComponent",
    "DatabaseOutput",
    "DnsComponent",
    "DnsOutput",
    "NetworkComponent",
    "NetworkOutput",
    "ReachabilityGrant",
    "SecurityBoundary",
    "StackContext",
    "StackOptions",
]
