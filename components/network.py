"""Network component - isolated VPC with three subnet tiers.

Creates a VPC replicated across ``az_count`` availability zones:
- Public subnets: load balancer, NAT gateways and the bastion
- Private subnets: application tasks, outbound internet through the NAT gateways
- Data subnets: the database, no route to the internet at all
"""

import ipaddress
import itertools
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from common.errors import ResourceNotFoundError
from components.base import Component, ComponentOutput
from components.options import NetworkOptions
from providers.base import ResourceHandle

# Offset of each tier inside the VPC block, counted in /24 subnets
TIER_OFFSETS = {"public": 0, "private": 16, "data": 32}


@dataclass(frozen=True)
class NetworkOutput(ComponentOutput):
    vpc: ResourceHandle
    vpc_id: Any
    cidr_block: str
    availability_zones: tuple[str, ...]
    public_subnet_ids: tuple[Any, ...]
    private_subnet_ids: tuple[Any, ...]
    data_subnet_ids: tuple[Any, ...]


class NetworkComponent(Component):
    """VPC with public, private-with-egress and isolated data subnets."""

    kind = "network"
    label = "Network"
    type_token = "appstack:network:Network"

    options: NetworkOptions

    def _provision(self, inputs: Mapping[str, ComponentOutput]) -> NetworkOutput:
        opts = self.options
        az_names = self._availability_zones(opts.az_count)
        blocks = list(
            itertools.islice(ipaddress.ip_network(opts.cidr_block).subnets(new_prefix=24), 48)
        )

        vpc = self._create(
            "vpc",
            "ec2.Vpc",
            cidr_block=opts.cidr_block,
            enable_dns_hostnames=True,
            enable_dns_support=True,
        )
        vpc_id = self._read(vpc, "id")

        # Internet Gateway for public subnets
        igw = self._create("igw", "ec2.InternetGateway", vpc_id=vpc_id)

        public_subnets: list[ResourceHandle] = []
        private_subnets: list[ResourceHandle] = []
        data_subnets: list[ResourceHandle] = []
        for i, az in enumerate(az_names):
            public_subnets.append(
                self._create(
                    f"public-{i}",
                    "ec2.Subnet",
                    vpc_id=vpc_id,
                    cidr_block=str(blocks[TIER_OFFSETS["public"] + i]),
                    availability_zone=az,
                    map_public_ip_on_launch=True,
                )
            )
            private_subnets.append(
                self._create(
                    f"private-{i}",
                    "ec2.Subnet",
                    vpc_id=vpc_id,
                    cidr_block=str(blocks[TIER_OFFSETS["private"] + i]),
                    availability_zone=az,
                )
            )
            data_subnets.append(
                self._create(
                    f"data-{i}",
                    "ec2.Subnet",
                    vpc_id=vpc_id,
                    cidr_block=str(blocks[TIER_OFFSETS["data"] + i]),
                    availability_zone=az,
                )
            )

        # NAT gateways live in the first public subnets
        nat_gateways: list[ResourceHandle] = []
        for i in range(opts.nat_gateway_count):
            eip = self._create(f"nat-eip-{i}", "ec2.Eip", domain="vpc")
            nat_gateways.append(
                self._create(
                    f"nat-{i}",
                    "ec2.NatGateway",
                    subnet_id=self._read(public_subnets[i], "id"),
                    allocation_id=self._read(eip, "id"),
                    depends_on=[igw],
                )
            )

        # Public route table - routes to Internet Gateway
        public_rt = self._create(
            "public-rt",
            "ec2.RouteTable",
            vpc_id=vpc_id,
            routes=[{"cidr_block": "0.0.0.0/0", "gateway_id": self._read(igw, "id")}],
        )
        self._associate("public", public_subnets, [public_rt])

        # Private route tables - one per AZ, spread over the NAT gateways
        private_rts = [
            self._create(
                f"private-rt-{i}",
                "ec2.RouteTable",
                vpc_id=vpc_id,
                routes=[
                    {
                        "cidr_block": "0.0.0.0/0",
                        "nat_gateway_id": self._read(nat_gateways[i % len(nat_gateways)], "id"),
                    }
                ],
            )
            for i in range(len(private_subnets))
        ]
        self._associate("private", private_subnets, private_rts)

        # Data route table - local routes only
        data_rt = self._create("data-rt", "ec2.RouteTable", vpc_id=vpc_id, routes=[])
        self._associate("data", data_subnets, [data_rt])

        return NetworkOutput(
            vpc=vpc,
            vpc_id=vpc_id,
            cidr_block=opts.cidr_block,
            availability_zones=tuple(az_names),
            public_subnet_ids=tuple(self._read(s, "id") for s in public_subnets),
            private_subnet_ids=tuple(self._read(s, "id") for s in private_subnets),
            data_subnet_ids=tuple(self._read(s, "id") for s in data_subnets),
        )

    def _availability_zones(self, count: int) -> list[str]:
        zones = self.provider.lookup_resource("AvailabilityZones", state="available")
        names = list(self._read(zones, "names"))
        if len(names) < count:
            raise ResourceNotFoundError(
                "AvailabilityZones", {"state": "available", "count": count, "found": len(names)}
            )
        return names[:count]

    def _associate(
        self, tier: str, subnets: list[ResourceHandle], route_tables: list[ResourceHandle]
    ) -> None:
        for i, subnet in enumerate(subnets):
            route_table = route_tables[i % len(route_tables)]
            self._create(
                f"{tier}-rta-{i}",
                "ec2.RouteTableAssociation",
                subnet_id=self._read(subnet, "id"),
                route_table_id=self._read(route_table, "id"),
            )
