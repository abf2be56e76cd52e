"""Bastion component - administrative host in the public tier.

Creates a key pair (private key kept in the secrets store), a security group
that admits SSH only when ``allow_ssh_from_anywhere`` is set, a least-privilege
role for Session Manager and CloudWatch, and an Amazon Linux 2023 instance
running the bootstrap from :mod:`components.bootstrap`.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from components.base import Component, ComponentOutput, SecurityBoundary
from components.bootstrap import render_bootstrap
from components.network import NetworkOutput
from components.options import BastionOptions
from providers.base import Json, ResourceHandle, SecretKind

AMI_PARAMETER = "/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-default-x86_64"

SSH_PORT = 22
KEY_SECRET = "bastion-ssh-key"

MANAGED_POLICIES = (
    "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore",
    "arn:aws:iam::aws:policy/CloudWatchAgentServerPolicy",
)


@dataclass(frozen=True)
class BastionOutput(ComponentOutput):
    instance: ResourceHandle
    instance_id: Any
    public_ip: Any
    key_name: str
    key_secret_arn: Any
    security_boundary: SecurityBoundary


class BastionComponent(Component):
    """EC2 jump host with SSH and Session Manager access."""

    kind = "bastion"
    label = "Bastion"
    type_token = "appstack:compute:Bastion"

    options: BastionOptions

    def _provision(self, inputs: Mapping[str, ComponentOutput]) -> BastionOutput:
        opts = self.options
        network: NetworkOutput = self._input(inputs, "network")

        # Key pair: private half stays in the secrets store
        key_secret = self._generate_secret(
            "ssh-key",
            secret_name=self.context.secret_name(KEY_SECRET),
            kind=SecretKind.SSH_KEY,
            description=f"SSH private key for {opts.key_name}",
        )
        key_pair = self._create(
            "key-pair",
            "ec2.KeyPair",
            key_name=opts.key_name,
            public_key=self._read(key_secret, "public_key"),
            ignore_changes=("public_key",),
        )

        security_group = self._create(
            "sg",
            "ec2.SecurityGroup",
            vpc_id=network.vpc_id,
            description="Security group for bastion host",
            egress=[
                {
                    "protocol": "-1",
                    "from_port": 0,
                    "to_port": 0,
                    "cidr_blocks": ["0.0.0.0/0"],
                    "description": "Allow all outbound",
                }
            ],
        )
        group_id = self._read(security_group, "id")

        if opts.allow_ssh_from_anywhere:
            self._create(
                "ssh-ingress",
                "ec2.SecurityGroupRule",
                type="ingress",
                protocol="tcp",
                from_port=SSH_PORT,
                to_port=SSH_PORT,
                cidr_blocks=["0.0.0.0/0"],
                security_group_id=group_id,
                description="Allow SSH access from anywhere",
            )

        role = self._create(
            "role",
            "iam.Role",
            description="Role for the bastion host",
            assume_role_policy=Json(
                {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Principal": {"Service": "ec2.amazonaws.com"},
                            "Action": "sts:AssumeRole",
                        }
                    ],
                }
            ),
        )
        role_name = self._read(role, "name")
        attachments = [
            self._create(
                f"policy-{i}",
                "iam.RolePolicyAttachment",
                role=role_name,
                policy_arn=policy_arn,
            )
            for i, policy_arn in enumerate(MANAGED_POLICIES)
        ]
        profile = self._create("profile", "iam.InstanceProfile", role=role_name)

        ami = self.provider.lookup_resource("ssm.Parameter", name=AMI_PARAMETER)

        instance = self._create(
            "instance",
            "ec2.Instance",
            ami=self._read(ami, "value"),
            instance_type=opts.instance_class,
            subnet_id=network.public_subnet_ids[0],
            vpc_security_group_ids=[group_id],
            key_name=self._read(key_pair, "key_name"),
            iam_instance_profile=self._read(profile, "name"),
            associate_public_ip_address=True,
            user_data=render_bootstrap(self.context.log_group_name),
            user_data_replace_on_change=True,
            metadata_options={"http_tokens": "required"},
            depends_on=attachments,
        )

        return BastionOutput(
            instance=instance,
            instance_id=self._read(instance, "id"),
            public_ip=self._read(instance, "public_ip"),
            key_name=opts.key_name,
            key_secret_arn=self._read(key_secret, "arn"),
            security_boundary=SecurityBoundary(
                component=self.kind,
                handle=security_group,
                group_id=group_id,
            ),
        )
