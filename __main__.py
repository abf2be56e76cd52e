"""appstack Infrastructure - Main Entry Point.

Provisions a three-tier application topology with Pulumi:
- Network: VPC with public, private and isolated data subnets
- DNS: existing Route 53 zone plus a DNS-validated ACM certificate
- Database: RDS PostgreSQL, credentials in Secrets Manager
- Bastion: EC2 administrative host (SSH and Session Manager)
- Application: ECS Fargate service behind an HTTPS ALB, auto-scaled

Component options come from the ``stack`` config object, e.g.::

    pulumi config set --path 'stack.dns.domain' example.com
"""

import logging

import pulumi

from common.config import get_settings
from components.base import StackContext
from orchestration.orchestrator import Orchestrator
from providers.pulumi_aws import PulumiProvider

settings = get_settings()
logging.basicConfig(level=settings.resolved_log_level, format="%(levelname)s: %(message)s")

# Get configuration
config = pulumi.Config()
aws_config = pulumi.Config("aws")
project = pulumi.get_project()
environment = pulumi.get_stack()  # dev, staging, or prod
aws_region = aws_config.get("region") or settings.aws_region

# Common tags for all resources
common_tags = {
    **settings.common_tags,
    "Project": project,
    "Environment": environment,
}

context = StackContext(project=project, environment=environment, region=aws_region, tags=common_tags)
orchestrator = Orchestrator(context, PulumiProvider(region=aws_region))
outputs = orchestrator.run(config.get_object("stack") or {})

# =============================================================================
# Outputs
# =============================================================================
for key, value in outputs.as_dict().items():
    pulumi.export(key, value)
