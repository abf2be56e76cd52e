"""Application component - load-balanced, auto-scaled container service.

Creates:
- ECR repository (scan on push, last 10 images kept) and a CodeBuild project
  that builds the image from ``source_repository`` and pushes ``:latest``
- ECS cluster with container insights, log group, execution and task roles
- Public ALB: HTTPS on 443 with the DNS certificate, HTTP redirected to HTTPS
- Fargate service in the private tier, scaled on CPU and memory
- Alias record ``subdomain.domain`` -> load balancer in the hosted zone

Database credentials reach the container as secret references, never as plain
environment values.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import yaml

from components.base import Component, ComponentOutput, SecurityBoundary
from components.database import DatabaseOutput
from components.dns import DnsOutput
from components.network import NetworkOutput
from components.options import ApplicationOptions
from providers.base import Format, Json, ResourceHandle

logger = logging.getLogger(__name__)

CONTAINER_NAME = "app"
IMAGE_TAG = "latest"
LOG_RETENTION_DAYS = 7
KEEP_IMAGES = 10

CPU_TARGET_PERCENT = 70.0
MEMORY_TARGET_PERCENT = 80.0
SCALE_IN_COOLDOWN_SECONDS = 300
SCALE_OUT_COOLDOWN_SECONDS = 120

SSL_POLICY = "ELBSecurityPolicy-TLS13-1-2-2021-06"
CODEBUILD_IMAGE = "aws/codebuild/standard:7.0"

ALLOW_ALL_EGRESS = [
    {
        "protocol": "-1",
        "from_port": 0,
        "to_port": 0,
        "cidr_blocks": ["0.0.0.0/0"],
        "description": "Allow all outbound",
    }
]


def _assume_role(service: str) -> Json:
    return Json(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Action": "sts:AssumeRole",
                    "Principal": {"Service": service},
                    "Effect": "Allow",
                }
            ],
        }
    )


def render_buildspec(source_repository: str) -> str:
    """CodeBuild buildspec: clone, build, push ``$REPOSITORY_URI:latest``."""
    spec = {
        "version": 0.2,
        "phases": {
            "pre_build": {
                "commands": [
                    "aws ecr get-login-password --region $AWS_DEFAULT_REGION"
                    " | docker login --username AWS --password-stdin ${REPOSITORY_URI%%/*}",
                    f"git clone --depth 1 {source_repository} src",
                ]
            },
            "build": {
                "commands": [
                    f"docker build -t $REPOSITORY_URI:{IMAGE_TAG} src",
                ]
            },
            "post_build": {
                "commands": [
                    f"docker push $REPOSITORY_URI:{IMAGE_TAG}",
                ]
            },
        },
    }
    return yaml.safe_dump(spec, sort_keys=False)


@dataclass(frozen=True)
class ApplicationOutput(ComponentOutput):
    load_balancer: ResourceHandle
    load_balancer_dns: Any
    cluster: ResourceHandle
    cluster_name: str
    repository: ResourceHandle
    registry_uri: Any
    build_project: str
    service: ResourceHandle
    service_name: str
    security_boundary: SecurityBoundary
    url: str


class ApplicationComponent(Component):
    """ECS Fargate service behind an HTTPS application load balancer."""

    kind = "application"
    label = "Application"
    type_token = "appstack:compute:Application"

    options: ApplicationOptions

    def _provision(self, inputs: Mapping[str, ComponentOutput]) -> ApplicationOutput:
        opts = self.options
        network: NetworkOutput = self._input(inputs, "network")
        dns: DnsOutput = self._input(inputs, "dns")
        database: DatabaseOutput = self._input(inputs, "database")

        cluster_name = self.context.resource_name("cluster")
        service_name = self.context.service_name

        repository, repository_url = self._registry()
        build_project = self._build_project(repository_url)

        # ECS Cluster
        cluster = self._create(
            "cluster",
            "ecs.Cluster",
            name=cluster_name,
            settings=[{"name": "containerInsights", "value": "enabled"}],
        )

        log_group = self._create(
            "logs",
            "cloudwatch.LogGroup",
            name=self.context.log_group_name,
            retention_in_days=LOG_RETENTION_DAYS,
        )

        execution_role, task_role = self._roles(database.secret_arn)

        # Security groups: internet -> ALB -> tasks
        lb_sg = self._create(
            "lb-sg",
            "ec2.SecurityGroup",
            vpc_id=network.vpc_id,
            description="Security group for the application load balancer",
            ingress=[
                {
                    "protocol": "tcp",
                    "from_port": port,
                    "to_port": port,
                    "cidr_blocks": ["0.0.0.0/0"],
                    "description": f"Allow {scheme} from anywhere",
                }
                for scheme, port in (("HTTP", 80), ("HTTPS", 443))
            ],
            egress=ALLOW_ALL_EGRESS,
        )
        lb_sg_id = self._read(lb_sg, "id")

        service_sg = self._create(
            "service-sg",
            "ec2.SecurityGroup",
            vpc_id=network.vpc_id,
            description="Security group for application tasks",
            egress=ALLOW_ALL_EGRESS,
        )
        service_sg_id = self._read(service_sg, "id")

        self._create(
            "service-ingress-lb",
            "ec2.SecurityGroupRule",
            type="ingress",
            protocol="tcp",
            from_port=opts.container_port,
            to_port=opts.container_port,
            security_group_id=service_sg_id,
            source_security_group_id=lb_sg_id,
            description="Allow traffic from the load balancer",
        )

        load_balancer = self._create(
            "alb",
            "lb.LoadBalancer",
            name=self.context.resource_name("alb"),
            load_balancer_type="application",
            internal=False,
            security_groups=[lb_sg_id],
            subnets=list(network.public_subnet_ids),
        )
        lb_arn = self._read(load_balancer, "arn")

        target_group = self._create(
            "tg",
            "lb.TargetGroup",
            name=self.context.resource_name("tg"),
            port=opts.container_port,
            protocol="HTTP",
            target_type="ip",
            vpc_id=network.vpc_id,
            deregistration_delay=30,
            health_check={
                "enabled": True,
                "path": opts.health_check_path,
                "matcher": "200",
                "interval": 30,
                "timeout": 5,
                "healthy_threshold": 2,
                "unhealthy_threshold": 3,
            },
        )

        https_listener = self._create(
            "https",
            "lb.Listener",
            load_balancer_arn=lb_arn,
            port=443,
            protocol="HTTPS",
            ssl_policy=SSL_POLICY,
            certificate_arn=dns.certificate_arn,
            default_actions=[
                {"type": "forward", "target_group_arn": self._read(target_group, "arn")}
            ],
        )
        self._create(
            "http",
            "lb.Listener",
            load_balancer_arn=lb_arn,
            port=80,
            protocol="HTTP",
            default_actions=[
                {
                    "type": "redirect",
                    "redirect": {"port": "443", "protocol": "HTTPS", "status_code": "HTTP_301"},
                }
            ],
        )

        task_definition = self._create(
            "task",
            "ecs.TaskDefinition",
            family=service_name,
            cpu=str(opts.cpu),
            memory=str(opts.memory),
            network_mode="awsvpc",
            requires_compatibilities=["FARGATE"],
            execution_role_arn=self._read(execution_role, "arn"),
            task_role_arn=self._read(task_role, "arn"),
            container_definitions=Json(
                [self._container_definition(repository_url, log_group, database)]
            ),
        )

        service = self._create(
            "service",
            "ecs.Service",
            name=service_name,
            cluster=self._read(cluster, "arn"),
            task_definition=self._read(task_definition, "arn"),
            desired_count=opts.desired_count,
            launch_type="FARGATE",
            health_check_grace_period_seconds=60,
            network_configuration={
                "subnets": list(network.private_subnet_ids),
                "security_groups": [service_sg_id],
                "assign_public_ip": False,
            },
            load_balancers=[
                {
                    "target_group_arn": self._read(target_group, "arn"),
                    "container_name": CONTAINER_NAME,
                    "container_port": opts.container_port,
                }
            ],
            depends_on=[https_listener],
            # Auto scaling owns the running count after creation
            ignore_changes=("desired_count",),
        )

        self._autoscaling(cluster_name, service_name, service)

        self._create(
            "alias",
            "route53.Record",
            zone_id=dns.zone_id,
            name=dns.fqdn,
            type="A",
            aliases=[
                {
                    "name": self._read(load_balancer, "dns_name"),
                    "zone_id": self._read(load_balancer, "zone_id"),
                    "evaluate_target_health": True,
                }
            ],
            allow_overwrite=True,
        )

        logger.info(
            "Application provisioned",
            extra={"service": service_name, "fqdn": dns.fqdn},
        )

        return ApplicationOutput(
            load_balancer=load_balancer,
            load_balancer_dns=self._read(load_balancer, "dns_name"),
            cluster=cluster,
            cluster_name=cluster_name,
            repository=repository,
            registry_uri=repository_url,
            build_project=build_project,
            service=service,
            service_name=service_name,
            security_boundary=SecurityBoundary(
                component=self.kind,
                handle=service_sg,
                group_id=service_sg_id,
            ),
            url=f"https://{dns.fqdn}",
        )

    def _registry(self) -> tuple[ResourceHandle, Any]:
        repository = self._create(
            "repository",
            "ecr.Repository",
            name=self.context.service_name,
            image_tag_mutability="MUTABLE",
            image_scanning_configuration={"scan_on_push": True},
            force_delete=True,
        )

        # Lifecycle policy to limit image count and reduce costs
        self._create(
            "repository-lifecycle",
            "ecr.LifecyclePolicy",
            repository=self._read(repository, "name"),
            policy=Json(
                {
                    "rules": [
                        {
                            "rulePriority": 1,
                            "description": f"Keep last {KEEP_IMAGES} images",
                            "selection": {
                                "tagStatus": "any",
                                "countType": "imageCountMoreThan",
                                "countNumber": KEEP_IMAGES,
                            },
                            "action": {"type": "expire"},
                        }
                    ]
                }
            ),
        )
        return repository, self._read(repository, "repository_url")

    def _build_project(self, repository_url: Any) -> str:
        project_name = self.context.resource_name("image-build")

        role = self._create("build-role", "iam.Role", assume_role_policy=_assume_role("codebuild.amazonaws.com"))
        self._create(
            "build-policy",
            "iam.RolePolicy",
            role=self._read(role, "id"),
            policy=Json(
                {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Action": [
                                "ecr:GetAuthorizationToken",
                                "ecr:BatchCheckLayerAvailability",
                                "ecr:InitiateLayerUpload",
                                "ecr:UploadLayerPart",
                                "ecr:CompleteLayerUpload",
                                "ecr:PutImage",
                                "ecr:BatchGetImage",
                            ],
                            "Resource": "*",
                        },
                        {
                            "Effect": "Allow",
                            "Action": [
                                "logs:CreateLogGroup",
                                "logs:CreateLogStream",
                                "logs:PutLogEvents",
                            ],
                            "Resource": "*",
                        },
                    ],
                }
            ),
        )

        self._create(
            "build",
            "codebuild.Project",
            name=project_name,
            description=f"Builds {self.options.source_repository} into the application registry",
            service_role=self._read(role, "arn"),
            build_timeout=30,
            artifacts={"type": "NO_ARTIFACTS"},
            source={
                "type": "NO_SOURCE",
                "buildspec": render_buildspec(self.options.source_repository),
            },
            environment={
                "compute_type": "BUILD_GENERAL1_SMALL",
                "image": CODEBUILD_IMAGE,
                "type": "LINUX_CONTAINER",
                # Docker-in-docker
                "privileged_mode": True,
                "environment_variables": [
                    {"name": "REPOSITORY_URI", "value": repository_url},
                ],
            },
        )
        return project_name

    def _roles(self, secret_arn: Any) -> tuple[ResourceHandle, ResourceHandle]:
        # IAM Role for Task Execution (pulling images, writing logs, reading the DB secret)
        execution_role = self._create(
            "exec-role", "iam.Role", assume_role_policy=_assume_role("ecs-tasks.amazonaws.com")
        )
        self._create(
            "exec-policy",
            "iam.RolePolicyAttachment",
            role=self._read(execution_role, "name"),
            policy_arn="arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy",
        )
        self._create(
            "exec-secret-policy",
            "iam.RolePolicy",
            role=self._read(execution_role, "id"),
            policy=Json(
                {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Action": ["secretsmanager:GetSecretValue"],
                            "Resource": [secret_arn],
                        }
                    ],
                }
            ),
        )

        # IAM Role for Task (what the container itself can do)
        task_role = self._create(
            "task-role", "iam.Role", assume_role_policy=_assume_role("ecs-tasks.amazonaws.com")
        )
        return execution_role, task_role

    def _container_definition(
        self, repository_url: Any, log_group: ResourceHandle, database: DatabaseOutput
    ) -> dict[str, Any]:
        opts = self.options
        return {
            "name": CONTAINER_NAME,
            "image": Format("{}:" + IMAGE_TAG, repository_url),
            "essential": True,
            "portMappings": [{"containerPort": opts.container_port, "protocol": "tcp"}],
            "logConfiguration": {
                "logDriver": "awslogs",
                "options": {
                    "awslogs-group": self._read(log_group, "name"),
                    "awslogs-region": self.context.region,
                    "awslogs-stream-prefix": "ecs",
                },
            },
            "environment": [
                {"name": "DATABASE_HOST", "value": database.endpoint},
                {"name": "DATABASE_PORT", "value": str(database.port)},
                {"name": "DATABASE_NAME", "value": database.name},
                {"name": "SPRING_PROFILES_ACTIVE", "value": self.context.environment},
                {"name": "SERVER_PORT", "value": str(opts.container_port)},
            ],
            "secrets": [
                {
                    "name": "DATABASE_USERNAME",
                    "valueFrom": Format("{}:username::", database.secret_arn),
                },
                {
                    "name": "DATABASE_PASSWORD",
                    "valueFrom": Format("{}:password::", database.secret_arn),
                },
            ],
        }

    def _autoscaling(self, cluster_name: str, service_name: str, service: ResourceHandle) -> None:
        opts = self.options
        target = self._create(
            "scaling-target",
            "appautoscaling.Target",
            service_namespace="ecs",
            scalable_dimension="ecs:service:DesiredCount",
            resource_id=f"service/{cluster_name}/{service_name}",
            min_capacity=opts.min_capacity,
            max_capacity=opts.max_capacity,
            depends_on=[service],
        )

        for suffix, metric, target_value in (
            ("cpu", "ECSServiceAverageCPUUtilization", CPU_TARGET_PERCENT),
            ("memory", "ECSServiceAverageMemoryUtilization", MEMORY_TARGET_PERCENT),
        ):
            self._create(
                f"scaling-{suffix}",
                "appautoscaling.Policy",
                policy_type="TargetTrackingScaling",
                resource_id=self._read(target, "resource_id"),
                scalable_dimension=self._read(target, "scalable_dimension"),
                service_namespace=self._read(target, "service_namespace"),
                target_tracking_scaling_policy_configuration={
                    "predefined_metric_specification": {"predefined_metric_type": metric},
                    "target_value": target_value,
                    "scale_in_cooldown": SCALE_IN_COOLDOWN_SECONDS,
                    "scale_out_cooldown": SCALE_OUT_COOLDOWN_SECONDS,
                },
            )
