"""Unit tests for the application component."""

import json

import yaml

from components.application import render_buildspec


def _one(provider, resource_type):
    records = provider.resources_of_type(resource_type)
    assert len(records) == 1, resource_type
    return records[0]


def _container(provider):
    task = _one(provider, "ecs.TaskDefinition")
    return json.loads(task.props["container_definitions"])[0]


class TestApplicationComponent:
    def test_output_url_and_identifiers(self, provisioned, provider):
        output = provisioned["application"].output

        assert output.url == "https://app.example.com"
        assert output.cluster_name == "appstack-test-cluster"
        assert output.load_balancer_dns.endswith(".elb.amazonaws.com")
        assert output.registry_uri == "123456789012.dkr.ecr.us-east-1.amazonaws.com/appstack-test-app"

    def test_service_runs_in_private_subnets(self, provisioned, provider):
        network = provisioned["network"].output
        service = _one(provider, "ecs.Service")

        assert service.props["launch_type"] == "FARGATE"
        assert service.props["desired_count"] == 2
        assert service.props["network_configuration"]["subnets"] == list(network.private_subnet_ids)
        assert service.props["network_configuration"]["assign_public_ip"] is False

    def test_load_balancer_is_public(self, provisioned, provider):
        network = provisioned["network"].output
        alb = _one(provider, "lb.LoadBalancer")

        assert alb.props["internal"] is False
        assert alb.props["subnets"] == list(network.public_subnet_ids)

    def test_https_listener_uses_validated_certificate(self, provisioned, provider):
        listeners = {r.props["port"]: r for r in provider.resources_of_type("lb.Listener")}

        assert listeners[443].props["certificate_arn"] == provisioned["dns"].output.certificate_arn
        redirect = listeners[80].props["default_actions"][0]
        assert redirect["type"] == "redirect"
        assert redirect["redirect"] == {"port": "443", "protocol": "HTTPS", "status_code": "HTTP_301"}

    def test_service_waits_for_https_listener(self, provisioned, provider):
        assert _one(provider, "ecs.Service").depends_on == ["appstack-test-application-https"]

    def test_health_check(self, provisioned, provider):
        health_check = _one(provider, "lb.TargetGroup").props["health_check"]

        assert health_check["path"] == "/"
        assert health_check["matcher"] == "200"
        assert (health_check["interval"], health_check["timeout"]) == (30, 5)
        assert (health_check["healthy_threshold"], health_check["unhealthy_threshold"]) == (2, 3)

    def test_database_credentials_are_secret_references(self, provisioned, provider):
        container = _container(provider)
        secret_arn = provisioned["database"].output.secret_arn
        environment = {e["name"]: e["value"] for e in container["environment"]}
        secrets = {s["name"]: s["valueFrom"] for s in container["secrets"]}

        assert secrets == {
            "DATABASE_USERNAME": f"{secret_arn}:username::",
            "DATABASE_PASSWORD": f"{secret_arn}:password::",
        }
        password = provider.secret_payload(provisioned["database"].output.secret)["password"]
        assert password not in json.dumps(container)
        assert environment["DATABASE_HOST"] == provisioned["database"].output.endpoint
        assert environment["DATABASE_PORT"] == "5432"
        assert environment["DATABASE_NAME"] == "appdb"

    def test_container_image_and_logs(self, provisioned, provider):
        container = _container(provider)
        output = provisioned["application"].output

        assert container["image"] == f"{output.registry_uri}:latest"
        assert container["portMappings"] == [{"containerPort": 8080, "protocol": "tcp"}]
        assert container["logConfiguration"]["options"]["awslogs-group"] == "/ecs/appstack-test-app"

    def test_execution_role_reads_only_the_database_secret(self, provisioned, provider):
        policy = json.loads(provider.resources["appstack-test-application-exec-secret-policy"].props["policy"])
        statement = policy["Statement"][0]

        assert statement["Action"] == ["secretsmanager:GetSecretValue"]
        assert statement["Resource"] == [provisioned["database"].output.secret_arn]

    def test_autoscaling_bounds_and_policies(self, provisioned, provider):
        target = _one(provider, "appautoscaling.Target")
        policies = provider.resources_of_type("appautoscaling.Policy")

        assert (target.props["min_capacity"], target.props["max_capacity"]) == (1, 10)
        assert target.props["resource_id"] == "service/appstack-test-cluster/appstack-test-app"
        configs = {
            p.props["target_tracking_scaling_policy_configuration"]["predefined_metric_specification"][
                "predefined_metric_type"
            ]: p.props["target_tracking_scaling_policy_configuration"]
            for p in policies
        }
        assert configs["ECSServiceAverageCPUUtilization"]["target_value"] == 70.0
        assert configs["ECSServiceAverageMemoryUtilization"]["target_value"] == 80.0
        assert all(c["scale_in_cooldown"] == 300 and c["scale_out_cooldown"] == 120 for c in configs.values())

    def test_alias_record_points_at_load_balancer(self, provisioned, provider):
        alias = provider.resources["appstack-test-application-alias"]
        alb = _one(provider, "lb.LoadBalancer")

        assert alias.props["name"] == "app.example.com"
        assert alias.props["type"] == "A"
        assert alias.props["zone_id"] == provisioned["dns"].output.zone_id
        assert alias.props["aliases"][0]["name"] == alb.generated["dns_name"]

    def test_registry_keeps_last_ten_images(self, provisioned, provider):
        repository = _one(provider, "ecr.Repository")
        lifecycle = json.loads(_one(provider, "ecr.LifecyclePolicy").props["policy"])

        assert repository.props["image_scanning_configuration"] == {"scan_on_push": True}
        assert lifecycle["rules"][0]["selection"]["countNumber"] == 10

    def test_tasks_reachable_only_from_load_balancer(self, provisioned, provider):
        lb_sg = provider.resources["appstack-test-application-lb-sg"]
        rule = provider.resources["appstack-test-application-service-ingress-lb"]

        assert rule.props["from_port"] == rule.props["to_port"] == 8080
        assert rule.props["source_security_group_id"] == lb_sg.generated["id"]
        assert sorted(i["from_port"] for i in lb_sg.props["ingress"]) == [80, 443]


class TestImageBuild:
    def test_build_project_clones_source_repository(self, provisioned, provider):
        project = _one(provider, "codebuild.Project")
        buildspec = yaml.safe_load(project.props["source"]["buildspec"])

        assert project.props["name"] == "appstack-test-image-build"
        assert project.props["environment"]["privileged_mode"] is True
        commands = buildspec["phases"]["pre_build"]["commands"]
        assert "git clone --depth 1 https://github.com/integrationninjas/springboot-example.git src" in commands
        repository_uri = project.props["environment"]["environment_variables"][0]
        assert repository_uri == {"name": "REPOSITORY_URI", "value": provisioned["application"].output.registry_uri}

    def test_buildspec_pushes_latest(self):
        buildspec = yaml.safe_load(render_buildspec("https://example.com/app.git"))
        assert buildspec["phases"]["post_build"]["commands"] == ["docker push $REPOSITORY_URI:latest"]
