"""Unit tests for the database component."""

import logging

import pytest

from common.errors import DependencyResolutionError
from components.base import SecurityBoundary
from components.database import DatabaseComponent
from components.network import NetworkComponent
from components.options import DatabaseOptions, NetworkOptions
from providers.base import UNSAFE_PASSWORD_CHARACTERS, ResourceHandle


@pytest.fixture
def network_output(context, provider):
    return NetworkComponent(context, NetworkOptions(), provider).provision({})


def _database(context, provider, **overrides):
    return DatabaseComponent(context, DatabaseOptions(**overrides), provider)


def _boundary(component="bastion", group_id="sg-source"):
    return SecurityBoundary(component=component, handle=ResourceHandle("src", "ec2.SecurityGroup"), group_id=group_id)


class TestDatabaseComponent:
    def test_instance_in_data_subnets(self, context, provider, network_output):
        _database(context, provider).provision({"network": network_output})

        subnet_group = provider.resources_of_type("rds.SubnetGroup")[0]
        assert subnet_group.props["subnet_ids"] == list(network_output.data_subnet_ids)
        instance = provider.resources_of_type("rds.Instance")[0]
        assert instance.props["publicly_accessible"] is False
        assert instance.props["storage_encrypted"] is True

    def test_defaults_reach_the_instance(self, context, provider, network_output):
        output = _database(context, provider).provision({"network": network_output})

        props = provider.resources_of_type("rds.Instance")[0].props
        assert props["engine"] == "postgres"
        assert props["engine_version"] == "15.4"
        assert props["instance_class"] == "db.t3.micro"
        assert (props["allocated_storage"], props["max_allocated_storage"]) == (20, 100)
        assert props["backup_retention_period"] == 7
        assert props["deletion_protection"] is False
        assert props["skip_final_snapshot"] is True
        assert (output.port, output.name, output.username) == (5432, "appdb", "appuser")

    def test_password_comes_from_the_secret(self, context, provider, network_output):
        output = _database(context, provider).provision({"network": network_output})

        payload = provider.secret_payload(output.secret)
        instance = provider.resources_of_type("rds.Instance")[0]
        assert instance.props["password"] == payload["password"]
        assert payload["username"] == "appuser"
        assert len(payload["password"]) == 16
        assert not set(payload["password"]) & set(UNSAFE_PASSWORD_CHARACTERS)
        assert "password" in instance.props and "password" not in output.as_dict()

    def test_secret_named_after_stack(self, context, provider, network_output):
        output = _database(context, provider).provision({"network": network_output})
        assert output.secret_arn.startswith("arn:aws:secretsmanager:us-east-1:123456789012:secret:appstack/test/db-credentials")

    def test_security_group_denies_by_default(self, context, provider, network_output):
        _database(context, provider).provision({"network": network_output})

        sg = provider.resources["appstack-test-database-sg"]
        assert sg.props["egress"] == []
        assert "ingress" not in sg.props
        assert provider.resources_of_type("ec2.SecurityGroupRule") == []

    def test_missing_network_input(self, context, provider):
        with pytest.raises(DependencyResolutionError, match="network output"):
            _database(context, provider).provision({})


class TestGrantConnection:
    def test_grant_before_provision_fails(self, context, provider):
        database = _database(context, provider)

        with pytest.raises(DependencyResolutionError, match="does not exist yet"):
            database.grant_connection(_boundary(), "PostgreSQL from bastion")
        assert database.grants == ()
        assert provider.resources_of_type("ec2.SecurityGroupRule") == []

    def test_grant_opens_exactly_one_ingress_rule(self, context, provider, network_output):
        database = _database(context, provider)
        output = database.provision({"network": network_output})

        grant = database.grant_connection(_boundary(group_id="sg-bastion"), "PostgreSQL from bastion")

        rules = provider.resources_of_type("ec2.SecurityGroupRule")
        assert len(rules) == 1
        assert rules[0].props["type"] == "ingress"
        assert rules[0].props["from_port"] == rules[0].props["to_port"] == 5432
        assert rules[0].props["source_security_group_id"] == "sg-bastion"
        assert rules[0].props["security_group_id"] == output.security_boundary.group_id
        assert (grant.source, grant.destination, grant.port) == ("bastion", "database", 5432)

    def test_grants_are_logged_in_order(self, context, provider, network_output):
        database = _database(context, provider)
        database.provision({"network": network_output})

        database.grant_connection(_boundary("bastion"), "from bastion")
        database.grant_connection(_boundary("application"), "from application")

        assert [g.source for g in database.grants] == ["bastion", "application"]

    def test_duplicate_grant_rejected(self, context, provider, network_output):
        database = _database(context, provider)
        database.provision({"network": network_output})
        database.grant_connection(_boundary(), "from bastion")

        with pytest.raises(DependencyResolutionError, match="already holds a grant"):
            database.grant_connection(_boundary(), "from bastion")
        assert len(provider.resources_of_type("ec2.SecurityGroupRule")) == 1

    def test_grant_uses_custom_port(self, context, provider, network_output):
        database = _database(context, provider, port=6432)
        database.provision({"network": network_output})

        assert database.grant_connection(_boundary(), "from bastion").port == 6432


class TestDeletionProtection:
    def test_enabled_protection_retains_instance(self, context, provider, network_output):
        output = _database(context, provider, deletion_protection=True).provision({"network": network_output})

        instance = provider.resources_of_type("rds.Instance")[0]
        assert output.deletion_protection is True
        assert instance.retain_on_delete is True
        assert instance.props["skip_final_snapshot"] is False
        assert instance.props["final_snapshot_identifier"] == "appstack-test-database-final"

    def test_turning_protection_off_keeps_it_on(self, context, provider, network_output, caplog):
        _database(context, provider, deletion_protection=True).provision({"network": network_output})

        with caplog.at_level(logging.WARNING, logger="components.database"):
            output = _database(context, provider, deletion_protection=False).provision({"network": network_output})

        instance = provider.resources_of_type("rds.Instance")[0]
        assert output.deletion_protection is True
        assert instance.props["deletion_protection"] is True
        assert instance.retain_on_delete is True
        assert "Deletion protection stays enabled" in caplog.text

    def test_unprotected_instance_stays_unprotected(self, context, provider, network_output):
        _database(context, provider).provision({"network": network_output})
        output = _database(context, provider).provision({"network": network_output})

        assert output.deletion_protection is False
        assert provider.resources_of_type("rds.Instance")[0].retain_on_delete is False

    def test_rerun_keeps_existing_password(self, context, provider, network_output):
        first = _database(context, provider).provision({"network": network_output})
        password = provider.secret_payload(first.secret)["password"]
        second = _database(context, provider).provision({"network": network_output})

        assert provider.secret_payload(second.secret)["password"] == password
