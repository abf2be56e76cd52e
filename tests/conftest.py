"""Pytest configuration and fixtures.

This module sets up test environment variables BEFORE any project modules are
imported, so Settings never picks up a developer's real account setup.
"""

import os

# Set test environment variables before any imports that might trigger Settings
os.environ.setdefault("PROJECT_NAME", "appstack")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("RESOURCE_PROVIDER", "providers.memory.InMemoryProvider")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("OWNER_TAG", "")

import pytest

from components.base import StackContext
from components.options import StackOptions
from providers.memory import InMemoryProvider

DOMAIN = "example.com"


@pytest.fixture
def provider():
    """In-memory account with ``example.com`` delegated to it."""
    return InMemoryProvider(region="us-east-1", hosted_zones=[DOMAIN])


@pytest.fixture
def context():
    return StackContext(
        project="appstack",
        environment="test",
        region="us-east-1",
        tags={"Project": "appstack", "Environment": "test", "ManagedBy": "pulumi"},
    )


@pytest.fixture
def stack_config():
    """Minimal valid stack configuration: only the required domain."""
    return {"dns": {"domain": DOMAIN}}


@pytest.fixture
def stack_options(stack_config):
    return StackOptions.model_validate(stack_config, context={"project": "appstack"})


@pytest.fixture
def provisioned(context, provider, stack_options):
    """Provision every component in order, without wiring.

    Returns the components by kind.
    """
    from components import (
        ApplicationComponent,
        BastionComponent,
        DatabaseComponent,
        DnsComponent,
        NetworkComponent,
    )

    network = NetworkComponent(context, stack_options.network, provider)
    dns = DnsComponent(context, stack_options.dns, provider)
    database = DatabaseComponent(context, stack_options.database, provider)
    bastion = BastionComponent(context, stack_options.bastion, provider)
    application = ApplicationComponent(context, stack_options.application, provider)

    network_output = network.provision({})
    dns_output = dns.provision({})
    database_output = database.provision({"network": network_output})
    bastion.provision({"network": network_output})
    application.provision({"network": network_output, "dns": dns_output, "database": database_output})

    return {
        "network": network,
        "dns": dns,
        "database": database,
        "bastion": bastion,
        "application": application,
    }
