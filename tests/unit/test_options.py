"""Unit tests for component options: defaults, overrides and validation."""

import pytest
from pydantic import ValidationError

from components.options import (
    ApplicationOptions,
    BastionOptions,
    DatabaseOptions,
    DnsOptions,
    NetworkOptions,
    StackOptions,
)

# Every default, declared once here as the expected contract
DEFAULTS = {
    NetworkOptions: {"az_count": 2, "nat_gateway_count": 1, "cidr_block": "10.0.0.0/16"},
    DatabaseOptions: {
        "name": "appdb",
        "username": "appuser",
        "engine_version": "15.4",
        "instance_class": "db.t3.micro",
        "allocated_storage": 20,
        "max_allocated_storage": 100,
        "port": 5432,
        "password_length": 16,
        "backup_retention_days": 7,
        "deletion_protection": False,
    },
    BastionOptions: {"instance_class": "t3.micro", "allow_ssh_from_anywhere": True},
    ApplicationOptions: {
        "source_repository": "https://github.com/integrationninjas/springboot-example.git",
        "desired_count": 2,
        "cpu": 512,
        "memory": 1024,
        "min_capacity": 1,
        "max_capacity": 10,
        "container_port": 8080,
        "health_check_path": "/",
    },
}

# One valid non-default value per option
OVERRIDES = {
    NetworkOptions: {"az_count": 3, "nat_gateway_count": 2, "cidr_block": "10.20.0.0/16"},
    DatabaseOptions: {
        "name": "orders",
        "username": "orders_rw",
        "engine_version": "16.1",
        "instance_class": "db.r6g.large",
        "allocated_storage": 50,
        "max_allocated_storage": 200,
        "port": 5433,
        "password_length": 32,
        "backup_retention_days": 14,
        "deletion_protection": True,
    },
    BastionOptions: {"instance_class": "t3.small", "allow_ssh_from_anywhere": False},
    ApplicationOptions: {
        "source_repository": "https://example.com/app.git",
        "desired_count": 3,
        "cpu": 1024,
        "memory": 2048,
        "min_capacity": 2,
        "max_capacity": 4,
        "container_port": 9000,
        "health_check_path": "/health",
    },
}


class TestOverridePrecedence:
    """A default applies exactly when its key is absent."""

    @pytest.mark.parametrize("model", list(DEFAULTS))
    def test_defaults_apply_when_keys_absent(self, model):
        options = model()
        for key, default in DEFAULTS[model].items():
            assert getattr(options, key) == default, key

    @pytest.mark.parametrize("model", list(DEFAULTS))
    def test_each_key_overrides_only_itself(self, model):
        for key, value in OVERRIDES[model].items():
            if model is NetworkOptions and key == "nat_gateway_count":
                options = model(**{key: value, "az_count": 2})
            elif model is ApplicationOptions and key in ("min_capacity", "max_capacity"):
                options = model(**{key: value, "desired_count": 2})
            elif model is ApplicationOptions and key in ("cpu", "memory"):
                options = model(cpu=1024, memory=2048)
            else:
                options = model(**{key: value})

            assert getattr(options, key) == value, key
            for other, default in DEFAULTS[model].items():
                if other in (key, "az_count", "desired_count", "cpu", "memory"):
                    continue
                assert getattr(options, other) == default, f"{key} changed {other}"

    def test_all_overrides_together(self):
        for model, overrides in OVERRIDES.items():
            options = model(**overrides)
            assert options.model_dump(include=set(overrides)) == overrides

    def test_list_override_replaces_default_wholesale(self):
        options = DnsOptions(domain="example.com", extra_names=["www.example.com"])
        assert options.extra_names == ("www.example.com",)

    def test_extra_names_default_derives_from_domain(self):
        assert DnsOptions(domain="example.com").extra_names == ("*.example.com",)

    def test_empty_extra_names_is_kept(self):
        assert DnsOptions(domain="example.com", extra_names=[]).extra_names == ()

    def test_key_name_default_derives_from_project(self):
        options = BastionOptions.model_validate({}, context={"project": "shop"})
        assert options.key_name == "shop-bastion-key"

    def test_explicit_key_name_wins(self):
        options = BastionOptions.model_validate({"key_name": "ops"}, context={"project": "shop"})
        assert options.key_name == "ops"


class TestAliasesAndStrictness:
    def test_camel_case_aliases_accepted(self):
        options = ApplicationOptions.model_validate({"minCapacity": 2, "desiredCount": 2, "maxCapacity": 5})
        assert (options.min_capacity, options.desired_count, options.max_capacity) == (2, 2, 5)

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError, match="azCnt"):
            NetworkOptions.model_validate({"azCnt": 3})

    def test_options_are_immutable(self):
        options = NetworkOptions()
        with pytest.raises(ValidationError):
            options.az_count = 4


class TestValidationRules:
    @pytest.mark.parametrize("az_count", [0, 7])
    def test_az_count_bounds(self, az_count):
        with pytest.raises(ValidationError, match=r"(?i)az_?count"):
            NetworkOptions(az_count=az_count)

    def test_nat_gateway_count_cannot_exceed_az_count(self):
        with pytest.raises(ValidationError, match="cannot exceed"):
            NetworkOptions(az_count=2, nat_gateway_count=3)

    def test_nat_gateway_count_must_be_positive(self):
        with pytest.raises(ValidationError, match=r"(?i)nat_?gateway_?count"):
            NetworkOptions(nat_gateway_count=0)

    @pytest.mark.parametrize("cidr", ["10.0.0.0/24", "not-a-cidr", "fd00::/48"])
    def test_cidr_block_validated(self, cidr):
        with pytest.raises(ValidationError, match=r"(?i)cidr_?block"):
            NetworkOptions(cidr_block=cidr)

    @pytest.mark.parametrize("domain", ["", "   ", "localhost", "-bad.example.com"])
    def test_domain_validated(self, domain):
        with pytest.raises(ValidationError, match="domain"):
            DnsOptions(domain=domain)

    def test_domain_is_normalised(self):
        assert DnsOptions(domain=" Example.COM. ").domain == "example.com"

    def test_domain_is_required(self):
        with pytest.raises(ValidationError, match="domain"):
            DnsOptions()

    def test_storage_bounds(self):
        with pytest.raises(ValidationError, match="cannot exceed"):
            DatabaseOptions(allocated_storage=200, max_allocated_storage=100)

    def test_password_length_minimum(self):
        with pytest.raises(ValidationError, match=r"(?i)password_?length"):
            DatabaseOptions(password_length=12)

    def test_desired_count_above_max_rejected(self):
        with pytest.raises(ValidationError, match="capacity bounds violated"):
            ApplicationOptions(min_capacity=1, max_capacity=1, desired_count=2)

    def test_desired_count_below_min_rejected(self):
        with pytest.raises(ValidationError, match="capacity bounds violated"):
            ApplicationOptions(min_capacity=3, max_capacity=5, desired_count=2)

    def test_invalid_fargate_combination_rejected(self):
        with pytest.raises(ValidationError, match="not valid for cpu"):
            ApplicationOptions(cpu=256, memory=4096)

    def test_unknown_cpu_rejected(self):
        with pytest.raises(ValidationError, match="cpu must be one of"):
            ApplicationOptions(cpu=300)


class TestStackOptions:
    def test_only_domain_required(self):
        options = StackOptions.model_validate({"dns": {"domain": "example.com"}}, context={"project": "shop"})

        assert options.network == NetworkOptions()
        assert options.application == ApplicationOptions()
        assert options.bastion.key_name == "shop-bastion-key"

    def test_missing_dns_section_rejected(self):
        with pytest.raises(ValidationError, match="dns"):
            StackOptions.model_validate({})

    def test_nested_camel_case(self):
        options = StackOptions.model_validate(
            {"dns": {"domain": "example.com"}, "bastion": {"allowSshFromAnywhere": False}}
        )
        assert options.bastion.allow_ssh_from_anywhere is False
