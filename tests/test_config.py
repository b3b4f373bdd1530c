import json

import pulumi
import pytest

from infra.config import _parse_list, build_stack_config, load_stack_config

BASE = {"tenant": "aws001", "environment": "preprod", "zone": "dev"}


def test_parse_list_accepts_strings_and_lists():
    assert _parse_list("us-west-2a, us-west-2b,,") == ["us-west-2a", "us-west-2b"]
    assert _parse_list(["us-west-2a", " us-west-2b "]) == ["us-west-2a", "us-west-2b"]
    assert _parse_list(None, ["x"]) == ["x"]


def test_default_node_group_when_none_configured():
    config = build_stack_config(BASE)

    assert list(config.eks.self_managed_node_groups) == ["self_mg4"]
    assert config.eks.self_managed_node_groups["self_mg4"].node_group_name == "self_mg4"


def test_top_level_node_groups_merge_into_eks():
    config = build_stack_config(
        {
            **BASE,
            "eks": {
                "self_managed_node_groups": {
                    "a": {"node_group_name": "from-eks"},
                    "b": {"node_group_name": "replaced"},
                }
            },
            "self_managed_node_groups": {
                "b": {"node_group_name": "from-top-level", "instance_type": "m5.xlarge"},
            },
        }
    )

    groups = config.eks.self_managed_node_groups
    assert sorted(groups) == ["a", "b"]
    assert groups["a"].node_group_name == "from-eks"
    assert groups["b"].node_group_name == "from-top-level"
    assert groups["b"].instance_type == "m5.xlarge"


def test_invalid_config_raises_run_error_listing_all_fields():
    with pytest.raises(pulumi.RunError) as excinfo:
        build_stack_config(
            {
                **BASE,
                "tenant": "UPPER",
                "eks": {"version": "latest"},
            }
        )

    message = str(excinfo.value)
    assert "2 errors" in message
    assert "tenant:" in message
    assert "eks.version:" in message


def test_load_stack_config_reads_pulumi_config(stack_config):
    stack_config(
        {
            "tenant": "acme",
            "environment": "prod",
            "zone": "qa",
            "awsRegion": "eu-west-1",
            "availabilityZones": "eu-west-1a,eu-west-1b",
            "vpc": json.dumps({"cidr_block": "10.20.0.0/16"}),
            "selfManagedNodeGroups": json.dumps(
                {"spot": {"node_group_name": "spot", "capacity_type": "SPOT"}}
            ),
            "tags": json.dumps({"CostCenter": "42"}),
        }
    )

    config = load_stack_config()

    assert config.cluster_name == "acme-prod-qa-eks"
    assert config.aws_region == "eu-west-1"
    assert config.availability_zones == ["eu-west-1a", "eu-west-1b"]
    assert config.vpc.cidr_block == "10.20.0.0/16"
    assert config.eks.self_managed_node_groups["spot"].capacity_type.value == "SPOT"
    assert config.resource_tags["CostCenter"] == "42"
