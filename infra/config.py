"""Stack configuration loader."""

import json
from typing import Any

import pulumi
from pydantic import ValidationError

from infra.models import StackConfig, default_node_groups


def _parse_list(value: Any, default: list[str] | None = None) -> list[str] | None:
    """Accept either a list object or a comma-separated string."""
    if value is None:
        return default
    if isinstance(value, str) and value.lstrip().startswith("["):
        value = json.loads(value)
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value]


def _format_validation_error(error: ValidationError) -> str:
    """One line per failing field, e.g. ``eks.version: String should match ...``."""
    lines = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "<root>"
        lines.append(f"  {location}: {err['msg']}")
    return "\n".join(lines)


def build_stack_config(raw: dict[str, Any]) -> StackConfig:
    """Validate a raw config mapping into a StackConfig.

    Node groups may be given either under ``eks.self_managed_node_groups`` or
    as the top-level ``self_managed_node_groups`` key; the top-level key wins
    for duplicate group keys. When no node groups are configured at all a
    default Amazon Linux 2 group is added.
    """
    data = dict(raw)
    eks = dict(data.get("eks") or {})

    node_groups = dict(eks.get("self_managed_node_groups") or {})
    node_groups.update(data.pop("self_managed_node_groups", None) or {})

    if node_groups:
        eks["self_managed_node_groups"] = node_groups
    data["eks"] = eks

    try:
        config = StackConfig.model_validate(data)
    except ValidationError as e:
        raise pulumi.RunError(
            f"Invalid stack configuration ({e.error_count()} errors):\n"
            f"{_format_validation_error(e)}"
        ) from e

    if not config.eks.self_managed_node_groups:
        pulumi.log.warn(
            "No self-managed node groups configured; using the default 'self_mg4' group"
        )
        config.eks.self_managed_node_groups = default_node_groups()

    return config


def load_stack_config() -> StackConfig:
    """Load stack configuration from Pulumi config."""
    config = pulumi.Config()
    aws_config = pulumi.Config("aws")

    # Basic settings
    raw: dict[str, Any] = {
        "tenant": config.require("tenant"),
        "environment": config.require("environment"),
        "zone": config.require("zone"),
        "aws_region": config.get("awsRegion") or aws_config.get("region") or "us-west-2",
    }

    # Availability zones
    availability_zones = _parse_list(config.get("availabilityZones"))
    if availability_zones:
        raw["availability_zones"] = availability_zones

    az_count = config.get_int("azCount")
    if az_count is not None:
        raw["az_count"] = az_count

    # Structured sections
    vpc = config.get_object("vpc")
    if vpc is not None:
        raw["vpc"] = vpc

    eks = config.get_object("eks")
    if eks is not None:
        raw["eks"] = eks

    node_groups = config.get_object("selfManagedNodeGroups")
    if node_groups is not None:
        raw["self_managed_node_groups"] = node_groups

    tags = config.get_object("tags")
    if tags is not None:
        raw["tags"] = tags

    stack_config = build_stack_config(raw)

    pulumi.log.info(
        f"Stack {pulumi.get_stack()}: cluster={stack_config.cluster_name} "
        f"region={stack_config.aws_region} "
        f"node_groups={sorted(stack_config.eks.self_managed_node_groups)}"
    )
    return stack_config
