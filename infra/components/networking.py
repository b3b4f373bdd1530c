"""VPC and networking infrastructure for the EKS cluster."""

import pulumi
import pulumi_aws as aws
import pulumi_awsx as awsx

from infra.models import NatGatewayStrategy, VpcConfig
from infra.naming import cluster_tag


def _get_nat_strategy(strategy: NatGatewayStrategy) -> awsx.ec2.NatGatewayStrategy:
    """Convert NatGatewayStrategy enum to awsx enum."""
    mapping = {
        NatGatewayStrategy.NONE: awsx.ec2.NatGatewayStrategy.NONE,
        NatGatewayStrategy.SINGLE: awsx.ec2.NatGatewayStrategy.SINGLE,
        NatGatewayStrategy.ONE_PER_AZ: awsx.ec2.NatGatewayStrategy.ONE_PER_AZ,
    }
    return mapping[strategy]


def public_subnet_tags(cluster_name: str) -> dict[str, str]:
    return {
        cluster_tag(cluster_name): "shared",
        "kubernetes.io/role/elb": "1",
    }


def private_subnet_tags(cluster_name: str) -> dict[str, str]:
    return {
        cluster_tag(cluster_name): "shared",
        "kubernetes.io/role/internal-elb": "1",
    }


class Networking(pulumi.ComponentResource):
    """VPC with one public and one private subnet per availability zone."""

    def __init__(
        self,
        name: str,
        cluster_name: str,
        vpc_config: VpcConfig,
        availability_zones: list[str],
        provider: aws.Provider,
        tags: dict[str, str] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("eksblueprint:network:Networking", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)
        self._tags = tags or {}
        self._name = name

        az_count = len(availability_zones)
        self.public_subnet_cidrs = vpc_config.public_subnet_cidrs(az_count)
        self.private_subnet_cidrs = vpc_config.private_subnet_cidrs(az_count)

        subnet_specs = [
            awsx.ec2.SubnetSpecArgs(
                type=awsx.ec2.SubnetType.PUBLIC,
                name="public",
                cidr_blocks=self.public_subnet_cidrs,
                tags={**public_subnet_tags(cluster_name), **self._tags},
            ),
            awsx.ec2.SubnetSpecArgs(
                type=awsx.ec2.SubnetType.PRIVATE,
                name="private",
                cidr_blocks=self.private_subnet_cidrs,
                tags={**private_subnet_tags(cluster_name), **self._tags},
            ),
        ]

        self.vpc = awsx.ec2.Vpc(
            name,
            cidr_block=vpc_config.cidr_block,
            availability_zone_names=availability_zones,
            nat_gateways=awsx.ec2.NatGatewayConfigurationArgs(
                strategy=_get_nat_strategy(vpc_config.nat_gateway_strategy),
            ),
            subnet_strategy=awsx.ec2.SubnetAllocationStrategy.EXACT,
            subnet_specs=subnet_specs,
            enable_dns_hostnames=vpc_config.enable_dns_hostnames,
            enable_dns_support=vpc_config.enable_dns_support,
            tags={
                "Name": name,
                **self._tags,
            },
            opts=child_opts,
        )

        self.vpc_id = self.vpc.vpc_id
        self.vpc_cidr_block = vpc_config.cidr_block
        self.private_subnet_ids = self.vpc.private_subnet_ids
        self.public_subnet_ids = self.vpc.public_subnet_ids

        self.register_outputs(
            {
                "vpc_id": self.vpc_id,
                "vpc_cidr_block": self.vpc_cidr_block,
                "private_subnet_ids": self.private_subnet_ids,
                "public_subnet_ids": self.public_subnet_ids,
            }
        )
