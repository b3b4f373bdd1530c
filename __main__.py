"""Main Pulumi program: VPC + EKS cluster with self-managed node groups."""

import pulumi

from infra.components.aws_auth import AwsAuth
from infra.components.eks import EksCluster
from infra.components.iam import EksIamRoles
from infra.components.networking import Networking
from infra.config import load_stack_config
from infra.providers import (
    create_aws_provider,
    create_k8s_provider,
    kubeconfig_output,
    resolve_availability_zones,
)

# Load stack configuration
config = load_stack_config()

# Create AWS provider for the stack's region
aws_provider = create_aws_provider(config)

availability_zones = resolve_availability_zones(config, aws_provider)

# Create networking infrastructure
networking = Networking(
    name=config.vpc_name,
    cluster_name=config.cluster_name,
    vpc_config=config.vpc,
    availability_zones=availability_zones,
    provider=aws_provider,
)

# Create IAM roles for EKS
iam = EksIamRoles(
    name=config.cluster_name,
    provider=aws_provider,
)

# Create EKS cluster and its self-managed node groups
eks = EksCluster(
    name=config.cluster_name,
    vpc_id=networking.vpc_id,
    private_subnet_ids=networking.private_subnet_ids,
    public_subnet_ids=networking.public_subnet_ids,
    cluster_role_arn=iam.cluster_role_arn,
    instance_profile_arn=iam.node_instance_profile_arn,
    eks_config=config.eks,
    provider=aws_provider,
    # default_tags do not reach ASG-launched instances or their volumes
    tags=config.resource_tags,
    opts=pulumi.ResourceOptions(depends_on=[iam]),
)

kubeconfig = kubeconfig_output(
    eks.cluster_name,
    eks.cluster_endpoint,
    eks.cluster_ca_data,
    config.aws_region,
)

if config.eks.manage_aws_auth:
    k8s_provider = create_k8s_provider(config.cluster_name, kubeconfig, depends_on=[eks.cluster])
    aws_auth = AwsAuth(
        name=config.cluster_name,
        node_role_arn=iam.node_role_arn,
        k8s_provider=k8s_provider,
        map_roles=config.eks.map_roles,
        map_users=config.eks.map_users,
    )

# Export VPC outputs
pulumi.export("vpc_id", networking.vpc_id)
pulumi.export("vpc_cidr_block", networking.vpc_cidr_block)
pulumi.export("private_subnet_ids", networking.private_subnet_ids)
pulumi.export("public_subnet_ids", networking.public_subnet_ids)
pulumi.export("availability_zones", availability_zones)

# Export IAM outputs
pulumi.export("eks_cluster_role_arn", iam.cluster_role_arn)
pulumi.export("node_role_arn", iam.node_role_arn)

# Export EKS outputs
pulumi.export("cluster_name", eks.cluster_name)
pulumi.export("cluster_endpoint", eks.cluster_endpoint)
pulumi.export("cluster_certificate_authority_data", eks.cluster_ca_data)
pulumi.export("cluster_arn", eks.cluster_arn)
pulumi.export("cluster_security_group_id", eks.cluster_security_group_id)
pulumi.export("node_security_group_id", eks.node_security_group_id)
pulumi.export("oidc_provider_arn", eks.oidc_provider_arn)
pulumi.export("self_managed_node_groups", eks.node_group_asg_names)

pulumi.export(
    "configure_kubectl",
    eks.cluster_name.apply(
        lambda name: f"aws eks --region {config.aws_region} update-kubeconfig --name {name}"
    ),
)
pulumi.export("kubeconfig", pulumi.Output.secret(kubeconfig))
