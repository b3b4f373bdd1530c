"""AWS and Kubernetes providers for the stack."""

import json

import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as k8s

from infra.models import StackConfig

EXEC_API_VERSION = "client.authentication.k8s.io/v1beta1"


def create_aws_provider(config: StackConfig) -> aws.Provider:
    """Explicit AWS provider for the stack's region, tagging every resource."""
    return aws.Provider(
        f"{config.cluster_name}-aws",
        region=config.aws_region,
        default_tags=aws.ProviderDefaultTagsArgs(tags=config.resource_tags),
    )


def resolve_availability_zones(config: StackConfig, provider: aws.Provider) -> list[str]:
    """Configured AZs, or the first ``az_count`` available AZs of the region."""
    if config.availability_zones:
        return list(config.availability_zones)

    available = aws.get_availability_zones(
        state="available",
        filters=[{"name": "opt-in-status", "values": ["opt-in-not-required"]}],
        opts=pulumi.InvokeOptions(provider=provider),
    )
    names = list(available.names)
    if len(names) < config.az_count:
        pulumi.log.warn(
            f"Region {config.aws_region} has {len(names)} available zones, "
            f"{config.az_count} requested; using {names}"
        )
    return names[: config.az_count]


def build_kubeconfig(cluster_name: str, endpoint: str, ca_data: str, region: str) -> str:
    """Kubeconfig whose user authenticates through `aws eks get-token`."""
    return json.dumps(
        {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [
                {
                    "name": cluster_name,
                    "cluster": {
                        "server": endpoint,
                        "certificate-authority-data": ca_data,
                    },
                }
            ],
            "contexts": [
                {
                    "name": cluster_name,
                    "context": {"cluster": cluster_name, "user": cluster_name},
                }
            ],
            "current-context": cluster_name,
            "users": [
                {
                    "name": cluster_name,
                    "user": {
                        "exec": {
                            "apiVersion": EXEC_API_VERSION,
                            "command": "aws",
                            "args": [
                                "eks",
                                "get-token",
                                "--cluster-name",
                                cluster_name,
                                "--region",
                                region,
                            ],
                            "interactiveMode": "Never",
                        }
                    },
                }
            ],
        }
    )


def kubeconfig_output(
    cluster_name: pulumi.Input[str],
    endpoint: pulumi.Input[str],
    ca_data: pulumi.Input[str],
    region: str,
) -> pulumi.Output[str]:
    return pulumi.Output.all(cluster_name, endpoint, ca_data).apply(
        lambda args: build_kubeconfig(args[0], args[1], args[2], region)
    )


def create_k8s_provider(
    name: str,
    kubeconfig: pulumi.Input[str],
    depends_on: list[pulumi.Resource] | None = None,
) -> k8s.Provider:
    """Kubernetes provider talking to the EKS API with exec credentials."""
    return k8s.Provider(
        f"{name}-k8s",
        kubeconfig=kubeconfig,
        enable_server_side_apply=True,
        opts=pulumi.ResourceOptions(depends_on=depends_on or []),
    )
