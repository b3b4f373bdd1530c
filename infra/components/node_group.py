"""Self-managed EKS node group: launch template plus auto scaling group."""

import re
from typing import Sequence

import pulumi
import pulumi_aws as aws

from infra.models import CapacityType, LaunchTemplateOs, SelfManagedNodeGroupConfig
from infra.naming import cluster_tag
from infra.userdata import encode_user_data, render_user_data

# Graviton families carry a "g" right after the generation digit (m6g, c7gn, t4g)
_ARM_INSTANCE_FAMILY = re.compile(r"^[a-z]+\d+g[a-z]*\.")

# Launch template names cap at 128 and name_prefix leaves room for a 26 char suffix
LAUNCH_TEMPLATE_PREFIX_MAX = 100


def instance_architecture(instance_type: str) -> str:
    return "arm64" if _ARM_INSTANCE_FAMILY.match(instance_type) else "x86_64"


def ami_ssm_parameter(os: LaunchTemplateOs, cluster_version: str, instance_type: str) -> str:
    """SSM public parameter holding the recommended EKS AMI for a node group."""
    arch = instance_architecture(instance_type)
    if os == LaunchTemplateOs.AMAZON_LINUX_2_EKS:
        flavour = "amazon-linux-2-arm64" if arch == "arm64" else "amazon-linux-2"
        return f"/aws/service/eks/optimized-ami/{cluster_version}/{flavour}/recommended/image_id"
    if os == LaunchTemplateOs.BOTTLEROCKET:
        return f"/aws/service/bottlerocket/aws-k8s-{cluster_version}/{arch}/latest/image_id"
    raise ValueError(f"Unsupported launch template OS: {os}")


def asg_tags(
    cluster_name: str,
    group: SelfManagedNodeGroupConfig,
    tags: dict[str, str],
) -> dict[str, str]:
    """Tags propagated from the ASG to every instance it launches."""
    return {
        **tags,
        **group.additional_tags,
        "Name": f"{cluster_name}-{group.node_group_name}",
        cluster_tag(cluster_name): "owned",
        "k8s.io/cluster-autoscaler/enabled": "true",
        f"k8s.io/cluster-autoscaler/{cluster_name}": "owned",
    }


class SelfManagedNodeGroup(pulumi.ComponentResource):
    """Worker nodes that join the cluster via their bootstrap user data."""

    def __init__(
        self,
        name: str,
        cluster_name: pulumi.Input[str],
        cluster_version: str,
        cluster_endpoint: pulumi.Input[str],
        cluster_ca_data: pulumi.Input[str],
        service_ipv4_cidr: str,
        group: SelfManagedNodeGroupConfig,
        subnet_ids: pulumi.Input[Sequence[str]],
        node_security_group_id: pulumi.Input[str],
        instance_profile_arn: pulumi.Input[str],
        provider: aws.Provider,
        tags: dict[str, str] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("eksblueprint:eks:SelfManagedNodeGroup", name, None, opts)

        self._tags = tags or {}
        self._name = name
        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)

        ami_id = group.custom_ami_id or aws.ssm.get_parameter(
            name=ami_ssm_parameter(group.launch_template_os, cluster_version, group.instance_type),
            opts=pulumi.InvokeOptions(provider=provider),
        ).value

        user_data = pulumi.Output.all(cluster_name, cluster_endpoint, cluster_ca_data).apply(
            lambda args: encode_user_data(
                render_user_data(group, args[0], args[1], args[2], service_ipv4_cidr)
            )
        )

        name_tags = pulumi.Output.from_input(cluster_name).apply(
            lambda cn: asg_tags(cn, group, self._tags)
        )

        self.launch_template = aws.ec2.LaunchTemplate(
            f"{name}-lt",
            name_prefix=f"{name[:LAUNCH_TEMPLATE_PREFIX_MAX]}-",
            description=f"Launch template for self-managed node group {group.node_group_name}",
            image_id=ami_id,
            instance_type=group.instance_type,
            update_default_version=True,
            user_data=user_data,
            iam_instance_profile=aws.ec2.LaunchTemplateIamInstanceProfileArgs(
                arn=instance_profile_arn,
            ),
            network_interfaces=[
                aws.ec2.LaunchTemplateNetworkInterfaceArgs(
                    device_index=0,
                    associate_public_ip_address=str(group.public_ip).lower(),
                    delete_on_termination="true",
                    security_groups=[node_security_group_id],
                )
            ],
            metadata_options=aws.ec2.LaunchTemplateMetadataOptionsArgs(
                http_endpoint="enabled",
                http_tokens="required",  # Require IMDSv2
                http_put_response_hop_limit=2,
            ),
            monitoring=aws.ec2.LaunchTemplateMonitoringArgs(
                enabled=group.enable_monitoring,
            ),
            block_device_mappings=[
                aws.ec2.LaunchTemplateBlockDeviceMappingArgs(
                    device_name=bdm.device_name,
                    ebs=aws.ec2.LaunchTemplateBlockDeviceMappingEbsArgs(
                        volume_size=bdm.volume_size,
                        volume_type=bdm.volume_type,
                        iops=bdm.iops,
                        throughput=bdm.throughput,
                        encrypted=str(bdm.encrypted).lower(),
                        delete_on_termination=str(bdm.delete_on_termination).lower(),
                    ),
                )
                for bdm in group.block_device_mappings
            ],
            tag_specifications=[
                aws.ec2.LaunchTemplateTagSpecificationArgs(
                    resource_type="instance",
                    tags=name_tags,
                ),
                aws.ec2.LaunchTemplateTagSpecificationArgs(
                    resource_type="volume",
                    tags=name_tags,
                ),
            ],
            tags={"Name": f"{name}-lt", **self._tags},
            opts=child_opts,
        )

        lt_version = self.launch_template.latest_version.apply(str)

        asg_args: dict = {
            "name_prefix": f"{name}-",
            "min_size": group.min_size,
            "max_size": group.max_size,
            "desired_capacity": group.desired_size,
            "vpc_zone_identifiers": subnet_ids,
            "health_check_type": "EC2",
            "protect_from_scale_in": False,
            "tags": name_tags.apply(
                lambda t: [
                    aws.autoscaling.GroupTagArgs(key=k, value=v, propagate_at_launch=True)
                    for k, v in sorted(t.items())
                ]
            ),
        }

        if group.capacity_type == CapacityType.SPOT:
            asg_args["mixed_instances_policy"] = aws.autoscaling.GroupMixedInstancesPolicyArgs(
                instances_distribution=aws.autoscaling.GroupMixedInstancesPolicyInstancesDistributionArgs(
                    on_demand_base_capacity=0,
                    on_demand_percentage_above_base_capacity=0,
                    spot_allocation_strategy="price-capacity-optimized",
                ),
                launch_template=aws.autoscaling.GroupMixedInstancesPolicyLaunchTemplateArgs(
                    launch_template_specification=aws.autoscaling.GroupMixedInstancesPolicyLaunchTemplateLaunchTemplateSpecificationArgs(
                        launch_template_id=self.launch_template.id,
                        version=lt_version,
                    ),
                    overrides=[
                        aws.autoscaling.GroupMixedInstancesPolicyLaunchTemplateOverrideArgs(
                            instance_type=group.instance_type,
                        )
                    ],
                ),
            )
        else:
            asg_args["launch_template"] = aws.autoscaling.GroupLaunchTemplateArgs(
                id=self.launch_template.id,
                version=lt_version,
            )

        # Cluster autoscaler owns desired capacity once the group exists
        self.autoscaling_group = aws.autoscaling.Group(
            f"{name}-asg",
            **asg_args,
            opts=pulumi.ResourceOptions(
                parent=self,
                provider=provider,
                ignore_changes=["desiredCapacity"],
            ),
        )

        self.autoscaling_group_name = self.autoscaling_group.name
        self.launch_template_id = self.launch_template.id

        self.register_outputs(
            {
                "autoscaling_group_name": self.autoscaling_group_name,
                "launch_template_id": self.launch_template_id,
            }
        )
