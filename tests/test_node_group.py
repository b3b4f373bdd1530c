import base64

import pulumi
import pytest

from infra.components.node_group import (
    SelfManagedNodeGroup,
    ami_ssm_parameter,
    asg_tags,
    instance_architecture,
)
from infra.models import LaunchTemplateOs, SelfManagedNodeGroupConfig

from conftest import CLUSTER_CA, CLUSTER_ENDPOINT

SSM_TOKEN = "aws:ssm/getParameter:getParameter"


@pytest.mark.parametrize(
    "instance_type,expected",
    [
        ("m5.large", "x86_64"),
        ("m6g.large", "arm64"),
        ("c7gn.xlarge", "arm64"),
        ("t4g.medium", "arm64"),
        ("g5.xlarge", "x86_64"),
    ],
)
def test_instance_architecture(instance_type, expected):
    assert instance_architecture(instance_type) == expected


def test_ami_parameter_paths():
    assert ami_ssm_parameter(LaunchTemplateOs.AMAZON_LINUX_2_EKS, "1.31", "m5.large") == (
        "/aws/service/eks/optimized-ami/1.31/amazon-linux-2/recommended/image_id"
    )
    assert ami_ssm_parameter(LaunchTemplateOs.AMAZON_LINUX_2_EKS, "1.31", "m6g.large") == (
        "/aws/service/eks/optimized-ami/1.31/amazon-linux-2-arm64/recommended/image_id"
    )
    assert ami_ssm_parameter(LaunchTemplateOs.BOTTLEROCKET, "1.30", "m5.large") == (
        "/aws/service/bottlerocket/aws-k8s-1.30/x86_64/latest/image_id"
    )


def test_asg_tags_mark_cluster_ownership_and_autoscaling():
    group = SelfManagedNodeGroupConfig(
        node_group_name="self-managed-ondemand",
        additional_tags={"ExtraTag": "m5x-on-demand"},
    )

    tags = asg_tags("c1", group, {"Team": "platform"})

    assert tags == {
        "Team": "platform",
        "ExtraTag": "m5x-on-demand",
        "Name": "c1-self-managed-ondemand",
        "kubernetes.io/cluster/c1": "owned",
        "k8s.io/cluster-autoscaler/enabled": "true",
        "k8s.io/cluster-autoscaler/c1": "owned",
    }


def make_node_group(aws_provider, name="c1-ng", transformations=None, **overrides) -> SelfManagedNodeGroup:
    group = SelfManagedNodeGroupConfig(node_group_name="ng", **overrides)
    return SelfManagedNodeGroup(
        name,
        cluster_name="c1",
        cluster_version="1.31",
        cluster_endpoint=CLUSTER_ENDPOINT,
        cluster_ca_data=CLUSTER_CA,
        service_ipv4_cidr="172.20.0.0/16",
        group=group,
        subnet_ids=["subnet-private-0", "subnet-private-1"],
        node_security_group_id="sg-node",
        instance_profile_arn="arn:aws:iam::123456789012:instance-profile/node",
        provider=aws_provider(),
        opts=pulumi.ResourceOptions(transformations=transformations or []),
    )


@pulumi.runtime.test
def test_launch_template_bootstraps_into_cluster(mocks, aws_provider):
    node_group = make_node_group(aws_provider, min_size=2, desired_size=2, max_size=4)

    def check(_):
        (lt,) = mocks.resources_of("aws:ec2/launchTemplate:LaunchTemplate")
        assert lt.inputs["imageId"] == "ami-0abcdef1234567890"
        assert lt.inputs["instanceType"] == "m5.large"
        assert lt.inputs["metadataOptions"]["httpTokens"] == "required"
        assert lt.inputs["networkInterfaces"][0]["securityGroups"] == ["sg-node"]
        assert lt.inputs["networkInterfaces"][0]["associatePublicIpAddress"] == "false"

        user_data = base64.b64decode(lt.inputs["userData"]).decode()
        assert "/etc/eks/bootstrap.sh c1" in user_data
        assert f"--apiserver-endpoint {CLUSTER_ENDPOINT}" in user_data
        assert "--dns-cluster-ip 172.20.0.10" in user_data

        (asg,) = mocks.resources_of("aws:autoscaling/group:Group")
        assert asg.inputs["minSize"] == 2
        assert asg.inputs["maxSize"] == 4
        assert asg.inputs["vpcZoneIdentifiers"] == ["subnet-private-0", "subnet-private-1"]
        assert asg.inputs["launchTemplate"] == {"id": "c1-ng-lt-id", "version": "1"}
        assert "mixedInstancesPolicy" not in asg.inputs
        tag_keys = {tag["key"] for tag in asg.inputs["tags"]}
        assert "k8s.io/cluster-autoscaler/c1" in tag_keys

    return node_group.autoscaling_group_name.apply(check)


@pulumi.runtime.test
def test_spot_group_uses_mixed_instances_policy(mocks, aws_provider):
    node_group = make_node_group(aws_provider, capacity_type="SPOT", instance_type="m5.xlarge")

    def check(_):
        (asg,) = mocks.resources_of("aws:autoscaling/group:Group")
        assert "launchTemplate" not in asg.inputs
        policy = asg.inputs["mixedInstancesPolicy"]
        assert policy["instancesDistribution"]["onDemandPercentageAboveBaseCapacity"] == 0
        spec = policy["launchTemplate"]["launchTemplateSpecification"]
        assert spec["launchTemplateId"] == "c1-ng-lt-id"
        assert policy["launchTemplate"]["overrides"] == [{"instanceType": "m5.xlarge"}]

    return node_group.autoscaling_group_name.apply(check)


@pulumi.runtime.test
def test_custom_ami_skips_parameter_lookup(mocks, aws_provider):
    node_group = make_node_group(aws_provider, custom_ami_id="ami-0123456789abcdef0")

    def check(_):
        (lt,) = mocks.resources_of("aws:ec2/launchTemplate:LaunchTemplate")
        assert lt.inputs["imageId"] == "ami-0123456789abcdef0"
        assert not [call for call in mocks.calls if call.token == SSM_TOKEN]

    return node_group.launch_template_id.apply(check)


@pulumi.runtime.test
def test_bottlerocket_user_data_is_toml(mocks, aws_provider):
    node_group = make_node_group(aws_provider, launch_template_os="bottlerocket")

    def check(_):
        (lt,) = mocks.resources_of("aws:ec2/launchTemplate:LaunchTemplate")
        user_data = base64.b64decode(lt.inputs["userData"]).decode()
        assert user_data.startswith("[settings.kubernetes]")
        (call,) = [call for call in mocks.calls if call.token == SSM_TOKEN]
        assert call.args["name"] == "/aws/service/bottlerocket/aws-k8s-1.31/x86_64/latest/image_id"

    return node_group.launch_template_id.apply(check)


@pulumi.runtime.test
def test_desired_capacity_left_to_autoscaler(mocks, aws_provider, recorder):
    node_group = make_node_group(aws_provider, transformations=[recorder])

    assert recorder.options["c1-ng-asg"].ignore_changes == ["desiredCapacity"]

    return node_group.autoscaling_group_name


@pulumi.runtime.test
def test_long_names_fit_launch_template_prefix(mocks, aws_provider):
    long_name = "a" * 100 + "-eks-" + "b" * 63
    node_group = make_node_group(aws_provider, name=long_name)

    def check(_):
        (lt,) = mocks.resources_of("aws:ec2/launchTemplate:LaunchTemplate")
        assert len(lt.inputs["namePrefix"]) <= 102
        assert lt.inputs["namePrefix"] == "a" * 100 + "-"

    return node_group.launch_template_id.apply(check)
