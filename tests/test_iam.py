import json

import pulumi

from infra.components.iam import (
    CLUSTER_MANAGED_POLICIES,
    NODE_MANAGED_POLICIES,
    EksIamRoles,
    managed_policy_arn,
)


def test_managed_policy_arn_respects_partition():
    assert (
        managed_policy_arn("aws-us-gov", "AmazonEKSWorkerNodePolicy")
        == "arn:aws-us-gov:iam::aws:policy/AmazonEKSWorkerNodePolicy"
    )


@pulumi.runtime.test
def test_roles_trust_the_right_services(mocks, aws_provider):
    roles = EksIamRoles("t-eks", provider=aws_provider())

    def check(_):
        trusted = {}
        for role in mocks.resources_of("aws:iam/role:Role"):
            statement = json.loads(role.inputs["assumeRolePolicy"])["Statement"][0]
            trusted[role.name] = statement["principals"][0]["identifiers"]
        assert trusted == {
            "t-eks-cluster-role": ["eks.amazonaws.com"],
            "t-eks-node-role": ["ec2.amazonaws.com"],
        }

    return pulumi.Output.all(roles.cluster_role_arn, roles.node_role_arn).apply(check)


@pulumi.runtime.test
def test_managed_policies_attached(mocks, aws_provider):
    roles = EksIamRoles("t-eks", provider=aws_provider())

    def check(_):
        attached = {
            r.name: r.inputs["policyArn"]
            for r in mocks.resources_of("aws:iam/rolePolicyAttachment:RolePolicyAttachment")
        }
        assert len(attached) == len(CLUSTER_MANAGED_POLICIES) + len(NODE_MANAGED_POLICIES)
        assert attached["t-eks-node-AmazonEKS_CNI_Policy"] == (
            "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy"
        )
        assert attached["t-eks-cluster-AmazonEKSClusterPolicy"] == (
            "arn:aws:iam::aws:policy/AmazonEKSClusterPolicy"
        )

    attachments = roles.cluster_policy_attachments + roles.node_policy_attachments
    return pulumi.Output.all(*[a.id for a in attachments]).apply(check)


@pulumi.runtime.test
def test_instance_profile_wraps_node_role(mocks, aws_provider):
    roles = EksIamRoles("t-eks", provider=aws_provider())

    def check(args):
        profile_arn, node_role_arn = args
        assert profile_arn == "arn:aws:iam::123456789012:instance-profile/t-eks-node-profile"
        assert node_role_arn == "arn:aws:iam::123456789012:role/t-eks-node-role"
        (profile,) = mocks.resources_of("aws:iam/instanceProfile:InstanceProfile")
        assert profile.inputs["role"] == "t-eks-node-role-name"

    return pulumi.Output.all(roles.node_instance_profile_arn, roles.node_role_arn).apply(check)
