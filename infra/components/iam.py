"""IAM roles for the EKS control plane and self-managed worker nodes."""

import pulumi
import pulumi_aws as aws

CLUSTER_MANAGED_POLICIES = [
    "AmazonEKSClusterPolicy",
    "AmazonEKSVPCResourceController",
]

NODE_MANAGED_POLICIES = [
    "AmazonEKSWorkerNodePolicy",
    "AmazonEKS_CNI_Policy",
    "AmazonEC2ContainerRegistryReadOnly",
    "AmazonSSMManagedInstanceCore",
]


def assume_role_policy(service: str, provider: aws.Provider | None = None) -> str:
    """Trust policy document letting ``service`` assume a role."""
    document = aws.iam.get_policy_document(
        statements=[
            aws.iam.GetPolicyDocumentStatementArgs(
                sid="EKSAssumeRole" if service.startswith("eks.") else "EC2AssumeRole",
                effect="Allow",
                actions=["sts:AssumeRole"],
                principals=[
                    aws.iam.GetPolicyDocumentStatementPrincipalArgs(
                        type="Service",
                        identifiers=[service],
                    )
                ],
            )
        ],
        opts=pulumi.InvokeOptions(provider=provider),
    )
    return document.json


def managed_policy_arn(partition: str, policy_name: str) -> str:
    return f"arn:{partition}:iam::aws:policy/{policy_name}"


class EksIamRoles(pulumi.ComponentResource):
    """Cluster service role, node role and the node instance profile."""

    def __init__(
        self,
        name: str,
        provider: aws.Provider,
        tags: dict[str, str] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("eksblueprint:iam:EksIamRoles", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)
        self._tags = tags or {}

        partition = aws.get_partition(opts=pulumi.InvokeOptions(provider=provider)).partition

        # Control plane role
        self.cluster_role = aws.iam.Role(
            f"{name}-cluster-role",
            name_prefix=f"{name[:20]}-cluster-",
            assume_role_policy=assume_role_policy("eks.amazonaws.com", provider),
            force_detach_policies=True,
            tags={"Name": f"{name}-cluster-role", **self._tags},
            opts=child_opts,
        )
        self.cluster_policy_attachments = [
            aws.iam.RolePolicyAttachment(
                f"{name}-cluster-{policy}",
                role=self.cluster_role.name,
                policy_arn=managed_policy_arn(partition, policy),
                opts=child_opts,
            )
            for policy in CLUSTER_MANAGED_POLICIES
        ]

        # Self-managed node role
        self.node_role = aws.iam.Role(
            f"{name}-node-role",
            name_prefix=f"{name[:20]}-node-",
            assume_role_policy=assume_role_policy("ec2.amazonaws.com", provider),
            force_detach_policies=True,
            tags={"Name": f"{name}-node-role", **self._tags},
            opts=child_opts,
        )
        self.node_policy_attachments = [
            aws.iam.RolePolicyAttachment(
                f"{name}-node-{policy}",
                role=self.node_role.name,
                policy_arn=managed_policy_arn(partition, policy),
                opts=child_opts,
            )
            for policy in NODE_MANAGED_POLICIES
        ]

        self.node_instance_profile = aws.iam.InstanceProfile(
            f"{name}-node-profile",
            name_prefix=f"{name[:20]}-node-",
            role=self.node_role.name,
            tags={"Name": f"{name}-node-profile", **self._tags},
            opts=pulumi.ResourceOptions(
                parent=self,
                provider=provider,
                depends_on=self.node_policy_attachments,
            ),
        )

        self.cluster_role_arn = self.cluster_role.arn
        self.node_role_arn = self.node_role.arn
        self.node_role_name = self.node_role.name
        self.node_instance_profile_arn = self.node_instance_profile.arn
        self.node_instance_profile_name = self.node_instance_profile.name

        self.register_outputs(
            {
                "cluster_role_arn": self.cluster_role_arn,
                "node_role_arn": self.node_role_arn,
                "node_instance_profile_arn": self.node_instance_profile_arn,
            }
        )
