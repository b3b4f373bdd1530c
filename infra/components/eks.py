from typing import Sequence

import pulumi
import pulumi_aws as aws
import pulumi_tls as tls

from infra.components.node_group import SelfManagedNodeGroup
from infra.models import EksConfig, SubnetType
from infra.naming import cluster_tag

# (name, description, protocol, from_port, to_port)
CLUSTER_TO_NODE_RULES = [
    ("https", "Cluster API https to node groups", "tcp", 443, 443),
    ("4443", "Cluster API to node 4443/tcp webhook", "tcp", 4443, 4443),
    ("6443", "Cluster API to node 6443/tcp webhook", "tcp", 6443, 6443),
    ("8443", "Cluster API to node 8443/tcp webhook", "tcp", 8443, 8443),
    ("9443", "Cluster API to node 9443/tcp webhook", "tcp", 9443, 9443),
    ("10250", "Cluster API to node kubelets", "tcp", 10250, 10250),
]

NODE_TO_NODE_RULES = [
    ("53-tcp", "Node to node CoreDNS tcp", "tcp", 53, 53),
    ("53-udp", "Node to node CoreDNS udp", "udp", 53, 53),
    ("ephemeral", "Node to node ingress on ephemeral ports", "tcp", 1025, 65535),
]


class EksCluster(pulumi.ComponentResource):
    """EKS control plane with self-managed node groups."""

    def __init__(
        self,
        name: str,
        vpc_id: pulumi.Input[str],
        private_subnet_ids: pulumi.Input[Sequence[str]],
        public_subnet_ids: pulumi.Input[Sequence[str]],
        cluster_role_arn: pulumi.Input[str],
        instance_profile_arn: pulumi.Input[str],
        eks_config: EksConfig,
        provider: aws.Provider,
        tags: dict[str, str] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("eksblueprint:eks:EksCluster", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)
        self._tags = tags or {}
        self._name = name
        self._provider = provider

        self.cluster_sg, self.node_sg = self._create_security_groups(vpc_id, child_opts)

        # Public subnets are only needed when the endpoint is reachable from outside
        if eks_config.endpoint_public_access:
            subnet_ids = pulumi.Output.all(private_subnet_ids, public_subnet_ids).apply(
                lambda args: list(args[0]) + list(args[1])
            )
        else:
            subnet_ids = private_subnet_ids

        vpc_config_args: dict = {
            "subnet_ids": subnet_ids,
            "security_group_ids": [self.cluster_sg.id],
            "endpoint_private_access": eks_config.endpoint_private_access,
            "endpoint_public_access": eks_config.endpoint_public_access,
        }
        if eks_config.endpoint_public_access and eks_config.public_access_cidrs:
            vpc_config_args["public_access_cidrs"] = eks_config.public_access_cidrs

        cluster_args: dict = {
            "name": name,
            "role_arn": cluster_role_arn,
            "version": eks_config.version,
            "vpc_config": aws.eks.ClusterVpcConfigArgs(**vpc_config_args),
            "kubernetes_network_config": aws.eks.ClusterKubernetesNetworkConfigArgs(
                service_ipv4_cidr=eks_config.service_ipv4_cidr,
            ),
            # aws-auth is still needed for self-managed nodes to join
            "access_config": aws.eks.ClusterAccessConfigArgs(
                authentication_mode="API_AND_CONFIG_MAP",
                bootstrap_cluster_creator_admin_permissions=True,
            ),
            "tags": {"Name": name, **self._tags},
        }
        if eks_config.enabled_cluster_log_types:
            cluster_args["enabled_cluster_log_types"] = eks_config.enabled_cluster_log_types

        self.cluster = aws.eks.Cluster(
            name,
            **cluster_args,
            opts=child_opts,
        )

        self.cluster_name = self.cluster.name
        self.cluster_endpoint = self.cluster.endpoint
        self.cluster_ca_data = self.cluster.certificate_authority.data
        self.cluster_arn = self.cluster.arn

        self.oidc_provider = None
        if eks_config.create_oidc_provider:
            self.oidc_provider = self._create_oidc_provider()

        self.vpc_cni_addon = self._create_addon("vpc-cni", [self.cluster])
        self.kube_proxy_addon = self._create_addon("kube-proxy", [self.cluster])

        self.node_groups: dict[str, SelfManagedNodeGroup] = {}
        for key, group in eks_config.self_managed_node_groups.items():
            group_subnets = (
                public_subnet_ids if group.subnet_type == SubnetType.PUBLIC else private_subnet_ids
            )
            self.node_groups[key] = SelfManagedNodeGroup(
                f"{name}-{group.node_group_name}",
                cluster_name=self.cluster_name,
                cluster_version=eks_config.version,
                cluster_endpoint=self.cluster_endpoint,
                cluster_ca_data=self.cluster_ca_data,
                service_ipv4_cidr=eks_config.service_ipv4_cidr,
                group=group,
                subnet_ids=group_subnets,
                node_security_group_id=self.node_sg.id,
                instance_profile_arn=instance_profile_arn,
                provider=provider,
                tags=self._tags,
                opts=pulumi.ResourceOptions(parent=self, depends_on=[self.vpc_cni_addon]),
            )

        # CoreDNS pods need schedulable nodes before the addon becomes healthy
        self.coredns_addon = self._create_addon(
            "coredns",
            [self.cluster, self.vpc_cni_addon, *self.node_groups.values()],
        )

        self.cluster_security_group_id = self.cluster_sg.id
        self.node_security_group_id = self.node_sg.id
        self.oidc_provider_arn = self.oidc_provider.arn if self.oidc_provider else None
        self.node_group_asg_names = pulumi.Output.all(
            **{key: ng.autoscaling_group_name for key, ng in self.node_groups.items()}
        )

        self.register_outputs(
            {
                "cluster_name": self.cluster_name,
                "cluster_endpoint": self.cluster_endpoint,
                "cluster_arn": self.cluster_arn,
                "oidc_provider_arn": self.oidc_provider_arn,
                "node_groups": self.node_group_asg_names,
            }
        )

    def _create_security_groups(
        self,
        vpc_id: pulumi.Input[str],
        opts: pulumi.ResourceOptions,
    ) -> tuple[aws.ec2.SecurityGroup, aws.ec2.SecurityGroup]:
        """Cluster and node security groups with the standard EKS rule set."""
        name = self._name

        cluster_sg = aws.ec2.SecurityGroup(
            f"{name}-cluster-sg",
            name_prefix=f"{name}-cluster-",
            vpc_id=vpc_id,
            description="EKS cluster control plane security group",
            tags={"Name": f"{name}-cluster-sg", **self._tags},
            opts=opts,
        )

        node_sg = aws.ec2.SecurityGroup(
            f"{name}-node-sg",
            name_prefix=f"{name}-node-",
            vpc_id=vpc_id,
            description="EKS self-managed node shared security group",
            tags={
                "Name": f"{name}-node-sg",
                cluster_tag(name): "owned",
                **self._tags,
            },
            opts=opts,
        )

        self.security_group_rules: list[pulumi.CustomResource] = []
        for sg_name, sg in (("cluster", cluster_sg), ("node", node_sg)):
            egress = aws.vpc.SecurityGroupEgressRule(
                f"{name}-{sg_name}-sgr-all-egress",
                description="Allow all IPv4 egress",
                cidr_ipv4="0.0.0.0/0",
                ip_protocol="-1",
                security_group_id=sg.id,
                opts=opts,
            )
            self.security_group_rules.append(egress)

        node_to_cluster = aws.vpc.SecurityGroupIngressRule(
            f"{name}-node-sgr-https-to-cluster",
            description="Node groups https to cluster API",
            ip_protocol="tcp",
            from_port=443,
            to_port=443,
            referenced_security_group_id=node_sg.id,
            security_group_id=cluster_sg.id,
            opts=opts,
        )
        self.security_group_rules.append(node_to_cluster)

        for rule_name, description, protocol, from_port, to_port in CLUSTER_TO_NODE_RULES:
            rule = aws.vpc.SecurityGroupIngressRule(
                f"{name}-cluster-sgr-{rule_name}-ingress",
                description=description,
                ip_protocol=protocol,
                from_port=from_port,
                to_port=to_port,
                referenced_security_group_id=cluster_sg.id,
                security_group_id=node_sg.id,
                opts=opts,
            )
            self.security_group_rules.append(rule)

        for rule_name, description, protocol, from_port, to_port in NODE_TO_NODE_RULES:
            rule = aws.vpc.SecurityGroupIngressRule(
                f"{name}-node-sgr-{rule_name}-ingress",
                description=description,
                ip_protocol=protocol,
                from_port=from_port,
                to_port=to_port,
                referenced_security_group_id=node_sg.id,
                security_group_id=node_sg.id,
                opts=opts,
            )
            self.security_group_rules.append(rule)

        return cluster_sg, node_sg

    def _create_oidc_provider(self) -> aws.iam.OpenIdConnectProvider:
        """Create OIDC provider for IAM Roles for Service Accounts (IRSA)."""
        oidc_issuer = self.cluster.identities[0].oidcs[0].issuer

        tls_cert = oidc_issuer.apply(lambda url: tls.get_certificate(url=url))
        thumbprint = tls_cert.apply(lambda cert: cert.certificates[0].sha1_fingerprint)

        return aws.iam.OpenIdConnectProvider(
            f"{self._name}-oidc-provider",
            url=oidc_issuer,
            client_id_lists=["sts.amazonaws.com"],
            thumbprint_lists=[thumbprint],
            tags={
                "Name": f"{self._name}-oidc-provider",
                **self._tags,
            },
            opts=pulumi.ResourceOptions(
                parent=self,
                provider=self._provider,
                depends_on=[self.cluster],
            ),
        )

    def _create_addon(self, addon_name: str, depends_on: list[pulumi.Resource]) -> aws.eks.Addon:
        return aws.eks.Addon(
            f"{self._name}-{addon_name}",
            cluster_name=self.cluster.name,
            addon_name=addon_name,
            resolve_conflicts_on_create="OVERWRITE",
            resolve_conflicts_on_update="OVERWRITE",
            tags={"Name": f"{self._name}-{addon_name}", **self._tags},
            opts=pulumi.ResourceOptions(
                parent=self,
                provider=self._provider,
                depends_on=depends_on,
            ),
        )
