"""Pydantic models for the VPC / EKS stack configuration."""

import ipaddress
import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from infra.naming import resource_name, subnet_cidrs

NAME_PART_PATTERN = r"^[a-z0-9]+$"
# Smallest subnet AWS accepts
MAX_SUBNET_PREFIX = 28


class NatGatewayStrategy(str, Enum):
    """NAT Gateway deployment strategy."""

    NONE = "none"  # No NAT gateway (private subnets have no egress)
    SINGLE = "single"  # Single NAT gateway shared by all AZs
    ONE_PER_AZ = "one_per_az"  # One NAT gateway per AZ


class LaunchTemplateOs(str, Enum):
    """Operating system family of a self-managed node group."""

    AMAZON_LINUX_2_EKS = "amazonlinux2eks"
    BOTTLEROCKET = "bottlerocket"


class CapacityType(str, Enum):
    """EC2 purchase option for self-managed nodes."""

    ON_DEMAND = "ON_DEMAND"
    SPOT = "SPOT"


class SubnetType(str, Enum):
    """Subnet tier a node group is launched into."""

    PRIVATE = "private"
    PUBLIC = "public"


class TaintEffect(str, Enum):
    """Kubernetes taint effect."""

    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


# -----------------------------------------------------------------------------
# VPC Configuration Models
# -----------------------------------------------------------------------------


class VpcConfig(BaseModel):
    """VPC configuration options."""

    cidr_block: str = Field(
        default="10.0.0.0/16",
        description="Primary VPC CIDR block",
    )
    public_subnet_newbits: int = Field(
        default=8,
        ge=1,
        le=12,
        description="Bits added to the VPC prefix for each public subnet",
    )
    private_subnet_newbits: int = Field(
        default=8,
        ge=1,
        le=12,
        description="Bits added to the VPC prefix for each private subnet",
    )
    private_subnet_offset: int = Field(
        default=10,
        ge=0,
        description="Network number of the first private subnet",
    )
    nat_gateway_strategy: NatGatewayStrategy = Field(
        default=NatGatewayStrategy.SINGLE,
        description="NAT gateway deployment strategy",
    )
    enable_dns_hostnames: bool = Field(
        default=True,
        description="Enable DNS hostnames in VPC (required for EKS)",
    )
    enable_dns_support: bool = Field(
        default=True,
        description="Enable DNS support in VPC (required for EKS)",
    )

    @field_validator("cidr_block")
    @classmethod
    def validate_vpc_cidr(cls, v: str) -> str:
        """Validate VPC CIDR format."""
        try:
            network = ipaddress.ip_network(v, strict=False)
        except ValueError as e:
            raise ValueError(f"Invalid VPC CIDR: {e}") from e
        if network.version != 4:
            raise ValueError("VPC CIDR must be an IPv4 block")
        if network.prefixlen < 16 or network.prefixlen > 24:
            raise ValueError("VPC CIDR prefix must be between /16 and /24")
        return str(network)

    def public_subnet_cidrs(self, az_count: int) -> list[str]:
        """Public subnet CIDRs, one per AZ, starting at network number 0."""
        return subnet_cidrs(self.cidr_block, az_count, self.public_subnet_newbits)

    def private_subnet_cidrs(self, az_count: int) -> list[str]:
        """Private subnet CIDRs, one per AZ, starting at ``private_subnet_offset``."""
        return subnet_cidrs(
            self.cidr_block,
            az_count,
            self.private_subnet_newbits,
            self.private_subnet_offset,
        )


# -----------------------------------------------------------------------------
# Node Group Configuration Models
# -----------------------------------------------------------------------------


class BlockDeviceMapping(BaseModel):
    """EBS volume attached to every instance of a node group."""

    device_name: str = Field(
        default="/dev/xvda",
        description="Device name exposed to the instance",
    )
    volume_type: str = Field(
        default="gp3",
        description="EBS volume type",
    )
    volume_size: int = Field(
        default=50,
        ge=1,
        le=16384,
        description="Volume size in GiB",
    )
    iops: Optional[int] = Field(
        default=None,
        ge=100,
        description="Provisioned IOPS (gp3, io1, io2 only)",
    )
    throughput: Optional[int] = Field(
        default=None,
        ge=125,
        le=1000,
        description="Provisioned throughput in MiB/s (gp3 only)",
    )
    encrypted: bool = Field(
        default=True,
        description="Encrypt the volume",
    )
    delete_on_termination: bool = Field(
        default=True,
        description="Delete the volume when the instance terminates",
    )

    @model_validator(mode="after")
    def validate_performance_settings(self) -> "BlockDeviceMapping":
        """Reject iops/throughput on volume types that do not support them."""
        if self.iops is not None and self.volume_type not in ("gp3", "io1", "io2"):
            raise ValueError(f"iops is not supported for volume type '{self.volume_type}'")
        if self.throughput is not None and self.volume_type != "gp3":
            raise ValueError(
                f"throughput is not supported for volume type '{self.volume_type}'"
            )
        return self


class Taint(BaseModel):
    """Kubernetes taint registered by the kubelet at join time."""

    key: str = Field(..., min_length=1, description="Taint key")
    value: Optional[str] = Field(default=None, description="Taint value")
    effect: TaintEffect = Field(..., description="Taint effect")

    def as_kubelet_arg(self) -> str:
        """Render as ``key=value:Effect`` for ``--register-with-taints``."""
        value = self.value or ""
        return f"{self.key}={value}:{self.effect.value}"


class SelfManagedNodeGroupConfig(BaseModel):
    """Configuration for a self-managed node group (launch template + ASG)."""

    node_group_name: str = Field(
        ...,
        description="Node group name, used in resource names and the ASG Name tag",
        pattern=r"^[a-z0-9][a-z0-9_-]*$",
        max_length=63,
    )
    launch_template_os: LaunchTemplateOs = Field(
        default=LaunchTemplateOs.AMAZON_LINUX_2_EKS,
        description="Operating system family, selects AMI and user data format",
    )
    instance_type: str = Field(
        default="m5.large",
        description="EC2 instance type for worker nodes",
    )
    custom_ami_id: Optional[str] = Field(
        default=None,
        description="Custom AMI ID (defaults to the EKS optimized AMI)",
        pattern=r"^ami-[0-9a-f]+$",
    )
    capacity_type: CapacityType = Field(
        default=CapacityType.ON_DEMAND,
        description="ON_DEMAND or SPOT",
    )
    min_size: int = Field(default=1, ge=0, description="Minimum number of nodes")
    desired_size: int = Field(default=1, ge=0, description="Desired number of nodes")
    max_size: int = Field(default=3, ge=1, description="Maximum number of nodes")
    block_device_mappings: list[BlockDeviceMapping] = Field(
        default_factory=lambda: [BlockDeviceMapping()],
        description="EBS volumes attached to each node",
    )
    format_mount_nvme_disk: bool = Field(
        default=False,
        description="Format and mount local NVMe instance store disks",
    )
    public_ip: bool = Field(
        default=False,
        description="Associate a public IP with each node",
    )
    enable_monitoring: bool = Field(
        default=False,
        description="Enable EC2 detailed monitoring",
    )
    pre_userdata: str = Field(
        default="",
        description="Shell snippet run before the node bootstraps",
    )
    post_userdata: str = Field(
        default="",
        description="Shell snippet run after the node bootstraps",
    )
    kubelet_extra_args: str = Field(
        default="",
        description="Extra arguments passed to the kubelet",
    )
    bootstrap_extra_args: str = Field(
        default="",
        description="Extra arguments passed to the bootstrap script",
    )
    k8s_labels: dict[str, str] = Field(
        default_factory=dict,
        description="Kubernetes labels for nodes",
    )
    k8s_taints: list[Taint] = Field(
        default_factory=list,
        description="Kubernetes taints for nodes",
    )
    additional_tags: dict[str, str] = Field(
        default_factory=dict,
        description="Extra tags propagated to the ASG and its instances",
    )
    subnet_type: SubnetType = Field(
        default=SubnetType.PRIVATE,
        description="Subnet tier the nodes are launched into",
    )

    @model_validator(mode="after")
    def validate_scaling(self) -> "SelfManagedNodeGroupConfig":
        """Ensure min_size <= desired_size <= max_size."""
        if not self.min_size <= self.desired_size <= self.max_size:
            raise ValueError(
                f"Node group '{self.node_group_name}' requires "
                f"min_size <= desired_size <= max_size "
                f"(got {self.min_size}, {self.desired_size}, {self.max_size})"
            )
        return self


def default_node_groups() -> dict[str, SelfManagedNodeGroupConfig]:
    """Node groups used when the stack config declares none."""
    return {
        "self_mg4": SelfManagedNodeGroupConfig(
            node_group_name="self_mg4",
            launch_template_os=LaunchTemplateOs.AMAZON_LINUX_2_EKS,
        ),
    }


# -----------------------------------------------------------------------------
# EKS Configuration Models
# -----------------------------------------------------------------------------


class MapRole(BaseModel):
    """IAM role mapped to a Kubernetes identity in aws-auth."""

    rolearn: str = Field(
        ...,
        description="IAM role ARN",
        pattern=r"^arn:aws[a-z-]*:iam::\d{12}:role/.+$",
    )
    username: str = Field(..., description="Kubernetes username")
    groups: list[str] = Field(default_factory=list, description="Kubernetes groups")


class MapUser(BaseModel):
    """IAM user mapped to a Kubernetes identity in aws-auth."""

    userarn: str = Field(
        ...,
        description="IAM user ARN",
        pattern=r"^arn:aws[a-z-]*:iam::\d{12}:user/.+$",
    )
    username: str = Field(..., description="Kubernetes username")
    groups: list[str] = Field(default_factory=list, description="Kubernetes groups")


class EksConfig(BaseModel):
    """EKS cluster configuration options."""

    version: str = Field(
        default="1.31",
        description="Kubernetes version",
        pattern=r"^1\.\d+$",
    )
    endpoint_private_access: bool = Field(
        default=True,
        description="Expose the API server inside the VPC",
    )
    endpoint_public_access: bool = Field(
        default=True,
        description="Expose the API server to the internet",
    )
    public_access_cidrs: list[str] = Field(
        default_factory=list,
        description="CIDRs allowed for public endpoint access",
    )
    service_ipv4_cidr: str = Field(
        default="172.20.0.0/16",
        description="Kubernetes service CIDR (must not overlap with VPC CIDR)",
    )
    enabled_cluster_log_types: list[str] = Field(
        default_factory=list,
        description="Control plane log types to enable",
    )
    create_oidc_provider: bool = Field(
        default=True,
        description="Create an IAM OIDC provider for IRSA",
    )
    manage_aws_auth: bool = Field(
        default=True,
        description="Manage the kube-system/aws-auth ConfigMap",
    )
    map_roles: list[MapRole] = Field(
        default_factory=list,
        description="Additional IAM roles to add to aws-auth",
    )
    map_users: list[MapUser] = Field(
        default_factory=list,
        description="Additional IAM users to add to aws-auth",
    )
    self_managed_node_groups: dict[str, SelfManagedNodeGroupConfig] = Field(
        default_factory=dict,
        description="Self-managed node groups keyed by group key",
    )

    @field_validator("service_ipv4_cidr")
    @classmethod
    def validate_service_cidr(cls, v: str) -> str:
        """Validate service CIDR format."""
        try:
            network = ipaddress.ip_network(v, strict=False)
        except ValueError as e:
            raise ValueError(f"Invalid service CIDR: {e}") from e
        if network.prefixlen < 12 or network.prefixlen > 24:
            raise ValueError("Service CIDR prefix must be between /12 and /24")
        return str(network)

    @field_validator("public_access_cidrs")
    @classmethod
    def validate_public_cidrs(cls, v: list[str]) -> list[str]:
        """Validate public access CIDRs."""
        for cidr in v:
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError as e:
                raise ValueError(f"Invalid public access CIDR '{cidr}': {e}") from e
        return v

    @field_validator("enabled_cluster_log_types")
    @classmethod
    def validate_log_types(cls, v: list[str]) -> list[str]:
        """Only control plane log types EKS knows about are accepted."""
        allowed = {"api", "audit", "authenticator", "controllerManager", "scheduler"}
        unknown = [t for t in v if t not in allowed]
        if unknown:
            raise ValueError(f"Unknown cluster log types {unknown}; allowed: {sorted(allowed)}")
        return v

    @model_validator(mode="after")
    def validate_endpoint_access(self) -> "EksConfig":
        """At least one API endpoint must be reachable."""
        if not self.endpoint_private_access and not self.endpoint_public_access:
            raise ValueError("At least one of endpoint_private_access/endpoint_public_access must be enabled")
        return self

    @model_validator(mode="after")
    def validate_unique_node_group_names(self) -> "EksConfig":
        """Node group names end up in resource names and must be unique."""
        seen: dict[str, str] = {}
        for key, group in self.self_managed_node_groups.items():
            if group.node_group_name in seen:
                raise ValueError(
                    f"Node groups '{seen[group.node_group_name]}' and '{key}' share "
                    f"node_group_name '{group.node_group_name}'"
                )
            seen[group.node_group_name] = key
        return self


# -----------------------------------------------------------------------------
# Stack Configuration
# -----------------------------------------------------------------------------


class StackConfig(BaseModel):
    """Fully validated configuration for one stack."""

    tenant: str = Field(
        ...,
        description="Account or team name",
        pattern=NAME_PART_PATTERN,
        max_length=12,
    )
    environment: str = Field(
        ...,
        description="Environment area, e.g. preprod or prod",
        pattern=NAME_PART_PATTERN,
    )
    zone: str = Field(
        ...,
        description="Zone within the environment, e.g. dev or qa",
        pattern=NAME_PART_PATTERN,
    )
    aws_region: str = Field(
        default="us-west-2",
        description="AWS region for deployment",
    )
    availability_zones: Optional[list[str]] = Field(
        default=None,
        description="Availability zones (defaults to the first az_count available)",
    )
    az_count: int = Field(
        default=3,
        ge=1,
        le=6,
        description="Number of availability zones when none are given",
    )
    vpc: VpcConfig = Field(
        default_factory=VpcConfig,
        description="VPC configuration",
    )
    eks: EksConfig = Field(
        default_factory=EksConfig,
        description="EKS cluster configuration",
    )
    tags: dict[str, str] = Field(
        default_factory=dict,
        description="Custom tags to apply to all resources",
    )

    @field_validator("aws_region")
    @classmethod
    def validate_aws_region(cls, v: str) -> str:
        """Validate AWS region format."""
        if not re.match(r"^[a-z]{2}(-gov)?-[a-z]+-\d$", v):
            raise ValueError(f"Invalid AWS region '{v}'")
        return v

    @field_validator("availability_zones")
    @classmethod
    def validate_availability_zones(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        """Reject empty or duplicated AZ lists."""
        if v is None:
            return v
        if not v:
            raise ValueError("availability_zones must not be empty when given")
        if len(set(v)) != len(v):
            raise ValueError(f"availability_zones contains duplicates: {v}")
        return v

    @model_validator(mode="after")
    def validate_azs_in_region(self) -> "StackConfig":
        """Configured AZs must belong to the stack's region."""
        if self.availability_zones:
            foreign = [az for az in self.availability_zones if not az.startswith(self.aws_region)]
            if foreign:
                raise ValueError(f"Availability zones {foreign} are not in region {self.aws_region}")
        return self

    @model_validator(mode="after")
    def validate_cidr_no_overlap(self) -> "StackConfig":
        """Validate that service CIDR doesn't overlap with VPC CIDR."""
        vpc_network = ipaddress.ip_network(self.vpc.cidr_block, strict=False)
        service_network = ipaddress.ip_network(self.eks.service_ipv4_cidr, strict=False)

        if vpc_network.overlaps(service_network):
            raise ValueError(
                f"Service CIDR {self.eks.service_ipv4_cidr} overlaps with "
                f"VPC CIDR {self.vpc.cidr_block}. Use a different service CIDR."
            )
        return self

    @model_validator(mode="after")
    def validate_subnet_layout(self) -> "StackConfig":
        """Public and private subnets must fit in the VPC without overlapping."""
        count = len(self.availability_zones) if self.availability_zones else self.az_count
        try:
            public = self.vpc.public_subnet_cidrs(count)
            private = self.vpc.private_subnet_cidrs(count)
        except ValueError as e:
            raise ValueError(f"Subnet layout does not fit VPC {self.vpc.cidr_block}: {e}") from e

        networks = [ipaddress.ip_network(c) for c in public + private]
        too_small = [str(n) for n in networks if n.prefixlen > MAX_SUBNET_PREFIX]
        if too_small:
            raise ValueError(
                f"Subnets {too_small} are smaller than /{MAX_SUBNET_PREFIX}; "
                "reduce public_subnet_newbits/private_subnet_newbits or widen the VPC"
            )
        for i, a in enumerate(networks):
            for b in networks[i + 1:]:
                if a.overlaps(b):
                    raise ValueError(f"Subnets {a} and {b} overlap")
        return self

    @model_validator(mode="after")
    def validate_cluster_name_length(self) -> "StackConfig":
        """EKS cluster names are limited to 100 characters."""
        if len(self.cluster_name) > 100:
            raise ValueError(f"Cluster name '{self.cluster_name}' exceeds 100 characters")
        return self

    @property
    def cluster_name(self) -> str:
        return resource_name(self.tenant, self.environment, self.zone, "eks")

    @property
    def vpc_name(self) -> str:
        return resource_name(self.tenant, self.environment, self.zone, "vpc")

    @property
    def resource_tags(self) -> dict[str, str]:
        """Tags applied to every resource through the provider's default_tags."""
        return {
            "Tenant": self.tenant,
            "Environment": self.environment,
            "Zone": self.zone,
            "ManagedBy": "pulumi",
            **self.tags,
        }
