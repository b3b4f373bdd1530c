"""Bootstrap user data for self-managed worker nodes.

Amazon Linux 2 nodes get a shell script that calls the EKS bootstrap script
shipped in the optimized AMI. Bottlerocket nodes get TOML settings, which
the Bottlerocket API server reads on first boot.
"""

import base64
import ipaddress
import json
import shlex

from infra.models import LaunchTemplateOs, SelfManagedNodeGroupConfig

CAPACITY_TYPE_LABEL = "eks.amazonaws.com/capacityType"

NVME_FORMAT_MOUNT = """\
# Format and mount NVMe instance store volumes
IDX=1
for DEV in $(nvme list | awk '/Instance Storage/ {print $1}'); do
  mkfs.xfs -f "$DEV"
  mkdir -p "/local$IDX"
  echo "$DEV /local$IDX xfs defaults,noatime 0 2" >> /etc/fstab
  IDX=$((IDX + 1))
done
mount -a
"""


def dns_cluster_ip(service_ipv4_cidr: str) -> str:
    """CoreDNS service IP: the tenth address of the service CIDR."""
    network = ipaddress.ip_network(service_ipv4_cidr, strict=False)
    return str(network.network_address + 10)


def node_labels(group: SelfManagedNodeGroupConfig) -> dict[str, str]:
    return {CAPACITY_TYPE_LABEL: group.capacity_type.value, **group.k8s_labels}


def kubelet_args(group: SelfManagedNodeGroupConfig) -> str:
    """Kubelet arguments: labels, taints, then any user supplied extras."""
    labels = ",".join(f"{k}={v}" for k, v in sorted(node_labels(group).items()))
    args = [f"--node-labels={labels}"]
    if group.k8s_taints:
        taints = ",".join(t.as_kubelet_arg() for t in group.k8s_taints)
        args.append(f"--register-with-taints={taints}")
    if group.kubelet_extra_args:
        args.append(group.kubelet_extra_args)
    return " ".join(args)


def _render_amazon_linux(
    group: SelfManagedNodeGroupConfig,
    cluster_name: str,
    endpoint: str,
    ca_data: str,
    service_ipv4_cidr: str,
) -> str:
    bootstrap = [
        "/etc/eks/bootstrap.sh",
        shlex.quote(cluster_name),
        "--apiserver-endpoint",
        shlex.quote(endpoint),
        "--b64-cluster-ca",
        shlex.quote(ca_data),
        "--dns-cluster-ip",
        dns_cluster_ip(service_ipv4_cidr),
        "--kubelet-extra-args",
        shlex.quote(kubelet_args(group)),
    ]
    if group.bootstrap_extra_args:
        bootstrap.append(group.bootstrap_extra_args)

    sections = ["#!/bin/bash", "set -ex"]
    if group.pre_userdata:
        sections.append(group.pre_userdata.rstrip("\n"))
    if group.format_mount_nvme_disk:
        sections.append(NVME_FORMAT_MOUNT.rstrip("\n"))
    sections.append(" ".join(bootstrap))
    if group.post_userdata:
        sections.append(group.post_userdata.rstrip("\n"))
    return "\n".join(sections) + "\n"


def _toml_str(value: str) -> str:
    # JSON string escaping is a subset of TOML basic strings
    return json.dumps(value)


def _render_bottlerocket(
    group: SelfManagedNodeGroupConfig,
    cluster_name: str,
    endpoint: str,
    ca_data: str,
    service_ipv4_cidr: str,
) -> str:
    lines = [
        "[settings.kubernetes]",
        f'"cluster-name" = {_toml_str(cluster_name)}',
        f'"api-server" = {_toml_str(endpoint)}',
        f'"cluster-certificate" = {_toml_str(ca_data)}',
        f'"cluster-dns-ip" = {_toml_str(dns_cluster_ip(service_ipv4_cidr))}',
        "",
        "[settings.kubernetes.node-labels]",
    ]
    for key, value in sorted(node_labels(group).items()):
        lines.append(f"{_toml_str(key)} = {_toml_str(value)}")

    if group.k8s_taints:
        lines += ["", "[settings.kubernetes.node-taints]"]
        taints: dict[str, list[str]] = {}
        for taint in group.k8s_taints:
            taints.setdefault(taint.key, []).append(f"{taint.value or ''}:{taint.effect.value}")
        for key, values in taints.items():
            rendered = ", ".join(_toml_str(v) for v in values)
            lines.append(f"{_toml_str(key)} = [{rendered}]")

    if group.bootstrap_extra_args:
        lines += ["", group.bootstrap_extra_args.rstrip("\n")]
    return "\n".join(lines) + "\n"


def render_user_data(
    group: SelfManagedNodeGroupConfig,
    cluster_name: str,
    endpoint: str,
    ca_data: str,
    service_ipv4_cidr: str,
) -> str:
    """Render the plain-text user data for one node group."""
    if group.launch_template_os == LaunchTemplateOs.AMAZON_LINUX_2_EKS:
        return _render_amazon_linux(group, cluster_name, endpoint, ca_data, service_ipv4_cidr)
    if group.launch_template_os == LaunchTemplateOs.BOTTLEROCKET:
        return _render_bottlerocket(group, cluster_name, endpoint, ca_data, service_ipv4_cidr)
    raise ValueError(f"Unsupported launch template OS: {group.launch_template_os}")


def encode_user_data(user_data: str) -> str:
    """Launch templates take base64 encoded user data."""
    return base64.b64encode(user_data.encode("utf-8")).decode("ascii")
