"""Naming helpers and subnet CIDR arithmetic."""

import ipaddress


# cidr_subnet function like terraform-aws-module
def cidr_subnet(prefix: str, newbits: int, netnum: int) -> str:
    """Same semantics as terraform's cidrsubnet() for IPv4 prefixes."""
    network = ipaddress.ip_network(prefix, strict=False)
    if network.version != 4:
        raise ValueError(f"Only IPv4 prefixes are supported, got {prefix}")

    new_prefix_len = network.prefixlen + newbits
    if new_prefix_len > 32:
        raise ValueError(f"Cannot extend /{network.prefixlen} by {newbits} bits")
    if netnum < 0 or netnum >= 2**newbits:
        raise ValueError(f"Network number {netnum} does not fit in {newbits} bits")

    new_subnet_size = 2 ** (32 - new_prefix_len)
    start_ip = network.network_address + (netnum * new_subnet_size)
    return f"{start_ip}/{new_prefix_len}"


def subnet_cidrs(vpc_cidr: str, count: int, newbits: int, offset: int = 0) -> list[str]:
    """Consecutive subnets of ``vpc_cidr`` starting at network number ``offset``."""
    return [cidr_subnet(vpc_cidr, newbits, k + offset) for k in range(count)]


def resource_name(*parts: str) -> str:
    """Join the non-empty parts with '-'."""
    return "-".join(p for p in parts if p)


def cluster_tag(cluster_name: str) -> str:
    """Tag key used by Kubernetes to discover resources of a cluster."""
    return f"kubernetes.io/cluster/{cluster_name}"
