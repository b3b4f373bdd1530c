"""kube-system/aws-auth ConfigMap mapping IAM identities to Kubernetes users."""

import pulumi
import pulumi_kubernetes as k8s
import yaml

from infra.models import MapRole, MapUser

NODE_USERNAME = "system:node:{{EC2PrivateDNSName}}"
NODE_GROUPS = ["system:bootstrappers", "system:nodes"]


def render_map_roles(node_role_arns: list[str], map_roles: list[MapRole]) -> str:
    """YAML list for the ``mapRoles`` key; node roles come first."""
    entries = [
        {"rolearn": arn, "username": NODE_USERNAME, "groups": list(NODE_GROUPS)}
        for arn in node_role_arns
    ]
    entries += [role.model_dump() for role in map_roles]
    return yaml.safe_dump(entries, default_flow_style=False, sort_keys=False)


def render_map_users(map_users: list[MapUser]) -> str:
    return yaml.safe_dump(
        [user.model_dump() for user in map_users],
        default_flow_style=False,
        sort_keys=False,
    )


class AwsAuth(pulumi.ComponentResource):
    """Lets self-managed nodes (and any mapped principals) authenticate."""

    def __init__(
        self,
        name: str,
        node_role_arn: pulumi.Input[str],
        k8s_provider: k8s.Provider,
        map_roles: list[MapRole] | None = None,
        map_users: list[MapUser] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("eksblueprint:kubernetes:AwsAuth", name, None, opts)

        map_roles = map_roles or []
        map_users = map_users or []

        data = {
            "mapRoles": pulumi.Output.from_input(node_role_arn).apply(
                lambda arn: render_map_roles([arn], map_roles)
            ),
        }
        if map_users:
            data["mapUsers"] = render_map_users(map_users)

        self.config_map = k8s.core.v1.ConfigMap(
            f"{name}-aws-auth",
            metadata=k8s.meta.v1.ObjectMetaArgs(
                name="aws-auth",
                namespace="kube-system",
                labels={"app.kubernetes.io/managed-by": "pulumi"},
            ),
            data=data,
            opts=pulumi.ResourceOptions(parent=self, provider=k8s_provider),
        )

        self.register_outputs({"config_map": self.config_map.metadata.name})
