import json

import pulumi
import pytest

AVAILABILITY_ZONES = ["us-west-2a", "us-west-2b", "us-west-2c", "us-west-2d"]
CLUSTER_ENDPOINT = "https://ABCDEF0123456789.gr7.us-west-2.eks.amazonaws.com"
CLUSTER_CA = "LS0tLS1CRUdJTiBDRVJUSUZJQ0FURS0tLS0t"
OIDC_ISSUER = "https://oidc.eks.us-west-2.amazonaws.com/id/ABCDEF0123456789"


class EksMocks(pulumi.runtime.Mocks):
    """Records every registered resource and fakes the provider outputs we read."""

    def __init__(self):
        self.resources: list[pulumi.runtime.MockResourceArgs] = []
        self.calls: list[pulumi.runtime.MockCallArgs] = []

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        self.resources.append(args)
        state = dict(args.inputs)
        resource_id = f"{args.name}-id"

        if args.typ == "awsx:ec2:Vpc":
            count = len(args.inputs.get("availabilityZoneNames", []))
            # Component outputs are typed; echoing the input specs back would not deserialize
            state = {
                "natGateways": [],
                "routeTables": [],
                "subnets": [],
                "vpcId": "vpc-0123456789",
                "publicSubnetIds": [f"subnet-public-{i}" for i in range(count)],
                "privateSubnetIds": [f"subnet-private-{i}" for i in range(count)],
                "isolatedSubnetIds": [],
            }
        elif args.typ == "aws:eks/cluster:Cluster":
            state.update(
                {
                    "arn": f"arn:aws:eks:us-west-2:123456789012:cluster/{args.inputs['name']}",
                    "endpoint": CLUSTER_ENDPOINT,
                    "certificateAuthority": {"data": CLUSTER_CA},
                    "identities": [{"oidcs": [{"issuer": OIDC_ISSUER}]}],
                }
            )
        elif args.typ == "aws:iam/role:Role":
            state.update(
                {
                    "name": f"{args.name}-name",
                    "arn": f"arn:aws:iam::123456789012:role/{args.name}",
                }
            )
        elif args.typ == "aws:iam/instanceProfile:InstanceProfile":
            state.update(
                {
                    "name": f"{args.name}-name",
                    "arn": f"arn:aws:iam::123456789012:instance-profile/{args.name}",
                }
            )
        elif args.typ == "aws:iam/openIdConnectProvider:OpenIdConnectProvider":
            state["arn"] = "arn:aws:iam::123456789012:oidc-provider/oidc.eks.us-west-2.amazonaws.com"
        elif args.typ == "aws:ec2/launchTemplate:LaunchTemplate":
            state["latestVersion"] = 1
        elif args.typ == "aws:autoscaling/group:Group":
            state["name"] = f"{args.inputs.get('namePrefix', '')}0001"
        elif args.typ == "aws:ec2/securityGroup:SecurityGroup":
            resource_id = f"sg-{args.name}"

        return [resource_id, state]

    def call(self, args: pulumi.runtime.MockCallArgs):
        self.calls.append(args)

        if args.token == "aws:index/getPartition:getPartition":
            return {"partition": "aws", "dnsSuffix": "amazonaws.com", "id": "aws"}
        if args.token == "aws:index/getAvailabilityZones:getAvailabilityZones":
            return {
                "id": "us-west-2",
                "names": AVAILABILITY_ZONES,
                "zoneIds": [f"usw2-az{i + 1}" for i in range(len(AVAILABILITY_ZONES))],
            }
        if args.token == "aws:iam/getPolicyDocument:getPolicyDocument":
            return {
                "id": "policy",
                "json": json.dumps(
                    {"Version": "2012-10-17", "Statement": args.args.get("statements", [])}
                ),
            }
        if args.token == "aws:ssm/getParameter:getParameter":
            return {
                "id": args.args["name"],
                "name": args.args["name"],
                "type": "String",
                "value": "ami-0abcdef1234567890",
            }
        if args.token == "tls:index/getCertificate:getCertificate":
            return {
                "id": args.args["url"],
                "url": args.args["url"],
                "certificates": [
                    {
                        "certPem": "pem",
                        "isCa": True,
                        "issuer": "CN=Amazon Root CA 1",
                        "notAfter": "2037-01-01T00:00:00Z",
                        "notBefore": "2015-01-01T00:00:00Z",
                        "publicKeyAlgorithm": "RSA",
                        "serialNumber": "1",
                        "sha1Fingerprint": "9e99a48a9960b14926bb7f3b02e22da2b0ab7280",
                        "signatureAlgorithm": "SHA256-RSA",
                        "subject": "CN=Amazon Root CA 1",
                        "version": 3,
                    }
                ],
            }
        return {}

    def resources_of(self, typ: str) -> list[pulumi.runtime.MockResourceArgs]:
        return [r for r in self.resources if r.typ == typ]


@pytest.fixture
def mocks() -> EksMocks:
    eks_mocks = EksMocks()
    pulumi.runtime.set_mocks(eks_mocks, preview=False)
    return eks_mocks


@pytest.fixture
def aws_provider(mocks):
    """Provider created inside the mocked runtime; resolved lazily by each test."""

    def make():
        import pulumi_aws as aws

        return aws.Provider("test-aws", region="us-west-2")

    return make


class OptionsRecorder:
    """Transformation that records the ResourceOptions each resource was declared with.

    Passed through a component's ``transformations`` it also sees every child.
    """

    def __init__(self):
        self.options: dict[str, pulumi.ResourceOptions] = {}

    def __call__(self, args: pulumi.ResourceTransformationArgs):
        self.options[args.name] = args.opts
        return None


@pytest.fixture
def recorder() -> OptionsRecorder:
    return OptionsRecorder()


@pytest.fixture
def stack_config(mocks):
    """Sets project config for a test and clears it afterwards."""

    def apply(values: dict[str, str]):
        pulumi.runtime.set_all_config({f"project:{key}": value for key, value in values.items()})

    yield apply
    pulumi.runtime.set_all_config({})
