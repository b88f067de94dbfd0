"""Shared pytest fixtures for nlbtopo tests.

This module provides common fixtures used across test files:
- nlbtopo_root: Sets NLBTOPO_ROOT environment variable
- pulumi_mocks: Pulumi mocks installed for resource tests
- deployment_config: DeploymentConfig for the example.test scenario
- deployment: Deployment on disk under NLBTOPO_ROOT with that config
- topology: the built topology for that config
"""

import json
import pathlib
import sys
import typing

import pulumi
import pytest

HERE = pathlib.Path(__file__).absolute().parent

sys.path.insert(0, str(HERE / "src"))

import nlbtopo  # noqa: E402
import nlbtopo.deployment  # noqa: E402
import nlbtopo.model  # noqa: E402
import nlbtopo.topology  # noqa: E402

BOOT_PAYLOAD = "dnf install -y httpd && systemctl enable --now httpd\n"


# ============================================================================
# Environment Setup Fixtures
# ============================================================================


@pytest.fixture
def nlbtopo_root(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> pathlib.Path:
    """Set NLBTOPO_ROOT environment variable to a temporary directory.

    Usage:
        def test_something(nlbtopo_root):
            paths = Paths()
            assert paths.root == nlbtopo_root
    """
    monkeypatch.setenv("NLBTOPO_ROOT", str(tmp_path))
    return tmp_path


# ============================================================================
# Pulumi Mock Fixtures
# ============================================================================


class StandardPulumiMocks(pulumi.runtime.Mocks):
    """Pulumi mocks that echo inputs back as outputs.

    A few provider-computed outputs that nlbtopo reads are filled in so that applies over them
    see realistic values, and every registered resource is recorded in `resources`.
    """

    def __init__(self) -> None:
        self.resources: list[pulumi.runtime.MockResourceArgs] = []

    def new_resource(self, args: pulumi.runtime.MockResourceArgs) -> tuple[str | None, dict[typing.Any, typing.Any]]:
        self.resources.append(args)
        outputs = dict(args.inputs)

        if args.typ == "aws:acm/certificate:Certificate":
            domain = args.inputs["domainName"]
            outputs["arn"] = f"arn:aws:acm:us-east-1:123456789012:certificate/{args.name}"
            outputs["domainValidationOptions"] = [
                {
                    "domainName": domain,
                    "resourceRecordName": f"_0123abcd.{domain}.",
                    "resourceRecordType": "CNAME",
                    "resourceRecordValue": "_4567efgh.acm-validations.aws.",
                }
            ]
        elif args.typ == "aws:route53/record:Record":
            outputs["fqdn"] = args.inputs.get("name")
        elif args.typ == "aws:route53/zone:Zone":
            outputs["zoneId"] = "Z0123456789ABCDEFGHIJ"
            outputs["nameServers"] = ["ns-1.awsdns-01.org", "ns-2.awsdns-02.net"]
        elif args.typ == "aws:lb/loadBalancer:LoadBalancer":
            outputs["arn"] = f"arn:aws:elasticloadbalancing:us-east-1:123456789012:loadbalancer/net/{args.name}"
            outputs["dnsName"] = f"{args.name}-0123456789.elb.us-east-1.amazonaws.com"
            outputs["zoneId"] = "Z26RNL4JYFTOTI"
        elif args.typ == "aws:s3/bucket:Bucket":
            outputs["arn"] = f"arn:aws:s3:::{args.inputs.get('bucket', args.name)}"

        return f"{args.name}_id", outputs

    def call(
        self, args: pulumi.runtime.MockCallArgs
    ) -> dict[typing.Any, typing.Any] | tuple[dict[typing.Any, typing.Any], list[tuple[str, str]] | None]:
        if args.token == "aws:ec2/getAmi:getAmi":
            return {"id": "ami-0123456789abcdef0", "architecture": "x86_64"}

        if args.token == "aws:iam/getPolicyDocument:getPolicyDocument":
            return {"json": json.dumps({"Version": "2012-10-17", "Statement": args.args.get("statements", [])})}

        if args.token == "aws:index/getAvailabilityZones:getAvailabilityZones":
            return {"names": ["us-east-1a", "us-east-1b"], "zoneIds": ["use1-az1", "use1-az2"]}

        return {}

    def of_type(self, typ: str) -> list[pulumi.runtime.MockResourceArgs]:
        return [r for r in self.resources if r.typ == typ]


@pytest.fixture
def pulumi_mocks() -> StandardPulumiMocks:
    """Install fresh Pulumi mocks for the test and return them.

    Usage:
        @pulumi.runtime.test
        def test_my_resource(pulumi_mocks):
            ...
            pulumi_mocks.of_type("aws:ec2/vpc:Vpc")
    """
    mocks = StandardPulumiMocks()
    pulumi.runtime.set_mocks(mocks, preview=False)
    return mocks


# ============================================================================
# Deployment Fixtures
# ============================================================================


@pytest.fixture
def deployment_config() -> nlbtopo.deployment.DeploymentConfig:
    """The example.test scenario: 10.0.0.0/24 split into a public and an isolated /27."""
    return nlbtopo.deployment.DeploymentConfig(
        domain="example.test",
        environment="development",
        true_name="testing01",
        region="us-east-1",
        availability_zone="us-east-1a",
        resource_tags={"project": "nlbtopo-tests"},
    )


@pytest.fixture
def deployment(
    nlbtopo_root: pathlib.Path, deployment_config: nlbtopo.deployment.DeploymentConfig
) -> nlbtopo.deployment.Deployment:
    """A Deployment whose directory exists under NLBTOPO_ROOT and holds the boot payload."""
    d = nlbtopo.deployment.Deployment(name="testing01-development", load_yaml=False)
    d.cfg = deployment_config
    d.d.mkdir(parents=True)
    d.boot_payload_path.write_text(BOOT_PAYLOAD)

    return d


@pytest.fixture
def topology(deployment_config: nlbtopo.deployment.DeploymentConfig) -> nlbtopo.model.Topology:
    return nlbtopo.topology.build(deployment_config, BOOT_PAYLOAD)
