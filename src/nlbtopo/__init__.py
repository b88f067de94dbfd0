from __future__ import annotations

import enum
import typing

import boto3

if typing.TYPE_CHECKING:
    from nlbtopo.model import ResourceId

AMAZON_ACCOUNT_ID = "137112412989"
ANY_IPV4 = "0.0.0.0/0"
DEFAULT_REGION = "us-east-1"
EC2_SERVICE_PRINCIPAL = "ec2.amazonaws.com"
HTTP_PORT = 80
HTTPS_PORT = 443
LOG_DELIVERY_SERVICE_PRINCIPAL = "delivery.logs.amazonaws.com"
ROOT_DEVICE_NAME = "/dev/xvda"
SSM_MANAGED_INSTANCE_CORE_POLICY_ARN = "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore"

# The provider's recommended TLS policy: TLS 1.2 and 1.3 with a modern cipher baseline.
RECOMMENDED_TLS_POLICY = "ELBSecurityPolicy-TLS13-1-2-2021-06"

# Ports that must never be opened on a compute resource; management goes through SSM.
MANAGEMENT_PORTS = (22, 3389)


class SegmentType(enum.StrEnum):
    PUBLIC = "public"
    ISOLATED = "isolated"


class CertificateState(enum.StrEnum):
    PENDING = "pending"
    ISSUED = "issued"
    FAILED = "failed"


class ListenerProtocol(enum.StrEnum):
    TCP = "TCP"
    TLS = "TLS"
    UDP = "UDP"


class RuleProtocol(enum.StrEnum):
    TCP = "tcp"
    UDP = "udp"
    ALL = "-1"


class AlpnPolicy(enum.StrEnum):
    NONE = "None"
    HTTP1_ONLY = "HTTP1Only"
    HTTP2_ONLY = "HTTP2Only"
    HTTP2_OPTIONAL = "HTTP2Optional"
    HTTP2_PREFERRED = "HTTP2Preferred"


class EndpointService(enum.StrEnum):
    EC2_MESSAGES = "ec2messages"
    S3 = "s3"
    SSM = "ssm"
    SSM_MESSAGES = "ssmmessages"


class EndpointType(enum.StrEnum):
    GATEWAY = "Gateway"
    INTERFACE = "Interface"


GATEWAY_ENDPOINT_SERVICES = frozenset([EndpointService.S3])

# Session Manager needs all three of these to reach an instance with no internet route:
# ssm for dispatch, ssmmessages for the session data channel, ec2messages for the agent.
MANAGEMENT_ENDPOINT_SERVICES = frozenset(
    [
        EndpointService.EC2_MESSAGES,
        EndpointService.SSM,
        EndpointService.SSM_MESSAGES,
    ]
)

ISOLATED_ENDPOINT_SERVICES = (
    EndpointService.S3,
    EndpointService.SSM,
    EndpointService.SSM_MESSAGES,
    EndpointService.EC2_MESSAGES,
)


class ResourceKind(enum.StrEnum):
    ZONE = "zone"
    CERTIFICATE = "certificate"
    VALIDATION_RECORD = "validation-record"
    LOG_STORE = "log-store"
    NETWORK = "network"
    SEGMENT = "segment"
    ENDPOINT = "endpoint"
    ACCESS_POLICY = "access-policy"
    IDENTITY = "identity"
    COMPUTE = "compute"
    LOAD_BALANCER = "load-balancer"
    LISTENER = "listener"
    ALIAS_RECORD = "alias-record"


class Roles(enum.StrEnum):
    INSTANCE = "instance.nlbtopo"


class TagKeys(enum.StrEnum):
    NLBTOPO_ENVIRONMENT = "nlbtopo/environment"
    NLBTOPO_MANAGED_BY = "nlbtopo/managed-by"
    NLBTOPO_NETWORK_ACCESS = "nlbtopo/network-access"
    NLBTOPO_TRUE_NAME = "nlbtopo/true-name"


class Environments(enum.StrEnum):
    development = "development"
    staging = "staging"
    production = "production"


class TopologyError(ValueError):
    """Base class for problems found in a declared topology."""


class StructuralError(TopologyError):
    """The declared graph is malformed; raised before any provider call."""

    def __init__(self, problems: typing.Sequence[str]):
        self.problems = list(problems)
        super().__init__("invalid topology:\n  - " + "\n  - ".join(self.problems))


class OrderingError(TopologyError):
    """The dependency graph has a cycle or a dangling edge."""


class UnreachableError(TopologyError):
    """A traced connection is refused somewhere along its path."""


class ExternalStateError(RuntimeError):
    """A precondition owned by the outside world does not hold."""

    def __init__(self, resource: ResourceId, precondition: str):
        self.resource = resource
        self.precondition = precondition
        super().__init__(f"{resource}: {precondition}")


class PartialConvergenceError(RuntimeError):
    """A convergence run stopped part way; `created` lists what this run created."""

    def __init__(self, created: typing.Sequence[ResourceId], failed: ResourceId, cause: BaseException):
        self.created = list(created)
        self.failed = failed
        self.cause = cause
        created_desc = ", ".join(str(rid) for rid in self.created) or "nothing"
        super().__init__(f"convergence stopped at {failed}: {cause} (created this run: {created_desc})")


class AWSCallerIdentity(typing.TypedDict):
    UserId: str
    Account: str
    Arn: str


def aws_session(exe_env: dict[str, str] | None = None, region: str | None = None) -> boto3.Session:
    return boto3.Session(
        aws_access_key_id=exe_env.get("AWS_ACCESS_KEY_ID") if exe_env else None,
        aws_secret_access_key=exe_env.get("AWS_SECRET_ACCESS_KEY") if exe_env else None,
        aws_session_token=exe_env.get("AWS_SESSION_TOKEN") if exe_env else None,
        region_name=region,
    )


def aws_whoami(exe_env: dict[str, str] | None = None) -> tuple[AWSCallerIdentity, bool]:
    sts_client = aws_session(exe_env).client("sts")

    try:
        response = sts_client.get_caller_identity()
    except Exception:
        return typing.cast(AWSCallerIdentity, {}), False
    else:
        return response, True


def aws_route53_name_servers(
    domain: str, exe_env: dict[str, str] | None = None, region: str = DEFAULT_REGION
) -> tuple[list[str], bool]:
    """
    Look up the name servers of the public hosted zone for `domain`.

    The parent registrar must delegate to exactly these name servers before DNS
    validation of the certificate can succeed.
    """
    route53_client = aws_session(exe_env, region).client("route53")
    zone_name = domain.rstrip(".") + "."

    try:
        zones = route53_client.list_hosted_zones_by_name(DNSName=zone_name, MaxItems="1")["HostedZones"]
        if not zones or zones[0]["Name"] != zone_name:
            return [], False
        response = route53_client.get_hosted_zone(Id=zones[0]["Id"])
    except Exception as e:
        print(f"Error getting Route53 hosted zone: {e}")
        return [], False
    else:
        return list(response["DelegationSet"]["NameServers"]), True
