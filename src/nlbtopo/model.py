"""
Desired-state entities of the topology.

Every entity is immutable and addressed by a typed `ResourceId` that is independent of
its human readable label. Changing an entity means building a replacement (see
`dataclasses.replace`) and re-linking whatever depends on it.
"""

from __future__ import annotations

import dataclasses
import datetime
import ipaddress
import typing

import nlbtopo
from nlbtopo.junkdrawer import is_within_domain


@dataclasses.dataclass(frozen=True, order=True)
class ResourceId:
    kind: nlbtopo.ResourceKind
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"


@dataclasses.dataclass(frozen=True)
class Zone:
    id: ResourceId
    label: str
    domain: str

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return ()


@dataclasses.dataclass(frozen=True)
class Certificate:
    id: ResourceId
    label: str
    zone: ResourceId
    domain: str
    state: nlbtopo.CertificateState = nlbtopo.CertificateState.PENDING
    not_after: datetime.datetime | None = None

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return (self.zone,)

    def observe(self, *, record_resolves: bool, timed_out: bool = False) -> Certificate:
        """
        Advance the validation state machine.

        pending -> issued once the validation record is seen to resolve, pending -> failed when
        the provider gives up waiting. issued and failed are terminal.
        """
        if self.state != nlbtopo.CertificateState.PENDING:
            return self

        if record_resolves:
            return dataclasses.replace(self, state=nlbtopo.CertificateState.ISSUED)

        if timed_out:
            return dataclasses.replace(self, state=nlbtopo.CertificateState.FAILED)

        return self

    def is_usable(self, at: datetime.datetime | None = None) -> bool:
        if self.state != nlbtopo.CertificateState.ISSUED:
            return False

        if self.not_after is None:
            return True

        return (at or datetime.datetime.now(datetime.UTC)) < self.not_after

    def covers(self, hostname: str) -> bool:
        if self.domain.startswith("*."):
            parent = self.domain[2:]
            head, _, rest = hostname.rstrip(".").partition(".")
            return bool(head) and rest.lower() == parent.lower()

        return hostname.rstrip(".").lower() == self.domain.rstrip(".").lower()


@dataclasses.dataclass(frozen=True)
class ValidationRecord:
    id: ResourceId
    label: str
    zone: ResourceId
    certificate: ResourceId

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return (self.zone, self.certificate)


@dataclasses.dataclass(frozen=True)
class Network:
    id: ResourceId
    label: str
    cidr: ipaddress.IPv4Network
    enable_dns_hostnames: bool = True
    enable_dns_support: bool = True

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return ()


@dataclasses.dataclass(frozen=True)
class Segment:
    id: ResourceId
    label: str
    network: ResourceId
    segment_type: nlbtopo.SegmentType
    cidr: ipaddress.IPv4Network
    internet_route: bool
    availability_zone: str | None = None

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return (self.network,)


@dataclasses.dataclass(frozen=True)
class Endpoint:
    id: ResourceId
    label: str
    network: ResourceId
    service: nlbtopo.EndpointService
    segments: tuple[ResourceId, ...]

    @property
    def endpoint_type(self) -> nlbtopo.EndpointType:
        if self.service in nlbtopo.GATEWAY_ENDPOINT_SERVICES:
            return nlbtopo.EndpointType.GATEWAY

        return nlbtopo.EndpointType.INTERFACE

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return (self.network, *self.segments)


@dataclasses.dataclass(frozen=True)
class IngressRule:
    protocol: nlbtopo.RuleProtocol
    from_port: int
    to_port: int
    source: str = nlbtopo.ANY_IPV4
    description: str = ""

    def allows(self, protocol: nlbtopo.RuleProtocol | str, port: int, source: str) -> bool:
        if self.protocol != nlbtopo.RuleProtocol.ALL and self.protocol != protocol:
            return False

        if self.protocol != nlbtopo.RuleProtocol.ALL and not self.from_port <= port <= self.to_port:
            return False

        source_net = ipaddress.ip_network(source, strict=False)
        rule_net = ipaddress.ip_network(self.source)
        if source_net.version != rule_net.version:
            return False

        return typing.cast(ipaddress.IPv4Network, source_net).subnet_of(typing.cast(ipaddress.IPv4Network, rule_net))

    def covers_port(self, port: int) -> bool:
        return self.protocol == nlbtopo.RuleProtocol.ALL or self.from_port <= port <= self.to_port


@dataclasses.dataclass(frozen=True)
class AccessPolicy:
    """A stateful allow-list. Anything not matched by an ingress rule is denied."""

    id: ResourceId
    label: str
    network: ResourceId
    ingress: tuple[IngressRule, ...] = ()
    allow_all_outbound: bool = True

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return (self.network,)

    def permits(self, protocol: nlbtopo.RuleProtocol | str, port: int, source: str) -> bool:
        return any(rule.allows(protocol, port, source) for rule in self.ingress)


@dataclasses.dataclass(frozen=True)
class Identity:
    id: ResourceId
    label: str
    trusted_service: str = nlbtopo.EC2_SERVICE_PRINCIPAL
    managed_policy_arns: tuple[str, ...] = (nlbtopo.SSM_MANAGED_INSTANCE_CORE_POLICY_ARN,)

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return ()


@dataclasses.dataclass(frozen=True)
class Volume:
    device_name: str = nlbtopo.ROOT_DEVICE_NAME
    size_gib: int = 8
    volume_type: str = "gp3"


@dataclasses.dataclass(frozen=True)
class ComputeResource:
    id: ResourceId
    label: str
    segment: ResourceId
    policy: ResourceId
    identity: ResourceId
    instance_type: str
    image_name_regex: str
    image_architecture: str
    boot_payload: str
    app_port: int = nlbtopo.HTTP_PORT
    volumes: tuple[Volume, ...] = (Volume(),)
    management_endpoints: tuple[ResourceId, ...] = ()

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return (self.segment, self.policy, self.identity, *self.management_endpoints)


@dataclasses.dataclass(frozen=True)
class LogStore:
    id: ResourceId
    label: str
    bucket_name: str
    sse_algorithm: str = "AES256"
    block_public_acls: bool = True
    block_public_policy: bool = True
    ignore_public_acls: bool = True
    restrict_public_buckets: bool = True
    enforce_ssl: bool = True
    force_destroy: bool = True
    prefix: str = ""

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return ()

    @property
    def is_private(self) -> bool:
        return (
            self.block_public_acls
            and self.block_public_policy
            and self.ignore_public_acls
            and self.restrict_public_buckets
        )


@dataclasses.dataclass(frozen=True)
class LoadBalancer:
    id: ResourceId
    label: str
    segments: tuple[ResourceId, ...]
    log_store: ResourceId | None = None
    internet_facing: bool = True
    cross_zone: bool = True

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return (*self.segments, *((self.log_store,) if self.log_store else ()))


@dataclasses.dataclass(frozen=True)
class ForwardRule:
    target: ResourceId
    port: int = nlbtopo.HTTP_PORT
    protocol: nlbtopo.ListenerProtocol = nlbtopo.ListenerProtocol.TCP
    preserve_client_ip: bool = True


@dataclasses.dataclass(frozen=True)
class Listener:
    id: ResourceId
    label: str
    load_balancer: ResourceId
    port: int
    protocol: nlbtopo.ListenerProtocol
    forward: ForwardRule
    certificate: ResourceId | None = None
    ssl_policy: str | None = None
    alpn_policy: nlbtopo.AlpnPolicy = nlbtopo.AlpnPolicy.NONE

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        deps = [self.load_balancer, self.forward.target]
        if self.certificate is not None:
            deps.append(self.certificate)

        return tuple(deps)


@dataclasses.dataclass(frozen=True)
class AliasRecord:
    id: ResourceId
    label: str
    zone: ResourceId
    name: str
    load_balancer: ResourceId
    evaluate_target_health: bool = True

    @property
    def depends_on(self) -> tuple[ResourceId, ...]:
        return (self.zone, self.load_balancer)


Resource = (
    Zone
    | Certificate
    | ValidationRecord
    | Network
    | Segment
    | Endpoint
    | AccessPolicy
    | Identity
    | ComputeResource
    | LogStore
    | LoadBalancer
    | Listener
    | AliasRecord
)

T = typing.TypeVar("T")


@dataclasses.dataclass(frozen=True)
class Topology:
    """The complete desired-state resource graph, keyed by resource id."""

    resources: typing.Mapping[ResourceId, Resource]

    @classmethod
    def of(cls, *resources: Resource) -> Topology:
        by_id: dict[ResourceId, Resource] = {}
        duplicates = []
        for resource in resources:
            if resource.id in by_id:
                duplicates.append(f"{resource.id}: declared more than once")
            by_id[resource.id] = resource

        if duplicates:
            raise nlbtopo.StructuralError(duplicates)

        return cls(resources=by_id)

    def __contains__(self, rid: object) -> bool:
        return rid in self.resources

    def __getitem__(self, rid: ResourceId) -> Resource:
        return self.resources[rid]

    def __iter__(self) -> typing.Iterator[Resource]:
        return iter(self.resources.values())

    def __len__(self) -> int:
        return len(self.resources)

    def get(self, rid: ResourceId | None, kind: type[T]) -> T | None:
        if rid is None:
            return None

        resource = self.resources.get(rid)
        return resource if isinstance(resource, kind) else None

    def of_kind(self, kind: type[T]) -> list[T]:
        return sorted(
            (r for r in self.resources.values() if isinstance(r, kind)),
            key=lambda r: r.id,  # type: ignore[attr-defined]
        )

    def replace(self, resource: Resource) -> Topology:
        if resource.id not in self.resources:
            msg = f"{resource.id} is not part of this topology"
            raise KeyError(msg)

        return Topology(resources={**self.resources, resource.id: resource})

    def without(self, rid: ResourceId) -> Topology:
        return Topology(resources={k: v for k, v in self.resources.items() if k != rid})

    @property
    def zone(self) -> Zone:
        zones = self.of_kind(Zone)
        if len(zones) != 1:
            msg = f"expected exactly one zone, found {len(zones)}"
            raise nlbtopo.StructuralError([msg])

        return zones[0]

    def validation_records_for(self, certificate: ResourceId) -> list[ValidationRecord]:
        return [r for r in self.of_kind(ValidationRecord) if r.certificate == certificate]

    def endpoints_covering(self, segment: ResourceId) -> list[Endpoint]:
        return [e for e in self.of_kind(Endpoint) if segment in e.segments]

    def references_domain(self, domain: str) -> list[Resource]:
        found: list[Resource] = []
        for resource in self:
            names = [getattr(resource, attr, None) for attr in ("domain", "name")]
            if any(isinstance(n, str) and is_within_domain(n, domain) for n in names):
                found.append(resource)

        return found
