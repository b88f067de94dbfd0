"""
Follow a client connection through a declared topology.

`trace` answers "if a client resolves this name and connects to this port, which resources
does the connection pass through, and does the final access policy let it in?" without any
provider in the loop.
"""

from __future__ import annotations

import dataclasses

import nlbtopo
from nlbtopo.model import (
    AccessPolicy,
    AliasRecord,
    Certificate,
    ComputeResource,
    Listener,
    LoadBalancer,
    ResourceId,
    Segment,
    Topology,
    Zone,
)


@dataclasses.dataclass(frozen=True)
class Hop:
    resource: ResourceId
    detail: str

    def __str__(self) -> str:
        return f"{self.resource} ({self.detail})"


def _public_segments(topology: Topology, lb: LoadBalancer) -> list[Segment]:
    segments = [topology.get(rid, Segment) for rid in lb.segments]
    return [s for s in segments if s is not None and s.segment_type == nlbtopo.SegmentType.PUBLIC]


def internet_exposed(topology: Topology) -> list[ResourceId]:
    """Resources a client on the internet can open a connection to directly."""
    exposed: list[ResourceId] = []
    for lb in topology.of_kind(LoadBalancer):
        if not lb.internet_facing or not _public_segments(topology, lb):
            continue

        exposed.append(lb.id)
        exposed.extend(li.id for li in topology.of_kind(Listener) if li.load_balancer == lb.id)

    return exposed


def trace(
    topology: Topology,
    hostname: str,
    port: int = nlbtopo.HTTPS_PORT,
    source: str = nlbtopo.ANY_IPV4,
) -> list[Hop]:
    """
    Trace a TCP connection from `source` to `hostname:port`.

    Returns the hops in order: zone, alias record, load balancer, listener, certificate (for TLS
    listeners) and finally the compute resource. Raises UnreachableError at the first hop that
    refuses the connection.
    """
    hostname = hostname.rstrip(".").lower()

    alias = next((a for a in topology.of_kind(AliasRecord) if a.name.rstrip(".").lower() == hostname), None)
    if alias is None:
        msg = f"{hostname!r} does not resolve: no alias record declares it"
        raise nlbtopo.UnreachableError(msg)

    zone = topology.get(alias.zone, Zone)
    lb = topology.get(alias.load_balancer, LoadBalancer)
    if zone is None or lb is None:
        msg = f"{alias.id}: points at a zone or load balancer that is not declared"
        raise nlbtopo.UnreachableError(msg)

    hops = [
        Hop(zone.id, f"authoritative for {zone.domain}"),
        Hop(alias.id, f"{alias.name} -> {lb.id}"),
    ]

    public_segments = _public_segments(topology, lb)
    if not lb.internet_facing or not public_segments:
        msg = f"{lb.id}: not reachable from the internet"
        raise nlbtopo.UnreachableError(msg)
    hops.append(Hop(lb.id, "internet-facing in " + ", ".join(str(s.id) for s in public_segments)))

    listener = next((li for li in topology.of_kind(Listener) if li.load_balancer == lb.id and li.port == port), None)
    if listener is None:
        msg = f"{lb.id}: nothing listens on port {port}"
        raise nlbtopo.UnreachableError(msg)
    hops.append(Hop(listener.id, f"{listener.protocol}:{listener.port}"))

    if listener.protocol == nlbtopo.ListenerProtocol.TLS:
        cert = topology.get(listener.certificate, Certificate)
        if cert is None or not cert.covers(hostname):
            msg = f"{listener.id}: no certificate presented for {hostname!r}"
            raise nlbtopo.UnreachableError(msg)
        hops.append(Hop(cert.id, f"terminates TLS for {cert.domain}"))

    forward = listener.forward
    target = topology.get(forward.target, ComputeResource)
    if target is None:
        msg = f"{listener.id}: forwards to {forward.target}, which is not a compute resource"
        raise nlbtopo.UnreachableError(msg)

    policy = topology.get(target.policy, AccessPolicy)
    if policy is None:
        msg = f"{target.id}: has no access policy, every connection is refused"
        raise nlbtopo.UnreachableError(msg)

    # without client IP preservation the instance sees the load balancer's own addresses
    sources = [source] if forward.preserve_client_ip else [str(s.cidr) for s in public_segments]
    refused = [s for s in sources if not policy.permits(nlbtopo.RuleProtocol.TCP, forward.port, s)]
    if refused:
        msg = f"{target.id}: {policy.id} refuses tcp/{forward.port} from {', '.join(refused)}"
        raise nlbtopo.UnreachableError(msg)

    if forward.port != target.app_port:
        msg = f"{target.id}: the application listens on {target.app_port}, not {forward.port}"
        raise nlbtopo.UnreachableError(msg)

    hops.append(Hop(target.id, f"{forward.protocol}:{forward.port}".lower()))

    return hops
