"""
Static checks over a declared topology.

All of these run before any provider call. `check` returns every problem found; `validate`
raises a single StructuralError carrying all of them.
"""

from __future__ import annotations

import collections
import datetime
import itertools

import nlbtopo
from nlbtopo.junkdrawer import is_within_domain
from nlbtopo.model import (
    AccessPolicy,
    AliasRecord,
    Certificate,
    ComputeResource,
    Endpoint,
    Identity,
    Listener,
    LoadBalancer,
    LogStore,
    Network,
    ResourceId,
    Segment,
    Topology,
    ValidationRecord,
    Zone,
)


def _expect(
    topology: Topology,
    owner: ResourceId,
    rid: ResourceId | None,
    kind: type,
    role: str,
    problems: list[str],
):
    resource = topology.get(rid, kind)
    if resource is None:
        problems.append(f"{owner}: {role} {rid} does not exist")

    return resource


def _check_dangling(topology: Topology, problems: list[str]) -> None:
    for resource in topology:
        for dep in resource.depends_on:
            if dep not in topology:
                problems.append(f"{resource.id}: depends on {dep}, which is not declared")


def _check_zone_and_certificates(topology: Topology, problems: list[str]) -> None:
    zones = topology.of_kind(Zone)
    if len(zones) != 1:
        problems.append(f"exactly one zone is required, found {len(zones)}")

    for cert in topology.of_kind(Certificate):
        zone = _expect(topology, cert.id, cert.zone, Zone, "zone", problems)
        if zone is not None and not is_within_domain(cert.domain.removeprefix("*."), zone.domain):
            problems.append(f"{cert.id}: domain {cert.domain!r} is not within zone {zone.domain!r}")

        records = topology.validation_records_for(cert.id)
        if not records:
            problems.append(f"{cert.id}: no DNS validation record is declared, issuance can never complete")

    for record in topology.of_kind(ValidationRecord):
        cert = _expect(topology, record.id, record.certificate, Certificate, "certificate", problems)
        if cert is not None and cert.zone != record.zone:
            problems.append(f"{record.id}: must live in the certificate's zone {cert.zone}")


def _check_segments(topology: Topology, problems: list[str]) -> None:
    by_network: dict[ResourceId, list[Segment]] = collections.defaultdict(list)
    for segment in topology.of_kind(Segment):
        network = _expect(topology, segment.id, segment.network, Network, "network", problems)
        by_network[segment.network].append(segment)

        if network is not None and not segment.cidr.subnet_of(network.cidr):
            problems.append(f"{segment.id}: range {segment.cidr} is outside of {network.cidr}")

        if segment.segment_type == nlbtopo.SegmentType.ISOLATED and segment.internet_route:
            problems.append(f"{segment.id}: isolated segments must not have an internet gateway route")

        if segment.segment_type == nlbtopo.SegmentType.PUBLIC and not segment.internet_route:
            problems.append(f"{segment.id}: public segments need an internet gateway route")

    for segments in by_network.values():
        for a, b in itertools.combinations(segments, 2):
            if a.cidr.overlaps(b.cidr):
                problems.append(f"{a.id}: range {a.cidr} overlaps {b.id} ({b.cidr})")


def _check_endpoints(topology: Topology, problems: list[str]) -> None:
    seen: dict[tuple[frozenset[ResourceId], nlbtopo.EndpointService], ResourceId] = {}
    for endpoint in topology.of_kind(Endpoint):
        key = (frozenset(endpoint.segments), endpoint.service)
        if key in seen:
            problems.append(f"{endpoint.id}: duplicates {seen[key]} for service {str(endpoint.service)!r}")
        seen[key] = endpoint.id

        if not endpoint.segments:
            problems.append(f"{endpoint.id}: must be bound to at least one segment")

        for rid in endpoint.segments:
            segment = _expect(topology, endpoint.id, rid, Segment, "segment", problems)
            if segment is None:
                continue
            if segment.network != endpoint.network:
                problems.append(f"{endpoint.id}: segment {rid} belongs to another network")
            if segment.segment_type != nlbtopo.SegmentType.ISOLATED:
                problems.append(f"{endpoint.id}: private endpoints serve isolated segments only, {rid} is public")


def _check_compute(topology: Topology, problems: list[str]) -> None:
    for compute in topology.of_kind(ComputeResource):
        segment = _expect(topology, compute.id, compute.segment, Segment, "segment", problems)
        policy = _expect(topology, compute.id, compute.policy, AccessPolicy, "access policy", problems)
        identity = _expect(topology, compute.id, compute.identity, Identity, "identity", problems)

        if segment is not None and segment.segment_type != nlbtopo.SegmentType.ISOLATED:
            problems.append(f"{compute.id}: must be placed in an isolated segment, {segment.id} is public")

        if segment is not None and policy is not None and policy.network != segment.network:
            problems.append(f"{compute.id}: access policy {policy.id} belongs to another network")

        if policy is not None:
            for port in nlbtopo.MANAGEMENT_PORTS:
                if any(rule.covers_port(port) for rule in policy.ingress):
                    problems.append(
                        f"{compute.id}: access policy {policy.id} opens management port {port}; "
                        "administrative access must go through the management endpoints"
                    )

        if identity is not None and set(identity.managed_policy_arns) != {
            nlbtopo.SSM_MANAGED_INSTANCE_CORE_POLICY_ARN
        }:
            problems.append(
                f"{compute.id}: identity {identity.id} must carry exactly "
                f"{nlbtopo.SSM_MANAGED_INSTANCE_CORE_POLICY_ARN}, has {sorted(identity.managed_policy_arns)}"
            )

        if segment is not None and segment.segment_type == nlbtopo.SegmentType.ISOLATED:
            covered = {e.service for e in topology.endpoints_covering(segment.id)}
            for service in sorted(nlbtopo.MANAGEMENT_ENDPOINT_SERVICES - covered):
                problems.append(
                    f"{compute.id}: no {str(service)!r} endpoint serves {segment.id}; "
                    "the instance could not be managed"
                )

        for rid in compute.management_endpoints:
            _expect(topology, compute.id, rid, Endpoint, "management endpoint", problems)


def _check_log_stores(topology: Topology, problems: list[str]) -> None:
    for store in topology.of_kind(LogStore):
        if not store.is_private:
            problems.append(f"{store.id}: all public ACL and policy access must be blocked")
        if not store.enforce_ssl:
            problems.append(f"{store.id}: encrypted transport must be enforced")
        if not store.sse_algorithm:
            problems.append(f"{store.id}: encryption at rest is required")


def _check_load_balancers(topology: Topology, problems: list[str]) -> None:
    for lb in topology.of_kind(LoadBalancer):
        if not lb.segments:
            problems.append(f"{lb.id}: needs at least one segment")

        for rid in lb.segments:
            segment = _expect(topology, lb.id, rid, Segment, "segment", problems)
            if segment is not None and lb.internet_facing and segment.segment_type != nlbtopo.SegmentType.PUBLIC:
                problems.append(f"{lb.id}: internet-facing load balancers belong in public segments, {rid} is not")

        if lb.log_store is not None:
            _expect(topology, lb.id, lb.log_store, LogStore, "log store", problems)


def _check_listeners(topology: Topology, problems: list[str]) -> None:
    seen: dict[tuple[ResourceId, int], ResourceId] = {}
    for listener in topology.of_kind(Listener):
        lb = _expect(topology, listener.id, listener.load_balancer, LoadBalancer, "load balancer", problems)
        key = (listener.load_balancer, listener.port)
        if key in seen:
            problems.append(f"{listener.id}: port {listener.port} is already bound by {seen[key]}")
        seen[key] = listener.id

        if listener.protocol == nlbtopo.ListenerProtocol.TLS:
            if listener.certificate is None:
                problems.append(f"{listener.id}: a TLS listener needs a certificate")
            else:
                cert = _expect(topology, listener.id, listener.certificate, Certificate, "certificate", problems)
                aliases = [a for a in topology.of_kind(AliasRecord) if a.load_balancer == listener.load_balancer]
                for alias in aliases:
                    if cert is not None and not cert.covers(alias.name):
                        problems.append(f"{listener.id}: certificate {cert.id} does not cover {alias.name!r}")
            if not listener.ssl_policy:
                problems.append(f"{listener.id}: a TLS listener needs an SSL policy")
            if (
                listener.forward.protocol == nlbtopo.ListenerProtocol.TCP
                and listener.alpn_policy != nlbtopo.AlpnPolicy.NONE
            ):
                problems.append(f"{listener.id}: ALPN negotiation must be disabled when forwarding raw TCP")

        target = _expect(topology, listener.id, listener.forward.target, ComputeResource, "target", problems)
        if target is None or lb is None:
            continue

        if listener.forward.port != target.app_port:
            problems.append(
                f"{listener.id}: forwards to port {listener.forward.port} but {target.id} listens on {target.app_port}"
            )

        target_segment = topology.get(target.segment, Segment)
        lb_segments = [s for s in (topology.get(rid, Segment) for rid in lb.segments) if s is not None]
        if target_segment is not None and any(s.network != target_segment.network for s in lb_segments):
            problems.append(f"{listener.id}: the forwarding leg must stay inside one private network")

        policy = topology.get(target.policy, AccessPolicy)
        if policy is None:
            continue

        if listener.forward.preserve_client_ip:
            allowed = policy.permits(nlbtopo.RuleProtocol.TCP, listener.forward.port, nlbtopo.ANY_IPV4)
        else:
            allowed = bool(lb_segments) and all(
                policy.permits(nlbtopo.RuleProtocol.TCP, listener.forward.port, str(s.cidr)) for s in lb_segments
            )
        if not allowed:
            problems.append(
                f"{listener.id}: {policy.id} refuses forwarded traffic on port {listener.forward.port}"
                + (" from client addresses (client IPs are preserved)" if listener.forward.preserve_client_ip else "")
            )


def _check_alias_records(topology: Topology, problems: list[str]) -> None:
    for alias in topology.of_kind(AliasRecord):
        zone = _expect(topology, alias.id, alias.zone, Zone, "zone", problems)
        _expect(topology, alias.id, alias.load_balancer, LoadBalancer, "load balancer", problems)
        if zone is not None and not is_within_domain(alias.name, zone.domain):
            problems.append(f"{alias.id}: {alias.name!r} is not within zone {zone.domain!r}")


def check(topology: Topology) -> list[str]:
    problems: list[str] = []

    _check_dangling(topology, problems)
    _check_zone_and_certificates(topology, problems)
    _check_segments(topology, problems)
    _check_endpoints(topology, problems)
    _check_compute(topology, problems)
    _check_log_stores(topology, problems)
    _check_load_balancers(topology, problems)
    _check_listeners(topology, problems)
    _check_alias_records(topology, problems)

    # dangling references are reported by both the generic and the typed checks
    return list(dict.fromkeys(problems))


def validate(topology: Topology) -> None:
    problems = check(topology)
    if problems:
        raise nlbtopo.StructuralError(problems)


def require_issued(
    listener: Listener,
    certificate: Certificate,
    at: datetime.datetime | None = None,
) -> None:
    """
    Refuse to configure TLS on `listener` unless `certificate` is issued and unexpired.

    A certificate that stays pending almost always means the parent domain has not been
    delegated to the zone's name servers, so DNS validation can never be observed.
    """
    if certificate.is_usable(at):
        return

    if certificate.state == nlbtopo.CertificateState.PENDING:
        precondition = (
            f"certificate {certificate.id} for {certificate.domain!r} is not issued yet; "
            f"check that the parent domain delegates to the name servers of zone {certificate.zone}"
        )
    elif certificate.state == nlbtopo.CertificateState.FAILED:
        precondition = (
            f"certificate {certificate.id} for {certificate.domain!r} failed validation; "
            "the validation record was not observed before the provider timed out"
        )
    else:
        precondition = f"certificate {certificate.id} expired at {certificate.not_after}"

    raise nlbtopo.ExternalStateError(listener.id, precondition)
