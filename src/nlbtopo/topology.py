from __future__ import annotations

import pulumi

import nlbtopo
import nlbtopo.deployment
import nlbtopo.network
from nlbtopo.junkdrawer import dashify
from nlbtopo.model import (
    AccessPolicy,
    AliasRecord,
    Certificate,
    ComputeResource,
    Endpoint,
    ForwardRule,
    Identity,
    IngressRule,
    Listener,
    LoadBalancer,
    LogStore,
    ResourceId,
    Segment,
    Topology,
    ValidationRecord,
    Volume,
    Zone,
)


def _rid(kind: nlbtopo.ResourceKind, name: str) -> ResourceId:
    return ResourceId(kind, name)


def ingress_sources(cfg: nlbtopo.deployment.DeploymentConfig, public_segments: list[Segment]) -> list[str]:
    if cfg.listener.ingress_scope == "load_balancer":
        return [str(s.cidr) for s in public_segments]

    return [nlbtopo.ANY_IPV4]


def build(cfg: nlbtopo.deployment.DeploymentConfig, boot_payload: str) -> Topology:
    """
    Build the desired-state graph for a deployment. Pure: no provider calls, no I/O.

    The result still has to pass `nlbtopo.validation.validate` before it is applied.
    """
    name = cfg.compound_name
    domain = cfg.domain.rstrip(".")

    zone = Zone(id=_rid(nlbtopo.ResourceKind.ZONE, domain), label=f"{name}-zone", domain=domain)
    certificate = Certificate(
        id=_rid(nlbtopo.ResourceKind.CERTIFICATE, domain),
        label=f"{name}-domain-cert-{dashify(domain)}",
        zone=zone.id,
        domain=domain,
    )
    validation_record = ValidationRecord(
        id=_rid(nlbtopo.ResourceKind.VALIDATION_RECORD, domain),
        label=f"{name}-cert-validation-record-{dashify(domain)}",
        zone=zone.id,
        certificate=certificate.id,
    )

    log_store = LogStore(
        id=_rid(nlbtopo.ResourceKind.LOG_STORE, cfg.log_bucket_name),
        label=f"{name}-access-logs",
        bucket_name=cfg.log_bucket_name,
        force_destroy=cfg.log_store.force_destroy,
        prefix=cfg.log_store.prefix,
    )

    network, segments = nlbtopo.network.define_network(
        name,
        cfg.vpc_cidr,
        [
            nlbtopo.network.SegmentRequest(
                name=s.name,
                segment_type=s.type,
                prefix_length=s.prefix_length,
                cidr=s.cidr,
            )
            for s in cfg.segments
        ],
        availability_zone=cfg.availability_zone,
    )
    public_segments = [s for s in segments if s.segment_type == nlbtopo.SegmentType.PUBLIC]
    isolated_segments = [s for s in segments if s.segment_type == nlbtopo.SegmentType.ISOLATED]
    isolated_ids = tuple(s.id for s in isolated_segments)

    endpoints = [
        Endpoint(
            id=_rid(nlbtopo.ResourceKind.ENDPOINT, f"{name}-{service}"),
            label=f"{name}-{service}",
            network=network.id,
            service=service,
            segments=isolated_ids,
        )
        for service in nlbtopo.ISOLATED_ENDPOINT_SERVICES
    ]

    policy = AccessPolicy(
        id=_rid(nlbtopo.ResourceKind.ACCESS_POLICY, f"{name}-web"),
        label=f"{name}-web",
        network=network.id,
        ingress=tuple(
            IngressRule(
                protocol=nlbtopo.RuleProtocol.TCP,
                from_port=cfg.instance.app_port,
                to_port=cfg.instance.app_port,
                source=source,
                description="application traffic forwarded by the load balancer",
            )
            for source in ingress_sources(cfg, public_segments)
        ),
        allow_all_outbound=True,
    )

    identity = Identity(
        id=_rid(nlbtopo.ResourceKind.IDENTITY, f"{name}-{nlbtopo.Roles.INSTANCE}"),
        label=f"{name}-{nlbtopo.Roles.INSTANCE}",
    )

    compute = ComputeResource(
        id=_rid(nlbtopo.ResourceKind.COMPUTE, f"{name}-web"),
        label=f"{name}-web",
        segment=isolated_segments[0].id,
        policy=policy.id,
        identity=identity.id,
        instance_type=cfg.instance.instance_type,
        image_name_regex=cfg.instance.ami_name_regex,
        image_architecture=cfg.instance.ami_architecture,
        boot_payload=boot_payload,
        app_port=cfg.instance.app_port,
        volumes=(Volume(size_gib=cfg.instance.root_volume_size, volume_type=cfg.instance.root_volume_type),),
        management_endpoints=tuple(e.id for e in endpoints if e.service in nlbtopo.MANAGEMENT_ENDPOINT_SERVICES),
    )

    load_balancer = LoadBalancer(
        id=_rid(nlbtopo.ResourceKind.LOAD_BALANCER, f"{name}-nlb"),
        label=f"{name}-nlb",
        segments=tuple(s.id for s in public_segments),
        log_store=log_store.id,
    )

    listener = Listener(
        id=_rid(nlbtopo.ResourceKind.LISTENER, f"{name}-nlb-{cfg.listener.port}"),
        label=f"{name}-nlb-{cfg.listener.port}",
        load_balancer=load_balancer.id,
        port=cfg.listener.port,
        protocol=nlbtopo.ListenerProtocol.TLS,
        certificate=certificate.id,
        ssl_policy=cfg.listener.ssl_policy,
        alpn_policy=cfg.listener.alpn_policy,
        forward=ForwardRule(
            target=compute.id,
            port=cfg.listener.target_port,
            protocol=nlbtopo.ListenerProtocol.TCP,
            preserve_client_ip=cfg.listener.preserve_client_ip,
        ),
    )

    alias = AliasRecord(
        id=_rid(nlbtopo.ResourceKind.ALIAS_RECORD, domain),
        label=f"{name}-{domain}-A",
        zone=zone.id,
        name=domain,
        load_balancer=load_balancer.id,
    )

    topology = Topology.of(
        zone,
        certificate,
        validation_record,
        log_store,
        network,
        *segments,
        *endpoints,
        policy,
        identity,
        compute,
        load_balancer,
        listener,
        alias,
    )
    pulumi.log.debug(f"built topology {name!r} with {len(topology)} resources")

    return topology
