import dataclasses
import typing

import pulumi
import pulumi_aws as aws

import nlbtopo
import nlbtopo.deployment
import nlbtopo.graph
import nlbtopo.model
import nlbtopo.pulumi_resources.aws_bucket
import nlbtopo.pulumi_resources.aws_dns
import nlbtopo.pulumi_resources.aws_instance
import nlbtopo.pulumi_resources.aws_nlb
import nlbtopo.pulumi_resources.aws_vpc
import nlbtopo.topology
import nlbtopo.validation
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
    Segment,
)


class AWSTopology(pulumi.ComponentResource):
    """
    Everything a deployment declares, applied through Pulumi.

    The topology is built and validated first, so a structural problem fails the program before
    any resource is registered. Resources are then defined from the model; Pulumi orders them by
    the inputs they consume, which mirrors `nlbtopo.graph`.
    """

    deployment: nlbtopo.deployment.Deployment
    topology: nlbtopo.model.Topology
    required_tags: dict[str, str]

    provider: aws.Provider
    zone: nlbtopo.pulumi_resources.aws_dns.AWSZone
    log_store: nlbtopo.pulumi_resources.aws_bucket.LogStoreResources
    vpc: nlbtopo.pulumi_resources.aws_vpc.AWSVpc
    instances: dict[nlbtopo.model.ResourceId, nlbtopo.pulumi_resources.aws_instance.AWSInstance]
    load_balancers: dict[nlbtopo.model.ResourceId, nlbtopo.pulumi_resources.aws_nlb.AWSNetworkLoadBalancer]

    @classmethod
    def autoload(cls) -> "AWSTopology":
        return cls(deployment=nlbtopo.deployment.Deployment(pulumi.get_stack()))

    def __init__(
        self,
        deployment: nlbtopo.deployment.Deployment,
        *args,
        **kwargs,
    ):
        super().__init__(
            f"nlbtopo:{self.__class__.__name__}",
            deployment.compound_name,
            *args,
            **kwargs,
        )

        self.deployment = deployment
        self.required_tags = deployment.required_tags | {
            str(nlbtopo.TagKeys.NLBTOPO_MANAGED_BY): __name__,
        }

        self.provider = aws.Provider(
            f"{deployment.compound_name}-{deployment.cfg.region}",
            region=deployment.cfg.region,
            opts=pulumi.ResourceOptions(parent=self),
        )

        cfg = self._resolve_availability_zone(deployment.cfg)
        self.topology = nlbtopo.topology.build(cfg, deployment.read_boot_payload())
        nlbtopo.validation.validate(self.topology)
        pulumi.log.info(
            f"applying {len(self.topology)} resources in "
            f"{len(nlbtopo.graph.creation_waves(self.topology))} waves for {deployment.compound_name}"
        )

        self.instances = {}
        self.load_balancers = {}

        self._define_zone()
        self._define_log_store()
        self._define_vpc()
        self._define_instances()
        self._define_load_balancers()
        self._define_alias_records()

        zone = self.topology.zone
        lb = next(iter(self.load_balancers.values()))
        outputs = {
            "domain": zone.domain,
            "url": f"https://{zone.domain}",
            "name_servers": self.zone.zone.name_servers,
            "zone_id": self.zone.zone.zone_id,
            "certificate_arns": {str(k): v for k, v in self.zone.validated_certificate_arns.items()},
            "load_balancer_dns_name": lb.lb.dns_name,
            "instance_ids": {str(k): v.instance.id for k, v in self.instances.items()},
            "access_log_bucket": self.log_store.bucket.bucket,
            "vpc_id": self.vpc.vpc.id,
        }

        for key, value in outputs.items():
            pulumi.export(key, value)

        self.register_outputs(outputs)

    def _child_opts(self, **kwargs) -> pulumi.ResourceOptions:
        return pulumi.ResourceOptions(parent=self, provider=self.provider, **kwargs)

    def _resolve_availability_zone(
        self, cfg: nlbtopo.deployment.DeploymentConfig
    ) -> nlbtopo.deployment.DeploymentConfig:
        if cfg.availability_zone is not None:
            return cfg

        azs = aws.get_availability_zones(
            state="available",
            opts=pulumi.InvokeOptions(parent=self, provider=self.provider),
        )
        if not azs.names:
            msg = f"no available availability zones in {cfg.region}"
            raise RuntimeError(msg)

        pulumi.log.info(f"using availability zone {azs.names[0]}")
        return dataclasses.replace(cfg, availability_zone=azs.names[0])

    def _define_zone(self):
        zone = self.topology.zone
        self.zone = nlbtopo.pulumi_resources.aws_dns.AWSZone(
            zone,
            tags=self.required_tags,
            protect=self.deployment.cfg.protect_persistent_resources,
            opts=self._child_opts(),
        )

        for cert in self.topology.of_kind(Certificate):
            self.zone.with_certificate(cert, self.topology.validation_records_for(cert.id))

    def _define_log_store(self):
        (store,) = self.topology.of_kind(LogStore)
        self.log_store = nlbtopo.pulumi_resources.aws_bucket.define_log_store(
            store,
            required_tags=self.required_tags,
            protect=self.deployment.cfg.protect_persistent_resources,
            opts=self._child_opts(),
        )

    def _define_vpc(self):
        (network,) = self.topology.of_kind(Network)
        segments = [s for s in self.topology.of_kind(Segment) if s.network == network.id]

        self.vpc = nlbtopo.pulumi_resources.aws_vpc.AWSVpc(
            network,
            segments,
            tags=self.required_tags,
            opts=self._child_opts(),
        ).with_secure_default_security_group()

        for endpoint in self.topology.of_kind(Endpoint):
            self.vpc.with_endpoint(endpoint, self.deployment.cfg.region)

    def _define_instances(self):
        for compute in self.topology.of_kind(ComputeResource):
            # Session Manager registration needs the endpoints up before the agent starts
            management = [self.vpc.endpoints[rid] for rid in compute.management_endpoints]

            self.instances[compute.id] = nlbtopo.pulumi_resources.aws_instance.AWSInstance(
                compute,
                policy=typing.cast(AccessPolicy, self.topology[compute.policy]),
                identity=typing.cast(Identity, self.topology[compute.identity]),
                vpc_id=self.vpc.vpc.id,
                subnet_id=self.vpc.subnets_by_segment[compute.segment].id,
                tags=self.required_tags,
                opts=self._child_opts(depends_on=management),
            )

    def _define_load_balancers(self):
        for load_balancer in self.topology.of_kind(LoadBalancer):
            store = self.topology.get(load_balancer.log_store, LogStore)

            nlb = nlbtopo.pulumi_resources.aws_nlb.AWSNetworkLoadBalancer(
                load_balancer,
                subnet_ids=[self.vpc.subnets_by_segment[rid].id for rid in load_balancer.segments],
                tags=self.required_tags,
                access_logs_bucket=self.log_store.bucket.bucket if store is not None else None,
                access_logs_prefix=store.prefix if store is not None else "",
                # log delivery is checked against the bucket policy when logging is enabled
                opts=self._child_opts(depends_on=[self.log_store.policy]),
            )

            for listener in self.topology.of_kind(Listener):
                if listener.load_balancer != load_balancer.id:
                    continue

                nlb.with_listener(
                    listener,
                    vpc_id=self.vpc.vpc.id,
                    target_instance_id=self.instances[listener.forward.target].instance.id,
                    certificate_arn=(
                        self.zone.validated_certificate_arns[listener.certificate]
                        if listener.certificate is not None
                        else None
                    ),
                )

            self.load_balancers[load_balancer.id] = nlb

    def _define_alias_records(self):
        for alias in self.topology.of_kind(AliasRecord):
            nlb = self.load_balancers[alias.load_balancer]
            self.zone.with_alias(alias, dns_name=nlb.lb.dns_name, zone_id=nlb.lb.zone_id)
