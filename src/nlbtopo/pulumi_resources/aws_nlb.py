import pulumi
import pulumi_aws as aws

import nlbtopo
import nlbtopo.model


class AWSNetworkLoadBalancer(pulumi.ComponentResource):
    """An internet-facing network load balancer with access logging and TLS listeners."""

    name: str
    load_balancer: nlbtopo.model.LoadBalancer

    lb: aws.lb.LoadBalancer
    target_groups: dict[nlbtopo.model.ResourceId, aws.lb.TargetGroup]
    attachments: dict[nlbtopo.model.ResourceId, aws.lb.TargetGroupAttachment]
    listeners: dict[nlbtopo.model.ResourceId, aws.lb.Listener]

    def __init__(
        self,
        load_balancer: nlbtopo.model.LoadBalancer,
        subnet_ids: list[pulumi.Input[str]],
        tags: dict[str, str],
        access_logs_bucket: pulumi.Input[str] | None = None,
        access_logs_prefix: str = "",
        *args,
        **kwargs,
    ):
        super().__init__(f"nlbtopo:{self.__class__.__name__}", load_balancer.label, *args, **kwargs)

        self.name = load_balancer.label
        self.load_balancer = load_balancer
        self.tags = tags
        self.target_groups = {}
        self.attachments = {}
        self.listeners = {}

        access_logs = None
        if access_logs_bucket is not None:
            access_logs = aws.lb.LoadBalancerAccessLogsArgs(
                bucket=access_logs_bucket,
                prefix=access_logs_prefix or None,
                enabled=True,
            )

        self.lb = aws.lb.LoadBalancer(
            self.name,
            load_balancer_type="network",
            internal=not load_balancer.internet_facing,
            subnets=subnet_ids,
            enable_cross_zone_load_balancing=load_balancer.cross_zone,
            access_logs=access_logs,
            tags=self.tags | {"Name": self.name},
            opts=pulumi.ResourceOptions(parent=self),
        )

        self.register_outputs(
            {
                "arn": self.lb.arn,
                "dns_name": self.lb.dns_name,
                "zone_id": self.lb.zone_id,
            }
        )

    def with_listener(
        self,
        listener: nlbtopo.model.Listener,
        vpc_id: pulumi.Input[str],
        target_instance_id: pulumi.Input[str],
        certificate_arn: pulumi.Input[str] | None = None,
    ):
        """
        Add `listener` and the target group it forwards to.

        `certificate_arn` should come from the certificate's validation resource rather than the
        certificate itself, so the listener is not created until the certificate is issued.
        """
        forward = listener.forward

        target_group = aws.lb.TargetGroup(
            listener.label,
            port=forward.port,
            protocol=str(forward.protocol),
            target_type="instance",
            vpc_id=vpc_id,
            preserve_client_ip=str(forward.preserve_client_ip).lower(),
            health_check=aws.lb.TargetGroupHealthCheckArgs(
                protocol=str(forward.protocol),
                port=str(forward.port),
            ),
            tags=self.tags | {"Name": listener.label},
            opts=pulumi.ResourceOptions(parent=self.lb),
        )

        self.attachments[listener.id] = aws.lb.TargetGroupAttachment(
            listener.label,
            target_group_arn=target_group.arn,
            target_id=target_instance_id,
            port=forward.port,
            opts=pulumi.ResourceOptions(parent=target_group),
        )

        tls = listener.protocol == nlbtopo.ListenerProtocol.TLS
        self.listeners[listener.id] = aws.lb.Listener(
            listener.label,
            load_balancer_arn=self.lb.arn,
            port=listener.port,
            protocol=str(listener.protocol),
            certificate_arn=certificate_arn if tls else None,
            ssl_policy=listener.ssl_policy if tls else None,
            alpn_policy=str(listener.alpn_policy) if tls else None,
            default_actions=[
                aws.lb.ListenerDefaultActionArgs(
                    type="forward",
                    target_group_arn=target_group.arn,
                )
            ],
            tags=self.tags | {"Name": listener.label},
            opts=pulumi.ResourceOptions(parent=self.lb),
        )
        self.target_groups[listener.id] = target_group

        return self
