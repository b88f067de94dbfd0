import collections
import warnings

import pulumi
import pulumi_aws as aws

import nlbtopo
import nlbtopo.model


class AWSVpc(pulumi.ComponentResource):
    """
    A VPC carved into public and isolated subnets from a declared `Network` and its `Segment`s.

    Public subnets share one route table with a default route to the internet gateway. Every
    isolated subnet gets its own route table with no routes beyond the VPC-local one, so anything
    it needs from AWS has to come through an endpoint (see `with_endpoint`).
    """

    name: str
    network: nlbtopo.model.Network
    segments: list[nlbtopo.model.Segment]

    vpc: aws.ec2.Vpc
    subnets: dict[nlbtopo.SegmentType, list[aws.ec2.Subnet]]
    subnets_by_segment: dict[nlbtopo.model.ResourceId, aws.ec2.Subnet]
    public_route_table: aws.ec2.RouteTable
    public_route: aws.ec2.Route
    route_table_associations: dict[nlbtopo.model.ResourceId, aws.ec2.RouteTableAssociation]
    isolated_route_tables: dict[nlbtopo.model.ResourceId, aws.ec2.RouteTable]
    vpc_endpoint_sg: aws.ec2.SecurityGroup
    endpoints: dict[nlbtopo.model.ResourceId, aws.ec2.VpcEndpoint]

    def __init__(
        self,
        network: nlbtopo.model.Network,
        segments: list[nlbtopo.model.Segment],
        tags: dict[str, str],
        *args,
        **kwargs,
    ):
        """
        Create the VPC, internet gateway, subnets and route tables, and the endpoint security group.

        :param network: the declared network; its label names the VPC
        :param segments: the declared segments of `network`
        :param tags: the tags to apply to all the resources
        :param opts: the options to use for this resource
        """
        self.name = network.label
        self.network = network
        self.segments = segments
        self.tags = tags
        self.endpoints = {}

        super().__init__(f"nlbtopo:{self.__class__.__name__}", self.name, *args, **kwargs)

        zones = {s.availability_zone for s in segments}
        if len(zones) == 1:
            warnings.warn(
                "All segments share a single availability zone; the load balancer cannot survive a zone outage",
                stacklevel=2,
            )

        self.vpc = aws.ec2.Vpc(
            self.name,
            cidr_block=str(network.cidr),
            enable_dns_hostnames=network.enable_dns_hostnames,
            enable_dns_support=network.enable_dns_support,
            tags=self.tags | {"Name": self.name},
            opts=pulumi.ResourceOptions(parent=self),
        )

        ig = aws.ec2.InternetGateway(
            self.name,
            vpc_id=self.vpc.id,
            tags=self.tags | {"Name": self.name, str(nlbtopo.TagKeys.NLBTOPO_NETWORK_ACCESS): "public"},
            opts=pulumi.ResourceOptions(parent=self.vpc),
        )

        self.subnets = collections.defaultdict(list)
        self.subnets_by_segment = {}

        for segment in segments:
            subnet = aws.ec2.Subnet(
                segment.label,
                vpc_id=self.vpc.id,
                cidr_block=str(segment.cidr),
                availability_zone=segment.availability_zone,
                map_public_ip_on_launch=False,
                tags=self.tags
                | {
                    "Name": segment.label,
                    str(nlbtopo.TagKeys.NLBTOPO_NETWORK_ACCESS): str(segment.segment_type),
                },
                opts=pulumi.ResourceOptions(parent=self.vpc),
            )
            self.subnets[segment.segment_type].append(subnet)
            self.subnets_by_segment[segment.id] = subnet

        self.public_route_table = aws.ec2.RouteTable(
            f"{self.name}-public",
            vpc_id=self.vpc.id,
            tags=self.tags | {"Name": f"{self.name}-public"},
            opts=pulumi.ResourceOptions(parent=self.vpc),
        )

        self.public_route = aws.ec2.Route(
            f"{self.name}-public",
            route_table_id=self.public_route_table.id,
            gateway_id=ig.id,
            destination_cidr_block=nlbtopo.ANY_IPV4,
            opts=pulumi.ResourceOptions(parent=self.public_route_table),
        )

        self.isolated_route_tables = {}
        self.route_table_associations = {}
        for segment in segments:
            if segment.internet_route:
                self.route_table_associations[segment.id] = aws.ec2.RouteTableAssociation(
                    segment.label,
                    subnet_id=self.subnets_by_segment[segment.id].id,
                    route_table_id=self.public_route_table.id,
                    opts=pulumi.ResourceOptions(parent=self.public_route_table),
                )
                continue

            # no routes: only the implicit local one
            isolated_rt = aws.ec2.RouteTable(
                segment.label,
                vpc_id=self.vpc.id,
                tags=self.tags | {"Name": segment.label},
                opts=pulumi.ResourceOptions(parent=self.vpc),
            )

            self.route_table_associations[segment.id] = aws.ec2.RouteTableAssociation(
                segment.label,
                subnet_id=self.subnets_by_segment[segment.id].id,
                route_table_id=isolated_rt.id,
                opts=pulumi.ResourceOptions(parent=isolated_rt),
            )

            self.isolated_route_tables[segment.id] = isolated_rt

        self.vpc_endpoint_sg = aws.ec2.SecurityGroup(
            f"{self.name}-vpc-endpoint",
            description=f"{self.name} VPC endpoint",
            name_prefix=f"{self.name}-vpc-endpoint-",
            ingress=[
                aws.ec2.SecurityGroupIngressArgs(
                    from_port=nlbtopo.HTTPS_PORT,
                    to_port=nlbtopo.HTTPS_PORT,
                    protocol="tcp",
                    cidr_blocks=[str(network.cidr)],
                )
            ],
            vpc_id=self.vpc.id,
            tags=self.tags | {"Name": f"{self.name}-vpc-endpoint"},
            opts=pulumi.ResourceOptions(parent=self.vpc),
        )

        self.register_outputs(
            {
                "cidr_block": str(network.cidr),
                "vpc_id": self.vpc.id,
                "public_subnet_ids": [sn.id for sn in self.subnets[nlbtopo.SegmentType.PUBLIC]],
                "isolated_subnet_ids": [sn.id for sn in self.subnets[nlbtopo.SegmentType.ISOLATED]],
                "vpc_endpoint_sg": self.vpc_endpoint_sg.id,
            }
        )

    def with_endpoint(self, endpoint: nlbtopo.model.Endpoint, region: str):
        """
        Give the endpoint's segments private reachability to an AWS service.

        Gateway endpoints (s3) are attached to the segments' route tables. Interface endpoints get
        a network interface in each segment, private DNS, and the VPC endpoint security group, which
        admits 443 from anywhere in the VPC.

        Session Manager needs the ssm, ssmmessages and ec2messages endpoints together.
        See https://docs.aws.amazon.com/systems-manager/latest/userguide/setup-create-vpc.html
        """
        args = aws.ec2.VpcEndpointArgs(
            service_name=f"com.amazonaws.{region}.{endpoint.service}",
            vpc_endpoint_type=str(endpoint.endpoint_type),
            vpc_id=self.vpc.id,
            tags=self.tags | {"Name": endpoint.label},
        )

        if endpoint.endpoint_type == nlbtopo.EndpointType.GATEWAY:
            args.route_table_ids = [self.isolated_route_tables[rid].id for rid in endpoint.segments]
        else:
            args.private_dns_enabled = True
            args.security_group_ids = [self.vpc_endpoint_sg.id]
            args.subnet_ids = [self.subnets_by_segment[rid].id for rid in endpoint.segments]

        self.endpoints[endpoint.id] = aws.ec2.VpcEndpoint(
            endpoint.label,
            args,
            opts=pulumi.ResourceOptions(parent=self.vpc),
        )

        return self

    def with_secure_default_security_group(self):
        """
        Manage the default security group by removing its ingress and egress rules, so nothing
        launched without an explicit group can talk to anything.
        """
        aws.ec2.DefaultSecurityGroup(
            f"{self.name}-default",
            vpc_id=self.vpc.id,
            opts=pulumi.ResourceOptions(parent=self),
        )

        return self
