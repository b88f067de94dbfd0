import json

import pulumi
import pulumi_aws as aws

import nlbtopo
import nlbtopo.model

SHEBANG = "#!/bin/bash"


def user_data(boot_payload: str) -> str:
    """Return the boot payload as cloud-init user data, adding a bash shebang when it has none."""
    if boot_payload.startswith("#!"):
        return boot_payload

    return f"{SHEBANG}\n{boot_payload}"


def assume_role_policy(service: str) -> str:
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": service},
                    "Action": "sts:AssumeRole",
                }
            ],
        }
    )


class AWSInstance(pulumi.ComponentResource):
    """
    One EC2 instance in an isolated subnet.

    It has no public address and no inbound management port. Administration goes through Session
    Manager, which is why the instance role carries AmazonSSMManagedInstanceCore and nothing else.
    """

    tags: dict[str, str]
    name: str
    compute: nlbtopo.model.ComputeResource

    role: aws.iam.Role
    policy_attachments: list[aws.iam.RolePolicyAttachment]
    profile: aws.iam.InstanceProfile
    security_group: aws.ec2.SecurityGroup
    instance: aws.ec2.Instance

    def __init__(
        self,
        compute: nlbtopo.model.ComputeResource,
        policy: nlbtopo.model.AccessPolicy,
        identity: nlbtopo.model.Identity,
        vpc_id: str | pulumi.Output[str],
        subnet_id: str | pulumi.Output[str],
        tags: dict[str, str],
        *args,
        **kwargs,
    ):
        super().__init__(
            f"nlbtopo:{self.__class__.__name__}",
            compute.label,
            *args,
            **kwargs,
        )

        self.tags = tags
        self.name = compute.label
        self.compute = compute
        self.vpc_id = vpc_id
        self.subnet_id = subnet_id

        self._define_iam(identity)
        self._define_security_group(policy)
        self._define_instance()

        self.register_outputs(
            {
                "instance_id": self.instance.id,
                "private_ip": self.instance.private_ip,
                "role_arn": self.role.arn,
                "security_group_id": self.security_group.id,
            }
        )

    def _define_iam(self, identity: nlbtopo.model.Identity):
        self.role = aws.iam.Role(
            identity.label,
            name=identity.label,
            assume_role_policy=assume_role_policy(identity.trusted_service),
            tags=self.tags,
            opts=pulumi.ResourceOptions(parent=self, delete_before_replace=True),
        )

        self.policy_attachments = [
            aws.iam.RolePolicyAttachment(
                f"{identity.label}-{i}",
                role=self.role.name,
                policy_arn=policy_arn,
                opts=pulumi.ResourceOptions(parent=self.role, delete_before_replace=True),
            )
            for i, policy_arn in enumerate(identity.managed_policy_arns)
        ]

        self.profile = aws.iam.InstanceProfile(
            f"{self.name}-profile",
            name=f"{self.name}-profile.nlbtopo",
            role=self.role.name,
            opts=pulumi.ResourceOptions(parent=self, delete_before_replace=True),
        )

    def _define_security_group(self, policy: nlbtopo.model.AccessPolicy):
        egress = []
        if policy.allow_all_outbound:
            egress.append(
                aws.ec2.SecurityGroupEgressArgs(
                    from_port=0,
                    to_port=0,
                    protocol=str(nlbtopo.RuleProtocol.ALL),
                    cidr_blocks=[nlbtopo.ANY_IPV4],
                )
            )

        self.security_group = aws.ec2.SecurityGroup(
            policy.label,
            description=f"Inbound rules for {self.name}",
            vpc_id=self.vpc_id,
            ingress=[
                aws.ec2.SecurityGroupIngressArgs(
                    from_port=rule.from_port,
                    to_port=rule.to_port,
                    protocol=str(rule.protocol),
                    cidr_blocks=[rule.source],
                    description=rule.description or None,
                )
                for rule in policy.ingress
            ],
            egress=egress,
            tags=self.tags | {"Name": policy.label},
            opts=pulumi.ResourceOptions(parent=self),
        )

    def _define_instance(self):
        ami = aws.ec2.get_ami(
            most_recent=True,
            name_regex=self.compute.image_name_regex,
            filters=[
                aws.ec2.GetAmiFilterArgs(
                    name="owner-id",
                    values=[nlbtopo.AMAZON_ACCOUNT_ID],
                ),
                aws.ec2.GetAmiFilterArgs(
                    name="architecture",
                    values=[self.compute.image_architecture],
                ),
            ],
            opts=pulumi.InvokeOptions(parent=self),
        )

        root, *extra = self.compute.volumes

        self.instance = aws.ec2.Instance(
            self.name,
            aws.ec2.InstanceArgs(
                iam_instance_profile=self.profile.name,
                instance_type=self.compute.instance_type,
                ami=ami.id,
                subnet_id=self.subnet_id,
                associate_public_ip_address=False,
                vpc_security_group_ids=[self.security_group.id],
                root_block_device=aws.ec2.InstanceRootBlockDeviceArgs(
                    volume_size=root.size_gib,
                    volume_type=root.volume_type,
                    encrypted=True,
                    delete_on_termination=True,
                ),
                ebs_block_devices=[
                    aws.ec2.InstanceEbsBlockDeviceArgs(
                        device_name=v.device_name,
                        volume_size=v.size_gib,
                        volume_type=v.volume_type,
                        encrypted=True,
                    )
                    for v in extra
                ],
                user_data=user_data(self.compute.boot_payload),
                # first boot only; a changed payload means a new instance
                user_data_replace_on_change=True,
                metadata_options=aws.ec2.InstanceMetadataOptionsArgs(http_tokens="required"),
                tags=self.tags | {"Name": self.name},
                volume_tags=self.tags | {"Name": self.name},
            ),
            opts=pulumi.ResourceOptions(parent=self, depends_on=[self.profile]),
        )
