from __future__ import annotations

import dataclasses

import pulumi
import pulumi_aws as aws

import nlbtopo
import nlbtopo.model


@dataclasses.dataclass
class LogStoreResources:
    bucket: aws.s3.Bucket
    public_access_block: aws.s3.BucketPublicAccessBlock
    policy: aws.s3.BucketPolicy


def _object_arn(bucket: aws.s3.Bucket, prefix: str, path: str) -> pulumi.Output[str]:
    key_prefix = "/".join(p for p in (prefix.strip("/"), path) if p)
    return bucket.arn.apply(lambda arn: f"{arn}/{key_prefix}")


def define_log_store(
    store: nlbtopo.model.LogStore,
    required_tags: dict[str, str] | None = None,
    protect: bool = False,
    opts: pulumi.ResourceOptions | None = None,
) -> LogStoreResources:
    """
    Define the access-log bucket for a `LogStore`.

    The bucket is SSE-S3 encrypted, blocks every kind of public access, refuses any request made
    without TLS, and lets the log delivery service write under `<prefix>/AWSLogs/`.
    """
    if required_tags is None:
        required_tags = {}

    if opts is None:
        opts = pulumi.ResourceOptions()

    bucket = aws.s3.Bucket(
        store.label,
        aws.s3.BucketArgs(
            bucket=store.bucket_name,
            acl="private",
            force_destroy=store.force_destroy,
            tags=required_tags | {"Name": store.bucket_name},
            server_side_encryption_configuration=aws.s3.BucketServerSideEncryptionConfigurationArgs(
                rule=aws.s3.BucketServerSideEncryptionConfigurationRuleArgs(
                    apply_server_side_encryption_by_default=aws.s3.BucketServerSideEncryptionConfigurationRuleApplyServerSideEncryptionByDefaultArgs(
                        sse_algorithm=store.sse_algorithm,
                    ),
                ),
            ),
        ),
        opts=pulumi.ResourceOptions.merge(opts, pulumi.ResourceOptions(protect=protect)),
    )

    public_access_block = aws.s3.BucketPublicAccessBlock(
        store.label,
        bucket=bucket.id,
        block_public_acls=store.block_public_acls,
        block_public_policy=store.block_public_policy,
        ignore_public_acls=store.ignore_public_acls,
        restrict_public_buckets=store.restrict_public_buckets,
        opts=pulumi.ResourceOptions(parent=bucket),
    )

    statements = [
        aws.iam.GetPolicyDocumentStatementArgs(
            sid="AllowLogDeliveryWrite",
            actions=["s3:PutObject"],
            principals=[
                aws.iam.GetPolicyDocumentStatementPrincipalArgs(
                    type="Service",
                    identifiers=[nlbtopo.LOG_DELIVERY_SERVICE_PRINCIPAL],
                )
            ],
            resources=[_object_arn(bucket, store.prefix, "AWSLogs/*")],  # type: ignore
            conditions=[
                aws.iam.GetPolicyDocumentStatementConditionArgs(
                    test="StringEquals",
                    variable="s3:x-amz-acl",
                    values=["bucket-owner-full-control"],
                )
            ],
        ),
        aws.iam.GetPolicyDocumentStatementArgs(
            sid="AllowLogDeliveryAclCheck",
            actions=["s3:GetBucketAcl"],
            principals=[
                aws.iam.GetPolicyDocumentStatementPrincipalArgs(
                    type="Service",
                    identifiers=[nlbtopo.LOG_DELIVERY_SERVICE_PRINCIPAL],
                )
            ],
            resources=[bucket.arn],  # type: ignore
        ),
    ]

    if store.enforce_ssl:
        statements.append(
            aws.iam.GetPolicyDocumentStatementArgs(
                sid="DenyInsecureTransport",
                effect="Deny",
                actions=["s3:*"],
                principals=[aws.iam.GetPolicyDocumentStatementPrincipalArgs(type="*", identifiers=["*"])],
                resources=[bucket.arn, bucket.arn.apply(lambda arn: f"{arn}/*")],  # type: ignore
                conditions=[
                    aws.iam.GetPolicyDocumentStatementConditionArgs(
                        test="Bool",
                        variable="aws:SecureTransport",
                        values=["false"],
                    )
                ],
            )
        )

    policy_doc = aws.iam.get_policy_document_output(statements=statements)

    # a bucket policy written before the public access block races with it
    policy = aws.s3.BucketPolicy(
        store.label,
        bucket=bucket.id,
        policy=policy_doc.json,
        opts=pulumi.ResourceOptions(parent=bucket, depends_on=[public_access_block]),
    )

    return LogStoreResources(bucket=bucket, public_access_block=public_access_block, policy=policy)
