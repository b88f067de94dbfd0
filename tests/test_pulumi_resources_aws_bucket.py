import dataclasses
import json

import pulumi

import nlbtopo
import nlbtopo.pulumi_resources.aws_bucket
from nlbtopo.model import LogStore, Topology


def log_store(topology: Topology) -> LogStore:
    (store,) = topology.of_kind(LogStore)
    return store


@pulumi.runtime.test
def test_define_log_store(pulumi_mocks, topology: Topology) -> None:
    store = log_store(topology)
    resources = nlbtopo.pulumi_resources.aws_bucket.define_log_store(store, required_tags={"project": "tests"})

    def check(args):
        bucket_name, acl, sse, tags, block_acls, block_policy, ignore_acls, restrict = args
        assert bucket_name == "nlbtopo-testing01-development-access-logs"
        assert acl == "private"
        assert sse["rule"]["applyServerSideEncryptionByDefault"]["sseAlgorithm"] == "AES256"
        assert tags == {"project": "tests", "Name": bucket_name}
        assert all([block_acls, block_policy, ignore_acls, restrict])

    pab = resources.public_access_block
    return pulumi.Output.all(
        resources.bucket.bucket,
        resources.bucket.acl,
        resources.bucket.server_side_encryption_configuration,
        resources.bucket.tags,
        pab.block_public_acls,
        pab.block_public_policy,
        pab.ignore_public_acls,
        pab.restrict_public_buckets,
    ).apply(check)


@pulumi.runtime.test
def test_log_store_policy(pulumi_mocks, topology: Topology) -> None:
    """Test that log delivery may write under the prefix and plain-HTTP requests are denied."""
    store = dataclasses.replace(log_store(topology), prefix="nlb")
    resources = nlbtopo.pulumi_resources.aws_bucket.define_log_store(store)

    def check(policy_json):
        statements = {s["sid"]: s for s in json.loads(policy_json)["Statement"]}
        assert set(statements) == {"AllowLogDeliveryWrite", "AllowLogDeliveryAclCheck", "DenyInsecureTransport"}

        write = statements["AllowLogDeliveryWrite"]
        assert write["actions"] == ["s3:PutObject"]
        assert write["resources"] == [f"arn:aws:s3:::{store.bucket_name}/nlb/AWSLogs/*"]
        assert write["principals"][0]["identifiers"] == [nlbtopo.LOG_DELIVERY_SERVICE_PRINCIPAL]

        deny = statements["DenyInsecureTransport"]
        assert deny["effect"] == "Deny"
        assert deny["conditions"][0]["variable"] == "aws:SecureTransport"
        assert deny["conditions"][0]["values"] == ["false"]

    return resources.policy.policy.apply(check)


@pulumi.runtime.test
def test_log_store_policy_without_ssl_enforcement(pulumi_mocks, topology: Topology) -> None:
    store = dataclasses.replace(log_store(topology), enforce_ssl=False)
    resources = nlbtopo.pulumi_resources.aws_bucket.define_log_store(store)

    def check(policy_json):
        sids = [s["sid"] for s in json.loads(policy_json)["Statement"]]
        assert "DenyInsecureTransport" not in sids

    return resources.policy.policy.apply(check)
