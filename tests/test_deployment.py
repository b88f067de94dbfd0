"""Tests for nlbtopo.deployment module."""

import pathlib
import textwrap

import pytest
import yaml

import nlbtopo
import nlbtopo.deployment
from nlbtopo.deployment import (
    Deployment,
    DeploymentConfig,
    ListenerConfig,
    load_deployment_config_dict,
)

TOPOLOGY_YAML = textwrap.dedent(
    """\
    apiVersion: nlbtopo/v1
    kind: DeploymentConfig
    spec:
      domain: example.test
      availability_zone: us-east-1a
      segments:
        - name: edge
          type: public
          prefix_length: 26
        - name: app
          type: isolated
      instance:
        instance_type: t3.small
      listener:
        alpn_policy: None
        ingress_scope: load_balancer
        preserve_client_ip: false
      log_store:
        prefix: nlb
      resource-tags:
        project: nlbtopo-tests
    """
)


def write_deployment(root: pathlib.Path, name: str, content: str) -> pathlib.Path:
    d = root / "__deployments__" / name
    d.mkdir(parents=True)
    (d / "topology.yaml").write_text(content)
    (d / "user_data.sh").write_text("echo hello\n")
    return d


class TestDeploymentConfig:
    def test_defaults(self, deployment_config: DeploymentConfig) -> None:
        assert deployment_config.compound_name == "testing01-development"
        assert deployment_config.vpc_cidr == "10.0.0.0/24"
        assert [s.type for s in deployment_config.segments] == [
            nlbtopo.SegmentType.PUBLIC,
            nlbtopo.SegmentType.ISOLATED,
        ]
        assert deployment_config.listener.ssl_policy == nlbtopo.RECOMMENDED_TLS_POLICY
        assert deployment_config.log_bucket_name == "nlbtopo-testing01-development-access-logs"

    def test_invalid_environment(self) -> None:
        with pytest.raises(ValueError, match="Environment 'qa' is not supported"):
            DeploymentConfig(domain="example.test", environment="qa", true_name="t", availability_zone="us-east-1a")

    def test_invalid_vpc_cidr(self) -> None:
        with pytest.raises(ValueError, match="Invalid vpc_cidr"):
            DeploymentConfig(
                domain="example.test",
                environment="development",
                true_name="t",
                availability_zone="us-east-1a",
                vpc_cidr="10.0.0.1/24",
            )

    def test_requires_both_segment_types(self) -> None:
        with pytest.raises(ValueError, match="missing"):
            DeploymentConfig(
                domain="example.test",
                environment="development",
                true_name="t",
                availability_zone="us-east-1a",
                segments=(nlbtopo.deployment.SegmentConfig(name="only", type=nlbtopo.SegmentType.PUBLIC),),
            )

    def test_invalid_domain(self) -> None:
        with pytest.raises(ValueError, match="Invalid domain"):
            DeploymentConfig(domain="localhost", environment="development", true_name="t", availability_zone="a")

    def test_missing_availability_zone_warns(self) -> None:
        with pytest.warns(UserWarning, match="No availability_zone set"):
            DeploymentConfig(domain="example.test", environment="development", true_name="t")


class TestListenerConfig:
    def test_unknown_ingress_scope(self) -> None:
        with pytest.raises(ValueError, match="ingress_scope"):
            ListenerConfig(ingress_scope="everyone")

    def test_invalid_port(self) -> None:
        with pytest.raises(ValueError, match="listener port 0 is not a valid port"):
            ListenerConfig(port=0)

    def test_alpn_policy_from_string(self) -> None:
        listener = ListenerConfig(alpn_policy="HTTP2Preferred")  # type: ignore[arg-type]
        assert listener.alpn_policy == nlbtopo.AlpnPolicy.HTTP2_PREFERRED


def test_load_deployment_config_dict() -> None:
    """Test that nested spec sections become typed config objects."""
    cfg = load_deployment_config_dict(yaml.safe_load(TOPOLOGY_YAML), "testing01", "staging")

    assert cfg.true_name == "testing01"
    assert cfg.environment == "staging"
    assert cfg.domain == "example.test"
    assert [(s.name, s.type, s.prefix_length) for s in cfg.segments] == [
        ("edge", nlbtopo.SegmentType.PUBLIC, 26),
        ("app", nlbtopo.SegmentType.ISOLATED, 27),
    ]
    assert cfg.instance.instance_type == "t3.small"
    assert cfg.instance.app_port == nlbtopo.HTTP_PORT
    assert cfg.listener.alpn_policy == nlbtopo.AlpnPolicy.NONE
    assert cfg.listener.ingress_scope == "load_balancer"
    assert cfg.listener.preserve_client_ip is False
    assert cfg.log_store.prefix == "nlb"
    assert cfg.resource_tags == {"project": "nlbtopo-tests"}


class TestDeployment:
    def test_loads_yaml_from_name(self, nlbtopo_root: pathlib.Path) -> None:
        write_deployment(nlbtopo_root, "testing01-staging", TOPOLOGY_YAML)

        deployment = Deployment("testing01-staging")

        assert deployment.compound_name == "testing01-staging"
        assert deployment.read_boot_payload() == "echo hello\n"
        assert deployment.required_tags == {
            "project": "nlbtopo-tests",
            str(nlbtopo.TagKeys.NLBTOPO_TRUE_NAME): "testing01",
            str(nlbtopo.TagKeys.NLBTOPO_ENVIRONMENT): "staging",
        }

    def test_missing_config(self, nlbtopo_root: pathlib.Path) -> None:
        with pytest.raises(FileNotFoundError, match="No deployment config found"):
            Deployment("nothing-development")

    def test_mismatched_kind(self, nlbtopo_root: pathlib.Path) -> None:
        write_deployment(nlbtopo_root, "testing01-staging", TOPOLOGY_YAML.replace("DeploymentConfig", "Other"))

        with pytest.raises(ValueError, match="mismatched deployment config kind='Other'"):
            Deployment("testing01-staging")

    def test_mismatched_api_version(self, nlbtopo_root: pathlib.Path) -> None:
        write_deployment(nlbtopo_root, "testing01-staging", TOPOLOGY_YAML.replace("nlbtopo/v1", "nlbtopo/v0"))

        with pytest.raises(ValueError, match="apiVersion='nlbtopo/v0'"):
            Deployment("testing01-staging")

    def test_missing_boot_payload(self, deployment: Deployment) -> None:
        deployment.boot_payload_path.unlink()

        with pytest.raises(FileNotFoundError, match="Boot payload"):
            deployment.read_boot_payload()

    def test_empty_config(self, nlbtopo_root: pathlib.Path) -> None:
        write_deployment(nlbtopo_root, "testing01-staging", "")

        with pytest.raises(ValueError, match="mismatched deployment config kind=None"):
            Deployment("testing01-staging")

    def test_config_not_a_mapping(self, nlbtopo_root: pathlib.Path) -> None:
        write_deployment(nlbtopo_root, "testing01-staging", "- just\n- a list\n")

        with pytest.raises(ValueError, match="is not a mapping"):
            Deployment("testing01-staging")


@pytest.mark.parametrize(
    "spec",
    [
        {"domain": "example.test", "availability_zone": "us-east-1a", "colour": "blue"},
        {"domain": "example.test", "availability_zone": "us-east-1a", "listener": {"port": 443, "tls": True}},
        {"domain": "example.test", "availability_zone": "us-east-1a", "instance": "t3.micro"},
    ],
)
def test_load_deployment_config_dict_rejects_unknown_keys(spec: dict) -> None:
    with pytest.raises(ValueError, match="Invalid deployment config"):
        load_deployment_config_dict({"spec": spec}, "testing01", "staging")
