from __future__ import annotations

import dataclasses
import ipaddress
import pathlib
import typing
import warnings

import deepmerge  # type: ignore
import yaml

import nlbtopo
import nlbtopo.paths

API_VERSION = "nlbtopo/v1"
DEFAULT_BOOT_PAYLOAD = "user_data.sh"


@dataclasses.dataclass(frozen=True)
class SegmentConfig:
    name: str
    type: nlbtopo.SegmentType
    prefix_length: int = 27
    cidr: str | None = None

    def __post_init__(self) -> None:
        # accept the plain strings found in YAML
        object.__setattr__(self, "type", nlbtopo.SegmentType(self.type))


@dataclasses.dataclass(frozen=True)
class InstanceConfig:
    instance_type: str = "t3.micro"
    ami_name_regex: str = "al2023-ami-202*"
    ami_architecture: str = "x86_64"
    root_volume_size: int = 8
    root_volume_type: str = "gp3"
    boot_payload: str = DEFAULT_BOOT_PAYLOAD
    app_port: int = nlbtopo.HTTP_PORT


@dataclasses.dataclass(frozen=True)
class ListenerConfig:
    """
    The public TLS listener and its forwarding leg.

    ingress_scope controls which sources the instance security group admits on the
    application port:
      - "any": 0.0.0.0/0. The instance has no internet route, so only the load balancer
        can actually originate this traffic. Client IPs are preserved.
      - "load_balancer": only the public segment ranges. Requires preserve_client_ip to be
        false, otherwise the instance sees client addresses and refuses them.
    """

    port: int = nlbtopo.HTTPS_PORT
    ssl_policy: str = nlbtopo.RECOMMENDED_TLS_POLICY
    alpn_policy: nlbtopo.AlpnPolicy = nlbtopo.AlpnPolicy.NONE
    target_port: int = nlbtopo.HTTP_PORT
    ingress_scope: str = "any"
    preserve_client_ip: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "alpn_policy", nlbtopo.AlpnPolicy(self.alpn_policy))

        if self.ingress_scope not in ("any", "load_balancer"):
            msg = f"ingress_scope must be 'any' or 'load_balancer', got {self.ingress_scope!r}"
            raise ValueError(msg)

        for field in ("port", "target_port"):
            value = getattr(self, field)
            if not 1 <= value <= 65535:  # noqa: PLR2004
                msg = f"listener {field} {value} is not a valid port"
                raise ValueError(msg)


@dataclasses.dataclass(frozen=True)
class LogStoreConfig:
    bucket_name: str | None = None
    prefix: str = ""
    force_destroy: bool = True


@dataclasses.dataclass(frozen=True)
class DeploymentConfig:
    """Everything needed to build the topology. Threaded explicitly into every constructor."""

    domain: str
    environment: str
    true_name: str
    region: str = nlbtopo.DEFAULT_REGION
    availability_zone: str | None = None
    vpc_cidr: str = "10.0.0.0/24"
    segments: tuple[SegmentConfig, ...] = (
        SegmentConfig(name="public", type=nlbtopo.SegmentType.PUBLIC),
        SegmentConfig(name="isolated", type=nlbtopo.SegmentType.ISOLATED),
    )
    instance: InstanceConfig = dataclasses.field(default_factory=InstanceConfig)
    listener: ListenerConfig = dataclasses.field(default_factory=ListenerConfig)
    log_store: LogStoreConfig = dataclasses.field(default_factory=LogStoreConfig)
    resource_tags: dict[str, str] = dataclasses.field(default_factory=dict)
    protect_persistent_resources: bool = False

    def __post_init__(self) -> None:
        if self.environment not in nlbtopo.Environments.__members__:
            msg = f"Environment {self.environment!r} is not supported"
            raise ValueError(msg)

        try:
            ipaddress.IPv4Network(self.vpc_cidr)
        except ValueError as e:
            msg = f"Invalid vpc_cidr {self.vpc_cidr!r}: {e}"
            raise ValueError(msg) from e

        types = {s.type for s in self.segments}
        missing = {nlbtopo.SegmentType.PUBLIC, nlbtopo.SegmentType.ISOLATED} - types
        if missing:
            msg = f"At least one segment of each type is required; missing: {sorted(missing)}"
            raise ValueError(msg)

        if not self.domain or "." not in self.domain:
            msg = f"Invalid domain {self.domain!r}"
            raise ValueError(msg)

        if self.availability_zone is None:
            warnings.warn(
                "No availability_zone set; the first available zone in the region will be used",
                stacklevel=2,
            )

    @property
    def compound_name(self) -> str:
        return f"{self.true_name}-{self.environment}"

    @property
    def log_bucket_name(self) -> str:
        return self.log_store.bucket_name or f"nlbtopo-{self.compound_name}-access-logs"


def load_deployment_config_dict(
    cfg_dict: dict[str, typing.Any], true_name: str, environment: str
) -> DeploymentConfig:
    spec: dict[str, typing.Any] = {
        "environment": environment,
        "true_name": true_name,
    }
    deepmerge.always_merger.merge(spec, cfg_dict.get("spec") or {})

    for key in list(spec.keys()):
        spec[key.replace("-", "_")] = spec.pop(key)

    try:
        if "segments" in spec:
            spec["segments"] = tuple(SegmentConfig(**s) for s in spec["segments"])
        if "instance" in spec:
            spec["instance"] = InstanceConfig(**spec["instance"])
        if "listener" in spec:
            spec["listener"] = ListenerConfig(**spec["listener"])
        if "log_store" in spec:
            spec["log_store"] = LogStoreConfig(**spec["log_store"])

        return DeploymentConfig(**spec)
    except TypeError as e:
        msg = f"Invalid deployment config: {e}"
        raise ValueError(msg) from e


class Deployment:
    """
    A named deployment on disk: `$NLBTOPO_ROOT/__deployments__/<true_name>-<environment>/`.

    The directory holds `topology.yaml` and the boot payload script handed to the instance.
    """

    d: pathlib.Path
    cfg: DeploymentConfig

    def __init__(self, name: str, paths: nlbtopo.paths.Paths | None = None, *, load_yaml=True):
        self.d = (paths or nlbtopo.paths.Paths()).deployments / name

        if not load_yaml:
            return

        if not self.topology_yaml.exists():
            msg = f"No deployment config found at {str(self.topology_yaml)!r}"
            raise FileNotFoundError(msg)

        self.load_config()

    @property
    def topology_yaml(self) -> pathlib.Path:
        return self.d / "topology.yaml"

    @property
    def compound_name(self) -> str:
        return self.cfg.compound_name

    @property
    def required_tags(self) -> dict[str, str]:
        return self.cfg.resource_tags | {
            str(nlbtopo.TagKeys.NLBTOPO_TRUE_NAME): self.cfg.true_name,
            str(nlbtopo.TagKeys.NLBTOPO_ENVIRONMENT): self.cfg.environment,
        }

    @property
    def boot_payload_path(self) -> pathlib.Path:
        return self.d / self.cfg.instance.boot_payload

    def read_boot_payload(self) -> str:
        if not self.boot_payload_path.exists():
            msg = f"Boot payload {str(self.boot_payload_path)!r} does not exist"
            raise FileNotFoundError(msg)

        return self.boot_payload_path.read_text()

    def load_config(self) -> None:
        true_name, environment = self.d.name.rsplit("-", maxsplit=1)

        cfg_dict = yaml.safe_load(self.topology_yaml.read_text()) or {}
        if not isinstance(cfg_dict, dict):
            msg = f"Deployment config {str(self.topology_yaml)!r} is not a mapping"
            raise ValueError(msg)

        if cfg_dict.get("kind") != DeploymentConfig.__name__ or cfg_dict.get("apiVersion") != API_VERSION:
            msg = (
                f"mismatched deployment config kind={cfg_dict.get('kind')!r} "
                f"apiVersion={cfg_dict.get('apiVersion')!r} in {str(self.topology_yaml)!r}"
            )
            raise ValueError(msg)

        self.cfg = load_deployment_config_dict(cfg_dict, true_name, environment)
